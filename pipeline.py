"""
pipeline.py — Send Pipeline
============================
Runs one inbound request through the relay. Each step is a rejection point,
and transport is the last step.

Steps:
1. Normalize the inbound request (attachment size, then to/subject)
2. Hand off to the dispatcher
3. Return result

Every RelayError is turned into a SendResult here, so the HTTP layer only
maps status to response code.
"""

import logging
from dataclasses import dataclass

from errors import DispatchFailed, RelayError
from normalizer import normalize
from transport import MailDispatcher

log = logging.getLogger(__name__)

SENT = "sent"
REJECTED = "rejected"
ERROR = "error"


@dataclass
class SendResult:
    status:       str            # "sent" | "rejected" | "error"
    message:      str
    message_id:   str | None = None
    error_code:   str | None = None
    error_detail: dict | None = None

    @property
    def http_status(self) -> int:
        return 200 if self.status == SENT else 400 if self.status == REJECTED else 500


def _reject(e: RelayError) -> SendResult:
    log.warning(f"Request rejected [{e.code}]: {e.message}")
    return SendResult(status=REJECTED, message=e.message, error_code=e.code)


def process(inbound, dispatcher: MailDispatcher, max_attachment_bytes: int) -> SendResult:
    # ── Step 1: Normalize ─────────────────────────────────────────────────────
    try:
        req = normalize(inbound, max_attachment_bytes=max_attachment_bytes)
    except RelayError as e:
        return _reject(e)

    # ── Step 2: Hand off to transport ─────────────────────────────────────────
    try:
        result = dispatcher.send(req)
    except DispatchFailed as e:
        return SendResult(
            status=ERROR,
            message="Failed to send email",
            error_code=e.code,
            error_detail=e.detail(),
        )

    # ── Step 3: Return result ─────────────────────────────────────────────────
    return SendResult(
        status=SENT,
        message="Email sent successfully",
        message_id=result.message_id,
    )
