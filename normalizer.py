"""
normalizer.py — Request Normalizer
===================================
Turns an inbound request of either content kind into one canonical SendRequest.

  StructuredRequest  — application/json body, no attachments
  MultipartRequest   — form fields plus uploaded files under "attachments"

Both shapes go through the same validation path. The normalizer never talks
to SMTP: if it raises, no dispatch is attempted.
"""

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field

from config import MAX_ATTACHMENT_BYTES
from errors import AttachmentTooLarge, MissingRecipient, MissingSubject

log = logging.getLogger(__name__)

ATTACHMENT_FIELD = "attachments"
TEXT_FIELDS = ("to", "subject", "text", "html")


@dataclass(frozen=True)
class Attachment:
    filename:     str
    content:      bytes = field(repr=False)
    content_type: str | None = None

    @property
    def size(self) -> int:
        return len(self.content)


@dataclass(frozen=True)
class SendRequest:
    to:          str
    subject:     str
    text:        str | None = None
    html:        str | None = None
    attachments: tuple[Attachment, ...] = ()


@dataclass(frozen=True)
class StructuredRequest:
    """JSON body. Anything that isn't an object is treated as an empty body."""
    body: object


@dataclass(frozen=True)
class MultipartRequest:
    """
    Form fields and the uploads found under "attachments", in upload order.
    Uploads only need .filename, .read() and optionally .content_type.
    """
    form:  Mapping
    files: tuple = ()


def _as_text(value) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, (list, tuple)):
        return ", ".join(str(v) for v in value if v is not None)
    return str(value)


def _read_attachment(upload, limit: int) -> Attachment:
    filename = getattr(upload, "filename", None) or "attachment"
    # Read one byte past the limit so oversize files fail without buffering them whole
    content = upload.read(limit + 1)
    if len(content) > limit:
        log.warning(f"Attachment rejected: '{filename}' exceeds {limit} bytes")
        raise AttachmentTooLarge(filename=filename, limit=limit)
    content_type = getattr(upload, "content_type", None) or None
    return Attachment(filename=filename, content=content, content_type=content_type)


def _fields(inbound) -> dict:
    if isinstance(inbound, StructuredRequest):
        source = inbound.body if isinstance(inbound.body, Mapping) else {}
    elif isinstance(inbound, MultipartRequest):
        source = inbound.form
    else:
        raise TypeError(f"Unsupported inbound request: {type(inbound).__name__}")
    return {name: _as_text(source.get(name)) for name in TEXT_FIELDS}


def normalize(inbound, max_attachment_bytes: int = MAX_ATTACHMENT_BYTES) -> SendRequest:
    """
    Validate and canonicalize one inbound request.

    Raises AttachmentTooLarge before any field validation, then MissingRecipient
    or MissingSubject. There is no partial or warning outcome.
    """
    attachments: tuple[Attachment, ...] = ()
    if isinstance(inbound, MultipartRequest):
        attachments = tuple(_read_attachment(f, max_attachment_bytes) for f in inbound.files)

    values = _fields(inbound)

    to = (values["to"] or "").strip()
    if not to:
        raise MissingRecipient()

    subject = (values["subject"] or "").strip()
    if not subject:
        raise MissingSubject()

    return SendRequest(
        to=to,
        subject=subject,
        text=values["text"],
        html=values["html"],
        attachments=attachments,
    )
