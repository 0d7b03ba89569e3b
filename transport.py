"""
transport.py — Mail Dispatcher
===============================
This is the ONLY file that knows about SMTP. Everything above this layer
hands over a SendRequest and gets back a DispatchResult or a DispatchFailed.

One MailDispatcher is built at startup from an immutable SmtpConfig and
shared by every request. It opens a fresh SMTP session per send, so there is
no per-request state to protect.

verify() is advisory. Its outcome is recorded for the status endpoint but
send() is attempted whether or not the last check passed.
"""

import errno
import logging
import mimetypes
import smtplib
import ssl
import threading
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email import encoders
from email.mime.base import MIMEBase
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formatdate, getaddresses, parseaddr

from config import SmtpConfig
from errors import DispatchFailed
from normalizer import Attachment, SendRequest

log = logging.getLogger(__name__)

UNINITIALIZED = "uninitialized"
READY = "ready"


@dataclass(frozen=True)
class DispatchResult:
    message_id: str
    accepted:   list[str] = field(default_factory=list)
    rejected:   list[str] = field(default_factory=list)


@dataclass(frozen=True)
class HealthStatus:
    state:      str = UNINITIALIZED
    ok:         bool | None = None
    error:      str | None = None
    checked_at: str | None = None

    def as_dict(self) -> dict:
        return {
            "state":     self.state,
            "ok":        self.ok,
            "error":     self.error,
            "checkedAt": self.checked_at,
        }


# ── MIME construction ─────────────────────────────────────────────────────────

def _body_part(req: SendRequest) -> MIMEBase:
    if req.text is not None and req.html is not None:
        alt = MIMEMultipart('alternative')
        alt.attach(MIMEText(req.text, 'plain', 'utf-8'))
        alt.attach(MIMEText(req.html, 'html', 'utf-8'))
        return alt
    if req.html is not None:
        return MIMEText(req.html, 'html', 'utf-8')
    return MIMEText(req.text or '', 'plain', 'utf-8')


def _attachment_part(att: Attachment) -> MIMEBase:
    ctype = att.content_type or mimetypes.guess_type(att.filename)[0] or 'application/octet-stream'
    maintype, _, subtype = ctype.split(';')[0].strip().partition('/')
    if not maintype or not subtype:
        maintype, subtype = 'application', 'octet-stream'

    part = MIMEBase(maintype, subtype)
    part.set_payload(att.content)
    encoders.encode_base64(part)
    part.add_header('Content-Disposition', 'attachment', filename=att.filename)
    return part


def build_message(req: SendRequest, sender: str, message_id: str) -> MIMEBase:
    """
    text only -> text/plain, html only -> text/html, both -> multipart/alternative.
    Any attachments wrap the body in multipart/mixed.
    """
    body = _body_part(req)
    if req.attachments:
        mime = MIMEMultipart('mixed')
        mime.attach(body)
        for att in req.attachments:
            mime.attach(_attachment_part(att))
    else:
        mime = body

    mime['Subject']    = req.subject
    mime['From']       = sender
    mime['To']         = req.to
    mime['Date']       = formatdate(localtime=True)
    mime['Message-ID'] = message_id
    return mime


def make_message_id(sender: str) -> str:
    address = parseaddr(sender)[1]
    domain = address.rsplit('@', 1)[-1] if '@' in address else 'localhost'
    return f"<{uuid.uuid4()}@{domain}>"


# ── Error translation ─────────────────────────────────────────────────────────

def _decode(raw) -> str:
    if isinstance(raw, bytes):
        return raw.decode('utf-8', errors='replace')
    return str(raw)


def _response_failure(code: str, e: smtplib.SMTPResponseException) -> DispatchFailed:
    text = _decode(e.smtp_error)
    return DispatchFailed(f"SMTP error: {e.smtp_code} {text}", smtp_code=code,
                          response=f"{e.smtp_code} {text}", response_code=e.smtp_code)


def to_dispatch_failed(e: Exception) -> DispatchFailed:
    """Map smtplib / socket exceptions onto one DispatchFailed with a stable code."""
    if isinstance(e, DispatchFailed):
        return e
    if isinstance(e, smtplib.SMTPAuthenticationError):
        return _response_failure("EAUTH", e)
    if isinstance(e, smtplib.SMTPConnectError):
        return _response_failure("ECONNECTION", e)
    if isinstance(e, smtplib.SMTPSenderRefused):
        return _response_failure("EENVELOPE", e)
    if isinstance(e, smtplib.SMTPDataError):
        return _response_failure("EMESSAGE", e)
    if isinstance(e, smtplib.SMTPRecipientsRefused):
        replies = [f"{rcpt}: {code} {_decode(msg)}" for rcpt, (code, msg) in e.recipients.items()]
        codes = [code for code, _ in e.recipients.values()]
        return DispatchFailed("All recipients were refused", smtp_code="EENVELOPE",
                              response="; ".join(replies), response_code=codes[0] if codes else None)
    if isinstance(e, smtplib.SMTPResponseException):
        return _response_failure("EPROTOCOL", e)
    if isinstance(e, smtplib.SMTPServerDisconnected):
        return DispatchFailed(f"Connection closed: {e}", smtp_code="ECONNECTION")
    if isinstance(e, smtplib.SMTPNotSupportedError):
        return DispatchFailed(f"SMTP extension not supported: {e}", smtp_code="EPROTOCOL")
    if isinstance(e, smtplib.SMTPException):
        return DispatchFailed(f"SMTP error: {e}", smtp_code="ESMTP")
    if isinstance(e, TimeoutError):
        return DispatchFailed(f"Connection timed out: {e}", smtp_code="ETIMEDOUT")
    if isinstance(e, ssl.SSLError):
        return DispatchFailed(f"TLS error: {e}", smtp_code="ETLS")
    if isinstance(e, OSError):
        name = errno.errorcode.get(e.errno, "ECONNECTION") if e.errno else "ECONNECTION"
        return DispatchFailed(f"Connection failed: {e}", smtp_code=name)
    return DispatchFailed(f"Transport error: {e}", smtp_code="EUNKNOWN")


# ── Dispatcher ────────────────────────────────────────────────────────────────

class MailDispatcher:
    def __init__(self, config: SmtpConfig):
        self._config = config
        self._health = HealthStatus()

    @property
    def config(self) -> SmtpConfig:
        return self._config

    def _ssl_context(self) -> ssl.SSLContext:
        context = ssl.create_default_context()
        if self._config.tls_insecure:
            context.check_hostname = False
            context.verify_mode = ssl.CERT_NONE
        return context

    @contextmanager
    def _session(self):
        """Connected, upgraded and authenticated SMTP session. Closed on exit."""
        cfg = self._config
        if not cfg.host:
            raise DispatchFailed("SMTP_HOST is not configured", smtp_code="ECONFIG")

        if cfg.secure:
            server = smtplib.SMTP_SSL(cfg.host, cfg.port, timeout=cfg.timeout,
                                      context=self._ssl_context())
        else:
            server = smtplib.SMTP(cfg.host, cfg.port, timeout=cfg.timeout)

        with server:
            server.ehlo()
            if not cfg.secure and server.has_extn('starttls'):
                server.starttls(context=self._ssl_context())
                server.ehlo()
                log.debug(f"STARTTLS enabled for {cfg.host}:{cfg.port}")
            if cfg.username:
                server.login(cfg.username, cfg.password)
            yield server

    def send(self, req: SendRequest) -> DispatchResult:
        """Hand one message to SMTP. Raises DispatchFailed; never retries."""
        sender = self._config.sender
        message_id = make_message_id(sender)
        mime = build_message(req, sender, message_id)
        recipients = [addr for _, addr in getaddresses([req.to]) if addr]

        log.info(f"{message_id} Sending: to={req.to} subject='{req.subject}' "
                 f"attachments={len(req.attachments)}")
        try:
            with self._session() as server:
                refused = server.send_message(mime, from_addr=sender) or {}
        except Exception as e:
            failure = to_dispatch_failed(e)
            log.error(f"{message_id} Dispatch failed [{failure.smtp_code}]: {failure.message}")
            if failure is e:
                raise
            raise failure from e

        rejected = sorted(refused)
        accepted = [r for r in recipients if r not in refused]
        if rejected:
            log.warning(f"{message_id} Some recipients refused: {', '.join(rejected)}")
        log.info(f"{message_id} Message sent")
        return DispatchResult(message_id=message_id, accepted=accepted, rejected=rejected)

    def verify(self) -> HealthStatus:
        """
        Connect, authenticate, NOOP. Records and returns the outcome.
        A failed check does not disable send().
        """
        checked_at = datetime.now(timezone.utc).isoformat()
        try:
            with self._session() as server:
                server.noop()
        except Exception as e:
            failure = to_dispatch_failed(e)
            status = HealthStatus(state=READY, ok=False, checked_at=checked_at,
                                  error=f"[{failure.smtp_code}] {failure.message}")
            log.error(f"SMTP connection check failed: {status.error}")
        else:
            status = HealthStatus(state=READY, ok=True, checked_at=checked_at)
            log.info("SMTP server is ready to send messages")
        self._health = status
        return status

    def start_verify(self) -> threading.Thread:
        """Run verify() in the background so startup never waits on SMTP."""
        thread = threading.Thread(target=self.verify, name="smtp-verify", daemon=True)
        thread.start()
        return thread

    def health(self) -> HealthStatus:
        return self._health
