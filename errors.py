"""
errors.py — Relay Error Taxonomy
=================================
Input errors map to 400, transport errors to 500. Nothing here is retried.
"""


class RelayError(Exception):
    code = "relay_error"
    http_status = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class MissingRecipient(RelayError):
    code = "missing_recipient"
    http_status = 400

    def __init__(self, message: str = "Recipient email address (to) is required"):
        super().__init__(message)


class MissingSubject(RelayError):
    code = "missing_subject"
    http_status = 400

    def __init__(self, message: str = "Email subject is required"):
        super().__init__(message)


class AttachmentTooLarge(RelayError):
    code = "attachment_too_large"
    http_status = 400

    def __init__(self, filename: str | None = None, limit: int | None = None):
        limit_mb = (limit or 0) // (1024 * 1024)
        message = f"File too large (max {limit_mb}MB)" if limit else "File too large"
        super().__init__(message)
        self.filename = filename
        self.limit = limit


class DispatchFailed(RelayError):
    """SMTP hand-off failed. Carries the transport code and server response when known."""
    code = "dispatch_failed"
    http_status = 500

    def __init__(self, message: str, smtp_code: str | None = None,
                 response: str | None = None, response_code: int | None = None):
        super().__init__(message)
        self.smtp_code = smtp_code          # e.g. EAUTH, EENVELOPE, ECONNREFUSED
        self.response = response            # server reply text, if any
        self.response_code = response_code  # numeric SMTP reply code, if any

    def detail(self) -> dict:
        return {
            "code": self.smtp_code,
            "responseCode": self.response_code,
            "response": self.response,
            "message": self.message,
        }
