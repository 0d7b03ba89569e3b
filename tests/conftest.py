"""
Shared fixtures. No test opens a socket: the dispatcher is either a
recording fake or a real MailDispatcher with smtplib patched out.
"""

import pytest

from config import RelayConfig, SmtpConfig
from errors import DispatchFailed
from transport import DispatchResult, MailDispatcher

TEST_MESSAGE_ID = "<test-message-id@example.com>"


class RecordingDispatcher(MailDispatcher):
    """Keeps every SendRequest it is given. Optionally fails every send."""

    def __init__(self, config: SmtpConfig, fail: DispatchFailed | None = None):
        super().__init__(config)
        self.sent = []
        self.fail = fail

    def send(self, req):
        if self.fail is not None:
            raise self.fail
        self.sent.append(req)
        return DispatchResult(message_id=TEST_MESSAGE_ID, accepted=[req.to])


@pytest.fixture
def smtp_config():
    return SmtpConfig(
        host="smtp.example.com",
        port=587,
        username="",
        password="",
        sender="relay@example.com",
        timeout=5.0,
    )


@pytest.fixture
def relay_config(smtp_config):
    return RelayConfig(smtp=smtp_config, verify_on_startup=False)


@pytest.fixture
def dispatcher(smtp_config):
    return RecordingDispatcher(smtp_config)


@pytest.fixture
def app(relay_config, dispatcher):
    from main import create_app
    return create_app(relay_config, dispatcher)


@pytest.fixture
def client(app):
    return app.test_client()
