import logging
from datetime import datetime

import pytest

from app.ipverify import notify
from app.ipverify.notify import (
    LogNotifier,
    NotificationDispatcher,
    NotificationPayload,
    Notifier,
    SmtpNotifier,
    notifier_from_config,
    render_request_email,
)


def _payload(**context):
    return NotificationPayload(
        identity="203.0.113.5",
        context=context,
        attachments=[{"type": "Encryption Card", "url": "https://cdn.example.com/a.png"}],
        requested_at=datetime(2026, 3, 1, 12, 30),
    )


class FailingNotifier(Notifier):
    def deliver(self, payload):
        raise ConnectionRefusedError("smtp down")


def test_failed_delivery_is_logged_not_raised(caplog):
    dispatcher = NotificationDispatcher(FailingNotifier())
    try:
        with caplog.at_level(logging.ERROR, logger="app.ipverify.notify"):
            fut = dispatcher.dispatch(_payload())
            assert fut.result(timeout=5) is False
        assert "Failed to send notification for ip=203.0.113.5" in caplog.text
    finally:
        dispatcher.shutdown()


def test_dispatch_without_notifier_and_after_shutdown():
    dispatcher = NotificationDispatcher(None)
    assert dispatcher.dispatch(_payload()).result(timeout=5) is False
    dispatcher.shutdown()
    assert dispatcher.dispatch(_payload()) is None


def test_log_notifier_delivers():
    dispatcher = NotificationDispatcher(LogNotifier())
    try:
        assert dispatcher.dispatch(_payload(city="Porto")).result(timeout=5) is True
    finally:
        dispatcher.shutdown()


def test_render_request_email_escapes_and_fills_defaults():
    subject, body = render_request_email(
        _payload(city="Porto", region="Norte", country="Portugal", device_model="<b>X</b>", isp=None)
    )
    assert subject == "New Encryption Request: 203.0.113.5"
    assert "Porto, Norte, Portugal" in body
    assert "&lt;b&gt;X&lt;/b&gt;" in body
    assert "<b>X</b>" not in body
    assert "<strong>ISP:</strong> Not available" in body
    assert "<strong>Email:</strong> Not provided" in body
    assert "2026-03-01 12:30 UTC" in body
    assert "Uploaded Images (1)" in body

    _, body = render_request_email(_payload())
    assert "Location information not available" in body


def test_smtp_notifier_sends_message(monkeypatch):
    sent = {}

    class FakeSMTP:
        def __init__(self, host, port, timeout=None):
            sent["addr"] = (host, port)

        def __enter__(self):
            return self

        def __exit__(self, *exc):
            return False

        def starttls(self):
            sent["tls"] = True

        def login(self, user, password):
            sent["login"] = user

        def send_message(self, msg):
            sent["msg"] = msg

    monkeypatch.setattr(notify.smtplib, "SMTP", FakeSMTP)

    SmtpNotifier(
        host="smtp.example.com",
        port=587,
        sender="noreply@example.com",
        recipient="admin@example.com",
        username="mailer",
        password="pw",
    ).deliver(_payload())

    assert sent["addr"] == ("smtp.example.com", 587)
    assert sent["tls"] is True
    assert sent["login"] == "mailer"
    assert sent["msg"]["Subject"] == "New Encryption Request: 203.0.113.5"
    assert sent["msg"]["To"] == "admin@example.com"


@pytest.mark.parametrize(
    "config,expected",
    [
        ({}, LogNotifier),
        ({"NOTIFY_BACKEND": "none"}, type(None)),
        ({"NOTIFY_BACKEND": "smtp"}, type(None)),
        ({"NOTIFY_BACKEND": "smtp", "SMTP_HOST": "smtp.example.com", "ADMIN_EMAIL": "a@example.com"}, SmtpNotifier),
    ],
)
def test_notifier_from_config(config, expected):
    assert isinstance(notifier_from_config(config), expected)


def test_smtp_sender_defaults_to_recipient():
    n = notifier_from_config({"NOTIFY_BACKEND": "smtp", "SMTP_HOST": "h", "ADMIN_EMAIL": "a@example.com"})
    assert n.sender == "a@example.com"
    assert n.port == 587
