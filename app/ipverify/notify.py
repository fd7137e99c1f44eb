"""
Reviewer notifications for new encryption requests.

Delivery is fire-and-forget: `NotificationDispatcher.dispatch` hands the payload to a
background worker pool and returns immediately. A failed delivery is logged and
never reaches the request that triggered it.
"""

from __future__ import annotations

import html
import logging
import smtplib
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from email.message import EmailMessage
from typing import Any

from flask import Flask

from app.ipverify.utils import utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NotificationPayload:
    identity: str
    context: dict[str, Any]
    attachments: list[dict[str, Any]] = field(default_factory=list)
    requested_at: datetime | None = None


class Notifier:
    def deliver(self, payload: NotificationPayload) -> None:
        raise NotImplementedError


class LogNotifier(Notifier):
    """Development sink: writes the notification to the log."""

    def deliver(self, payload: NotificationPayload) -> None:
        logger.info(
            "NOTIFY: encryption request ip=%s attachments=%d context=%s",
            payload.identity,
            len(payload.attachments),
            payload.context,
        )


def _or_default(v: Any, default: str = "Not provided") -> str:
    s = "" if v is None else str(v).strip()
    return html.escape(s) if s else default


def render_request_email(payload: NotificationPayload) -> tuple[str, str]:
    """(subject, html body) for a new encryption request."""
    ctx = payload.context
    if ctx.get("city") and ctx.get("region"):
        location = _or_default(f"{ctx.get('city')}, {ctx.get('region')}, {ctx.get('country') or ''}")
    else:
        location = "Location information not available"

    images = "".join(
        f'<div><p><strong>{_or_default(a.get("type"), "Image")}:</strong></p>'
        f'<img src="{html.escape(str(a.get("url") or ""))}" alt="{_or_default(a.get("type"), "Image")}" '
        f'style="max-width: 300px; max-height: 200px;"></div>'
        for a in payload.attachments
    )
    requested = (payload.requested_at or utcnow()).strftime("%Y-%m-%d %H:%M UTC")
    body = (
        "<h2>New Encryption Request Received</h2>"
        "<p>A new encryption request has been submitted and requires your review.</p>"
        "<h3>IP Information</h3>"
        f"<p><strong>IP Address:</strong> {html.escape(payload.identity)}</p>"
        f"<p><strong>Location:</strong> {location}</p>"
        f"<p><strong>ISP:</strong> {_or_default(ctx.get('isp'), 'Not available')}</p>"
        f"<p><strong>Request Date:</strong> {requested}</p>"
        "<h3>Device Information</h3>"
        f"<p><strong>Device Model:</strong> {_or_default(ctx.get('device_model'))}</p>"
        f"<p><strong>OS Version:</strong> {_or_default(ctx.get('os_version'))}</p>"
        f"<p><strong>Email:</strong> {_or_default(ctx.get('email'))}</p>"
        f"<p><strong>Phone Number:</strong> {_or_default(ctx.get('phone_number'))}</p>"
        f"<h3>Uploaded Images ({len(payload.attachments)})</h3>"
        f"{images}"
        "<p>Please review this request in the admin dashboard.</p>"
    )
    return f"New Encryption Request: {payload.identity}", body


@dataclass(frozen=True)
class SmtpNotifier(Notifier):
    host: str
    port: int
    sender: str
    recipient: str
    username: str = ""
    password: str = ""
    use_tls: bool = True
    timeout_seconds: int = 30

    def deliver(self, payload: NotificationPayload) -> None:
        subject, body = render_request_email(payload)
        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = self.sender
        msg["To"] = self.recipient
        msg.set_content("A new encryption request requires review. View this message as HTML for details.")
        msg.add_alternative(body, subtype="html")

        with smtplib.SMTP(self.host, self.port, timeout=self.timeout_seconds) as server:
            if self.use_tls:
                server.starttls()
            if self.username:
                server.login(self.username, self.password)
            server.send_message(msg)
        logger.info("Notification email sent for ip=%s to=%s", payload.identity, self.recipient)


class NotificationDispatcher:
    """Process-wide background delivery. Created once in create_app(), shut down explicitly."""

    def __init__(self, notifier: Notifier | None, *, max_workers: int = 2) -> None:
        self.notifier = notifier
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="notify")
        self._closed = False

    def _deliver(self, payload: NotificationPayload) -> bool:
        if self.notifier is None:
            logger.warning("Notifications not configured. Skipping notification for ip=%s", payload.identity)
            return False
        try:
            self.notifier.deliver(payload)
            return True
        except Exception:
            logger.exception("Failed to send notification for ip=%s", payload.identity)
            return False

    def dispatch(self, payload: NotificationPayload) -> Future | None:
        if self._closed:
            logger.warning("Notification dispatcher closed; dropping notification for ip=%s", payload.identity)
            return None
        return self._executor.submit(self._deliver, payload)

    def shutdown(self, *, wait: bool = True) -> None:
        self._closed = True
        self._executor.shutdown(wait=wait)


def notifier_from_config(config: dict) -> Notifier | None:
    backend = (config.get("NOTIFY_BACKEND") or "log").strip().lower()
    if backend == "smtp":
        host = (config.get("SMTP_HOST") or "").strip()
        recipient = (config.get("ADMIN_EMAIL") or "").strip()
        if not host or not recipient:
            logger.warning("NOTIFY_BACKEND=smtp but SMTP_HOST/ADMIN_EMAIL missing; notifications disabled")
            return None
        return SmtpNotifier(
            host=host,
            port=int(config.get("SMTP_PORT") or 587),
            sender=(config.get("SENDER_EMAIL") or "").strip() or recipient,
            recipient=recipient,
            username=(config.get("SMTP_USERNAME") or "").strip(),
            password=config.get("SMTP_PASSWORD") or "",
            use_tls=bool(config.get("SMTP_USE_TLS", True)),
        )
    if backend == "none":
        return None
    return LogNotifier()


def init_notifications(app: Flask) -> NotificationDispatcher:
    dispatcher = NotificationDispatcher(notifier_from_config(app.config))
    app.extensions["notification_dispatcher"] = dispatcher
    return dispatcher


def get_dispatcher(app: Flask) -> NotificationDispatcher | None:
    return app.extensions.get("notification_dispatcher")
