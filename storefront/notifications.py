"""Outbound email notifications.

Messages are queued and sent by a background worker so a slow or failing
mail server never holds up a request. Each message is retried with
exponential backoff until ``max_attempts`` is reached.
"""
import asyncio
import logging
import os
import smtplib
from collections import deque
from email.message import EmailMessage
from typing import Deque, NamedTuple, Optional

from jinja2 import Environment, FileSystemLoader, select_autoescape

from . import config
from .schemas import Order

logger = logging.getLogger(__name__)

# recent messages kept for inspection; older ones are dropped
KEEP_RECENT = 100

TEMPLATES_DIR = os.path.join(os.path.dirname(__file__), "templates")

templates = Environment(
    loader=FileSystemLoader(TEMPLATES_DIR),
    autoescape=select_autoescape(["html"]),
)

OTP_SUBJECTS = {
    "email_verification": "Verify your email address",
    "password_reset": "Reset your password",
    "email_change": "Confirm your new email address",
}


class Message(NamedTuple):
    to: str
    subject: str
    html: str


class LogMailer:
    """Writes messages to the log instead of sending them."""

    def __init__(self, keep: int = KEEP_RECENT):
        self.sent: Deque[Message] = deque(maxlen=keep)

    async def send(self, message: Message):
        self.sent.append(message)
        logger.info("Email to %s: %s", message.to, message.subject)


class SmtpMailer:
    def __init__(self, settings: config.Settings):
        self.settings = settings

    def _send_sync(self, message: Message):
        msg = EmailMessage()
        msg["From"] = self.settings.email_from
        msg["To"] = message.to
        msg["Subject"] = message.subject
        msg.set_content("This message requires an HTML-capable mail client.")
        msg.add_alternative(message.html, subtype="html")
        with smtplib.SMTP(self.settings.smtp_host, self.settings.smtp_port, timeout=30) as smtp:
            smtp.starttls()
            if self.settings.smtp_username:
                smtp.login(self.settings.smtp_username, self.settings.smtp_password or "")
            smtp.send_message(msg)

    async def send(self, message: Message):
        await asyncio.to_thread(self._send_sync, message)


def default_mailer(settings: Optional[config.Settings] = None):
    settings = settings or config.get_settings()
    if settings.smtp_host:
        return SmtpMailer(settings)
    return LogMailer()


def render_order_confirmation(order: Order) -> Message:
    html = templates.get_template("order_confirmation.html").render(order=order)
    return Message(order.customer_email, f"Order Confirmation - {order.id}", html)


def render_admin_alert(order: Order, admin_email: str) -> Message:
    html = templates.get_template("admin_order_alert.html").render(order=order)
    return Message(admin_email, f"New Order Received - {order.id}", html)


def render_otp(email: str, code: str, type: str, expires_minutes: int) -> Message:
    html = templates.get_template("otp.html").render(code=code, type=type, expires_minutes=expires_minutes)
    return Message(email, OTP_SUBJECTS.get(type, "Your verification code"), html)


class Notifier:
    def __init__(self, mailer=None, max_attempts: Optional[int] = None, base_delay: float = 1.0):
        settings = config.get_settings()
        self.mailer = mailer or default_mailer(settings)
        self.max_attempts = max_attempts or settings.notify_max_attempts
        self.base_delay = base_delay
        self.queue: "asyncio.Queue[tuple]" = asyncio.Queue()
        self.failed: Deque[Message] = deque(maxlen=KEEP_RECENT)
        self._worker: Optional[asyncio.Task] = None
        self._retries: set = set()

    def enqueue(self, message: Message):
        self.queue.put_nowait((message, 1))

    def order_placed(self, order: Order):
        self.enqueue(render_order_confirmation(order))
        self.enqueue(render_admin_alert(order, config.get_settings().admin_email))

    def otp_issued(self, email: str, code: str, type: str):
        minutes = max(config.get_settings().otp_expiry // 60, 1)
        self.enqueue(render_otp(email, code, type, minutes))

    def start(self):
        if self._worker is None or self._worker.done():
            # a queue is tied to the loop that first waits on it; carry the backlog over
            backlog, self.queue = self.queue, asyncio.Queue()
            while not backlog.empty():
                self.queue.put_nowait(backlog.get_nowait())
            self._worker = asyncio.create_task(self._run())

    async def stop(self, drain_timeout: float = 5.0):
        if self._worker is None:
            return
        try:
            await asyncio.wait_for(self.queue.join(), timeout=drain_timeout)
        except asyncio.TimeoutError:
            logger.warning("Notifier stopped with %d message(s) unsent", self.queue.qsize())
        if self._retries:
            logger.warning("Notifier stopped with %d retry(ies) pending", len(self._retries))
        for task in list(self._retries):
            task.cancel()
        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:
            pass
        self._worker = None

    async def deliver(self, message: Message, attempt: int) -> bool:
        """Try to send once. Returns False when the message should be retried."""
        try:
            await self.mailer.send(message)
            return True
        except Exception as e:
            if attempt >= self.max_attempts:
                logger.error("Giving up on email to %s (%s) after %d attempts: %s",
                             message.to, message.subject, attempt, e)
                self.failed.append(message)
                return True
            logger.warning("Email to %s failed (attempt %d/%d): %s", message.to, attempt, self.max_attempts, e)
            return False

    async def _retry_later(self, message: Message, attempt: int):
        await asyncio.sleep(self.base_delay * 2 ** (attempt - 1))
        self.queue.put_nowait((message, attempt + 1))

    async def _run(self):
        while True:
            message, attempt = await self.queue.get()
            try:
                if not await self.deliver(message, attempt):
                    task = asyncio.create_task(self._retry_later(message, attempt))
                    self._retries.add(task)
                    task.add_done_callback(self._retries.discard)
            finally:
                self.queue.task_done()
