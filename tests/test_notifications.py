import asyncio
from datetime import datetime, timezone

from storefront.notifications import (
    KEEP_RECENT, LogMailer, Message, Notifier, render_admin_alert, render_order_confirmation, render_otp,
)
from storefront.schemas import Order


class FlakyMailer:
    def __init__(self, failures: int):
        self.failures = failures
        self.attempts = 0
        self.sent = []

    async def send(self, message):
        self.attempts += 1
        if self.attempts <= self.failures:
            raise ConnectionError("smtp unavailable")
        self.sent.append(message)


def sample_order(**overrides) -> Order:
    data = {
        "id": "ORD-1-abcdef12",
        "customer_name": "Ada <b>Lovelace</b>",
        "customer_email": "ada@example.com",
        "customer_phone": "+8801700000000",
        "items": [{"product_id": 1, "product_name": "Windows 11 Pro", "product_image": "/w.png", "price": 400, "quantity": 2}],
        "total": 800,
        "created_at": datetime(2024, 5, 1, 10, 30, tzinfo=timezone.utc),
    }
    data.update(overrides)
    return Order(**data)


async def wait_for(predicate, timeout: float = 2.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        assert asyncio.get_running_loop().time() < deadline, "timed out"
        await asyncio.sleep(0.01)


def test_order_templates_escape_customer_input():
    order = sample_order()
    confirmation = render_order_confirmation(order)
    assert confirmation.to == "ada@example.com"
    assert confirmation.subject == "Order Confirmation - ORD-1-abcdef12"
    assert "Ada &lt;b&gt;Lovelace&lt;/b&gt;" in confirmation.html
    assert "<b>Lovelace</b>" not in confirmation.html
    assert "800.00" in confirmation.html
    assert "2024-05-01 10:30 UTC" in confirmation.html

    alert = render_admin_alert(order, "admin@example.com")
    assert alert.to == "admin@example.com"
    assert "Windows 11 Pro (#1)" in alert.html


def test_otp_template():
    message = render_otp("ada@example.com", "123456", "password_reset", 10)
    assert message.subject == "Reset your password"
    assert "123456" in message.html
    assert "10 minutes" in message.html


async def test_worker_delivers_queued_messages():
    mailer = LogMailer()
    outbox = Notifier(mailer=mailer, base_delay=0)
    outbox.order_placed(sample_order())
    outbox.start()
    await wait_for(lambda: len(mailer.sent) == 2)
    await outbox.stop()
    assert [m.to for m in mailer.sent] == ["ada@example.com", "admin@example.com"]


async def test_failed_send_is_retried():
    mailer = FlakyMailer(failures=2)
    outbox = Notifier(mailer=mailer, max_attempts=3, base_delay=0)
    outbox.start()
    outbox.enqueue(Message("ada@example.com", "Hi", "<p>hi</p>"))
    await wait_for(lambda: mailer.sent)
    await outbox.stop()
    assert mailer.attempts == 3
    assert not outbox.failed


async def test_gives_up_after_max_attempts(caplog):
    mailer = FlakyMailer(failures=10)
    outbox = Notifier(mailer=mailer, max_attempts=2, base_delay=0)
    outbox.start()
    outbox.enqueue(Message("ada@example.com", "Hi", "<p>hi</p>"))
    await wait_for(lambda: outbox.failed)
    await outbox.stop()
    assert mailer.attempts == 2
    assert "Giving up on email to ada@example.com" in caplog.text


async def test_deliver_reports_retry():
    outbox = Notifier(mailer=FlakyMailer(failures=1), max_attempts=3)
    message = Message("ada@example.com", "Hi", "<p>hi</p>")
    assert await outbox.deliver(message, 1) is False
    assert await outbox.deliver(message, 2) is True


async def test_log_mailer_keeps_only_recent_messages():
    mailer = LogMailer(keep=3)
    for i in range(10):
        await mailer.send(Message(f"user{i}@example.com", "Hi", "<p>hi</p>"))
    assert [m.to for m in mailer.sent] == ["user7@example.com", "user8@example.com", "user9@example.com"]
    assert LogMailer().sent.maxlen == KEEP_RECENT


async def test_failed_messages_are_bounded():
    outbox = Notifier(mailer=FlakyMailer(failures=1000), max_attempts=1)
    for i in range(KEEP_RECENT + 5):
        assert await outbox.deliver(Message(f"user{i}@example.com", "Hi", "<p>hi</p>"), 1) is True
    assert len(outbox.failed) == KEEP_RECENT
    assert outbox.failed[-1].to == f"user{KEEP_RECENT + 4}@example.com"
