import logging
import smtplib
from datetime import datetime, timezone

import pytest

import mailer
from schemas import Order, StoreSettings

SMTP_SETTINGS = StoreSettings(storeName="Layer Lab", smtpHost="smtp.mail.com", smtpUser="shop@mail.com", smtpPass="pw")


def make_order(status="pending"):
    return Order(
        id=7,
        customerEmail="buyer@mail.com",
        items=[{"id": 1, "name": "Fox <XL>", "price": "12.50", "quantity": 2}],
        total="25.00",
        status=status,
        date=datetime(2026, 1, 5, tzinfo=timezone.utc),
    )


class FakeSMTP:
    instances = []
    fail_with = None

    def __init__(self, host, port, timeout=None):
        self.host, self.port, self.timeout = host, port, timeout
        self.calls = []
        FakeSMTP.instances.append(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def starttls(self):
        self.calls.append("starttls")

    def login(self, user, password):
        if FakeSMTP.fail_with:
            raise FakeSMTP.fail_with
        self.calls.append(("login", user, password))

    def send_message(self, msg):
        self.calls.append(("send", msg))


@pytest.fixture
def fake_smtp(monkeypatch):
    FakeSMTP.instances = []
    FakeSMTP.fail_with = None
    monkeypatch.setattr(mailer.smtplib, "SMTP", FakeSMTP)
    return FakeSMTP


def test_render_order_confirmation():
    subject, body = mailer.render_order_confirmation(make_order())

    assert subject == "Order Confirmation #7"
    assert "Fox &lt;XL&gt; x2 - $25.00" in body
    assert "Total: $25.00" in body


def test_render_status_update():
    assert mailer.render_status_update(make_order("shipped"))[0] == "Order #7 Shipped!"
    subject, body = mailer.render_status_update(make_order("delivered"))
    assert subject == "Order #7 Delivered!"
    assert ">delivered</strong>" in body


def test_send_skips_when_smtp_incomplete(fake_smtp, caplog):
    with caplog.at_level(logging.WARNING, logger="mailer"):
        sent = mailer.Mailer().send(StoreSettings(smtpHost="smtp.mail.com"), "buyer@mail.com", "Hi", "<p>hi</p>")

    assert sent is False
    assert fake_smtp.instances == []
    assert "SMTP settings incomplete" in caplog.text


def test_send_order_confirmation_over_starttls(fake_smtp):
    assert mailer.Mailer(port=2525, timeout=3).send_order_confirmation(SMTP_SETTINGS, make_order()) is True

    smtp = fake_smtp.instances[0]
    assert (smtp.host, smtp.port, smtp.timeout) == ("smtp.mail.com", 2525, 3)
    assert smtp.calls[0] == "starttls"
    assert smtp.calls[1] == ("login", "shop@mail.com", "pw")
    msg = smtp.calls[2][1]
    assert msg["To"] == "buyer@mail.com"
    assert msg["From"] == "Layer Lab <shop@mail.com>"
    assert msg["Subject"] == "Order Confirmation #7"


def test_send_failure_is_logged_not_raised(fake_smtp, caplog):
    fake_smtp.fail_with = smtplib.SMTPAuthenticationError(535, b"bad credentials")

    with caplog.at_level(logging.ERROR, logger="mailer"):
        sent = mailer.Mailer().send_status_update(SMTP_SETTINGS, make_order("shipped"))

    assert sent is False
    assert "Error sending email to buyer@mail.com" in caplog.text


def test_non_ascii_password_is_logged_not_raised(fake_smtp, caplog):
    settings = SMTP_SETTINGS.model_copy(update={"smtp_pass": "pässwörd"})
    fake_smtp.fail_with = UnicodeEncodeError("ascii", "pässwörd", 1, 2, "ordinal not in range(128)")

    with caplog.at_level(logging.ERROR, logger="mailer"):
        sent = mailer.Mailer().send_order_confirmation(settings, make_order())

    assert sent is False
    assert "Error sending email to buyer@mail.com" in caplog.text


def test_header_with_linefeed_is_not_sent(fake_smtp):
    settings = SMTP_SETTINGS.model_copy(update={"store_name": "Layer\nLab"})

    assert mailer.Mailer().send(settings, "buyer@mail.com", "Hi", "<p>hi</p>") is False
    assert all(not (isinstance(c, tuple) and c[0] == "send") for s in fake_smtp.instances for c in s.calls)


def test_connection_refused_is_swallowed(monkeypatch):
    def refuse(*args, **kwargs):
        raise ConnectionRefusedError("no server")

    monkeypatch.setattr(mailer.smtplib, "SMTP", refuse)
    assert mailer.Mailer().send(SMTP_SETTINGS, "buyer@mail.com", "Hi", "<p>hi</p>") is False
