import base64
import email
from email import policy
from pathlib import Path

import pytest

import notifications
from catalog import AwningType
from config import Settings
from conftest import FakeResponse, make_image
from errors import NotificationError
from notifications import GmailClient, NotificationDispatcher
from pricing import PriceCalculator


@pytest.fixture
def gmail_calls(monkeypatch):
    calls = []

    def fake_post(url, **kwargs):
        calls.append({"url": url, **kwargs})
        if url == notifications.TOKEN_URL:
            return FakeResponse(200, {"access_token": "tok"})
        return FakeResponse(200, {"id": "msg-1"})

    monkeypatch.setattr(notifications.requests, "post", fake_post)
    return calls


def _dispatcher():
    return NotificationDispatcher(GmailClient("id", "secret", "refresh", "shop@example.com"))


def _sent_message(calls):
    send = [c for c in calls if c["url"] == notifications.SEND_URL][0]
    assert send["headers"]["Authorization"] == "Bearer tok"
    raw = base64.urlsafe_b64decode(send["json"]["raw"])
    return email.message_from_bytes(raw, policy=policy.default)


def test_from_settings_requires_all_credentials():
    assert NotificationDispatcher.from_settings(Settings(gmail_client_id="id")) is None
    full = Settings(
        gmail_client_id="id", gmail_client_secret="s",
        gmail_refresh_token="r", gmail_sender_email="shop@example.com",
    )
    assert isinstance(NotificationDispatcher.from_settings(full), NotificationDispatcher)


def test_start_notification(gmail_calls):
    assert _dispatcher().notify_started("klant@example.com", "Sanne", AwningType.DROP_ARM, with_price=True)

    token_call = gmail_calls[0]
    assert token_call["data"]["grant_type"] == "refresh_token"
    msg = _sent_message(gmail_calls)
    assert msg["To"] == "klant@example.com"
    assert "wordt Gemaakt" in msg["Subject"]
    html = msg.get_body(preferencelist=("html",)).get_content()
    assert "Hallo Sanne!" in html
    assert "Uitvalarm Zonnescherm" in html
    assert "prijsindicatie" in html


def test_completion_notification_embeds_image_and_price(gmail_calls):
    image = make_image(40, 30, fmt="JPEG")
    price = PriceCalculator().calculate(AwningType.FOLDING_ARM, 300, 200, "begane-grond")
    sent = _dispatcher().notify_completed(
        "klant@example.com", None, AwningType.FOLDING_ARM, image, True, 82, price,
    )
    assert sent

    msg = _sent_message(gmail_calls)
    assert "is Klaar" in msg["Subject"]
    html = msg.get_body(preferencelist=("html",)).get_content()
    assert "Hallo daar!" in html
    assert "cid:visualization" in html
    assert "€798.60" in html
    assert "82/100" in html

    inline = [part for part in msg.walk() if part.get_content_type() == "image/jpeg"]
    assert len(inline) == 1
    assert inline[0]["Content-ID"] == "<visualization>"
    assert inline[0].get_content() == image.to_bytes()


def test_completion_without_price_or_goal(gmail_calls):
    _dispatcher().notify_completed(
        "klant@example.com", "Sanne", AwningType.FIXED_CANOPY, make_image(), False, 41,
    )
    msg = _sent_message(gmail_calls)
    assert "Resultaat Beschikbaar" in msg["Subject"]
    html = msg.get_body(preferencelist=("html",)).get_content()
    assert "Prijsindicatie" not in html
    assert "kan worden verbeterd" in html


def test_failures_are_reported_not_raised(monkeypatch):
    monkeypatch.setattr(
        notifications.requests, "post",
        lambda url, **kwargs: FakeResponse(401, {"error": {"message": "invalid_grant"}}),
    )
    assert _dispatcher().notify_started("klant@example.com", None, AwningType.FOLDING_ARM) is False


def test_gmail_client_raises_notification_error(monkeypatch):
    monkeypatch.setattr(
        notifications.requests, "post",
        lambda url, **kwargs: FakeResponse(401, {"error": {"message": "invalid_grant"}}),
    )
    client = GmailClient("id", "secret", "refresh", "shop@example.com")
    with pytest.raises(NotificationError, match="invalid_grant"):
        client.send("klant@example.com", "Hi", "<p>Hi</p>")


def test_templates_ship_with_the_email_templates_package():
    import email_templates

    assert notifications.TEMPLATES_DIR == Path(email_templates.__file__).parent
    for name in ("start.html", "completion.html"):
        assert (notifications.TEMPLATES_DIR / name).is_file()
