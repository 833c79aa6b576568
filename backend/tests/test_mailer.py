"""
Tests for email templates, links and SMTP delivery.
"""
from unittest.mock import MagicMock, patch

import pytest

from santa_api.core import mailer
from santa_api.core.config import settings
from santa_api.core.errors import NotificationFailure
from santa_api.core.notifier import EmailNotifier, admin_url, reveal_url
from santa_api.models.models import Game, Participant


@pytest.fixture
def smtp_settings():
    original = (settings.smtp_host, settings.email_notifications_enabled, settings.smtp_use_tls, settings.smtp_port)
    settings.smtp_host = "smtp.example.com"
    settings.email_notifications_enabled = True
    settings.smtp_use_tls = True
    settings.smtp_port = 587
    yield settings
    settings.smtp_host, settings.email_notifications_enabled, settings.smtp_use_tls, settings.smtp_port = original


def _game():
    return Game(
        id="a" * 32,
        name="Team <Santa>",
        event_date="2026-12-20",
        organizer_email="organizer@example.com",
        admin_token="T" * 32,
        drawn=True,
    )


def _participant():
    return Participant(
        id="b" * 32,
        game_id="a" * 32,
        name="Alice & Co",
        email="alice@example.com",
        view_token="V" * 32,
    )


def test_reveal_url():
    assert reveal_url("V" * 32, "https://santa.example/") == f"https://santa.example/reveal/{'V' * 32}"


def test_admin_url():
    url = admin_url("a" * 32, "T" * 32, "https://santa.example")
    assert url == f"https://santa.example/game/{'a' * 32}?admin_token={'T' * 32}"


def test_participant_email_escapes_html():
    email = mailer.participant_email("<b>Alice</b>", "Team <Santa>", "2026-12-20", "https://santa.example/reveal/x")
    assert "<b>Alice</b>" not in email.html_body
    assert "&lt;b&gt;Alice&lt;/b&gt;" in email.html_body
    assert "Team &lt;Santa&gt;" in email.html_body
    assert "https://santa.example/reveal/x" in email.text_body
    assert "Team <Santa>" in email.subject


def test_organizer_email_mentions_count():
    email = mailer.organizer_email("Office", "2026-12-20", 7, "https://santa.example/game/x?admin_token=y")
    assert "7" in email.text_body
    assert "admin_token=y" in email.text_body


def test_verification_email_contains_code():
    email = mailer.verification_email("Office", "123456", 15)
    assert "123456" in email.text_body
    assert "123456" in email.html_body
    assert "15 minutes" in email.text_body


@pytest.mark.anyio
async def test_send_email_skipped_without_smtp():
    original = settings.smtp_host
    settings.smtp_host = ""
    try:
        sent = await mailer.send_email("x@example.com", mailer.verification_email("G", "123456", 15))
        assert sent is False
    finally:
        settings.smtp_host = original


@pytest.mark.anyio
async def test_send_email_uses_starttls(smtp_settings):
    server = MagicMock()
    with patch("santa_api.core.mailer.smtplib.SMTP") as smtp_cls:
        smtp_cls.return_value.__enter__.return_value = server
        sent = await mailer.send_email("x@example.com", mailer.verification_email("G", "123456", 15))

    assert sent is True
    server.starttls.assert_called_once()
    server.send_message.assert_called_once()
    message = server.send_message.call_args[0][0]
    assert message["To"] == "x@example.com"


@pytest.mark.anyio
async def test_send_email_propagates_smtp_errors(smtp_settings):
    with patch("santa_api.core.mailer.smtplib.SMTP", side_effect=OSError("connection refused")):
        with pytest.raises(OSError):
            await mailer.send_email("x@example.com", mailer.verification_email("G", "123456", 15))


@pytest.mark.anyio
async def test_email_notifier_wraps_failures(smtp_settings):
    notifier = EmailNotifier(base_url="https://santa.example")
    with patch("santa_api.core.mailer.smtplib.SMTP", side_effect=OSError("connection refused")):
        with pytest.raises(NotificationFailure):
            await notifier.notify_participant(_participant(), _game())


@pytest.mark.anyio
async def test_email_notifier_sends_reveal_link(smtp_settings):
    notifier = EmailNotifier(base_url="https://santa.example")
    server = MagicMock()
    with patch("santa_api.core.mailer.smtplib.SMTP") as smtp_cls:
        smtp_cls.return_value.__enter__.return_value = server
        await notifier.notify_participant(_participant(), _game())

    message = server.send_message.call_args[0][0]
    assert message["To"] == "alice@example.com"
    text = message.get_body(preferencelist=("plain",)).get_content()
    assert f"https://santa.example/reveal/{'V' * 32}" in text
