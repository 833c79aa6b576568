"""
Async-safe email sender and message templates.

smtplib is blocking; every send runs in asyncio.get_running_loop().run_in_executor
so that the FastAPI event loop is never blocked waiting for SMTP. Unlike a
fire-and-forget sender, ``send_email`` reports failures to its caller so the
draw can count delivered and failed notifications.
"""
import asyncio
import html
import logging
import smtplib
from dataclasses import dataclass
from email.message import EmailMessage
from typing import Optional

from santa_api.core.config import settings

logger = logging.getLogger("santa.mailer")

FOOTER = "---\nSecret Santa - gift exchange draw"


@dataclass(frozen=True)
class RenderedEmail:
    subject: str
    text_body: str
    html_body: str


def _get_base_html_template(title: str, content_html: str, button_text: Optional[str] = None, button_link: Optional[str] = None) -> str:
    """
    Base HTML layout for every email.

    ``content_html`` is trusted markup produced by the template functions below,
    which escape user data themselves. The title, button text and link are
    escaped here.
    """
    safe_title = html.escape(title)

    button_html = ""
    if button_text and button_link:
        safe_button_text = html.escape(button_text)
        safe_button_link = html.escape(button_link, quote=True)
        button_html = f'''
        <div style="text-align: center; margin: 30px 0;">
            <a href="{safe_button_link}" style="display: inline-block; padding: 14px 28px; background-color: #b91c1c; color: #ffffff; text-decoration: none; border-radius: 8px; font-weight: 600; font-size: 16px;">
                {safe_button_text}
            </a>
        </div>'''

    return f'''<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>{safe_title}</title>
</head>
<body style="margin: 0; padding: 0; background-color: #f3f4f6; font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, 'Helvetica Neue', Arial, sans-serif;">
    <table role="presentation" width="100%" cellspacing="0" cellpadding="0" style="max-width: 600px; margin: 0 auto; padding: 20px;">
        <tr>
            <td style="background-color: #ffffff; border-radius: 16px; padding: 40px; box-shadow: 0 4px 6px -1px rgba(0, 0, 0, 0.1);">
                <div style="text-align: center; margin-bottom: 30px;">
                    <h1 style="margin: 0; font-size: 28px; color: #b91c1c; font-weight: 700;">
                        🎁 Secret Santa
                    </h1>
                </div>

                <h2 style="margin: 0 0 20px 0; font-size: 22px; color: #1f2937; text-align: center;">
                    {safe_title}
                </h2>

                <div style="color: #4b5563; font-size: 16px; line-height: 1.6;">
                    {content_html}
                </div>

                {button_html}

                <div style="margin-top: 40px; padding-top: 20px; border-top: 1px solid #e5e7eb; text-align: center;">
                    <p style="margin: 0; color: #9ca3af; font-size: 14px;">
                        This is an automatic message from Secret Santa
                    </p>
                </div>
            </td>
        </tr>
    </table>
</body>
</html>'''


def _details_block(rows: list[tuple[str, str]]) -> str:
    items = "".join(
        f'<p style="margin: 0 0 8px 0; color: #6b7280; font-size: 14px;">{html.escape(label)}</p>'
        f'<p style="margin: 0 0 16px 0; font-size: 16px; font-weight: 600; color: #1f2937;">{html.escape(value)}</p>'
        for label, value in rows
    )
    return f'<div style="background-color: #f9fafb; border-radius: 12px; padding: 20px; margin: 20px 0;">{items}</div>'


def participant_email(participant_name: str, game_name: str, event_date: str, reveal_url: str) -> RenderedEmail:
    text_body = (
        f"Hi {participant_name}!\n\n"
        f"You are taking part in the Secret Santa \"{game_name}\"!\n\n"
        f"📅 Event date: {event_date}\n\n"
        "To find out who you are giving a gift to, open the link below:\n"
        f"{reveal_url}\n\n"
        "Keep this email so you can look up your match later if needed.\n\n"
        f"{FOOTER}"
    )
    content = (
        f'<p>Hi <strong>{html.escape(participant_name)}</strong>!</p>'
        "<p>The draw has been held. Your match is waiting for you.</p>"
        + _details_block([("Secret Santa", game_name), ("Event date", event_date)])
        + "<p>Keep this email so you can look up your match later if needed.</p>"
    )
    return RenderedEmail(
        subject=f"🎁 Secret Santa: {game_name}",
        text_body=text_body,
        html_body=_get_base_html_template("Your Secret Santa draw", content, "Reveal my match", reveal_url),
    )


def organizer_email(game_name: str, event_date: str, participant_count: int, admin_url: str) -> RenderedEmail:
    text_body = (
        "Congratulations! The draw was held successfully! 🎉\n\n"
        f"Secret Santa: {game_name}\n"
        f"📅 Event date: {event_date}\n"
        f"👥 Participants: {participant_count}\n\n"
        "Every participant received an email with a link to reveal their match.\n\n"
        "To follow who has already opened their match, go to:\n"
        f"{admin_url}\n\n"
        "⚠️ Keep this email to check the draw status later.\n\n"
        f"{FOOTER}"
    )
    content = (
        "<p>Every participant received an email with a link to reveal their match.</p>"
        + _details_block([
            ("Secret Santa", game_name),
            ("Event date", event_date),
            ("Participants", str(participant_count)),
        ])
        + "<p>Keep this email to check the draw status later.</p>"
    )
    return RenderedEmail(
        subject=f"✅ Draw complete: {game_name}",
        text_body=text_body,
        html_body=_get_base_html_template("The draw was held", content, "Open admin panel", admin_url),
    )


def verification_email(game_name: str, code: str, ttl_minutes: int) -> RenderedEmail:
    text_body = (
        "Verification code - Secret Santa 🎁\n\n"
        f"You are creating the game: {game_name}\n\n"
        "Your verification code is:\n\n"
        f"{code}\n\n"
        f"⏱️ This code expires in {ttl_minutes} minutes.\n\n"
        "Enter this code on the game creation page to continue.\n\n"
        "If you did not request this code, ignore this email.\n\n"
        f"{FOOTER}"
    )
    content = (
        f"<p>You are creating the game <strong>{html.escape(game_name)}</strong>.</p>"
        '<p style="text-align: center; font-size: 32px; letter-spacing: 8px; font-weight: 700; color: #1f2937;">'
        f"{html.escape(code)}</p>"
        f"<p>This code expires in {ttl_minutes} minutes. If you did not request it, ignore this email.</p>"
    )
    return RenderedEmail(
        subject="🔐 Verification code - Secret Santa",
        text_body=text_body,
        html_body=_get_base_html_template("Verification code", content),
    )


def admin_welcome_email(game_name: str, event_date: str, admin_url: str) -> RenderedEmail:
    text_body = (
        "Your game was created successfully! 🎉\n\n"
        f"Secret Santa: {game_name}\n"
        f"📅 Event date: {event_date}\n\n"
        "You can now add participants and hold the draw.\n\n"
        "Open the admin panel:\n"
        f"{admin_url}\n\n"
        "⚠️ Keep this link to manage your game. You will need it to:\n"
        "  • Add participants\n"
        "  • Hold the draw\n"
        "  • Follow who has already viewed their match\n"
        "  • Resend emails\n\n"
        f"{FOOTER}"
    )
    content = (
        "<p>You can now add participants and hold the draw.</p>"
        + _details_block([("Secret Santa", game_name), ("Event date", event_date)])
        + "<p><strong>Keep this link</strong>: it is the only way to manage your game.</p>"
    )
    return RenderedEmail(
        subject=f"🎉 Game created: {game_name}",
        text_body=text_body,
        html_body=_get_base_html_template("Game created", content, "Open admin panel", admin_url),
    )


def _build_message(email: RenderedEmail, to_email: str) -> EmailMessage:
    """Build a plain-text message with an HTML alternative."""
    msg = EmailMessage()
    msg["Subject"] = email.subject
    msg["From"] = settings.smtp_from_email
    msg["To"] = to_email
    msg.set_content(email.text_body)
    msg.add_alternative(email.html_body, subtype="html")
    return msg


def _send_sync(msg: EmailMessage) -> None:
    """Blocking SMTP send – must be run in an executor."""
    timeout = settings.smtp_timeout_seconds
    if settings.smtp_use_tls:
        with smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=timeout) as server:
            server.starttls()
            if settings.smtp_username:
                server.login(settings.smtp_username, settings.smtp_password)
            server.send_message(msg)
    else:
        with smtplib.SMTP_SSL(settings.smtp_host, settings.smtp_port, timeout=timeout) as server:
            if settings.smtp_username:
                server.login(settings.smtp_username, settings.smtp_password)
            server.send_message(msg)


async def send_email(to_email: str, email: RenderedEmail) -> bool:
    """Send one email without blocking the event loop.

    Returns False when delivery is switched off (no SMTP host or notifications
    disabled). SMTP and connection errors propagate to the caller.
    """
    if not settings.smtp_host:
        logger.info("SMTP not configured – skipping send to %s (subject: %s)", to_email, email.subject)
        return False
    if not settings.email_notifications_enabled:
        logger.info("Email notifications disabled. Skipping email to %s: %s", to_email, email.subject)
        return False

    msg = _build_message(email, to_email)
    loop = asyncio.get_running_loop()
    await loop.run_in_executor(None, _send_sync, msg)
    logger.info("Email sent to %s subject=%r", to_email, email.subject)
    return True
