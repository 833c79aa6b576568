"""Notification collaborator used by the draw, resends and verification flow."""
import logging
from typing import Protocol
from urllib.parse import quote, urlencode

from santa_api.core import mailer
from santa_api.core.config import settings
from santa_api.core.errors import NotificationFailure
from santa_api.models.models import Game, Participant

logger = logging.getLogger("santa.notifier")


class Notifier(Protocol):
    async def notify_participant(self, participant: Participant, game: Game) -> None: ...

    async def notify_organizer(self, game: Game, participant_count: int) -> None: ...

    async def send_verification_code(self, email: str, game_name: str, code: str) -> None: ...

    async def send_admin_welcome(self, game: Game) -> None: ...


def reveal_url(view_token: str, base_url: str | None = None) -> str:
    base = (base_url or settings.base_url).rstrip("/")
    return f"{base}/reveal/{quote(view_token, safe='')}"


def admin_url(game_id: str, admin_token: str, base_url: str | None = None) -> str:
    base = (base_url or settings.base_url).rstrip("/")
    return f"{base}/game/{quote(game_id, safe='')}?{urlencode({'admin_token': admin_token})}"


class EmailNotifier:
    """Sends notifications by email; any delivery error becomes NotificationFailure."""

    def __init__(self, base_url: str | None = None) -> None:
        self.base_url = base_url

    async def _deliver(self, to_email: str, email: mailer.RenderedEmail) -> None:
        try:
            await mailer.send_email(to_email, email)
        except Exception as exc:
            logger.error("Failed to send email to %s subject=%r: %s", to_email, email.subject, exc)
            raise NotificationFailure(f"Failed to send email to {to_email}") from exc

    async def notify_participant(self, participant: Participant, game: Game) -> None:
        email = mailer.participant_email(
            participant.name,
            game.name,
            game.event_date,
            reveal_url(participant.view_token, self.base_url),
        )
        await self._deliver(participant.email, email)

    async def notify_organizer(self, game: Game, participant_count: int) -> None:
        email = mailer.organizer_email(
            game.name,
            game.event_date,
            participant_count,
            admin_url(game.id, game.admin_token, self.base_url),
        )
        await self._deliver(game.organizer_email, email)

    async def send_verification_code(self, email: str, game_name: str, code: str) -> None:
        rendered = mailer.verification_email(game_name, code, settings.verification_code_ttl_minutes)
        await self._deliver(email, rendered)

    async def send_admin_welcome(self, game: Game) -> None:
        email = mailer.admin_welcome_email(
            game.name,
            game.event_date,
            admin_url(game.id, game.admin_token, self.base_url),
        )
        await self._deliver(game.organizer_email, email)
