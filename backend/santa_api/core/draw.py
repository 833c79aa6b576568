"""Draw coordination.

The draw runs in two phases:

1. One write-locked transaction reads the game and its participants, checks
   the preconditions, generates the assignment and stores it together with
   the ``drawn`` flag. A concurrent draw for the same game blocks on the lock
   and then sees ``drawn = true``.
2. After the commit, participants and the organizer are notified. This phase
   never fails the draw: errors are logged and counted. It runs in its own
   task so that a caller who goes away does not cut it short.
"""
import asyncio
import logging
import random
from dataclasses import dataclass, field

from santa_api.core.errors import AlreadyDrawn, InsufficientParticipants, NotFound
from santa_api.core.ids import GameId, ParticipantId
from santa_api.core.matching import generate_matches
from santa_api.core.notifier import Notifier
from santa_api.db.repository import Database
from santa_api.models.models import Game, Participant

logger = logging.getLogger("santa.draw")


@dataclass
class NotificationReport:
    sent: int = 0
    failed: int = 0


@dataclass
class DrawOutcome:
    game_id: GameId
    participant_count: int
    sent: int
    failed: int
    matches: dict[ParticipantId, ParticipantId] = field(repr=False)

    @property
    def message(self) -> str:
        if self.failed:
            return (
                f"Draw completed! {self.sent} emails sent, {self.failed} failed. "
                "You can resend them from the admin panel."
            )
        return "Draw completed! Emails were sent to every participant."


class DrawCoordinator:
    def __init__(
        self,
        database: Database,
        notifier: Notifier,
        rng: random.Random | None = None,
    ) -> None:
        self._database = database
        self._notifier = notifier
        self._rng = rng

    async def draw(self, game_id: GameId) -> DrawOutcome:
        async with self._database.begin_transaction() as tx:
            game = await tx.get_game(game_id)
            if game is None:
                raise NotFound("Game not found")
            if game.drawn:
                raise AlreadyDrawn()

            participants = await tx.get_participants(game_id)
            if len(participants) < 2:
                raise InsufficientParticipants()

            matches = generate_matches([ParticipantId(p.id) for p in participants], rng=self._rng)

            await tx.mark_drawn(game_id)
            await tx.write_matches(game_id, matches.items())
            await tx.commit()

        logger.info("Draw committed game_id=%s participants=%d", game_id, len(participants))

        report = await _run_detached(self._notify_all(game, participants))
        return DrawOutcome(
            game_id=game_id,
            participant_count=len(participants),
            sent=report.sent,
            failed=report.failed,
            matches=matches,
        )

    async def _notify_all(self, game: Game, participants: list[Participant]) -> NotificationReport:
        report = await notify_participants(self._notifier, game, participants)
        try:
            await self._notifier.notify_organizer(game, len(participants))
        except Exception:
            logger.exception("Failed to send draw confirmation to organizer game_id=%s", game.id)
        logger.info(
            "Draw notifications finished game_id=%s sent=%d failed=%d",
            game.id,
            report.sent,
            report.failed,
        )
        return report


async def notify_participants(
    notifier: Notifier,
    game: Game,
    participants: list[Participant],
) -> NotificationReport:
    """Send every participant their reveal link; one failure never stops the rest."""
    report = NotificationReport()
    for participant in participants:
        try:
            await notifier.notify_participant(participant, game)
        except Exception:
            logger.exception(
                "Failed to notify participant_id=%s game_id=%s",
                participant.id,
                game.id,
            )
            report.failed += 1
        else:
            report.sent += 1
    return report


_background_tasks: set[asyncio.Task] = set()


async def _run_detached(coro):
    """Run ``coro`` in its own task and wait for it, surviving caller cancellation."""
    task = asyncio.create_task(coro)
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    return await asyncio.shield(task)


async def wait_for_background_tasks() -> None:
    if _background_tasks:
        await asyncio.gather(*_background_tasks, return_exceptions=True)
