"""Persistence for games, participants and their side tables.

``SantaRepository`` wraps a request-scoped session for plain reads and
writes. ``Database.begin_transaction`` opens the locked transaction used by
the draw and by roster changes, where reading the game and acting on its
``drawn`` flag must happen under one write lock.
"""
import logging
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager
from datetime import datetime, timedelta

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from santa_api.core.errors import AlreadyDrawn, PersistenceFailure
from santa_api.core.ids import GameId, ParticipantId, VerificationId
from santa_api.db.session import SQLITE_IMMEDIATE
from santa_api.models.models import (
    EmailResend,
    EmailVerification,
    Game,
    Participant,
    SiteAdminCredential,
    utcnow,
)

logger = logging.getLogger("santa.db")

RESEND_BULK = "bulk"
RESEND_INDIVIDUAL = "individual"


class DrawTransaction:
    """Operations available inside a write-locked game transaction."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session
        self.committed = False

    async def get_game(self, game_id: GameId) -> Game | None:
        # FOR UPDATE locks the row on PostgreSQL; SQLite already holds the
        # database write lock from BEGIN IMMEDIATE.
        result = await self._session.execute(
            select(Game).where(Game.id == game_id).with_for_update().execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_participants(self, game_id: GameId) -> list[Participant]:
        result = await self._session.execute(
            select(Participant)
            .where(Participant.game_id == game_id)
            .order_by(Participant.created_at.asc(), Participant.id.asc())
        )
        return list(result.scalars().all())

    async def count_participants(self, game_id: GameId) -> int:
        result = await self._session.execute(
            select(func.count()).select_from(Participant).where(Participant.game_id == game_id)
        )
        return int(result.scalar_one())

    async def add_participant(self, game_id: GameId, name: str, email: str) -> Participant:
        participant = Participant(game_id=game_id, name=name, email=email)
        self._session.add(participant)
        await self._session.flush()
        return participant

    async def write_matches(self, game_id: GameId, pairs: Iterable[tuple[str, str]]) -> None:
        for giver_id, receiver_id in pairs:
            result = await self._session.execute(
                update(Participant)
                .where(
                    Participant.id == giver_id,
                    Participant.game_id == game_id,
                    Participant.matched_with_id.is_(None),
                )
                .values(matched_with_id=receiver_id)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                logger.error("Match write touched %s rows game_id=%s giver=%s", result.rowcount, game_id, giver_id)
                raise PersistenceFailure()

    async def mark_drawn(self, game_id: GameId) -> None:
        result = await self._session.execute(
            update(Game)
            .where(Game.id == game_id, Game.drawn.is_(False))
            .values(drawn=True)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise AlreadyDrawn()

    async def commit(self) -> None:
        await self._session.commit()
        self.committed = True

    async def rollback(self) -> None:
        await self._session.rollback()


class Database:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    @asynccontextmanager
    async def begin_transaction(self) -> AsyncIterator[DrawTransaction]:
        """Open a write-locked transaction; it is rolled back unless committed."""
        async with self._session_factory() as session:
            tx = DrawTransaction(session)
            try:
                await session.connection(execution_options={SQLITE_IMMEDIATE: True})
                yield tx
            except SQLAlchemyError as exc:
                await session.rollback()
                logger.exception("Draw transaction failed")
                raise PersistenceFailure() from exc
            except BaseException:
                await session.rollback()
                raise
            if not tx.committed:
                await session.rollback()


class SantaRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    # ── games ────────────────────────────────────────────────────────────────

    async def create_game(self, name: str, event_date: str, organizer_email: str) -> Game:
        game = Game(name=name, event_date=event_date, organizer_email=organizer_email, drawn=False)
        self.session.add(game)
        await self.session.commit()
        return game

    async def get_game_by_id(self, game_id: GameId) -> Game | None:
        result = await self.session.execute(select(Game).where(Game.id == game_id))
        return result.scalar_one_or_none()

    async def get_game_by_admin_token(self, admin_token: str) -> Game | None:
        result = await self.session.execute(select(Game).where(Game.admin_token == admin_token))
        return result.scalar_one_or_none()

    async def delete_game(self, game_id: GameId) -> None:
        await self.session.execute(delete(EmailResend).where(EmailResend.game_id == game_id))
        await self.session.execute(delete(Participant).where(Participant.game_id == game_id))
        await self.session.execute(delete(Game).where(Game.id == game_id))
        await self.session.commit()

    async def search_games(self, search: str | None, limit: int, offset: int) -> list[Game]:
        stmt = select(Game).order_by(Game.created_at.desc(), Game.id.asc()).limit(limit).offset(offset)
        condition = _search_condition(search)
        if condition is not None:
            stmt = stmt.where(condition)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def count_games(self, search: str | None) -> int:
        stmt = select(func.count()).select_from(Game)
        condition = _search_condition(search)
        if condition is not None:
            stmt = stmt.where(condition)
        result = await self.session.execute(stmt)
        return int(result.scalar_one())

    async def cleanup_old_games(self, older_than: datetime) -> int:
        stale = select(Game.id).where(Game.created_at < older_than)
        await self.session.execute(delete(EmailResend).where(EmailResend.game_id.in_(stale)))
        await self.session.execute(delete(Participant).where(Participant.game_id.in_(stale)))
        result = await self.session.execute(delete(Game).where(Game.created_at < older_than))
        await self.session.commit()
        return result.rowcount or 0

    # ── participants ─────────────────────────────────────────────────────────

    async def get_participants_by_game(self, game_id: GameId) -> list[Participant]:
        result = await self.session.execute(
            select(Participant)
            .where(Participant.game_id == game_id)
            .order_by(Participant.created_at.asc(), Participant.id.asc())
        )
        return list(result.scalars().all())

    async def get_participant_by_id(self, participant_id: ParticipantId | str) -> Participant | None:
        result = await self.session.execute(select(Participant).where(Participant.id == participant_id))
        return result.scalar_one_or_none()

    async def get_participant_by_view_token(self, view_token: str) -> Participant | None:
        result = await self.session.execute(select(Participant).where(Participant.view_token == view_token))
        return result.scalar_one_or_none()

    async def mark_participant_viewed(self, participant: Participant) -> None:
        participant.has_viewed = True
        await self.session.commit()

    async def update_participant(
        self,
        participant: Participant,
        name: str | None = None,
        email: str | None = None,
    ) -> Participant:
        if name is not None:
            participant.name = name
        if email is not None:
            participant.email = email
        await self.session.commit()
        return participant

    async def count_participants_in_game(self, game_id: GameId) -> int:
        result = await self.session.execute(
            select(func.count()).select_from(Participant).where(Participant.game_id == game_id)
        )
        return int(result.scalar_one())

    # ── email verification ───────────────────────────────────────────────────

    async def create_email_verification(
        self,
        email: str,
        code: str,
        game_name: str,
        event_date: str,
        ttl: timedelta,
    ) -> EmailVerification:
        now = utcnow()
        verification = EmailVerification(
            email=email,
            code=code,
            game_name=game_name,
            event_date=event_date,
            created_at=now,
            expires_at=now + ttl,
            verified=False,
            attempts=0,
        )
        self.session.add(verification)
        await self.session.commit()
        return verification

    async def get_email_verification_by_id(self, verification_id: VerificationId) -> EmailVerification | None:
        result = await self.session.execute(
            select(EmailVerification).where(EmailVerification.id == verification_id)
        )
        return result.scalar_one_or_none()

    async def increment_verification_attempts(self, verification: EmailVerification) -> int:
        """Count one more attempt in SQL and return the stored total."""
        await self.session.execute(
            update(EmailVerification)
            .where(EmailVerification.id == verification.id)
            .values(attempts=EmailVerification.attempts + 1)
            .execution_options(synchronize_session=False)
        )
        await self.session.refresh(verification, attribute_names=["attempts"])
        await self.session.commit()
        return verification.attempts

    async def mark_verification_as_verified(self, verification: EmailVerification) -> bool:
        """Claim the verification; False when another request already used it."""
        result = await self.session.execute(
            update(EmailVerification)
            .where(EmailVerification.id == verification.id, EmailVerification.verified.is_(False))
            .values(verified=True)
            .execution_options(synchronize_session=False)
        )
        await self.session.refresh(verification, attribute_names=["verified"])
        await self.session.commit()
        return result.rowcount == 1

    async def count_recent_verifications_by_email(self, email: str, since: datetime) -> int:
        result = await self.session.execute(
            select(func.count())
            .select_from(EmailVerification)
            .where(EmailVerification.email == email, EmailVerification.created_at > since)
        )
        return int(result.scalar_one())

    async def update_verification_code(
        self,
        verification: EmailVerification,
        new_code: str,
        new_expires_at: datetime,
    ) -> None:
        verification.code = new_code
        verification.expires_at = new_expires_at
        verification.attempts = 0
        await self.session.commit()

    async def cleanup_expired_verifications(self, now: datetime | None = None) -> int:
        result = await self.session.execute(
            delete(EmailVerification).where(
                EmailVerification.expires_at < (now or utcnow()),
                EmailVerification.verified.is_(False),
            )
        )
        await self.session.commit()
        return result.rowcount or 0

    # ── resend audit ─────────────────────────────────────────────────────────

    async def record_email_resend(
        self,
        game_id: GameId,
        participant_id: ParticipantId | None,
        resend_type: str,
    ) -> None:
        self.session.add(
            EmailResend(game_id=game_id, participant_id=participant_id, resend_type=resend_type)
        )
        await self.session.commit()

    async def _count_resends(self, *conditions) -> int:
        result = await self.session.execute(
            select(func.count()).select_from(EmailResend).where(*conditions)
        )
        return int(result.scalar_one())

    async def count_recent_participant_resends(self, participant_id: ParticipantId, since: datetime) -> int:
        return await self._count_resends(
            EmailResend.participant_id == participant_id,
            EmailResend.resend_type == RESEND_INDIVIDUAL,
            EmailResend.resent_at > since,
        )

    async def count_total_participant_resends(self, participant_id: ParticipantId) -> int:
        return await self._count_resends(
            EmailResend.participant_id == participant_id,
            EmailResend.resend_type == RESEND_INDIVIDUAL,
        )

    async def count_recent_bulk_resends(self, game_id: GameId, since: datetime) -> int:
        return await self._count_resends(
            EmailResend.game_id == game_id,
            EmailResend.resend_type == RESEND_BULK,
            EmailResend.resent_at > since,
        )

    async def count_total_bulk_resends(self, game_id: GameId) -> int:
        return await self._count_resends(
            EmailResend.game_id == game_id,
            EmailResend.resend_type == RESEND_BULK,
        )

    # ── site admin ───────────────────────────────────────────────────────────

    async def get_site_admin_credential(self) -> SiteAdminCredential | None:
        result = await self.session.execute(select(SiteAdminCredential).order_by(SiteAdminCredential.id).limit(1))
        return result.scalar_one_or_none()

    async def set_site_admin_password_hash(self, password_hash: str) -> SiteAdminCredential:
        credential = await self.get_site_admin_credential()
        if credential is None:
            credential = SiteAdminCredential(password_hash=password_hash)
            self.session.add(credential)
        else:
            credential.password_hash = password_hash
        await self.session.commit()
        return credential


def _search_condition(search: str | None):
    term = (search or "").strip()
    if not term:
        return None
    pattern = f"%{term}%"
    return or_(
        Game.name.ilike(pattern),
        Game.organizer_email.ilike(pattern),
        Game.id == term.lower(),
    )
