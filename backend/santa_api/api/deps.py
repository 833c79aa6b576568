from collections.abc import AsyncGenerator
from typing import Annotated
import logging

from fastapi import Depends, Path, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from santa_api.core.draw import DrawCoordinator
from santa_api.core.errors import NotFound, Unauthorized
from santa_api.core.ids import (
    ID_PATTERN,
    GameId,
    ParticipantId,
    parse_admin_token,
    parse_game_id,
    parse_participant_id,
    tokens_match,
)
from santa_api.core.notifier import EmailNotifier, Notifier
from santa_api.core.security import decode_site_admin_token
from santa_api.db.repository import Database, SantaRepository
from santa_api.db.session import async_session_factory, ensure_schema_ready
from santa_api.models.models import Game


logger = logging.getLogger("santa.auth")

_notifier = EmailNotifier()


async def get_session_factory() -> async_sessionmaker[AsyncSession]:
    await ensure_schema_ready()
    return async_session_factory


SessionFactoryDep = Annotated[async_sessionmaker[AsyncSession], Depends(get_session_factory)]


async def get_db(session_factory: SessionFactoryDep) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


DbSessionDep = Annotated[AsyncSession, Depends(get_db)]


def get_repository(db: DbSessionDep) -> SantaRepository:
    return SantaRepository(db)


RepositoryDep = Annotated[SantaRepository, Depends(get_repository)]


def get_notifier() -> Notifier:
    return _notifier


NotifierDep = Annotated[Notifier, Depends(get_notifier)]


def get_database(session_factory: SessionFactoryDep) -> Database:
    return Database(session_factory)


DatabaseDep = Annotated[Database, Depends(get_database)]


def get_draw_coordinator(database: DatabaseDep, notifier: NotifierDep) -> DrawCoordinator:
    return DrawCoordinator(database, notifier)


DrawCoordinatorDep = Annotated[DrawCoordinator, Depends(get_draw_coordinator)]


def get_game_id(game_id: Annotated[str, Path(pattern=ID_PATTERN, description="Game id")]) -> GameId:
    try:
        return parse_game_id(game_id)
    except ValueError:
        raise NotFound("Game not found") from None


GameIdPath = Annotated[GameId, Depends(get_game_id)]


def get_participant_id(
    participant_id: Annotated[str, Path(pattern=ID_PATTERN, description="Participant id")],
) -> ParticipantId:
    try:
        return parse_participant_id(participant_id)
    except ValueError:
        raise NotFound("Participant not found") from None


ParticipantIdPath = Annotated[ParticipantId, Depends(get_participant_id)]


async def get_organizer_game(
    request: Request,
    game_id: GameIdPath,
    repo: RepositoryDep,
    admin_token: str | None = Query(default=None),
) -> Game:
    if not admin_token:
        logger.info("Admin token missing path=%s", request.url.path)
        raise Unauthorized("Admin token is required")

    game = await repo.get_game_by_id(game_id)
    if game is None:
        raise NotFound("Game not found")

    try:
        provided = parse_admin_token(admin_token)
    except ValueError:
        provided = None
    if provided is None or not tokens_match(game.admin_token, provided):
        logger.info(
            "Admin token invalid path=%s ip=%s",
            request.url.path,
            request.client.host if request.client else None,
        )
        raise Unauthorized("Invalid admin token for this game")
    return game


OrganizerGameDep = Annotated[Game, Depends(get_organizer_game)]


async def require_site_admin(request: Request) -> dict:
    auth_header = request.headers.get("Authorization")
    if not auth_header:
        raise Unauthorized("Missing authorization token")
    if not auth_header.startswith("Bearer "):
        raise Unauthorized("Invalid authorization format")

    token = auth_header.removeprefix("Bearer ").strip()
    payload = decode_site_admin_token(token)
    if payload is None:
        logger.info("Site admin token invalid path=%s", request.url.path)
        raise Unauthorized("Invalid or expired token")
    return payload


SiteAdminDep = Annotated[dict, Depends(require_site_admin)]
