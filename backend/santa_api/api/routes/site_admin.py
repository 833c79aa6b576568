import logging

from fastapi import APIRouter, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from santa_api.api.deps import GameIdPath, RepositoryDep, SiteAdminDep
from santa_api.core.audit import AuditAction, audit_log, audit_site_admin_login
from santa_api.core.config import settings
from santa_api.core.errors import BadRequest, NotFound, Unauthorized
from santa_api.core.ids import GameId
from santa_api.core.security import (
    MIN_PASSWORD_LENGTH,
    create_site_admin_token,
    generate_initial_password,
    get_password_hash,
    verify_password,
)
from santa_api.db.repository import SantaRepository
from santa_api.schemas.game import ActionResponse
from santa_api.schemas.site_admin import (
    ChangePasswordRequest,
    GameDetail,
    GameDetailResponse,
    GameSummary,
    ParticipantDetail,
    SearchGamesResponse,
    SiteAdminLoginRequest,
    SiteAdminLoginResponse,
)


router = APIRouter(prefix="/site-admin", tags=["site-admin"])
logger = logging.getLogger("santa.site_admin")

MAX_PAGE_SIZE = 100


async def init_site_admin_password(session_factory: async_sessionmaker[AsyncSession]) -> None:
    """Store the initial site admin password hash if none exists yet."""
    async with session_factory() as session:
        repo = SantaRepository(session)
        if await repo.get_site_admin_credential() is not None:
            return
        password = settings.site_admin_password
        if not password:
            password = generate_initial_password()
            logger.warning("SITE_ADMIN_PASSWORD not set; generated initial site admin password: %s", password)
        await repo.set_site_admin_password_hash(get_password_hash(password))
        logger.info("Site admin password initialized")


async def _check_password(repo: SantaRepository, password: str) -> bool:
    credential = await repo.get_site_admin_credential()
    if credential is None:
        return False
    return verify_password(password, credential.password_hash)


@router.post("/login", response_model=SiteAdminLoginResponse)
async def login(payload: SiteAdminLoginRequest, request: Request, repo: RepositoryDep) -> SiteAdminLoginResponse:
    if not await _check_password(repo, payload.password):
        logger.warning("Failed site admin login attempt")
        audit_site_admin_login(request, success=False)
        raise Unauthorized("Incorrect password")

    token, expires_at = create_site_admin_token()
    logger.info("Site admin logged in")
    audit_site_admin_login(request, success=True)
    return SiteAdminLoginResponse(session_token=token, expires_at=expires_at)


@router.post("/change-password", response_model=ActionResponse, response_model_exclude_none=True)
async def change_password(
    payload: ChangePasswordRequest,
    request: Request,
    _admin: SiteAdminDep,
    repo: RepositoryDep,
) -> ActionResponse:
    if not payload.new_password:
        raise BadRequest("New password must not be empty")
    if len(payload.new_password) < MIN_PASSWORD_LENGTH:
        raise BadRequest(f"New password must be at least {MIN_PASSWORD_LENGTH} characters")

    if not await _check_password(repo, payload.current_password):
        audit_log(AuditAction.SITE_ADMIN_PASSWORD_CHANGE, request=request, success=False)
        raise Unauthorized("Current password is incorrect")

    await repo.set_site_admin_password_hash(get_password_hash(payload.new_password))
    audit_log(AuditAction.SITE_ADMIN_PASSWORD_CHANGE, request=request)
    return ActionResponse(success=True, message="Password changed")


@router.get("/games", response_model=SearchGamesResponse)
async def search_games(
    _admin: SiteAdminDep,
    repo: RepositoryDep,
    search: str | None = Query(default=None, max_length=200),
    limit: int = Query(default=20),
    offset: int = Query(default=0),
) -> SearchGamesResponse:
    limit = min(max(limit, 1), MAX_PAGE_SIZE)
    offset = max(offset, 0)

    games = await repo.search_games(search, limit, offset)
    total = await repo.count_games(search)

    summaries = []
    for game in games:
        count = await repo.count_participants_in_game(GameId(game.id))
        summaries.append(
            GameSummary(
                id=game.id,
                name=game.name,
                event_date=game.event_date,
                organizer_email=game.organizer_email,
                created_at=game.created_at,
                drawn=game.drawn,
                participant_count=count,
            )
        )
    return SearchGamesResponse(games=summaries, total=total, limit=limit, offset=offset)


@router.get("/games/{game_id}", response_model=GameDetailResponse)
async def get_game(game_id: GameIdPath, _admin: SiteAdminDep, repo: RepositoryDep) -> GameDetailResponse:
    game = await repo.get_game_by_id(game_id)
    if game is None:
        raise NotFound("Game not found")
    participants = await repo.get_participants_by_game(GameId(game.id))
    return GameDetailResponse(
        game=GameDetail.model_validate(game),
        participants=[ParticipantDetail.model_validate(p) for p in participants],
        participant_count=len(participants),
    )


@router.delete("/games/{game_id}", response_model=ActionResponse, response_model_exclude_none=True)
async def delete_game(
    game_id: GameIdPath,
    request: Request,
    _admin: SiteAdminDep,
    repo: RepositoryDep,
) -> ActionResponse:
    game = await repo.get_game_by_id(game_id)
    if game is None:
        raise NotFound("Game not found")

    await repo.delete_game(GameId(game.id))
    logger.info("Site admin deleted game game_id=%s name=%r organizer=%s", game.id, game.name, game.organizer_email)
    audit_log(AuditAction.SITE_ADMIN_GAME_DELETE, request=request, game_id=game.id)
    return ActionResponse(success=True, message="Game deleted")
