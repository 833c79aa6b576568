from datetime import timedelta
import logging

from fastapi import APIRouter, Request

from santa_api.api.deps import (
    DatabaseDep,
    DrawCoordinatorDep,
    NotifierDep,
    OrganizerGameDep,
    ParticipantIdPath,
    RepositoryDep,
)
from santa_api.core.audit import AuditAction, audit_game_action
from santa_api.core.config import settings
from santa_api.core.draw import notify_participants
from santa_api.core.errors import BadRequest, NotFound
from santa_api.core.ids import GameId, ParticipantId
from santa_api.core.notifier import Notifier
from santa_api.db.repository import RESEND_BULK, RESEND_INDIVIDUAL, SantaRepository
from santa_api.models.models import Game, Participant, utcnow
from santa_api.schemas.game import (
    ActionResponse,
    GameCreate,
    GameCreated,
    GamePublic,
    GameStatus,
    ParticipantCreate,
    ParticipantCreated,
    ParticipantStatus,
    ParticipantUpdate,
)


router = APIRouter(prefix="/games", tags=["games"])
logger = logging.getLogger("santa.games")


async def send_admin_welcome(notifier: Notifier, game: Game) -> None:
    try:
        await notifier.send_admin_welcome(game)
    except Exception:
        logger.exception("Failed to send admin welcome email game_id=%s", game.id)


@router.post("", response_model=GameCreated)
async def create_game(payload: GameCreate, request: Request, repo: RepositoryDep, notifier: NotifierDep) -> GameCreated:
    game = await repo.create_game(payload.name, payload.event_date, str(payload.organizer_email))
    logger.info("Game created game_id=%s", game.id)
    audit_game_action(AuditAction.GAME_CREATE, request, game.id)
    await send_admin_welcome(notifier, game)
    return GameCreated(game_id=game.id, admin_token=game.admin_token)


@router.get("/{game_id}", response_model=GameStatus)
async def get_game_status(game: OrganizerGameDep, repo: RepositoryDep) -> GameStatus:
    participants = await repo.get_participants_by_game(GameId(game.id))
    return GameStatus(
        game=GamePublic.model_validate(game),
        participants=[ParticipantStatus.model_validate(p) for p in participants],
    )


@router.delete("/{game_id}", response_model=ActionResponse, response_model_exclude_none=True)
async def delete_game(game: OrganizerGameDep, request: Request, repo: RepositoryDep) -> ActionResponse:
    await repo.delete_game(GameId(game.id))
    logger.info("Game deleted by organizer game_id=%s", game.id)
    audit_game_action(AuditAction.GAME_DELETE, request, game.id)
    return ActionResponse(success=True, message="Game deleted")


@router.post("/{game_id}/participants", response_model=ParticipantCreated)
async def add_participant(
    payload: ParticipantCreate,
    game: OrganizerGameDep,
    request: Request,
    repo: RepositoryDep,
    database: DatabaseDep,
) -> ParticipantCreated:
    game_id = GameId(game.id)
    # The drawn check and the insert share the draw's write lock.
    await repo.session.commit()
    async with database.begin_transaction() as tx:
        locked = await tx.get_game(game_id)
        if locked is None:
            raise NotFound("Game not found")
        if locked.drawn:
            raise BadRequest("Cannot add participants after the draw has been held")

        count = await tx.count_participants(game_id)
        if count >= settings.max_participants_per_game:
            raise BadRequest(f"A game can have at most {settings.max_participants_per_game} participants")

        participant = await tx.add_participant(game_id, payload.name, str(payload.email))
        await tx.commit()

    audit_game_action(AuditAction.PARTICIPANT_ADD, request, game.id, {"participant_id": participant.id})
    return ParticipantCreated(participant_id=participant.id)


async def _get_game_participant(repo: SantaRepository, game: Game, participant_id: ParticipantId) -> Participant:
    participant = await repo.get_participant_by_id(participant_id)
    if participant is None:
        raise NotFound("Participant not found")
    if participant.game_id != game.id:
        raise BadRequest("Participant does not belong to this game")
    return participant


@router.patch(
    "/{game_id}/participants/{participant_id}",
    response_model=ActionResponse,
    response_model_exclude_none=True,
)
async def update_participant(
    participant_id: ParticipantIdPath,
    payload: ParticipantUpdate,
    game: OrganizerGameDep,
    request: Request,
    repo: RepositoryDep,
) -> ActionResponse:
    participant = await _get_game_participant(repo, game, participant_id)
    if game.drawn and participant.has_viewed:
        raise BadRequest("Cannot edit a participant who has already seen their match")

    await repo.update_participant(
        participant,
        name=payload.name,
        email=str(payload.email) if payload.email is not None else None,
    )
    audit_game_action(AuditAction.PARTICIPANT_UPDATE, request, game.id, {"participant_id": participant.id})
    return ActionResponse(success=True, message="Participant updated")


@router.post("/{game_id}/draw", response_model=ActionResponse)
async def draw(
    game: OrganizerGameDep,
    request: Request,
    repo: RepositoryDep,
    coordinator: DrawCoordinatorDep,
) -> ActionResponse:
    # End the request session's read transaction before the draw takes the write lock.
    await repo.session.commit()
    try:
        outcome = await coordinator.draw(GameId(game.id))
    except BadRequest as exc:
        audit_game_action(AuditAction.DRAW_REJECTED, request, game.id, {"reason": exc.message}, success=False)
        raise
    audit_game_action(
        AuditAction.DRAW,
        request,
        game.id,
        {"participants": outcome.participant_count, "sent": outcome.sent, "failed": outcome.failed},
    )
    return ActionResponse(success=True, message=outcome.message, sent=outcome.sent, failed=outcome.failed)


@router.post("/{game_id}/resend-all", response_model=ActionResponse)
async def resend_all(
    game: OrganizerGameDep,
    request: Request,
    repo: RepositoryDep,
    notifier: NotifierDep,
) -> ActionResponse:
    if not game.drawn:
        raise BadRequest("The draw has not been held yet. Hold the draw before resending emails.")

    since = utcnow() - timedelta(minutes=settings.resend_cooldown_minutes)
    if await repo.count_recent_bulk_resends(GameId(game.id), since) > 0:
        raise BadRequest("Emails can only be resent to everyone once per hour.")
    if await repo.count_total_bulk_resends(GameId(game.id)) >= settings.resend_lifetime_limit:
        raise BadRequest(f"The limit of {settings.resend_lifetime_limit} bulk resends has been reached.")

    participants = await repo.get_participants_by_game(GameId(game.id))
    report = await notify_participants(notifier, game, participants)
    await repo.record_email_resend(GameId(game.id), None, RESEND_BULK)

    audit_game_action(AuditAction.RESEND_ALL, request, game.id, {"sent": report.sent, "failed": report.failed})
    return ActionResponse(
        success=True,
        message=f"Emails resent: {report.sent} sent, {report.failed} failed",
        sent=report.sent,
        failed=report.failed,
    )


@router.post(
    "/{game_id}/participants/{participant_id}/resend",
    response_model=ActionResponse,
    response_model_exclude_none=True,
)
async def resend_participant(
    participant_id: ParticipantIdPath,
    game: OrganizerGameDep,
    request: Request,
    repo: RepositoryDep,
    notifier: NotifierDep,
) -> ActionResponse:
    if not game.drawn:
        raise BadRequest("The draw has not been held yet.")

    participant = await _get_game_participant(repo, game, participant_id)

    since = utcnow() - timedelta(minutes=settings.resend_cooldown_minutes)
    if await repo.count_recent_participant_resends(ParticipantId(participant.id), since) > 0:
        raise BadRequest("Emails can only be resent to this participant once per hour.")
    if await repo.count_total_participant_resends(ParticipantId(participant.id)) >= settings.resend_lifetime_limit:
        raise BadRequest(f"The limit of {settings.resend_lifetime_limit} resends for this participant has been reached.")

    await notifier.notify_participant(participant, game)
    await repo.record_email_resend(GameId(game.id), ParticipantId(participant.id), RESEND_INDIVIDUAL)

    audit_game_action(AuditAction.RESEND_PARTICIPANT, request, game.id, {"participant_id": participant.id})
    return ActionResponse(success=True, message=f"Email resent to {participant.email}")
