import logging

from fastapi import APIRouter

from santa_api.api.deps import RepositoryDep
from santa_api.core.errors import BadRequest, NotFound, PersistenceFailure
from santa_api.core.ids import GameId, ParticipantId, parse_view_token
from santa_api.schemas.game import RevealResponse


router = APIRouter(prefix="/reveal", tags=["reveal"])
logger = logging.getLogger("santa.reveal")


@router.get("/{view_token}", response_model=RevealResponse)
async def reveal_match(view_token: str, repo: RepositoryDep) -> RevealResponse:
    try:
        token = parse_view_token(view_token)
    except ValueError:
        raise NotFound("Invalid or expired link") from None

    participant = await repo.get_participant_by_view_token(token)
    if participant is None:
        raise NotFound("Invalid or expired link")

    game = await repo.get_game_by_id(GameId(participant.game_id))
    if game is None:
        raise NotFound("Game not found")
    if not game.drawn:
        raise BadRequest("The draw has not been held yet. Wait for the organizer to hold the draw.")

    if participant.matched_with_id is None:
        logger.error("Drawn game without a match game_id=%s participant_id=%s", game.id, participant.id)
        raise PersistenceFailure()
    matched = await repo.get_participant_by_id(ParticipantId(participant.matched_with_id))
    if matched is None:
        logger.error("Matched participant missing game_id=%s participant_id=%s", game.id, participant.id)
        raise PersistenceFailure()

    if not participant.has_viewed:
        await repo.mark_participant_viewed(participant)

    return RevealResponse(
        game_name=game.name,
        event_date=game.event_date,
        your_name=participant.name,
        matched_name=matched.name,
    )
