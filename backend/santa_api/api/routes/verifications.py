"""Organizer email verification.

Creating a game through this flow proves the organizer owns the address: a
6-digit code is mailed out and the game is only created once the code comes
back. Codes expire, allow a limited number of attempts and are rate limited
per email address.
"""
from datetime import timedelta
import logging

from fastapi import APIRouter, Request

from santa_api.api.deps import NotifierDep, RepositoryDep
from santa_api.api.routes.games import send_admin_welcome
from santa_api.core.audit import AuditAction, audit_log
from santa_api.core.config import settings
from santa_api.core.errors import BadRequest, NotFound, NotificationFailure
from santa_api.core.ids import parse_verification_id, tokens_match
from santa_api.core.security import generate_verification_code
from santa_api.db.repository import SantaRepository
from santa_api.models.models import EmailVerification, utcnow
from santa_api.schemas.verification import (
    ResendVerificationRequest,
    ResendVerificationResponse,
    VerificationRequest,
    VerificationRequested,
    VerifyCodeRequest,
    VerifyCodeResponse,
)


router = APIRouter(prefix="/verifications", tags=["verifications"])
logger = logging.getLogger("santa.verifications")

TOO_MANY_REQUESTS = "Too many verification requests. Try again in 1 hour."
ALREADY_USED = "This verification has already been used"


async def _too_many_requests(repo: SantaRepository, email: str) -> bool:
    since = utcnow() - timedelta(hours=1)
    recent = await repo.count_recent_verifications_by_email(email, since)
    return recent >= settings.verification_requests_per_hour


async def _get_verification(repo: SantaRepository, raw_id: str) -> EmailVerification:
    try:
        verification_id = parse_verification_id(raw_id)
    except ValueError:
        raise NotFound("Verification not found") from None
    verification = await repo.get_email_verification_by_id(verification_id)
    if verification is None:
        raise NotFound("Verification not found")
    return verification


@router.post("/request", response_model=VerificationRequested)
async def request_verification(
    payload: VerificationRequest,
    request: Request,
    repo: RepositoryDep,
    notifier: NotifierDep,
) -> VerificationRequested:
    email = str(payload.organizer_email)
    if await _too_many_requests(repo, email):
        raise BadRequest(TOO_MANY_REQUESTS)

    verification = await repo.create_email_verification(
        email=email,
        code=generate_verification_code(),
        game_name=payload.name,
        event_date=payload.event_date,
        ttl=timedelta(minutes=settings.verification_code_ttl_minutes),
    )
    audit_log(AuditAction.VERIFICATION_REQUEST, request=request, details={"verification_id": verification.id})

    try:
        await notifier.send_verification_code(email, verification.game_name, verification.code)
    except Exception as exc:
        logger.error("Failed to send verification email verification_id=%s", verification.id)
        raise NotificationFailure("Failed to send the verification email") from exc

    return VerificationRequested(verification_id=verification.id)


@router.post("/verify", response_model=VerifyCodeResponse, response_model_exclude_none=True)
async def verify_code(
    payload: VerifyCodeRequest,
    request: Request,
    repo: RepositoryDep,
    notifier: NotifierDep,
) -> VerifyCodeResponse:
    verification = await _get_verification(repo, payload.verification_id)
    if verification.verified:
        raise BadRequest(ALREADY_USED)

    if verification.is_expired():
        return VerifyCodeResponse(success=False, error="Code expired. Request a new code.")

    max_attempts = settings.verification_max_attempts
    if verification.attempts >= max_attempts:
        return VerifyCodeResponse(
            success=False,
            error="Maximum number of attempts exceeded. Request a new code.",
            attempts_remaining=0,
        )

    if not tokens_match(verification.code, payload.code):
        await repo.increment_verification_attempts(verification)
        remaining = max(max_attempts - verification.attempts, 0)
        audit_log(
            AuditAction.VERIFICATION_FAILED,
            request=request,
            details={"verification_id": verification.id, "attempts_remaining": remaining},
            success=False,
        )
        return VerifyCodeResponse(
            success=False,
            error=f"Incorrect code. {remaining} attempts remaining.",
            attempts_remaining=remaining,
        )

    if not await repo.mark_verification_as_verified(verification):
        raise BadRequest(ALREADY_USED)
    game = await repo.create_game(verification.game_name, verification.event_date, verification.email)
    logger.info("Game created from verification game_id=%s verification_id=%s", game.id, verification.id)
    audit_log(
        AuditAction.VERIFICATION_SUCCESS,
        request=request,
        game_id=game.id,
        details={"verification_id": verification.id},
    )

    await send_admin_welcome(notifier, game)
    return VerifyCodeResponse(success=True, game_id=game.id, admin_token=game.admin_token)


@router.post("/resend", response_model=ResendVerificationResponse, response_model_exclude_none=True)
async def resend_verification(
    payload: ResendVerificationRequest,
    repo: RepositoryDep,
    notifier: NotifierDep,
) -> ResendVerificationResponse:
    verification = await _get_verification(repo, payload.verification_id)
    if verification.verified:
        return ResendVerificationResponse(success=False, error=ALREADY_USED)

    if await _too_many_requests(repo, verification.email):
        return ResendVerificationResponse(success=False, error=TOO_MANY_REQUESTS)

    new_code = generate_verification_code()
    await repo.update_verification_code(
        verification,
        new_code,
        utcnow() + timedelta(minutes=settings.verification_code_ttl_minutes),
    )

    try:
        await notifier.send_verification_code(verification.email, verification.game_name, new_code)
    except Exception:
        logger.exception("Failed to resend verification email verification_id=%s", verification.id)
        return ResendVerificationResponse(success=False, error="Failed to send the verification email")

    return ResendVerificationResponse(success=True)
