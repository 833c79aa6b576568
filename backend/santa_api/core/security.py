from datetime import datetime, timedelta, timezone
import logging
import secrets
from typing import Any
from uuid import uuid4

from jose import JWTError, jwt
from passlib.context import CryptContext

from santa_api.core.config import settings

_dev_logger = logging.getLogger("santa.security")
_insecure_keys = {"CHANGE_ME", "your-secret-key-here-change-in-production", "secret", "jwt_secret", "changeme", ""}

SITE_ADMIN_TOKEN_TYPE = "site_admin"
SITE_ADMIN_SUBJECT = "site-admin"
MIN_PASSWORD_LENGTH = 8

if not settings.jwt_secret_key or settings.jwt_secret_key in _insecure_keys or len(settings.jwt_secret_key) < 32:
    env = getattr(settings, "environment", "local") or "local"
    if env.lower() == "local":
        settings.jwt_secret_key = secrets.token_urlsafe(64)
        _dev_logger.warning("JWT_SECRET_KEY was missing/insecure; generated ephemeral key for local dev")
    else:
        raise RuntimeError("JWT_SECRET_KEY must be set to a secure value (32+ chars) in production")


pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def generate_initial_password() -> str:
    return secrets.token_urlsafe(18)


def create_site_admin_token(expires_delta_minutes: int | None = None) -> tuple[str, datetime]:
    expire_minutes = expires_delta_minutes if expires_delta_minutes is not None else settings.site_admin_session_minutes
    expire = datetime.now(timezone.utc) + timedelta(minutes=expire_minutes)
    to_encode: dict[str, Any] = {
        "sub": SITE_ADMIN_SUBJECT,
        "exp": expire,
        "type": SITE_ADMIN_TOKEN_TYPE,
        "jti": str(uuid4()),
    }
    encoded_jwt = jwt.encode(
        to_encode,
        settings.jwt_secret_key,
        algorithm=settings.jwt_algorithm,
    )
    return encoded_jwt, expire


def _decode_token_raw(token: str) -> dict[str, Any] | None:
    try:
        return jwt.decode(
            token,
            settings.jwt_secret_key,
            algorithms=[settings.jwt_algorithm],
        )
    except JWTError:
        return None


def decode_site_admin_token(token: str) -> dict[str, Any] | None:
    if not token:
        return None
    payload = _decode_token_raw(token)
    if not payload or payload.get("type") != SITE_ADMIN_TOKEN_TYPE:
        return None
    if payload.get("sub") != SITE_ADMIN_SUBJECT:
        return None
    return payload


def generate_verification_code() -> str:
    return f"{secrets.randbelow(1_000_000):06d}"
