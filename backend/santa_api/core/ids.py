"""Typed identifiers and unguessable tokens.

Ids and tokens are plain strings in the database, but each kind gets its own
``NewType`` so a type checker refuses to pass a view token where an admin
token is expected. Values coming from the outside go through the ``parse_*``
constructors.
"""
import re
import secrets
import string
from typing import NewType
from uuid import UUID, uuid4

GameId = NewType("GameId", str)
ParticipantId = NewType("ParticipantId", str)
VerificationId = NewType("VerificationId", str)
AdminToken = NewType("AdminToken", str)
ViewToken = NewType("ViewToken", str)

TOKEN_LENGTH = 32
_TOKEN_ALPHABET = string.ascii_letters + string.digits
_TOKEN_RE = re.compile(rf"^[A-Za-z0-9]{{{TOKEN_LENGTH}}}$")

ID_PATTERN = r"^[0-9a-f]{32}$"


def _new_id() -> str:
    return uuid4().hex


def new_game_id() -> GameId:
    return GameId(_new_id())


def new_participant_id() -> ParticipantId:
    return ParticipantId(_new_id())


def new_verification_id() -> VerificationId:
    return VerificationId(_new_id())


def generate_token() -> str:
    return "".join(secrets.choice(_TOKEN_ALPHABET) for _ in range(TOKEN_LENGTH))


def new_admin_token() -> AdminToken:
    return AdminToken(generate_token())


def new_view_token() -> ViewToken:
    return ViewToken(generate_token())


def _parse_id(raw: str, kind: str) -> str:
    try:
        return UUID(hex=raw.strip()).hex
    except (AttributeError, ValueError):
        raise ValueError(f"invalid {kind}: {raw!r}") from None


def parse_game_id(raw: str) -> GameId:
    return GameId(_parse_id(raw, "game id"))


def parse_participant_id(raw: str) -> ParticipantId:
    return ParticipantId(_parse_id(raw, "participant id"))


def parse_verification_id(raw: str) -> VerificationId:
    return VerificationId(_parse_id(raw, "verification id"))


def is_token_shaped(raw: str | None) -> bool:
    return bool(raw) and _TOKEN_RE.match(raw) is not None


def parse_admin_token(raw: str) -> AdminToken:
    if not is_token_shaped(raw):
        raise ValueError("invalid admin token")
    return AdminToken(raw)


def parse_view_token(raw: str) -> ViewToken:
    if not is_token_shaped(raw):
        raise ValueError("invalid view token")
    return ViewToken(raw)


def tokens_match(expected: str, provided: str | None) -> bool:
    if not provided:
        return False
    return secrets.compare_digest(expected.encode(), provided.encode())
