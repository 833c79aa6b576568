from datetime import datetime

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator


def _strip_required(value: str) -> str:
    normalized = value.strip()
    if not normalized:
        raise ValueError("must not be blank")
    return normalized


class GameCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    event_date: str = Field(min_length=1, max_length=64)
    organizer_email: EmailStr

    @field_validator("name", "event_date")
    @classmethod
    def _strip(cls, value: str) -> str:
        return _strip_required(value)


class GameCreated(BaseModel):
    game_id: str
    admin_token: str


class GamePublic(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    event_date: str
    organizer_email: str
    created_at: datetime
    drawn: bool


class ParticipantCreate(BaseModel):
    name: str = Field(min_length=1, max_length=120)
    email: EmailStr

    @field_validator("name")
    @classmethod
    def _name_strip(cls, value: str) -> str:
        return _strip_required(value)


class ParticipantCreated(BaseModel):
    participant_id: str


class ParticipantUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=120)
    email: EmailStr | None = None

    @field_validator("name")
    @classmethod
    def _name_strip(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return _strip_required(value)


class ParticipantStatus(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    email: str
    has_viewed: bool


class GameStatus(BaseModel):
    game: GamePublic
    participants: list[ParticipantStatus]


class ActionResponse(BaseModel):
    success: bool
    message: str
    sent: int | None = None
    failed: int | None = None


class RevealResponse(BaseModel):
    game_name: str
    event_date: str
    your_name: str
    matched_name: str
