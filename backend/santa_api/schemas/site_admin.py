from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from santa_api.schemas.game import GamePublic


class SiteAdminLoginRequest(BaseModel):
    password: str = Field(min_length=1, max_length=128)


class SiteAdminLoginResponse(BaseModel):
    session_token: str
    expires_at: datetime


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(max_length=128)
    new_password: str = Field(max_length=128)


class GameSummary(GamePublic):
    participant_count: int


class SearchGamesResponse(BaseModel):
    games: list[GameSummary]
    total: int
    limit: int
    offset: int


class ParticipantDetail(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    email: str
    matched_with_id: str | None
    view_token: str
    has_viewed: bool
    created_at: datetime


class GameDetail(GamePublic):
    admin_token: str


class GameDetailResponse(BaseModel):
    game: GameDetail
    participants: list[ParticipantDetail]
    participant_count: int
