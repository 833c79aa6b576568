from pydantic import BaseModel, EmailStr, Field, field_validator


class VerificationRequest(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    event_date: str = Field(min_length=1, max_length=64)
    organizer_email: EmailStr

    @field_validator("name", "event_date")
    @classmethod
    def _strip(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("must not be blank")
        return normalized


class VerificationRequested(BaseModel):
    verification_id: str


class VerifyCodeRequest(BaseModel):
    verification_id: str = Field(min_length=1, max_length=64)
    code: str = Field(min_length=1, max_length=16)

    @field_validator("code")
    @classmethod
    def _code_strip(cls, value: str) -> str:
        return value.strip()


class VerifyCodeResponse(BaseModel):
    success: bool
    game_id: str | None = None
    admin_token: str | None = None
    error: str | None = None
    attempts_remaining: int | None = None


class ResendVerificationRequest(BaseModel):
    verification_id: str = Field(min_length=1, max_length=64)


class ResendVerificationResponse(BaseModel):
    success: bool
    error: str | None = None
