"""Error taxonomy shared by the draw core, the persistence layer and the API.

Every error carries a user-facing message and the HTTP status it maps to.
The API layer renders them as ``{"detail": message}``.
"""


class SantaError(Exception):
    status_code: int = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFound(SantaError):
    status_code = 404


class BadRequest(SantaError):
    status_code = 400


class AlreadyDrawn(BadRequest):
    def __init__(self, message: str = "The draw has already been held for this game") -> None:
        super().__init__(message)


class InsufficientParticipants(BadRequest):
    def __init__(self, message: str = "At least 2 participants are needed to hold the draw") -> None:
        super().__init__(message)


class Unauthorized(SantaError):
    status_code = 401


class Forbidden(SantaError):
    status_code = 403


class RateLimited(SantaError):
    status_code = 429

    def __init__(self, retry_after: int) -> None:
        super().__init__(f"Rate limit exceeded. Try again in {retry_after} seconds.")
        self.retry_after = retry_after


class DerangementUnattainable(SantaError):
    status_code = 500


class PersistenceFailure(SantaError):
    status_code = 500

    def __init__(self, message: str = "Internal server error") -> None:
        super().__init__(message)


class NotificationFailure(SantaError):
    status_code = 500
