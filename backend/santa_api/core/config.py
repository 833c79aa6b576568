import json
import os

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    app_name: str = "Secret Santa API"
    base_url: str = "http://localhost:3000"
    environment: str = "local"
    backend_cors_origins_raw: str = ""  # Comma-separated or JSON array

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "allow",
    }

    @property
    def backend_cors_origins(self) -> list[str]:
        """Parse CORS origins from raw string."""
        raw = os.getenv("BACKEND_CORS_ORIGINS", self.backend_cors_origins_raw).strip()
        if not raw:
            return ["*"]
        if raw.startswith("["):
            try:
                parsed = json.loads(raw)
                if isinstance(parsed, list):
                    return [str(item).strip() for item in parsed if str(item).strip()]
            except ValueError:
                pass
        return [item.strip() for item in raw.split(",") if item.strip()]

    # Database: sqlite+aiosqlite:///./secret_santa.db (dev) | postgresql+asyncpg://... (prod)
    database_dsn: str = "sqlite+aiosqlite:///./secret_santa.db"
    sqlite_busy_timeout_seconds: int = 30

    # SECURITY: override via JWT_SECRET_KEY env var; app refuses to start with default outside local
    jwt_secret_key: str = "CHANGE_ME"
    jwt_algorithm: str = "HS256"
    site_admin_session_minutes: int = 60 * 24
    site_admin_password: str = ""

    # SMTP settings (optional)
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_username: str = ""
    smtp_password: str = ""
    smtp_from_email: str = "noreply@secret-santa.local"
    smtp_use_tls: bool = True
    smtp_timeout_seconds: int = 15
    email_notifications_enabled: bool = True

    rate_limit_enabled: bool = True
    rate_limit_requests: int = 60
    rate_limit_window_seconds: int = 60
    rate_limit_retention_seconds: int = 300

    # Shared-secret gates injected by the fronting proxy; empty disables the gate
    staging_secret: str = ""
    proxy_secret: str = ""

    max_participants_per_game: int = 100
    verification_code_ttl_minutes: int = 15
    verification_max_attempts: int = 5
    verification_requests_per_hour: int = 3
    resend_cooldown_minutes: int = 60
    resend_lifetime_limit: int = 3

    cleanup_interval_seconds: int = 3600
    cleanup_stagger_seconds: int = 5
    game_retention_days: int = 180

    log_level: str = "INFO"
    log_file: str = ""

    def validate_secrets(self) -> None:
        """Refuse to start with insecure defaults."""
        if self.jwt_secret_key == "CHANGE_ME":
            raise RuntimeError(
                "JWT_SECRET_KEY is still the default 'CHANGE_ME'. "
                "Set a strong random secret via the JWT_SECRET_KEY environment variable."
            )
        if len(self.jwt_secret_key) < 32:
            raise RuntimeError(
                f"JWT_SECRET_KEY is too short ({len(self.jwt_secret_key)} chars). "
                "Minimum 32 characters required."
            )


settings = Settings()
