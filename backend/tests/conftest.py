import os
import tempfile
import warnings

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import NullPool

# Set environment variables BEFORE importing app modules
_DEFAULT_DB_DIR = tempfile.mkdtemp(prefix="santa-tests-")
os.environ["DATABASE_DSN"] = f"sqlite+aiosqlite:///{_DEFAULT_DB_DIR}/default.db"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["JWT_SECRET_KEY"] = "test-secret-key-32-chars-minimum!!"
os.environ["BASE_URL"] = "http://santa.test"
os.environ["SMTP_HOST"] = ""
os.environ["STAGING_SECRET"] = ""
os.environ["PROXY_SECRET"] = ""
os.environ["SITE_ADMIN_PASSWORD"] = "initial-admin-password"

warnings.filterwarnings("ignore", category=DeprecationWarning)

from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import async_sessionmaker

from santa_api.api.deps import get_notifier, get_session_factory
from santa_api.core.config import settings
from santa_api.core.errors import NotificationFailure
from santa_api.db.session import Base, build_engine
from santa_api.main import app
from santa_api.models import models as models_module


class RecordingNotifier:
    """Notifier double that records every message and fails on request."""

    def __init__(self):
        self.participant_messages = []
        self.organizer_messages = []
        self.verification_codes = []
        self.welcome_messages = []
        self.fail_for_emails: set[str] = set()
        self.fail_organizer = False
        self.fail_verification = False

    async def notify_participant(self, participant, game):
        if participant.email in self.fail_for_emails:
            raise NotificationFailure(f"Failed to send email to {participant.email}")
        self.participant_messages.append(
            {"email": participant.email, "view_token": participant.view_token, "game_id": game.id}
        )

    async def notify_organizer(self, game, participant_count):
        if self.fail_organizer:
            raise NotificationFailure(f"Failed to send email to {game.organizer_email}")
        self.organizer_messages.append({"game_id": game.id, "participant_count": participant_count})

    async def send_verification_code(self, email, game_name, code):
        if self.fail_verification:
            raise NotificationFailure(f"Failed to send email to {email}")
        self.verification_codes.append({"email": email, "game_name": game_name, "code": code})

    async def send_admin_welcome(self, game):
        self.welcome_messages.append({"game_id": game.id, "email": game.organizer_email})


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(scope="session", autouse=True)
def disable_rate_limiting():
    """Disable rate limiting for all tests."""
    original = settings.rate_limit_enabled
    settings.rate_limit_enabled = False
    yield
    settings.rate_limit_enabled = original


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture(autouse=True)
def session_factory(tmp_path, notifier):
    db_path = tmp_path / "santa-test.db"
    _ = models_module
    sync_engine = create_engine(f"sqlite:///{db_path}")
    Base.metadata.create_all(sync_engine)
    with sync_engine.connect() as conn:
        conn.exec_driver_sql("PRAGMA journal_mode=WAL")
    sync_engine.dispose()

    engine = build_engine(f"sqlite+aiosqlite:///{db_path}", poolclass=NullPool)
    factory = async_sessionmaker(bind=engine, expire_on_commit=False, autoflush=False)

    async def override_get_session_factory():
        return factory

    app.dependency_overrides[get_session_factory] = override_get_session_factory
    app.dependency_overrides[get_notifier] = lambda: notifier
    yield factory
    app.dependency_overrides.clear()
    engine.sync_engine.dispose()


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def make_game(client):
    """Create a game over the API and return (game_id, admin_token)."""

    def _make_game(name="Office party", event_date="2026-12-20", organizer_email="organizer@example.com"):
        res = client.post(
            "/api/games",
            json={"name": name, "event_date": event_date, "organizer_email": organizer_email},
        )
        assert res.status_code == 200, res.text
        body = res.json()
        return body["game_id"], body["admin_token"]

    return _make_game


@pytest.fixture
def add_participant(client):
    def _add(game_id, admin_token, name, email=None):
        res = client.post(
            f"/api/games/{game_id}/participants",
            params={"admin_token": admin_token},
            json={"name": name, "email": email or f"{name.lower()}@example.com"},
        )
        assert res.status_code == 200, res.text
        return res.json()["participant_id"]

    return _add
