"""
Tests for resending reveal emails after the draw.
"""
import pytest

from santa_api.core.config import settings


@pytest.fixture
def drawn_game(client, make_game, add_participant):
    game_id, admin_token = make_game()
    ids = {name: add_participant(game_id, admin_token, name) for name in ("Alice", "Bob", "Carol")}
    res = client.post(f"/api/games/{game_id}/draw", params={"admin_token": admin_token})
    assert res.status_code == 200
    return game_id, admin_token, ids


@pytest.fixture
def no_cooldown():
    original = settings.resend_cooldown_minutes
    settings.resend_cooldown_minutes = 0
    yield
    settings.resend_cooldown_minutes = original


def test_resend_all_before_draw(client, make_game, add_participant):
    game_id, admin_token = make_game()
    add_participant(game_id, admin_token, "Alice")
    add_participant(game_id, admin_token, "Bob")

    res = client.post(f"/api/games/{game_id}/resend-all", params={"admin_token": admin_token})
    assert res.status_code == 400


def test_resend_all_sends_everyone(client, notifier, drawn_game):
    game_id, admin_token, _ = drawn_game
    notifier.participant_messages.clear()

    res = client.post(f"/api/games/{game_id}/resend-all", params={"admin_token": admin_token})
    assert res.status_code == 200
    body = res.json()
    assert body["success"] is True
    assert body["sent"] == 3
    assert body["failed"] == 0
    assert len(notifier.participant_messages) == 3


def test_resend_all_counts_failures(client, notifier, drawn_game):
    game_id, admin_token, _ = drawn_game
    notifier.fail_for_emails = {"alice@example.com"}

    res = client.post(f"/api/games/{game_id}/resend-all", params={"admin_token": admin_token})
    assert res.status_code == 200
    assert res.json()["sent"] == 2
    assert res.json()["failed"] == 1


def test_resend_all_once_per_hour(client, drawn_game):
    game_id, admin_token, _ = drawn_game
    assert client.post(f"/api/games/{game_id}/resend-all", params={"admin_token": admin_token}).status_code == 200

    res = client.post(f"/api/games/{game_id}/resend-all", params={"admin_token": admin_token})
    assert res.status_code == 400
    assert "once per hour" in res.json()["detail"]


def test_resend_all_lifetime_limit(client, drawn_game, no_cooldown):
    game_id, admin_token, _ = drawn_game
    for _ in range(settings.resend_lifetime_limit):
        res = client.post(f"/api/games/{game_id}/resend-all", params={"admin_token": admin_token})
        assert res.status_code == 200

    res = client.post(f"/api/games/{game_id}/resend-all", params={"admin_token": admin_token})
    assert res.status_code == 400
    assert "limit" in res.json()["detail"]


def test_resend_participant(client, notifier, drawn_game):
    game_id, admin_token, ids = drawn_game
    notifier.participant_messages.clear()

    res = client.post(
        f"/api/games/{game_id}/participants/{ids['Bob']}/resend",
        params={"admin_token": admin_token},
    )
    assert res.status_code == 200
    assert res.json() == {"success": True, "message": "Email resent to bob@example.com"}
    assert [m["email"] for m in notifier.participant_messages] == ["bob@example.com"]


def test_resend_participant_once_per_hour(client, drawn_game):
    game_id, admin_token, ids = drawn_game
    url = f"/api/games/{game_id}/participants/{ids['Bob']}/resend"
    assert client.post(url, params={"admin_token": admin_token}).status_code == 200
    assert client.post(url, params={"admin_token": admin_token}).status_code == 400

    other = client.post(
        f"/api/games/{game_id}/participants/{ids['Carol']}/resend",
        params={"admin_token": admin_token},
    )
    assert other.status_code == 200


def test_resend_participant_lifetime_limit(client, drawn_game, no_cooldown):
    game_id, admin_token, ids = drawn_game
    url = f"/api/games/{game_id}/participants/{ids['Alice']}/resend"
    for _ in range(settings.resend_lifetime_limit):
        assert client.post(url, params={"admin_token": admin_token}).status_code == 200
    assert client.post(url, params={"admin_token": admin_token}).status_code == 400


def test_resend_participant_send_failure(client, notifier, drawn_game):
    game_id, admin_token, ids = drawn_game
    notifier.fail_for_emails = {"carol@example.com"}

    res = client.post(
        f"/api/games/{game_id}/participants/{ids['Carol']}/resend",
        params={"admin_token": admin_token},
    )
    assert res.status_code == 500

    # A failed send is not recorded, so it can be retried right away.
    notifier.fail_for_emails = set()
    res = client.post(
        f"/api/games/{game_id}/participants/{ids['Carol']}/resend",
        params={"admin_token": admin_token},
    )
    assert res.status_code == 200


def test_resend_unknown_participant(client, drawn_game):
    game_id, admin_token, _ = drawn_game
    res = client.post(
        f"/api/games/{game_id}/participants/{'f' * 32}/resend",
        params={"admin_token": admin_token},
    )
    assert res.status_code == 404
