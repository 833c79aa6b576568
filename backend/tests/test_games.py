"""
API tests for organizer endpoints: games, participants and the draw.
"""
from santa_api.core.config import settings
from santa_api.core.draw import DrawCoordinator
from santa_api.db.repository import Database, SantaRepository


def test_create_game_returns_tokens(client, notifier):
    res = client.post(
        "/api/games",
        json={"name": "  Office party ", "event_date": "2026-12-20", "organizer_email": "boss@example.com"},
    )
    assert res.status_code == 200
    body = res.json()
    assert len(body["game_id"]) == 32
    assert len(body["admin_token"]) == 32
    assert notifier.welcome_messages == [{"game_id": body["game_id"], "email": "boss@example.com"}]


def test_create_game_validates_email(client):
    res = client.post(
        "/api/games",
        json={"name": "Party", "event_date": "2026-12-20", "organizer_email": "not-an-email"},
    )
    assert res.status_code == 422


def test_get_game_status(client, make_game, add_participant):
    game_id, admin_token = make_game(name="Office party")
    add_participant(game_id, admin_token, "Alice")
    add_participant(game_id, admin_token, "Bob")

    res = client.get(f"/api/games/{game_id}", params={"admin_token": admin_token})
    assert res.status_code == 200
    body = res.json()
    assert body["game"]["id"] == game_id
    assert body["game"]["name"] == "Office party"
    assert body["game"]["drawn"] is False
    assert "admin_token" not in body["game"]
    assert [p["name"] for p in body["participants"]] == ["Alice", "Bob"]
    assert all(p["has_viewed"] is False for p in body["participants"])
    assert all("view_token" not in p for p in body["participants"])


def test_admin_token_required(client, make_game):
    game_id, _ = make_game()
    res = client.get(f"/api/games/{game_id}")
    assert res.status_code == 401
    assert res.json()["detail"]


def test_wrong_admin_token(client, make_game):
    game_id, _ = make_game()
    _, other_token = make_game(name="Other")
    res = client.get(f"/api/games/{game_id}", params={"admin_token": other_token})
    assert res.status_code == 401


def test_unknown_game(client):
    res = client.get(f"/api/games/{'0' * 32}", params={"admin_token": "x" * 32})
    assert res.status_code == 404
    assert res.json() == {"detail": "Game not found"}


def test_malformed_game_id(client):
    res = client.get("/api/games/not-a-game", params={"admin_token": "x" * 32})
    assert res.status_code == 422


def test_malformed_admin_token(client, make_game):
    game_id, _ = make_game()
    res = client.get(f"/api/games/{game_id}", params={"admin_token": "short"})
    assert res.status_code == 401
    assert res.json() == {"detail": "Invalid admin token for this game"}


def test_draw_via_api(client, notifier, make_game, add_participant):
    game_id, admin_token = make_game()
    for name in ["Alice", "Bob", "Carol", "Dave"]:
        add_participant(game_id, admin_token, name)

    res = client.post(f"/api/games/{game_id}/draw", params={"admin_token": admin_token})
    assert res.status_code == 200
    body = res.json()
    assert body["success"] is True
    assert body["sent"] == 4
    assert body["failed"] == 0
    assert len(notifier.participant_messages) == 4
    assert len(notifier.organizer_messages) == 1

    status = client.get(f"/api/games/{game_id}", params={"admin_token": admin_token}).json()
    assert status["game"]["drawn"] is True


def test_draw_reports_failed_notifications(client, notifier, make_game, add_participant):
    game_id, admin_token = make_game()
    for name in ["Alice", "Bob", "Carol", "Dave"]:
        add_participant(game_id, admin_token, name)
    notifier.fail_for_emails = {"bob@example.com"}

    res = client.post(f"/api/games/{game_id}/draw", params={"admin_token": admin_token})
    assert res.status_code == 200
    body = res.json()
    assert body["success"] is True
    assert body["sent"] == 3
    assert body["failed"] == 1


def test_second_draw_rejected(client, make_game, add_participant):
    game_id, admin_token = make_game()
    add_participant(game_id, admin_token, "Alice")
    add_participant(game_id, admin_token, "Bob")
    assert client.post(f"/api/games/{game_id}/draw", params={"admin_token": admin_token}).status_code == 200

    res = client.post(f"/api/games/{game_id}/draw", params={"admin_token": admin_token})
    assert res.status_code == 400
    assert res.json() == {"detail": "The draw has already been held for this game"}


def test_draw_needs_two_participants(client, make_game, add_participant):
    game_id, admin_token = make_game()
    add_participant(game_id, admin_token, "Alice")

    res = client.post(f"/api/games/{game_id}/draw", params={"admin_token": admin_token})
    assert res.status_code == 400
    assert res.json() == {"detail": "At least 2 participants are needed to hold the draw"}


def test_cannot_add_participant_after_draw(client, make_game, add_participant):
    game_id, admin_token = make_game()
    add_participant(game_id, admin_token, "Alice")
    add_participant(game_id, admin_token, "Bob")
    client.post(f"/api/games/{game_id}/draw", params={"admin_token": admin_token})

    res = client.post(
        f"/api/games/{game_id}/participants",
        params={"admin_token": admin_token},
        json={"name": "Late", "email": "late@example.com"},
    )
    assert res.status_code == 400


def test_draw_landing_after_authorization_rejects_new_participant(
    client, session_factory, notifier, make_game, add_participant, monkeypatch
):
    game_id, admin_token = make_game()
    add_participant(game_id, admin_token, "Alice")
    add_participant(game_id, admin_token, "Bob")
    load_game = SantaRepository.get_game_by_id
    outcomes = []

    async def load_then_draw(self, game_id):
        game = await load_game(self, game_id)
        if not outcomes:
            outcomes.append(await DrawCoordinator(Database(session_factory), notifier).draw(game_id))
        return game

    monkeypatch.setattr(SantaRepository, "get_game_by_id", load_then_draw)
    res = client.post(
        f"/api/games/{game_id}/participants",
        params={"admin_token": admin_token},
        json={"name": "Late", "email": "late@example.com"},
    )
    monkeypatch.undo()

    assert res.status_code == 400
    assert res.json() == {"detail": "Cannot add participants after the draw has been held"}
    assert outcomes[0].participant_count == 2
    body = client.get(f"/api/games/{game_id}", params={"admin_token": admin_token}).json()
    assert body["game"]["drawn"] is True
    assert [p["name"] for p in body["participants"]] == ["Alice", "Bob"]

def test_participant_limit(client, make_game, add_participant):
    original = settings.max_participants_per_game
    settings.max_participants_per_game = 2
    try:
        game_id, admin_token = make_game()
        add_participant(game_id, admin_token, "Alice")
        add_participant(game_id, admin_token, "Bob")
        res = client.post(
            f"/api/games/{game_id}/participants",
            params={"admin_token": admin_token},
            json={"name": "Carol", "email": "carol@example.com"},
        )
        assert res.status_code == 400
        assert "at most 2" in res.json()["detail"]
    finally:
        settings.max_participants_per_game = original


def test_update_participant(client, make_game, add_participant):
    game_id, admin_token = make_game()
    participant_id = add_participant(game_id, admin_token, "Alice")

    res = client.patch(
        f"/api/games/{game_id}/participants/{participant_id}",
        params={"admin_token": admin_token},
        json={"name": "Alicia", "email": "alicia@example.com"},
    )
    assert res.status_code == 200
    assert res.json() == {"success": True, "message": "Participant updated"}

    status = client.get(f"/api/games/{game_id}", params={"admin_token": admin_token}).json()
    assert status["participants"][0]["name"] == "Alicia"
    assert status["participants"][0]["email"] == "alicia@example.com"


def test_update_participant_of_other_game(client, make_game, add_participant):
    game_id, admin_token = make_game()
    other_id, other_token = make_game(name="Other")
    foreign_participant = add_participant(other_id, other_token, "Zed")

    res = client.patch(
        f"/api/games/{game_id}/participants/{foreign_participant}",
        params={"admin_token": admin_token},
        json={"name": "Hijack"},
    )
    assert res.status_code == 400


def test_cannot_edit_participant_after_reveal(client, notifier, make_game, add_participant):
    game_id, admin_token = make_game()
    alice = add_participant(game_id, admin_token, "Alice")
    add_participant(game_id, admin_token, "Bob")
    client.post(f"/api/games/{game_id}/draw", params={"admin_token": admin_token})

    alice_token = next(m["view_token"] for m in notifier.participant_messages if m["email"] == "alice@example.com")
    assert client.get(f"/api/reveal/{alice_token}").status_code == 200

    res = client.patch(
        f"/api/games/{game_id}/participants/{alice}",
        params={"admin_token": admin_token},
        json={"email": "new@example.com"},
    )
    assert res.status_code == 400


def test_delete_game(client, make_game, add_participant):
    game_id, admin_token = make_game()
    add_participant(game_id, admin_token, "Alice")

    res = client.delete(f"/api/games/{game_id}", params={"admin_token": admin_token})
    assert res.status_code == 200
    assert res.json()["success"] is True

    res = client.get(f"/api/games/{game_id}", params={"admin_token": admin_token})
    assert res.status_code == 404
