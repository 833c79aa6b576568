import pytest

from santa_api.core.ids import (
    TOKEN_LENGTH,
    is_token_shaped,
    new_admin_token,
    new_game_id,
    new_view_token,
    parse_admin_token,
    parse_game_id,
    parse_participant_id,
    parse_view_token,
    tokens_match,
)


def test_new_ids_are_hex():
    game_id = new_game_id()
    assert len(game_id) == 32
    int(game_id, 16)
    assert new_game_id() != game_id


def test_tokens_are_alphanumeric():
    token = new_admin_token()
    assert len(token) == TOKEN_LENGTH
    assert token.isalnum()
    assert new_view_token() != new_view_token()


def test_parse_game_id_normalizes():
    raw = "0F3C2B1A0F3C2B1A0F3C2B1A0F3C2B1A"
    assert parse_game_id(raw) == raw.lower()


@pytest.mark.parametrize("raw", ["", "xyz", "1234", "g" * 32])
def test_parse_game_id_rejects_garbage(raw):
    with pytest.raises(ValueError):
        parse_game_id(raw)


def test_parse_tokens():
    token = new_view_token()
    assert parse_view_token(token) == token
    with pytest.raises(ValueError):
        parse_admin_token("short")
    with pytest.raises(ValueError):
        parse_view_token("!" * TOKEN_LENGTH)
    assert not is_token_shaped(None)


def test_tokens_match():
    token = new_admin_token()
    assert tokens_match(token, token)
    assert not tokens_match(token, new_admin_token())
    assert not tokens_match(token, None)
    assert not tokens_match(token, "")


def test_parse_participant_id():
    raw = new_game_id()
    assert parse_participant_id(raw.upper()) == raw
    with pytest.raises(ValueError):
        parse_participant_id("not-an-id")
