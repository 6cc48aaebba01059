import dataclasses
import math

import pytest

from conftest import add_player, auth_header
from leaderboard.data_access import PersistenceError
from leaderboard.ratings import RatingModel


async def create_profile(client, identity, name):
    response = await client.post("/players/me", json={"name": name}, headers=auth_header(identity))
    assert response.status_code == 200, response.text
    return response.json()


@pytest.mark.asyncio
async def test_health_check(client, rating_model):
    response = await client.get("/")
    assert response.status_code == 200
    assert response.json()["rating_model"] == rating_model.value


@pytest.mark.asyncio
async def test_signup_login_and_me(client):
    response = await client.post("/signup", json={"username": "alice", "password": "secret-pass"})
    assert response.status_code == 200, response.text

    response = await client.post("/token", data={"username": "alice", "password": "secret-pass"})
    assert response.status_code == 200, response.text
    token = response.json()["access_token"]

    response = await client.get("/me", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 200
    body = response.json()
    assert body["username"] == "alice"
    assert body["role"] == "player"
    assert body["player"] is None


@pytest.mark.asyncio
async def test_signup_rejects_taken_and_reserved_names(client):
    payload = {"username": "alice", "password": "secret-pass"}
    assert (await client.post("/signup", json=payload)).status_code == 200
    assert (await client.post("/signup", json=payload)).status_code == 409
    assert (await client.post("/signup", json={"username": "admin", "password": "secret-pass"})).status_code == 409


@pytest.mark.asyncio
async def test_login_with_wrong_password(client):
    await client.post("/signup", json={"username": "alice", "password": "secret-pass"})
    response = await client.post("/token", data={"username": "alice", "password": "wrong-pass"})
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_bad_token_is_rejected(client):
    response = await client.get("/me", headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_submitting_requires_login(client):
    response = await client.post("/games/", json={"player_a_id": "alice", "player_b_id": "bob", "winner_id": "alice"})
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_game_flow_updates_rankings(client):
    await create_profile(client, "alice", "Alice")
    await create_profile(client, "bob", "Bob")

    response = await client.post(
        "/games/",
        json={"player_a_id": "alice", "player_b_id": "bob", "winner_id": "alice"},
        headers=auth_header("alice"),
    )
    assert response.status_code == 200, response.text
    body = response.json()
    assert body["message"] == "Game successfully recorded"
    assert body["player_a_new_rating"] == pytest.approx(1016)
    assert body["player_b_change"] == pytest.approx(-16)

    rankings = (await client.get("/rankings")).json()
    assert [(r["rank"], r["name"], r["rating"]) for r in rankings] == [(1, "Alice", 1016), (2, "Bob", 984)]
    assert rankings[0]["wins"] == 1
    assert rankings[1]["games_played"] == 1

    me = (await client.get("/me", headers=auth_header("bob"))).json()
    assert me["player"]["rating"] == pytest.approx(984)


@pytest.mark.asyncio
async def test_players_endpoints(client, store, rating_model):
    await add_player(store, rating_model, "alice", "Alice")

    players = (await client.get("/players/")).json()
    assert [p["name"] for p in players] == ["Alice"]
    assert players[0]["rating"] == 1000

    assert (await client.get("/players/alice")).json()["games_played"] == 0
    assert (await client.get("/players/ghost")).status_code == 404


@pytest.mark.asyncio
async def test_duplicate_profile_name(client):
    await create_profile(client, "alice", "Alice")
    response = await client.post("/players/me", json={"name": "alice"}, headers=auth_header("other"))
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_blank_profile_name(client):
    response = await client.post("/players/me", json={"name": "   "}, headers=auth_header("alice"))
    assert response.status_code == 422


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload,status",
    [
        ({"player_a_id": "alice", "player_b_id": "alice", "winner_id": "alice"}, 400),
        ({"player_a_id": "alice", "player_b_id": "bob", "winner_id": "carol"}, 400),
        ({"player_a_id": "alice", "player_b_id": "ghost", "winner_id": None}, 404),
    ],
    ids=["self_game", "outside_winner", "unknown_opponent"],
)
async def test_invalid_games_are_rejected(client, store, payload, status):
    await create_profile(client, "alice", "Alice")
    await create_profile(client, "bob", "Bob")

    response = await client.post("/games/", json=payload, headers=auth_header("alice"))
    assert response.status_code == status
    assert store.games == []


@pytest.mark.asyncio
async def test_only_participants_can_submit(client):
    await create_profile(client, "alice", "Alice")
    await create_profile(client, "bob", "Bob")
    await create_profile(client, "carol", "Carol")

    payload = {"player_a_id": "alice", "player_b_id": "bob", "winner_id": "bob"}
    assert (await client.post("/games/", json=payload, headers=auth_header("carol"))).status_code == 403
    assert (await client.post("/games/", json=payload, headers=auth_header("admin", role="admin"))).status_code == 200


@pytest.mark.asyncio
async def test_game_list_shows_scores(client):
    await create_profile(client, "alice", "Alice")
    await create_profile(client, "bob", "Bob")
    for winner in ("alice", None, "alice"):
        await client.post(
            "/games/",
            json={"player_a_id": "bob", "player_b_id": "alice", "winner_id": winner},
            headers=auth_header("alice"),
        )

    games = (await client.get("/games/")).json()
    assert [g["score"] for g in games] == ["0 - 1", "½ - ½", "0 - 1"]
    assert games[-1]["player_a"]["name"] == "Bob"
    assert games[-1]["player_b_rating_before"] == 1000
    assert games[-1]["player_b_rating_after"] == pytest.approx(1016)
    assert games[0]["played_at"]

    assert len((await client.get("/games/", params={"limit": 1})).json()) == 1
    assert (await client.get("/games/", params={"limit": 0})).status_code == 422


@pytest.mark.asyncio
async def test_odds(client):
    await create_profile(client, "alice", "Alice")
    await create_profile(client, "bob", "Bob")

    response = await client.get("/games/odds", params={"player_a_id": "alice", "player_b_id": "bob"})
    assert response.status_code == 200
    body = response.json()
    assert body["player_a_expected_score"] == 0.5
    assert body["player_a_change_on_win"] == pytest.approx(16)
    assert body["player_a_change_on_loss"] == pytest.approx(-16)

    response = await client.get("/games/odds", params={"player_a_id": "alice", "player_b_id": "alice"})
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_audit_is_admin_only(client, rating_model):
    await create_profile(client, "alice", "Alice")
    await create_profile(client, "bob", "Bob")
    await client.post(
        "/games/",
        json={"player_a_id": "alice", "player_b_id": "bob", "winner_id": None},
        headers=auth_header("alice"),
    )

    assert (await client.get("/games/audit", headers=auth_header("alice"))).status_code == 403

    response = await client.get("/games/audit", headers=auth_header("admin", "admin", "admin"))
    assert response.status_code == 200
    assert response.json() == {"rating_model": rating_model.value, "consistent": True, "discrepancies": []}


@pytest.mark.asyncio
async def test_recompute_depends_on_rating_model(client, rating_model):
    await create_profile(client, "alice", "Alice")
    await create_profile(client, "bob", "Bob")
    await client.post(
        "/games/",
        json={"player_a_id": "alice", "player_b_id": "bob", "winner_id": "bob"},
        headers=auth_header("bob"),
    )

    response = await client.post("/players/recompute", headers=auth_header("admin", "admin", "admin"))
    if rating_model is RatingModel.STORED:
        assert response.status_code == 200
        assert response.json()["ratings"] == {"alice": 984, "bob": 1016}
    else:
        assert response.status_code == 400


@pytest.mark.asyncio
@pytest.mark.parametrize("rating_model", [RatingModel.STORED], indirect=True)
async def test_corrupt_stored_rating_is_a_server_error(client, store):
    await create_profile(client, "alice", "Alice")
    await create_profile(client, "bob", "Bob")
    store.players["alice"] = dataclasses.replace(store.players["alice"], rating=math.nan)

    assert (await client.get("/players/alice")).status_code == 500
    response = await client.get("/games/odds", params={"player_a_id": "alice", "player_b_id": "bob"})
    assert response.status_code == 500


@pytest.mark.asyncio
async def test_database_failures_are_server_errors(client, store, monkeypatch):
    async def broken(*args, **kwargs):
        raise PersistenceError("Database error")

    monkeypatch.setattr(store, "list_players", broken)
    monkeypatch.setattr(store, "get_player", broken)

    assert (await client.get("/players/alice")).status_code == 500
    response = await client.get("/games/odds", params={"player_a_id": "alice", "player_b_id": "bob"})
    assert response.status_code == 500
    response = await client.get("/games/audit", headers=auth_header("admin", "admin", "admin"))
    assert response.status_code == 500
