import dataclasses

import pytest

from conftest import add_player
from leaderboard.data_access import PlayerNotFoundError, StaleRatingError
from leaderboard.elo import InvalidGameError
from leaderboard.ratings import (
    RatingModel,
    audit_ratings,
    load_game_history,
    load_standing,
    load_standings,
    match_odds,
    rebuild_stored_ratings,
    submit_game,
)


async def seed(store, model, *names):
    return [await add_player(store, model, name.lower(), name) for name in names]


@pytest.mark.asyncio
async def test_single_win_between_new_players(store, rating_model):
    await seed(store, rating_model, "Alice", "Bob")

    game = await submit_game(store, rating_model, "alice", "bob", "alice")

    standings = await load_standings(store, rating_model)
    assert [s.player.name for s in standings] == ["Alice", "Bob"]
    assert standings[0].rating == pytest.approx(1016)
    assert standings[1].rating == pytest.approx(984)
    assert standings[0].wins == 1
    assert standings[1].losses == 1
    assert game.snapshot.player_a_before == 1000
    assert game.snapshot.player_a_after == pytest.approx(1016)


@pytest.mark.asyncio
async def test_both_models_agree_on_a_series():
    from leaderboard.memory_store import InMemoryDataAccess

    results = {"alice": [], "bob": [], "carol": []}
    series = [("alice", "bob", "alice"), ("bob", "carol", None), ("carol", "alice", "carol"), ("alice", "bob", "bob")]

    for model in RatingModel:
        store = InMemoryDataAccess()
        await seed(store, model, "Alice", "Bob", "Carol")
        for a, b, winner in series:
            await submit_game(store, model, a, b, winner)
        for s in await load_standings(store, model):
            results[s.player.id].append(s.rating)

    for derived, stored in results.values():
        assert derived == pytest.approx(stored)


@pytest.mark.asyncio
async def test_ties_in_standings_are_ordered_by_name(store, rating_model):
    await seed(store, rating_model, "bob", "Alice")
    standings = await load_standings(store, rating_model)
    assert [s.player.name for s in standings] == ["Alice", "bob"]


@pytest.mark.asyncio
async def test_self_game_is_rejected_before_any_write(store, rating_model):
    await seed(store, rating_model, "Alice")
    with pytest.raises(InvalidGameError):
        await submit_game(store, rating_model, "alice", "alice", None)
    assert store.games == []


@pytest.mark.asyncio
async def test_unknown_player_is_rejected(store, rating_model):
    await seed(store, rating_model, "Alice")
    with pytest.raises(PlayerNotFoundError):
        await submit_game(store, rating_model, "alice", "ghost", "alice")
    with pytest.raises(PlayerNotFoundError):
        await load_standing(store, rating_model, "ghost")


@pytest.mark.asyncio
async def test_stale_version_records_nothing(store):
    alice, bob = await seed(store, RatingModel.STORED, "Alice", "Bob")
    await submit_game(store, RatingModel.STORED, "alice", "bob", "alice")

    # alice and bob still carry version 0
    with pytest.raises(StaleRatingError):
        await store.record_stored_game(alice, bob, None, 1000, 1000)

    assert len(store.games) == 1
    assert store.players["alice"].version == 1
    assert store.players["alice"].rating == pytest.approx(1016)


@pytest.mark.asyncio
async def test_history_is_newest_first(store, rating_model):
    await seed(store, rating_model, "Alice", "Bob", "Carol")
    await submit_game(store, rating_model, "alice", "bob", "alice")
    await submit_game(store, rating_model, "bob", "carol", None)
    await submit_game(store, rating_model, "carol", "alice", "alice")

    history = await load_game_history(store, rating_model)
    assert [e.game.game.id for e in history] == [3, 2, 1]
    assert history[-1].player_a_before == 1000
    assert history[-1].player_a_after == pytest.approx(1016)
    assert history[0].game.winner.name == "Alice"
    assert history[1].game.winner is None

    latest = await load_game_history(store, rating_model, limit=2)
    assert [e.game.game.id for e in latest] == [3, 2]


@pytest.mark.asyncio
async def test_audit_is_clean_after_normal_play(store, rating_model):
    await seed(store, rating_model, "Alice", "Bob", "Carol")
    await submit_game(store, rating_model, "alice", "bob", "alice")
    await submit_game(store, rating_model, "carol", "bob", "bob")

    assert await audit_ratings(store, rating_model) == []


@pytest.mark.asyncio
async def test_audit_finds_and_rebuild_repairs_a_tampered_rating(store):
    await seed(store, RatingModel.STORED, "Alice", "Bob")
    await submit_game(store, RatingModel.STORED, "alice", "bob", "alice")
    store.players["bob"] = dataclasses.replace(store.players["bob"], rating=1200.0, wins=3)

    found = await audit_ratings(store, RatingModel.STORED)
    assert len(found) == 1
    assert found[0].kind == "stored_rating"
    assert found[0].subject_id == "bob"
    assert found[0].expected == pytest.approx(984)
    assert found[0].recorded == 1200.0

    ratings = await rebuild_stored_ratings(store)
    assert ratings["bob"] == pytest.approx(984)
    assert store.players["bob"].wins == 0
    assert store.players["bob"].losses == 1
    assert await audit_ratings(store, RatingModel.STORED) == []


@pytest.mark.asyncio
async def test_audit_finds_a_tampered_snapshot(store):
    await seed(store, RatingModel.DERIVED, "Alice", "Bob")
    game = await submit_game(store, RatingModel.DERIVED, "alice", "bob", "bob")
    bad = dataclasses.replace(game.snapshot, player_b_after=2000.0)
    store.games[0] = dataclasses.replace(game, snapshot=bad)

    found = await audit_ratings(store, RatingModel.DERIVED)
    assert [(d.kind, d.subject_id) for d in found] == [("game_snapshot", str(game.id))]


@pytest.mark.asyncio
async def test_odds_between_equal_players(store, rating_model):
    await seed(store, rating_model, "Alice", "Bob")
    odds = await match_odds(store, rating_model, "alice", "bob")

    assert odds.expected_a == 0.5
    assert odds.expected_b == 0.5
    assert odds.a_gains_on_win == pytest.approx(16)
    assert odds.a_gains_on_draw == 0
    assert odds.a_gains_on_loss == pytest.approx(-16)


@pytest.mark.asyncio
async def test_odds_follow_current_ratings(store, rating_model):
    await seed(store, rating_model, "Alice", "Bob")
    await submit_game(store, rating_model, "alice", "bob", "alice")
    odds = await match_odds(store, rating_model, "alice", "bob")

    assert odds.rating_a == pytest.approx(1016)
    assert odds.expected_a > 0.5
    assert odds.a_gains_on_win < 16
    assert odds.a_gains_on_draw < 0


@pytest.mark.asyncio
async def test_rebuild_with_a_stale_player_changes_nothing(store):
    await seed(store, RatingModel.STORED, "Alice", "Bob")
    await submit_game(store, RatingModel.STORED, "alice", "bob", "alice")
    store.players["alice"] = dataclasses.replace(store.players["alice"], rating=1500.0)
    listed = await store.list_players()

    # bob moves on after the players were read
    await store.update_player_rating("bob", 5000.0, expected_version=1)

    with pytest.raises(StaleRatingError):
        await store.rebuild_ratings(listed, {"alice": 1016.0, "bob": 984.0}, {})

    assert store.players["alice"].rating == 1500.0
    assert store.players["alice"].version == 1
    assert store.players["bob"].rating == 5000.0
