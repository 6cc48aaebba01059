"""Standings, game submission and audits for the derived and stored rating models."""

import dataclasses
import logging
import os
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from leaderboard.data_access import (
    DataAccess,
    GameWithPlayers,
    PlayerNotFoundError,
    PlayerRecord,
    RatingSnapshot,
)
from leaderboard.elo import (
    check_rating,
    compute_all_ratings,
    compute_game_delta,
    expected_score,
    points_transfer,
    replay,
    validate_game,
)

logger = logging.getLogger(__name__)


class RatingModel(str, Enum):
    DERIVED = "derived"
    STORED = "stored"


RATING_MODEL = RatingModel(os.getenv("RATING_MODEL", RatingModel.DERIVED.value).lower())


def get_rating_model() -> RatingModel:
    return RATING_MODEL


@dataclass(frozen=True)
class Standing:
    player: PlayerRecord
    rating: float
    wins: int
    losses: int
    draws: int
    games_played: int


@dataclass(frozen=True)
class GameEntry:
    game: GameWithPlayers
    player_a_before: Optional[float] = None
    player_a_after: Optional[float] = None
    player_b_before: Optional[float] = None
    player_b_after: Optional[float] = None


@dataclass(frozen=True)
class Discrepancy:
    kind: str  # "game_snapshot" or "stored_rating"
    subject_id: str
    expected: float
    recorded: Optional[float]


@dataclass(frozen=True)
class MatchOdds:
    player_a: PlayerRecord
    player_b: PlayerRecord
    rating_a: float
    rating_b: float
    expected_a: float
    expected_b: float
    a_gains_on_win: float
    a_gains_on_draw: float
    a_gains_on_loss: float


async def load_standings(data: DataAccess, model: RatingModel) -> List[Standing]:
    """Every player with their current rating, best first."""
    players = await data.list_players()

    if model is RatingModel.DERIVED:
        result = replay(players, await data.list_games())
        standings = [
            Standing(
                player=p,
                rating=result.ratings[p.id],
                wins=result.stats[p.id].wins,
                losses=result.stats[p.id].losses,
                draws=result.stats[p.id].draws,
                games_played=result.stats[p.id].games_played,
            )
            for p in players
        ]
    else:
        standings = [
            Standing(
                player=p,
                rating=check_rating(p.rating),
                wins=p.wins,
                losses=p.losses,
                draws=p.draws,
                games_played=p.games_played,
            )
            for p in players
        ]

    standings.sort(key=lambda s: (-s.rating, s.player.name.lower()))
    return standings


async def load_standing(data: DataAccess, model: RatingModel, player_id: str) -> Standing:
    for standing in await load_standings(data, model):
        if standing.player.id == player_id:
            return standing
    raise PlayerNotFoundError(f"Player {player_id} not found.")


async def _require_player(data: DataAccess, player_id: str) -> PlayerRecord:
    player = await data.get_player(player_id)
    if player is None:
        raise PlayerNotFoundError(f"Player {player_id} not found.")
    return player


async def _current_ratings(data: DataAccess, model: RatingModel, *players: PlayerRecord):
    if model is RatingModel.STORED:
        return [check_rating(p.rating) for p in players]
    ratings = compute_all_ratings(await data.list_players(), await data.list_games())
    return [ratings[p.id] for p in players]


async def submit_game(data: DataAccess, model: RatingModel, player_a_id, player_b_id, winner_id=None):
    """Validate, rate and persist one game result."""
    validate_game(player_a_id, player_b_id, winner_id)
    player_a = await _require_player(data, player_a_id)
    player_b = await _require_player(data, player_b_id)

    if model is RatingModel.STORED:
        new_a, new_b = compute_game_delta(player_a, player_b, winner_id)
        game = await data.record_stored_game(player_a, player_b, winner_id, new_a, new_b)
    else:
        rating_a, rating_b = await _current_ratings(data, model, player_a, player_b)
        new_a, new_b = compute_game_delta(
            dataclasses.replace(player_a, rating=rating_a),
            dataclasses.replace(player_b, rating=rating_b),
            winner_id,
        )
        snapshot = RatingSnapshot(
            player_a_before=rating_a,
            player_a_after=new_a,
            player_b_before=rating_b,
            player_b_after=new_b,
        )
        game = await data.insert_game(player_a.id, player_b.id, winner_id, snapshot)

    logger.info(
        f"Game {game.id}: {player_a.name} {new_a - game.snapshot.player_a_before:+.1f}, "
        f"{player_b.name} {new_b - game.snapshot.player_b_before:+.1f}"
    )
    return game


async def load_game_history(data: DataAccess, model: RatingModel, limit: Optional[int] = None) -> List[GameEntry]:
    """Games newest first, with each player's rating before and after."""
    joined = await data.list_games_with_players()

    if model is RatingModel.DERIVED:
        result = replay(await data.list_players(), [j.game for j in joined])
        deltas = {d.game_id: d for d in result.history}
        entries = [
            GameEntry(
                game=j,
                player_a_before=deltas[j.game.id].player_a_before,
                player_a_after=deltas[j.game.id].player_a_after,
                player_b_before=deltas[j.game.id].player_b_before,
                player_b_after=deltas[j.game.id].player_b_after,
            )
            for j in joined
        ]
    else:
        entries = []
        for j in joined:
            snap = j.game.snapshot
            if snap is None:
                entries.append(GameEntry(game=j))
                continue
            entries.append(GameEntry(
                game=j,
                player_a_before=snap.player_a_before,
                player_a_after=snap.player_a_after,
                player_b_before=snap.player_b_before,
                player_b_after=snap.player_b_after,
            ))

    entries.reverse()
    if limit is not None:
        entries = entries[:limit]
    return entries


def _differs(expected, recorded, tolerance):
    return recorded is None or abs(expected - recorded) > tolerance


async def audit_ratings(data: DataAccess, model: RatingModel, tolerance: float = 1e-6) -> List[Discrepancy]:
    """Compare a fresh replay with every recorded snapshot and stored rating."""
    players = await data.list_players()
    games = await data.list_games()
    result = replay(players, games)
    snapshots = {g.id: g.snapshot for g in games}

    found = []
    for delta in result.history:
        snap = snapshots.get(delta.game_id)
        if snap is None:
            continue
        for expected, recorded in (
            (delta.player_a_after, snap.player_a_after),
            (delta.player_b_after, snap.player_b_after),
        ):
            if _differs(expected, recorded, tolerance):
                found.append(Discrepancy("game_snapshot", str(delta.game_id), expected, recorded))

    if model is RatingModel.STORED:
        for p in players:
            expected = result.ratings[p.id]
            if _differs(expected, p.rating, tolerance):
                found.append(Discrepancy("stored_rating", p.id, expected, p.rating))

    if found:
        logger.warning(f"Rating audit found {len(found)} discrepancies")
    return found


async def rebuild_stored_ratings(data: DataAccess):
    """Overwrite every stored rating and counter with the replayed values."""
    players = await data.list_players()
    result = replay(players, await data.list_games())

    await data.rebuild_ratings(players, result.ratings, result.stats)

    logger.info(f"Rebuilt stored ratings for {len(players)} players")
    return result.ratings


async def match_odds(data: DataAccess, model: RatingModel, player_a_id, player_b_id) -> MatchOdds:
    """Expected scores and the points player A stands to gain or lose."""
    validate_game(player_a_id, player_b_id)
    player_a = await _require_player(data, player_a_id)
    player_b = await _require_player(data, player_b_id)
    rating_a, rating_b = await _current_ratings(data, model, player_a, player_b)

    rated_a = dataclasses.replace(player_a, rating=rating_a)
    rated_b = dataclasses.replace(player_b, rating=rating_b)

    return MatchOdds(
        player_a=player_a,
        player_b=player_b,
        rating_a=rating_a,
        rating_b=rating_b,
        expected_a=expected_score(rating_a, rating_b),
        expected_b=expected_score(rating_b, rating_a),
        a_gains_on_win=points_transfer(rated_b, rated_a, player_a.id),
        a_gains_on_draw=points_transfer(rated_b, rated_a, None),
        a_gains_on_loss=points_transfer(rated_b, rated_a, player_b.id),
    )
