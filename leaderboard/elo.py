import math
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Tuple

K_FACTOR = 32  # Elo K-factor, same for every game
SCALE = 400
INITIAL_RATING = float(os.getenv("INITIAL_RATING", 1000))

WIN = 1.0
DRAW = 0.5
LOSS = 0.0


class InvalidGameError(ValueError):
    """A game that can never be rated, such as a player facing themselves."""


class InvalidRatingError(ValueError):
    """A rating that is not a finite number."""


@dataclass(frozen=True)
class GameDelta:
    game_id: int
    player_a_id: str
    player_b_id: str
    winner_id: Optional[str]
    player_a_before: float
    player_a_after: float
    player_b_before: float
    player_b_after: float

    @property
    def transfer(self) -> float:
        """Points player A gained (negative if A lost points)."""
        return self.player_a_after - self.player_a_before


@dataclass
class PlayerStats:
    wins: int = 0
    losses: int = 0
    draws: int = 0

    @property
    def games_played(self) -> int:
        return self.wins + self.losses + self.draws


@dataclass(frozen=True)
class ReplayResult:
    ratings: Dict[str, float]
    stats: Dict[str, PlayerStats]
    history: List[GameDelta] = field(default_factory=list)


def expected_score(rating, opponent_rating):
    # Same curve as 1 / (1 + 10 ** (diff / SCALE)), saturating at 0 and 1 for any finite gap
    return 0.5 * (1 - math.tanh((opponent_rating - rating) * math.log(10) / (2 * SCALE)))


def rating_change(expected, actual):
    return K_FACTOR * (actual - expected)


def calculate_new_rating(current_rating, expected, actual):
    return current_rating + rating_change(expected, actual)


def check_rating(value):
    if value is None or not math.isfinite(value):
        raise InvalidRatingError(f"Rating must be a finite number, got {value!r}")
    return value


def validate_game(player_a_id, player_b_id, winner_id=None):
    if player_a_id == player_b_id:
        raise InvalidGameError("Players must be different.")
    if winner_id is not None and winner_id not in (player_a_id, player_b_id):
        raise InvalidGameError("Winner must be one of the players.")


def actual_scores(player_a_id, player_b_id, winner_id) -> Tuple[float, float]:
    validate_game(player_a_id, player_b_id, winner_id)

    if winner_id is None:
        return DRAW, DRAW
    if winner_id == player_a_id:
        return WIN, LOSS
    return LOSS, WIN


def points_transfer(source, target, winner_id) -> float:
    """Points ``target`` gains from ``source`` for the given result.

    ``source`` and ``target`` are anything with ``id`` and ``rating``. The
    value is always computed with the lower id as the receiving side so that
    swapping the arguments negates it exactly.
    """
    if str(target.id) > str(source.id):
        return -points_transfer(target, source, winner_id)

    actual_target, _ = actual_scores(target.id, source.id, winner_id)
    return rating_change(expected_score(target.rating, source.rating), actual_target)


@dataclass(frozen=True)
class _Rated:
    id: str
    rating: float


def compute_game_delta(player_a, player_b, winner_id) -> Tuple[float, float]:
    """New ratings for both players of a single game, without replaying history."""
    validate_game(player_a.id, player_b.id, winner_id)
    rating_a = check_rating(player_a.rating)
    rating_b = check_rating(player_b.rating)

    gained = points_transfer(_Rated(player_b.id, rating_b), _Rated(player_a.id, rating_a), winner_id)
    return rating_a + gained, rating_b - gained


def _as_utc(dt):
    if dt is None:
        return datetime(1970, 1, 1, tzinfo=timezone.utc)
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def chronological(games: Iterable) -> list:
    """Games in play order: by creation time, ties broken by game id."""
    return sorted(games, key=lambda g: (_as_utc(g.created_at), g.id))


def replay(players: Iterable, games: Iterable, initial_rating: float = INITIAL_RATING) -> ReplayResult:
    """Fold every game, oldest first, over a fresh set of working ratings.

    Neither ``players`` nor ``games`` is modified; the result holds new
    mappings keyed by player id.
    """
    ratings = {p.id: float(initial_rating) for p in players}
    stats = {player_id: PlayerStats() for player_id in ratings}
    history = []

    for game in chronological(games):
        a_id, b_id, winner_id = game.player_a_id, game.player_b_id, game.winner_id
        for pid in (a_id, b_id):
            if pid not in ratings:
                raise InvalidGameError(f"Game {game.id} references unknown player {pid}.")

        before_a, before_b = ratings[a_id], ratings[b_id]
        after_a, after_b = compute_game_delta(_Rated(a_id, before_a), _Rated(b_id, before_b), winner_id)
        ratings[a_id], ratings[b_id] = after_a, after_b

        if winner_id is None:
            stats[a_id].draws += 1
            stats[b_id].draws += 1
        else:
            loser_id = b_id if winner_id == a_id else a_id
            stats[winner_id].wins += 1
            stats[loser_id].losses += 1

        history.append(GameDelta(
            game_id=game.id,
            player_a_id=a_id,
            player_b_id=b_id,
            winner_id=winner_id,
            player_a_before=before_a,
            player_a_after=after_a,
            player_b_before=before_b,
            player_b_after=after_b,
        ))

    return ReplayResult(ratings=ratings, stats=stats, history=history)


def compute_all_ratings(players, games, initial_rating: float = INITIAL_RATING) -> Dict[str, float]:
    return replay(players, games, initial_rating).ratings


def round_ratings(ratings: Dict[str, float]) -> Dict[str, int]:
    return {player_id: round(rating) for player_id, rating in ratings.items()}
