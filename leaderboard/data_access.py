"""Data access for players, games and users."""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, List, Optional

from fastapi import Depends
from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy.orm import joinedload

from leaderboard.database import get_db
from leaderboard.elo import PlayerStats, validate_game
from leaderboard.models import Game, Player, User

logger = logging.getLogger(__name__)


class PersistenceError(Exception):
    """The data layer could not read or write what was asked."""


class PlayerNotFoundError(PersistenceError):
    pass


class NameTakenError(PersistenceError):
    pass


class UsernameTakenError(PersistenceError):
    pass


class StaleRatingError(PersistenceError):
    """A player's row changed between reading its rating and writing the new one."""


@dataclass(frozen=True)
class UserRecord:
    id: str
    username: str
    password_hash: str


@dataclass(frozen=True)
class PlayerRecord:
    id: str
    name: str
    rating: Optional[float] = None
    wins: int = 0
    losses: int = 0
    draws: int = 0
    games_played: int = 0
    version: int = 0
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class RatingSnapshot:
    player_a_before: float
    player_a_after: float
    player_b_before: float
    player_b_after: float


@dataclass(frozen=True)
class GameRecord:
    id: int
    player_a_id: str
    player_b_id: str
    winner_id: Optional[str]
    created_at: datetime
    snapshot: Optional[RatingSnapshot] = None


@dataclass(frozen=True)
class GameWithPlayers:
    """A game joined with the player rows it references."""

    game: GameRecord
    player_a: PlayerRecord
    player_b: PlayerRecord
    winner: Optional[PlayerRecord]


def utc(dt):
    if dt is not None and dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def result_counters(player_id, winner_id):
    """Increments to (wins, losses, draws) for ``player_id`` after one game."""
    if winner_id is None:
        return 0, 0, 1
    if winner_id == player_id:
        return 1, 0, 0
    return 0, 1, 0


class DataAccess:
    """Async persistence contract shared by every backend."""

    async def list_players(self) -> List[PlayerRecord]:
        raise NotImplementedError

    async def get_player(self, player_id: str) -> Optional[PlayerRecord]:
        raise NotImplementedError

    async def list_games(self) -> List[GameRecord]:
        """All games, oldest first."""
        raise NotImplementedError

    async def list_games_with_players(self) -> List[GameWithPlayers]:
        """All games, oldest first, each joined with its players."""
        raise NotImplementedError

    async def insert_game(self, player_a_id, player_b_id, winner_id=None, snapshot=None) -> GameRecord:
        raise NotImplementedError

    async def update_player_rating(self, player_id, new_rating, expected_version, stats: Optional[PlayerStats] = None) -> PlayerRecord:
        """Compare-and-set a stored rating; raises StaleRatingError on a version mismatch."""
        raise NotImplementedError

    async def record_stored_game(self, player_a: PlayerRecord, player_b: PlayerRecord, winner_id, new_rating_a, new_rating_b) -> GameRecord:
        """Insert a game and update both players' stored ratings as one unit."""
        raise NotImplementedError

    async def rebuild_ratings(self, players: List[PlayerRecord], ratings: Dict[str, float], stats: Dict[str, PlayerStats]) -> List[PlayerRecord]:
        """Overwrite every listed player's rating and counters, all or nothing."""
        raise NotImplementedError

    async def find_or_create_player(self, identity, display_name, rating=None) -> PlayerRecord:
        raise NotImplementedError

    async def create_user(self, username, password_hash) -> UserRecord:
        raise NotImplementedError

    async def get_user_by_username(self, username) -> Optional[UserRecord]:
        raise NotImplementedError


def _player_record(player: Player) -> PlayerRecord:
    return PlayerRecord(
        id=player.id,
        name=player.name,
        rating=player.rating,
        wins=player.wins or 0,
        losses=player.losses or 0,
        draws=player.draws or 0,
        games_played=player.games_played or 0,
        version=player.version or 0,
        created_at=utc(player.created_at),
    )


def _game_record(game: Game) -> GameRecord:
    snapshot = None
    if game.player_a_rating_before is not None:
        snapshot = RatingSnapshot(
            player_a_before=game.player_a_rating_before,
            player_a_after=game.player_a_rating_after,
            player_b_before=game.player_b_rating_before,
            player_b_after=game.player_b_rating_after,
        )
    return GameRecord(
        id=game.id,
        player_a_id=game.player_a_id,
        player_b_id=game.player_b_id,
        winner_id=game.winner_id,
        created_at=utc(game.created_at),
        snapshot=snapshot,
    )


class SqlDataAccess(DataAccess):
    def __init__(self, session: AsyncSession):
        self.db = session

    async def _execute(self, statement):
        try:
            return await self.db.execute(statement)
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("Database error: %s", e)
            raise PersistenceError("Database error") from e

    async def _commit(self, conflict=PersistenceError, message="Database commit error"):
        try:
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            logger.warning("Integrity error on commit: %s", e.orig)
            raise conflict(message) from e
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("Error committing: %s", e)
            raise PersistenceError(message) from e

    async def _fetch_player(self, player_id):
        result = await self._execute(
            select(Player).where(Player.id == player_id).execution_options(populate_existing=True)
        )
        return result.scalars().first()

    async def list_players(self):
        result = await self._execute(select(Player).execution_options(populate_existing=True))
        return [_player_record(p) for p in result.scalars().all()]

    async def get_player(self, player_id):
        player = await self._fetch_player(player_id)
        return _player_record(player) if player else None

    async def list_games(self):
        result = await self._execute(select(Game).order_by(Game.created_at, Game.id))
        return [_game_record(g) for g in result.scalars().all()]

    async def list_games_with_players(self):
        result = await self._execute(
            select(Game)
            .options(
                joinedload(Game.player_a),
                joinedload(Game.player_b),
                joinedload(Game.winner),
            )
            .order_by(Game.created_at, Game.id)
            .execution_options(populate_existing=True)
        )
        games = result.unique().scalars().all()

        return [
            GameWithPlayers(
                game=_game_record(g),
                player_a=_player_record(g.player_a),
                player_b=_player_record(g.player_b),
                winner=_player_record(g.winner) if g.winner is not None else None,
            )
            for g in games
        ]

    def _new_game(self, player_a_id, player_b_id, winner_id, snapshot):
        validate_game(player_a_id, player_b_id, winner_id)
        game = Game(
            player_a_id=player_a_id,
            player_b_id=player_b_id,
            winner_id=winner_id,
            created_at=datetime.now(timezone.utc),
        )
        if snapshot is not None:
            game.player_a_rating_before = snapshot.player_a_before
            game.player_a_rating_after = snapshot.player_a_after
            game.player_b_rating_before = snapshot.player_b_before
            game.player_b_rating_after = snapshot.player_b_after
        self.db.add(game)
        return game

    async def insert_game(self, player_a_id, player_b_id, winner_id=None, snapshot=None):
        game = self._new_game(player_a_id, player_b_id, winner_id, snapshot)
        await self._commit()
        logger.info(f"Game {game.id} recorded: {player_a_id} vs {player_b_id}, winner={winner_id}")
        return _game_record(game)

    async def _compare_and_set(self, player_id, expected_version, **values):
        result = await self._execute(
            update(Player)
            .where(Player.id == player_id, Player.version == expected_version)
            .values(version=Player.version + 1, **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.db.rollback()
            logger.warning(f"Stale rating for player {player_id} (expected version {expected_version})")
            raise StaleRatingError(f"Player {player_id} was updated concurrently.")

    async def update_player_rating(self, player_id, new_rating, expected_version, stats=None):
        values = {"rating": new_rating}
        if stats is not None:
            values.update(
                wins=stats.wins,
                losses=stats.losses,
                draws=stats.draws,
                games_played=stats.games_played,
            )
        await self._compare_and_set(player_id, expected_version, **values)
        await self._commit()
        return await self.get_player(player_id)

    async def record_stored_game(self, player_a, player_b, winner_id, new_rating_a, new_rating_b):
        snapshot = RatingSnapshot(
            player_a_before=player_a.rating,
            player_a_after=new_rating_a,
            player_b_before=player_b.rating,
            player_b_after=new_rating_b,
        )
        game = self._new_game(player_a.id, player_b.id, winner_id, snapshot)

        # ✅ Both rating updates and the game row commit together or not at all
        for player, new_rating in ((player_a, new_rating_a), (player_b, new_rating_b)):
            won, lost, drew = result_counters(player.id, winner_id)
            await self._compare_and_set(
                player.id,
                player.version,
                rating=new_rating,
                wins=Player.wins + won,
                losses=Player.losses + lost,
                draws=Player.draws + drew,
                games_played=Player.games_played + 1,
            )

        await self._commit()
        logger.info(f"Game {game.id} recorded with stored ratings: {player_a.id}={new_rating_a:.1f}, {player_b.id}={new_rating_b:.1f}")
        return _game_record(game)

    async def rebuild_ratings(self, players, ratings, stats):
        # ✅ One transaction: a stale version rolls back every update made so far
        for player in players:
            counters = stats[player.id]
            await self._compare_and_set(
                player.id,
                player.version,
                rating=ratings[player.id],
                wins=counters.wins,
                losses=counters.losses,
                draws=counters.draws,
                games_played=counters.games_played,
            )

        await self._commit()
        return [await self.get_player(player.id) for player in players]

    async def find_or_create_player(self, identity, display_name, rating=None):
        existing = await self._fetch_player(identity)
        if existing:
            return _player_record(existing)

        name = display_name.strip()
        clash = await self._execute(select(Player).where(func.lower(Player.name) == name.lower()))
        if clash.scalars().first():
            raise NameTakenError(f"Player name '{name}' is already taken.")

        player = Player(
            id=identity,
            name=name,
            rating=rating,
            wins=0,
            losses=0,
            draws=0,
            games_played=0,
            version=0,
            created_at=datetime.now(timezone.utc),
        )
        self.db.add(player)
        await self._commit(conflict=NameTakenError, message=f"Player name '{name}' is already taken.")
        logger.info(f"Player profile created: {name} ({identity})")
        return _player_record(player)

    async def create_user(self, username, password_hash):
        user = User(
            id=str(uuid.uuid4()),
            username=username,
            password_hash=password_hash,
            created_at=datetime.now(timezone.utc),
        )
        self.db.add(user)
        await self._commit(conflict=UsernameTakenError, message=f"Username '{username}' is already taken.")
        return UserRecord(id=user.id, username=user.username, password_hash=user.password_hash)

    async def get_user_by_username(self, username):
        result = await self._execute(select(User).where(User.username == username))
        user = result.scalars().first()
        if not user:
            return None
        return UserRecord(id=user.id, username=user.username, password_hash=user.password_hash)


# ✅ Dependency to get the data access for a request
async def get_data_access(db: AsyncSession = Depends(get_db)) -> DataAccess:
    return SqlDataAccess(db)
