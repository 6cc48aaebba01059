import asyncio
import dataclasses
import uuid
from datetime import datetime, timedelta, timezone

from leaderboard.data_access import (
    DataAccess,
    GameRecord,
    GameWithPlayers,
    NameTakenError,
    PlayerRecord,
    RatingSnapshot,
    StaleRatingError,
    UserRecord,
    UsernameTakenError,
    result_counters,
)
from leaderboard.elo import validate_game


class InMemoryDataAccess(DataAccess):
    def __init__(self):
        self.players = {}
        self.games = []
        self.users = {}
        self._lock = asyncio.Lock()
        self._last_timestamp = None

    def _timestamp(self):
        # Keep creation times strictly increasing, even within one clock tick
        now = datetime.now(timezone.utc)
        if self._last_timestamp is not None and now <= self._last_timestamp:
            now = self._last_timestamp + timedelta(microseconds=1)
        self._last_timestamp = now
        return now

    async def list_players(self):
        return list(self.players.values())

    async def get_player(self, player_id):
        return self.players.get(player_id)

    async def list_games(self):
        return sorted(self.games, key=lambda g: (g.created_at, g.id))

    async def list_games_with_players(self):
        return [
            GameWithPlayers(
                game=g,
                player_a=self.players[g.player_a_id],
                player_b=self.players[g.player_b_id],
                winner=self.players.get(g.winner_id) if g.winner_id else None,
            )
            for g in await self.list_games()
        ]

    def _append_game(self, player_a_id, player_b_id, winner_id, snapshot):
        validate_game(player_a_id, player_b_id, winner_id)
        game = GameRecord(
            id=len(self.games) + 1,
            player_a_id=player_a_id,
            player_b_id=player_b_id,
            winner_id=winner_id,
            created_at=self._timestamp(),
            snapshot=snapshot,
        )
        self.games.append(game)
        return game

    async def insert_game(self, player_a_id, player_b_id, winner_id=None, snapshot=None):
        async with self._lock:
            return self._append_game(player_a_id, player_b_id, winner_id, snapshot)

    def _check_version(self, player_id, expected_version):
        current = self.players[player_id]
        if current.version != expected_version:
            raise StaleRatingError(f"Player {player_id} was updated concurrently.")
        return current

    async def update_player_rating(self, player_id, new_rating, expected_version, stats=None):
        async with self._lock:
            current = self._check_version(player_id, expected_version)
            changes = {"rating": new_rating, "version": current.version + 1}
            if stats is not None:
                changes.update(
                    wins=stats.wins,
                    losses=stats.losses,
                    draws=stats.draws,
                    games_played=stats.games_played,
                )
            updated = dataclasses.replace(current, **changes)
            self.players[player_id] = updated
            return updated

    async def record_stored_game(self, player_a, player_b, winner_id, new_rating_a, new_rating_b):
        async with self._lock:
            validate_game(player_a.id, player_b.id, winner_id)
            # Check both versions before touching anything
            current = [
                self._check_version(player_a.id, player_a.version),
                self._check_version(player_b.id, player_b.version),
            ]

            for player, new_rating in zip(current, (new_rating_a, new_rating_b)):
                won, lost, drew = result_counters(player.id, winner_id)
                self.players[player.id] = dataclasses.replace(
                    player,
                    rating=new_rating,
                    wins=player.wins + won,
                    losses=player.losses + lost,
                    draws=player.draws + drew,
                    games_played=player.games_played + 1,
                    version=player.version + 1,
                )

            snapshot = RatingSnapshot(
                player_a_before=player_a.rating,
                player_a_after=new_rating_a,
                player_b_before=player_b.rating,
                player_b_after=new_rating_b,
            )
            return self._append_game(player_a.id, player_b.id, winner_id, snapshot)

    async def rebuild_ratings(self, players, ratings, stats):
        async with self._lock:
            current = [self._check_version(p.id, p.version) for p in players]

            rebuilt = []
            for player in current:
                counters = stats[player.id]
                updated = dataclasses.replace(
                    player,
                    rating=ratings[player.id],
                    wins=counters.wins,
                    losses=counters.losses,
                    draws=counters.draws,
                    games_played=counters.games_played,
                    version=player.version + 1,
                )
                self.players[player.id] = updated
                rebuilt.append(updated)
            return rebuilt

    async def find_or_create_player(self, identity, display_name, rating=None):
        async with self._lock:
            if identity in self.players:
                return self.players[identity]

            name = display_name.strip()
            if any(p.name.lower() == name.lower() for p in self.players.values()):
                raise NameTakenError(f"Player name '{name}' is already taken.")

            player = PlayerRecord(id=identity, name=name, rating=rating, created_at=self._timestamp())
            self.players[identity] = player
            return player

    async def create_user(self, username, password_hash):
        async with self._lock:
            if username in self.users:
                raise UsernameTakenError(f"Username '{username}' is already taken.")
            user = UserRecord(id=str(uuid.uuid4()), username=username, password_hash=password_hash)
            self.users[username] = user
            return user

    async def get_user_by_username(self, username):
        return self.users.get(username)
