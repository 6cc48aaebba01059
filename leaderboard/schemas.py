from typing import Optional
from pydantic import BaseModel, Field, field_validator
from datetime import datetime
from typing import List, Dict
import os

from pytz import timezone as dt_timezone

DISPLAY_TIMEZONE = dt_timezone(os.getenv("DISPLAY_TIMEZONE", "UTC"))


class Credentials(BaseModel):
    username: str = Field(min_length=3, max_length=100)
    password: str = Field(min_length=6, max_length=200)


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"


class PlayerProfileCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)

    @field_validator("name")
    @classmethod
    def strip_name(cls, value):
        value = value.strip()
        if not value:
            raise ValueError("Display name cannot be blank")
        return value


class PlayerResponse(BaseModel):
    id: str
    name: str
    rating: Optional[float] = None
    wins: int = 0
    losses: int = 0
    draws: int = 0
    games_played: int = 0

    class Config:
        from_attributes = True

    @classmethod
    def from_standing(cls, standing):
        return cls(
            id=standing.player.id,
            name=standing.player.name,
            rating=standing.rating,
            wins=standing.wins,
            losses=standing.losses,
            draws=standing.draws,
            games_played=standing.games_played,
        )


class RankingEntry(BaseModel):
    rank: int
    id: str
    name: str
    rating: int
    games_played: int
    wins: int
    losses: int
    draws: int


class IdentityResponse(BaseModel):
    id: str
    username: str
    role: str
    player: Optional[PlayerResponse] = None


class GameCreate(BaseModel):
    player_a_id: str
    player_b_id: str
    winner_id: Optional[str] = None  # None records a draw


class PlayerSummary(BaseModel):
    id: str
    name: str


def score_line(player_a_id, winner_id):
    if winner_id is None:
        return "½ - ½"
    return "1 - 0" if winner_id == player_a_id else "0 - 1"


def display_time(dt):
    return dt.astimezone(DISPLAY_TIMEZONE).strftime("%-d %b %Y, %H:%M") if dt else None


class GameResponse(BaseModel):
    id: int
    player_a: PlayerSummary
    player_b: PlayerSummary
    winner_id: Optional[str]
    score: str
    created_at: datetime
    played_at: Optional[str]
    player_a_rating_before: Optional[float] = None
    player_a_rating_after: Optional[float] = None
    player_b_rating_before: Optional[float] = None
    player_b_rating_after: Optional[float] = None

    @classmethod
    def from_entry(cls, entry):
        joined = entry.game
        game = joined.game
        return cls(
            id=game.id,
            player_a=PlayerSummary(id=joined.player_a.id, name=joined.player_a.name),
            player_b=PlayerSummary(id=joined.player_b.id, name=joined.player_b.name),
            winner_id=game.winner_id,
            score=score_line(game.player_a_id, game.winner_id),
            created_at=game.created_at,
            played_at=display_time(game.created_at),
            player_a_rating_before=entry.player_a_before,
            player_a_rating_after=entry.player_a_after,
            player_b_rating_before=entry.player_b_before,
            player_b_rating_after=entry.player_b_after,
        )


class GameRecorded(BaseModel):
    message: str
    game_id: int
    player_a_new_rating: float
    player_b_new_rating: float
    player_a_change: float
    player_b_change: float


class OddsResponse(BaseModel):
    player_a: PlayerSummary
    player_b: PlayerSummary
    player_a_rating: float
    player_b_rating: float
    player_a_expected_score: float
    player_b_expected_score: float
    player_a_change_on_win: float
    player_a_change_on_draw: float
    player_a_change_on_loss: float


class DiscrepancyResponse(BaseModel):
    kind: str
    subject_id: str
    expected: float
    recorded: Optional[float]

    class Config:
        from_attributes = True


class AuditResponse(BaseModel):
    rating_model: str
    consistent: bool
    discrepancies: List[DiscrepancyResponse]


class RecomputeResponse(BaseModel):
    message: str
    ratings: Dict[str, int]
