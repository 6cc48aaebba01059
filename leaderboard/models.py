import uuid
from datetime import datetime, timezone

from sqlalchemy import CheckConstraint, Column, DateTime, Float, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from .database import Base


def _new_id():
    return str(uuid.uuid4())


def _utcnow():
    return datetime.now(timezone.utc)


class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=_new_id)
    username = Column(String(100), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow)


class Player(Base):
    __tablename__ = "players"

    # Same value as the owning user's id
    id = Column(String(36), primary_key=True, default=_new_id)
    name = Column(String(100), unique=True, nullable=False)
    rating = Column(Float, nullable=True)  # only populated in the stored-rating model
    wins = Column(Integer, nullable=False, default=0)
    losses = Column(Integer, nullable=False, default=0)
    draws = Column(Integer, nullable=False, default=0)
    games_played = Column(Integer, nullable=False, default=0)
    version = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), default=_utcnow)


class Game(Base):
    __tablename__ = "games"
    __table_args__ = (
        CheckConstraint("player_a_id <> player_b_id", name="games_distinct_players"),
    )

    id = Column(Integer, primary_key=True, index=True)
    player_a_id = Column(String(36), ForeignKey("players.id"), nullable=False)
    player_b_id = Column(String(36), ForeignKey("players.id"), nullable=False)
    winner_id = Column(String(36), ForeignKey("players.id"), nullable=True)  # NULL is a draw
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, index=True)

    player_a_rating_before = Column(Float, nullable=True)
    player_a_rating_after = Column(Float, nullable=True)
    player_b_rating_before = Column(Float, nullable=True)
    player_b_rating_after = Column(Float, nullable=True)

    player_a = relationship("Player", foreign_keys=[player_a_id])
    player_b = relationship("Player", foreign_keys=[player_b_id])
    winner = relationship("Player", foreign_keys=[winner_id])
