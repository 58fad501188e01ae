from sqlalchemy import ForeignKey, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.schema import Column
from sqlalchemy.types import Boolean, Integer, String, Uuid, DateTime, TEXT
from uuid6 import uuid7
from datetime import datetime


class Base(DeclarativeBase):
    pass


class Room(Base):
    __tablename__ = "rooms"
    id = Column(Uuid, primary_key=True, default=uuid7)
    code = Column(String(6), unique=True, index=True, nullable=False)
    name = Column(String, nullable=False)
    description = Column(TEXT, nullable=True)
    decision_type = Column(String, nullable=False)  # dice, coin or spinner
    phase = Column(String, nullable=False, default="lobby")
    allow_everyone_to_submit = Column(Boolean, nullable=False, default=True)
    hide_results_until_end = Column(Boolean, nullable=False, default=False)
    max_participants = Column(Integer, nullable=True)
    expires_at = Column(DateTime, nullable=False)
    created_by = Column(Uuid, nullable=False)
    created_at = Column(DateTime, default=datetime.now)


class Participant(Base):
    __tablename__ = "participants"
    __table_args__ = (UniqueConstraint("room_id", "user_id", name="uq_participant_room_user"),)
    id = Column(Uuid, primary_key=True, default=uuid7)
    room_id = Column(Uuid, ForeignKey("rooms.id"), index=True, nullable=False)
    user_id = Column(Uuid, nullable=False)
    joined_at = Column(DateTime, default=datetime.now)
    has_submitted = Column(Boolean, nullable=False, default=False)
    has_voted = Column(Boolean, nullable=False, default=False)
    is_ready = Column(Boolean, nullable=False, default=False)


class Option(Base):
    __tablename__ = "options"
    id = Column(Uuid, primary_key=True, default=uuid7)
    room_id = Column(Uuid, ForeignKey("rooms.id"), index=True, nullable=False)
    text = Column(TEXT, nullable=False)
    created_by = Column(Uuid, nullable=False)
    created_at = Column(DateTime, default=datetime.now)


class Vote(Base):
    __tablename__ = "votes"
    __table_args__ = (UniqueConstraint("room_id", "user_id", name="uq_vote_room_user"),)
    id = Column(Uuid, primary_key=True, default=uuid7)
    room_id = Column(Uuid, ForeignKey("rooms.id"), index=True, nullable=False)
    option_id = Column(Uuid, ForeignKey("options.id"), nullable=False)
    user_id = Column(Uuid, nullable=False)
    created_at = Column(DateTime, default=datetime.now)


class Decision(Base):
    __tablename__ = "decisions"
    id = Column(Uuid, primary_key=True, default=uuid7)
    # At most one decision per room; concurrent writers lose on this constraint.
    room_id = Column(Uuid, ForeignKey("rooms.id"), unique=True, nullable=False)
    winning_option_id = Column(Uuid, ForeignKey("options.id"), nullable=True)
    tie_breaker_used = Column(Boolean, nullable=False, default=False)
    tie_breaker_type = Column(String, nullable=True)
    decided_at = Column(DateTime, default=datetime.now)
