"""
Rooms and room assignments.

A room is one match instance within a round; an assignment seats one team
in one room for that round.
"""
from enum import Enum

from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, ForeignKey, UniqueConstraint, CheckConstraint, Index
)
from sqlalchemy.orm import relationship

from esports_backend.orm.base import BaseModel


class RoomStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"


class Room(BaseModel):
    """
    Attributes:
        round_number: Elimination stage this room belongs to
        room_number: Sequence within the round, from 1
        capacity: Max teams seated
        room_code, room_password: Filled by the organizer before activation
        processed_at: Set once round progression has consumed this room
    """
    __tablename__ = "rooms"

    tournament_id = Column(
        Integer,
        ForeignKey("tournaments.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    round_number = Column(Integer, nullable=False)
    room_number = Column(Integer, nullable=False)
    name = Column(String(100), nullable=False)
    capacity = Column(Integer, nullable=False)
    scheduled_time = Column(DateTime, nullable=True)
    room_code = Column(String(100), nullable=True)
    room_password = Column(String(100), nullable=True)
    status = Column(String(20), nullable=False, default=RoomStatus.PENDING)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    processed_at = Column(DateTime, nullable=True)

    assignments = relationship(
        "RoomAssignment",
        back_populates="room",
        lazy="selectin",
        order_by="RoomAssignment.slot_number",
        cascade="all, delete-orphan"
    )

    __table_args__ = (
        UniqueConstraint("tournament_id", "round_number", "room_number", name="uq_room_round_number"),
        CheckConstraint("capacity >= 1", name="ck_room_capacity"),
        Index("idx_room_tournament_round", "tournament_id", "round_number"),
    )

    @property
    def has_credentials(self) -> bool:
        return bool(self.room_code) and bool(self.room_password)

    def to_dict(self, include_credentials: bool = False):
        data = {
            "id": self.id,
            "tournament_id": self.tournament_id,
            "round_number": self.round_number,
            "room_number": self.room_number,
            "name": self.name,
            "capacity": self.capacity,
            "scheduled_time": self.scheduled_time.isoformat() if self.scheduled_time else None,
            "status": self.status,
            "assignments": [a.to_dict() for a in self.assignments],
        }
        if include_credentials:
            data["room_code"] = self.room_code
            data["room_password"] = self.room_password
        return data


class RoomAssignment(BaseModel):
    """
    Seats a team in a room for one round.

    is_winner / match_rank stay NULL until the organizer reports the outcome.
    """
    __tablename__ = "room_assignments"

    room_id = Column(Integer, ForeignKey("rooms.id", ondelete="CASCADE"), nullable=False, index=True)
    team_id = Column(Integer, ForeignKey("teams.id", ondelete="CASCADE"), nullable=False, index=True)
    round_number = Column(Integer, nullable=False)
    slot_number = Column(Integer, nullable=False)
    is_winner = Column(Boolean, nullable=True)
    match_rank = Column(Integer, nullable=True)

    room = relationship("Room", back_populates="assignments")

    __table_args__ = (
        UniqueConstraint("room_id", "slot_number", name="uq_assignment_room_slot"),
        UniqueConstraint("team_id", "round_number", name="uq_assignment_team_round"),
        CheckConstraint("slot_number >= 1", name="ck_assignment_slot_positive"),
    )

    @property
    def is_reported(self) -> bool:
        return self.is_winner is not None

    def to_dict(self):
        return {
            "id": self.id,
            "room_id": self.room_id,
            "team_id": self.team_id,
            "round_number": self.round_number,
            "slot_number": self.slot_number,
            "is_winner": self.is_winner,
            "match_rank": self.match_rank,
        }
