"""
Institution tournaments.

ORM models for the tournament record and its append-only status history.
"""
from enum import Enum

from sqlalchemy import (
    Column, Integer, String, Text, DateTime, ForeignKey, CheckConstraint, Index
)

from esports_backend.core.db_types import MinorUnits
from esports_backend.orm.base import Base, BaseModel, utcnow


class TournamentStatus(str, Enum):
    """Tournament lifecycle status state machine."""
    UPCOMING = "upcoming"
    ONGOING = "ongoing"
    COMPLETED = "completed"
    WINNERS_DECLARED = "winners_declared"
    CANCELLED = "cancelled"


class TournamentMode(str, Enum):
    """Team size per registration."""
    SOLO = "solo"
    DUO = "duo"
    SQUAD = "squad"


TEAM_SIZE_BY_MODE = {
    TournamentMode.SOLO: 1,
    TournamentMode.DUO: 2,
    TournamentMode.SQUAD: 4,
}


class Tournament(BaseModel):
    """
    Institution-scoped elimination tournament.

    Status is only written by the lifecycle state machine, through a
    conditional update on `version`. WINNERS_DECLARED and CANCELLED are
    terminal.

    Attributes:
        game: Title being played; drives the per-room team capacity
        mode: solo / duo / squad
        entry_fee: Fee per player
        prize_pool: Estimated at creation, recomputed from joined players at start
        total_rounds: From the capacity plan
        current_round: Highest round allocated so far (0 before start)
        room_code, room_password: Organizer-supplied credentials, required to start
        version: Optimistic concurrency counter for status writes
    """
    __tablename__ = "tournaments"

    name = Column(String(200), nullable=False)
    institution_name = Column(String(200), nullable=True)
    game = Column(String(50), nullable=False)
    mode = Column(String(10), nullable=False, default=TournamentMode.SQUAD)
    status = Column(String(30), nullable=False, default=TournamentStatus.UPCOMING, index=True)

    entry_fee = Column(MinorUnits, nullable=False, default=0)
    max_participants = Column(Integer, nullable=False)
    prize_pool = Column(MinorUnits, nullable=False, default=0)
    prize_pool_percent = Column(Integer, nullable=False, default=70)

    registration_deadline = Column(DateTime, nullable=True)
    scheduled_start = Column(DateTime, nullable=True)

    room_capacity = Column(Integer, nullable=False)
    total_rounds = Column(Integer, nullable=False, default=1)
    current_round = Column(Integer, nullable=False, default=0)

    organizer_id = Column(Integer, nullable=False, index=True)
    room_code = Column(String(100), nullable=True)
    room_password = Column(String(100), nullable=True)

    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    winners_declared_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)
    cancel_reason = Column(Text, nullable=True)

    version = Column(Integer, nullable=False, default=1)

    __table_args__ = (
        CheckConstraint(
            f"status IN ('{TournamentStatus.UPCOMING.value}', '{TournamentStatus.ONGOING.value}', "
            f"'{TournamentStatus.COMPLETED.value}', '{TournamentStatus.WINNERS_DECLARED.value}', "
            f"'{TournamentStatus.CANCELLED.value}')",
            name="ck_tournament_status_valid"
        ),
        CheckConstraint("max_participants >= 1", name="ck_tournament_max_participants"),
        CheckConstraint("room_capacity >= 1", name="ck_tournament_room_capacity"),
        CheckConstraint("current_round <= total_rounds", name="ck_tournament_current_round"),
        Index("idx_tournament_status_completed", "status", "completed_at"),
    )

    @property
    def team_size(self) -> int:
        return TEAM_SIZE_BY_MODE[TournamentMode(self.mode)]

    @property
    def has_room_credentials(self) -> bool:
        return bool(self.room_code) and bool(self.room_password)

    def to_dict(self):
        """Convert to dictionary."""
        return {
            "id": self.id,
            "name": self.name,
            "institution_name": self.institution_name,
            "game": self.game,
            "mode": self.mode,
            "status": self.status,
            "entry_fee": str(self.entry_fee),
            "max_participants": self.max_participants,
            "prize_pool": str(self.prize_pool),
            "prize_pool_percent": self.prize_pool_percent,
            "registration_deadline": self.registration_deadline.isoformat() if self.registration_deadline else None,
            "scheduled_start": self.scheduled_start.isoformat() if self.scheduled_start else None,
            "room_capacity": self.room_capacity,
            "total_rounds": self.total_rounds,
            "current_round": self.current_round,
            "organizer_id": self.organizer_id,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "winners_declared_at": self.winners_declared_at.isoformat() if self.winners_declared_at else None,
            "cancelled_at": self.cancelled_at.isoformat() if self.cancelled_at else None,
            "cancel_reason": self.cancel_reason,
            "version": self.version,
        }


class TournamentStatusLog(Base):
    """
    Append-only record of every status transition.

    from_status is NULL for the creation entry.
    """
    __tablename__ = "tournament_status_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    tournament_id = Column(
        Integer,
        ForeignKey("tournaments.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    from_status = Column(String(30), nullable=True)
    to_status = Column(String(30), nullable=False)
    actor_id = Column(Integer, nullable=True)
    reason = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    def to_dict(self):
        return {
            "id": self.id,
            "tournament_id": self.tournament_id,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "actor_id": self.actor_id,
            "reason": self.reason,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
