"""
Teams, team members and paid registrations.
"""
from enum import Enum

from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, ForeignKey, UniqueConstraint, Index
)
from sqlalchemy.orm import relationship

from esports_backend.core.db_types import MinorUnits
from esports_backend.orm.base import BaseModel


class RegistrationStatus(str, Enum):
    PAID = "paid"
    REFUNDED = "refunded"


class Team(BaseModel):
    """
    A registered entry: 1, 2 or 4 players depending on tournament mode.

    Solo players get a one-member team so rooms and progression treat every
    mode the same way. Teams are never deleted; losing or withdrawing marks
    them eliminated.
    """
    __tablename__ = "teams"

    tournament_id = Column(
        Integer,
        ForeignKey("tournaments.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    name = Column(String(100), nullable=False)
    leader_id = Column(Integer, nullable=False)
    current_round = Column(Integer, nullable=False, default=1)
    is_eliminated = Column(Boolean, nullable=False, default=False)
    final_rank = Column(Integer, nullable=True)
    withdrawn_at = Column(DateTime, nullable=True)

    members = relationship(
        "TeamMember",
        back_populates="team",
        lazy="selectin",
        order_by="TeamMember.id",
        cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("idx_team_tournament_round", "tournament_id", "current_round", "is_eliminated"),
    )

    @property
    def member_ids(self):
        return [m.user_id for m in self.members]

    def to_dict(self):
        return {
            "id": self.id,
            "tournament_id": self.tournament_id,
            "name": self.name,
            "leader_id": self.leader_id,
            "member_ids": self.member_ids,
            "current_round": self.current_round,
            "is_eliminated": self.is_eliminated,
            "final_rank": self.final_rank,
        }


class TeamMember(BaseModel):
    __tablename__ = "team_members"

    team_id = Column(Integer, ForeignKey("teams.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, nullable=False, index=True)

    team = relationship("Team", back_populates="members")

    __table_args__ = (
        UniqueConstraint("team_id", "user_id", name="uq_team_member"),
    )


class Registration(BaseModel):
    """
    One player's seat in a tournament and the fee paid for it.

    The team leader pays for every member; refunds go back to `paid_by_user_id`.
    """
    __tablename__ = "registrations"

    tournament_id = Column(
        Integer,
        ForeignKey("tournaments.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    team_id = Column(Integer, ForeignKey("teams.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, nullable=False, index=True)
    paid_by_user_id = Column(Integer, nullable=False)
    amount_paid = Column(MinorUnits, nullable=False, default=0)
    status = Column(String(20), nullable=False, default=RegistrationStatus.PAID)
    refunded_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index("idx_registration_tournament_user", "tournament_id", "user_id"),
    )
