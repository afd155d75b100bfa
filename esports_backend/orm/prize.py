"""
Declared prize distributions and the per-user payouts they produced.
"""
from sqlalchemy import Column, Integer, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship

from esports_backend.core.db_types import MinorUnits, RankAmountMap
from esports_backend.orm.base import BaseModel


class PrizeDistribution(BaseModel):
    """
    Rank -> gross amount map, written once when winners are declared.

    rank_amounts reads back with string keys ({"1": "1000.00", ...}).
    """
    __tablename__ = "prize_distributions"

    tournament_id = Column(
        Integer,
        ForeignKey("tournaments.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
        index=True
    )
    rank_amounts = Column(RankAmountMap, nullable=False, default=dict)
    total_amount = Column(MinorUnits, nullable=False)
    total_disbursed = Column(MinorUnits, nullable=False)
    declared_by = Column(Integer, nullable=True)
    declared_at = Column(DateTime, nullable=False)

    payouts = relationship(
        "PrizePayout",
        lazy="selectin",
        order_by="PrizePayout.rank",
        cascade="all, delete-orphan"
    )

    def to_dict(self):
        return {
            "id": self.id,
            "tournament_id": self.tournament_id,
            "rank_amounts": self.rank_amounts,
            "total_amount": str(self.total_amount),
            "total_disbursed": str(self.total_disbursed),
            "declared_by": self.declared_by,
            "declared_at": self.declared_at.isoformat() if self.declared_at else None,
            "payouts": [p.to_dict() for p in self.payouts],
        }


class PrizePayout(BaseModel):
    __tablename__ = "prize_payouts"

    distribution_id = Column(
        Integer,
        ForeignKey("prize_distributions.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    tournament_id = Column(Integer, ForeignKey("tournaments.id", ondelete="CASCADE"), nullable=False)
    rank = Column(Integer, nullable=False)
    team_id = Column(Integer, ForeignKey("teams.id"), nullable=True)
    user_id = Column(Integer, nullable=False, index=True)
    amount = Column(MinorUnits, nullable=False)

    __table_args__ = (
        UniqueConstraint("tournament_id", "rank", "user_id", name="uq_payout_rank_user"),
    )

    def to_dict(self):
        return {
            "rank": self.rank,
            "team_id": self.team_id,
            "user_id": self.user_id,
            "amount": str(self.amount),
        }
