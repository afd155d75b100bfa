"""
Minimal wallet ledger: one balance row per user plus immutable transactions.

Deposits and withdrawals are settled by the external payment gateway; this
ledger only records the movements the tournament engine itself causes.
"""
from enum import Enum

from sqlalchemy import Column, Integer, String, Text, ForeignKey, CheckConstraint

from esports_backend.core.db_types import MinorUnits
from esports_backend.orm.base import BaseModel


class TransactionType(str, Enum):
    DEPOSIT = "deposit"
    ENTRY_FEE = "entry_fee"
    PRIZE = "prize"
    REFUND = "refund"


class Wallet(BaseModel):
    __tablename__ = "wallets"

    user_id = Column(Integer, nullable=False, unique=True, index=True)
    balance = Column(MinorUnits, nullable=False, default=0)

    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_wallet_balance_non_negative"),
    )

    def to_dict(self):
        return {"user_id": self.user_id, "balance": str(self.balance)}


class WalletTransaction(BaseModel):
    """Signed amount: negative for debits."""
    __tablename__ = "wallet_transactions"

    wallet_id = Column(Integer, ForeignKey("wallets.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, nullable=False, index=True)
    tournament_id = Column(Integer, ForeignKey("tournaments.id"), nullable=True, index=True)
    type = Column(String(20), nullable=False)
    amount = Column(MinorUnits, nullable=False)
    balance_after = Column(MinorUnits, nullable=False)
    description = Column(Text, nullable=True)

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "tournament_id": self.tournament_id,
            "type": self.type,
            "amount": str(self.amount),
            "balance_after": str(self.balance_after),
            "description": self.description,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
