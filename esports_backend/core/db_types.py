"""
Column types shared by the ORM models.
"""
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Optional

from sqlalchemy import BigInteger, JSON
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.engine import Dialect
from sqlalchemy.types import TypeDecorator


CENTS = Decimal("0.01")


class MinorUnits(TypeDecorator):
    """
    Money column stored as a whole number of minor units (paise).

    Binds and reads Decimal. SQLite has no exact decimal type, so keeping
    integers in the column makes `balance + :amount` and `balance >= :amount`
    exact in SQL on every backend.
    """
    impl = BigInteger
    cache_ok = True

    def process_bind_param(self, value: Any, dialect: Dialect) -> Optional[int]:
        if value is None:
            return None
        return int((Decimal(str(value)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))

    def process_result_value(self, value: Any, dialect: Dialect) -> Optional[Decimal]:
        if value is None:
            return None
        return (Decimal(int(value)) / 100).quantize(CENTS)


class RankAmountMap(TypeDecorator):
    """
    rank -> money map stored as JSON (JSONB on PostgreSQL).

    JSON has neither integer keys nor decimals, so ranks are written as
    strings and amounts as fixed two-place strings: {"1": "1000.00"}.
    Reads return the same string form.
    """
    impl = JSON
    cache_ok = True

    def load_dialect_impl(self, dialect: Dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(JSONB())
        return dialect.type_descriptor(JSON())

    def process_bind_param(self, value: Optional[Dict[Any, Any]], dialect: Dialect):
        if value is None:
            return None
        return {
            str(int(rank)): str(Decimal(str(amount)).quantize(CENTS))
            for rank, amount in sorted(value.items(), key=lambda item: int(item[0]))
        }
