"""
Prize Distribution Calculator

Turns a rank → amount map and a rank → payee map into per-user payout
lines. Pure: no database access, no wallet movement.

Team prizes are split equally among the team's members and truncated to
whole currency units; the remainder is not paid out.
"""
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_DOWN
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from esports_backend.exceptions import PrizePoolExceededError, ValidationError

WHOLE_UNIT = Decimal("1")
CENT = Decimal("0.01")


def to_money(value: Any, field_name: str = "amount") -> Decimal:
    """Parse a money value into a 2-place Decimal."""
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise ValidationError(f"{field_name} is not a valid amount", details={field_name: str(value)})
    if not amount.is_finite():
        raise ValidationError(f"{field_name} is not a valid amount", details={field_name: str(value)})
    return amount.quantize(CENT)


@dataclass(frozen=True)
class IndividualPayee:
    user_id: int

    def split(self, amount: Decimal) -> List[Tuple[int, Decimal]]:
        return [(self.user_id, amount)]


@dataclass(frozen=True)
class TeamPayee:
    team_id: int
    member_ids: Tuple[int, ...]

    def split(self, amount: Decimal) -> List[Tuple[int, Decimal]]:
        if not self.member_ids:
            raise ValidationError(f"Team {self.team_id} has no members to pay")
        if len(set(self.member_ids)) != len(self.member_ids):
            raise ValidationError(f"Team {self.team_id} lists a member twice")
        share = (amount / len(self.member_ids)).quantize(WHOLE_UNIT, rounding=ROUND_DOWN)
        return [(user_id, share.quantize(CENT)) for user_id in self.member_ids]


Payee = Union[IndividualPayee, TeamPayee]


@dataclass(frozen=True)
class PayoutLine:
    rank: int
    user_id: int
    amount: Decimal
    team_id: Optional[int] = None


def normalize_rank_map(mapping: Mapping[Any, Any], label: str = "ranks") -> Dict[int, Any]:
    """Coerce keys ("1", 1) to positive ints; JSON bodies arrive with string keys."""
    normalized: Dict[int, Any] = {}
    for key, value in mapping.items():
        try:
            rank = int(key)
        except (TypeError, ValueError):
            raise ValidationError(f"Invalid rank '{key}' in {label}")
        if rank < 1:
            raise ValidationError(f"Rank must be positive, got {rank} in {label}")
        if rank in normalized:
            raise ValidationError(f"Rank {rank} appears twice in {label}")
        normalized[rank] = value
    return normalized


def amounts_from_percentages(prize_pool: Decimal, rank_to_percent: Mapping[Any, Any]) -> Dict[int, Decimal]:
    """
    rank → percent of pool, as whole-unit amounts.

    Percentages must sum to at most 100.
    """
    percents = {rank: to_money(pct, "percent") for rank, pct in normalize_rank_map(rank_to_percent).items()}
    if any(pct < 0 for pct in percents.values()):
        raise ValidationError("Percentages must be non-negative")
    if sum(percents.values()) > 100:
        raise ValidationError("Percentages exceed 100", details={"total": str(sum(percents.values()))})
    pool = to_money(prize_pool, "prize_pool")
    return {
        rank: (pool * pct / 100).quantize(WHOLE_UNIT, rounding=ROUND_DOWN).quantize(CENT)
        for rank, pct in sorted(percents.items())
    }


def compute_payouts(
    prize_pool: Decimal,
    rank_to_amount: Mapping[Any, Any],
    rank_to_payee: Mapping[Any, Payee]
) -> List[PayoutLine]:
    """
    Build payout lines, ordered by rank then member order.

    Args:
        prize_pool: Pool available for distribution
        rank_to_amount: Gross amount per rank
        rank_to_payee: Who receives each rank

    Returns:
        One PayoutLine per (rank, user); zero-amount ranks produce no lines

    Raises:
        ValidationError: Bad rank, negative amount, rank without a payee
            (or payee without an amount), duplicate (rank, user)
        PrizePoolExceededError: Gross total above the prize pool
    """
    amounts = {rank: to_money(value) for rank, value in normalize_rank_map(rank_to_amount, "amounts").items()}
    payees = normalize_rank_map(rank_to_payee, "payees")

    negative = [rank for rank, amount in amounts.items() if amount < 0]
    if negative:
        raise ValidationError("Prize amounts must be non-negative", details={"ranks": sorted(negative)})

    if set(amounts) != set(payees):
        raise ValidationError(
            "Every ranked amount needs exactly one payee",
            details={
                "ranks_without_payee": sorted(set(amounts) - set(payees)),
                "payees_without_amount": sorted(set(payees) - set(amounts)),
            }
        )

    pool = to_money(prize_pool, "prize_pool")
    total = sum(amounts.values(), Decimal("0"))
    if total > pool:
        raise PrizePoolExceededError(
            f"Prize total {total} exceeds prize pool {pool}",
            details={"total": str(total), "prize_pool": str(pool)}
        )

    lines: List[PayoutLine] = []
    seen = set()
    for rank in sorted(amounts):
        amount = amounts[rank]
        if amount <= 0:
            continue
        payee = payees[rank]
        team_id = payee.team_id if isinstance(payee, TeamPayee) else None
        for user_id, share in payee.split(amount):
            if (rank, user_id) in seen:
                raise ValidationError(f"User {user_id} is paid twice for rank {rank}")
            seen.add((rank, user_id))
            if share > 0:
                lines.append(PayoutLine(rank=rank, user_id=user_id, amount=share, team_id=team_id))
    return lines
