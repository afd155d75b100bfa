"""
Registration Service

Joining and leaving tournaments. The team leader pays the entry fee for
every member; refunds go back to whoever paid.
"""
import logging
from collections import OrderedDict
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, List, Optional, Sequence

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from esports_backend.config.settings import settings
from esports_backend.exceptions import (
    AlreadyJoinedError,
    NotFoundError,
    PermissionDeniedError,
    RegistrationClosedError,
    TournamentFullError,
    ValidationError,
)
from esports_backend.orm.base import utcnow
from esports_backend.orm.team import Team, TeamMember, Registration, RegistrationStatus
from esports_backend.orm.tournament import Tournament, TournamentStatus, TournamentMode
from esports_backend.orm.wallet import TransactionType
from esports_backend.rbac import ActorContext
from esports_backend.services import wallet_service

logger = logging.getLogger(__name__)


async def _load_tournament(db: AsyncSession, tournament_id: int) -> Tournament:
    result = await db.execute(
        select(Tournament).where(Tournament.id == tournament_id).with_for_update()
    )
    tournament = result.scalar_one_or_none()
    if not tournament:
        raise NotFoundError("Tournament", tournament_id)
    return tournament


async def count_participants(db: AsyncSession, tournament_id: int) -> int:
    """Players holding a paid (not refunded) seat."""
    result = await db.execute(
        select(func.count(Registration.id)).where(
            Registration.tournament_id == tournament_id,
            Registration.status == RegistrationStatus.PAID.value
        )
    )
    return result.scalar() or 0


async def refund_registrations(
    db: AsyncSession,
    registrations: Sequence[Registration],
    tournament_id: int,
    reason: str,
    now: Optional[datetime] = None
) -> Decimal:
    """
    Refund paid registrations in full to their payers.

    Returns:
        Total refunded
    """
    now = now or utcnow()
    per_payer: Dict[int, Decimal] = OrderedDict()
    for registration in registrations:
        if registration.status != RegistrationStatus.PAID.value:
            continue
        amount = Decimal(registration.amount_paid or 0)
        per_payer[registration.paid_by_user_id] = per_payer.get(registration.paid_by_user_id, Decimal("0")) + amount
        registration.status = RegistrationStatus.REFUNDED.value
        registration.refunded_at = now

    total = Decimal("0")
    for payer_id, amount in per_payer.items():
        if amount > 0:
            await wallet_service.credit(
                db, payer_id, amount, TransactionType.REFUND,
                tournament_id=tournament_id, description=reason
            )
            total += amount

    await db.flush()
    if per_payer:
        logger.info(f"Tournament {tournament_id}: refunded {total} to {len(per_payer)} payers ({reason})")
    return total


async def join_tournament(
    db: AsyncSession,
    tournament_id: int,
    actor: ActorContext,
    team_name: Optional[str] = None,
    member_ids: Optional[List[int]] = None,
    now: Optional[datetime] = None
) -> Team:
    """
    Register the actor's team and charge the entry fee.

    The actor is the leader and pays `entry_fee` per member. Solo
    registrations may omit member_ids.

    Raises:
        RegistrationClosedError: Not upcoming, or past the registration deadline
        ValidationError: Member count does not match the mode, duplicate member
        AlreadyJoinedError: A member already holds a seat
        TournamentFullError: Not enough seats left
        InsufficientBalanceError: Leader cannot cover the fees
    """
    now = now or utcnow()
    tournament = await _load_tournament(db, tournament_id)

    if tournament.status != TournamentStatus.UPCOMING.value:
        raise RegistrationClosedError(
            f"Tournament {tournament_id} is {tournament.status}, registration is closed",
            details={"status": tournament.status}
        )
    if tournament.registration_deadline and now > tournament.registration_deadline:
        raise RegistrationClosedError(
            f"Registration for tournament {tournament_id} closed at {tournament.registration_deadline.isoformat()}"
        )

    members = list(member_ids or [])
    if actor.user_id not in members:
        members.insert(0, actor.user_id)
    if len(set(members)) != len(members):
        raise ValidationError("A player is listed twice", details={"member_ids": members})
    if len(members) != tournament.team_size:
        raise ValidationError(
            f"{tournament.mode} teams need exactly {tournament.team_size} players, got {len(members)}",
            details={"mode": tournament.mode, "member_ids": members}
        )

    result = await db.execute(
        select(Registration.user_id).where(
            Registration.tournament_id == tournament_id,
            Registration.user_id.in_(members),
            Registration.status == RegistrationStatus.PAID.value
        )
    )
    already = sorted(result.scalars().all())
    if already:
        raise AlreadyJoinedError(
            f"Players already registered in tournament {tournament_id}",
            details={"user_ids": already}
        )

    participants = await count_participants(db, tournament_id)
    if participants + len(members) > tournament.max_participants:
        raise TournamentFullError(
            f"Tournament {tournament_id} is full",
            details={"participants": participants, "max_participants": tournament.max_participants}
        )

    entry_fee = Decimal(tournament.entry_fee or 0)
    total_fee = entry_fee * len(members)
    if total_fee > 0:
        await wallet_service.debit(
            db, actor.user_id, total_fee, TransactionType.ENTRY_FEE,
            tournament_id=tournament_id,
            description=f"Entry fee for {len(members)} player(s) in {tournament.name}"
        )

    if not team_name or not team_name.strip():
        team_name = f"Player {actor.user_id}" if tournament.mode == TournamentMode.SOLO.value else f"Team {actor.user_id}"

    team = Team(
        tournament_id=tournament_id,
        name=team_name.strip(),
        leader_id=actor.user_id,
        current_round=1,
        is_eliminated=False,
        members=[TeamMember(user_id=user_id) for user_id in members],
    )
    db.add(team)
    await db.flush()

    for user_id in members:
        db.add(Registration(
            tournament_id=tournament_id,
            team_id=team.id,
            user_id=user_id,
            paid_by_user_id=actor.user_id,
            amount_paid=entry_fee,
            status=RegistrationStatus.PAID.value,
        ))
    await db.flush()

    logger.info(
        f"Team {team.id} ({team.name}) joined tournament {tournament_id}: "
        f"{len(members)} players, fee {total_fee} paid by {actor.user_id}"
    )
    return team


async def leave_tournament(
    db: AsyncSession,
    tournament_id: int,
    actor: ActorContext,
    now: Optional[datetime] = None
) -> Decimal:
    """
    Withdraw the actor's team and refund every member's fee.

    Only the leader may withdraw the team. Allowed while upcoming and more
    than LEAVE_CUTOFF_MINUTES before the scheduled start.

    Returns:
        Total refunded
    """
    now = now or utcnow()
    tournament = await _load_tournament(db, tournament_id)

    if tournament.status != TournamentStatus.UPCOMING.value:
        raise RegistrationClosedError(
            f"Tournament {tournament_id} is {tournament.status}, players can no longer leave"
        )
    if tournament.scheduled_start:
        cutoff = tournament.scheduled_start - timedelta(minutes=settings.LEAVE_CUTOFF_MINUTES)
        if now >= cutoff:
            raise RegistrationClosedError(
                f"Leaving closes {settings.LEAVE_CUTOFF_MINUTES} minutes before the start",
                details={"cutoff": cutoff.isoformat()}
            )

    result = await db.execute(
        select(Registration).where(
            Registration.tournament_id == tournament_id,
            Registration.user_id == actor.user_id,
            Registration.status == RegistrationStatus.PAID.value
        )
    )
    registration = result.scalar_one_or_none()
    if not registration:
        raise NotFoundError("Registration", f"{tournament_id}/{actor.user_id}")

    result = await db.execute(select(Team).where(Team.id == registration.team_id))
    team = result.scalar_one()
    if team.leader_id != actor.user_id:
        raise PermissionDeniedError("Only the team leader can withdraw the team")

    result = await db.execute(
        select(Registration).where(
            Registration.team_id == team.id,
            Registration.status == RegistrationStatus.PAID.value
        )
    )
    refunded = await refund_registrations(
        db, list(result.scalars().all()), tournament_id,
        reason=f"Withdrawal from {tournament.name}", now=now
    )

    team.is_eliminated = True
    team.withdrawn_at = now
    await db.flush()

    logger.info(f"Team {team.id} withdrew from tournament {tournament_id}, refunded {refunded}")
    return refunded
