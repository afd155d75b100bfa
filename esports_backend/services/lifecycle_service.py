"""
Tournament Lifecycle Service

Creation, start, end, winner declaration, cancellation and the
auto-cancel query used by the background sweep.

Every status change goes through TournamentStateMachine. Financial side
effects (refunds, prize credits) run after the transition in the same
transaction, so a stale transition leaves no money moved.
"""
import logging
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from esports_backend.config.settings import settings
from esports_backend.exceptions import (
    AlreadyDeclaredError,
    CooldownNotElapsedError,
    InvalidTransitionError,
    NotFoundError,
    StateConflictError,
    ValidationError,
)
from esports_backend.orm.base import utcnow
from esports_backend.orm.prize import PrizeDistribution, PrizePayout
from esports_backend.orm.team import Team, Registration, RegistrationStatus
from esports_backend.orm.tournament import Tournament, TournamentStatus, TournamentStatusLog, TournamentMode
from esports_backend.orm.wallet import TransactionType
from esports_backend.rbac import ActorContext, ActorRole, SYSTEM_ACTOR, ensure_can_manage, ensure_role
from esports_backend.services import wallet_service
from esports_backend.services.capacity_planner import plan_capacity
from esports_backend.services.prize_calculator import (
    IndividualPayee,
    TeamPayee,
    compute_payouts,
    normalize_rank_map,
    to_money,
)
from esports_backend.services.registration_service import count_participants, refund_registrations
from esports_backend.services.room_allocator import allocate_round, count_round_rooms
from esports_backend.state_machines.tournament_state import TournamentStateMachine

logger = logging.getLogger(__name__)

AUTO_CANCEL_REASON = "Winners not declared within {minutes} minutes of completion"


def compute_prize_pool(entry_fee: Decimal, participants: int, percent: int) -> Decimal:
    """entry fee x participants x percent, rounded half-up to whole units."""
    gross = Decimal(entry_fee or 0) * participants * Decimal(percent) / Decimal(100)
    return gross.quantize(Decimal("1"), rounding=ROUND_HALF_UP).quantize(Decimal("0.01"))


class LifecycleService:
    """
    Tournament lifecycle orchestrator.

    WINNERS_DECLARED and CANCELLED are terminal.
    """

    # ==========================================================================
    # Creation & lookup
    # ==========================================================================

    @staticmethod
    async def create_tournament(
        db: AsyncSession,
        actor: ActorContext,
        name: str,
        game: str,
        mode: str,
        max_participants: int,
        entry_fee: Any = 0,
        registration_deadline: Optional[datetime] = None,
        scheduled_start: Optional[datetime] = None,
        institution_name: Optional[str] = None,
        prize_pool_percent: Optional[int] = None,
        room_capacity: Optional[int] = None,
        now: Optional[datetime] = None
    ) -> Tournament:
        """
        Create an upcoming tournament sized by the capacity planner.

        Raises:
            PermissionDeniedError: Actor is a player
            ValidationError: Bad name, fee, percent, dates or capacity input
        """
        ensure_role(actor, ActorRole.ORGANIZER)
        now = now or utcnow()

        if not name or not name.strip():
            raise ValidationError("name is required")
        fee = to_money(entry_fee, "entry_fee")
        if fee < 0:
            raise ValidationError("entry_fee must be non-negative", details={"entry_fee": str(fee)})
        percent = settings.PRIZE_POOL_PERCENT if prize_pool_percent is None else prize_pool_percent
        if percent < 0 or percent > 100:
            raise ValidationError("prize_pool_percent must be between 0 and 100")
        if registration_deadline and scheduled_start and registration_deadline > scheduled_start:
            raise ValidationError("registration_deadline must not be after scheduled_start")

        plan = plan_capacity(game, max_participants, mode, room_capacity=room_capacity)

        tournament = Tournament(
            name=name.strip(),
            institution_name=institution_name,
            game=plan.game,
            mode=plan.mode,
            status=TournamentStatus.UPCOMING.value,
            entry_fee=fee,
            max_participants=max_participants,
            prize_pool=compute_prize_pool(fee, max_participants, percent),
            prize_pool_percent=percent,
            registration_deadline=registration_deadline,
            scheduled_start=scheduled_start,
            room_capacity=plan.room_capacity,
            total_rounds=plan.total_rounds,
            current_round=0,
            organizer_id=actor.user_id,
            version=1,
        )
        db.add(tournament)
        await db.flush()

        db.add(TournamentStatusLog(
            tournament_id=tournament.id,
            from_status=None,
            to_status=TournamentStatus.UPCOMING.value,
            actor_id=actor.user_id,
            reason="created",
            created_at=now,
        ))
        await db.flush()

        logger.info(
            f"Tournament {tournament.id} created by {actor.user_id}: {plan.game} {plan.mode}, "
            f"{plan.total_teams} teams, {plan.initial_rooms} rooms, {plan.total_rounds} rounds"
        )
        return tournament

    @staticmethod
    async def get_tournament(db: AsyncSession, tournament_id: int, lock: bool = False) -> Tournament:
        query = select(Tournament).where(Tournament.id == tournament_id)
        if lock:
            query = query.with_for_update()
        result = await db.execute(query)
        tournament = result.scalar_one_or_none()
        if not tournament:
            raise NotFoundError("Tournament", tournament_id)
        return tournament

    @staticmethod
    async def set_room_details(
        db: AsyncSession,
        tournament_id: int,
        room_code: str,
        room_password: str,
        actor: ActorContext
    ) -> Tournament:
        """Organizer supplies the lobby code/password players will use."""
        tournament = await LifecycleService.get_tournament(db, tournament_id, lock=True)
        ensure_can_manage(actor, tournament.organizer_id, "set room details")

        if tournament.status not in (TournamentStatus.UPCOMING.value, TournamentStatus.ONGOING.value):
            raise StateConflictError(
                f"Room details cannot change once the tournament is {tournament.status}"
            )
        if not room_code or not room_code.strip() or not room_password or not room_password.strip():
            raise ValidationError("room_code and room_password are required")

        tournament.room_code = room_code.strip()
        tournament.room_password = room_password.strip()
        await db.flush()

        logger.info(f"Tournament {tournament_id} room details set by {actor.user_id}")
        return tournament

    # ==========================================================================
    # Transitions
    # ==========================================================================

    @staticmethod
    async def start_tournament(
        db: AsyncSession,
        tournament_id: int,
        actor: ActorContext,
        now: Optional[datetime] = None
    ) -> Tournament:
        """
        upcoming → ongoing.

        Recomputes the prize pool from the players who actually joined and
        allocates round 1 with every registered team in join order.
        """
        now = now or utcnow()
        machine = await TournamentStateMachine.load(db, tournament_id)
        tournament = machine.tournament
        ensure_can_manage(actor, tournament.organizer_id, "start this tournament")
        machine.ensure_can_transition(TournamentStatus.ONGOING)

        if not tournament.has_room_credentials:
            raise ValidationError(
                f"Tournament {tournament_id} needs a room code and password before it can start"
            )

        participants = await count_participants(db, tournament_id)
        prize_pool = compute_prize_pool(tournament.entry_fee, participants, tournament.prize_pool_percent)

        tournament = await machine.transition(
            TournamentStatus.ONGOING, actor,
            reason=f"started with {participants} players",
            changes={"prize_pool": prize_pool},
            now=now
        )

        if not await count_round_rooms(db, tournament_id, 1):
            result = await db.execute(
                select(Team.id)
                .where(Team.tournament_id == tournament_id, Team.is_eliminated.is_(False))
                .order_by(Team.id.asc())
            )
            await allocate_round(db, tournament_id, 1, list(result.scalars().all()), now=now)

        logger.info(f"Tournament {tournament_id} started: {participants} players, prize pool {prize_pool}")
        return tournament

    @staticmethod
    async def end_tournament(
        db: AsyncSession,
        tournament_id: int,
        actor: ActorContext,
        now: Optional[datetime] = None
    ) -> Tournament:
        """ongoing → completed; starts the winner-declaration cooldown."""
        machine = await TournamentStateMachine.load(db, tournament_id)
        ensure_can_manage(actor, machine.tournament.organizer_id, "end this tournament")
        return await machine.transition(TournamentStatus.COMPLETED, actor, reason="ended", now=now)

    @staticmethod
    async def declare_winners(
        db: AsyncSession,
        tournament_id: int,
        rank_to_amount: Mapping[Any, Any],
        rank_to_entity: Mapping[Any, int],
        actor: ActorContext,
        now: Optional[datetime] = None
    ) -> PrizeDistribution:
        """
        completed → winners_declared, then pay out.

        Args:
            rank_to_amount: rank → gross prize
            rank_to_entity: rank → team id (solo teams pay their single player)

        Raises:
            AlreadyDeclaredError: Winners were declared before
            InvalidTransitionError: Tournament is not completed
            CooldownNotElapsedError: Less than the cooldown since completion
            PrizePoolExceededError: Prize total above the pool
            ValidationError: Bad ranks / unknown or duplicate teams
        """
        now = now or utcnow()
        machine = await TournamentStateMachine.load(db, tournament_id)
        tournament = machine.tournament
        ensure_can_manage(actor, tournament.organizer_id, "declare winners")

        existing = await db.execute(
            select(PrizeDistribution.id).where(PrizeDistribution.tournament_id == tournament_id)
        )
        if tournament.status == TournamentStatus.WINNERS_DECLARED.value or existing.scalar_one_or_none():
            raise AlreadyDeclaredError(f"Winners for tournament {tournament_id} are already declared")

        machine.ensure_can_transition(TournamentStatus.WINNERS_DECLARED)

        ready_at = tournament.completed_at + timedelta(minutes=settings.WINNER_COOLDOWN_MINUTES)
        if now < ready_at:
            raise CooldownNotElapsedError(
                f"Winners can be declared {settings.WINNER_COOLDOWN_MINUTES} minutes after completion",
                details={
                    "ready_at": ready_at.isoformat(),
                    "seconds_remaining": int((ready_at - now).total_seconds()),
                }
            )

        rank_to_team = normalize_rank_map(rank_to_entity, "winners")
        team_ids = list(rank_to_team.values())
        if len(set(team_ids)) != len(team_ids):
            raise ValidationError("A team holds more than one rank")

        result = await db.execute(
            select(Team).where(Team.id.in_(team_ids), Team.tournament_id == tournament_id)
        )
        teams = {team.id: team for team in result.scalars().all()}
        unknown = [team_id for team_id in team_ids if team_id not in teams]
        if unknown:
            raise ValidationError(
                f"Teams not registered in tournament {tournament_id}",
                details={"team_ids": unknown}
            )
        # A withdrawn team already had its fees refunded
        withdrawn = [team_id for team_id in team_ids if teams[team_id].withdrawn_at is not None]
        if withdrawn:
            raise ValidationError(
                f"Teams withdrew from tournament {tournament_id}",
                details={"team_ids": withdrawn}
            )

        payees = {}
        for rank, team_id in rank_to_team.items():
            team = teams[team_id]
            if tournament.mode == TournamentMode.SOLO.value:
                payees[rank] = IndividualPayee(user_id=team.leader_id)
            else:
                payees[rank] = TeamPayee(team_id=team.id, member_ids=tuple(team.member_ids))

        lines = compute_payouts(tournament.prize_pool, rank_to_amount, payees)
        amounts = {rank: to_money(value) for rank, value in normalize_rank_map(rank_to_amount, "amounts").items()}

        # Status first: a losing race must not leave payouts behind
        await machine.transition(
            TournamentStatus.WINNERS_DECLARED, actor,
            reason=f"{len(rank_to_team)} ranks declared",
            now=now
        )

        distribution = PrizeDistribution(
            tournament_id=tournament_id,
            rank_amounts={str(rank): str(amount) for rank, amount in sorted(amounts.items())},
            total_amount=sum(amounts.values(), Decimal("0")),
            total_disbursed=sum((line.amount for line in lines), Decimal("0")),
            declared_by=actor.user_id,
            declared_at=now,
            payouts=[
                PrizePayout(
                    tournament_id=tournament_id,
                    rank=line.rank,
                    team_id=rank_to_team[line.rank],
                    user_id=line.user_id,
                    amount=line.amount,
                )
                for line in lines
            ],
        )
        db.add(distribution)

        for rank, team_id in rank_to_team.items():
            teams[team_id].final_rank = rank
        await db.flush()

        for line in lines:
            await wallet_service.credit(
                db, line.user_id, line.amount, TransactionType.PRIZE,
                tournament_id=tournament_id,
                description=f"Rank {line.rank} prize in {tournament.name}"
            )

        logger.info(
            f"Tournament {tournament_id} winners declared by {actor.user_id}: "
            f"{len(lines)} payouts, {distribution.total_disbursed} of {distribution.total_amount} disbursed"
        )
        return distribution

    @staticmethod
    async def cancel_tournament(
        db: AsyncSession,
        tournament_id: int,
        actor: ActorContext,
        reason: Optional[str],
        now: Optional[datetime] = None
    ) -> Tournament:
        """Any non-terminal state → cancelled; refunds every paid registration."""
        if not reason or not reason.strip():
            raise ValidationError("A cancellation reason is required")
        now = now or utcnow()

        machine = await TournamentStateMachine.load(db, tournament_id)
        ensure_can_manage(actor, machine.tournament.organizer_id, "cancel this tournament")
        tournament = await machine.transition(TournamentStatus.CANCELLED, actor, reason=reason.strip(), now=now)

        result = await db.execute(
            select(Registration).where(
                Registration.tournament_id == tournament_id,
                Registration.status == RegistrationStatus.PAID.value
            )
        )
        await refund_registrations(
            db, list(result.scalars().all()), tournament_id,
            reason=f"Refund: {tournament.name} cancelled", now=now
        )
        return tournament

    @staticmethod
    async def transition_status(
        db: AsyncSession,
        tournament_id: int,
        new_status: TournamentStatus,
        actor: ActorContext,
        reason: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> Tournament:
        """
        Single entry point for status changes that need no payload.

        Winner declaration carries prize data and goes through
        declare_winners instead.
        """
        new_status = TournamentStatus(new_status)
        if new_status == TournamentStatus.ONGOING:
            return await LifecycleService.start_tournament(db, tournament_id, actor, now=now)
        if new_status == TournamentStatus.COMPLETED:
            return await LifecycleService.end_tournament(db, tournament_id, actor, now=now)
        if new_status == TournamentStatus.CANCELLED:
            return await LifecycleService.cancel_tournament(db, tournament_id, actor, reason, now=now)
        if new_status == TournamentStatus.WINNERS_DECLARED:
            raise ValidationError("Use declare_winners to declare winners with their prizes")

        machine = await TournamentStateMachine.load(db, tournament_id)
        machine.ensure_can_transition(new_status)
        return machine.tournament

    # ==========================================================================
    # Auto-cancel
    # ==========================================================================

    @staticmethod
    async def find_expired_completed(db: AsyncSession, now: Optional[datetime] = None) -> List[int]:
        """Completed tournaments whose declaration window has run out."""
        now = now or utcnow()
        deadline = now - timedelta(minutes=settings.AUTO_CANCEL_AFTER_MINUTES)
        result = await db.execute(
            select(Tournament.id)
            .where(
                Tournament.status == TournamentStatus.COMPLETED.value,
                Tournament.completed_at <= deadline
            )
            .order_by(Tournament.id.asc())
        )
        return list(result.scalars().all())

    @staticmethod
    async def auto_cancel(db: AsyncSession, tournament_id: int, now: Optional[datetime] = None) -> Tournament:
        """Cancel one expired tournament as the system actor."""
        now = now or utcnow()
        tournament = await LifecycleService.get_tournament(db, tournament_id)
        deadline = now - timedelta(minutes=settings.AUTO_CANCEL_AFTER_MINUTES)
        if tournament.status != TournamentStatus.COMPLETED.value:
            raise InvalidTransitionError(
                f"Tournament {tournament_id} is {tournament.status}, only completed tournaments auto-cancel",
                details={"status": tournament.status}
            )
        if tournament.completed_at > deadline:
            raise StateConflictError(f"Tournament {tournament_id} is still inside its declaration window")

        reason = AUTO_CANCEL_REASON.format(minutes=settings.AUTO_CANCEL_AFTER_MINUTES)
        return await LifecycleService.cancel_tournament(db, tournament_id, SYSTEM_ACTOR, reason, now=now)

    # ==========================================================================
    # History
    # ==========================================================================

    @staticmethod
    async def get_history(db: AsyncSession, tournament_id: int) -> List[TournamentStatusLog]:
        await LifecycleService.get_tournament(db, tournament_id)
        result = await db.execute(
            select(TournamentStatusLog)
            .where(TournamentStatusLog.tournament_id == tournament_id)
            .order_by(TournamentStatusLog.id.asc())
        )
        return list(result.scalars().all())

    @staticmethod
    async def get_distribution(db: AsyncSession, tournament_id: int) -> PrizeDistribution:
        result = await db.execute(
            select(PrizeDistribution).where(PrizeDistribution.tournament_id == tournament_id)
        )
        distribution = result.scalar_one_or_none()
        if not distribution:
            raise NotFoundError("Prize distribution", tournament_id)
        return distribution
