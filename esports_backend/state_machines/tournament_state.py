"""
Tournament State Machine
Server-side enforcement of the tournament lifecycle.

State Flow: upcoming → ongoing → completed → winners_declared
            (any non-terminal) → cancelled
"""
import logging
from datetime import datetime
from typing import Optional, Dict, Any, List

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from esports_backend.exceptions import InvalidTransitionError, NotFoundError, StaleStateError
from esports_backend.orm.base import utcnow
from esports_backend.orm.tournament import Tournament, TournamentStatus, TournamentStatusLog
from esports_backend.rbac import ActorContext

logger = logging.getLogger(__name__)


class TournamentStateMachine:
    """
    Validates and writes tournament status transitions.

    The status write is a conditional UPDATE on (id, version, status): if
    another writer committed a transition after this machine loaded the row,
    no row matches and StaleStateError is raised. Callers run side effects
    (refunds, payouts) after `transition()` returns, inside the same
    transaction, so a lost race rolls them back too.
    """

    # Valid state transitions: {current_state: [allowed_next_states]}
    ALLOWED_TRANSITIONS: Dict[TournamentStatus, List[TournamentStatus]] = {
        TournamentStatus.UPCOMING: [
            TournamentStatus.ONGOING,
            TournamentStatus.CANCELLED
        ],
        TournamentStatus.ONGOING: [
            TournamentStatus.COMPLETED,
            TournamentStatus.CANCELLED
        ],
        TournamentStatus.COMPLETED: [
            TournamentStatus.WINNERS_DECLARED,
            TournamentStatus.CANCELLED
        ],
        TournamentStatus.WINNERS_DECLARED: [],
        TournamentStatus.CANCELLED: []
    }

    TERMINAL_STATES = (TournamentStatus.WINNERS_DECLARED, TournamentStatus.CANCELLED)

    # Timestamp column stamped on entering a state
    STATE_TIMESTAMPS: Dict[TournamentStatus, str] = {
        TournamentStatus.ONGOING: "started_at",
        TournamentStatus.COMPLETED: "completed_at",
        TournamentStatus.WINNERS_DECLARED: "winners_declared_at",
        TournamentStatus.CANCELLED: "cancelled_at",
    }

    def __init__(self, db: AsyncSession, tournament: Tournament):
        self.db = db
        self.tournament = tournament
        self._original_status = TournamentStatus(tournament.status)
        self._original_version = tournament.version

    @classmethod
    async def load(cls, db: AsyncSession, tournament_id: int, lock: bool = True) -> "TournamentStateMachine":
        """Fetch the tournament (FOR UPDATE unless lock=False) and wrap it."""
        # populate_existing: the row may already sit in the identity map with old values
        query = (
            select(Tournament)
            .where(Tournament.id == tournament_id)
            .execution_options(populate_existing=True)
        )
        if lock:
            query = query.with_for_update()
        result = await db.execute(query)
        tournament = result.scalar_one_or_none()
        if not tournament:
            raise NotFoundError("Tournament", tournament_id)
        return cls(db, tournament)

    @property
    def status(self) -> TournamentStatus:
        return TournamentStatus(self.tournament.status)

    @classmethod
    def can_transition(cls, from_state: TournamentStatus, to_state: TournamentStatus) -> bool:
        return to_state in cls.ALLOWED_TRANSITIONS.get(from_state, [])

    def ensure_can_transition(self, new_status: TournamentStatus) -> None:
        if not self.can_transition(self.status, new_status):
            raise InvalidTransitionError(
                f"Cannot transition tournament {self.tournament.id} from "
                f"{self.status.value} to {new_status.value}. "
                f"Allowed: {[s.value for s in self.ALLOWED_TRANSITIONS.get(self.status, [])]}",
                details={"from": self.status.value, "to": new_status.value}
            )

    async def transition(
        self,
        new_status: TournamentStatus,
        actor: ActorContext,
        reason: Optional[str] = None,
        changes: Optional[Dict[str, Any]] = None,
        now: Optional[datetime] = None
    ) -> Tournament:
        """
        Move the tournament to `new_status` and log the transition.

        Args:
            new_status: Target state
            actor: Who triggered the transition
            reason: Free text stored on the log row (and as cancel_reason)
            changes: Extra column values written in the same UPDATE
            now: Clock override

        Returns:
            The refreshed Tournament

        Raises:
            InvalidTransitionError: Not allowed from the current state
            StaleStateError: Another writer changed the row first
        """
        self.ensure_can_transition(new_status)
        now = now or utcnow()
        old_status = self.status

        values: Dict[str, Any] = dict(changes or {})
        values["status"] = new_status.value
        values["version"] = self._original_version + 1
        values["updated_at"] = now
        timestamp_column = self.STATE_TIMESTAMPS.get(new_status)
        if timestamp_column:
            values[timestamp_column] = now
        if new_status == TournamentStatus.CANCELLED:
            values["cancel_reason"] = reason

        # Push pending ORM changes before the conditional write
        await self.db.flush()

        result = await self.db.execute(
            update(Tournament)
            .where(
                Tournament.id == self.tournament.id,
                Tournament.version == self._original_version,
                Tournament.status == old_status.value
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )

        if result.rowcount != 1:
            logger.warning(
                f"Stale transition on tournament {self.tournament.id}: "
                f"{old_status.value} → {new_status.value} (expected version {self._original_version})"
            )
            raise StaleStateError(
                f"Tournament {self.tournament.id} was modified by another process",
                details={"expected_version": self._original_version}
            )

        self.db.add(TournamentStatusLog(
            tournament_id=self.tournament.id,
            from_status=old_status.value,
            to_status=new_status.value,
            actor_id=actor.user_id,
            reason=reason,
            created_at=now
        ))
        await self.db.flush()

        await self.db.refresh(self.tournament)
        self._original_status = new_status
        self._original_version = self.tournament.version

        logger.info(
            f"Tournament {self.tournament.id}: {old_status.value} → {new_status.value} "
            f"by {actor.role.value}:{actor.user_id}"
        )
        return self.tournament
