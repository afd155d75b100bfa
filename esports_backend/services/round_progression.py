"""
Round Progression Controller

Room lifecycle (pending → active → completed), outcome reporting, and the
end-of-round step that eliminates losers and seeds the next round.

Room flow:
    set_room_credentials → activate_room → record_round_outcome (per team)
    → complete_room → advance_round (once every room of the round is done)
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from esports_backend.exceptions import (
    NotFoundError,
    RoomNotActiveError,
    RoundNotFullyReportedError,
    StateConflictError,
    ValidationError,
)
from esports_backend.orm.base import utcnow
from esports_backend.orm.room import Room, RoomAssignment, RoomStatus
from esports_backend.orm.team import Team
from esports_backend.orm.tournament import Tournament, TournamentStatus
from esports_backend.services.room_allocator import allocate_round, get_round_rooms

logger = logging.getLogger(__name__)


@dataclass
class RoundAdvance:
    """Result of advance_round: either next-round rooms or the ready marker."""
    round_number: int
    next_rooms: List[Room] = field(default_factory=list)
    ready_to_complete: bool = False
    advanced_team_ids: List[int] = field(default_factory=list)
    eliminated_team_ids: List[int] = field(default_factory=list)
    already_processed: bool = False

    def to_dict(self):
        return {
            "round_number": self.round_number,
            "next_round": None if self.ready_to_complete else self.round_number + 1,
            "ready_to_complete": self.ready_to_complete,
            "already_processed": self.already_processed,
            "advanced_team_ids": self.advanced_team_ids,
            "eliminated_team_ids": self.eliminated_team_ids,
            "next_rooms": [room.to_dict() for room in self.next_rooms],
        }


# =============================================================================
# Lookups
# =============================================================================

async def get_room(db: AsyncSession, room_id: int) -> Room:
    result = await db.execute(select(Room).where(Room.id == room_id))
    room = result.scalar_one_or_none()
    if not room:
        raise NotFoundError("Room", room_id)
    return room


async def _get_tournament(db: AsyncSession, tournament_id: int) -> Tournament:
    result = await db.execute(select(Tournament).where(Tournament.id == tournament_id))
    tournament = result.scalar_one_or_none()
    if not tournament:
        raise NotFoundError("Tournament", tournament_id)
    return tournament


# =============================================================================
# Room lifecycle
# =============================================================================

async def set_room_credentials(db: AsyncSession, room_id: int, room_code: str, room_password: str) -> Room:
    """Store the in-game lobby code/password the organizer created."""
    if not room_code or not room_code.strip():
        raise ValidationError("room_code is required")
    if not room_password or not room_password.strip():
        raise ValidationError("room_password is required")

    room = await get_room(db, room_id)
    if room.status == RoomStatus.COMPLETED.value:
        raise StateConflictError(f"Room {room_id} is already completed")

    room.room_code = room_code.strip()
    room.room_password = room_password.strip()
    await db.flush()

    logger.info(f"Room {room_id} credentials set")
    return room


async def activate_room(db: AsyncSession, room_id: int, now: Optional[datetime] = None) -> Room:
    """
    pending → active.

    Raises:
        StateConflictError: Room not pending, tournament not ongoing
        ValidationError: Credentials missing
    """
    room = await get_room(db, room_id)
    if room.status != RoomStatus.PENDING.value:
        raise StateConflictError(
            f"Room {room_id} is {room.status}, only pending rooms can be activated",
            details={"status": room.status}
        )
    if not room.has_credentials:
        raise ValidationError(f"Room {room_id} has no room code/password yet")

    tournament = await _get_tournament(db, room.tournament_id)
    if tournament.status != TournamentStatus.ONGOING.value:
        raise StateConflictError(
            f"Tournament {tournament.id} is {tournament.status}, rooms run only while ongoing",
            details={"status": tournament.status}
        )

    room.status = RoomStatus.ACTIVE.value
    room.started_at = now or utcnow()
    await db.flush()

    logger.info(f"Room {room_id} ({room.name}) active")
    return room


async def record_round_outcome(
    db: AsyncSession,
    assignment_id: int,
    is_winner: bool,
    match_rank: Optional[int] = None
) -> RoomAssignment:
    """
    Report one team's result in its room.

    May be called again to correct a result while the room is active.

    Raises:
        RoomNotActiveError: The room is pending or already completed
        ValidationError: match_rank < 1
    """
    if match_rank is not None and match_rank < 1:
        raise ValidationError("match_rank must be at least 1", details={"match_rank": match_rank})

    result = await db.execute(select(RoomAssignment).where(RoomAssignment.id == assignment_id))
    assignment = result.scalar_one_or_none()
    if not assignment:
        raise NotFoundError("Room assignment", assignment_id)

    room = await get_room(db, assignment.room_id)
    if room.status != RoomStatus.ACTIVE.value:
        raise RoomNotActiveError(
            f"Room {room.id} is {room.status}; outcomes can only be recorded while active",
            details={"room_id": room.id, "status": room.status}
        )

    assignment.is_winner = bool(is_winner)
    assignment.match_rank = match_rank
    await db.flush()

    logger.info(
        f"Room {room.id} slot {assignment.slot_number}: team {assignment.team_id} "
        f"{'won' if is_winner else 'lost'}" + (f" (rank {match_rank})" if match_rank else "")
    )
    return assignment


async def complete_room(db: AsyncSession, room_id: int, now: Optional[datetime] = None) -> Room:
    """
    active → completed.

    Raises:
        RoomNotActiveError: Room is not active
        RoundNotFullyReportedError: Some assignment has no outcome
        ValidationError: No team in the room was marked as winner
    """
    room = await get_room(db, room_id)
    if room.status != RoomStatus.ACTIVE.value:
        raise RoomNotActiveError(
            f"Room {room_id} is {room.status}, only active rooms can be completed",
            details={"status": room.status}
        )

    missing = [a.team_id for a in room.assignments if not a.is_reported]
    if missing:
        raise RoundNotFullyReportedError(
            f"Room {room_id} has {len(missing)} teams without a reported outcome",
            details={"team_ids": missing}
        )
    if not any(a.is_winner for a in room.assignments):
        raise ValidationError(f"Room {room_id} has no winner")

    room.status = RoomStatus.COMPLETED.value
    room.completed_at = now or utcnow()
    await db.flush()

    logger.info(f"Room {room_id} ({room.name}) completed")
    return room


async def complete_rooms(db: AsyncSession, room_ids: List[int], now: Optional[datetime] = None) -> List[Room]:
    """
    Complete several rooms together; the caller commits once.

    The first room that cannot be completed raises, and the caller's
    rollback leaves every room in the batch as it was.

    Raises:
        ValidationError: Empty list or a room listed twice
        plus anything complete_room raises
    """
    if not room_ids:
        raise ValidationError("room_ids must not be empty")
    if len(set(room_ids)) != len(room_ids):
        duplicates = sorted({r for r in room_ids if room_ids.count(r) > 1})
        raise ValidationError("Room listed more than once", details={"room_ids": duplicates})

    now = now or utcnow()
    rooms = [await complete_room(db, room_id, now=now) for room_id in room_ids]
    logger.info(f"Completed {len(rooms)} rooms: {list(room_ids)}")
    return rooms


# =============================================================================
# Round advancement
# =============================================================================

async def advance_round(
    db: AsyncSession,
    tournament_id: int,
    round_number: int,
    now: Optional[datetime] = None
) -> RoundAdvance:
    """
    Eliminate a finished round's losers and allocate the next round.

    Winners move to round_number + 1; everyone else is eliminated with
    final_rank taken from their match rank. After the last round the
    winners keep their round and the result is flagged ready_to_complete.

    Re-running on an already processed round returns the existing
    next-round rooms (or the ready flag) and changes nothing.

    Raises:
        RoundNotFullyReportedError: A room is not completed or an outcome is missing
        StateConflictError: Tournament is not ongoing
        ValidationError: Round out of range or never allocated
    """
    tournament = await _get_tournament(db, tournament_id)
    if round_number < 1 or round_number > tournament.total_rounds:
        raise ValidationError(
            f"Round {round_number} is outside 1..{tournament.total_rounds}",
            details={"round_number": round_number}
        )

    rooms = await get_round_rooms(db, tournament_id, round_number)
    if not rooms:
        raise ValidationError(f"Round {round_number} has not been allocated")

    is_final_round = round_number == tournament.total_rounds

    if all(room.processed_at is not None for room in rooms):
        logger.info(f"Tournament {tournament_id} round {round_number} already processed")
        advance = RoundAdvance(round_number=round_number, already_processed=True)
        advance.advanced_team_ids = [a.team_id for room in rooms for a in room.assignments if a.is_winner]
        advance.eliminated_team_ids = [a.team_id for room in rooms for a in room.assignments if not a.is_winner]
        if is_final_round:
            advance.ready_to_complete = True
        else:
            advance.next_rooms = await get_round_rooms(db, tournament_id, round_number + 1)
        return advance

    if tournament.status != TournamentStatus.ONGOING.value:
        raise StateConflictError(
            f"Tournament {tournament_id} is {tournament.status}; rounds advance only while ongoing",
            details={"status": tournament.status}
        )

    pending_rooms = [room.id for room in rooms if room.status != RoomStatus.COMPLETED.value]
    unreported = [a.team_id for room in rooms for a in room.assignments if not a.is_reported]
    if pending_rooms or unreported:
        raise RoundNotFullyReportedError(
            f"Round {round_number} is not finished",
            details={"pending_room_ids": pending_rooms, "unreported_team_ids": unreported}
        )

    assignments = [a for room in rooms for a in room.assignments]
    result = await db.execute(select(Team).where(Team.id.in_([a.team_id for a in assignments])))
    teams = {team.id: team for team in result.scalars().all()}

    now = now or utcnow()
    advance = RoundAdvance(round_number=round_number)

    for assignment in assignments:
        team = teams[assignment.team_id]
        if assignment.is_winner:
            if not is_final_round:
                team.current_round = round_number + 1
            advance.advanced_team_ids.append(team.id)
        else:
            team.is_eliminated = True
            if assignment.match_rank is not None:
                team.final_rank = assignment.match_rank
            advance.eliminated_team_ids.append(team.id)

    for room in rooms:
        room.processed_at = now

    await db.flush()

    if is_final_round:
        advance.ready_to_complete = True
        logger.info(
            f"Tournament {tournament_id} final round processed: "
            f"{len(advance.advanced_team_ids)} winners, ready to complete"
        )
    else:
        advance.next_rooms = await allocate_round(
            db, tournament_id, round_number + 1, advance.advanced_team_ids, now=now
        )
        logger.info(
            f"Tournament {tournament_id} round {round_number} processed: "
            f"{len(advance.advanced_team_ids)} advance, {len(advance.eliminated_team_ids)} eliminated"
        )

    return advance
