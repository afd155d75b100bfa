"""
Seeding & Room Allocator

Partitions a round's eligible teams into rooms and persists the Room /
RoomAssignment records.

Seeding is registration order: teams are sorted by id (ids are issued at
join time), so the first team to join fills slot 1 of room 1.
"""
import logging
from datetime import datetime, timedelta
from typing import List, Optional, Sequence

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from esports_backend.config.settings import settings
from esports_backend.exceptions import (
    NotFoundError,
    RoundAlreadyAllocatedError,
    StateConflictError,
    ValidationError,
)
from esports_backend.orm.base import utcnow
from esports_backend.orm.room import Room, RoomAssignment, RoomStatus
from esports_backend.orm.team import Team
from esports_backend.orm.tournament import Tournament, TournamentStatus

logger = logging.getLogger(__name__)

GRAND_FINAL_NAME = "Grand Final"


# =============================================================================
# Helper Functions
# =============================================================================

def partition_teams(team_ids: Sequence[int], capacity: int) -> List[List[int]]:
    """
    Split ordered team ids into ceil(n / capacity) consecutive chunks.

    >>> partition_teams([1, 2, 3, 4, 5], 2)
    [[1, 2], [3, 4], [5]]
    """
    if capacity < 1:
        raise ValidationError("room capacity must be at least 1", details={"capacity": capacity})

    return [list(team_ids[i:i + capacity]) for i in range(0, len(team_ids), capacity)]


def room_name(round_number: int, room_number: int, is_final_round: bool, rooms_in_round: int) -> str:
    if is_final_round and rooms_in_round == 1:
        return GRAND_FINAL_NAME
    return f"Round {round_number} - Room {room_number}"


async def get_round_rooms(db: AsyncSession, tournament_id: int, round_number: int) -> List[Room]:
    """Rooms of one round, in room order."""
    result = await db.execute(
        select(Room)
        .where(Room.tournament_id == tournament_id, Room.round_number == round_number)
        .order_by(Room.room_number.asc())
    )
    return list(result.scalars().all())


async def count_round_rooms(db: AsyncSession, tournament_id: int, round_number: int) -> int:
    result = await db.execute(
        select(func.count(Room.id))
        .where(Room.tournament_id == tournament_id, Room.round_number == round_number)
    )
    return result.scalar() or 0


# =============================================================================
# Allocation
# =============================================================================

async def allocate_round(
    db: AsyncSession,
    tournament_id: int,
    round_number: int,
    eligible_team_ids: Sequence[int],
    now: Optional[datetime] = None
) -> List[Room]:
    """
    Create the rooms and seat assignments for one round.

    Args:
        db: Database session
        tournament_id: Tournament ID
        round_number: Round to allocate (1..total_rounds)
        eligible_team_ids: Teams to seat; re-sorted into registration order
        now: Clock override

    Returns:
        Created rooms in room order (empty list when no teams are given)

    Raises:
        StateConflictError: Tournament is not ongoing
        RoundAlreadyAllocatedError: The round already has rooms
        ValidationError: Round out of range, duplicate team, or a team that
            is eliminated / not in this round / not in this tournament
    """
    result = await db.execute(select(Tournament).where(Tournament.id == tournament_id))
    tournament = result.scalar_one_or_none()
    if not tournament:
        raise NotFoundError("Tournament", tournament_id)

    # Late joiners would never be seated if round 1 were built before the start
    if tournament.status != TournamentStatus.ONGOING.value:
        raise StateConflictError(
            f"Tournament {tournament_id} is {tournament.status}, rooms are allocated once it is ongoing",
            details={"status": tournament.status}
        )

    if round_number < 1 or round_number > tournament.total_rounds:
        raise ValidationError(
            f"Round {round_number} is outside 1..{tournament.total_rounds}",
            details={"round_number": round_number, "total_rounds": tournament.total_rounds}
        )

    if await count_round_rooms(db, tournament_id, round_number):
        raise RoundAlreadyAllocatedError(
            f"Round {round_number} of tournament {tournament_id} is already allocated",
            details={"round_number": round_number}
        )

    team_ids = list(eligible_team_ids)
    if not team_ids:
        logger.info(f"Tournament {tournament_id} round {round_number}: no teams, nothing allocated")
        return []

    if len(set(team_ids)) != len(team_ids):
        duplicates = sorted({t for t in team_ids if team_ids.count(t) > 1})
        raise ValidationError("Team listed more than once", details={"team_ids": duplicates})

    result = await db.execute(select(Team).where(Team.id.in_(team_ids)))
    teams = {team.id: team for team in result.scalars().all()}

    for team_id in team_ids:
        team = teams.get(team_id)
        if team is None or team.tournament_id != tournament_id:
            raise ValidationError(
                f"Team {team_id} is not registered in tournament {tournament_id}",
                details={"team_id": team_id}
            )
        if team.is_eliminated:
            raise ValidationError(f"Team {team_id} is eliminated", details={"team_id": team_id})
        if team.current_round != round_number:
            raise ValidationError(
                f"Team {team_id} is in round {team.current_round}, not {round_number}",
                details={"team_id": team_id, "current_round": team.current_round}
            )

    now = now or utcnow()
    seeded = sorted(team_ids)
    chunks = partition_teams(seeded, tournament.room_capacity)

    # Round 1 follows the published start; later rounds start from allocation time
    base_time = tournament.scheduled_start if round_number == 1 and tournament.scheduled_start else now
    gap = timedelta(minutes=settings.ROOM_SCHEDULE_GAP_MINUTES)
    is_final_round = round_number == tournament.total_rounds

    rooms: List[Room] = []
    for index, chunk in enumerate(chunks):
        room_number = index + 1
        room = Room(
            tournament_id=tournament_id,
            round_number=round_number,
            room_number=room_number,
            name=room_name(round_number, room_number, is_final_round, len(chunks)),
            capacity=tournament.room_capacity,
            scheduled_time=base_time + gap * index,
            status=RoomStatus.PENDING.value,
        )
        room.assignments = [
            RoomAssignment(
                team_id=team_id,
                round_number=round_number,
                slot_number=slot + 1,
            )
            for slot, team_id in enumerate(chunk)
        ]
        db.add(room)
        rooms.append(room)

    if round_number > tournament.current_round:
        tournament.current_round = round_number

    await db.flush()

    logger.info(
        f"Tournament {tournament_id} round {round_number}: "
        f"{len(seeded)} teams into {len(rooms)} rooms (capacity {tournament.room_capacity})"
    )
    return rooms
