"""
esports_backend/routes/rounds.py
Round allocation, room lifecycle and outcome reporting.

All mutating routes require the tournament's organizer or an admin.
"""
import logging

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from esports_backend.database import get_db
from esports_backend.exceptions import NotFoundError
from esports_backend.orm.room import RoomAssignment
from esports_backend.orm.team import Team
from esports_backend.rbac import ActorContext, ensure_can_manage, get_actor
from esports_backend.schemas.tournament import (
    AllocateRoundRequest,
    CompleteRoomsRequest,
    RoomDetailsRequest,
    RoundOutcomeRequest,
)
from esports_backend.services import round_progression
from esports_backend.services.lifecycle_service import LifecycleService
from esports_backend.services.room_allocator import allocate_round, get_round_rooms

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Rounds"])


async def _ensure_manager(db: AsyncSession, tournament_id: int, actor: ActorContext, action: str):
    tournament = await LifecycleService.get_tournament(db, tournament_id)
    ensure_can_manage(actor, tournament.organizer_id, action)
    return tournament


async def _ensure_room_manager(db: AsyncSession, room_id: int, actor: ActorContext, action: str):
    room = await round_progression.get_room(db, room_id)
    await _ensure_manager(db, room.tournament_id, actor, action)
    return room


# ============================================================================
# Rounds
# ============================================================================

@router.post("/tournaments/{tournament_id}/rounds/{round_number}/allocate")
async def allocate(
    tournament_id: int,
    round_number: int,
    body: AllocateRoundRequest,
    actor: ActorContext = Depends(get_actor),
    db: AsyncSession = Depends(get_db)
):
    """Seat teams for a round. Without team_ids, every team still in the round is seated."""
    await _ensure_manager(db, tournament_id, actor, "allocate rounds")

    team_ids = body.team_ids
    if team_ids is None:
        result = await db.execute(
            select(Team.id)
            .where(
                Team.tournament_id == tournament_id,
                Team.current_round == round_number,
                Team.is_eliminated.is_(False)
            )
            .order_by(Team.id.asc())
        )
        team_ids = list(result.scalars().all())

    rooms = await allocate_round(db, tournament_id, round_number, team_ids)
    await db.commit()
    return {"success": True, "rooms": [room.to_dict() for room in rooms]}


@router.post("/tournaments/{tournament_id}/rounds/{round_number}/advance")
async def advance(
    tournament_id: int,
    round_number: int,
    actor: ActorContext = Depends(get_actor),
    db: AsyncSession = Depends(get_db)
):
    await _ensure_manager(db, tournament_id, actor, "advance rounds")
    result = await round_progression.advance_round(db, tournament_id, round_number)
    await db.commit()
    return {"success": True, **result.to_dict()}


@router.get("/tournaments/{tournament_id}/rounds/{round_number}/rooms")
async def list_rooms(
    tournament_id: int,
    round_number: int,
    actor: ActorContext = Depends(get_actor),
    db: AsyncSession = Depends(get_db)
):
    """Room codes are only shown to the organizer and admins."""
    tournament = await LifecycleService.get_tournament(db, tournament_id)
    show_credentials = actor.is_privileged or actor.user_id == tournament.organizer_id
    rooms = await get_round_rooms(db, tournament_id, round_number)
    return {
        "success": True,
        "rooms": [room.to_dict(include_credentials=show_credentials) for room in rooms]
    }


# ============================================================================
# Rooms
# ============================================================================

@router.put("/rooms/{room_id}/credentials")
async def set_room_credentials(
    room_id: int,
    body: RoomDetailsRequest,
    actor: ActorContext = Depends(get_actor),
    db: AsyncSession = Depends(get_db)
):
    await _ensure_room_manager(db, room_id, actor, "set room credentials")
    room = await round_progression.set_room_credentials(db, room_id, body.room_code, body.room_password)
    await db.commit()
    return {"success": True, "room": room.to_dict(include_credentials=True)}


@router.post("/rooms/{room_id}/activate")
async def activate_room(
    room_id: int,
    actor: ActorContext = Depends(get_actor),
    db: AsyncSession = Depends(get_db)
):
    await _ensure_room_manager(db, room_id, actor, "activate rooms")
    room = await round_progression.activate_room(db, room_id)
    await db.commit()
    return {"success": True, "room": room.to_dict()}


@router.post("/rooms/complete")
async def complete_rooms(
    body: CompleteRoomsRequest,
    actor: ActorContext = Depends(get_actor),
    db: AsyncSession = Depends(get_db)
):
    """End several rooms in one transaction."""
    for room_id in body.room_ids:
        await _ensure_room_manager(db, room_id, actor, "complete rooms")
    rooms = await round_progression.complete_rooms(db, body.room_ids)
    await db.commit()
    return {"success": True, "rooms": [room.to_dict() for room in rooms]}


@router.post("/rooms/{room_id}/complete")
async def complete_room(
    room_id: int,
    actor: ActorContext = Depends(get_actor),
    db: AsyncSession = Depends(get_db)
):
    await _ensure_room_manager(db, room_id, actor, "complete rooms")
    room = await round_progression.complete_room(db, room_id)
    await db.commit()
    return {"success": True, "room": room.to_dict()}


@router.put("/assignments/{assignment_id}/outcome")
async def record_outcome(
    assignment_id: int,
    body: RoundOutcomeRequest,
    actor: ActorContext = Depends(get_actor),
    db: AsyncSession = Depends(get_db)
):
    result = await db.execute(select(RoomAssignment).where(RoomAssignment.id == assignment_id))
    assignment = result.scalar_one_or_none()
    if not assignment:
        raise NotFoundError("Room assignment", assignment_id)
    await _ensure_room_manager(db, assignment.room_id, actor, "report outcomes")

    assignment = await round_progression.record_round_outcome(
        db, assignment_id, body.is_winner, match_rank=body.match_rank
    )
    await db.commit()
    return {"success": True, "assignment": assignment.to_dict()}
