"""
esports_backend/routes/tournaments.py
Tournament lifecycle, registration and prize routes.

Engine exceptions propagate to the handlers registered in main.py; each
route commits its own transaction once the service call succeeds.
"""
import logging

from fastapi import APIRouter, Depends, Request, status
from slowapi import Limiter
from slowapi.util import get_remote_address
from sqlalchemy.ext.asyncio import AsyncSession

from esports_backend.config.settings import settings
from esports_backend.database import get_db
from esports_backend.rbac import ActorContext, get_actor
from esports_backend.schemas.tournament import (
    CapacityPlanRequest,
    CapacityPlanResponse,
    DeclareWinnersRequest,
    JoinRequest,
    RoomDetailsRequest,
    TournamentCreateRequest,
    TransitionRequest,
)
from esports_backend.services import registration_service
from esports_backend.services.capacity_planner import plan_capacity
from esports_backend.services.lifecycle_service import LifecycleService
from esports_backend.services.stats_service import get_tournament_stats

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/tournaments", tags=["Tournaments"])
limiter = Limiter(key_func=get_remote_address)


@router.post("/plan", response_model=CapacityPlanResponse)
async def plan(request: CapacityPlanRequest):
    """Preview the bracket for a roster size; nothing is stored."""
    return plan_capacity(
        request.game, request.max_players, request.mode, room_capacity=request.room_capacity
    ).to_dict()


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_tournament(
    request: TournamentCreateRequest,
    actor: ActorContext = Depends(get_actor),
    db: AsyncSession = Depends(get_db)
):
    tournament = await LifecycleService.create_tournament(
        db,
        actor,
        name=request.name,
        game=request.game,
        mode=request.mode,
        max_participants=request.max_participants,
        entry_fee=request.entry_fee,
        registration_deadline=request.registration_deadline,
        scheduled_start=request.scheduled_start,
        institution_name=request.institution_name,
        prize_pool_percent=request.prize_pool_percent,
        room_capacity=request.room_capacity,
    )
    await db.commit()
    return {"success": True, "tournament": tournament.to_dict()}


@router.get("/{tournament_id}")
async def get_tournament(tournament_id: int, db: AsyncSession = Depends(get_db)):
    tournament = await LifecycleService.get_tournament(db, tournament_id)
    return {"success": True, "tournament": tournament.to_dict()}


@router.get("/{tournament_id}/stats")
async def tournament_stats(tournament_id: int, db: AsyncSession = Depends(get_db)):
    return {"success": True, "stats": await get_tournament_stats(db, tournament_id)}


@router.get("/{tournament_id}/history")
async def tournament_history(tournament_id: int, db: AsyncSession = Depends(get_db)):
    history = await LifecycleService.get_history(db, tournament_id)
    return {"success": True, "history": [entry.to_dict() for entry in history]}


# ============================================================================
# Registration
# ============================================================================

@router.post("/{tournament_id}/join", status_code=status.HTTP_201_CREATED)
@limiter.limit(settings.JOIN_RATE_LIMIT)
async def join_tournament(
    request: Request,
    tournament_id: int,
    body: JoinRequest,
    actor: ActorContext = Depends(get_actor),
    db: AsyncSession = Depends(get_db)
):
    team = await registration_service.join_tournament(
        db, tournament_id, actor, team_name=body.team_name, member_ids=body.member_ids
    )
    await db.commit()
    return {"success": True, "team": team.to_dict()}


@router.post("/{tournament_id}/leave")
async def leave_tournament(
    tournament_id: int,
    actor: ActorContext = Depends(get_actor),
    db: AsyncSession = Depends(get_db)
):
    refunded = await registration_service.leave_tournament(db, tournament_id, actor)
    await db.commit()
    return {"success": True, "refunded": str(refunded)}


# ============================================================================
# Lifecycle
# ============================================================================

@router.put("/{tournament_id}/room")
async def set_room_details(
    tournament_id: int,
    body: RoomDetailsRequest,
    actor: ActorContext = Depends(get_actor),
    db: AsyncSession = Depends(get_db)
):
    tournament = await LifecycleService.set_room_details(
        db, tournament_id, body.room_code, body.room_password, actor
    )
    await db.commit()
    return {"success": True, "tournament": tournament.to_dict()}


@router.post("/{tournament_id}/transition")
async def transition_tournament(
    tournament_id: int,
    body: TransitionRequest,
    actor: ActorContext = Depends(get_actor),
    db: AsyncSession = Depends(get_db)
):
    tournament = await LifecycleService.transition_status(
        db, tournament_id, body.status, actor, reason=body.reason
    )
    await db.commit()
    return {"success": True, "tournament": tournament.to_dict()}


@router.post("/{tournament_id}/declare-winners")
async def declare_winners(
    tournament_id: int,
    body: DeclareWinnersRequest,
    actor: ActorContext = Depends(get_actor),
    db: AsyncSession = Depends(get_db)
):
    distribution = await LifecycleService.declare_winners(
        db, tournament_id, body.rank_to_amount, body.rank_to_team, actor
    )
    await db.commit()
    return {"success": True, "distribution": distribution.to_dict()}


@router.get("/{tournament_id}/prizes")
async def get_prizes(tournament_id: int, db: AsyncSession = Depends(get_db)):
    distribution = await LifecycleService.get_distribution(db, tournament_id)
    return {"success": True, "distribution": distribution.to_dict()}
