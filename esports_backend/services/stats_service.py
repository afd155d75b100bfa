"""
Tournament Stats

Read-only aggregate view for dashboards and the CLI.
"""
from typing import Any, Dict

from sqlalchemy import select, func, case
from sqlalchemy.ext.asyncio import AsyncSession

from esports_backend.orm.room import Room, RoomStatus
from esports_backend.orm.team import Team, Registration, RegistrationStatus
from esports_backend.services.lifecycle_service import LifecycleService


async def get_tournament_stats(db: AsyncSession, tournament_id: int) -> Dict[str, Any]:
    tournament = await LifecycleService.get_tournament(db, tournament_id)

    team_result = await db.execute(
        select(
            func.count(Team.id),
            func.sum(case((Team.is_eliminated.is_(False), 1), else_=0)),
            func.sum(case((Team.withdrawn_at.isnot(None), 1), else_=0)),
        ).where(Team.tournament_id == tournament_id)
    )
    total_teams, active_teams, withdrawn_teams = team_result.one()
    total_teams = total_teams or 0
    active_teams = active_teams or 0
    withdrawn_teams = withdrawn_teams or 0

    participants_result = await db.execute(
        select(func.count(Registration.id)).where(
            Registration.tournament_id == tournament_id,
            Registration.status == RegistrationStatus.PAID.value
        )
    )

    room_result = await db.execute(
        select(
            Room.round_number,
            func.count(Room.id),
            func.sum(case((Room.status == RoomStatus.COMPLETED.value, 1), else_=0)),
        )
        .where(Room.tournament_id == tournament_id)
        .group_by(Room.round_number)
        .order_by(Room.round_number)
    )
    rounds = [
        {"round": round_number, "rooms": rooms, "completed_rooms": completed or 0}
        for round_number, rooms, completed in room_result.all()
    ]

    return {
        "tournament_id": tournament.id,
        "status": tournament.status,
        "current_round": tournament.current_round,
        "total_rounds": tournament.total_rounds,
        "participants": participants_result.scalar() or 0,
        "max_participants": tournament.max_participants,
        "prize_pool": str(tournament.prize_pool),
        "total_teams": total_teams,
        "active_teams": active_teams,
        "eliminated_teams": total_teams - active_teams - withdrawn_teams,
        "withdrawn_teams": withdrawn_teams,
        "rounds": rounds,
    }
