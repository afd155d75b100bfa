"""
Capacity Planner

Sizes an elimination bracket: how many teams a roster makes, how many rooms
the first round needs and how many rounds the cascade takes.

Pure functions only; no database access.
"""
import math
from dataclasses import dataclass, field, asdict
from typing import List, Optional, Union

from esports_backend.config.settings import settings
from esports_backend.exceptions import RoomCapacityExceededError, ValidationError
from esports_backend.orm.tournament import TournamentMode, TEAM_SIZE_BY_MODE


@dataclass(frozen=True)
class RoundPlan:
    round: int
    rooms: int
    teams: int


@dataclass(frozen=True)
class CapacityPlan:
    game: str
    mode: str
    room_capacity: int
    total_teams: int
    initial_rooms: int
    total_rounds: int
    round_breakdown: List[RoundPlan] = field(default_factory=list)

    def to_dict(self):
        return asdict(self)


def normalize_game(game: str) -> str:
    """'Free Fire' / 'free-fire' / 'FREE_FIRE' all map to FREE_FIRE."""
    if not game or not game.strip():
        raise ValidationError("game is required")
    return game.strip().upper().replace("-", "_").replace(" ", "_")


def room_capacity_for_game(game: str) -> int:
    """Teams per room for a game; unknown titles fall back to the default."""
    return settings.GAME_ROOM_CAPACITY.get(normalize_game(game), settings.DEFAULT_ROOM_CAPACITY)


def team_size_for_mode(mode: Union[str, TournamentMode]) -> int:
    try:
        return TEAM_SIZE_BY_MODE[TournamentMode(mode)]
    except ValueError:
        raise ValidationError(
            f"Unknown mode '{mode}'. Must be one of: {', '.join(m.value for m in TournamentMode)}"
        )


def plan_capacity(
    game: str,
    max_players: int,
    mode: Union[str, TournamentMode],
    room_capacity: Optional[int] = None
) -> CapacityPlan:
    """
    Compute the bracket shape for a roster.

    Rounds cascade with one team advancing per room: while more teams remain
    than a single room seats, each round shrinks the field to its room count.
    The single-room round that follows feeds one last final round. A roster
    that fits one room plays a single round.

    Args:
        game: Game title (drives room capacity)
        max_players: Players on the roster, >= 1
        mode: solo / duo / squad
        room_capacity: Optional override of the game's teams-per-room

    Returns:
        CapacityPlan

    Raises:
        ValidationError: max_players < 1, unknown mode, capacity < 1
        RoomCapacityExceededError: Override above the game's lobby size
    """
    if max_players is None or max_players < 1:
        raise ValidationError("max_players must be at least 1", details={"max_players": max_players})

    team_size = team_size_for_mode(mode)
    lobby_size = room_capacity_for_game(game)
    capacity = room_capacity if room_capacity is not None else lobby_size
    if capacity < 1:
        raise ValidationError("room_capacity must be at least 1", details={"room_capacity": capacity})
    # An override may shrink rooms, never seat more teams than the game lobby holds
    if capacity > lobby_size:
        raise RoomCapacityExceededError(
            f"{normalize_game(game)} rooms hold at most {lobby_size} teams, got {capacity}",
            details={"room_capacity": capacity, "max_room_capacity": lobby_size}
        )

    total_teams = math.ceil(max_players / team_size)
    initial_rooms = math.ceil(total_teams / capacity)

    breakdown: List[RoundPlan] = []
    if total_teams <= capacity:
        breakdown.append(RoundPlan(round=1, rooms=1, teams=total_teams))
    else:
        teams = total_teams
        round_number = 1
        while teams > capacity:
            rooms = math.ceil(teams / capacity)
            breakdown.append(RoundPlan(round=round_number, rooms=rooms, teams=teams))
            teams = rooms
            round_number += 1
        breakdown.append(RoundPlan(round=round_number, rooms=1, teams=teams))
        # Final round for the last room's survivor(s)
        breakdown.append(RoundPlan(round=round_number + 1, rooms=1, teams=1))

    return CapacityPlan(
        game=normalize_game(game),
        mode=TournamentMode(mode).value,
        room_capacity=capacity,
        total_teams=total_teams,
        initial_rooms=initial_rooms,
        total_rounds=len(breakdown),
        round_breakdown=breakdown,
    )
