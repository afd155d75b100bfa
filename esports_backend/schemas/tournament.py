"""
esports_backend/schemas/tournament.py
Pydantic request/response models for the tournament API.
"""
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field, model_validator

from esports_backend.orm.tournament import TournamentStatus


Mode = Literal["solo", "duo", "squad"]


# ============================================================================
# Capacity planning
# ============================================================================

class CapacityPlanRequest(BaseModel):
    game: str = Field(..., min_length=1, max_length=50)
    max_players: int = Field(..., ge=1)
    mode: Mode
    room_capacity: Optional[int] = Field(None, ge=1)


class RoundPlanResponse(BaseModel):
    round: int
    rooms: int
    teams: int


class CapacityPlanResponse(BaseModel):
    game: str
    mode: str
    room_capacity: int
    total_teams: int
    initial_rooms: int
    total_rounds: int
    round_breakdown: List[RoundPlanResponse]


# ============================================================================
# Tournaments
# ============================================================================

class TournamentCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    institution_name: Optional[str] = Field(None, max_length=200)
    game: str = Field(..., min_length=1, max_length=50)
    mode: Mode = "squad"
    max_participants: int = Field(..., ge=1)
    entry_fee: Decimal = Field(Decimal("0"), ge=0)
    prize_pool_percent: Optional[int] = Field(None, ge=0, le=100)
    room_capacity: Optional[int] = Field(None, ge=1)
    registration_deadline: Optional[datetime] = None
    scheduled_start: Optional[datetime] = None

    @model_validator(mode='after')
    def deadline_before_start(self):
        if self.registration_deadline and self.scheduled_start:
            if self.registration_deadline > self.scheduled_start:
                raise ValueError("registration_deadline must not be after scheduled_start")
        return self


class RoomDetailsRequest(BaseModel):
    room_code: str = Field(..., min_length=1, max_length=100)
    room_password: str = Field(..., min_length=1, max_length=100)


class TransitionRequest(BaseModel):
    """Status change without payload (start / end / cancel)."""
    status: TournamentStatus
    reason: Optional[str] = Field(None, max_length=500)


class DeclareWinnersRequest(BaseModel):
    """
    rank_to_amount: {"1": 500, "2": 300}
    rank_to_team: {"1": 17, "2": 9}

    Both maps must cover the same ranks.
    """
    rank_to_amount: Dict[int, Decimal]
    rank_to_team: Dict[int, int]

    @model_validator(mode='after')
    def same_ranks(self):
        if set(self.rank_to_amount) != set(self.rank_to_team):
            raise ValueError("rank_to_amount and rank_to_team must list the same ranks")
        return self


# ============================================================================
# Registration
# ============================================================================

class JoinRequest(BaseModel):
    team_name: Optional[str] = Field(None, max_length=100)
    member_ids: List[int] = Field(default_factory=list, description="Other players; the caller is the leader")


# ============================================================================
# Rounds & rooms
# ============================================================================

class AllocateRoundRequest(BaseModel):
    team_ids: Optional[List[int]] = Field(
        None, description="Defaults to every team still in the round"
    )


class RoundOutcomeRequest(BaseModel):
    is_winner: bool
    match_rank: Optional[int] = Field(None, ge=1)


class CompleteRoomsRequest(BaseModel):
    room_ids: List[int] = Field(..., min_length=1, description="Completed together or not at all")


# ============================================================================
# Wallets
# ============================================================================

class DepositRequest(BaseModel):
    amount: Decimal = Field(..., gt=0)
