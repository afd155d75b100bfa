"""
esports_backend/exceptions.py
Typed exceptions for the tournament engine.

Three families, each with its own HTTP status:
- Validation errors: bad input, rejected before any mutation
- State-conflict errors: operation not valid for the current status/round
- Resource-exhaustion errors: capacity, balance or prize pool exhausted
"""
from typing import Any, Dict, Optional


class TournamentEngineError(Exception):
    """Base exception for the tournament engine"""
    status_code: int = 500
    code: str = "ENGINE_ERROR"

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        if status_code:
            self.status_code = status_code
        self.details = details
        super().__init__(self.message)


# =============================================================================
# Validation
# =============================================================================

class ValidationError(TournamentEngineError):
    """Raised when input is malformed or inconsistent."""
    status_code = 400
    code = "VALIDATION_ERROR"


class NotFoundError(TournamentEngineError):
    """Raised when a requested record doesn't exist."""
    status_code = 404
    code = "NOT_FOUND"

    def __init__(self, resource: str, identifier: Any = None):
        message = f"{resource} not found"
        if identifier is not None:
            message = f"{resource} with id '{identifier}' not found"
        super().__init__(message)


class PermissionDeniedError(TournamentEngineError):
    """Raised when the acting user may not perform the operation."""
    status_code = 403
    code = "FORBIDDEN"


# =============================================================================
# State conflicts
# =============================================================================

class StateConflictError(TournamentEngineError):
    """Operation is not valid for the current status or round."""
    status_code = 409
    code = "STATE_CONFLICT"


class InvalidTransitionError(StateConflictError):
    code = "INVALID_TRANSITION"


class StaleStateError(StateConflictError):
    """Another writer committed a transition first."""
    code = "STALE_STATE"


class AlreadyDeclaredError(StateConflictError):
    code = "ALREADY_DECLARED"


class CooldownNotElapsedError(StateConflictError):
    code = "COOLDOWN_NOT_ELAPSED"


class RoundAlreadyAllocatedError(StateConflictError):
    code = "ROUND_ALREADY_ALLOCATED"


class RoundNotFullyReportedError(StateConflictError):
    code = "ROUND_NOT_FULLY_REPORTED"


class RoomNotActiveError(StateConflictError):
    code = "ROOM_NOT_ACTIVE"


class RegistrationClosedError(StateConflictError):
    code = "REGISTRATION_CLOSED"


class AlreadyJoinedError(StateConflictError):
    code = "ALREADY_JOINED"


# =============================================================================
# Resource exhaustion
# =============================================================================

class ResourceExhaustedError(TournamentEngineError):
    """A capacity, balance or pool limit would be exceeded."""
    status_code = 422
    code = "RESOURCE_EXHAUSTED"


class TournamentFullError(ResourceExhaustedError):
    code = "TOURNAMENT_FULL"


class RoomCapacityExceededError(ResourceExhaustedError):
    code = "ROOM_CAPACITY_EXCEEDED"


class InsufficientBalanceError(ResourceExhaustedError):
    code = "INSUFFICIENT_BALANCE"


class PrizePoolExceededError(ResourceExhaustedError):
    code = "PRIZE_POOL_EXCEEDED"
