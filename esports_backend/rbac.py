"""
esports_backend/rbac.py
Acting-user context and role checks.

Authentication happens in the external gateway, which forwards the verified
identity as X-User-Id / X-User-Role headers. Every service operation takes
the resulting ActorContext explicitly; nothing here is global session state.
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from fastapi import Header, HTTPException, status

from esports_backend.errors import ErrorCode
from esports_backend.exceptions import PermissionDeniedError

logger = logging.getLogger(__name__)


class ActorRole(str, Enum):
    PLAYER = "player"
    ORGANIZER = "organizer"
    ADMIN = "admin"
    SYSTEM = "system"


@dataclass(frozen=True)
class ActorContext:
    user_id: int
    role: ActorRole = ActorRole.PLAYER

    @property
    def is_privileged(self) -> bool:
        return self.role in (ActorRole.ADMIN, ActorRole.SYSTEM)


# Actor used by background jobs (auto-cancel sweep)
SYSTEM_ACTOR = ActorContext(user_id=0, role=ActorRole.SYSTEM)


def ensure_can_manage(actor: ActorContext, organizer_id: int, action: str = "manage this tournament") -> None:
    """Organizer of the tournament, admins and the system may manage it."""
    if actor.is_privileged:
        return
    if actor.role == ActorRole.ORGANIZER and actor.user_id == organizer_id:
        return
    logger.warning(f"User {actor.user_id} ({actor.role.value}) denied: {action}")
    raise PermissionDeniedError(f"User {actor.user_id} is not allowed to {action}")


def ensure_role(actor: ActorContext, *roles: ActorRole) -> None:
    if actor.role not in roles and not actor.is_privileged:
        raise PermissionDeniedError(
            f"Role '{actor.role.value}' cannot perform this action. "
            f"Allowed: {[r.value for r in roles]}"
        )


async def get_actor(
    x_user_id: Optional[int] = Header(default=None),
    x_user_role: Optional[str] = Header(default=None),
) -> ActorContext:
    """FastAPI dependency building the actor from gateway headers."""
    if x_user_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={
                "success": False,
                "error": "Unauthorized",
                "message": "X-User-Id header is required",
                "code": ErrorCode.AUTH_REQUIRED
            }
        )

    try:
        role = ActorRole((x_user_role or ActorRole.PLAYER.value).lower())
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "success": False,
                "error": "Bad Request",
                "message": f"Unknown role '{x_user_role}'",
                "code": ErrorCode.INVALID_INPUT
            }
        )

    # SYSTEM is reserved for in-process jobs
    if role == ActorRole.SYSTEM:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={
                "success": False,
                "error": "Forbidden",
                "message": "The system role cannot be asserted over HTTP",
                "code": ErrorCode.FORBIDDEN
            }
        )

    return ActorContext(user_id=x_user_id, role=role)
