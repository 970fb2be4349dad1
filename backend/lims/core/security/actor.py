"""
Request actor context.

Authentication happens upstream: the identity layer stores an
``ActorContext`` on ``request.state.actor`` before any governed route runs.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Annotated
from uuid import UUID

from fastapi import Depends, HTTPException, Request, status

from lims.core.logging import bind_request_context
from lims.db.models import UserRole


@dataclass(frozen=True)
class ActorContext:
    """Identity, role and network metadata of the request initiator."""

    id: UUID
    email: str | None
    role: UserRole
    ip: str | None = None
    user_agent: str | None = None

    def with_request(self, request: Request) -> ActorContext:
        """Copy with IP and User-Agent taken from the request when not already set."""
        return replace(
            self,
            ip=self.ip or (request.client.host if request.client else None),
            user_agent=self.user_agent or request.headers.get("user-agent"),
        )


async def get_current_actor(request: Request) -> ActorContext:
    """Resolve the authenticated actor for the current request."""
    actor = getattr(request.state, "actor", None)
    if not isinstance(actor, ActorContext):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )
    actor = actor.with_request(request)
    bind_request_context(actor_id=str(actor.id), actor_role=actor.role.value)
    return actor


CurrentActor = Annotated[ActorContext, Depends(get_current_actor)]
