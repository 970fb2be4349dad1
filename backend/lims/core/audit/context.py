"""
Hand-off of actor context to the storage backstop.

The actor travels explicitly with the session: ``bind_audit_session`` writes
it into transaction-local PostgreSQL settings that the backstop trigger reads.
Settings made with ``set_config(..., true)`` vanish at commit or rollback, so
a pooled connection never leaks one request's actor into the next.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from lims.core.security.actor import ActorContext, CurrentActor
from lims.db.backstop import SESSION_VARIABLES
from lims.db.session import DbSession

_BIND_SQL = text(
    "SELECT "
    + ", ".join(
        f"set_config('{setting}', :{name}, true)" for name, setting in SESSION_VARIABLES.items()
    )
)


def session_parameters(actor: ActorContext | None, tx_id: str | None = None) -> dict[str, str]:
    """Values for each backstop session variable; empty string means unset."""
    params = {name: "" for name in SESSION_VARIABLES}
    if actor is not None:
        params.update(
            actor_id=str(actor.id),
            actor_email=actor.email or "",
            ip=actor.ip or "",
            user_agent=actor.user_agent or "",
        )
    params["tx_id"] = tx_id or ""
    return params


async def bind_audit_session(
    db: AsyncSession,
    actor: ActorContext | None,
    *,
    tx_id: str | None = None,
) -> None:
    """Expose ``actor`` (and optionally a grouping key) to the backstop trigger."""
    await db.execute(_BIND_SQL, session_parameters(actor, tx_id))


async def get_audited_session(db: DbSession, actor: CurrentActor) -> AsyncSession:
    """Request session with the current actor bound for the backstop."""
    await bind_audit_session(db, actor)
    return db


AuditedSession = Annotated[AsyncSession, Depends(get_audited_session)]
