"""
Application-level audit recording.

``AuditRecorder`` writes one ``AuditLog`` row per governed mutation, built
from ``compute_changes`` plus the acting user's context. The entry is flushed
in the caller's session, so the business mutation and its audit record share
one transaction. Unlike best-effort event logging, a failed write raises
``AuditWriteFailure`` and the request session rolls everything back.

UPDATE calls whose diff is empty write nothing. The storage backstop follows
the same rule for UPDATE statements that change no column.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Collection, Mapping
from contextlib import asynccontextmanager
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from lims.core.audit.context import bind_audit_session
from lims.core.audit.differ import Changes, compute_changes
from lims.core.config import get_settings
from lims.core.exceptions import AuditWriteFailure
from lims.core.logging import get_logger
from lims.core.security.actor import ActorContext
from lims.db.models import AuditAction, AuditLog, AuditSource

logger = get_logger(__name__)


class AuditRecorder:
    """Persists CREATE/UPDATE/DELETE audit entries in the caller's transaction."""

    def __init__(
        self,
        session: AsyncSession,
        *,
        ignored_fields: Collection[str] | None = None,
    ) -> None:
        self._session = session
        if ignored_fields is None:
            ignored_fields = get_settings().audit_ignored_fields
        self._ignored = frozenset(ignored_fields)

    @staticmethod
    def new_transaction_id() -> str:
        """Fresh grouping key for a multi-record unit of work."""
        return uuid4().hex

    @asynccontextmanager
    async def transaction(self, actor: ActorContext) -> AsyncIterator[str]:
        """
        Group every entry written inside the block under one ``tx_id``.

        The block runs in a savepoint, so a batch either applies completely or
        not at all, and the key is also bound for the backstop trigger.
        The key is unbound on exit whether or not the batch succeeded, since
        a savepoint rollback does not revert ``set_config``.
        """
        tx_id = self.new_transaction_id()
        await bind_audit_session(self._session, actor, tx_id=tx_id)
        try:
            async with self._session.begin_nested():
                yield tx_id
        finally:
            await bind_audit_session(self._session, actor)
        logger.debug("audit_transaction_closed", tx_id=tx_id)

    async def log_create(
        self,
        table: str,
        record_id: UUID | str,
        actor: ActorContext,
        new_values: Mapping[str, Any],
        *,
        reason: str | None = None,
        tx_id: str | None = None,
    ) -> AuditLog:
        changes = compute_changes(None, new_values, ignore=self._ignored)
        return await self._persist(
            AuditAction.CREATE, table, record_id, actor, changes, reason=reason, tx_id=tx_id
        )

    async def log_update(
        self,
        table: str,
        record_id: UUID | str,
        actor: ActorContext,
        old_values: Mapping[str, Any],
        new_values: Mapping[str, Any],
        *,
        reason: str | None = None,
        tx_id: str | None = None,
    ) -> AuditLog | None:
        """Write an UPDATE entry, or nothing when no field actually changed."""
        changes = compute_changes(old_values, new_values, ignore=self._ignored)
        if not changes:
            logger.debug("audit_update_skipped", table=table, record_id=str(record_id))
            return None
        return await self._persist(
            AuditAction.UPDATE, table, record_id, actor, changes, reason=reason, tx_id=tx_id
        )

    async def log_delete(
        self,
        table: str,
        record_id: UUID | str,
        actor: ActorContext,
        old_values: Mapping[str, Any],
        *,
        reason: str | None = None,
        tx_id: str | None = None,
    ) -> AuditLog:
        changes = compute_changes(old_values, None, ignore=self._ignored)
        return await self._persist(
            AuditAction.DELETE, table, record_id, actor, changes, reason=reason, tx_id=tx_id
        )

    async def _persist(
        self,
        action: AuditAction,
        table: str,
        record_id: UUID | str,
        actor: ActorContext,
        changes: Changes,
        *,
        reason: str | None,
        tx_id: str | None,
    ) -> AuditLog:
        entry = AuditLog(
            actor_id=actor.id,
            actor_email=actor.email,
            action=action,
            table_name=table,
            record_id=str(record_id),
            changes=changes,
            reason=reason,
            tx_id=tx_id,
            ip=actor.ip,
            user_agent=actor.user_agent,
            source=AuditSource.APPLICATION,
        )
        try:
            self._session.add(entry)
            await self._session.flush()
        except SQLAlchemyError as exc:
            logger.error(
                "audit_write_failed",
                action=action.value,
                table=table,
                record_id=str(record_id),
                exc_info=True,
            )
            raise AuditWriteFailure(table, str(record_id)) from exc

        logger.info(
            "audit_entry_recorded",
            action=action.value,
            table=table,
            record_id=str(record_id),
            fields=sorted(changes),
            tx_id=tx_id,
        )
        return entry
