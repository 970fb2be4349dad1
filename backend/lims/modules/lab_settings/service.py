"""
Laboratory-wide settings shown on certificates of analysis.

A single row holds the settings. The first write creates it (audited as
CREATE); later writes update it (audited as UPDATE).
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from lims.core.audit import AuditRecorder, snapshot_record
from lims.core.config import get_settings
from lims.core.security import Action, ActorContext, PermissionGate, Resource
from lims.db.backstop import flush_governed
from lims.db.models import LabSettings

LAB_SETTINGS_TABLE = LabSettings.__tablename__

EDITABLE_FIELDS = frozenset(
    {"lab_name", "lab_logo_url", "disclaimer_text", "coa_template_settings"}
)


class LabSettingsService:
    """Service for reading/writing lab settings."""

    def __init__(
        self,
        session: AsyncSession,
        actor: ActorContext,
        *,
        gate: PermissionGate | None = None,
        recorder: AuditRecorder | None = None,
    ) -> None:
        self._session = session
        self._actor = actor
        self._gate = gate or PermissionGate()
        self._recorder = recorder or AuditRecorder(session)

    async def _current(self) -> LabSettings | None:
        result = await self._session.execute(
            select(LabSettings).order_by(LabSettings.created_at).limit(1)
        )
        return result.scalar_one_or_none()

    async def get_settings(self) -> dict[str, Any]:
        """Current settings, or defaults when none have been stored yet."""
        self._gate.check(self._actor, Action.READ, Resource.LAB_SETTINGS)
        current = await self._current()
        if current is None:
            return {
                "lab_name": get_settings().lab_name_default,
                "lab_logo_url": None,
                "disclaimer_text": None,
                "coa_template_settings": None,
            }
        return {field: getattr(current, field) for field in sorted(EDITABLE_FIELDS)}

    async def update_settings(
        self,
        changes: dict[str, Any],
        *,
        reason: str | None = None,
    ) -> LabSettings:
        self._gate.check(self._actor, Action.UPDATE, Resource.LAB_SETTINGS)
        unknown = set(changes) - EDITABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown lab settings fields: {', '.join(sorted(unknown))}")

        current = await self._current()
        if current is None:
            current = LabSettings(
                lab_name=changes.get("lab_name") or get_settings().lab_name_default,
                lab_logo_url=changes.get("lab_logo_url"),
                disclaimer_text=changes.get("disclaimer_text"),
                coa_template_settings=changes.get("coa_template_settings"),
                created_by_id=self._actor.id,
                updated_by_id=self._actor.id,
            )
            self._session.add(current)
            await flush_governed(self._session)
            await self._session.refresh(current)
            await self._recorder.log_create(
                LAB_SETTINGS_TABLE, current.id, self._actor, snapshot_record(current), reason=reason
            )
            return current

        before = snapshot_record(current)
        for field, value in changes.items():
            setattr(current, field, value)
        current.updated_by_id = self._actor.id
        await flush_governed(self._session)
        await self._session.refresh(current)
        await self._recorder.log_update(
            LAB_SETTINGS_TABLE,
            current.id,
            self._actor,
            before,
            snapshot_record(current),
            reason=reason,
        )
        return current
