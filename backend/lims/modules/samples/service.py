"""Service layer for samples: permission-checked, audited mutations."""

from __future__ import annotations

from datetime import date
from typing import Any
from uuid import UUID

from sqlalchemy import Select, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from lims.core.audit import AuditRecorder, snapshot_record
from lims.core.logging import get_logger
from lims.core.security import Action, ActorContext, PermissionGate, Resource
from lims.core.security.resource_context import build_sample_context
from lims.db.backstop import flush_governed
from lims.db.models import Job, Sample, SampleStatus, UserRole

logger = get_logger(__name__)

SAMPLES_TABLE = Sample.__tablename__

# Fields an analyst may change on an assigned sample; managers may change all.
ANALYST_EDITABLE_FIELDS = frozenset({"status", "description"})
EDITABLE_FIELDS = frozenset({"status", "matrix", "description", "received_on"})


class SampleServiceError(ValueError):
    """Base error for sample operations."""


class SampleNotFoundError(SampleServiceError):
    pass


class JobNotFoundError(SampleServiceError):
    pass


class SampleService:
    """CRUD for samples with coarse and record-level permission checks."""

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

    async def list_samples(
        self,
        job_id: UUID | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[Sample], int]:
        """One page of visible samples, newest first, plus the visible total."""
        count_query = self._visible(select(func.count()).select_from(Sample), job_id)
        total_result = await self._session.execute(count_query)
        total = total_result.scalar() or 0

        query = (
            self._visible(select(Sample), job_id)
            .order_by(Sample.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        result = await self._session.execute(query)
        return list(result.scalars().all()), total

    def _visible(self, query: Select[Any], job_id: UUID | None) -> Select[Any]:
        if job_id is not None:
            query = query.where(Sample.job_id == job_id)
        return self._gate.apply_visibility(query, self._actor, Resource.SAMPLE, Sample)

    async def _load(self, sample_id: UUID, action: Action) -> Sample:
        self._gate.check(self._actor, action, Resource.SAMPLE)
        sample = await self._session.get(Sample, sample_id)
        if sample is None:
            raise SampleNotFoundError(f"Sample {sample_id} not found")
        self._gate.check(self._actor, action, Resource.SAMPLE, build_sample_context(sample))
        return sample

    async def get_sample(self, sample_id: UUID) -> Sample:
        return await self._load(sample_id, Action.READ)

    async def create_sample(
        self,
        *,
        job_id: UUID,
        sample_code: str,
        matrix: str | None = None,
        description: str | None = None,
        received_on: date | None = None,
        reason: str | None = None,
    ) -> Sample:
        self._gate.check(self._actor, Action.CREATE, Resource.SAMPLE)
        job = await self._session.get(Job, job_id)
        if job is None:
            raise JobNotFoundError(f"Job {job_id} not found")

        sample = Sample(
            job_id=job.id,
            client_id=job.client_id,
            sample_code=sample_code,
            matrix=matrix,
            description=description,
            received_on=received_on,
            status=SampleStatus.RECEIVED,
        )
        self._session.add(sample)
        await flush_governed(self._session)
        await self._session.refresh(sample)
        await self._recorder.log_create(
            SAMPLES_TABLE, sample.id, self._actor, snapshot_record(sample), reason=reason
        )
        logger.info("sample_created", sample_id=str(sample.id), job_id=str(job_id))
        return sample

    async def update_sample(
        self,
        sample_id: UUID,
        changes: dict[str, Any],
        *,
        reason: str | None = None,
    ) -> Sample:
        sample = await self._load(sample_id, Action.UPDATE)
        allowed = ANALYST_EDITABLE_FIELDS if self._is_analyst else EDITABLE_FIELDS
        unknown = set(changes) - allowed
        if unknown:
            raise SampleServiceError(f"Fields not editable: {', '.join(sorted(unknown))}")

        before = snapshot_record(sample)
        for field, value in changes.items():
            setattr(sample, field, value)
        await flush_governed(self._session)
        await self._session.refresh(sample)
        await self._recorder.log_update(
            SAMPLES_TABLE, sample.id, self._actor, before, snapshot_record(sample), reason=reason
        )
        return sample

    async def assign_sample(
        self,
        sample_id: UUID,
        assignee_id: UUID | None,
        *,
        reason: str | None = None,
    ) -> Sample:
        sample = await self._load(sample_id, Action.ASSIGN)
        before = snapshot_record(sample)
        sample.assigned_user_id = assignee_id
        await flush_governed(self._session)
        await self._session.refresh(sample)
        await self._recorder.log_update(
            SAMPLES_TABLE, sample.id, self._actor, before, snapshot_record(sample), reason=reason
        )
        logger.info(
            "sample_assigned",
            sample_id=str(sample.id),
            assignee_id=str(assignee_id) if assignee_id else None,
        )
        return sample

    async def delete_sample(self, sample_id: UUID, *, reason: str | None = None) -> None:
        sample = await self._load(sample_id, Action.DELETE)
        before = snapshot_record(sample)
        await self._session.delete(sample)
        await flush_governed(self._session)
        await self._recorder.log_delete(
            SAMPLES_TABLE, sample_id, self._actor, before, reason=reason
        )
        logger.info("sample_deleted", sample_id=str(sample_id))

    @property
    def _is_analyst(self) -> bool:
        return self._actor.role is UserRole.ANALYST
