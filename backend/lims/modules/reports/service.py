"""Service layer for certificates of analysis (workflow state only)."""

from __future__ import annotations

from datetime import UTC, datetime
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from lims.core.audit import AuditRecorder, snapshot_record
from lims.core.logging import get_logger
from lims.core.security import Action, ActorContext, PermissionGate, Resource
from lims.core.security.resource_context import build_report_context
from lims.db.backstop import flush_governed
from lims.db.models import Report, ReportStatus, Sample

logger = get_logger(__name__)

REPORTS_TABLE = Report.__tablename__

# Allowed workflow transitions: target status -> required current status.
_TRANSITIONS: dict[ReportStatus, ReportStatus] = {
    ReportStatus.FINAL: ReportStatus.DRAFT,
    ReportStatus.RELEASED: ReportStatus.FINAL,
}


class ReportServiceError(ValueError):
    """Base error for report operations."""


class ReportNotFoundError(ReportServiceError):
    pass


class ReportStateError(ReportServiceError):
    """Requested workflow transition is not valid from the current status."""


class ReportService:
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

    async def list_reports(self, sample_id: UUID | None = None) -> list[Report]:
        query = select(Report).order_by(Report.created_at.desc())
        if sample_id is not None:
            query = query.where(Report.sample_id == sample_id)
        query = self._gate.apply_visibility(query, self._actor, Resource.REPORT, Report)
        result = await self._session.execute(query)
        return list(result.scalars().all())

    async def _load(self, report_id: UUID, action: Action) -> Report:
        self._gate.check(self._actor, action, Resource.REPORT)
        report = await self._session.get(Report, report_id)
        if report is None:
            raise ReportNotFoundError(f"Report {report_id} not found")
        sample = await self._session.get(Sample, report.sample_id)
        self._gate.check(
            self._actor, action, Resource.REPORT, build_report_context(report, sample)
        )
        return report

    async def get_report(self, report_id: UUID) -> Report:
        return await self._load(report_id, Action.READ)

    async def generate_draft(self, sample_id: UUID, *, reason: str | None = None) -> Report:
        """Create a new DRAFT certificate, versioned after any earlier ones."""
        self._gate.check(self._actor, Action.GENERATE_DRAFT, Resource.REPORT)
        sample = await self._session.get(Sample, sample_id)
        if sample is None:
            raise ReportNotFoundError(f"Sample {sample_id} not found")

        result = await self._session.execute(
            select(Report.version)
            .where(Report.sample_id == sample_id)
            .order_by(Report.version.desc())
            .limit(1)
        )
        latest = result.scalar_one_or_none()

        report = Report(
            sample_id=sample.id,
            status=ReportStatus.DRAFT,
            version=(latest or 0) + 1,
            created_by_id=self._actor.id,
        )
        self._session.add(report)
        await flush_governed(self._session)
        await self._session.refresh(report)
        await self._recorder.log_create(
            REPORTS_TABLE, report.id, self._actor, snapshot_record(report), reason=reason
        )
        logger.info("report_draft_generated", report_id=str(report.id), version=report.version)
        return report

    async def finalize(self, report_id: UUID, *, reason: str | None = None) -> Report:
        return await self._transition(report_id, Action.FINALIZE, ReportStatus.FINAL, reason)

    async def release(self, report_id: UUID, *, reason: str | None = None) -> Report:
        return await self._transition(report_id, Action.RELEASE, ReportStatus.RELEASED, reason)

    async def _transition(
        self,
        report_id: UUID,
        action: Action,
        target: ReportStatus,
        reason: str | None,
    ) -> Report:
        report = await self._load(report_id, action)
        required = _TRANSITIONS[target]
        if report.status is not required:
            raise ReportStateError(
                f"Cannot move report from {report.status.value} to {target.value}"
            )

        before = snapshot_record(report)
        now = datetime.now(UTC)
        report.status = target
        if target is ReportStatus.FINAL:
            report.finalized_at = now
        else:
            report.released_at = now
            report.released_by_id = self._actor.id
        await flush_governed(self._session)
        await self._session.refresh(report)
        await self._recorder.log_update(
            REPORTS_TABLE, report.id, self._actor, before, snapshot_record(report), reason=reason
        )
        logger.info("report_transitioned", report_id=str(report.id), status=target.value)
        return report
