"""
API Router for certificates of analysis.
"""

from uuid import UUID

from fastapi import APIRouter, HTTPException, Query, status

from lims.core.audit import AuditedSession
from lims.core.security import CurrentActor
from lims.modules.reports.schemas import (
    ReportDraftRequest,
    ReportResponse,
    ReportTransitionRequest,
)
from lims.modules.reports.service import (
    ReportNotFoundError,
    ReportService,
    ReportServiceError,
    ReportStateError,
)

router = APIRouter()


def _to_http(exc: ReportServiceError) -> HTTPException:
    if isinstance(exc, ReportNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, ReportStateError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    return HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_CONTENT, detail=str(exc))


@router.get("", response_model=list[ReportResponse])
async def list_reports(
    db: AuditedSession,
    actor: CurrentActor,
    sample_id: UUID | None = Query(None, alias="sampleId"),
) -> list[ReportResponse]:
    """List reports; clients only see released reports for their own samples."""
    reports = await ReportService(db, actor).list_reports(sample_id)
    return [ReportResponse.model_validate(report) for report in reports]


@router.post("", response_model=ReportResponse, status_code=status.HTTP_201_CREATED)
async def generate_draft(
    request: ReportDraftRequest,
    db: AuditedSession,
    actor: CurrentActor,
) -> ReportResponse:
    try:
        report = await ReportService(db, actor).generate_draft(
            request.sample_id, reason=request.reason
        )
    except ReportServiceError as exc:
        raise _to_http(exc) from exc
    return ReportResponse.model_validate(report)


@router.get("/{report_id}", response_model=ReportResponse)
async def get_report(
    report_id: UUID,
    db: AuditedSession,
    actor: CurrentActor,
) -> ReportResponse:
    try:
        report = await ReportService(db, actor).get_report(report_id)
    except ReportServiceError as exc:
        raise _to_http(exc) from exc
    return ReportResponse.model_validate(report)


@router.post("/{report_id}/finalize", response_model=ReportResponse)
async def finalize_report(
    report_id: UUID,
    db: AuditedSession,
    actor: CurrentActor,
    request: ReportTransitionRequest | None = None,
) -> ReportResponse:
    try:
        report = await ReportService(db, actor).finalize(
            report_id, reason=request.reason if request else None
        )
    except ReportServiceError as exc:
        raise _to_http(exc) from exc
    return ReportResponse.model_validate(report)


@router.post("/{report_id}/release", response_model=ReportResponse)
async def release_report(
    report_id: UUID,
    db: AuditedSession,
    actor: CurrentActor,
    request: ReportTransitionRequest | None = None,
) -> ReportResponse:
    try:
        report = await ReportService(db, actor).release(
            report_id, reason=request.reason if request else None
        )
    except ReportServiceError as exc:
        raise _to_http(exc) from exc
    return ReportResponse.model_validate(report)
