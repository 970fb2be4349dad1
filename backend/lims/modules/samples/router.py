"""
API Router for sample endpoints.
"""

from uuid import UUID

from fastapi import APIRouter, HTTPException, Query, status

from lims.core.audit import AuditedSession
from lims.core.security import CurrentActor
from lims.modules.samples.schemas import (
    SampleAssignRequest,
    SampleCreateRequest,
    SampleListResponse,
    SampleResponse,
    SampleUpdateRequest,
)
from lims.modules.samples.service import (
    JobNotFoundError,
    SampleNotFoundError,
    SampleService,
    SampleServiceError,
)

router = APIRouter()


def _to_http(exc: SampleServiceError) -> HTTPException:
    if isinstance(exc, (SampleNotFoundError, JobNotFoundError)):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    return HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_CONTENT, detail=str(exc))


@router.get("", response_model=SampleListResponse)
async def list_samples(
    db: AuditedSession,
    actor: CurrentActor,
    job_id: UUID | None = Query(None, alias="jobId"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
) -> SampleListResponse:
    """
    List samples visible to the current actor.

    Analysts see their assigned samples; clients see their own.
    """
    samples, total = await SampleService(db, actor).list_samples(
        job_id, limit=limit, offset=offset
    )
    return SampleListResponse(
        items=[SampleResponse.model_validate(sample) for sample in samples],
        count=len(samples),
        total=total,
        limit=limit,
        offset=offset,
    )


@router.post("", response_model=SampleResponse, status_code=status.HTTP_201_CREATED)
async def create_sample(
    request: SampleCreateRequest,
    db: AuditedSession,
    actor: CurrentActor,
) -> SampleResponse:
    try:
        sample = await SampleService(db, actor).create_sample(
            job_id=request.job_id,
            sample_code=request.sample_code,
            matrix=request.matrix,
            description=request.description,
            received_on=request.received_on,
            reason=request.reason,
        )
    except SampleServiceError as exc:
        raise _to_http(exc) from exc
    return SampleResponse.model_validate(sample)


@router.get("/{sample_id}", response_model=SampleResponse)
async def get_sample(
    sample_id: UUID,
    db: AuditedSession,
    actor: CurrentActor,
) -> SampleResponse:
    try:
        sample = await SampleService(db, actor).get_sample(sample_id)
    except SampleServiceError as exc:
        raise _to_http(exc) from exc
    return SampleResponse.model_validate(sample)


@router.patch("/{sample_id}", response_model=SampleResponse)
async def update_sample(
    sample_id: UUID,
    request: SampleUpdateRequest,
    db: AuditedSession,
    actor: CurrentActor,
) -> SampleResponse:
    """Apply a partial update; the audit entry records only changed fields."""
    try:
        sample = await SampleService(db, actor).update_sample(
            sample_id, request.changes(), reason=request.reason
        )
    except SampleServiceError as exc:
        raise _to_http(exc) from exc
    return SampleResponse.model_validate(sample)


@router.post("/{sample_id}/assign", response_model=SampleResponse)
async def assign_sample(
    sample_id: UUID,
    request: SampleAssignRequest,
    db: AuditedSession,
    actor: CurrentActor,
) -> SampleResponse:
    try:
        sample = await SampleService(db, actor).assign_sample(
            sample_id, request.assigned_user_id, reason=request.reason
        )
    except SampleServiceError as exc:
        raise _to_http(exc) from exc
    return SampleResponse.model_validate(sample)


@router.delete("/{sample_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_sample(
    sample_id: UUID,
    db: AuditedSession,
    actor: CurrentActor,
    reason: str | None = Query(None),
) -> None:
    try:
        await SampleService(db, actor).delete_sample(sample_id, reason=reason)
    except SampleServiceError as exc:
        raise _to_http(exc) from exc
