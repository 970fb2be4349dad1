"""
API Router for test assignments.
"""

from uuid import UUID

from fastapi import APIRouter, HTTPException, status

from lims.core.audit import AuditedSession
from lims.core.security import CurrentActor
from lims.modules.assignments.schemas import (
    AssignmentAssignRequest,
    AssignmentResponse,
    ResultUpdateRequest,
    TestPackApplyRequest,
    TestPackApplyResponse,
)
from lims.modules.assignments.service import (
    AssignmentNotFoundError,
    AssignmentServiceError,
    TestAssignmentService,
)

router = APIRouter()


def _to_http(exc: AssignmentServiceError) -> HTTPException:
    if isinstance(exc, AssignmentNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    return HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_CONTENT, detail=str(exc))


@router.get("/samples/{sample_id}/tests", response_model=list[AssignmentResponse])
async def list_sample_tests(
    sample_id: UUID,
    db: AuditedSession,
    actor: CurrentActor,
) -> list[AssignmentResponse]:
    assignments = await TestAssignmentService(db, actor).list_for_sample(sample_id)
    return [AssignmentResponse.model_validate(item) for item in assignments]


@router.post(
    "/samples/{sample_id}/test-packs/{test_pack_id}",
    response_model=TestPackApplyResponse,
    status_code=status.HTTP_201_CREATED,
)
async def apply_test_pack(
    sample_id: UUID,
    test_pack_id: UUID,
    db: AuditedSession,
    actor: CurrentActor,
    request: TestPackApplyRequest | None = None,
) -> TestPackApplyResponse:
    """
    Add every test of a pack to a sample.

    The created assignments share one transaction id, which can be passed to
    ``GET /audit-logs/transactions/{tx_id}`` to retrieve the whole batch.
    """
    try:
        result = await TestAssignmentService(db, actor).add_test_pack(
            sample_id,
            test_pack_id,
            reason=request.reason if request else None,
        )
    except AssignmentServiceError as exc:
        raise _to_http(exc) from exc
    return TestPackApplyResponse(
        tx_id=result.tx_id,
        items=[AssignmentResponse.model_validate(item) for item in result.assignments],
    )


@router.patch("/test-assignments/{assignment_id}/result", response_model=AssignmentResponse)
async def record_result(
    assignment_id: UUID,
    request: ResultUpdateRequest,
    db: AuditedSession,
    actor: CurrentActor,
) -> AssignmentResponse:
    try:
        assignment = await TestAssignmentService(db, actor).record_result(
            assignment_id, request.result_value, reason=request.reason
        )
    except AssignmentServiceError as exc:
        raise _to_http(exc) from exc
    return AssignmentResponse.model_validate(assignment)


@router.post("/test-assignments/{assignment_id}/assign", response_model=AssignmentResponse)
async def assign_test(
    assignment_id: UUID,
    request: AssignmentAssignRequest,
    db: AuditedSession,
    actor: CurrentActor,
) -> AssignmentResponse:
    try:
        assignment = await TestAssignmentService(db, actor).assign_test(
            assignment_id, request.assigned_user_id, reason=request.reason
        )
    except AssignmentServiceError as exc:
        raise _to_http(exc) from exc
    return AssignmentResponse.model_validate(assignment)
