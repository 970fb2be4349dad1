"""Service layer for test assignments, including test-pack batches."""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from lims.core.audit import AuditRecorder, snapshot_record
from lims.core.logging import get_logger
from lims.core.security import Action, ActorContext, PermissionGate, Resource
from lims.core.security.resource_context import build_test_context
from lims.db.backstop import flush_governed
from lims.db.models import Sample, TestAssignment, TestPack, TestStatus

logger = get_logger(__name__)

ASSIGNMENTS_TABLE = TestAssignment.__tablename__


class AssignmentServiceError(ValueError):
    """Base error for test assignment operations."""


class AssignmentNotFoundError(AssignmentServiceError):
    pass


@dataclass(frozen=True)
class TestPackResult:
    """Assignments created by one test-pack application and their grouping key."""

    __test__ = False

    tx_id: str
    assignments: list[TestAssignment]


class TestAssignmentService:
    """Creates and updates test assignments on samples."""

    __test__ = False

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

    async def list_for_sample(self, sample_id: UUID) -> list[TestAssignment]:
        query = (
            select(TestAssignment)
            .where(TestAssignment.sample_id == sample_id)
            .order_by(TestAssignment.test_code)
        )
        query = self._gate.apply_visibility(query, self._actor, Resource.TEST, TestAssignment)
        result = await self._session.execute(query)
        return list(result.scalars().all())

    async def add_test_pack(
        self,
        sample_id: UUID,
        test_pack_id: UUID,
        *,
        reason: str | None = None,
    ) -> TestPackResult:
        """
        Add every test of a pack to a sample as one unit of work.

        All assignments and their CREATE entries share one ``tx_id``; any
        failure rolls the whole batch back.
        """
        self._gate.check(self._actor, Action.CREATE, Resource.TEST)
        sample = await self._session.get(Sample, sample_id)
        if sample is None:
            raise AssignmentNotFoundError(f"Sample {sample_id} not found")
        pack = await self._session.get(TestPack, test_pack_id)
        if pack is None:
            raise AssignmentNotFoundError(f"Test pack {test_pack_id} not found")
        if not pack.tests:
            raise AssignmentServiceError(f"Test pack {pack.name} has no tests")

        assignments: list[TestAssignment] = []
        async with self._recorder.transaction(self._actor) as tx_id:
            for definition in pack.tests:
                assignment = TestAssignment(
                    sample_id=sample.id,
                    test_pack_id=pack.id,
                    test_code=definition["code"],
                    test_name=definition.get("name") or definition["code"],
                    method=definition.get("method"),
                    unit=definition.get("unit"),
                    status=TestStatus.PENDING,
                    assigned_user_id=sample.assigned_user_id,
                )
                self._session.add(assignment)
                assignments.append(assignment)

            await flush_governed(self._session)
            for assignment in assignments:
                await self._session.refresh(assignment)
                await self._recorder.log_create(
                    ASSIGNMENTS_TABLE,
                    assignment.id,
                    self._actor,
                    snapshot_record(assignment),
                    reason=reason,
                    tx_id=tx_id,
                )

        logger.info(
            "test_pack_added",
            sample_id=str(sample.id),
            test_pack_id=str(pack.id),
            count=len(assignments),
            tx_id=tx_id,
        )
        return TestPackResult(tx_id=tx_id, assignments=assignments)

    async def _load(self, assignment_id: UUID, action: Action) -> TestAssignment:
        self._gate.check(self._actor, action, Resource.TEST)
        assignment = await self._session.get(TestAssignment, assignment_id)
        if assignment is None:
            raise AssignmentNotFoundError(f"Test assignment {assignment_id} not found")
        sample = await self._session.get(Sample, assignment.sample_id)
        self._gate.check(
            self._actor, action, Resource.TEST, build_test_context(assignment, sample)
        )
        return assignment

    async def record_result(
        self,
        assignment_id: UUID,
        result_value: str,
        *,
        reason: str | None = None,
    ) -> TestAssignment:
        assignment = await self._load(assignment_id, Action.UPDATE)
        before = snapshot_record(assignment)
        assignment.result_value = result_value
        assignment.status = TestStatus.COMPLETED
        await flush_governed(self._session)
        await self._session.refresh(assignment)
        await self._recorder.log_update(
            ASSIGNMENTS_TABLE,
            assignment.id,
            self._actor,
            before,
            snapshot_record(assignment),
            reason=reason,
        )
        return assignment

    async def assign_test(
        self,
        assignment_id: UUID,
        assignee_id: UUID | None,
        *,
        reason: str | None = None,
    ) -> TestAssignment:
        assignment = await self._load(assignment_id, Action.ASSIGN)
        before = snapshot_record(assignment)
        assignment.assigned_user_id = assignee_id
        if assignee_id is not None and assignment.status is TestStatus.PENDING:
            assignment.status = TestStatus.IN_PROGRESS
        await flush_governed(self._session)
        await self._session.refresh(assignment)
        await self._recorder.log_update(
            ASSIGNMENTS_TABLE,
            assignment.id,
            self._actor,
            before,
            snapshot_record(assignment),
            reason=reason,
        )
        return assignment
