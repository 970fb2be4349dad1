"""
Unit tests for application-level audit recording.

Unlike best-effort event emission, a failed audit write must propagate as
AuditWriteFailure so the request transaction rolls back.
"""

from __future__ import annotations

from contextlib import nullcontext
from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest
from sqlalchemy.exc import OperationalError

from lims.core.audit.differ import apply_changes, normalize_value
from lims.core.audit.recorder import AuditRecorder
from lims.core.exceptions import AuditWriteFailure
from lims.db.models import AuditAction, AuditLog, AuditSource, SampleStatus, UserRole


def _session() -> AsyncMock:
    session = AsyncMock()
    session.add = MagicMock()
    session.flush = AsyncMock()
    session.execute = AsyncMock()
    session.begin_nested = MagicMock(return_value=nullcontext())
    return session


def _added(session: AsyncMock) -> list[AuditLog]:
    return [call.args[0] for call in session.add.call_args_list]


class TestLogCreate:
    @pytest.mark.asyncio
    async def test_writes_entry_with_actor_context(self, make_actor) -> None:
        session = _session()
        actor = make_actor(UserRole.LAB_MANAGER, ip="192.168.1.5", user_agent="LimsUI/2.0")
        record_id = uuid4()

        entry = await AuditRecorder(session).log_create(
            "samples",
            record_id,
            actor,
            {"sample_code": "S-1", "matrix": "water"},
            reason="received at front desk",
        )

        assert _added(session) == [entry]
        assert entry.action is AuditAction.CREATE
        assert entry.table_name == "samples"
        assert entry.record_id == str(record_id)
        assert entry.actor_id == actor.id
        assert entry.actor_email == actor.email
        assert entry.ip == "192.168.1.5"
        assert entry.user_agent == "LimsUI/2.0"
        assert entry.reason == "received at front desk"
        assert entry.source is AuditSource.APPLICATION
        assert entry.changes == {
            "sample_code": {"old": None, "new": "S-1"},
            "matrix": {"old": None, "new": "water"},
        }
        session.flush.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_every_field_is_recorded_by_default(self, make_actor) -> None:
        session = _session()
        entry = await AuditRecorder(session).log_create(
            "samples", uuid4(), make_actor(), {"sample_code": "S-1", "updated_at": "x"}
        )
        assert set(entry.changes) == {"sample_code", "updated_at"}

    @pytest.mark.asyncio
    async def test_configured_fields_are_skipped(self, make_actor) -> None:
        session = _session()
        entry = await AuditRecorder(session, ignored_fields=["updated_at"]).log_create(
            "samples", uuid4(), make_actor(), {"sample_code": "S-1", "updated_at": "x"}
        )
        assert set(entry.changes) == {"sample_code"}


class TestLogUpdate:
    @pytest.mark.asyncio
    async def test_records_only_changed_fields(self, make_actor) -> None:
        session = _session()
        entry = await AuditRecorder(session).log_update(
            "test_assignments",
            uuid4(),
            make_actor(UserRole.ANALYST),
            {"result_value": None, "status": "PENDING", "unit": "mg/L"},
            {"result_value": "0.42", "status": "COMPLETED", "unit": "mg/L"},
        )
        assert entry is not None
        assert entry.action is AuditAction.UPDATE
        assert entry.changes == {
            "result_value": {"old": None, "new": "0.42"},
            "status": {"old": "PENDING", "new": "COMPLETED"},
        }

    @pytest.mark.asyncio
    async def test_no_op_update_writes_nothing(self, make_actor) -> None:
        session = _session()
        snapshot = {"status": "PENDING", "unit": "mg/L"}
        result = await AuditRecorder(session).log_update(
            "test_assignments", uuid4(), make_actor(), snapshot, dict(snapshot)
        )
        assert result is None
        session.add.assert_not_called()
        session.flush.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_entry_replays_to_after_state(self, make_actor) -> None:
        session = _session()
        before = {
            "status": SampleStatus.RECEIVED,
            "matrix": "water",
            "updated_at": datetime(2026, 3, 1, 9, 0, tzinfo=UTC),
        }
        after = {
            "status": SampleStatus.IN_PROGRESS,
            "matrix": "water",
            "updated_at": datetime(2026, 3, 1, 9, 5, tzinfo=UTC),
        }

        entry = await AuditRecorder(session).log_update(
            "samples", uuid4(), make_actor(), before, after
        )

        assert entry is not None
        assert apply_changes(before, entry.changes) == normalize_value(after)


class TestLogDelete:
    @pytest.mark.asyncio
    async def test_records_prior_values(self, make_actor) -> None:
        session = _session()
        entry = await AuditRecorder(session, ignored_fields=()).log_delete(
            "samples", "S-1", make_actor(), {"sample_code": "S-1"}
        )
        assert entry.action is AuditAction.DELETE
        assert entry.record_id == "S-1"
        assert entry.changes == {"sample_code": {"old": "S-1", "new": None}}


class TestWriteFailure:
    @pytest.mark.asyncio
    async def test_storage_error_raises_audit_write_failure(self, make_actor) -> None:
        session = _session()
        session.flush = AsyncMock(
            side_effect=OperationalError("INSERT INTO audit_logs", {}, Exception("disk full"))
        )
        record_id = uuid4()

        with pytest.raises(AuditWriteFailure) as exc_info:
            await AuditRecorder(session).log_create(
                "samples", record_id, make_actor(), {"sample_code": "S-1"}
            )

        assert exc_info.value.table == "samples"
        assert exc_info.value.record_id == str(record_id)
        assert isinstance(exc_info.value.__cause__, OperationalError)


class TestTransaction:
    @pytest.mark.asyncio
    async def test_entries_share_one_tx_id(self, make_actor) -> None:
        session = _session()
        recorder = AuditRecorder(session)
        actor = make_actor()

        async with recorder.transaction(actor) as tx_id:
            for code in ("PB", "CD", "AS"):
                await recorder.log_create(
                    "test_assignments", uuid4(), actor, {"test_code": code}, tx_id=tx_id
                )

        entries = _added(session)
        assert len(entries) == 3
        assert {entry.tx_id for entry in entries} == {tx_id}
        session.begin_nested.assert_called_once()

    @pytest.mark.asyncio
    async def test_tx_id_is_bound_then_cleared(self, make_actor) -> None:
        session = _session()
        actor = make_actor()

        async with AuditRecorder(session).transaction(actor) as tx_id:
            pass

        bound = [call.args[1]["tx_id"] for call in session.execute.await_args_list]
        assert bound == [tx_id, ""]

    @pytest.mark.asyncio
    async def test_tx_id_is_cleared_when_batch_fails(self, make_actor) -> None:
        session = _session()
        actor = make_actor()

        with pytest.raises(RuntimeError):
            async with AuditRecorder(session).transaction(actor) as tx_id:
                raise RuntimeError("batch aborted")

        bound = [call.args[1]["tx_id"] for call in session.execute.await_args_list]
        assert bound == [tx_id, ""]
        last_params = session.execute.await_args.args[1]
        assert last_params["actor_id"] == str(actor.id)

    def test_transaction_ids_are_unique(self) -> None:
        ids = {AuditRecorder.new_transaction_id() for _ in range(100)}
        assert len(ids) == 100
