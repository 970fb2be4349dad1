"""Unit tests for the certificate of analysis workflow."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest

from lims.core.exceptions import PermissionDenied
from lims.db.models import Report, ReportStatus, Sample, SampleStatus, UserRole
from lims.modules.reports.service import (
    ReportNotFoundError,
    ReportService,
    ReportStateError,
)


def _session(*objects) -> AsyncMock:
    by_key = {(type(obj), obj.id): obj for obj in objects}
    session = AsyncMock()
    session.add = MagicMock()
    session.get = AsyncMock(side_effect=lambda model, key: by_key.get((model, key)))

    async def _refresh(obj) -> None:
        if obj.id is None:
            obj.id = uuid4()

    session.refresh = AsyncMock(side_effect=_refresh)
    return session


def _recorder() -> MagicMock:
    recorder = MagicMock()
    recorder.log_create = AsyncMock()
    recorder.log_update = AsyncMock()
    return recorder


def _sample(client_id=None) -> Sample:
    return Sample(
        id=uuid4(),
        job_id=uuid4(),
        sample_code="S-1",
        client_id=client_id or uuid4(),
        status=SampleStatus.COMPLETED,
    )


def _report(sample: Sample, status: ReportStatus = ReportStatus.DRAFT) -> Report:
    return Report(id=uuid4(), sample_id=sample.id, status=status, version=1)


class TestGenerateDraft:
    @pytest.mark.asyncio
    async def test_version_follows_latest(self, make_actor) -> None:
        sample = _sample()
        session = _session(sample)
        latest = MagicMock()
        latest.scalar_one_or_none.return_value = 2
        session.execute = AsyncMock(return_value=latest)
        recorder = _recorder()
        analyst = make_actor(UserRole.ANALYST)

        report = await ReportService(session, analyst, recorder=recorder).generate_draft(sample.id)

        assert report.version == 3
        assert report.status is ReportStatus.DRAFT
        assert report.created_by_id == analyst.id
        recorder.log_create.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_client_cannot_generate(self, make_actor) -> None:
        with pytest.raises(PermissionDenied):
            await ReportService(_session(), make_actor(UserRole.CLIENT)).generate_draft(uuid4())

    @pytest.mark.asyncio
    async def test_unknown_sample(self, manager) -> None:
        with pytest.raises(ReportNotFoundError):
            await ReportService(_session(), manager, recorder=_recorder()).generate_draft(uuid4())


class TestTransitions:
    @pytest.mark.asyncio
    async def test_finalize_then_release(self, manager) -> None:
        sample = _sample()
        report = _report(sample)
        recorder = _recorder()
        service = ReportService(_session(sample, report), manager, recorder=recorder)

        await service.finalize(report.id)
        assert report.status is ReportStatus.FINAL
        assert report.finalized_at is not None

        await service.release(report.id, reason="approved by QA")
        assert report.status is ReportStatus.RELEASED
        assert report.released_by_id == manager.id
        assert recorder.log_update.await_count == 2

        _table, _id, _actor, before, after = recorder.log_update.await_args.args
        assert before["status"] is ReportStatus.FINAL
        assert after["status"] is ReportStatus.RELEASED

    @pytest.mark.asyncio
    async def test_release_requires_final(self, manager) -> None:
        sample = _sample()
        report = _report(sample, ReportStatus.DRAFT)
        recorder = _recorder()

        with pytest.raises(ReportStateError, match="DRAFT to RELEASED"):
            await ReportService(
                _session(sample, report), manager, recorder=recorder
            ).release(report.id)

        assert report.status is ReportStatus.DRAFT
        recorder.log_update.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_analyst_cannot_release(self, make_actor) -> None:
        sample = _sample()
        report = _report(sample, ReportStatus.FINAL)
        with pytest.raises(PermissionDenied):
            await ReportService(
                _session(sample, report), make_actor(UserRole.ANALYST)
            ).release(report.id)


class TestClientAccess:
    @pytest.mark.asyncio
    async def test_client_cannot_read_draft(self, make_actor) -> None:
        client = make_actor(UserRole.CLIENT)
        sample = _sample(client.id)
        report = _report(sample, ReportStatus.DRAFT)

        with pytest.raises(PermissionDenied, match="unreleased report"):
            await ReportService(_session(sample, report), client).get_report(report.id)

    @pytest.mark.asyncio
    async def test_client_reads_own_released_report(self, make_actor) -> None:
        client = make_actor(UserRole.CLIENT)
        sample = _sample(client.id)
        report = _report(sample, ReportStatus.RELEASED)

        assert await ReportService(_session(sample, report), client).get_report(report.id) is report
