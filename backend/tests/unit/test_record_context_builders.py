"""Unit tests for the record-context builders fed to permission rules."""

from __future__ import annotations

from types import SimpleNamespace
from uuid import uuid4

from lims.core.security.resource_context import (
    build_job_context,
    build_report_context,
    build_sample_context,
    build_test_context,
)
from lims.db.models import ReportStatus, SampleStatus, TestStatus


def _sample(**overrides) -> SimpleNamespace:
    values = {
        "id": uuid4(),
        "client_id": uuid4(),
        "assigned_user_id": None,
        "status": SampleStatus.RECEIVED,
    }
    values.update(overrides)
    return SimpleNamespace(**values)


def test_sample_context_stringifies_ids() -> None:
    analyst_id = uuid4()
    sample = _sample(assigned_user_id=analyst_id)

    assert build_sample_context(sample) == {
        "type": "sample",
        "id": str(sample.id),
        "client_id": str(sample.client_id),
        "assigned_user_id": str(analyst_id),
        "status": "RECEIVED",
    }


def test_job_context_without_status_attribute() -> None:
    job = SimpleNamespace(id=uuid4(), client_id=None)
    result = build_job_context(job)
    assert result["client_id"] is None
    assert result["status"] == ""


def test_test_context_nests_owning_sample() -> None:
    sample = _sample()
    assignment = SimpleNamespace(id=uuid4(), assigned_user_id=None, status=TestStatus.PENDING)

    result = build_test_context(assignment, sample)

    assert result["assigned_user_id"] is None
    assert result["status"] == "PENDING"
    assert result["sample"] == {"id": str(sample.id), "client_id": str(sample.client_id)}


def test_report_context_reads_client_from_sample() -> None:
    sample = _sample()
    report = SimpleNamespace(id=uuid4(), status=ReportStatus.RELEASED)

    result = build_report_context(report, sample)

    assert result["status"] == "RELEASED"
    assert result["sample"]["client_id"] == str(sample.client_id)


def test_report_context_with_missing_sample() -> None:
    report = SimpleNamespace(id=uuid4(), status="DRAFT")
    assert build_report_context(report, None)["sample"] == {}
