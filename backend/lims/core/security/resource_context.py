"""Standardized record-context builders for permission evaluation."""

from __future__ import annotations

from typing import Any


def _enum_value(raw: Any) -> str:
    return raw.value if hasattr(raw, "value") else str(raw)


def _id_or_none(value: Any) -> str | None:
    return str(value) if value is not None else None


def _sample_ref(sample: Any) -> dict[str, Any]:
    if sample is None:
        return {}
    return {
        "id": str(sample.id),
        "client_id": _id_or_none(sample.client_id),
    }


def build_job_context(job: Any) -> dict[str, Any]:
    """Build permission context for a job."""
    return {
        "type": "job",
        "id": str(job.id),
        "client_id": _id_or_none(job.client_id),
        "status": _enum_value(getattr(job, "status", "")),
    }


def build_sample_context(sample: Any) -> dict[str, Any]:
    """Build permission context for a sample."""
    return {
        "type": "sample",
        "id": str(sample.id),
        "client_id": _id_or_none(sample.client_id),
        "assigned_user_id": _id_or_none(sample.assigned_user_id),
        "status": _enum_value(getattr(sample, "status", "")),
    }


def build_test_context(assignment: Any, sample: Any) -> dict[str, Any]:
    """Build permission context for a test assignment and its owning sample."""
    return {
        "type": "test",
        "id": str(assignment.id),
        "assigned_user_id": _id_or_none(assignment.assigned_user_id),
        "status": _enum_value(getattr(assignment, "status", "")),
        "sample": _sample_ref(sample),
    }


def build_report_context(report: Any, sample: Any) -> dict[str, Any]:
    """Build permission context for a certificate of analysis and its sample."""
    return {
        "type": "report",
        "id": str(report.id),
        "status": _enum_value(getattr(report, "status", "")),
        "sample": _sample_ref(sample),
    }
