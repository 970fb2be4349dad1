"""Pydantic schemas for test assignment endpoints."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from lims.db.models import TestStatus


class AssignmentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    sample_id: UUID
    test_code: str
    test_name: str
    method: str | None = None
    unit: str | None = None
    result_value: str | None = None
    status: TestStatus
    assigned_user_id: UUID | None = None
    test_pack_id: UUID | None = None
    created_at: datetime
    updated_at: datetime


class TestPackApplyRequest(BaseModel):
    __test__ = False

    reason: str | None = None


class TestPackApplyResponse(BaseModel):
    """Assignments created from one test pack and the key grouping their audit entries."""

    __test__ = False

    tx_id: str
    items: list[AssignmentResponse]


class ResultUpdateRequest(BaseModel):
    result_value: str = Field(..., min_length=1, max_length=255)
    reason: str | None = None


class AssignmentAssignRequest(BaseModel):
    assigned_user_id: UUID | None = None
    reason: str | None = None
