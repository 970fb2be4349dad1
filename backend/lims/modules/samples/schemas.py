"""Pydantic schemas for sample endpoints."""

from __future__ import annotations

from datetime import date, datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from lims.db.models import SampleStatus


class SampleCreateRequest(BaseModel):
    job_id: UUID
    sample_code: str = Field(..., min_length=1, max_length=64)
    matrix: str | None = Field(default=None, max_length=100)
    description: str | None = None
    received_on: date | None = None
    reason: str | None = None


class SampleUpdateRequest(BaseModel):
    """Partial update; only fields present in the body are changed."""

    status: SampleStatus | None = None
    matrix: str | None = Field(default=None, max_length=100)
    description: str | None = None
    received_on: date | None = None
    reason: str | None = None

    def changes(self) -> dict[str, object]:
        changes = self.model_dump(exclude_unset=True, exclude={"reason"})
        # status is NOT NULL; an explicit null means "leave unchanged"
        if "status" in changes and changes["status"] is None:
            del changes["status"]
        return changes


class SampleAssignRequest(BaseModel):
    assigned_user_id: UUID | None = None
    reason: str | None = None


class SampleResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    job_id: UUID
    sample_code: str
    client_id: UUID | None = None
    assigned_user_id: UUID | None = None
    status: SampleStatus
    matrix: str | None = None
    description: str | None = None
    received_on: date | None = None
    created_at: datetime
    updated_at: datetime


class SampleListResponse(BaseModel):
    items: list[SampleResponse]
    count: int
    total: int
    limit: int
    offset: int
