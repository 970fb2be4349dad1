"""Pydantic schemas for certificate of analysis endpoints."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict

from lims.db.models import ReportStatus


class ReportResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    sample_id: UUID
    status: ReportStatus
    version: int
    finalized_at: datetime | None = None
    released_at: datetime | None = None
    released_by_id: UUID | None = None
    created_by_id: UUID | None = None
    created_at: datetime
    updated_at: datetime


class ReportDraftRequest(BaseModel):
    sample_id: UUID
    reason: str | None = None


class ReportTransitionRequest(BaseModel):
    reason: str | None = None
