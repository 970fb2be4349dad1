"""Pydantic schemas for audit trail API responses."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict

from lims.db.models import AuditAction, AuditSource


class AuditEntryResponse(BaseModel):
    """Single audit entry in API responses."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    actor_id: UUID | None = None
    actor_email: str | None = None
    action: AuditAction
    table_name: str
    record_id: str
    changes: dict[str, Any]
    reason: str | None = None
    at: datetime
    tx_id: str | None = None
    ip: str | None = None
    user_agent: str | None = None
    source: AuditSource


class AuditEntryListResponse(BaseModel):
    """Paginated list of audit entries."""

    items: list[AuditEntryResponse]
    total: int
    page: int
    per_page: int
    pages: int
    has_next: bool


class AuditTransactionResponse(BaseModel):
    """All entries sharing one grouping key."""

    tx_id: str
    count: int
    items: list[AuditEntryResponse]
