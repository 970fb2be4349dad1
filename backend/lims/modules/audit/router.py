"""Compliance endpoints for reading the audit trail."""

from __future__ import annotations

from datetime import datetime
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status

from lims.core.audit import AuditFilters, AuditQuery
from lims.core.config import get_settings
from lims.core.security import Action, ActorContext, Resource, require_permission
from lims.db.models import AuditAction, AuditSource
from lims.db.session import DbSession
from lims.modules.audit.schemas import (
    AuditEntryListResponse,
    AuditEntryResponse,
    AuditTransactionResponse,
)

router = APIRouter()

AuditReader = Annotated[ActorContext, Depends(require_permission(Action.READ, Resource.AUDIT_LOG))]


@router.get("/audit-logs", response_model=AuditEntryListResponse)
async def list_audit_logs(
    db: DbSession,
    _actor: AuditReader,
    table: str | None = Query(None, description="Governed table name"),
    record_id: str | None = Query(None, alias="recordId"),
    actor_id: UUID | None = Query(None, alias="actorId"),
    action: AuditAction | None = Query(None),
    from_date: datetime | None = Query(None, alias="fromDate"),
    to_date: datetime | None = Query(None, alias="toDate"),
    tx_id: str | None = Query(None, alias="txId"),
    source: AuditSource | None = Query(None),
    page: int = Query(1, ge=1, description="Page number"),
    per_page: int | None = Query(None, ge=1, alias="perPage", description="Items per page"),
) -> AuditEntryListResponse:
    """List audit entries newest first, filtered conjunctively."""
    settings = get_settings()
    size = per_page or settings.audit_default_page_size
    if size > settings.audit_max_page_size:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_CONTENT,
            detail=f"perPage cannot exceed {settings.audit_max_page_size}",
        )
    if from_date is not None and to_date is not None and from_date > to_date:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_CONTENT,
            detail="fromDate must not be after toDate",
        )

    filters = AuditFilters(
        table=table,
        record_id=record_id,
        actor_id=actor_id,
        action=action,
        from_date=from_date,
        to_date=to_date,
        tx_id=tx_id,
        source=source,
    )
    result = await AuditQuery(db).query(filters, page=page, per_page=size)

    return AuditEntryListResponse(
        items=[AuditEntryResponse.model_validate(entry) for entry in result.items],
        total=result.total,
        page=result.page,
        per_page=result.per_page,
        pages=result.pages,
        has_next=result.has_next,
    )


@router.get("/audit-logs/transactions/{tx_id}", response_model=AuditTransactionResponse)
async def get_audit_transaction(
    tx_id: str,
    db: DbSession,
    _actor: AuditReader,
) -> AuditTransactionResponse:
    """Every entry of one multi-record operation, oldest first."""
    entries = await AuditQuery(db).transaction(tx_id)
    if not entries:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No audit entries for this transaction",
        )
    return AuditTransactionResponse(
        tx_id=tx_id,
        count=len(entries),
        items=[AuditEntryResponse.model_validate(entry) for entry in entries],
    )
