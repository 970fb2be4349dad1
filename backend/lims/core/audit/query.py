"""
Read-side access to the audit trail.

Filters are optional and conjunctive. There is no default time window:
omitting ``from_date``/``to_date`` searches the whole history. Results are
ordered newest first, ties broken by the time-ordered primary key.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import Select, desc, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from lims.core.config import get_settings
from lims.db.models import AuditAction, AuditLog, AuditSource


@dataclass(frozen=True)
class AuditFilters:
    table: str | None = None
    record_id: str | None = None
    actor_id: UUID | None = None
    action: AuditAction | None = None
    from_date: datetime | None = None
    to_date: datetime | None = None
    tx_id: str | None = None
    source: AuditSource | None = None


@dataclass(frozen=True)
class AuditPage:
    """One page of audit entries plus paging metadata."""

    items: list[AuditLog]
    total: int
    page: int
    per_page: int

    @property
    def pages(self) -> int:
        return math.ceil(self.total / self.per_page) if self.total else 0

    @property
    def has_next(self) -> bool:
        return self.page < self.pages


def apply_filters(statement: Select[Any], filters: AuditFilters) -> Select[Any]:
    """Add a WHERE clause per populated filter (inclusive date bounds)."""
    if filters.table is not None:
        statement = statement.where(AuditLog.table_name == filters.table)
    if filters.record_id is not None:
        statement = statement.where(AuditLog.record_id == str(filters.record_id))
    if filters.actor_id is not None:
        statement = statement.where(AuditLog.actor_id == filters.actor_id)
    if filters.action is not None:
        statement = statement.where(AuditLog.action == filters.action)
    if filters.from_date is not None:
        statement = statement.where(AuditLog.at >= filters.from_date)
    if filters.to_date is not None:
        statement = statement.where(AuditLog.at <= filters.to_date)
    if filters.tx_id is not None:
        statement = statement.where(AuditLog.tx_id == filters.tx_id)
    if filters.source is not None:
        statement = statement.where(AuditLog.source == filters.source)
    return statement


class AuditQuery:
    """Filtering and pagination over persisted audit entries. Never writes."""

    def __init__(self, session: AsyncSession, *, max_per_page: int | None = None) -> None:
        self._session = session
        self._max_per_page = max_per_page or get_settings().audit_max_page_size

    def _validate_paging(self, page: int, per_page: int) -> None:
        if page < 1:
            raise ValueError("page must be >= 1")
        if per_page < 1 or per_page > self._max_per_page:
            raise ValueError(f"per_page must be between 1 and {self._max_per_page}")

    async def query(
        self,
        filters: AuditFilters | None = None,
        page: int = 1,
        per_page: int = 50,
    ) -> AuditPage:
        self._validate_paging(page, per_page)
        filters = filters or AuditFilters()

        count_query = apply_filters(select(func.count()).select_from(AuditLog), filters)
        total_result = await self._session.execute(count_query)
        total = total_result.scalar() or 0

        query = (
            apply_filters(select(AuditLog), filters)
            .order_by(desc(AuditLog.at), desc(AuditLog.id))
            .offset((page - 1) * per_page)
            .limit(per_page)
        )
        result = await self._session.execute(query)
        items = list(result.scalars().all())

        return AuditPage(items=items, total=total, page=page, per_page=per_page)

    async def transaction(self, tx_id: str) -> list[AuditLog]:
        """Every entry of one causal unit, oldest first."""
        query = (
            select(AuditLog)
            .where(AuditLog.tx_id == tx_id)
            .order_by(AuditLog.at, AuditLog.id)
        )
        result = await self._session.execute(query)
        return list(result.scalars().all())
