"""HTTP tests for the audit trail endpoints with the query layer stubbed out."""

from __future__ import annotations

from datetime import UTC, datetime
from types import SimpleNamespace
from unittest.mock import AsyncMock
from uuid import uuid4

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from lims.core.audit import AuditPage
from lims.core.security.actor import get_current_actor
from lims.db.models import AuditAction, AuditSource, UserRole
from lims.db.session import get_db_session
from lims.main import create_application
from lims.modules.audit import router as audit_router


def _entry(**overrides) -> SimpleNamespace:
    values = {
        "id": uuid4(),
        "actor_id": uuid4(),
        "actor_email": "manager@lab.example",
        "action": AuditAction.UPDATE,
        "table_name": "samples",
        "record_id": str(uuid4()),
        "changes": {"status": {"old": "RECEIVED", "new": "IN_PROGRESS"}},
        "reason": None,
        "at": datetime(2026, 3, 1, 12, 0, tzinfo=UTC),
        "tx_id": None,
        "ip": "10.0.0.1",
        "user_agent": "pytest/1.0",
        "source": AuditSource.APPLICATION,
    }
    values.update(overrides)
    return SimpleNamespace(**values)


class FakeAuditQuery:
    """Stand-in for AuditQuery that records calls and returns canned rows."""

    page_items: list[SimpleNamespace] = []
    page_total = 0
    tx_items: list[SimpleNamespace] = []
    calls: list[tuple] = []

    def __init__(self, session) -> None:
        self.session = session

    async def query(self, filters, page: int = 1, per_page: int = 50) -> AuditPage:
        FakeAuditQuery.calls.append((filters, page, per_page))
        return AuditPage(
            items=list(self.page_items), total=self.page_total, page=page, per_page=per_page
        )

    async def transaction(self, tx_id: str) -> list[SimpleNamespace]:
        FakeAuditQuery.calls.append((tx_id,))
        return list(self.tx_items)


@pytest.fixture
def fake_query(monkeypatch) -> type[FakeAuditQuery]:
    FakeAuditQuery.page_items = []
    FakeAuditQuery.page_total = 0
    FakeAuditQuery.tx_items = []
    FakeAuditQuery.calls = []
    monkeypatch.setattr(audit_router, "AuditQuery", FakeAuditQuery)
    return FakeAuditQuery


@pytest_asyncio.fixture
async def client_for(make_actor):
    """Build an HTTP client acting as the given role."""
    clients: list[AsyncClient] = []

    async def _client(role: UserRole) -> AsyncClient:
        app = create_application()
        actor = make_actor(role)

        async def override_db():
            yield AsyncMock()

        async def override_actor():
            return actor

        app.dependency_overrides[get_db_session] = override_db
        app.dependency_overrides[get_current_actor] = override_actor
        client = AsyncClient(transport=ASGITransport(app=app), base_url="http://test")
        clients.append(client)
        return client

    yield _client

    for client in clients:
        await client.aclose()


class TestAuditLogAccess:
    @pytest.mark.asyncio
    async def test_client_is_forbidden(self, client_for, fake_query) -> None:
        client = await client_for(UserRole.CLIENT)

        response = await client.get("/api/v1/audit-logs")

        assert response.status_code == 403
        assert response.json() == {
            "detail": "role CLIENT cannot READ AUDIT_LOG",
            "role": "CLIENT",
            "action": "READ",
            "resource": "AUDIT_LOG",
        }
        assert fake_query.calls == []

    @pytest.mark.asyncio
    async def test_analyst_is_forbidden(self, client_for, fake_query) -> None:
        client = await client_for(UserRole.ANALYST)
        response = await client.get("/api/v1/audit-logs")
        assert response.status_code == 403

    @pytest.mark.asyncio
    @pytest.mark.parametrize("role", [UserRole.ADMIN, UserRole.LAB_MANAGER])
    async def test_privileged_roles_can_read(self, client_for, fake_query, role) -> None:
        client = await client_for(role)
        response = await client.get("/api/v1/audit-logs")
        assert response.status_code == 200


class TestListAuditLogs:
    @pytest.mark.asyncio
    async def test_page_metadata_and_items(self, client_for, fake_query) -> None:
        fake_query.page_items = [_entry()]
        fake_query.page_total = 51
        client = await client_for(UserRole.LAB_MANAGER)

        response = await client.get("/api/v1/audit-logs", params={"page": 2, "perPage": 50})

        assert response.status_code == 200
        body = response.json()
        assert body["total"] == 51
        assert body["page"] == 2
        assert body["per_page"] == 50
        assert body["pages"] == 2
        assert body["has_next"] is False
        assert body["items"][0]["source"] == "application"
        assert body["items"][0]["changes"]["status"]["new"] == "IN_PROGRESS"

    @pytest.mark.asyncio
    async def test_filters_are_forwarded(self, client_for, fake_query) -> None:
        record_id = str(uuid4())
        actor_id = uuid4()
        client = await client_for(UserRole.ADMIN)

        response = await client.get(
            "/api/v1/audit-logs",
            params={
                "table": "samples",
                "recordId": record_id,
                "actorId": str(actor_id),
                "action": "DELETE",
                "txId": "tx-1",
                "source": "trigger",
                "fromDate": "2026-01-01T00:00:00Z",
                "toDate": "2026-01-31T23:59:59Z",
            },
        )

        assert response.status_code == 200
        filters, page, per_page = fake_query.calls[0]
        assert filters.table == "samples"
        assert filters.record_id == record_id
        assert filters.actor_id == actor_id
        assert filters.action is AuditAction.DELETE
        assert filters.tx_id == "tx-1"
        assert filters.source is AuditSource.TRIGGER
        assert filters.from_date == datetime(2026, 1, 1, tzinfo=UTC)
        assert (page, per_page) == (1, 50)

    @pytest.mark.asyncio
    async def test_page_size_above_maximum_is_rejected(self, client_for, fake_query) -> None:
        client = await client_for(UserRole.LAB_MANAGER)
        response = await client.get("/api/v1/audit-logs", params={"perPage": 201})
        assert response.status_code == 422
        assert fake_query.calls == []

    @pytest.mark.asyncio
    async def test_inverted_date_range_is_rejected(self, client_for, fake_query) -> None:
        client = await client_for(UserRole.LAB_MANAGER)
        response = await client.get(
            "/api/v1/audit-logs",
            params={"fromDate": "2026-02-01T00:00:00Z", "toDate": "2026-01-01T00:00:00Z"},
        )
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_unknown_action_is_rejected(self, client_for, fake_query) -> None:
        client = await client_for(UserRole.LAB_MANAGER)
        response = await client.get("/api/v1/audit-logs", params={"action": "TRUNCATE"})
        assert response.status_code == 422


class TestAuditTransaction:
    @pytest.mark.asyncio
    async def test_returns_grouped_entries(self, client_for, fake_query) -> None:
        fake_query.tx_items = [
            _entry(action=AuditAction.CREATE, table_name="test_assignments", tx_id="tx-7")
            for _ in range(6)
        ]
        client = await client_for(UserRole.LAB_MANAGER)

        response = await client.get("/api/v1/audit-logs/transactions/tx-7")

        assert response.status_code == 200
        body = response.json()
        assert body["tx_id"] == "tx-7"
        assert body["count"] == 6
        assert {item["tx_id"] for item in body["items"]} == {"tx-7"}

    @pytest.mark.asyncio
    async def test_unknown_transaction_is_404(self, client_for, fake_query) -> None:
        client = await client_for(UserRole.LAB_MANAGER)
        response = await client.get("/api/v1/audit-logs/transactions/missing")
        assert response.status_code == 404
