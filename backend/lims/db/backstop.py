"""
Storage-layer audit backstop.

A PL/pgSQL row trigger on every governed table writes its own ``audit_logs``
row for each INSERT, UPDATE and DELETE, independently of ``AuditRecorder``.
Actor identity comes from transaction-local session settings
(``app.actor_id``, ``app.actor_email``, ``app.ip``, ``app.user_agent``,
``app.tx_id``) bound by :func:`lims.core.audit.context.bind_audit_session`.
When no actor is bound the trigger records the system sentinel instead of
failing the mutation.

The same DDL ships in migration ``0002_audit_backstop``; ``install_backstop``
applies it to a schema built with ``Base.metadata.create_all`` (tests,
throwaway environments).
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from contextlib import contextmanager
from typing import Any
from uuid import UUID

from sqlalchemy.engine import Connection, Result
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import Executable

from lims.core.exceptions import BackstopFailure, ImmutableEntryViolation
from lims.core.logging import get_logger
from lims.db.models import Base, GovernedMixin

logger = get_logger(__name__)

BACKSTOP_FUNCTION = "lims_audit_row_change"
IMMUTABLE_FUNCTION = "lims_audit_logs_immutable"
IMMUTABLE_MESSAGE = "audit_logs is append-only"

SYSTEM_ACTOR_ID = UUID(int=0)
SYSTEM_ACTOR_EMAIL = "system@lims.local"

SESSION_VARIABLES = {
    "actor_id": "app.actor_id",
    "actor_email": "app.actor_email",
    "ip": "app.ip",
    "user_agent": "app.user_agent",
    "tx_id": "app.tx_id",
}

ROW_CHANGE_FUNCTION_SQL = f"""
CREATE OR REPLACE FUNCTION {BACKSTOP_FUNCTION}()
RETURNS trigger AS $$
DECLARE
    v_actor_id uuid;
    v_actor_email text := NULLIF(current_setting('app.actor_email', true), '');
    v_ip text := NULLIF(current_setting('app.ip', true), '');
    v_user_agent text := NULLIF(current_setting('app.user_agent', true), '');
    v_tx_id text := NULLIF(current_setting('app.tx_id', true), '');
    v_old jsonb;
    v_new jsonb;
    v_changes jsonb;
    v_action text;
    v_record_id text;
BEGIN
    BEGIN
        v_actor_id := NULLIF(current_setting('app.actor_id', true), '')::uuid;
    EXCEPTION WHEN invalid_text_representation THEN
        v_actor_id := NULL;
    END;

    IF v_actor_id IS NULL THEN
        v_actor_id := '{SYSTEM_ACTOR_ID}'::uuid;
        v_actor_email := '{SYSTEM_ACTOR_EMAIL}';
    END IF;

    IF TG_OP = 'INSERT' THEN
        v_action := 'CREATE';
        v_new := to_jsonb(NEW);
        v_record_id := v_new ->> 'id';
        SELECT jsonb_object_agg(n.key, jsonb_build_object('old', NULL, 'new', n.value))
          INTO v_changes
          FROM jsonb_each(v_new) AS n;
    ELSIF TG_OP = 'UPDATE' THEN
        v_action := 'UPDATE';
        v_old := to_jsonb(OLD);
        v_new := to_jsonb(NEW);
        v_record_id := v_new ->> 'id';
        SELECT jsonb_object_agg(n.key, jsonb_build_object('old', o.value, 'new', n.value))
          INTO v_changes
          FROM jsonb_each(v_new) AS n
          LEFT JOIN jsonb_each(v_old) AS o ON o.key = n.key
         WHERE o.value IS DISTINCT FROM n.value;
        IF v_changes IS NULL THEN
            RETURN NULL;
        END IF;
    ELSE
        v_action := 'DELETE';
        v_old := to_jsonb(OLD);
        v_record_id := v_old ->> 'id';
        SELECT jsonb_object_agg(o.key, jsonb_build_object('old', o.value, 'new', NULL))
          INTO v_changes
          FROM jsonb_each(v_old) AS o;
    END IF;

    INSERT INTO audit_logs (
        actor_id, actor_email, action, table_name, record_id,
        changes, tx_id, ip, user_agent, source
    ) VALUES (
        v_actor_id, v_actor_email, v_action, TG_TABLE_NAME, v_record_id,
        COALESCE(v_changes, '{{}}'::jsonb), v_tx_id, v_ip, v_user_agent, 'trigger'
    );
    RETURN NULL;
END;
$$ LANGUAGE plpgsql;
"""

IMMUTABLE_FUNCTION_SQL = f"""
CREATE OR REPLACE FUNCTION {IMMUTABLE_FUNCTION}()
RETURNS trigger AS $$
BEGIN
    RAISE EXCEPTION '{IMMUTABLE_MESSAGE}'
        USING ERRCODE = 'restrict_violation',
              DETAIL = 'rejected ' || TG_OP || ' on audit_logs';
END;
$$ LANGUAGE plpgsql;
"""

IMMUTABILITY_STATEMENTS = (
    "DROP TRIGGER IF EXISTS audit_logs_immutable ON audit_logs",
    f"""
    CREATE TRIGGER audit_logs_immutable
    BEFORE UPDATE OR DELETE ON audit_logs
    FOR EACH ROW EXECUTE FUNCTION {IMMUTABLE_FUNCTION}()
    """,
    "DROP TRIGGER IF EXISTS audit_logs_no_truncate ON audit_logs",
    f"""
    CREATE TRIGGER audit_logs_no_truncate
    BEFORE TRUNCATE ON audit_logs
    FOR EACH STATEMENT EXECUTE FUNCTION {IMMUTABLE_FUNCTION}()
    """,
    "REVOKE UPDATE, DELETE, TRUNCATE ON audit_logs FROM PUBLIC",
)


def governed_tables() -> list[str]:
    """Introspect all ORM tables carrying ``GovernedMixin``."""
    tables = {
        mapper.class_.__tablename__
        for mapper in Base.registry.mappers
        if issubclass(mapper.class_, GovernedMixin)
    }
    return sorted(tables)


def trigger_name(table: str) -> str:
    return f"{table}_audit_backstop"


def backstop_statements(tables: Iterable[str] | None = None) -> list[str]:
    """DDL installing the backstop on ``tables`` (default: all governed tables)."""
    selected = list(tables) if tables is not None else governed_tables()
    statements = [ROW_CHANGE_FUNCTION_SQL, IMMUTABLE_FUNCTION_SQL]
    for table in selected:
        name = trigger_name(table)
        statements.append(f"DROP TRIGGER IF EXISTS {name} ON {table}")
        statements.append(
            f"CREATE TRIGGER {name} "
            f"AFTER INSERT OR UPDATE OR DELETE ON {table} "
            f"FOR EACH ROW EXECUTE FUNCTION {BACKSTOP_FUNCTION}()"
        )
    statements.extend(IMMUTABILITY_STATEMENTS)
    return statements


def install_backstop(connection: Connection, tables: Iterable[str] | None = None) -> None:
    """Apply backstop DDL on a sync connection (use via ``AsyncConnection.run_sync``)."""
    selected = list(tables) if tables is not None else governed_tables()
    for statement in backstop_statements(selected):
        connection.exec_driver_sql(statement)
    logger.info("backstop_installed", tables=selected)


def _chain_mentions(exc: BaseException, *markers: str) -> bool:
    seen: set[int] = set()
    current: Any = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        context = getattr(current, "context", None)
        text = str(current)
        for marker in markers:
            if isinstance(context, str) and marker in context:
                return True
            if marker in text:
                return True
        current = getattr(current, "orig", None) or current.__cause__
    return False


def is_backstop_fault(exc: BaseException) -> bool:
    """Return True when a database error originated inside the backstop trigger."""
    return _chain_mentions(exc, BACKSTOP_FUNCTION)


def is_immutability_fault(exc: BaseException) -> bool:
    """Return True when the database rejected a change to ``audit_logs``."""
    return _chain_mentions(exc, IMMUTABLE_FUNCTION, IMMUTABLE_MESSAGE)


@contextmanager
def storage_faults() -> Iterator[None]:
    """
    Translate audit storage faults into domain errors.

    Append-only rejections become ``ImmutableEntryViolation`` and backstop
    trigger faults become ``BackstopFailure``; every other database error
    propagates unchanged.
    """
    try:
        yield
    except DBAPIError as exc:
        if is_immutability_fault(exc):
            logger.warning("audit_mutation_rejected", error=str(exc.orig))
            raise ImmutableEntryViolation() from exc
        if is_backstop_fault(exc):
            logger.error("backstop_fault", error=str(exc.orig))
            raise BackstopFailure("storage backstop could not record the mutation") from exc
        raise


async def flush_governed(session: AsyncSession) -> None:
    """Flush pending governed mutations, mapping storage faults."""
    with storage_faults():
        await session.flush()


async def execute_governed(
    session: AsyncSession,
    statement: Executable,
    params: Mapping[str, Any] | None = None,
) -> Result[Any]:
    """Run a raw statement against governed storage, mapping storage faults."""
    with storage_faults():
        return await session.execute(statement, params)
