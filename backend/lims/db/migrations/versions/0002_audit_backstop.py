"""Storage-layer audit backstop and append-only audit_logs

Installs an AFTER ROW trigger on every governed table that writes its own
audit_logs row (source='trigger') for each INSERT, UPDATE and DELETE,
independently of the application recorder. Actor identity is read from the
transaction-local settings app.actor_id, app.actor_email, app.ip,
app.user_agent and app.tx_id. When no actor is bound the system sentinel is
recorded; a malformed actor id never fails the mutation.

audit_logs itself rejects UPDATE, DELETE and TRUNCATE for every role.

Revision ID: 0002_audit_backstop
Revises: 0001_initial
Create Date: 2026-10-18
"""

from alembic import op

# revision identifiers, used by Alembic.
revision = "0002_audit_backstop"
down_revision = "0001_initial"
branch_labels = None
depends_on = None

GOVERNED_TABLES = (
    "users",
    "jobs",
    "samples",
    "test_packs",
    "test_assignments",
    "reports",
)

_ROW_CHANGE_FUNCTION = """
CREATE OR REPLACE FUNCTION lims_audit_row_change()
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
        v_actor_id := '00000000-0000-0000-0000-000000000000'::uuid;
        v_actor_email := 'system@lims.local';
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
        COALESCE(v_changes, '{}'::jsonb), v_tx_id, v_ip, v_user_agent, 'trigger'
    );
    RETURN NULL;
END;
$$ LANGUAGE plpgsql;
"""

_IMMUTABLE_FUNCTION = """
CREATE OR REPLACE FUNCTION lims_audit_logs_immutable()
RETURNS trigger AS $$
BEGIN
    RAISE EXCEPTION 'audit_logs is append-only'
        USING ERRCODE = 'restrict_violation',
              DETAIL = 'rejected ' || TG_OP || ' on audit_logs';
END;
$$ LANGUAGE plpgsql;
"""


def upgrade() -> None:
    op.execute(_ROW_CHANGE_FUNCTION)
    op.execute(_IMMUTABLE_FUNCTION)

    for table_name in GOVERNED_TABLES:
        op.execute(
            f"CREATE TRIGGER {table_name}_audit_backstop "
            f"AFTER INSERT OR UPDATE OR DELETE ON {table_name} "
            "FOR EACH ROW EXECUTE FUNCTION lims_audit_row_change()"
        )

    op.execute(
        "CREATE TRIGGER audit_logs_immutable "
        "BEFORE UPDATE OR DELETE ON audit_logs "
        "FOR EACH ROW EXECUTE FUNCTION lims_audit_logs_immutable()"
    )
    op.execute(
        "CREATE TRIGGER audit_logs_no_truncate "
        "BEFORE TRUNCATE ON audit_logs "
        "FOR EACH STATEMENT EXECUTE FUNCTION lims_audit_logs_immutable()"
    )
    op.execute("REVOKE UPDATE, DELETE, TRUNCATE ON audit_logs FROM PUBLIC")


def downgrade() -> None:
    op.execute("DROP TRIGGER IF EXISTS audit_logs_no_truncate ON audit_logs")
    op.execute("DROP TRIGGER IF EXISTS audit_logs_immutable ON audit_logs")
    for table_name in GOVERNED_TABLES:
        op.execute(f"DROP TRIGGER IF EXISTS {table_name}_audit_backstop ON {table_name}")
    op.execute("DROP FUNCTION IF EXISTS lims_audit_logs_immutable()")
    op.execute("DROP FUNCTION IF EXISTS lims_audit_row_change()")
