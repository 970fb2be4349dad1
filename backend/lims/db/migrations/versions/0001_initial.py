"""Initial schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-18
"""

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
    ]


def _id() -> sa.Column:
    return sa.Column(
        "id",
        postgresql.UUID(as_uuid=True),
        server_default=sa.text("uuid_generate_v7()"),
        nullable=False,
    )


def upgrade() -> None:
    op.execute('CREATE EXTENSION IF NOT EXISTS "pgcrypto";')
    op.execute(
        """
CREATE OR REPLACE FUNCTION uuid_generate_v7()
RETURNS uuid AS $$
DECLARE
    unix_ts_ms bytea;
    uuid_bytes bytea;
BEGIN
    unix_ts_ms = substring(int8send(floor(extract(epoch from clock_timestamp()) * 1000)::bigint) from 3);
    uuid_bytes = unix_ts_ms || gen_random_bytes(10);

    -- Set version 7
    uuid_bytes = set_byte(uuid_bytes, 6, (get_byte(uuid_bytes, 6) & 15) | 112);
    -- Set variant (RFC 4122)
    uuid_bytes = set_byte(uuid_bytes, 8, (get_byte(uuid_bytes, 8) & 63) | 128);

    RETURN encode(uuid_bytes, 'hex')::uuid;
END;
$$ LANGUAGE plpgsql VOLATILE;
        """
    )

    userrole_enum = sa.Enum(
        "ADMIN", "LAB_MANAGER", "ANALYST", "SALES_ACCOUNTING", "CLIENT", name="userrole"
    )
    jobstatus_enum = sa.Enum("OPEN", "IN_PROGRESS", "COMPLETED", "CANCELLED", name="jobstatus")
    samplestatus_enum = sa.Enum(
        "RECEIVED", "IN_PROGRESS", "COMPLETED", "DISPOSED", name="samplestatus"
    )
    teststatus_enum = sa.Enum(
        "PENDING", "IN_PROGRESS", "COMPLETED", "REVIEWED", name="teststatus"
    )
    reportstatus_enum = sa.Enum("DRAFT", "FINAL", "RELEASED", name="reportstatus")

    op.create_table(
        "users",
        _id(),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("display_name", sa.String(length=255), nullable=True),
        sa.Column("role", userrole_enum, nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email", name="uq_users_email"),
    )

    op.create_table(
        "jobs",
        _id(),
        sa.Column("job_number", sa.String(length=50), nullable=False),
        sa.Column("client_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("status", jobstatus_enum, nullable=False, server_default="OPEN"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_by_id", postgresql.UUID(as_uuid=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["client_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["created_by_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("job_number", name="uq_jobs_job_number"),
    )
    op.create_index("ix_jobs_client_id", "jobs", ["client_id"], unique=False)

    op.create_table(
        "samples",
        _id(),
        sa.Column("job_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("sample_code", sa.String(length=100), nullable=False),
        sa.Column("client_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("assigned_user_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("status", samplestatus_enum, nullable=False, server_default="RECEIVED"),
        sa.Column(
            "matrix",
            sa.String(length=100),
            nullable=True,
            comment="Sample matrix, e.g. water, soil, tissue",
        ),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("received_on", sa.Date(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["job_id"], ["jobs.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["client_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["assigned_user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("sample_code", name="uq_samples_sample_code"),
    )
    op.create_index("ix_samples_client_id", "samples", ["client_id"], unique=False)
    op.create_index(
        "ix_samples_assigned_user_id", "samples", ["assigned_user_id"], unique=False
    )

    op.create_table(
        "test_packs",
        _id(),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column(
            "tests",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'[]'::jsonb"),
            comment="List of {code, name, method, unit}",
        ),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("name", name="uq_test_packs_name"),
    )

    op.create_table(
        "test_assignments",
        _id(),
        sa.Column("sample_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("test_code", sa.String(length=50), nullable=False),
        sa.Column("test_name", sa.String(length=255), nullable=False),
        sa.Column("method", sa.String(length=255), nullable=True),
        sa.Column("unit", sa.String(length=50), nullable=True),
        sa.Column("result_value", sa.String(length=255), nullable=True),
        sa.Column("status", teststatus_enum, nullable=False, server_default="PENDING"),
        sa.Column("assigned_user_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("test_pack_id", postgresql.UUID(as_uuid=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["sample_id"], ["samples.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["assigned_user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["test_pack_id"], ["test_packs.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_test_assignments_sample_id", "test_assignments", ["sample_id"], unique=False
    )
    op.create_index(
        "ix_test_assignments_assigned_user_id",
        "test_assignments",
        ["assigned_user_id"],
        unique=False,
    )

    op.create_table(
        "reports",
        _id(),
        sa.Column("sample_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("status", reportstatus_enum, nullable=False, server_default="DRAFT"),
        sa.Column("version", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("finalized_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("released_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("released_by_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("created_by_id", postgresql.UUID(as_uuid=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["sample_id"], ["samples.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["released_by_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["created_by_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_reports_sample_id", "reports", ["sample_id"], unique=False)

    op.create_table(
        "audit_logs",
        _id(),
        sa.Column(
            "actor_id",
            postgresql.UUID(as_uuid=True),
            nullable=True,
            comment="Actor user id (system sentinel when unresolved)",
        ),
        sa.Column("actor_email", sa.String(length=255), nullable=True),
        sa.Column("action", sa.String(length=10), nullable=False),
        sa.Column("table_name", sa.String(length=100), nullable=False),
        sa.Column("record_id", sa.String(length=255), nullable=False),
        sa.Column("changes", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column(
            "at",
            sa.DateTime(timezone=True),
            server_default=sa.text("clock_timestamp()"),
            nullable=False,
        ),
        sa.Column("tx_id", sa.String(length=64), nullable=True),
        sa.Column("ip", sa.String(length=45), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        sa.Column("source", sa.String(length=20), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("action IN ('CREATE', 'UPDATE', 'DELETE')", name="ck_audit_logs_action"),
        sa.CheckConstraint("source IN ('application', 'trigger')", name="ck_audit_logs_source"),
    )
    op.create_index("ix_audit_logs_record", "audit_logs", ["table_name", "record_id"])
    op.create_index("ix_audit_logs_actor_id", "audit_logs", ["actor_id"])
    op.create_index("ix_audit_logs_tx_id", "audit_logs", ["tx_id"])
    op.create_index("ix_audit_logs_at", "audit_logs", ["at"])


def downgrade() -> None:
    op.drop_index("ix_audit_logs_at", table_name="audit_logs")
    op.drop_index("ix_audit_logs_tx_id", table_name="audit_logs")
    op.drop_index("ix_audit_logs_actor_id", table_name="audit_logs")
    op.drop_index("ix_audit_logs_record", table_name="audit_logs")
    op.drop_table("audit_logs")

    op.drop_index("ix_reports_sample_id", table_name="reports")
    op.drop_table("reports")

    op.drop_index("ix_test_assignments_assigned_user_id", table_name="test_assignments")
    op.drop_index("ix_test_assignments_sample_id", table_name="test_assignments")
    op.drop_table("test_assignments")

    op.drop_table("test_packs")

    op.drop_index("ix_samples_assigned_user_id", table_name="samples")
    op.drop_index("ix_samples_client_id", table_name="samples")
    op.drop_table("samples")

    op.drop_index("ix_jobs_client_id", table_name="jobs")
    op.drop_table("jobs")

    op.drop_table("users")

    for enum_name in [
        "reportstatus",
        "teststatus",
        "samplestatus",
        "jobstatus",
        "userrole",
    ]:
        op.execute(f"DROP TYPE IF EXISTS {enum_name}")

    op.execute("DROP FUNCTION IF EXISTS uuid_generate_v7()")
