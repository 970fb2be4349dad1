"""Add lab_settings table (governed)

Revision ID: 0003_lab_settings
Revises: 0002_audit_backstop
Create Date: 2026-10-18
"""

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "0003_lab_settings"
down_revision = "0002_audit_backstop"
branch_labels = None
depends_on = None

GOVERNED_TABLES = ("lab_settings",)


def upgrade() -> None:
    op.create_table(
        "lab_settings",
        sa.Column(
            "id",
            postgresql.UUID(as_uuid=True),
            server_default=sa.text("uuid_generate_v7()"),
            nullable=False,
        ),
        sa.Column(
            "lab_name",
            sa.Text(),
            nullable=False,
            server_default="Laboratory LIMS Pro",
        ),
        sa.Column("lab_logo_url", sa.Text(), nullable=True),
        sa.Column("disclaimer_text", sa.Text(), nullable=True),
        sa.Column(
            "coa_template_settings",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=True,
        ),
        sa.Column("created_by_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("updated_by_id", postgresql.UUID(as_uuid=True), nullable=False),
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
        sa.ForeignKeyConstraint(["created_by_id"], ["users.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["updated_by_id"], ["users.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_lab_settings_created_by_id", "lab_settings", ["created_by_id"])
    op.create_index("ix_lab_settings_updated_by_id", "lab_settings", ["updated_by_id"])

    for table_name in GOVERNED_TABLES:
        op.execute(
            f"CREATE TRIGGER {table_name}_audit_backstop "
            f"AFTER INSERT OR UPDATE OR DELETE ON {table_name} "
            "FOR EACH ROW EXECUTE FUNCTION lims_audit_row_change()"
        )


def downgrade() -> None:
    for table_name in GOVERNED_TABLES:
        op.execute(f"DROP TRIGGER IF EXISTS {table_name}_audit_backstop ON {table_name}")
    op.drop_index("ix_lab_settings_updated_by_id", table_name="lab_settings")
    op.drop_index("ix_lab_settings_created_by_id", table_name="lab_settings")
    op.drop_table("lab_settings")
