"""
SQLAlchemy ORM models for the laboratory record store.
All models use UUIDv7 for primary keys to ensure time-ordered identifiers.

Every model carrying ``GovernedMixin`` is a governed table: its mutations are
audited by the application and, independently, by the storage backstop
trigger installed in migration ``0002_audit_backstop``.
"""

from datetime import date, datetime
from enum import Enum as PyEnum
from typing import Any
from uuid import UUID

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    event,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from lims.core.exceptions import ImmutableEntryViolation


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    type_annotation_map = {
        dict[str, Any]: JSONB,
        list[dict[str, Any]]: JSONB,
    }


# =============================================================================
# Enums
# =============================================================================


class UserRole(str, PyEnum):
    """Roles for context-sensitive RBAC."""

    ADMIN = "ADMIN"
    LAB_MANAGER = "LAB_MANAGER"
    ANALYST = "ANALYST"
    SALES_ACCOUNTING = "SALES_ACCOUNTING"
    CLIENT = "CLIENT"


class JobStatus(str, PyEnum):
    OPEN = "OPEN"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class SampleStatus(str, PyEnum):
    """Sample lifecycle status."""

    RECEIVED = "RECEIVED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    DISPOSED = "DISPOSED"


class TestStatus(str, PyEnum):
    """Status of a single test assignment on a sample."""

    __test__ = False

    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    REVIEWED = "REVIEWED"


class ReportStatus(str, PyEnum):
    """Certificate of analysis workflow state."""

    DRAFT = "DRAFT"
    FINAL = "FINAL"
    RELEASED = "RELEASED"


class AuditAction(str, PyEnum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class AuditSource(str, PyEnum):
    """Which enforcement layer wrote an audit entry."""

    APPLICATION = "application"
    TRIGGER = "trigger"


def _enum_column(enum_cls: type[PyEnum], **kwargs: Any) -> Enum:
    return Enum(enum_cls, values_callable=lambda e: [m.value for m in e], **kwargs)


# =============================================================================
# Mixins
# =============================================================================


class GovernedMixin:
    """
    Mixin for governed entity tables.

    Server-side defaults are fetched eagerly so that post-flush snapshots
    never trigger lazy loads on an async session.
    """

    __mapper_args__ = {"eager_defaults": True}

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )


# =============================================================================
# Governed Models
# =============================================================================


class User(GovernedMixin, Base):
    """Laboratory staff member or client contact."""

    __tablename__ = "users"

    id: Mapped[UUID] = mapped_column(
        primary_key=True,
        server_default=func.uuid_generate_v7(),
    )
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    display_name: Mapped[str | None] = mapped_column(String(255))
    role: Mapped[UserRole] = mapped_column(
        _enum_column(UserRole, name="userrole"),
        nullable=False,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (UniqueConstraint("email", name="uq_users_email"),)


class Job(GovernedMixin, Base):
    """A client work order grouping one or more samples."""

    __tablename__ = "jobs"

    id: Mapped[UUID] = mapped_column(
        primary_key=True,
        server_default=func.uuid_generate_v7(),
    )
    job_number: Mapped[str] = mapped_column(String(50), nullable=False)
    client_id: Mapped[UUID] = mapped_column(ForeignKey("users.id"), nullable=False)
    status: Mapped[JobStatus] = mapped_column(
        _enum_column(JobStatus, name="jobstatus"),
        default=JobStatus.OPEN,
        nullable=False,
    )
    notes: Mapped[str | None] = mapped_column(Text)
    created_by_id: Mapped[UUID | None] = mapped_column(ForeignKey("users.id"))

    samples: Mapped[list["Sample"]] = relationship(back_populates="job")

    __table_args__ = (
        UniqueConstraint("job_number", name="uq_jobs_job_number"),
        Index("ix_jobs_client_id", "client_id"),
    )


class Sample(GovernedMixin, Base):
    """A physical sample received for testing."""

    __tablename__ = "samples"

    id: Mapped[UUID] = mapped_column(
        primary_key=True,
        server_default=func.uuid_generate_v7(),
    )
    job_id: Mapped[UUID] = mapped_column(
        ForeignKey("jobs.id", ondelete="RESTRICT"),
        nullable=False,
    )
    sample_code: Mapped[str] = mapped_column(String(100), nullable=False)
    client_id: Mapped[UUID] = mapped_column(ForeignKey("users.id"), nullable=False)
    assigned_user_id: Mapped[UUID | None] = mapped_column(ForeignKey("users.id"))
    status: Mapped[SampleStatus] = mapped_column(
        _enum_column(SampleStatus, name="samplestatus"),
        default=SampleStatus.RECEIVED,
        nullable=False,
    )
    matrix: Mapped[str | None] = mapped_column(
        String(100),
        comment="Sample matrix, e.g. water, soil, tissue",
    )
    description: Mapped[str | None] = mapped_column(Text)
    received_on: Mapped[date | None] = mapped_column(Date)

    job: Mapped[Job] = relationship(back_populates="samples")

    __table_args__ = (
        UniqueConstraint("sample_code", name="uq_samples_sample_code"),
        Index("ix_samples_client_id", "client_id"),
        Index("ix_samples_assigned_user_id", "assigned_user_id"),
    )


class TestPack(GovernedMixin, Base):
    """Named bundle of test definitions applied to a sample in one step."""

    __test__ = False
    __tablename__ = "test_packs"

    id: Mapped[UUID] = mapped_column(
        primary_key=True,
        server_default=func.uuid_generate_v7(),
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    tests: Mapped[list[dict[str, Any]]] = mapped_column(
        nullable=False,
        default=list,
        comment="List of {code, name, method, unit}",
    )

    __table_args__ = (UniqueConstraint("name", name="uq_test_packs_name"),)


class TestAssignment(GovernedMixin, Base):
    """One test to be performed on a sample."""

    __test__ = False
    __tablename__ = "test_assignments"

    id: Mapped[UUID] = mapped_column(
        primary_key=True,
        server_default=func.uuid_generate_v7(),
    )
    sample_id: Mapped[UUID] = mapped_column(
        ForeignKey("samples.id", ondelete="RESTRICT"),
        nullable=False,
    )
    test_code: Mapped[str] = mapped_column(String(50), nullable=False)
    test_name: Mapped[str] = mapped_column(String(255), nullable=False)
    method: Mapped[str | None] = mapped_column(String(255))
    unit: Mapped[str | None] = mapped_column(String(50))
    result_value: Mapped[str | None] = mapped_column(String(255))
    status: Mapped[TestStatus] = mapped_column(
        _enum_column(TestStatus, name="teststatus"),
        default=TestStatus.PENDING,
        nullable=False,
    )
    assigned_user_id: Mapped[UUID | None] = mapped_column(ForeignKey("users.id"))
    test_pack_id: Mapped[UUID | None] = mapped_column(ForeignKey("test_packs.id"))

    __table_args__ = (
        Index("ix_test_assignments_sample_id", "sample_id"),
        Index("ix_test_assignments_assigned_user_id", "assigned_user_id"),
    )


class Report(GovernedMixin, Base):
    """Certificate of analysis issued for a sample."""

    __tablename__ = "reports"

    id: Mapped[UUID] = mapped_column(
        primary_key=True,
        server_default=func.uuid_generate_v7(),
    )
    sample_id: Mapped[UUID] = mapped_column(
        ForeignKey("samples.id", ondelete="RESTRICT"),
        nullable=False,
    )
    status: Mapped[ReportStatus] = mapped_column(
        _enum_column(ReportStatus, name="reportstatus"),
        default=ReportStatus.DRAFT,
        nullable=False,
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    finalized_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    released_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    released_by_id: Mapped[UUID | None] = mapped_column(ForeignKey("users.id"))
    created_by_id: Mapped[UUID | None] = mapped_column(ForeignKey("users.id"))

    sample: Mapped[Sample] = relationship()

    __table_args__ = (Index("ix_reports_sample_id", "sample_id"),)


class LabSettings(GovernedMixin, Base):
    """Laboratory-wide presentation settings used on certificates."""

    __tablename__ = "lab_settings"

    id: Mapped[UUID] = mapped_column(
        primary_key=True,
        server_default=func.uuid_generate_v7(),
    )
    lab_name: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        server_default="Laboratory LIMS Pro",
    )
    lab_logo_url: Mapped[str | None] = mapped_column(Text)
    disclaimer_text: Mapped[str | None] = mapped_column(Text)
    coa_template_settings: Mapped[dict[str, Any] | None] = mapped_column(JSONB)
    created_by_id: Mapped[UUID] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
    )
    updated_by_id: Mapped[UUID] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
    )

    __table_args__ = (
        Index("ix_lab_settings_created_by_id", "created_by_id"),
        Index("ix_lab_settings_updated_by_id", "updated_by_id"),
    )


# =============================================================================
# Audit Trail
# =============================================================================


class AuditLog(Base):
    """
    Append-only field-level audit trail.

    Rows are written by ``AuditRecorder`` (source=application) and by the
    ``lims_audit_row_change`` trigger (source=trigger). The database rejects
    UPDATE, DELETE and TRUNCATE on this table.
    """

    __tablename__ = "audit_logs"
    __mapper_args__ = {"eager_defaults": True}

    id: Mapped[UUID] = mapped_column(
        primary_key=True,
        server_default=func.uuid_generate_v7(),
    )
    actor_id: Mapped[UUID | None] = mapped_column(
        comment="Actor user id (system sentinel when unresolved)",
    )
    actor_email: Mapped[str | None] = mapped_column(String(255))
    action: Mapped[AuditAction] = mapped_column(
        _enum_column(AuditAction, native_enum=False, length=10, name="auditaction"),
        nullable=False,
    )
    table_name: Mapped[str] = mapped_column(String(100), nullable=False)
    record_id: Mapped[str] = mapped_column(String(255), nullable=False)
    changes: Mapped[dict[str, Any]] = mapped_column(nullable=False)
    reason: Mapped[str | None] = mapped_column(Text)
    at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.clock_timestamp(),
        nullable=False,
    )
    tx_id: Mapped[str | None] = mapped_column(String(64))
    ip: Mapped[str | None] = mapped_column(String(45))
    user_agent: Mapped[str | None] = mapped_column(Text)
    source: Mapped[AuditSource] = mapped_column(
        _enum_column(AuditSource, native_enum=False, length=20, name="auditsource"),
        nullable=False,
        default=AuditSource.APPLICATION,
    )

    __table_args__ = (
        Index("ix_audit_logs_record", "table_name", "record_id"),
        Index("ix_audit_logs_actor_id", "actor_id"),
        Index("ix_audit_logs_tx_id", "tx_id"),
        Index("ix_audit_logs_at", "at"),
    )


@event.listens_for(AuditLog, "before_update")
@event.listens_for(AuditLog, "before_delete")
def _reject_audit_mutation(_mapper: Any, _connection: Any, target: AuditLog) -> None:
    raise ImmutableEntryViolation(target.id)
