"""Database package."""

from lims.db.models import (
    AuditAction,
    AuditLog,
    AuditSource,
    Base,
    GovernedMixin,
    Job,
    JobStatus,
    LabSettings,
    Report,
    ReportStatus,
    Sample,
    SampleStatus,
    TestAssignment,
    TestPack,
    TestStatus,
    User,
    UserRole,
)
from lims.db.session import DbSession, close_db, get_db_session, init_db

__all__ = [
    "DbSession",
    "get_db_session",
    "init_db",
    "close_db",
    "Base",
    "GovernedMixin",
    "User",
    "UserRole",
    "Job",
    "JobStatus",
    "Sample",
    "SampleStatus",
    "TestPack",
    "TestAssignment",
    "TestStatus",
    "Report",
    "ReportStatus",
    "LabSettings",
    "AuditLog",
    "AuditAction",
    "AuditSource",
]
