"""Field-level audit trail: diffing, recording, querying."""

from lims.core.audit.context import AuditedSession, bind_audit_session
from lims.core.audit.differ import apply_changes, compute_changes, snapshot_record
from lims.core.audit.query import AuditFilters, AuditPage, AuditQuery
from lims.core.audit.recorder import AuditRecorder

__all__ = [
    "AuditedSession",
    "bind_audit_session",
    "compute_changes",
    "apply_changes",
    "snapshot_record",
    "AuditRecorder",
    "AuditQuery",
    "AuditFilters",
    "AuditPage",
]
