"""Core audit module - per-run audit journal and retention."""

from core.audit.journal import (
    AuditBackend,
    AuditEventType,
    AuditJournal,
    InMemoryAuditBackend,
    create_audit_entry,
    prune_audit_files,
    read_audit_file,
)

__all__ = [
    "AuditBackend",
    "AuditEventType",
    "AuditJournal",
    "InMemoryAuditBackend",
    "create_audit_entry",
    "prune_audit_files",
    "read_audit_file",
]
