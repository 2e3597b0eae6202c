"""Audit subsystem — JSONL event logging."""

from foliosync.audit.schemas import AuditEvent
from foliosync.audit.schemas import AuditEventType
from foliosync.audit.store import AuditLogger

__all__ = [
    "AuditEvent",
    "AuditEventType",
    "AuditLogger",
]
