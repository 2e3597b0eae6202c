"""Audit event types and data models."""

from __future__ import annotations

import time
from enum import Enum
from typing import Any

from pydantic import BaseModel
from pydantic import Field


class AuditEventType(str, Enum):
    """Categories of auditable events."""

    SECURITY_NORMALIZED = "SECURITY_NORMALIZED"
    SECURITY_FINDING = "SECURITY_FINDING"
    SECURITY_REJECTED = "SECURITY_REJECTED"
    ELEMENT_WRITTEN = "ELEMENT_WRITTEN"
    ELEMENT_DELETED = "ELEMENT_DELETED"
    SYNC_BATCH = "SYNC_BATCH"
    REPOSITORY_CREATED = "REPOSITORY_CREATED"


class AuditEvent(BaseModel):
    """A single immutable audit log entry."""

    model_config = {"frozen": True}

    timestamp: float = Field(
        default_factory=time.time,
        description="Unix epoch when the event occurred.",
    )
    event_type: AuditEventType = Field(
        description="Category of the audited action.",
    )
    operation: str = Field(
        default="",
        description="Operation that triggered the event (e.g. 'upload').",
    )
    element_ref: str | None = Field(
        default=None,
        description="'type/slug' reference of the affected element, if any.",
    )
    severity: str | None = Field(
        default=None,
        description="Highest finding severity involved in the decision.",
    )
    payload: dict[str, Any] = Field(
        default_factory=dict,
        description="Event-specific data.",
    )
