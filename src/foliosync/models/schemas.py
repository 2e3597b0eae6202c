"""Pydantic result models for the MCP tools.

``sync_portfolio`` returns a ``SyncReport`` and ``list_remote`` a
``RemoteListing``; the remaining tools use the models below.  Every result
carries ``status`` / ``error_code`` / ``message`` so callers never see a raw
exception.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel
from pydantic import Field

from foliosync.models.collection import CollectionCacheEntry
from foliosync.models.security import SecurityFinding
from foliosync.models.validation import ValidationIssue


class ValidateElementResult(BaseModel):
    """Output of validate_element."""

    status: str = "ok"
    error_code: str | None = None
    message: str = ""
    element_ref: str | None = None
    valid: bool = False
    activatable: bool = False
    errors: list[ValidationIssue] = Field(default_factory=list)
    warnings: list[ValidationIssue] = Field(default_factory=list)
    findings: list[SecurityFinding] = Field(
        default_factory=list,
        description="Security findings for the element's serialized file.",
    )
    suggested_version: str | None = Field(
        default=None,
        description="Normalized version when the declared one is not three-component semver.",
    )


class SearchCollectionResult(BaseModel):
    """Output of search_collection."""

    status: str = "ok"
    error_code: str | None = None
    message: str = ""
    query: str = ""
    total: int = 0
    stale: bool = Field(
        default=False,
        description="True when results come from an index older than the cache TTL.",
    )
    entries: list[CollectionCacheEntry] = Field(default_factory=list)


class SyncSettingsResult(BaseModel):
    """Output of update_sync_settings."""

    status: str = "ok"
    error_code: str | None = None
    message: str = ""
    settings: dict[str, Any] = Field(default_factory=dict)
