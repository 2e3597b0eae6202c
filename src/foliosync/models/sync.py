"""Sync request, record and ledger models.

These shape what the tool-dispatch layer sends in and gets back.  FastMCP
serializes them automatically.
"""

from __future__ import annotations

from enum import Enum
from typing import Literal

from pydantic import BaseModel
from pydantic import Field

from foliosync.models.elements import ElementType

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class SyncOperation(str, Enum):
    """Per-element operations recorded in a ledger."""

    download = "download"
    upload = "upload"
    compare = "compare"
    delete = "delete"


class SyncOutcome(str, Enum):
    success = "success"
    failure = "failure"
    skipped = "skipped"


class SyncState(str, Enum):
    """Per-element lifecycle; terminal states are rejected, succeeded, failed and skipped."""

    pending = "pending"
    validating = "validating"
    rejected = "rejected"
    in_flight = "in_flight"
    succeeded = "succeeded"
    failed = "failed"
    skipped = "skipped"


class SyncMode(str, Enum):
    """How bulk download reconciles remote and local sets."""

    additive = "additive"
    backup = "backup"
    mirror = "mirror"


class ComparisonStatus(str, Enum):
    identical = "identical"
    different = "different"
    local_only = "local_only"
    remote_only = "remote_only"
    not_found = "not_found"


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


class SyncFilter(BaseModel):
    """Narrows a listing or bulk operation."""

    model_config = {"frozen": True}

    element_type: ElementType | None = Field(
        default=None,
        description="Only elements of this type.",
    )
    query: str | None = Field(
        default=None,
        description="Case-insensitive substring matched against slug and name.",
    )


class SyncRequest(BaseModel):
    """Typed operation request from the tool-dispatch layer."""

    operation: Literal[
        "download",
        "upload",
        "compare",
        "bulk_download",
        "bulk_upload",
    ]
    element_ref: str | None = Field(
        default=None,
        description="'type/slug-or-name' for single-element operations.",
    )
    filter: SyncFilter | None = None
    force: bool = False
    confirm: bool = False
    dry_run: bool = False
    mode: SyncMode = SyncMode.backup


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


class Comparison(BaseModel):
    """Local vs remote state for one element."""

    model_config = {"frozen": True}

    status: ComparisonStatus
    local_sha: str | None = Field(default=None, description="git blob sha of the local file.")
    remote_sha: str | None = None
    diff: str | None = Field(
        default=None,
        description="Unified diff (remote -> local) when the versions differ.",
    )


class SyncRecord(BaseModel):
    """Immutable outcome of one operation on one element."""

    model_config = {"frozen": True}

    element_ref: str
    operation: SyncOperation
    outcome: SyncOutcome
    state: SyncState
    error_code: str | None = None
    error_detail: str | None = None
    remote_url: str | None = None
    retryable: bool = False
    dry_run: bool = False
    comparison: Comparison | None = None


class SyncReport(BaseModel):
    """Ledger returned for every sync call, single or bulk."""

    operation: str
    status: str = Field(
        default="ok",
        description="'ok' when the ledger was produced, 'error' when the call failed before any element was touched.",
    )
    error_code: str | None = None
    message: str = ""
    dry_run: bool = False
    preview: bool = Field(
        default=False,
        description="True when nothing was executed because confirmation is required.",
    )
    cancelled: bool = False
    records: list[SyncRecord] = Field(default_factory=list)

    @property
    def succeeded(self) -> list[SyncRecord]:
        return [r for r in self.records if r.outcome is SyncOutcome.success]

    @property
    def failed(self) -> list[SyncRecord]:
        return [r for r in self.records if r.outcome is SyncOutcome.failure]

    @property
    def skipped(self) -> list[SyncRecord]:
        return [r for r in self.records if r.outcome is SyncOutcome.skipped]

    def counts(self) -> dict[str, int]:
        return {
            "total": len(self.records),
            "succeeded": len(self.succeeded),
            "failed": len(self.failed),
            "skipped": len(self.skipped),
        }


class RemoteListingEntry(BaseModel):
    """One element file present in the remote repository."""

    model_config = {"frozen": True}

    element_type: ElementType
    slug: str
    path: str
    sha: str
    size: int | None = None


class RemoteListing(BaseModel):
    """Result of ``SyncEngine.list_remote``."""

    status: str = "ok"
    error_code: str | None = None
    message: str = ""
    entries: list[RemoteListingEntry] = Field(default_factory=list)

    def types_present(self) -> set[ElementType]:
        return {e.element_type for e in self.entries}
