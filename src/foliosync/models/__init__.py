"""Models domain — shared data models."""

from foliosync.models.collection import CollectionCacheEntry
from foliosync.models.collection import CollectionIndex
from foliosync.models.elements import Element
from foliosync.models.elements import ElementMetadata
from foliosync.models.elements import ElementRef
from foliosync.models.elements import ElementType
from foliosync.models.elements import slugify
from foliosync.models.remote import BlobContent
from foliosync.models.remote import CommitRef
from foliosync.models.remote import RepoRef
from foliosync.models.remote import RepoSpec
from foliosync.models.remote import TreeEntry
from foliosync.models.security import FindingCode
from foliosync.models.security import SecurityFinding
from foliosync.models.security import SecurityReport
from foliosync.models.security import Severity
from foliosync.models.security import ValidationContext
from foliosync.models.sync import Comparison
from foliosync.models.sync import ComparisonStatus
from foliosync.models.sync import RemoteListing
from foliosync.models.sync import RemoteListingEntry
from foliosync.models.sync import SyncFilter
from foliosync.models.sync import SyncMode
from foliosync.models.sync import SyncOperation
from foliosync.models.sync import SyncOutcome
from foliosync.models.sync import SyncRecord
from foliosync.models.sync import SyncReport
from foliosync.models.sync import SyncRequest
from foliosync.models.sync import SyncState
from foliosync.models.validation import ValidationIssue
from foliosync.models.validation import ValidationResult

__all__ = [
    "BlobContent",
    "CollectionCacheEntry",
    "CollectionIndex",
    "CommitRef",
    "Comparison",
    "ComparisonStatus",
    "Element",
    "ElementMetadata",
    "ElementRef",
    "ElementType",
    "FindingCode",
    "RemoteListing",
    "RemoteListingEntry",
    "RepoRef",
    "RepoSpec",
    "SecurityFinding",
    "SecurityReport",
    "Severity",
    "slugify",
    "SyncFilter",
    "SyncMode",
    "SyncOperation",
    "SyncOutcome",
    "SyncRecord",
    "SyncReport",
    "SyncRequest",
    "SyncState",
    "TreeEntry",
    "ValidationContext",
    "ValidationIssue",
    "ValidationResult",
]
