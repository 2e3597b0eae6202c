"""Application configuration dataclasses.

Frozen dataclasses with sensible defaults for each subsystem.  The only
mutable piece is ``SettingsStore``, which owns the current ``SyncConfig``
and is the single place the rest of the package asks "is sync enabled?".
"""

from __future__ import annotations

import dataclasses
import functools
import logging
import typing
from dataclasses import dataclass
from dataclasses import field
from threading import Lock

from pydantic import TypeAdapter
from pydantic import ValidationError

from foliosync.errors import ConfigurationError
from foliosync.errors import ErrorCode

logger = logging.getLogger(__name__)

MAX_BULK_CONCURRENCY = 8


@dataclass(frozen=True)
class PortfolioConfig:
    """Local portfolio directory settings."""

    root_dir: str = "~/.foliosync/portfolio"
    normalize_versions: bool = True
    state_file: str = ".foliosync-state.json"


@dataclass(frozen=True)
class RemoteConfig:
    """Remote repository coordinates and HTTP behaviour."""

    api_base_url: str = "https://api.github.com"
    owner: str | None = None
    repository: str | None = "dollhouse-portfolio"
    branch: str = "main"
    private: bool = False
    timeout_seconds: float = 30.0
    max_attempts: int = 3
    backoff_multiplier: float = 0.5
    backoff_max_seconds: float = 8.0

    @property
    def is_configured(self) -> bool:
        return bool(self.repository)


@dataclass(frozen=True)
class SyncConfig:
    """Sync behaviour toggles."""

    enabled: bool = False
    # Individual element operations
    require_confirmation: bool = True
    show_diff: bool = True
    # Bulk operations
    bulk_upload_enabled: bool = False
    bulk_download_enabled: bool = False
    require_preview: bool = True
    respect_local_only: bool = True
    max_concurrency: int = 4
    # Privacy
    scan_for_secrets: bool = True
    excluded_patterns: tuple[str, ...] = (
        "*.secret",
        "*-private.*",
        "credentials/**",
        "personal/**",
    )

    @property
    def effective_concurrency(self) -> int:
        return max(1, min(self.max_concurrency, MAX_BULK_CONCURRENCY))


@dataclass(frozen=True)
class SecurityConfig:
    """Limits and policy knobs for the security validation pipeline."""

    max_content_bytes: int = 1024 * 1024
    max_yaml_bytes: int = 64 * 1024
    max_expansion_ratio: float = 1000.0
    max_aliases: int = 100
    # Shell heuristic policy: a destructive command substitution outside a
    # fenced code block is rejected when this is on, flagged when off.
    reject_destructive_commands: bool = True
    flag_commands_in_code_blocks: bool = True


@dataclass(frozen=True)
class CollectionConfig:
    """Shared collection index cache settings."""

    index_url: str = (
        "https://raw.githubusercontent.com/DollhouseMCP/collection/main/"
        "public/collection-index.json"
    )
    ttl_seconds: float = 15 * 60
    timeout_seconds: float = 15.0
    cache_file: str | None = None


@dataclass(frozen=True)
class AuditConfig:
    """Settings for the JSONL audit logger."""

    file_path: str = "foliosync_audit.jsonl"
    enabled: bool = True


@dataclass(frozen=True)
class FolioConfig:
    """Aggregate of every subsystem configuration."""

    portfolio: PortfolioConfig = field(default_factory=PortfolioConfig)
    remote: RemoteConfig = field(default_factory=RemoteConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    security: SecurityConfig = field(default_factory=SecurityConfig)
    collection: CollectionConfig = field(default_factory=CollectionConfig)
    audit: AuditConfig = field(default_factory=AuditConfig)


# ---------------------------------------------------------------------------
# Runtime sync settings
# ---------------------------------------------------------------------------


class SettingsStore:
    """Holds the live ``SyncConfig``.

    Every gate (compare, upload, download, bulk) reads ``sync_enabled`` from
    here, so flipping the flag is visible to all of them at once.
    """

    def __init__(self, sync: SyncConfig | None = None) -> None:
        self._lock = Lock()
        self._sync = sync or SyncConfig()

    @property
    def sync(self) -> SyncConfig:
        with self._lock:
            return self._sync

    @property
    def sync_enabled(self) -> bool:
        return self.sync.enabled

    def update(self, **changes: object) -> SyncConfig:
        """Replace selected sync settings and return the new snapshot.

        Values are checked strictly against the ``SyncConfig`` field types, so
        ``"false"`` is refused for a flag instead of being stored as truthy text.
        """
        known = _sync_field_adapters()
        unknown = sorted(set(changes) - set(known))
        if unknown:
            raise ConfigurationError(
                f"Unknown sync setting(s): {', '.join(unknown)}",
                code=ErrorCode.INVALID_REQUEST,
            )
        checked: dict[str, object] = {}
        for name, value in changes.items():
            if name == "excluded_patterns" and isinstance(value, list):
                value = tuple(value)
            try:
                checked[name] = known[name].validate_python(value, strict=True)
            except ValidationError as exc:
                raise ConfigurationError(
                    f"Invalid value for sync setting {name}: {exc.errors()[0]['msg']}",
                    code=ErrorCode.INVALID_REQUEST,
                ) from exc
        with self._lock:
            self._sync = dataclasses.replace(self._sync, **checked)  # type: ignore[arg-type]
            snapshot = self._sync
        logger.info("sync settings updated: %s", ", ".join(sorted(changes)))
        return snapshot


@functools.cache
def _sync_field_adapters() -> dict[str, TypeAdapter]:
    hints = typing.get_type_hints(SyncConfig)
    return {f.name: TypeAdapter(hints[f.name]) for f in dataclasses.fields(SyncConfig)}
