"""TTL cache and keyword index over the shared collection index.

The cache is independent of the user's portfolio: the sync engine never
reads it.  Staleness only affects what ``search`` can find.
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from collections.abc import Callable
from collections.abc import Iterable
from pathlib import Path
from typing import Protocol

import httpx
from pydantic import ValidationError

from foliosync.config import CollectionConfig
from foliosync.errors import CollectionUnavailableError
from foliosync.errors import ErrorCode
from foliosync.models.collection import CachedIndexState
from foliosync.models.collection import CollectionCacheEntry
from foliosync.models.collection import CollectionIndex
from foliosync.observability import increment_counter

logger = logging.getLogger(__name__)

_TOKEN_RE = re.compile(r"[a-z0-9]+")


def tokenize(text: str) -> list[str]:
    return _TOKEN_RE.findall(text.casefold())


# ---------------------------------------------------------------------------
# Fetcher
# ---------------------------------------------------------------------------


class IndexFetcher(Protocol):
    async def fetch(self, previous: CachedIndexState | None) -> CachedIndexState: ...


class HttpCollectionIndexFetcher:
    """Conditional GET of the published ``collection-index.json``."""

    def __init__(
        self,
        config: CollectionConfig,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config
        self._clock = clock
        self._client = httpx.AsyncClient(
            headers={"Accept": "application/json", "User-Agent": "foliosync"},
            timeout=httpx.Timeout(config.timeout_seconds),
            transport=transport,
            follow_redirects=True,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def fetch(self, previous: CachedIndexState | None) -> CachedIndexState:
        headers: dict[str, str] = {}
        if previous is not None:
            if previous.etag:
                headers["If-None-Match"] = previous.etag
            if previous.last_modified:
                headers["If-Modified-Since"] = previous.last_modified
        try:
            response = await self._client.get(self.config.index_url, headers=headers)
        except httpx.TimeoutException as exc:
            raise CollectionUnavailableError(
                f"Collection index request timed out: {exc}", code=ErrorCode.TIMEOUT
            ) from exc
        except httpx.HTTPError as exc:
            raise CollectionUnavailableError(f"Collection index request failed: {exc}") from exc

        if response.status_code == 304 and previous is not None:
            logger.debug("collection index not modified; refreshing timestamp")
            return previous.model_copy(update={"fetched_at": self._clock()})
        if response.status_code != 200:
            raise CollectionUnavailableError(
                f"Collection index returned HTTP {response.status_code}",
                code=ErrorCode.SERVER_ERROR if response.status_code >= 500 else ErrorCode.INVALID_RESPONSE,
            )
        try:
            document = CollectionIndex.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            raise CollectionUnavailableError(
                f"Collection index has an unexpected structure: {exc}",
                code=ErrorCode.INVALID_RESPONSE,
            ) from exc
        return CachedIndexState(
            fetched_at=self._clock(),
            etag=response.headers.get("etag"),
            last_modified=response.headers.get("last-modified"),
            document=document,
        )


# ---------------------------------------------------------------------------
# Cache
# ---------------------------------------------------------------------------


class CollectionIndexCache:
    """Lazily refreshed, searchable view of the collection index.

    * fresh data (younger than ``ttl_seconds``) is served from memory
    * expired data triggers one refresh; concurrent callers share it
    * a failed refresh serves the previous data and counts
      ``collection.stale_served``
    * ``CollectionUnavailableError`` only when there is no data at all
    """

    def __init__(
        self,
        config: CollectionConfig | None = None,
        *,
        fetcher: IndexFetcher | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config or CollectionConfig()
        self._clock = clock
        self._fetcher = fetcher or HttpCollectionIndexFetcher(self.config, clock=clock)
        self._state: CachedIndexState | None = None
        self._entries: dict[str, CollectionCacheEntry] = {}
        self._tokens: dict[str, set[str]] = {}
        self._inflight: asyncio.Task[CachedIndexState] | None = None
        self._disk_checked = False

    @property
    def is_fresh(self) -> bool:
        if self._state is None:
            return False
        return self._clock() - self._state.fetched_at < self.config.ttl_seconds

    @property
    def fetched_at(self) -> float | None:
        return self._state.fetched_at if self._state is not None else None

    async def close(self) -> None:
        close = getattr(self._fetcher, "close", None)
        if close is not None:
            await close()

    # ------------------------------------------------------------------
    # Public lookups
    # ------------------------------------------------------------------

    async def index(self) -> CollectionIndex:
        await self._ensure_loaded()
        assert self._state is not None
        return self._state.document

    async def get(self, path: str) -> CollectionCacheEntry | None:
        await self._ensure_loaded()
        return self._entries.get(path.strip().lstrip("/"))

    async def search(
        self,
        query: str = "",
        *,
        element_type: str | None = None,
        tags: Iterable[str] | None = None,
        limit: int | None = None,
    ) -> list[CollectionCacheEntry]:
        """Entries whose text contains every query token (prefix match).

        Results are ordered by name hits first, then path.
        """
        await self._ensure_loaded()
        wanted_tags = {t.casefold() for t in tags or ()}
        terms = tokenize(query)

        if terms:
            candidates: set[str] | None = None
            for term in terms:
                hits = self._paths_for_prefix(term)
                candidates = hits if candidates is None else candidates & hits
            paths = candidates or set()
        else:
            paths = set(self._entries)

        results = []
        for path in paths:
            entry = self._entries[path]
            if element_type and entry.type.casefold() != element_type.casefold():
                continue
            if wanted_tags and not wanted_tags <= {t.casefold() for t in entry.tags}:
                continue
            results.append(entry)

        def rank(entry: CollectionCacheEntry) -> tuple[int, str]:
            name_tokens = tokenize(entry.name)
            name_hits = sum(1 for term in terms if any(tok.startswith(term) for tok in name_tokens))
            return (-name_hits, entry.path)

        results.sort(key=rank)
        return results[:limit] if limit else results

    async def refresh(self) -> CollectionIndex:
        """Force a refresh now; falls back to stale data on failure."""
        await self._load_disk_cache()
        return await self._refresh_or_stale()

    async def clear(self) -> None:
        self._state = None
        self._entries = {}
        self._tokens = {}
        if self.config.cache_file:
            path = Path(self.config.cache_file).expanduser()
            await asyncio.to_thread(path.unlink, missing_ok=True)

    # ------------------------------------------------------------------
    # Refresh machinery
    # ------------------------------------------------------------------

    async def _ensure_loaded(self) -> None:
        await self._load_disk_cache()
        if self.is_fresh:
            return
        await self._refresh_or_stale()

    async def _refresh_or_stale(self) -> CollectionIndex:
        try:
            state = await self._shared_refresh()
        except CollectionUnavailableError as exc:
            if self._state is None:
                raise
            increment_counter("collection.stale_served")
            logger.warning(
                "collection index refresh failed (%s); serving data from %.0fs ago",
                exc.code.value,
                self._clock() - self._state.fetched_at,
            )
            return self._state.document
        return state.document

    async def _shared_refresh(self) -> CachedIndexState:
        if self._inflight is None or self._inflight.done():
            self._inflight = asyncio.create_task(self._fetch_and_store())
        # One caller being cancelled must not cancel the refresh for the others.
        return await asyncio.shield(self._inflight)

    async def _fetch_and_store(self) -> CachedIndexState:
        state = await self._fetcher.fetch(self._state)
        self._install(state)
        await self._save_disk_cache(state)
        logger.info(
            "collection index refreshed: %d entries (index version %s)",
            len(self._entries),
            state.document.version or "unknown",
        )
        return state

    def _install(self, state: CachedIndexState) -> None:
        if self._state is not None and state.document is self._state.document:
            self._state = state
            return
        entries: dict[str, CollectionCacheEntry] = {}
        tokens: dict[str, set[str]] = {}
        for type_name, items in state.document.index.items():
            for item in items:
                entry = self._entry_from(type_name, item, state.fetched_at)
                if entry is None:
                    continue
                entries[entry.path] = entry
                text = " ".join([entry.path, entry.type, entry.name, entry.description, entry.author or "", *entry.tags])
                for token in tokenize(text):
                    tokens.setdefault(token, set()).add(entry.path)
        self._state = state
        self._entries = entries
        self._tokens = tokens

    @staticmethod
    def _entry_from(type_name: str, item: dict, cached_at: float) -> CollectionCacheEntry | None:
        path = item.get("path")
        if not isinstance(path, str) or not path:
            logger.debug("skipping collection item without a path in %s", type_name)
            return None
        tags = item.get("tags") or []
        return CollectionCacheEntry(
            path=path.lstrip("/"),
            type=str(item.get("type") or type_name),
            name=str(item.get("name") or ""),
            description=str(item.get("description") or ""),
            author=item.get("author"),
            version=item.get("version"),
            tags=[str(t) for t in tags] if isinstance(tags, list) else [],
            sha=item.get("sha"),
            cached_at=cached_at,
        )

    def _paths_for_prefix(self, term: str) -> set[str]:
        paths: set[str] = set()
        for token, owners in self._tokens.items():
            if token.startswith(term):
                paths |= owners
        return paths

    # ------------------------------------------------------------------
    # Disk cache
    # ------------------------------------------------------------------

    async def _load_disk_cache(self) -> None:
        if self._disk_checked or not self.config.cache_file:
            return
        self._disk_checked = True
        path = Path(self.config.cache_file).expanduser()
        try:
            raw = await asyncio.to_thread(path.read_text, encoding="utf-8")
        except FileNotFoundError:
            return
        except OSError as exc:
            logger.warning("could not read collection cache %s: %s", path, exc)
            return
        try:
            state = CachedIndexState.model_validate_json(raw)
        except ValidationError:
            logger.warning("ignoring malformed collection cache file %s", path)
            return
        if self._state is None:
            self._install(state)
            logger.debug("loaded collection index from %s", path)

    async def _save_disk_cache(self, state: CachedIndexState) -> None:
        if not self.config.cache_file:
            return
        path = Path(self.config.cache_file).expanduser()

        def write() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(state.model_dump_json(), encoding="utf-8")

        try:
            await asyncio.to_thread(write)
        except OSError as exc:
            logger.warning("could not write collection cache %s: %s", path, exc)
