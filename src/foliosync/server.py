"""foliosync — FastMCP server exposing portfolio sync tools.

Tools delegate to ``SyncEngine``, ``PortfolioStore`` and
``CollectionIndexCache``.  Call ``configure(...)`` before using the server.
"""

from __future__ import annotations

import dataclasses
import logging
from time import perf_counter

import httpx
from fastmcp import FastMCP
from pydantic import ValidationError

from foliosync.audit import AuditLogger
from foliosync.collection import CollectionIndexCache
from foliosync.collection import HttpCollectionIndexFetcher
from foliosync.config import FolioConfig
from foliosync.config import SettingsStore
from foliosync.errors import CollectionUnavailableError
from foliosync.errors import ElementValidationError
from foliosync.errors import ErrorCode
from foliosync.errors import FolioError
from foliosync.errors import NotFoundError
from foliosync.errors import SecurityRejected
from foliosync.models.elements import Element
from foliosync.models.elements import ElementRef
from foliosync.models.schemas import SearchCollectionResult
from foliosync.models.schemas import SyncSettingsResult
from foliosync.models.schemas import ValidateElementResult
from foliosync.models.security import ValidationContext
from foliosync.models.sync import RemoteListing
from foliosync.models.sync import SyncFilter
from foliosync.models.sync import SyncReport
from foliosync.models.sync import SyncRequest
from foliosync.observability import record_latency
from foliosync.portfolio import parse_element
from foliosync.portfolio import PortfolioStore
from foliosync.portfolio import serialize_element
from foliosync.remote import RemotePortfolioClient
from foliosync.security import SecurityValidationPipeline
from foliosync.sync import SyncEngine
from foliosync.validation import normalize_version

logger = logging.getLogger(__name__)

mcp = FastMCP("foliosync")

# ---------------------------------------------------------------------------
# Runtime components (set via configure())
# ---------------------------------------------------------------------------

_settings: SettingsStore | None = None
_store: PortfolioStore | None = None
_client: RemotePortfolioClient | None = None
_engine: SyncEngine | None = None
_collection: CollectionIndexCache | None = None
_audit_logger: AuditLogger | None = None


async def configure(
    config: FolioConfig | None = None,
    *,
    token: str | None = None,
    remote_transport: httpx.AsyncBaseTransport | None = None,
    collection_transport: httpx.AsyncBaseTransport | None = None,
) -> None:
    """Build every component from *config*.

    Must be called before the MCP tools can function.  *token* is an
    already-valid credential for the remote backend; this server never
    performs login itself.
    """
    global _settings, _store, _client, _engine, _collection, _audit_logger
    await shutdown()

    cfg = config or FolioConfig()
    _audit_logger = AuditLogger(cfg.audit)
    pipeline = SecurityValidationPipeline(cfg.security, audit_logger=_audit_logger)
    _settings = SettingsStore(cfg.sync)
    _store = PortfolioStore(cfg.portfolio, pipeline=pipeline, audit_logger=_audit_logger)
    _store.ensure_layout()
    _store.reload()
    _client = RemotePortfolioClient(cfg.remote, token=token, transport=remote_transport)
    _engine = SyncEngine(
        store=_store,
        client=_client,
        pipeline=pipeline,
        settings=_settings,
        remote_config=cfg.remote,
        audit_logger=_audit_logger,
    )
    _collection = CollectionIndexCache(
        cfg.collection,
        fetcher=HttpCollectionIndexFetcher(cfg.collection, transport=collection_transport),
    )
    logger.info("foliosync configured with portfolio root %s", _store.root)


async def shutdown() -> None:
    """Close network clients and release server resources."""
    global _settings, _store, _client, _engine, _collection, _audit_logger
    if _client is not None:
        await _client.close()
    if _collection is not None:
        await _collection.close()
    _settings = None
    _store = None
    _client = None
    _engine = None
    _collection = None
    _audit_logger = None


def _get_engine() -> SyncEngine:
    """Return the sync engine or raise."""
    if _engine is None:
        raise RuntimeError("foliosync not configured. Call configure() first.")
    return _engine


def _validation_message(exc: ValidationError) -> str:
    err = exc.errors()[0] if exc.errors() else {}
    loc = ".".join(str(part) for part in err.get("loc", ()))
    msg = str(err.get("msg", "Invalid input"))
    return f"{loc}: {msg}" if loc else msg


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------


@mcp.tool
async def sync_portfolio(
    operation: str,
    element_ref: str | None = None,
    element_type: str | None = None,
    query: str | None = None,
    force: bool = False,
    confirm: bool = False,
    dry_run: bool = False,
    mode: str = "backup",
) -> SyncReport:
    """Synchronize portfolio elements with the remote repository.

    Args:
        operation: One of: download, upload, compare, bulk_download, bulk_upload.
        element_ref: 'type/slug-or-name' for single-element operations.
        element_type: Restrict bulk operations to one element type.
        query: Restrict bulk operations to slugs/names containing this text.
        force: Skip the confirmation step (single-element operations only).
        confirm: Confirm a mutating operation or execute a previewed bulk plan.
        dry_run: Report what would happen without writing anything.
        mode: Bulk download mode: additive, backup or mirror.
    """
    start = perf_counter()
    ok = False
    try:
        engine = _get_engine()
        try:
            request = SyncRequest.model_validate(
                {
                    "operation": operation,
                    "element_ref": element_ref,
                    "filter": (
                        {"element_type": element_type, "query": query}
                        if element_type or query
                        else None
                    ),
                    "force": force,
                    "confirm": confirm,
                    "dry_run": dry_run,
                    "mode": mode,
                }
            )
        except ValidationError as exc:
            return SyncReport(
                operation=operation,
                status="error",
                error_code=ErrorCode.INVALID_REQUEST.value,
                message=_validation_message(exc),
                dry_run=dry_run,
            )

        report = await engine.execute(request)
        ok = report.status == "ok"
        return report
    finally:
        record_latency(
            operation="mcp.sync_portfolio",
            duration_ms=(perf_counter() - start) * 1000,
            ok=ok,
        )


@mcp.tool
async def validate_element(element_ref: str, text: str | None = None) -> ValidateElementResult:
    """Validate a local element, or a draft element file, without syncing it.

    Args:
        element_ref: 'type/slug-or-name' of the element.
        text: Optional full element file (front matter + body) to check
              instead of the stored copy.
    """
    start = perf_counter()
    ok = False
    try:
        engine = _get_engine()
        store = engine.store
        try:
            ref = ElementRef.parse(element_ref)
        except ValueError as exc:
            return ValidateElementResult(
                status="error",
                error_code=ErrorCode.INVALID_TYPE.value,
                message=str(exc),
                element_ref=element_ref,
            )

        ctx = ValidationContext(operation="validate_element", element_ref=str(ref))
        try:
            if text is None:
                store.reload(ref.type)
                element: Element = store.get(ref.type, ref.slug)
                text = serialize_element(element)
                report = engine.pipeline.validate(text, ctx)
            else:
                report = engine.pipeline.validate(text, ctx)
                element = parse_element(report.normalized_text, element_type=ref.type, slug=ref.slug)
        except SecurityRejected as exc:
            return ValidateElementResult(
                error_code=exc.code.value,
                message=exc.message,
                element_ref=str(ref),
                findings=exc.findings,
            )
        except (NotFoundError, ElementValidationError) as exc:
            return ValidateElementResult(
                status="error",
                error_code=exc.code.value,
                message=exc.message,
                element_ref=str(ref),
            )

        result = store.validator.validate(element)
        first = result.first_error
        suggested = normalize_version(element.version)
        ok = True
        return ValidateElementResult(
            error_code=str(getattr(first.code, "value", first.code)) if first is not None else None,
            message="valid" if result.valid else result.summary(),
            element_ref=str(element.ref),
            valid=result.valid,
            activatable=store.validator.is_activatable(element),
            errors=result.errors,
            warnings=result.warnings,
            findings=report.findings,
            suggested_version=suggested if suggested != element.version else None,
        )
    finally:
        record_latency(
            operation="mcp.validate_element",
            duration_ms=(perf_counter() - start) * 1000,
            ok=ok,
        )


@mcp.tool
async def list_remote(element_type: str | None = None, query: str | None = None) -> RemoteListing:
    """List element files in the remote portfolio repository.

    Args:
        element_type: Only this element type (e.g. persona).
        query: Only slugs containing this text.
    """
    start = perf_counter()
    ok = False
    try:
        engine = _get_engine()
        try:
            flt = SyncFilter.model_validate({"element_type": element_type, "query": query})
        except ValidationError as exc:
            return RemoteListing(
                status="error",
                error_code=ErrorCode.INVALID_REQUEST.value,
                message=_validation_message(exc),
            )
        listing = await engine.list_remote(flt)
        ok = listing.status == "ok"
        return listing
    finally:
        record_latency(
            operation="mcp.list_remote",
            duration_ms=(perf_counter() - start) * 1000,
            ok=ok,
        )


@mcp.tool
async def search_collection(
    query: str = "",
    element_type: str | None = None,
    tags: list[str] | None = None,
    limit: int = 20,
) -> SearchCollectionResult:
    """Search the shared community collection index.

    Args:
        query: Keywords matched against name, description, tags and path.
        element_type: Only entries of this type.
        tags: Only entries carrying all of these tags.
        limit: Max entries returned.
    """
    start = perf_counter()
    ok = False
    try:
        if _collection is None:
            raise RuntimeError("foliosync not configured. Call configure() first.")
        if limit < 1:
            return SearchCollectionResult(
                status="error",
                error_code=ErrorCode.INVALID_REQUEST.value,
                message="limit must be at least 1",
                query=query,
            )
        try:
            matches = await _collection.search(query, element_type=element_type, tags=tags)
        except CollectionUnavailableError as exc:
            return SearchCollectionResult(
                status="error",
                error_code=exc.code.value,
                message=exc.message,
                query=query,
            )
        ok = True
        return SearchCollectionResult(
            query=query,
            total=len(matches),
            stale=not _collection.is_fresh,
            entries=matches[:limit],
        )
    finally:
        record_latency(
            operation="mcp.search_collection",
            duration_ms=(perf_counter() - start) * 1000,
            ok=ok,
        )


@mcp.tool
async def update_sync_settings(changes: dict) -> SyncSettingsResult:
    """Change sync settings (e.g. {"enabled": true}).

    Args:
        changes: Mapping of setting name to new value.
    """
    start = perf_counter()
    ok = False
    try:
        if _settings is None:
            raise RuntimeError("foliosync not configured. Call configure() first.")
        try:
            snapshot = _settings.update(**changes)
        except FolioError as exc:
            return SyncSettingsResult(
                status="error",
                error_code=ErrorCode.INVALID_REQUEST.value,
                message=exc.message,
                settings=dataclasses.asdict(_settings.sync),
            )
        ok = True
        return SyncSettingsResult(
            message=f"updated: {', '.join(sorted(changes)) or 'nothing'}",
            settings=dataclasses.asdict(snapshot),
        )
    finally:
        record_latency(
            operation="mcp.update_sync_settings",
            duration_ms=(perf_counter() - start) * 1000,
            ok=ok,
        )
