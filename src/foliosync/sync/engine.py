"""Sync engine: list-remote, download, upload, compare and bulk variants.

Every element goes through the same per-element state machine
(pending -> validating -> rejected | in_flight -> succeeded | failed) and
ends as exactly one immutable ``SyncRecord``.  Bulk calls re-resolve their
targets from disk at invocation time and always return one record per
target, whatever happened to the others.
"""

from __future__ import annotations

import asyncio
import fnmatch
import logging
from collections.abc import Awaitable
from collections.abc import Callable
from dataclasses import dataclass
from time import perf_counter

from foliosync.audit import AuditEvent
from foliosync.audit import AuditEventType
from foliosync.audit import AuditLogger
from foliosync.config import RemoteConfig
from foliosync.config import SettingsStore
from foliosync.config import SyncConfig
from foliosync.errors import ConfigurationError
from foliosync.errors import ElementValidationError
from foliosync.errors import ErrorCode
from foliosync.errors import FolioError
from foliosync.errors import NotFoundError
from foliosync.errors import RemoteError
from foliosync.errors import RemoteNotFound
from foliosync.errors import SecurityRejected
from foliosync.models.elements import Element
from foliosync.models.elements import ElementRef
from foliosync.models.elements import ElementType
from foliosync.models.elements import slugify
from foliosync.models.remote import RepoRef
from foliosync.models.remote import RepoSpec
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
from foliosync.observability import record_latency
from foliosync.portfolio.frontmatter import content_hash
from foliosync.portfolio.frontmatter import git_blob_sha
from foliosync.portfolio.frontmatter import parse_element
from foliosync.portfolio.frontmatter import serialize_element
from foliosync.portfolio.store import LoadFailure
from foliosync.portfolio.store import PortfolioStore
from foliosync.remote.client import RemotePortfolioClient
from foliosync.security.content import find_secrets
from foliosync.security.pipeline import SecurityValidationPipeline
from foliosync.sync.comparer import local_blob_sha
from foliosync.sync.comparer import PlanItem
from foliosync.sync.comparer import plan_download
from foliosync.sync.comparer import PlannedAction
from foliosync.sync.diff import unified_diff
from foliosync.validation import normalize_element
from foliosync.validation import SLUG_RE

logger = logging.getLogger(__name__)

_UNKNOWN = object()


# ---------------------------------------------------------------------------
# Per-element state tracking
# ---------------------------------------------------------------------------


class _Tracker:
    """Walks one element through its states and seals the final record."""

    def __init__(self, ref: ElementRef | str, operation: SyncOperation, *, dry_run: bool = False) -> None:
        self.ref = str(ref)
        self.operation = operation
        self.dry_run = dry_run
        self.state = SyncState.pending

    def advance(self, state: SyncState) -> None:
        logger.debug("%s %s: %s -> %s", self.operation.value, self.ref, self.state.value, state.value)
        self.state = state

    def succeed(
        self,
        *,
        remote_url: str | None = None,
        detail: str | None = None,
        comparison: Comparison | None = None,
    ) -> SyncRecord:
        self.advance(SyncState.succeeded)
        return self._seal(SyncOutcome.success, None, detail, remote_url=remote_url, comparison=comparison)

    def fail(self, code: ErrorCode | str, detail: str, *, retryable: bool = False) -> SyncRecord:
        # Failures before anything left the machine are rejections.
        terminal = SyncState.failed if self.state is SyncState.in_flight else SyncState.rejected
        self.advance(terminal)
        return self._seal(SyncOutcome.failure, code, detail, retryable=retryable)

    def skip(
        self,
        code: ErrorCode | str,
        detail: str,
        *,
        comparison: Comparison | None = None,
        remote_url: str | None = None,
    ) -> SyncRecord:
        self.advance(SyncState.skipped)
        return self._seal(SyncOutcome.skipped, code, detail, comparison=comparison, remote_url=remote_url)

    def from_error(self, exc: FolioError) -> SyncRecord:
        retryable = exc.retryable if isinstance(exc, RemoteError) else False
        return self.fail(exc.code, exc.message, retryable=retryable)

    def _seal(
        self,
        outcome: SyncOutcome,
        code: ErrorCode | str | None,
        detail: str | None,
        *,
        remote_url: str | None = None,
        comparison: Comparison | None = None,
        retryable: bool = False,
    ) -> SyncRecord:
        return SyncRecord(
            element_ref=self.ref,
            operation=self.operation,
            outcome=outcome,
            state=self.state,
            error_code=code.value if isinstance(code, ErrorCode) else code,
            error_detail=detail,
            remote_url=remote_url,
            retryable=retryable,
            dry_run=self.dry_run,
            comparison=comparison,
        )


@dataclass(frozen=True)
class _Job:
    ref: ElementRef | str
    operation: SyncOperation
    run: Callable[[], Awaitable[SyncRecord]]


def _as_ref(value: ElementRef | str) -> ElementRef:
    return value if isinstance(value, ElementRef) else ElementRef.parse(value)


def _matches(ref: ElementRef, name: str, flt: SyncFilter | None) -> bool:
    if flt is None:
        return True
    if flt.element_type is not None and ref.type is not flt.element_type:
        return False
    if flt.query:
        needle = flt.query.casefold()
        return needle in ref.slug.casefold() or needle in name.casefold()
    return True


def _error_report(operation: str, exc: FolioError, *, dry_run: bool = False) -> SyncReport:
    return SyncReport(
        operation=operation,
        status="error",
        error_code=exc.code.value,
        message=exc.message,
        dry_run=dry_run,
    )


class SyncEngine:
    """Orchestrates portfolio sync between ``PortfolioStore`` and the remote."""

    def __init__(
        self,
        *,
        store: PortfolioStore,
        client: RemotePortfolioClient,
        pipeline: SecurityValidationPipeline,
        settings: SettingsStore,
        remote_config: RemoteConfig,
        audit_logger: AuditLogger | None = None,
    ) -> None:
        self.store = store
        self.client = client
        self.pipeline = pipeline
        self.settings = settings
        self.remote_config = remote_config
        self._audit = audit_logger
        self._repo_ref: RepoRef | None = None

    # ------------------------------------------------------------------
    # Gates
    # ------------------------------------------------------------------

    def _require_enabled(self) -> SyncConfig:
        if not self.settings.sync_enabled:
            raise ConfigurationError(
                "Sync is disabled; set sync.enabled to true to allow it",
                code=ErrorCode.SYNC_DISABLED,
            )
        return self.settings.sync

    async def _repo(self) -> RepoRef:
        if not self.remote_config.is_configured:
            raise ConfigurationError(
                "No remote repository configured for this portfolio",
                code=ErrorCode.REMOTE_NOT_CONFIGURED,
            )
        if self._repo_ref is None:
            self._repo_ref = await self.client.get_repository(self.remote_config.repository)
        return self._repo_ref

    async def ensure_repository(self, *, consent: bool = False) -> RepoRef:
        """Find or (with consent) create the portfolio repository."""
        if not self.remote_config.is_configured:
            raise ConfigurationError("No remote repository configured for this portfolio")
        spec = RepoSpec(name=self.remote_config.repository or "", private=self.remote_config.private)
        repo = await self.client.ensure_repository(spec, consent=consent)
        if repo.created and self._audit is not None:
            self._audit.try_write(
                AuditEvent(
                    event_type=AuditEventType.REPOSITORY_CREATED,
                    operation="ensure_repository",
                    payload={"repository": repo.full_name},
                )
            )
        self._repo_ref = repo
        return repo

    # ------------------------------------------------------------------
    # List remote
    # ------------------------------------------------------------------

    async def list_remote(self, flt: SyncFilter | None = None) -> RemoteListing:
        """Element files in the remote repository, filtered client-side."""
        start = perf_counter()
        ok = False
        try:
            repo = await self._repo()
            entries = await self._remote_entries(repo, flt)
            ok = True
            return RemoteListing(entries=entries)
        except FolioError as exc:
            return RemoteListing(status="error", error_code=exc.code.value, message=exc.message)
        finally:
            record_latency(
                operation="sync.list_remote",
                duration_ms=(perf_counter() - start) * 1000,
                ok=ok,
            )

    async def _remote_entries(self, repo: RepoRef, flt: SyncFilter | None) -> list[RemoteListingEntry]:
        entries: list[RemoteListingEntry] = []
        for item in await self.client.list_tree(repo):
            if item.kind != "blob" or not item.path.endswith(".md"):
                continue
            directory, sep, filename = item.path.partition("/")
            if not sep or "/" in filename:
                continue
            element_type = ElementType.from_directory(directory)
            if element_type is None:
                continue
            slug = filename[:-3]
            if not _matches(ElementRef(type=element_type, slug=slug), slug, flt):
                continue
            entries.append(
                RemoteListingEntry(
                    element_type=element_type,
                    slug=slug,
                    path=item.path,
                    sha=item.sha,
                    size=item.size,
                )
            )
        order = {t: i for i, t in enumerate(ElementType)}
        return sorted(entries, key=lambda e: (order[e.element_type], e.slug))

    # ------------------------------------------------------------------
    # Single-element operations
    # ------------------------------------------------------------------

    async def download(
        self,
        ref: ElementRef | str,
        *,
        force: bool = False,
        confirm: bool = False,
        dry_run: bool = False,
    ) -> SyncRecord:
        async def run(repo: RepoRef, target: ElementRef) -> SyncRecord:
            self.store.reload(target.type)
            return await self._download_one(repo, target, force=force, confirm=confirm, dry_run=dry_run)

        return await self._single("download", SyncOperation.download, ref, dry_run, run)

    async def upload(
        self,
        ref: ElementRef | str,
        *,
        force: bool = False,
        confirm: bool = False,
        dry_run: bool = False,
    ) -> SyncRecord:
        async def run(repo: RepoRef, target: ElementRef) -> SyncRecord:
            self.store.reload(target.type)
            element = self.store.get(target.type, target.slug)
            return await self._upload_one(
                repo, element, force=force, confirm=confirm, dry_run=dry_run, bulk=False
            )

        return await self._single("upload", SyncOperation.upload, ref, dry_run, run)

    async def compare(self, ref: ElementRef | str, *, show_diff: bool | None = None) -> SyncRecord:
        """Report whether the local and remote copies of one element differ."""

        async def run(repo: RepoRef, target: ElementRef) -> SyncRecord:
            return await self._compare_one(repo, target, show_diff)

        return await self._single("compare", SyncOperation.compare, ref, False, run)

    async def _single(
        self,
        name: str,
        operation: SyncOperation,
        ref: ElementRef | str,
        dry_run: bool,
        run: Callable[[RepoRef, ElementRef], Awaitable[SyncRecord]],
    ) -> SyncRecord:
        start = perf_counter()
        ok = False
        tracker = _Tracker(ref, operation, dry_run=dry_run)
        try:
            try:
                target = _as_ref(ref)
            except ValueError as exc:
                return tracker.fail(ErrorCode.INVALID_TYPE, str(exc))
            tracker = _Tracker(target, operation, dry_run=dry_run)
            self._require_enabled()
            repo = await self._repo()
            record = await run(repo, target)
            ok = record.outcome is not SyncOutcome.failure
            return record
        except FolioError as exc:
            return tracker.from_error(exc)
        finally:
            record_latency(
                operation=f"sync.{name}",
                duration_ms=(perf_counter() - start) * 1000,
                ok=ok,
            )

    # ------------------------------------------------------------------
    # Element workers
    # ------------------------------------------------------------------

    async def _download_one(
        self,
        repo: RepoRef,
        ref: ElementRef,
        *,
        force: bool,
        confirm: bool,
        dry_run: bool,
        remote_sha: str | None = None,
    ) -> SyncRecord:
        cfg = self.settings.sync
        if not SLUG_RE.match(ref.slug):
            ref = ElementRef(type=ref.type, slug=slugify(ref.slug))
        tracker = _Tracker(ref, SyncOperation.download, dry_run=dry_run)
        existing = self._local(ref)

        if existing is not None and remote_sha is not None and local_blob_sha(existing) == remote_sha:
            return tracker.skip(ErrorCode.UP_TO_DATE, "local copy already matches remote")

        tracker.advance(SyncState.validating)
        try:
            blob = await self.client.get_blob(repo, ref.remote_path)
            report = self.pipeline.validate(
                blob.text,
                ValidationContext(operation="download", element_ref=str(ref)),
            )
            element = parse_element(report.normalized_text, element_type=ref.type, slug=ref.slug)
        except FolioError as exc:
            return tracker.from_error(exc)

        if self.store.config.normalize_versions:
            element = normalize_element(element)
        result = self.store.validator.validate(element)
        if not result.valid:
            first = result.errors[0]
            return tracker.fail(first.code, result.summary())

        canonical = serialize_element(element)
        if existing is not None and existing.local_revision == content_hash(canonical):
            self.store.record_remote_ref(ref, blob.sha)
            return tracker.skip(ErrorCode.UP_TO_DATE, "local copy already matches remote", remote_url=blob.html_url)

        # Dry runs report the outcome without the confirmation gate.
        if dry_run:
            return tracker.succeed(
                remote_url=blob.html_url,
                detail="dry run: local file not written",
                comparison=self._comparison(existing, canonical, blob.sha, cfg.show_diff, ref),
            )

        if cfg.require_confirmation and not (force or confirm):
            comparison = self._comparison(existing, canonical, blob.sha, cfg.show_diff, ref)
            return tracker.skip(
                ErrorCode.CONFIRMATION_REQUIRED,
                "download would overwrite the local copy; pass confirm or force"
                if existing is not None
                else "download would add a new local element; pass confirm or force",
                comparison=comparison,
            )

        tracker.advance(SyncState.in_flight)
        try:
            self.store.put(element)
            self.store.record_remote_ref(ref, blob.sha)
        except (SecurityRejected, ElementValidationError) as exc:
            return tracker.from_error(exc)
        except OSError as exc:
            return tracker.fail(ErrorCode.INTERNAL_ERROR, f"could not write local file: {exc}")
        return tracker.succeed(remote_url=blob.html_url)

    async def _upload_one(
        self,
        repo: RepoRef,
        element: Element,
        *,
        force: bool,
        confirm: bool,
        dry_run: bool,
        bulk: bool,
        remote_sha: object = _UNKNOWN,
    ) -> SyncRecord:
        cfg = self.settings.sync
        ref = element.ref
        tracker = _Tracker(ref, SyncOperation.upload, dry_run=dry_run)
        tracker.advance(SyncState.validating)

        if self._excluded(ref, cfg):
            return tracker.skip(ErrorCode.EXCLUDED, "matches a privacy exclusion pattern")
        if element.local_only and cfg.respect_local_only and (bulk or not force):
            return tracker.skip(ErrorCode.LOCAL_ONLY, "element is marked privacy.local_only")

        result = self.store.validator.validate(element)
        if not result.valid:
            return tracker.fail(result.errors[0].code, result.summary())

        try:
            report = self.pipeline.validate(
                serialize_element(element),
                ValidationContext(operation="upload", element_ref=str(ref)),
            )
        except SecurityRejected as exc:
            return tracker.from_error(exc)
        text = report.normalized_text

        if cfg.scan_for_secrets:
            secrets = find_secrets(text)
            if secrets:
                return tracker.fail(
                    ErrorCode.SECRET_DETECTED,
                    "refusing to upload content that looks like a credential: " + ", ".join(secrets),
                )

        try:
            if remote_sha is _UNKNOWN:
                remote_sha = await self._remote_sha(repo, ref)
            local_sha = git_blob_sha(text)
            if remote_sha == local_sha:
                self.store.record_remote_ref(ref, local_sha)
                return tracker.skip(ErrorCode.UP_TO_DATE, "remote already has this exact content")

            if dry_run:
                return tracker.succeed(
                    detail="dry run: would add the remote file"
                    if remote_sha is None
                    else "dry run: would update the remote file"
                )
            if cfg.require_confirmation and not (force or confirm):
                return tracker.skip(
                    ErrorCode.CONFIRMATION_REQUIRED,
                    "upload would change the remote repository; pass confirm or force",
                )

            tracker.advance(SyncState.in_flight)
            label = element.name or element.slug
            message = (
                f"Add {label} to portfolio" if remote_sha is None else f"Update {label} in portfolio"
            )
            commit = await self.client.put_file(
                repo,
                ref.remote_path,
                text,
                message,
                sha=remote_sha if isinstance(remote_sha, str) else None,
            )
        except FolioError as exc:
            return tracker.from_error(exc)

        self.store.record_remote_ref(ref, commit.blob_sha or local_sha)
        return tracker.succeed(remote_url=commit.html_url)

    async def _compare_one(self, repo: RepoRef, ref: ElementRef, show_diff: bool | None) -> SyncRecord:
        cfg = self.settings.sync
        tracker = _Tracker(ref, SyncOperation.compare)
        tracker.advance(SyncState.validating)
        self.store.reload(ref.type)
        try:
            local = self.store.get(ref.type, ref.slug)
        except NotFoundError as exc:
            if exc.code is ErrorCode.AMBIGUOUS_MATCH:
                return tracker.from_error(exc)
            local = None
        if local is not None:
            ref = local.ref
            tracker = _Tracker(ref, SyncOperation.compare)

        try:
            blob = await self.client.get_blob(repo, ref.remote_path)
        except RemoteNotFound:
            blob = None
        except RemoteError as exc:
            return tracker.from_error(exc)

        if local is None and blob is None:
            status = ComparisonStatus.not_found
        elif blob is None:
            status = ComparisonStatus.local_only
        elif local is None:
            status = ComparisonStatus.remote_only
        else:
            status = ComparisonStatus.different

        local_text = serialize_element(local) if local is not None else None
        comparison = Comparison(
            status=status,
            local_sha=git_blob_sha(local_text) if local_text is not None else None,
            remote_sha=blob.sha if blob is not None else None,
        )
        if local_text is not None and blob is not None:
            remote_text = self.pipeline.normalize(blob.text)
            if remote_text == local_text:
                comparison = comparison.model_copy(update={"status": ComparisonStatus.identical})
            elif show_diff if show_diff is not None else cfg.show_diff:
                comparison = comparison.model_copy(
                    update={"diff": unified_diff(remote_text, local_text, ref.remote_path)}
                )
        return tracker.succeed(
            remote_url=blob.html_url if blob is not None else None,
            comparison=comparison,
        )

    async def _delete_local(self, ref: ElementRef, *, dry_run: bool) -> SyncRecord:
        tracker = _Tracker(ref, SyncOperation.delete, dry_run=dry_run)
        tracker.advance(SyncState.validating)
        if dry_run:
            return tracker.succeed(detail="dry run: local element kept")
        tracker.advance(SyncState.in_flight)
        try:
            self.store.delete(ref.type, ref.slug)
        except FolioError as exc:
            return tracker.from_error(exc)
        return tracker.succeed(detail="removed locally; absent from remote (mirror mode)")

    # ------------------------------------------------------------------
    # Bulk operations
    # ------------------------------------------------------------------

    async def bulk_upload(
        self,
        flt: SyncFilter | None = None,
        *,
        confirm: bool = False,
        dry_run: bool = False,
        cancel_event: asyncio.Event | None = None,
    ) -> SyncReport:
        """Upload every matching local element; one record per element file."""
        start = perf_counter()
        ok = False
        try:
            try:
                cfg = self._require_enabled()
                if not cfg.bulk_upload_enabled:
                    raise ConfigurationError(
                        "Bulk upload is disabled; set bulk_upload_enabled to allow it",
                        code=ErrorCode.BULK_DISABLED,
                    )
                repo = await self._repo()
            except FolioError as exc:
                return _error_report("bulk_upload", exc, dry_run=dry_run)

            # Targets come from disk as it is now, not from an earlier listing.
            self.store.reload()
            elements = [e for e in self.store.all() if _matches(e.ref, e.name, flt)]
            broken = [f for f in self.store.load_failures() if _matches(f.ref, f.ref.slug, flt)]
            remote_shas = await self._remote_sha_map(repo)

            preview = cfg.require_preview and not confirm and not dry_run
            jobs = [self._failure_job(f, SyncOperation.upload, dry_run) for f in broken]
            for element in elements:
                if preview:
                    jobs.append(self._preview_job(element.ref, SyncOperation.upload))
                    continue
                sha: object = _UNKNOWN if remote_shas is None else remote_shas.get(element.ref.remote_path)
                jobs.append(
                    _Job(
                        element.ref,
                        SyncOperation.upload,
                        self._bind_upload(repo, element, dry_run, sha),
                    )
                )
            report = await self._run_jobs("bulk_upload", jobs, cfg, cancel_event, dry_run=dry_run, preview=preview)
            ok = True
            return report
        finally:
            record_latency(
                operation="sync.bulk_upload",
                duration_ms=(perf_counter() - start) * 1000,
                ok=ok,
            )

    async def bulk_download(
        self,
        flt: SyncFilter | None = None,
        *,
        mode: SyncMode = SyncMode.backup,
        confirm: bool = False,
        dry_run: bool = False,
        cancel_event: asyncio.Event | None = None,
    ) -> SyncReport:
        """Download matching remote elements according to *mode*."""
        start = perf_counter()
        ok = False
        try:
            try:
                cfg = self._require_enabled()
                if not cfg.bulk_download_enabled:
                    raise ConfigurationError(
                        "Bulk download is disabled; set bulk_download_enabled to allow it",
                        code=ErrorCode.BULK_DISABLED,
                    )
                repo = await self._repo()
                remote = await self._remote_entries(repo, flt)
            except FolioError as exc:
                return _error_report("bulk_download", exc, dry_run=dry_run)

            self.store.reload()
            local = [e for e in self.store.all() if _matches(e.ref, e.name, flt)]
            plan = plan_download(remote, local, mode)

            preview = cfg.require_preview and not confirm and not dry_run
            jobs = [self._plan_job(repo, item, dry_run, preview) for item in plan]
            report = await self._run_jobs(
                "bulk_download", jobs, cfg, cancel_event, dry_run=dry_run, preview=preview
            )
            ok = True
            return report
        finally:
            record_latency(
                operation="sync.bulk_download",
                duration_ms=(perf_counter() - start) * 1000,
                ok=ok,
            )

    def _bind_upload(
        self,
        repo: RepoRef,
        element: Element,
        dry_run: bool,
        remote_sha: object,
    ) -> Callable[[], Awaitable[SyncRecord]]:
        async def run() -> SyncRecord:
            return await self._upload_one(
                repo,
                element,
                force=False,
                confirm=True,
                dry_run=dry_run,
                bulk=True,
                remote_sha=remote_sha,
            )

        return run

    def _plan_job(self, repo: RepoRef, item: PlanItem, dry_run: bool, preview: bool) -> _Job:
        ref = item.ref
        if item.action is PlannedAction.skip_identical:
            return self._static_job(
                ref,
                SyncOperation.download,
                SyncOutcome.skipped,
                ErrorCode.UP_TO_DATE,
                "local copy already matches remote",
                dry_run,
            )
        if item.action is PlannedAction.keep_local:
            return self._static_job(
                ref,
                SyncOperation.download,
                SyncOutcome.skipped,
                ErrorCode.LOCAL_EXISTS,
                "additive mode keeps the existing local copy",
                dry_run,
            )
        if item.action is PlannedAction.delete_local:
            if preview:
                return self._preview_job(ref, SyncOperation.delete)

            async def delete() -> SyncRecord:
                return await self._delete_local(ref, dry_run=dry_run)

            return _Job(ref, SyncOperation.delete, delete)

        if preview:
            return self._preview_job(ref, SyncOperation.download)
        remote_sha = item.remote.sha if item.remote is not None else None

        async def download() -> SyncRecord:
            return await self._download_one(
                repo, ref, force=False, confirm=True, dry_run=dry_run, remote_sha=remote_sha
            )

        return _Job(ref, SyncOperation.download, download)

    def _static_job(
        self,
        ref: ElementRef | str,
        operation: SyncOperation,
        outcome: SyncOutcome,
        code: ErrorCode,
        detail: str,
        dry_run: bool,
    ) -> _Job:
        async def run() -> SyncRecord:
            tracker = _Tracker(ref, operation, dry_run=dry_run)
            if outcome is SyncOutcome.failure:
                return tracker.fail(code, detail)
            return tracker.skip(code, detail)

        return _Job(ref, operation, run)

    def _preview_job(self, ref: ElementRef, operation: SyncOperation) -> _Job:
        return self._static_job(
            ref,
            operation,
            SyncOutcome.skipped,
            ErrorCode.CONFIRMATION_REQUIRED,
            f"{operation.value} planned; rerun with confirm to execute",
            False,
        )

    def _failure_job(self, failure: LoadFailure, operation: SyncOperation, dry_run: bool) -> _Job:
        return self._static_job(failure.ref, operation, SyncOutcome.failure, failure.code, failure.detail, dry_run)

    async def _run_jobs(
        self,
        name: str,
        jobs: list[_Job],
        cfg: SyncConfig,
        cancel_event: asyncio.Event | None,
        *,
        dry_run: bool,
        preview: bool,
    ) -> SyncReport:
        semaphore = asyncio.Semaphore(cfg.effective_concurrency)

        async def run(job: _Job) -> SyncRecord:
            async with semaphore:
                if cancel_event is not None and cancel_event.is_set():
                    return _Tracker(job.ref, job.operation, dry_run=dry_run).skip(
                        ErrorCode.CANCELLED, "bulk operation cancelled before this element started"
                    )
                try:
                    return await job.run()
                except Exception as exc:
                    # One element's defect must not take the batch down with it.
                    logger.exception("%s: unexpected failure for %s", name, job.ref)
                    return _Tracker(job.ref, job.operation, dry_run=dry_run).fail(
                        ErrorCode.INTERNAL_ERROR, f"{type(exc).__name__}: {exc}"
                    )

        records = list(await asyncio.gather(*(run(job) for job in jobs)))
        cancelled = cancel_event is not None and cancel_event.is_set()
        report = SyncReport(
            operation=name,
            dry_run=dry_run,
            preview=preview,
            cancelled=cancelled,
            records=records,
        )
        counts = report.counts()
        report = report.model_copy(
            update={
                "message": (
                    f"{counts['succeeded']} succeeded, {counts['failed']} failed, "
                    f"{counts['skipped']} skipped of {counts['total']}"
                )
            }
        )
        logger.info("%s finished: %s", name, report.message)
        if self._audit is not None:
            self._audit.try_write(
                AuditEvent(
                    event_type=AuditEventType.SYNC_BATCH,
                    operation=name,
                    payload={**counts, "dry_run": dry_run, "preview": preview, "cancelled": cancelled},
                )
            )
        return report

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _local(self, ref: ElementRef) -> Element | None:
        for element in self.store.list(ref.type):
            if element.slug == ref.slug:
                return element
        return None

    async def _remote_sha(self, repo: RepoRef, ref: ElementRef) -> str | None:
        try:
            return (await self.client.get_blob(repo, ref.remote_path)).sha
        except RemoteNotFound:
            return None

    async def _remote_sha_map(self, repo: RepoRef) -> dict[str, str] | None:
        """Path -> blob sha for the whole repository, or None to look up per element."""
        try:
            return {e.path: e.sha for e in await self.client.list_tree(repo) if e.kind == "blob"}
        except RemoteError as exc:
            logger.warning("tree listing failed (%s); checking each element individually", exc.code.value)
            return None

    @staticmethod
    def _excluded(ref: ElementRef, cfg: SyncConfig) -> bool:
        candidates = (ref.remote_path, f"{ref.slug}.md")
        return any(
            fnmatch.fnmatch(candidate, pattern)
            for pattern in cfg.excluded_patterns
            for candidate in candidates
        )

    def _comparison(
        self,
        existing: Element | None,
        remote_text: str,
        remote_sha: str,
        show_diff: bool,
        ref: ElementRef,
    ) -> Comparison:
        if existing is None:
            return Comparison(status=ComparisonStatus.remote_only, remote_sha=remote_sha)
        local_text = serialize_element(existing)
        return Comparison(
            status=ComparisonStatus.different,
            local_sha=git_blob_sha(local_text),
            remote_sha=remote_sha,
            diff=unified_diff(remote_text, local_text, ref.remote_path) if show_diff else None,
        )

    # ------------------------------------------------------------------
    # Typed dispatch
    # ------------------------------------------------------------------

    async def execute(self, request: SyncRequest) -> SyncReport:
        """Run one typed request; never raises."""
        try:
            if request.operation == "bulk_upload":
                return await self.bulk_upload(request.filter, confirm=request.confirm, dry_run=request.dry_run)
            if request.operation == "bulk_download":
                return await self.bulk_download(
                    request.filter,
                    mode=request.mode,
                    confirm=request.confirm,
                    dry_run=request.dry_run,
                )
            if not request.element_ref:
                return SyncReport(
                    operation=request.operation,
                    status="error",
                    error_code=ErrorCode.NOT_FOUND.value,
                    message=f"{request.operation} needs an element_ref like 'persona/my-persona'",
                )
            if request.operation == "download":
                record = await self.download(
                    request.element_ref, force=request.force, confirm=request.confirm, dry_run=request.dry_run
                )
            elif request.operation == "upload":
                record = await self.upload(
                    request.element_ref, force=request.force, confirm=request.confirm, dry_run=request.dry_run
                )
            else:
                record = await self.compare(request.element_ref)
        except Exception as exc:
            logger.exception("sync %s failed unexpectedly", request.operation)
            return SyncReport(
                operation=request.operation,
                status="error",
                error_code=ErrorCode.INTERNAL_ERROR.value,
                message=f"{type(exc).__name__}: {exc}",
                dry_run=request.dry_run,
            )
        return SyncReport(operation=request.operation, dry_run=request.dry_run, records=[record])
