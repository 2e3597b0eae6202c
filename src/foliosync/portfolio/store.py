"""Filesystem-backed portfolio registry.

Layout: ``<root>/<type-directory>/<slug>.md``.  The in-memory index is
always rebuilt from disk (``reload``) or refreshed from the file just
written; it is replaced as a whole so readers never observe a partial scan.
``PortfolioStore`` is the only writer of the portfolio directory.
"""

from __future__ import annotations

import json
import logging
import os
import re
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from threading import Lock
from types import MappingProxyType
from uuid import uuid4

from foliosync.audit import AuditEvent
from foliosync.audit import AuditEventType
from foliosync.audit import AuditLogger
from foliosync.config import PortfolioConfig
from foliosync.errors import AmbiguousMatchError
from foliosync.errors import ElementValidationError
from foliosync.errors import ErrorCode
from foliosync.errors import NotFoundError
from foliosync.errors import SecurityRejected
from foliosync.models.elements import Element
from foliosync.models.elements import ElementMetadata
from foliosync.models.elements import ElementRef
from foliosync.models.elements import ElementType
from foliosync.models.elements import slugify
from foliosync.models.security import ValidationContext
from foliosync.models.validation import ValidationResult
from foliosync.portfolio.frontmatter import content_hash
from foliosync.portfolio.frontmatter import parse_element
from foliosync.portfolio.frontmatter import serialize_element
from foliosync.security.pipeline import SecurityValidationPipeline
from foliosync.validation import ElementValidator
from foliosync.validation import normalize_element
from foliosync.validation import SLUG_RE

logger = logging.getLogger(__name__)

_SEPARATORS_RE = re.compile(r"[\s_]+")

_Index = Mapping[ElementType, Mapping[str, Element]]


@dataclass(frozen=True)
class LoadFailure:
    """A file under the portfolio root that could not be loaded."""

    ref: ElementRef
    path: str
    code: ErrorCode
    detail: str


def _normalize_name(value: str) -> str:
    text = value.strip()
    if text.lower().endswith(".md"):
        text = text[:-3]
    return _SEPARATORS_RE.sub("-", text.casefold())


class PortfolioStore:
    """Local element registry with reload/get/list/put/delete."""

    def __init__(
        self,
        config: PortfolioConfig,
        *,
        pipeline: SecurityValidationPipeline,
        validator: ElementValidator | None = None,
        audit_logger: AuditLogger | None = None,
    ) -> None:
        self.config = config
        self.root = Path(config.root_dir).expanduser()
        self.pipeline = pipeline
        self.validator = validator or ElementValidator()
        self._audit = audit_logger
        self._lock = Lock()
        self._index: _Index = MappingProxyType({})
        self._failures: Mapping[ElementType, tuple[LoadFailure, ...]] = MappingProxyType({})

    # ------------------------------------------------------------------
    # Layout
    # ------------------------------------------------------------------

    def ensure_layout(self) -> None:
        for element_type in ElementType:
            (self.root / element_type.directory).mkdir(parents=True, exist_ok=True)

    def path_for(self, element_type: ElementType, slug: str) -> Path:
        return self.root / element_type.directory / f"{slug}.md"

    @property
    def _state_path(self) -> Path:
        return self.root / self.config.state_file

    # ------------------------------------------------------------------
    # Reload
    # ------------------------------------------------------------------

    def reload(self, element_type: ElementType | None = None) -> int:
        """Rescan one or all type directories and swap the index; returns the element count."""
        types = [element_type] if element_type is not None else list(ElementType)
        remote_refs = self._read_state()
        scanned: dict[ElementType, dict[str, Element]] = {}
        failures: dict[ElementType, tuple[LoadFailure, ...]] = {}
        for kind in types:
            scanned[kind], failures[kind] = self._scan(kind, remote_refs)

        with self._lock:
            index = {k: v for k, v in self._index.items()}
            index.update({k: MappingProxyType(v) for k, v in scanned.items()})
            all_failures = dict(self._failures)
            all_failures.update(failures)
            self._index = MappingProxyType(index)
            self._failures = MappingProxyType(all_failures)

        count = sum(len(v) for v in scanned.values())
        logger.info(
            "portfolio reload types=%s elements=%d failures=%d",
            ",".join(t.value for t in types),
            count,
            sum(len(v) for v in failures.values()),
        )
        return count

    def _scan(
        self,
        element_type: ElementType,
        remote_refs: dict[str, str],
    ) -> tuple[dict[str, Element], tuple[LoadFailure, ...]]:
        directory = self.root / element_type.directory
        if not directory.is_dir():
            return {}, ()

        elements: dict[str, Element] = {}
        failures: list[LoadFailure] = []
        for path in sorted(directory.glob("*.md")):
            if not path.is_file():
                continue
            slug = path.stem
            try:
                elements[slug] = self._load_file(element_type, path, remote_refs)
            except SecurityRejected as exc:
                failures.append(self._failure(element_type, path, exc.code, exc.message))
            except ElementValidationError as exc:
                failures.append(self._failure(element_type, path, exc.code, exc.message))
            except (OSError, UnicodeDecodeError) as exc:
                failures.append(self._failure(element_type, path, ErrorCode.PARSE_ERROR, str(exc)))
        for failure in failures:
            logger.warning("Skipping %s: %s (%s)", failure.path, failure.detail, failure.code.value)
        return elements, tuple(failures)

    def _load_file(
        self,
        element_type: ElementType,
        path: Path,
        remote_refs: dict[str, str],
    ) -> Element:
        raw = path.read_text(encoding="utf-8")
        slug = path.stem
        ref = f"{element_type.value}/{slug}"
        report = self.pipeline.validate(raw, ValidationContext(operation="load", element_ref=ref))
        element = parse_element(report.normalized_text, element_type=element_type, slug=slug)
        return element.model_copy(
            update={
                "local_revision": content_hash(raw),
                "remote_ref": remote_refs.get(element.ref.remote_path),
            }
        )

    @staticmethod
    def _failure(element_type: ElementType, path: Path, code: ErrorCode, detail: str) -> LoadFailure:
        return LoadFailure(
            ref=ElementRef(type=element_type, slug=path.stem),
            path=str(path),
            code=code,
            detail=detail,
        )

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def list(self, element_type: ElementType) -> list[Element]:
        """Elements of one type ordered by slug."""
        entries = self._index.get(element_type, {})
        return [entries[slug] for slug in sorted(entries)]

    def all(self) -> list[Element]:
        """Every element, grouped by type in declaration order, then by slug."""
        return [e for kind in ElementType for e in self.list(kind)]

    def load_failures(self, element_type: ElementType | None = None) -> list[LoadFailure]:
        failures = self._failures
        kinds = [element_type] if element_type is not None else list(ElementType)
        return [f for kind in kinds for f in failures.get(kind, ())]

    def get(self, element_type: ElementType, slug_or_name: str) -> Element:
        """Exact slug first, then a deterministic display-name match.

        Matching order: normalized slug or name equality, then substring.
        More than one candidate at a stage raises ``AmbiguousMatchError``.
        """
        entries = self._index.get(element_type, {})
        if slug_or_name in entries:
            return entries[slug_or_name]

        needle = _normalize_name(slug_or_name)
        if not needle:
            raise NotFoundError(f"{element_type.value}: empty element name")

        exact = sorted(
            slug
            for slug, element in entries.items()
            if needle in (_normalize_name(slug), _normalize_name(element.name))
        )
        partial = sorted(
            slug
            for slug, element in entries.items()
            if needle in _normalize_name(slug) or needle in _normalize_name(element.name)
        )
        for candidates in (exact, partial):
            if len(candidates) == 1:
                return entries[candidates[0]]
            if len(candidates) > 1:
                raise AmbiguousMatchError(
                    f"{element_type.value} {slug_or_name!r} matches {len(candidates)} elements: "
                    + ", ".join(candidates),
                    candidates=candidates,
                )
        raise NotFoundError(f"{element_type.value} {slug_or_name!r} not found in portfolio")

    def validation_for(self, element: Element) -> ValidationResult:
        return self.validator.validate(element)

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    def put(self, element: Element) -> Element:
        """Screen, write and re-read *element*; returns the stored version.

        Schema problems do not block a local save: drafts may be incomplete.
        They are logged and recorded on the audit event, and the sync engine
        refuses to move such an element until ``validation_for`` is clean.
        Security rejections and bad slugs still raise before anything is written.
        """
        if self.config.normalize_versions:
            element = normalize_element(element)
        ref = str(element.ref)
        self._check_slug(element.slug)

        report = self.pipeline.validate(
            serialize_element(element),
            ValidationContext(operation="put", element_ref=ref),
        )
        canonical = parse_element(
            report.normalized_text,
            element_type=element.type,
            slug=element.slug,
        )
        result = self.validator.validate(canonical)
        if not result.valid:
            logger.warning("saving invalid %s locally: %s", ref, result.summary())

        path = self.path_for(element.type, element.slug)
        path.parent.mkdir(parents=True, exist_ok=True)
        _write_atomic(path, serialize_element(canonical))
        stored = self._refresh(element.type, path)

        self._audit_write(
            AuditEventType.ELEMENT_WRITTEN,
            "put",
            ref,
            {"revision": stored.local_revision, "valid": result.valid},
        )
        return stored

    def delete(self, element_type: ElementType, slug: str) -> None:
        self._check_slug(slug)
        ref = f"{element_type.value}/{slug}"
        # The reference itself is untrusted input.
        self.pipeline.validate(slug, ValidationContext(operation="delete", element_ref=ref))

        path = self.path_for(element_type, slug)
        if not path.is_file():
            raise NotFoundError(f"{ref} does not exist on disk")
        path.unlink()

        with self._lock:
            index = dict(self._index)
            remaining = {k: v for k, v in index.get(element_type, {}).items() if k != slug}
            index[element_type] = MappingProxyType(remaining)
            self._index = MappingProxyType(index)
        self._forget_remote_ref(ElementRef(type=element_type, slug=slug))
        self._audit_write(AuditEventType.ELEMENT_DELETED, "delete", ref, {})

    def create(
        self,
        element_type: ElementType,
        name: str,
        *,
        content: str = "",
        version: str = "1.0.0",
        **metadata: object,
    ) -> Element:
        """Build a brand-new element with a fresh id and derived slug, then ``put`` it."""
        slug = slugify(name)
        if self.path_for(element_type, slug).exists():
            raise ElementValidationError(
                f"{element_type.value}/{slug} already exists",
                code=ErrorCode.INVALID_SLUG,
            )
        element = Element(
            id=uuid4().hex,
            type=element_type,
            slug=slug,
            name=name,
            version=version,
            metadata=ElementMetadata.model_validate(metadata),
            content=content,
        )
        return self.put(element)

    def _check_slug(self, slug: str) -> None:
        if not SLUG_RE.match(slug) or slug in {".", ".."}:
            raise ElementValidationError(
                f"invalid slug {slug!r}",
                code=ErrorCode.INVALID_SLUG,
            )

    def _refresh(self, element_type: ElementType, path: Path) -> Element:
        element = self._load_file(element_type, path, self._read_state())
        with self._lock:
            index = dict(self._index)
            entries = dict(index.get(element_type, {}))
            entries[element.slug] = element
            index[element_type] = MappingProxyType(entries)
            self._index = MappingProxyType(index)
        return element

    # ------------------------------------------------------------------
    # Sync state sidecar
    # ------------------------------------------------------------------

    def record_remote_ref(self, ref: ElementRef, remote_sha: str) -> None:
        """Remember the remote blob sha of the last successful sync."""
        state = self._read_state()
        state[ref.remote_path] = remote_sha
        self._write_state(state)
        self._update_entry(ref, remote_ref=remote_sha)

    def _forget_remote_ref(self, ref: ElementRef) -> None:
        state = self._read_state()
        if state.pop(ref.remote_path, None) is not None:
            self._write_state(state)

    def _update_entry(self, ref: ElementRef, **updates: object) -> None:
        with self._lock:
            entries = dict(self._index.get(ref.type, {}))
            current = entries.get(ref.slug)
            if current is None:
                return
            entries[ref.slug] = current.model_copy(update=updates)
            index = dict(self._index)
            index[ref.type] = MappingProxyType(entries)
            self._index = MappingProxyType(index)

    def _read_state(self) -> dict[str, str]:
        path = self._state_path
        if not path.is_file():
            return {}
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Ignoring unreadable sync state %s: %s", path, exc)
            return {}
        if not isinstance(data, dict):
            return {}
        return {str(k): str(v) for k, v in data.items()}

    def _write_state(self, state: dict[str, str]) -> None:
        self.root.mkdir(parents=True, exist_ok=True)
        _write_atomic(self._state_path, json.dumps(state, indent=2, sort_keys=True) + "\n")

    def _audit_write(self, event_type: AuditEventType, operation: str, ref: str, payload: dict) -> None:
        if self._audit is None:
            return
        self._audit.try_write(
            AuditEvent(
                event_type=event_type,
                operation=operation,
                element_ref=ref,
                payload=payload,
            )
        )


def _write_atomic(path: Path, text: str) -> None:
    tmp = path.with_name(path.name + ".tmp")
    tmp.write_text(text, encoding="utf-8")
    os.replace(tmp, path)
