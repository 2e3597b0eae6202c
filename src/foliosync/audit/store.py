"""JSONL audit logger."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from threading import Lock

from pydantic import ValidationError

from foliosync.audit.schemas import AuditEvent
from foliosync.audit.schemas import AuditEventType
from foliosync.config import AuditConfig
from foliosync.observability import increment_counter

logger = logging.getLogger(__name__)


class AuditLogger:
    """Append-only JSONL audit log.

    ``write`` is synchronous so the validation pipeline can call it inside a
    synchronous step; ``log`` offloads the same append to a worker thread
    for async callers.  Appends are serialized by a thread lock.
    """

    def __init__(self, config: AuditConfig) -> None:
        self.config = config
        self._lock = Lock()

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    def write(self, event: AuditEvent) -> None:
        """Append *event* as a single JSON line; raises ``OSError`` on I/O failure."""
        if not self.config.enabled:
            return
        line = event.model_dump_json() + "\n"
        with self._lock:
            path = Path(self.config.file_path)
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "a", encoding="utf-8") as fh:
                fh.write(line)

    def try_write(self, event: AuditEvent) -> bool:
        """Write *event*; on I/O failure count it and return False instead of raising."""
        try:
            self.write(event)
        except OSError as exc:
            increment_counter("audit.write_failures")
            logger.warning("Audit write failed for %s: %s", event.event_type.value, exc)
            return False
        return True

    async def log(self, event: AuditEvent) -> None:
        """Async variant of ``write``."""
        await asyncio.to_thread(self.write, event)

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    async def read_events(
        self,
        *,
        event_type: AuditEventType | None = None,
        since: float | None = None,
    ) -> list[AuditEvent]:
        """Read events back from the audit file, optionally filtered."""
        return await asyncio.to_thread(
            self.read_events_sync, event_type=event_type, since=since
        )

    def read_events_sync(
        self,
        *,
        event_type: AuditEventType | None = None,
        since: float | None = None,
    ) -> list[AuditEvent]:
        path = Path(self.config.file_path)
        if not path.exists():
            return []

        with self._lock:
            raw = path.read_text(encoding="utf-8")
        events: list[AuditEvent] = []
        for line_no, line in enumerate(raw.strip().splitlines(), start=1):
            try:
                evt = AuditEvent.model_validate_json(line)
            except ValidationError:
                logger.warning(
                    "Skipping malformed audit event line %d in %s",
                    line_no,
                    path,
                )
                continue
            if event_type is not None and evt.event_type != event_type:
                continue
            if since is not None and evt.timestamp < since:
                continue
            events.append(evt)
        return events
