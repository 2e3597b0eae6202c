"""Security validation pipeline.

All element text passes through ``SecurityValidationPipeline.validate``
before it is stored, parsed or sent anywhere.  Suspicious input produces
findings; only critical findings raise ``SecurityRejected``.
"""

from __future__ import annotations

import logging

from foliosync.audit import AuditEvent
from foliosync.audit import AuditEventType
from foliosync.audit import AuditLogger
from foliosync.config import SecurityConfig
from foliosync.errors import SecurityRejected
from foliosync.models.security import FindingCode
from foliosync.models.security import max_severity
from foliosync.models.security import SecurityFinding
from foliosync.models.security import SecurityReport
from foliosync.models.security import Severity
from foliosync.models.security import ValidationContext
from foliosync.observability import increment_counter
from foliosync.security.content import scan_content
from foliosync.security.unicode import normalize
from foliosync.security.unicode import scan_unicode
from foliosync.security.yaml_guard import inspect_yaml
from foliosync.security.yaml_guard import split_front_matter

logger = logging.getLogger(__name__)

_DEFAULT_CONTEXT = ValidationContext(operation="validate")


class SecurityValidationPipeline:
    """Normalize and screen text; emit one audit event per decision."""

    def __init__(
        self,
        config: SecurityConfig | None = None,
        *,
        audit_logger: AuditLogger | None = None,
    ) -> None:
        self.config = config or SecurityConfig()
        self._audit = audit_logger

    def validate(
        self,
        text: str,
        context: ValidationContext | None = None,
    ) -> SecurityReport:
        """Return the normalized text and findings, or raise ``SecurityRejected``."""
        ctx = context or _DEFAULT_CONTEXT
        ref = ctx.element_ref

        size = len(text.encode("utf-8"))
        if size > self.config.max_content_bytes:
            self._reject(
                ctx,
                [
                    SecurityFinding(
                        severity=Severity.critical,
                        code=FindingCode.CONTENT_TOO_LARGE,
                        element_ref=ref,
                        detail=f"content is {size} bytes (limit {self.config.max_content_bytes})",
                    )
                ],
            )

        findings = scan_unicode(text, ref)
        normalized = normalize(text)

        yaml_text, _ = split_front_matter(normalized)
        if yaml_text is not None:
            findings.extend(inspect_yaml(yaml_text, self.config, ref))
        findings.extend(scan_content(normalized, self.config, ref))

        if any(f.severity is Severity.critical for f in findings):
            self._reject(ctx, findings)

        changed = normalized != text
        if findings:
            increment_counter("security.findings", len(findings))
            audited = self._emit(
                AuditEventType.SECURITY_FINDING,
                ctx,
                findings,
                normalized=changed,
            )
        elif changed:
            audited = self._emit(AuditEventType.SECURITY_NORMALIZED, ctx, [], normalized=True)
        else:
            audited = True

        if not audited:
            findings.append(
                SecurityFinding(
                    severity=Severity.low,
                    code=FindingCode.AUDIT_LOG_FAILURE,
                    element_ref=ref,
                    detail="security decision could not be written to the audit log",
                )
            )
        return SecurityReport(
            normalized_text=normalized,
            findings=findings,
            normalized=changed,
        )

    def normalize(self, text: str) -> str:
        return normalize(text)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _reject(self, ctx: ValidationContext, findings: list[SecurityFinding]) -> None:
        critical = [f for f in findings if f.severity is Severity.critical]
        increment_counter("security.rejections")
        self._emit(AuditEventType.SECURITY_REJECTED, ctx, findings, normalized=False)
        first = critical[0]
        logger.warning(
            "security rejection operation=%s element=%s code=%s",
            ctx.operation,
            ctx.element_ref,
            first.code.value,
        )
        raise SecurityRejected(
            f"{first.code.value}: {first.detail}",
            findings=findings,
        )

    def _emit(
        self,
        event_type: AuditEventType,
        ctx: ValidationContext,
        findings: list[SecurityFinding],
        *,
        normalized: bool,
    ) -> bool:
        """Write one audit event; returns False when the sink failed."""
        severity = max_severity(findings)
        event = AuditEvent(
            event_type=event_type,
            operation=ctx.operation,
            element_ref=ctx.element_ref,
            severity=severity.value if severity else None,
            payload={
                "normalized": normalized,
                "findings": [
                    {"code": f.code.value, "severity": f.severity.value, "detail": f.detail}
                    for f in findings
                ],
            },
        )
        logger.debug(
            "security event=%s operation=%s element=%s findings=%d",
            event_type.value,
            ctx.operation,
            ctx.element_ref,
            len(findings),
        )
        if self._audit is None:
            return True
        return self._audit.try_write(event)
