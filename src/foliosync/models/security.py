"""Security finding models."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel
from pydantic import Field


class Severity(str, Enum):
    """Finding severity, ordered low < medium < high < critical."""

    low = "low"
    medium = "medium"
    high = "high"
    critical = "critical"

    @property
    def rank(self) -> int:
        return _RANKS[self]


_RANKS = {
    Severity.low: 0,
    Severity.medium: 1,
    Severity.high: 2,
    Severity.critical: 3,
}


class FindingCode(str, Enum):
    """Stable taxonomy of pipeline findings."""

    UNICODE_DIRECTION_OVERRIDE = "UNICODE_DIRECTION_OVERRIDE"
    UNICODE_ZERO_WIDTH = "UNICODE_ZERO_WIDTH"
    UNICODE_NONPRINTABLE = "UNICODE_NONPRINTABLE"
    UNICODE_MIXED_SCRIPT = "UNICODE_MIXED_SCRIPT"
    UNICODE_PRIVATE_USE = "UNICODE_PRIVATE_USE"
    UNICODE_ESCAPE_SEQUENCES = "UNICODE_ESCAPE_SEQUENCES"
    CONTENT_TOO_LARGE = "CONTENT_TOO_LARGE"
    YAML_TOO_LARGE = "YAML_TOO_LARGE"
    YAML_BOMB = "YAML_BOMB"
    YAML_UNSAFE_TAG = "YAML_UNSAFE_TAG"
    YAML_MALFORMED = "YAML_MALFORMED"
    SHELL_COMMAND = "SHELL_COMMAND"
    DESTRUCTIVE_COMMAND = "DESTRUCTIVE_COMMAND"
    PROMPT_INJECTION = "PROMPT_INJECTION"
    PATH_TRAVERSAL = "PATH_TRAVERSAL"
    SECRET_EXPOSURE = "SECRET_EXPOSURE"
    AUDIT_LOG_FAILURE = "AUDIT_LOG_FAILURE"


class SecurityFinding(BaseModel):
    """One flagged issue."""

    model_config = {"frozen": True}

    severity: Severity
    code: FindingCode
    element_ref: str | None = None
    detail: str = ""


class ValidationContext(BaseModel):
    """Where a piece of text is being validated from."""

    model_config = {"frozen": True}

    operation: str = Field(description="Calling operation, e.g. 'load' or 'upload'.")
    element_ref: str | None = None


class SecurityReport(BaseModel):
    """Result of a pipeline run that did not end in rejection."""

    model_config = {"frozen": True}

    normalized_text: str
    findings: list[SecurityFinding] = Field(default_factory=list)
    normalized: bool = Field(
        default=False,
        description="True when normalization changed the input text.",
    )

    @property
    def max_severity(self) -> Severity | None:
        return max_severity(self.findings)


def max_severity(findings: list[SecurityFinding]) -> Severity | None:
    if not findings:
        return None
    return max((f.severity for f in findings), key=lambda s: s.rank)
