"""Structural validation results."""

from __future__ import annotations

from pydantic import BaseModel
from pydantic import Field

from foliosync.errors import ErrorCode


class ValidationIssue(BaseModel):
    """One error or warning produced by ``ElementValidator``."""

    model_config = {"frozen": True}

    code: ErrorCode | str
    field: str
    message: str


class ValidationResult(BaseModel):
    """Outcome of validating one element."""

    model_config = {"frozen": True}

    valid: bool
    errors: list[ValidationIssue] = Field(default_factory=list)
    warnings: list[ValidationIssue] = Field(default_factory=list)

    @property
    def first_error(self) -> ValidationIssue | None:
        return self.errors[0] if self.errors else None

    def summary(self) -> str:
        return "; ".join(f"{issue.field}: {issue.message}" for issue in self.errors)
