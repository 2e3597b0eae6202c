"""Structural validation of elements.

Required fields for every element type live in one table
(``REQUIRED_FIELDS``); the validator walks that table instead of carrying
per-type code paths.
"""

from __future__ import annotations

import logging
import re

from foliosync.errors import ElementValidationError
from foliosync.errors import ErrorCode
from foliosync.models.elements import Element
from foliosync.models.elements import ElementType
from foliosync.models.validation import ValidationIssue
from foliosync.models.validation import ValidationResult

logger = logging.getLogger(__name__)

SLUG_RE = re.compile(r"^[A-Za-z0-9_.-]+$")
SEMVER_RE = re.compile(
    r"^\d+\.\d+\.\d+(?:-[0-9A-Za-z.-]+)?(?:\+[0-9A-Za-z.-]+)?$"
)
_LOOSE_VERSION_RE = re.compile(r"^v?(\d+)(?:\.(\d+))?(?:\.(\d+))?([-+].+)?$", re.IGNORECASE)

# Field paths: "name", "content", "description", or "extra.<key>".
REQUIRED_FIELDS: dict[ElementType, tuple[str, ...]] = {
    ElementType.persona: ("name", "description", "content"),
    ElementType.skill: ("name", "description", "content"),
    ElementType.template: ("name", "content"),
    ElementType.agent: ("name", "description", "content"),
    ElementType.memory: ("name",),
    ElementType.ensemble: ("name", "description", "extra.elements"),
}
EXAMPLE_FIELDS: dict[ElementType, str] = {
    ElementType.skill: "extra.examples",
    ElementType.template: "extra.examples",
    ElementType.agent: "extra.examples",
}


def normalize_version(value: str) -> str | None:
    """Pad ``X`` / ``X.Y`` to ``X.Y.0`` and drop leading zeros.

    Returns None when *value* is not recognisably a version at all.
    """
    match = _LOOSE_VERSION_RE.match(value.strip())
    if match is None:
        return None
    major, minor, patch, suffix = match.groups()
    parts = [str(int(p)) for p in (major, minor or "0", patch or "0")]
    return ".".join(parts) + (suffix or "")


def normalize_element(element: Element) -> Element:
    """Return *element* with a padded version and trimmed name, when possible."""
    updates: dict[str, object] = {}
    fixed = normalize_version(element.version)
    if fixed is not None and fixed != element.version and SEMVER_RE.match(fixed):
        logger.debug("normalized version %r -> %r for %s", element.version, fixed, element.ref)
        updates["version"] = fixed
    if element.name != element.name.strip():
        updates["name"] = element.name.strip()
    return element.model_copy(update=updates) if updates else element


def _field_value(element: Element, path: str) -> object:
    if path == "name":
        return element.name
    if path == "content":
        return element.content
    if path == "description":
        return element.metadata.description
    if path.startswith("extra."):
        return element.metadata.extra.get(path.split(".", 1)[1])
    raise KeyError(path)


def _is_blank(value: object) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, dict, set)):
        return not value
    return False


class ElementValidator:
    """Schema and version gate for elements."""

    def validate(self, element: Element) -> ValidationResult:
        errors: list[ValidationIssue] = []
        warnings: list[ValidationIssue] = []

        if not element.id.strip():
            errors.append(
                ValidationIssue(
                    code=ErrorCode.MISSING_REQUIRED_FIELD,
                    field="id",
                    message="id is required",
                )
            )

        for path in REQUIRED_FIELDS[element.type]:
            if _is_blank(_field_value(element, path)):
                errors.append(
                    ValidationIssue(
                        code=ErrorCode.MISSING_REQUIRED_FIELD,
                        field=path,
                        message=f"{path} is required for {element.type.value} elements",
                    )
                )

        if not SLUG_RE.match(element.slug) or element.slug in {".", ".."}:
            errors.append(
                ValidationIssue(
                    code=ErrorCode.INVALID_SLUG,
                    field="slug",
                    message=(
                        f"slug {element.slug!r} may only contain letters, digits, "
                        "'-', '_' and '.'"
                    ),
                )
            )

        version_issue = self._check_version(element.version)
        if version_issue is not None:
            errors.append(version_issue)

        # Warnings
        if not element.metadata.tags:
            warnings.append(
                ValidationIssue(code="MISSING_TAGS", field="tags", message="no tags set")
            )
        if not element.metadata.author:
            warnings.append(
                ValidationIssue(code="MISSING_AUTHOR", field="author", message="no author set")
            )
        example_field = EXAMPLE_FIELDS.get(element.type)
        if example_field and _is_blank(_field_value(element, example_field)):
            warnings.append(
                ValidationIssue(
                    code="MISSING_EXAMPLES",
                    field=example_field,
                    message="no usage examples provided",
                )
            )

        return ValidationResult(valid=not errors, errors=errors, warnings=warnings)

    def is_activatable(self, element: Element) -> bool:
        return self.validate(element).valid

    def ensure_valid(self, element: Element) -> ValidationResult:
        """Validate and raise ``ElementValidationError`` with the first specific error."""
        result = self.validate(element)
        if not result.valid:
            first = result.errors[0]
            code = first.code if isinstance(first.code, ErrorCode) else ErrorCode.MISSING_REQUIRED_FIELD
            raise ElementValidationError(
                f"{element.ref}: {result.summary()}",
                code=code,
                issues=result.errors,
            )
        return result

    @staticmethod
    def _check_version(version: str) -> ValidationIssue | None:
        if SEMVER_RE.match(version):
            return None
        suggestion = normalize_version(version)
        hint = ""
        if suggestion is not None and SEMVER_RE.match(suggestion):
            hint = f"; did you mean {suggestion!r}?"
        return ValidationIssue(
            code=ErrorCode.INVALID_VERSION_FORMAT,
            field="version",
            message=(
                f"version {version!r} must have exactly three numeric components "
                f"(MAJOR.MINOR.PATCH[-pre][+build]){hint}"
            ),
        )
