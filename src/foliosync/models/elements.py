"""Element data model."""

from __future__ import annotations

import re
import unicodedata
from enum import Enum
from typing import Any

from pydantic import BaseModel
from pydantic import Field
from pydantic import field_validator


class ElementType(str, Enum):
    """Closed set of element kinds."""

    persona = "persona"
    skill = "skill"
    template = "template"
    agent = "agent"
    memory = "memory"
    ensemble = "ensemble"

    @property
    def directory(self) -> str:
        """Plural directory name used both locally and remotely."""
        return _DIRECTORIES[self]

    @classmethod
    def from_directory(cls, name: str) -> ElementType | None:
        for element_type, directory in _DIRECTORIES.items():
            if directory == name:
                return element_type
        return None

    @classmethod
    def parse(cls, value: str) -> ElementType:
        """Accept either the singular value or the plural directory name."""
        normalized = value.strip().lower()
        from_dir = cls.from_directory(normalized)
        if from_dir is not None:
            return from_dir
        return cls(normalized)


_DIRECTORIES: dict[ElementType, str] = {
    ElementType.persona: "personas",
    ElementType.skill: "skills",
    ElementType.template: "templates",
    ElementType.agent: "agents",
    ElementType.memory: "memories",
    ElementType.ensemble: "ensembles",
}

_SLUG_STRIP_RE = re.compile(r"[^a-z0-9_.-]+")
_DASHES_RE = re.compile(r"-{2,}")


def slugify(name: str) -> str:
    """Derive a filesystem-safe slug from a display name."""
    ascii_name = (
        unicodedata.normalize("NFKD", name).encode("ascii", "ignore").decode("ascii")
    )
    slug = _SLUG_STRIP_RE.sub("-", ascii_name.strip().lower())
    slug = _DASHES_RE.sub("-", slug).strip("-.")
    return slug or "untitled"


class ElementRef(BaseModel):
    """(type, slug) pair identifying an element in a portfolio."""

    model_config = {"frozen": True}

    type: ElementType
    slug: str

    def __str__(self) -> str:
        return f"{self.type.value}/{self.slug}"

    @property
    def remote_path(self) -> str:
        return f"{self.type.directory}/{self.slug}.md"

    @classmethod
    def parse(cls, value: str) -> ElementRef:
        """Parse ``persona/my-slug`` or ``personas/my-slug.md``."""
        kind, sep, rest = value.strip().partition("/")
        if not sep or not rest:
            raise ValueError(f"Element reference must look like 'type/slug': {value!r}")
        slug = rest[:-3] if rest.endswith(".md") else rest
        return cls(type=ElementType.parse(kind), slug=slug)


class ElementMetadata(BaseModel):
    """Descriptive metadata carried in an element's front matter."""

    model_config = {"frozen": True}

    author: str | None = None
    description: str | None = None
    category: str | None = None
    tags: list[str] = Field(default_factory=list)
    triggers: list[str] = Field(default_factory=list)
    extra: dict[str, Any] = Field(
        default_factory=dict,
        description="Type-specific keys (e.g. an ensemble's 'elements').",
    )

    @field_validator("tags", "triggers", mode="before")
    @classmethod
    def _as_unique_strings(cls, value: Any) -> list[str]:
        if value is None:
            return []
        if isinstance(value, str):
            value = [value]
        seen: dict[str, None] = {}
        for item in value:
            text = str(item).strip()
            if text:
                seen.setdefault(text, None)
        return list(seen)


class Element(BaseModel):
    """One portfolio artifact."""

    model_config = {"frozen": True}

    id: str = Field(description="Stable identifier, independent of the display name.")
    type: ElementType
    slug: str
    name: str
    version: str = "1.0.0"
    metadata: ElementMetadata = Field(default_factory=ElementMetadata)
    content: str = ""
    local_only: bool = Field(
        default=False,
        description="Front matter 'privacy.local_only'; never uploaded in bulk.",
    )
    local_revision: str | None = Field(
        default=None,
        description="sha256 of the file as last loaded from disk.",
    )
    remote_ref: str | None = Field(
        default=None,
        description="Remote blob sha of the last successful sync.",
    )

    @property
    def ref(self) -> ElementRef:
        return ElementRef(type=self.type, slug=self.slug)
