"""Shared collection index models."""

from __future__ import annotations

import time
from typing import Any

from pydantic import BaseModel
from pydantic import Field


class CollectionCacheEntry(BaseModel):
    """One indexed community-library item."""

    model_config = {"frozen": True}

    path: str
    type: str
    name: str = ""
    description: str = ""
    author: str | None = None
    version: str | None = None
    tags: list[str] = Field(default_factory=list)
    sha: str | None = None
    cached_at: float = Field(default_factory=time.time)


class CollectionIndex(BaseModel):
    """The published collection-index.json document."""

    version: str = ""
    generated: str = ""
    total_elements: int = 0
    index: dict[str, list[dict[str, Any]]] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)


class CachedIndexState(BaseModel):
    """What the cache persists to disk between processes."""

    fetched_at: float
    etag: str | None = None
    last_modified: str | None = None
    document: CollectionIndex
