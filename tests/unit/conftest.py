"""Unit test fixtures — FastMCP client wired to a fake remote."""

from __future__ import annotations

from pathlib import Path

import httpx
import pytest
from fastmcp import Client

from foliosync.config import AuditConfig
from foliosync.config import CollectionConfig
from foliosync.config import FolioConfig
from foliosync.config import PortfolioConfig
from foliosync.config import RemoteConfig
from foliosync.config import SyncConfig

COLLECTION_URL = "https://collection.test/collection-index.json"

COLLECTION_DOCUMENT = {
    "version": "2.0.0",
    "generated": "2026-01-01T00:00:00Z",
    "total_elements": 3,
    "index": {
        "personas": [
            {
                "path": "library/personas/creative-writer.md",
                "type": "persona",
                "name": "Creative Writer",
                "description": "Imaginative storyteller for fiction drafts",
                "author": "dollhouse",
                "version": "1.2.0",
                "tags": ["writing", "fiction"],
                "sha": "a1",
            },
            {
                "path": "library/personas/code-reviewer.md",
                "type": "persona",
                "name": "Code Reviewer",
                "description": "Careful reviewer of pull requests",
                "tags": ["code", "review"],
                "sha": "a2",
            },
        ],
        "skills": [
            {
                "path": "library/skills/story-outline.md",
                "type": "skill",
                "name": "Story Outline",
                "description": "Break a story into acts",
                "tags": ["writing"],
                "sha": "b1",
            }
        ],
    },
    "metadata": {"build_time_ms": 12},
}


def collection_transport() -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=COLLECTION_DOCUMENT, headers={"etag": '"v1"'})

    return httpx.MockTransport(handler)


def server_config(tmp_path: Path, **sync: object) -> FolioConfig:
    return FolioConfig(
        portfolio=PortfolioConfig(root_dir=str(tmp_path / "portfolio")),
        remote=RemoteConfig(owner="octo", backoff_multiplier=0.0, backoff_max_seconds=0.0),
        sync=SyncConfig(**sync),
        collection=CollectionConfig(index_url=COLLECTION_URL),
        audit=AuditConfig(file_path=str(tmp_path / "audit.jsonl")),
    )


@pytest.fixture()
async def mcp_client(tmp_path: Path, github):
    """Yield a FastMCP Client wired to the foliosync server."""
    from foliosync.server import configure
    from foliosync.server import mcp
    from foliosync.server import shutdown

    await configure(
        server_config(tmp_path, enabled=True, bulk_upload_enabled=True),
        token="test-token",
        remote_transport=github.transport,
        collection_transport=collection_transport(),
    )

    async with Client(mcp) as client:
        yield client
    await shutdown()
