"""Optional checks against the real GitHub REST API.

These tests are opt-in because they need network access and a token with
``repo`` scope.  They write to a scratch repository that must already exist.
"""

from __future__ import annotations

import json
import os
import uuid

import pytest
from fastmcp import Client

from foliosync.config import AuditConfig
from foliosync.config import FolioConfig
from foliosync.config import PortfolioConfig
from foliosync.config import RemoteConfig
from foliosync.config import SyncConfig
from foliosync.remote import RemotePortfolioClient
from foliosync.server import configure
from foliosync.server import mcp
from foliosync.server import shutdown

_TOKEN = os.getenv("FOLIOSYNC_GITHUB_TOKEN")
_REPOSITORY = os.getenv("FOLIOSYNC_LIVE_REPOSITORY")

pytestmark = pytest.mark.skipif(
    not (_TOKEN and _REPOSITORY),
    reason=(
        "Live GitHub tests are opt-in. Set FOLIOSYNC_GITHUB_TOKEN and "
        "FOLIOSYNC_LIVE_REPOSITORY (an existing scratch repository) to enable."
    ),
)


def _parse(result) -> dict:
    return json.loads(result.content[0].text)


class TestLiveRemote:
    async def test_repository_and_tree(self):
        async with RemotePortfolioClient(RemoteConfig(repository=_REPOSITORY), token=_TOKEN) as remote:
            repo = await remote.get_repository()
            entries = await remote.list_tree(repo)
        assert repo.name == _REPOSITORY
        assert all(e.path for e in entries)

    async def test_upload_then_download_round_trip(self, tmp_path):
        slug = f"live-{uuid.uuid4().hex[:8]}"
        config = FolioConfig(
            portfolio=PortfolioConfig(root_dir=str(tmp_path / "portfolio")),
            remote=RemoteConfig(repository=_REPOSITORY),
            sync=SyncConfig(enabled=True),
            audit=AuditConfig(file_path=str(tmp_path / "audit.jsonl")),
        )
        persona = tmp_path / "portfolio" / "personas" / f"{slug}.md"
        persona.parent.mkdir(parents=True)
        persona.write_text(
            f"---\nname: {slug}\nversion: 1.0.0\ndescription: live check\n---\nHello from a live test.\n",
            encoding="utf-8",
        )

        await configure(config, token=_TOKEN)
        try:
            async with Client(mcp) as client:
                uploaded = _parse(
                    await client.call_tool(
                        "sync_portfolio",
                        {"operation": "upload", "element_ref": f"persona/{slug}", "confirm": True},
                    )
                )
                assert uploaded["records"][0]["outcome"] == "success"

                listing = _parse(await client.call_tool("list_remote", {"query": slug}))
                assert [e["slug"] for e in listing["entries"]] == [slug]

                compared = _parse(
                    await client.call_tool("sync_portfolio", {"operation": "compare", "element_ref": f"persona/{slug}"})
                )
                assert compared["records"][0]["comparison"]["status"] == "identical"
        finally:
            await shutdown()
