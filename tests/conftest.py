"""Root conftest — in-memory GitHub fake and shared foliosync fixtures.

``FakeGitHub`` implements the slice of the REST API the remote client uses
(user, repositories, git trees, contents, blobs) and is mounted with
``httpx.MockTransport`` so no test touches the network.
"""

from __future__ import annotations

import base64
import hashlib
import json
from pathlib import Path
from urllib.parse import unquote

import httpx
import pytest
from dotenv import load_dotenv

from foliosync.audit import AuditLogger
from foliosync.config import AuditConfig
from foliosync.config import PortfolioConfig
from foliosync.config import RemoteConfig
from foliosync.config import SettingsStore
from foliosync.config import SyncConfig
from foliosync.portfolio import PortfolioStore
from foliosync.remote import RemotePortfolioClient
from foliosync.security import SecurityValidationPipeline
from foliosync.sync import SyncEngine

# Load repository-root .env for test opt-ins (existing env vars stay authoritative).
load_dotenv(dotenv_path=Path(__file__).resolve().parents[1] / ".env", override=False)


def pytest_collection_modifyitems(items: list[pytest.Item]) -> None:
    """Attach suite markers from test path.

    - `tests/unit/*` -> `unit`
    - `tests/integration/*` -> `integration`
    """
    root = Path(__file__).resolve().parents[1]
    for item in items:
        item_path = Path(str(item.fspath)).resolve()
        try:
            rel = item_path.relative_to(root)
        except ValueError:
            continue

        parts = rel.parts
        if len(parts) < 2 or parts[0] != "tests":
            continue
        if parts[1] == "unit":
            item.add_marker(pytest.mark.unit)
        elif parts[1] == "integration":
            item.add_marker(pytest.mark.integration)


# ---------------------------------------------------------------------------
# Fake GitHub
# ---------------------------------------------------------------------------


def blob_sha(text: str) -> str:
    data = text.encode("utf-8")
    return hashlib.sha1(b"blob %d\0" % len(data) + data).hexdigest()


class FakeGitHub:
    """Minimal stateful stand-in for api.github.com."""

    def __init__(self, login: str = "octo") -> None:
        self.login = login
        self.repos: dict[str, dict[str, str]] = {}
        self.commits = 0
        self.calls: list[tuple[str, str]] = []
        self.truncate_tree = False
        # (method, path fragment) -> list of (status, body) served before normal handling
        self._injected: list[tuple[str, str, int, dict]] = []
        self._raise: list[tuple[str, str, Exception]] = []

    # -- setup helpers --------------------------------------------------

    def create_repo(self, name: str = "dollhouse-portfolio") -> dict[str, str]:
        return self.repos.setdefault(name, {})

    def put(self, path: str, text: str, repo: str = "dollhouse-portfolio") -> str:
        self.create_repo(repo)[path] = text
        return blob_sha(text)

    def files(self, repo: str = "dollhouse-portfolio") -> dict[str, str]:
        return self.repos[repo]

    def fail(self, method: str, fragment: str, status: int, body: dict | None = None, *, times: int = 1) -> None:
        for _ in range(times):
            self._injected.append((method, fragment, status, body or {"message": "injected"}))

    def raise_error(self, method: str, fragment: str, exc: Exception, *, times: int = 1) -> None:
        for _ in range(times):
            self._raise.append((method, fragment, exc))

    def count(self, method: str, fragment: str = "") -> int:
        return sum(1 for m, p in self.calls if m == method and fragment in p)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    # -- dispatch --------------------------------------------------------

    def handle(self, request: httpx.Request) -> httpx.Response:
        method = request.method
        path = unquote(request.url.path)
        self.calls.append((method, path))

        for i, (m, fragment, exc) in enumerate(self._raise):
            if m == method and fragment in path:
                del self._raise[i]
                raise exc
        for i, (m, fragment, status, body) in enumerate(self._injected):
            if m == method and fragment in path:
                del self._injected[i]
                return httpx.Response(status, json=body)

        if path == "/user" and method == "GET":
            return httpx.Response(200, json={"login": self.login})
        if path == "/user/repos" and method == "POST":
            return self._create(json.loads(request.content))

        parts = path.strip("/").split("/")
        if len(parts) < 3 or parts[0] != "repos" or parts[1] != self.login:
            return httpx.Response(404, json={"message": "Not Found"})
        name = parts[2]
        if name not in self.repos:
            return httpx.Response(404, json={"message": "Not Found"})
        rest = parts[3:]

        if not rest and method == "GET":
            return httpx.Response(200, json=self._repo_payload(name))
        if rest[:2] == ["git", "trees"]:
            return self._tree(name)
        if rest[:2] == ["git", "blobs"]:
            return self._blob(name, rest[2])
        if rest and rest[0] == "contents":
            file_path = "/".join(rest[1:])
            if method == "GET":
                return self._get_contents(name, file_path)
            if method == "PUT":
                return self._put_contents(name, file_path, json.loads(request.content))
        return httpx.Response(404, json={"message": "Not Found"})

    def _repo_payload(self, name: str) -> dict:
        return {
            "name": name,
            "owner": {"login": self.login},
            "html_url": f"https://github.com/{self.login}/{name}",
            "default_branch": "main",
        }

    def _create(self, payload: dict) -> httpx.Response:
        name = payload["name"]
        if name in self.repos:
            return httpx.Response(
                422,
                json={"message": "Repository creation failed.", "errors": [{"message": "name already exists on this account"}]},
            )
        self.repos[name] = {}
        return httpx.Response(201, json=self._repo_payload(name))

    def _tree(self, name: str) -> httpx.Response:
        files = self.repos[name]
        if not files:
            return httpx.Response(409, json={"message": "Git Repository is empty."})
        dirs = sorted({p.split("/")[0] for p in files if "/" in p})
        tree = [{"path": d, "type": "tree", "sha": blob_sha(d)} for d in dirs]
        tree += [
            {"path": p, "type": "blob", "sha": blob_sha(t), "size": len(t.encode("utf-8"))}
            for p, t in sorted(files.items())
        ]
        return httpx.Response(200, json={"sha": "root", "tree": tree, "truncated": self.truncate_tree})

    def _blob(self, name: str, sha: str) -> httpx.Response:
        for text in self.repos[name].values():
            if blob_sha(text) == sha:
                encoded = base64.b64encode(text.encode("utf-8")).decode("ascii")
                return httpx.Response(200, json={"sha": sha, "content": encoded, "encoding": "base64"})
        return httpx.Response(404, json={"message": "Not Found"})

    def _get_contents(self, name: str, file_path: str) -> httpx.Response:
        files = self.repos[name]
        if file_path in files:
            text = files[file_path]
            return httpx.Response(
                200,
                json={
                    "type": "file",
                    "path": file_path,
                    "sha": blob_sha(text),
                    "size": len(text.encode("utf-8")),
                    "content": base64.b64encode(text.encode("utf-8")).decode("ascii"),
                    "html_url": f"https://github.com/{self.login}/{name}/blob/main/{file_path}",
                },
            )
        prefix = file_path.rstrip("/") + "/"
        children = [
            {"type": "file", "name": p[len(prefix):], "path": p, "sha": blob_sha(t), "size": len(t)}
            for p, t in sorted(files.items())
            if p.startswith(prefix) and "/" not in p[len(prefix):]
        ]
        if children:
            return httpx.Response(200, json=children)
        return httpx.Response(404, json={"message": "Not Found"})

    def _put_contents(self, name: str, file_path: str, payload: dict) -> httpx.Response:
        files = self.repos[name]
        existing = files.get(file_path)
        if existing is not None:
            if "sha" not in payload:
                return httpx.Response(422, json={"message": "Invalid request.\n\n\"sha\" wasn't supplied."})
            if payload["sha"] != blob_sha(existing):
                return httpx.Response(409, json={"message": f"{file_path} does not match {payload['sha']}"})
        text = base64.b64decode(payload["content"]).decode("utf-8")
        files[file_path] = text
        self.commits += 1
        commit_sha = hashlib.sha1(f"commit-{self.commits}".encode()).hexdigest()
        return httpx.Response(
            201 if existing is None else 200,
            json={
                "content": {
                    "path": file_path,
                    "sha": blob_sha(text),
                    "html_url": f"https://github.com/{self.login}/{name}/blob/main/{file_path}",
                },
                "commit": {
                    "sha": commit_sha,
                    "message": payload.get("message"),
                    "html_url": f"https://github.com/{self.login}/{name}/commit/{commit_sha}",
                },
            },
        )


# ---------------------------------------------------------------------------
# Component fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def github() -> FakeGitHub:
    fake = FakeGitHub()
    fake.create_repo()
    return fake


@pytest.fixture()
def remote_config() -> RemoteConfig:
    return RemoteConfig(owner="octo", backoff_multiplier=0.0, backoff_max_seconds=0.0)


@pytest.fixture()
def audit_logger(tmp_path: Path) -> AuditLogger:
    return AuditLogger(AuditConfig(file_path=str(tmp_path / "audit.jsonl")))


@pytest.fixture()
def pipeline(audit_logger: AuditLogger) -> SecurityValidationPipeline:
    return SecurityValidationPipeline(audit_logger=audit_logger)


@pytest.fixture()
def store(tmp_path: Path, pipeline: SecurityValidationPipeline, audit_logger: AuditLogger) -> PortfolioStore:
    portfolio = PortfolioStore(
        PortfolioConfig(root_dir=str(tmp_path / "portfolio")),
        pipeline=pipeline,
        audit_logger=audit_logger,
    )
    portfolio.ensure_layout()
    return portfolio


@pytest.fixture()
async def client(github: FakeGitHub, remote_config: RemoteConfig):
    remote = RemotePortfolioClient(remote_config, token="test-token", transport=github.transport)
    yield remote
    await remote.close()


@pytest.fixture()
def settings() -> SettingsStore:
    return SettingsStore(
        SyncConfig(
            enabled=True,
            bulk_upload_enabled=True,
            bulk_download_enabled=True,
        )
    )


@pytest.fixture()
def engine(
    store: PortfolioStore,
    client: RemotePortfolioClient,
    pipeline: SecurityValidationPipeline,
    settings: SettingsStore,
    remote_config: RemoteConfig,
    audit_logger: AuditLogger,
) -> SyncEngine:
    return SyncEngine(
        store=store,
        client=client,
        pipeline=pipeline,
        settings=settings,
        remote_config=remote_config,
        audit_logger=audit_logger,
    )
