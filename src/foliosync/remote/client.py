"""Remote portfolio client over the GitHub contents and git-trees APIs.

Every method returns a typed value or raises ``RemoteError``; response
bodies are checked for the fields we read before anything is returned, so a
missing ``commit`` or ``content`` key becomes ``INVALID_RESPONSE`` rather
than a ``None`` deep inside the caller.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import logging
from typing import Any
from urllib.parse import quote

import httpx
from tenacity import AsyncRetrying
from tenacity import retry_if_exception
from tenacity import stop_after_attempt
from tenacity import wait_exponential

from foliosync.config import RemoteConfig
from foliosync.errors import ConfigurationError
from foliosync.errors import ErrorCode
from foliosync.errors import RemoteError
from foliosync.errors import RemoteNotFound
from foliosync.models.elements import ElementType
from foliosync.models.remote import BlobContent
from foliosync.models.remote import CommitRef
from foliosync.models.remote import RepoRef
from foliosync.models.remote import RepoSpec
from foliosync.models.remote import TreeEntry
from foliosync.observability import increment_counter

logger = logging.getLogger(__name__)

_TRANSIENT_CODES = frozenset({ErrorCode.SERVER_ERROR, ErrorCode.NETWORK_ERROR, ErrorCode.TIMEOUT})

README_TEMPLATE = """# {name}

Personal element portfolio.

| Directory | Contents |
| --- | --- |
{rows}
"""


def _is_transient(exc: BaseException) -> bool:
    """Retry 5xx, connection failures and timeouts; never 4xx or rate limits."""
    return isinstance(exc, RemoteError) and exc.retryable and exc.code in _TRANSIENT_CODES


def _log_retry(retry_state: Any) -> None:
    increment_counter("remote.retries")
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "Retrying remote call (attempt %d): %r",
        retry_state.attempt_number,
        exc,
    )


def error_from_response(response: httpx.Response) -> RemoteError:
    """Map a non-2xx response to the matching typed error."""
    status = response.status_code
    detail = _error_message(response)
    where = f"{response.request.method} {response.request.url.path}"
    message = f"{where} returned {status}: {detail}"

    if status == 401:
        return RemoteError(message, code=ErrorCode.AUTH_FAILED, status=status)
    if status == 403:
        remaining = response.headers.get("x-ratelimit-remaining")
        if "rate limit" in detail.lower() or remaining == "0":
            return RemoteError(message, code=ErrorCode.RATE_LIMITED, retryable=True, status=status)
        return RemoteError(message, code=ErrorCode.AUTH_FAILED, status=status)
    if status == 404:
        return RemoteNotFound(message)
    if status == 409:
        return RemoteError(message, code=ErrorCode.CONFLICT, status=status)
    if status in (400, 422):
        return RemoteError(message, code=ErrorCode.REMOTE_VALIDATION_FAILED, status=status)
    if status == 429:
        return RemoteError(message, code=ErrorCode.RATE_LIMITED, retryable=True, status=status)
    if status >= 500:
        return RemoteError(message, code=ErrorCode.SERVER_ERROR, retryable=True, status=status)
    return RemoteError(message, code=ErrorCode.INVALID_RESPONSE, status=status)


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200] or response.reason_phrase
    if not isinstance(body, dict) or not body.get("message"):
        return response.reason_phrase
    message = str(body["message"])
    errors = body.get("errors")
    if isinstance(errors, list):
        details = [str(e.get("message")) for e in errors if isinstance(e, dict) and e.get("message")]
        if details:
            message = f"{message} ({'; '.join(details)})"
    return message


def _invalid(what: str) -> RemoteError:
    return RemoteError(f"Unexpected response shape: {what}", code=ErrorCode.INVALID_RESPONSE)


class RemotePortfolioClient:
    """Thin adapter over a per-user portfolio repository."""

    def __init__(
        self,
        config: RemoteConfig,
        *,
        token: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
            "User-Agent": "foliosync",
        }
        if token:
            headers["Authorization"] = f"Bearer {token}"
            logger.debug(
                "remote client using token_fp=%s",
                hashlib.sha256(token.encode("utf-8")).hexdigest()[:12],
            )
        self._client = httpx.AsyncClient(
            base_url=config.api_base_url,
            headers=headers,
            timeout=httpx.Timeout(config.timeout_seconds),
            transport=transport,
        )
        self._owner: str | None = config.owner

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> RemotePortfolioClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _request(
        self,
        method: str,
        url: str,
        *,
        json: dict | None = None,
        params: dict | None = None,
    ) -> httpx.Response:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(max(1, self.config.max_attempts)),
            wait=wait_exponential(
                multiplier=self.config.backoff_multiplier,
                max=self.config.backoff_max_seconds,
            ),
            retry=retry_if_exception(_is_transient),
            before_sleep=_log_retry,
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                return await self._send_once(method, url, json=json, params=params)
        raise RemoteError(f"{method} {url}: retries exhausted", code=ErrorCode.NETWORK_ERROR)

    async def _send_once(
        self,
        method: str,
        url: str,
        *,
        json: dict | None,
        params: dict | None,
    ) -> httpx.Response:
        try:
            response = await self._client.request(method, url, json=json, params=params)
        except httpx.TimeoutException as exc:
            raise RemoteError(
                f"{method} {url} timed out after {self.config.timeout_seconds}s",
                code=ErrorCode.TIMEOUT,
                retryable=True,
            ) from exc
        except httpx.TransportError as exc:
            raise RemoteError(
                f"{method} {url} failed: {exc}",
                code=ErrorCode.NETWORK_ERROR,
                retryable=True,
            ) from exc
        except httpx.RequestError as exc:
            raise RemoteError(
                f"{method} {url} failed: {type(exc).__name__}: {exc}",
                code=ErrorCode.NETWORK_ERROR,
            ) from exc
        logger.debug("%s %s -> %d", method, url, response.status_code)
        if response.is_success:
            return response
        raise error_from_response(response)

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as exc:
            raise _invalid(f"{response.request.url.path} did not return JSON") from exc

    # ------------------------------------------------------------------
    # Repository
    # ------------------------------------------------------------------

    async def resolve_owner(self) -> str:
        """Account that owns the portfolio; asks the API when not configured."""
        if self._owner:
            return self._owner
        data = self._json(await self._request("GET", "/user"))
        if not isinstance(data, dict) or not data.get("login"):
            raise _invalid("/user has no 'login'")
        self._owner = str(data["login"])
        return self._owner

    async def get_repository(self, name: str | None = None) -> RepoRef:
        repo_name = name or self._configured_repository()
        owner = await self.resolve_owner()
        data = self._json(await self._request("GET", f"/repos/{owner}/{repo_name}"))
        return self._repo_ref(data, owner, repo_name)

    async def ensure_repository(
        self,
        spec: RepoSpec | None = None,
        *,
        consent: bool = False,
        seed: bool = True,
    ) -> RepoRef:
        """Return the portfolio repository, creating it only with explicit consent."""
        spec = spec or RepoSpec(name=self._configured_repository(), private=self.config.private)
        try:
            return await self.get_repository(spec.name)
        except RemoteNotFound:
            if not consent:
                raise ConfigurationError(
                    f"Repository {spec.name!r} does not exist and creation was not confirmed",
                    code=ErrorCode.CONSENT_REQUIRED,
                ) from None

        owner = await self.resolve_owner()
        payload = {
            "name": spec.name,
            "description": spec.description,
            "private": spec.private,
            "auto_init": True,
        }
        try:
            data = self._json(await self._request("POST", "/user/repos", json=payload))
        except RemoteError as exc:
            # Another client created it between our GET and POST.
            if exc.code is ErrorCode.REMOTE_VALIDATION_FAILED and "already exists" in exc.message.lower():
                return await self.get_repository(spec.name)
            raise
        repo = self._repo_ref(data, owner, spec.name).model_copy(update={"created": True})
        logger.info("created portfolio repository %s", repo.full_name)
        if seed:
            await self.seed_structure(repo)
        return repo

    async def seed_structure(self, repo: RepoRef) -> list[CommitRef]:
        """Write a README and one ``.gitkeep`` per element directory when absent."""
        rows = "\n".join(f"| `{t.directory}/` | {t.value} elements |" for t in ElementType)
        files = {"README.md": README_TEMPLATE.format(name=repo.name, rows=rows)}
        for element_type in ElementType:
            files[f"{element_type.directory}/.gitkeep"] = ""

        commits: list[CommitRef] = []
        for path, text in files.items():
            try:
                await self.get_blob(repo, path)
                continue
            except RemoteNotFound:
                pass
            commits.append(await self.put_file(repo, path, text, f"Initialize {path}"))
        return commits

    def _configured_repository(self) -> str:
        if not self.config.repository:
            raise ConfigurationError(
                "No remote repository configured",
                code=ErrorCode.REMOTE_NOT_CONFIGURED,
            )
        return self.config.repository

    def _repo_ref(self, data: Any, owner: str, name: str) -> RepoRef:
        if not isinstance(data, dict) or "name" not in data:
            raise _invalid(f"repository {owner}/{name} payload")
        owner_data = data.get("owner") if isinstance(data.get("owner"), dict) else {}
        return RepoRef(
            owner=str(owner_data.get("login") or owner),
            name=str(data["name"]),
            html_url=str(data.get("html_url") or ""),
            default_branch=str(data.get("default_branch") or self.config.branch),
        )

    # ------------------------------------------------------------------
    # Tree
    # ------------------------------------------------------------------

    async def list_tree(self, repo: RepoRef, path: str | None = None) -> list[TreeEntry]:
        """All entries under *path* (whole repository by default), sorted by path.

        Uses one recursive git-trees call.  When GitHub truncates that
        response, each element directory is listed separately; any directory
        failing with something other than 404 raises ``PARTIAL_LISTING``.
        """
        try:
            response = await self._request(
                "GET",
                f"/repos/{repo.owner}/{repo.name}/git/trees/{quote(repo.default_branch)}",
                params={"recursive": "1"},
            )
        except RemoteError as exc:
            if exc.code is ErrorCode.CONFLICT:
                # Empty repository: no commits, no tree.
                return []
            raise
        data = self._json(response)
        if not isinstance(data, dict) or not isinstance(data.get("tree"), list):
            raise _invalid("git tree has no 'tree' list")

        if data.get("truncated"):
            logger.warning("tree listing for %s truncated; listing per directory", repo.full_name)
            entries = await self._list_by_directory(repo)
        else:
            entries = [self._tree_entry(item) for item in data["tree"]]

        if path:
            prefix = path.strip("/") + "/"
            entries = [e for e in entries if e.path.startswith(prefix)]
        return sorted(entries, key=lambda e: e.path)

    async def _list_by_directory(self, repo: RepoRef) -> list[TreeEntry]:
        entries: list[TreeEntry] = []
        for element_type in ElementType:
            directory = element_type.directory
            try:
                response = await self._request(
                    "GET",
                    self._contents_url(repo, directory),
                    params={"ref": repo.default_branch},
                )
            except RemoteNotFound:
                continue
            except RemoteError as exc:
                raise RemoteError(
                    f"listing {directory}/ failed, refusing a partial result: {exc.message}",
                    code=ErrorCode.PARTIAL_LISTING,
                    retryable=exc.retryable,
                    status=exc.status,
                ) from exc
            items = self._json(response)
            if not isinstance(items, list):
                raise _invalid(f"{directory}/ is not a directory listing")
            for item in items:
                if isinstance(item, dict) and item.get("type") == "file":
                    entries.append(
                        TreeEntry(
                            path=str(item.get("path") or f"{directory}/{item.get('name')}"),
                            kind="blob",
                            sha=str(item.get("sha") or ""),
                            size=item.get("size"),
                        )
                    )
        return entries

    @staticmethod
    def _tree_entry(item: Any) -> TreeEntry:
        if not isinstance(item, dict) or not item.get("path") or not item.get("sha"):
            raise _invalid("tree entry without path/sha")
        return TreeEntry(
            path=str(item["path"]),
            kind=str(item.get("type") or "blob"),
            sha=str(item["sha"]),
            size=item.get("size"),
        )

    # ------------------------------------------------------------------
    # Files
    # ------------------------------------------------------------------

    @staticmethod
    def _contents_url(repo: RepoRef, path: str) -> str:
        return f"/repos/{repo.owner}/{repo.name}/contents/{quote(path)}"

    async def get_blob(self, repo: RepoRef, path: str) -> BlobContent:
        """Decoded file content; a missing path raises ``RemoteNotFound``."""
        data = self._json(
            await self._request(
                "GET",
                self._contents_url(repo, path),
                params={"ref": repo.default_branch},
            )
        )
        if not isinstance(data, dict) or data.get("type") not in (None, "file"):
            raise _invalid(f"{path} is not a file")
        sha = data.get("sha")
        if not sha:
            raise _invalid(f"{path} has no sha")

        encoded = data.get("content")
        if not encoded and data.get("size"):
            # Files over 1 MB come back without inline content.
            blob = self._json(
                await self._request("GET", f"/repos/{repo.owner}/{repo.name}/git/blobs/{sha}")
            )
            encoded = blob.get("content") if isinstance(blob, dict) else None
            if encoded is None:
                raise _invalid(f"blob {sha} has no content")
        try:
            text = base64.b64decode(encoded or "").decode("utf-8")
        except (binascii.Error, UnicodeDecodeError) as exc:
            raise _invalid(f"{path} content is not base64 UTF-8") from exc
        return BlobContent(path=path, sha=str(sha), text=text, html_url=data.get("html_url"))

    async def put_file(
        self,
        repo: RepoRef,
        path: str,
        content: str,
        message: str,
        *,
        sha: str | None = None,
    ) -> CommitRef:
        """Create or update *path* in one commit; pass *sha* when updating."""
        payload: dict[str, Any] = {
            "message": message,
            "content": base64.b64encode(content.encode("utf-8")).decode("ascii"),
            "branch": repo.default_branch,
        }
        if sha:
            payload["sha"] = sha
        data = self._json(await self._request("PUT", self._contents_url(repo, path), json=payload))

        commit = data.get("commit") if isinstance(data, dict) else None
        if not isinstance(commit, dict) or not commit.get("sha"):
            raise _invalid(f"PUT {path} returned no commit")
        content_info = data.get("content") if isinstance(data.get("content"), dict) else {}
        html_url = (
            commit.get("html_url")
            or content_info.get("html_url")
            or f"https://github.com/{repo.owner}/{repo.name}/blob/{repo.default_branch}/{path}"
        )
        return CommitRef(
            sha=str(commit["sha"]),
            path=path,
            blob_sha=content_info.get("sha"),
            html_url=str(html_url),
        )
