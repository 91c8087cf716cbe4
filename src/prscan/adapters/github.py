"""GitHub access for pull request metadata and file content."""

from __future__ import annotations

import asyncio
import base64
import logging
import os
import re
from abc import ABC, abstractmethod

import httpx

from prscan.errors import TransientFetchError
from prscan.models.schemas import ChangedFile, PullRequestInfo

logger = logging.getLogger(__name__)

PR_URL_PATTERN = re.compile(r"https://github\.com/([^/\s]+)/([^/\s]+)/pull/(\d+)")


def parse_pr_url(url: str) -> tuple[str, str, int] | None:
    """Split a pull request URL into (owner, repo, number)."""
    match = PR_URL_PATTERN.search(url)
    if not match:
        return None
    return match.group(1), match.group(2), int(match.group(3))


class ContentStrategy(ABC):
    """One way of reading a file at a revision."""

    name: str = ""

    @abstractmethod
    async def fetch(self, repo: GitHubRepo, owner: str, name: str, path: str, ref: str) -> str | None:
        """Return file text, or None if this strategy cannot provide it."""
        ...


class GitDataStrategy(ContentStrategy):
    """Walk commit -> tree -> blob through the Git Data API."""

    name = "git-data"

    async def fetch(self, repo: GitHubRepo, owner: str, name: str, path: str, ref: str) -> str | None:
        commit = await repo.api_get(f"/repos/{owner}/{name}/git/commits/{ref}")
        tree_sha = commit["tree"]["sha"]

        parts = path.split("/")
        for i, part in enumerate(parts):
            tree = await repo.api_get(f"/repos/{owner}/{name}/git/trees/{tree_sha}")
            item = next((entry for entry in tree.get("tree", []) if entry.get("path") == part), None)
            if item is None:
                return None

            is_last = i == len(parts) - 1
            if is_last and item.get("type") == "blob":
                blob = await repo.api_get(f"/repos/{owner}/{name}/git/blobs/{item['sha']}")
                if blob.get("encoding") == "base64":
                    return base64.b64decode(blob["content"]).decode("utf-8")
                return None
            if is_last or item.get("type") != "tree":
                return None
            tree_sha = item["sha"]

        return None


class ContentsApiStrategy(ContentStrategy):
    """Repository contents API, with linear backoff between attempts."""

    name = "contents"

    def __init__(self, max_retries: int = 3, backoff: float = 0.2) -> None:
        self.max_retries = max_retries
        self.backoff = backoff

    async def fetch(self, repo: GitHubRepo, owner: str, name: str, path: str, ref: str) -> str | None:
        for attempt in range(1, self.max_retries + 1):
            try:
                logger.info(f"Fetching {owner}/{name}/{path}@{ref} via Contents API (attempt {attempt})")
                data = await repo.api_get(f"/repos/{owner}/{name}/contents/{path}", params={"ref": ref})
                if isinstance(data, dict) and data.get("content"):
                    return base64.b64decode(data["content"]).decode("utf-8")
                # Files over 1 MB come back without inline content
                if isinstance(data, dict) and data.get("download_url"):
                    return await repo.raw_get(data["download_url"])
                return None
            except (httpx.HTTPError, TransientFetchError) as e:
                logger.warning(f"Contents API attempt {attempt} failed for {path}: {e}")
                if attempt < self.max_retries:
                    await asyncio.sleep(self.backoff * attempt)
        return None


class RawUrlStrategy(ContentStrategy):
    """raw.githubusercontent.com mirror."""

    name = "raw"
    RAW_URL = "https://raw.githubusercontent.com"

    async def fetch(self, repo: GitHubRepo, owner: str, name: str, path: str, ref: str) -> str | None:
        return await repo.raw_get(f"{self.RAW_URL}/{owner}/{name}/{ref}/{path}")


DEFAULT_STRATEGIES: tuple[ContentStrategy, ...] = (
    GitDataStrategy(),
    ContentsApiStrategy(),
    RawUrlStrategy(),
)


class GitHubRepo:
    """Reads pull requests and file revisions from the GitHub REST API.

    Requires a GitHub personal access token for higher rate limits.
    Set GITHUB_TOKEN environment variable or pass token to constructor.
    """

    BASE_URL = "https://api.github.com"

    def __init__(
        self,
        token: str | None = None,
        client: httpx.AsyncClient | None = None,
        max_retries: int = 3,
        strategies: tuple[ContentStrategy, ...] = DEFAULT_STRATEGIES,
    ) -> None:
        """Initialize the client.

        Args:
            token: GitHub personal access token. If not provided, uses GITHUB_TOKEN env var.
            client: Optional httpx client. If not provided, a new client is created.
            max_retries: Attempts for PR info and file list requests.
            strategies: Content fetch strategies, tried in order.
        """
        self._token = token or os.environ.get("GITHUB_TOKEN")
        self._client = client
        self.max_retries = max_retries
        self.strategies = strategies

    def _headers(self) -> dict[str, str]:
        """Get headers for GitHub API requests."""
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create an HTTP client."""
        if self._client is not None:
            return self._client
        return httpx.AsyncClient(timeout=30.0, follow_redirects=True)

    async def api_get(self, path: str, params: dict | None = None) -> dict | list:
        """GET a JSON resource from the API. Raises on any HTTP error."""
        client = await self._get_client()
        try:
            response = await client.get(f"{self.BASE_URL}{path}", params=params, headers=self._headers())
            response.raise_for_status()
            return response.json()
        finally:
            if self._client is None:
                await client.aclose()

    async def raw_get(self, url: str) -> str | None:
        """GET a raw text resource; None unless the response is 200."""
        client = await self._get_client()
        try:
            response = await client.get(url)
            if response.status_code != 200:
                return None
            return response.text
        finally:
            if self._client is None:
                await client.aclose()

    async def _api_get_with_retry(self, path: str, params: dict | None = None) -> dict | list:
        last_exc: Exception | None = None
        for attempt in range(1, self.max_retries + 1):
            try:
                return await self.api_get(path, params=params)
            except httpx.HTTPError as e:
                logger.warning(f"GitHub request {path} failed (attempt {attempt}/{self.max_retries}): {e}")
                last_exc = e
        raise TransientFetchError(f"{self.BASE_URL}{path}", self.max_retries, last_exc) from last_exc

    async def get_pr_info(self, owner: str, repo: str, number: int) -> PullRequestInfo:
        """Fetch head and base revisions of a pull request."""
        logger.info(f"Fetching PR info {owner}/{repo}#{number}")
        data = await self._api_get_with_retry(f"/repos/{owner}/{repo}/pulls/{number}")
        return PullRequestInfo(
            number=number,
            head_sha=data["head"]["sha"],
            base_sha=data["base"]["sha"],
            title=data.get("title") or "",
        )

    async def list_pr_files(
        self,
        owner: str,
        repo: str,
        number: int,
        per_page: int = 100,
    ) -> list[ChangedFile]:
        """List all files changed by a pull request, following pages."""
        files: list[ChangedFile] = []
        page = 1
        while True:
            logger.info(f"Fetching PR files {owner}/{repo}#{number} page {page}")
            data = await self._api_get_with_retry(
                f"/repos/{owner}/{repo}/pulls/{number}/files",
                params={"per_page": per_page, "page": page},
            )
            files.extend(
                ChangedFile(
                    filename=item["filename"],
                    status=item["status"],
                    previous_filename=item.get("previous_filename"),
                )
                for item in data
            )
            if len(data) < per_page:
                break
            page += 1
        return files

    async def get_text_file_content(self, owner: str, repo: str, path: str, ref: str) -> str | None:
        """Read a file at a revision, trying each strategy in order.

        Returns None when every strategy fails.
        """
        for strategy in self.strategies:
            try:
                logger.info(f"Fetching {owner}/{repo}/{path}@{ref} via {strategy.name}")
                content = await strategy.fetch(self, owner, repo, path, ref)
            except (httpx.HTTPError, TransientFetchError, KeyError, ValueError) as e:
                logger.warning(f"{strategy.name} strategy failed for {path}: {e}")
                continue
            if content is not None:
                return content

        logger.error(f"All methods failed to fetch {owner}/{repo}/{path}@{ref}")
        return None

    async def create_comment(self, owner: str, repo: str, number: int, body: str) -> None:
        """Post a comment on a pull request."""
        client = await self._get_client()
        try:
            response = await client.post(
                f"{self.BASE_URL}/repos/{owner}/{repo}/issues/{number}/comments",
                json={"body": body},
                headers=self._headers(),
            )
            response.raise_for_status()
        finally:
            if self._client is None:
                await client.aclose()
