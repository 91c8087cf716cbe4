"""Tests for the GitHub adapter."""

import base64

import httpx
import pytest

from prscan.adapters.github import (
    ContentsApiStrategy,
    GitDataStrategy,
    GitHubRepo,
    RawUrlStrategy,
    parse_pr_url,
)
from prscan.errors import TransientFetchError

STRATEGIES = (GitDataStrategy(), ContentsApiStrategy(max_retries=2, backoff=0), RawUrlStrategy())


def b64(text: str) -> str:
    return base64.b64encode(text.encode()).decode()


def repo_with(handler, **kwargs) -> GitHubRepo:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    kwargs.setdefault("strategies", STRATEGIES)
    return GitHubRepo(token="test-token", client=client, **kwargs)


class TestParsePrUrl:
    """Tests for pull request URL parsing."""

    def test_valid(self):
        """Test extracting owner, repo and number."""
        assert parse_pr_url("https://github.com/acme/web/pull/42") == ("acme", "web", 42)
        assert parse_pr_url("https://github.com/acme/web/pull/42/files") == ("acme", "web", 42)

    def test_invalid(self):
        """Test that other URLs are rejected."""
        assert parse_pr_url("https://github.com/acme/web/issues/42") is None


class TestPullRequests:
    """Tests for PR info and changed files."""

    @pytest.mark.asyncio
    async def test_get_pr_info(self):
        """Test head and base revisions are read."""
        seen_auth = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen_auth.append(request.headers.get("Authorization"))
            assert request.url.path == "/repos/acme/web/pulls/7"
            return httpx.Response(200, json={
                "title": "Bump deps",
                "head": {"sha": "headsha"},
                "base": {"sha": "basesha"},
            })

        info = await repo_with(handler).get_pr_info("acme", "web", 7)

        assert (info.number, info.head_sha, info.base_sha, info.title) == (7, "headsha", "basesha", "Bump deps")
        assert seen_auth == ["Bearer test-token"]

    @pytest.mark.asyncio
    async def test_get_pr_info_retries_exhausted(self):
        """Test that persistent failures raise TransientFetchError."""
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(502)

        with pytest.raises(TransientFetchError):
            await repo_with(handler, max_retries=3).get_pr_info("acme", "web", 7)

        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_list_pr_files_pages(self):
        """Test that file listing follows pages until a short page."""
        pages = {
            "1": [{"filename": f"f{i}.js", "status": "modified"} for i in range(2)],
            "2": [{"filename": "yarn.lock", "status": "renamed", "previous_filename": "old/yarn.lock"}],
        }

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.params["per_page"] == "2"
            return httpx.Response(200, json=pages[request.url.params["page"]])

        files = await repo_with(handler).list_pr_files("acme", "web", 7, per_page=2)

        assert [f.filename for f in files] == ["f0.js", "f1.js", "yarn.lock"]
        assert files[-1].previous_filename == "old/yarn.lock"

    @pytest.mark.asyncio
    async def test_create_comment(self):
        """Test posting a comment on the PR conversation."""
        posted = []

        def handler(request: httpx.Request) -> httpx.Response:
            posted.append((request.method, request.url.path, request.content))
            return httpx.Response(201, json={"id": 1})

        await repo_with(handler).create_comment("acme", "web", 7, "hello")

        assert posted[0][0] == "POST"
        assert posted[0][1] == "/repos/acme/web/issues/7/comments"
        assert b"hello" in posted[0][2]


class TestFileContent:
    """Tests for the ordered content fetch strategies."""

    @pytest.mark.asyncio
    async def test_git_data_strategy(self):
        """Test walking commit, trees and blob."""

        def handler(request: httpx.Request) -> httpx.Response:
            path = request.url.path
            if path == "/repos/acme/web/git/commits/abc":
                return httpx.Response(200, json={"tree": {"sha": "root"}})
            if path == "/repos/acme/web/git/trees/root":
                return httpx.Response(200, json={"tree": [{"path": "app", "type": "tree", "sha": "apptree"}]})
            if path == "/repos/acme/web/git/trees/apptree":
                return httpx.Response(200, json={"tree": [{"path": "yarn.lock", "type": "blob", "sha": "blob1"}]})
            if path == "/repos/acme/web/git/blobs/blob1":
                return httpx.Response(200, json={"encoding": "base64", "content": b64("lock content")})
            return httpx.Response(404)

        content = await repo_with(handler).get_text_file_content("acme", "web", "app/yarn.lock", "abc")

        assert content == "lock content"

    @pytest.mark.asyncio
    async def test_falls_back_to_contents_api(self):
        """Test that a failing Git Data API falls through to the contents API."""
        hits = []

        def handler(request: httpx.Request) -> httpx.Response:
            hits.append(request.url.path)
            if "/git/" in request.url.path:
                return httpx.Response(500)
            if request.url.path == "/repos/acme/web/contents/yarn.lock":
                assert request.url.params["ref"] == "abc"
                return httpx.Response(200, json={"content": b64("from contents")})
            return httpx.Response(404)

        content = await repo_with(handler).get_text_file_content("acme", "web", "yarn.lock", "abc")

        assert content == "from contents"
        assert hits[0] == "/repos/acme/web/git/commits/abc"

    @pytest.mark.asyncio
    async def test_contents_api_download_url(self):
        """Test that large files are read through their download_url."""

        def handler(request: httpx.Request) -> httpx.Response:
            if "/git/" in request.url.path:
                return httpx.Response(404)
            if request.url.host == "api.github.com":
                return httpx.Response(200, json={
                    "content": "",
                    "download_url": "https://raw.githubusercontent.com/acme/web/abc/yarn.lock",
                })
            return httpx.Response(200, text="large lock")

        content = await repo_with(handler).get_text_file_content("acme", "web", "yarn.lock", "abc")

        assert content == "large lock"

    @pytest.mark.asyncio
    async def test_falls_back_to_raw(self):
        """Test the raw mirror as the last strategy."""

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.host == "raw.githubusercontent.com":
                assert request.url.path == "/acme/web/abc/yarn.lock"
                return httpx.Response(200, text="from raw")
            return httpx.Response(500)

        content = await repo_with(handler).get_text_file_content("acme", "web", "yarn.lock", "abc")

        assert content == "from raw"

    @pytest.mark.asyncio
    async def test_all_strategies_fail(self):
        """Test that None is returned when every strategy fails."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(404)

        assert await repo_with(handler).get_text_file_content("acme", "web", "yarn.lock", "abc") is None
