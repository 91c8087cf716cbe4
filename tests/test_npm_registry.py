"""Tests for the npm registry client."""

import httpx
import pytest

from prscan.adapters.npm import NpmRegistry
from prscan.errors import PackageNotFoundError, TransientFetchError


def registry_with(handler, max_retries: int = 3) -> NpmRegistry:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return NpmRegistry(client=client, max_retries=max_retries, retry_delay=0)


class TestFetchMetadata:
    """Tests for packument retrieval and normalization."""

    @pytest.mark.asyncio
    async def test_fetch_metadata(self, fake_registry, registry_client, make_packument):
        """Test that a packument is normalized into PackageMetadata."""
        fake_registry.add(make_packument("left-pad", {"1.0.0": 300, "1.1.0": 10}), downloads=5)

        metadata = await registry_client.fetch_metadata("left-pad")

        assert metadata.name == "left-pad"
        assert metadata.latest_version == "1.1.0"
        assert set(metadata.versions) == {"1.0.0", "1.1.0"}
        assert metadata.tarball_url("1.1.0") == "https://registry.npmjs.org/left-pad/-/left-pad-1.1.0.tgz"
        assert metadata.published_at("1.1.0") is not None
        assert metadata.repository_url == "https://github.com/example/left-pad"
        assert metadata.license == "MIT"

    @pytest.mark.asyncio
    async def test_missing_package_fails_fast(self):
        """Test that a 404 raises PackageNotFoundError without retrying."""
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(404, json={"error": "Not found"})

        with pytest.raises(PackageNotFoundError):
            await registry_with(handler).fetch_metadata("does-not-exist")

        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_scoped_name_is_encoded(self):
        """Test that scoped package names are requested as @scope%2Fname."""
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.url.raw_path)
            return httpx.Response(200, json={"name": "@scope/pkg", "versions": {}})

        await registry_with(handler).fetch_metadata("@scope/pkg")

        assert seen == [b"/@scope%2Fpkg"]

    def test_parse_metadata_skips_unusable_entries(self):
        """Test that unpublished markers and dist-less versions are dropped."""
        metadata = NpmRegistry.parse_metadata(
            {
                "name": "ghost",
                "dist-tags": {"latest": "1.0.0"},
                "time": {
                    "1.0.0": "2024-01-01T00:00:00.000Z",
                    "unpublished": {"time": "2024-02-01T00:00:00.000Z"},
                },
                "versions": {
                    "1.0.0": {"dist": {"tarball": "https://example.com/ghost-1.0.0.tgz"}},
                    "0.0.1": {"version": "0.0.1"},
                },
                "license": {"type": "ISC"},
                "repository": "github:owner/ghost",
            },
            "ghost",
        )

        assert list(metadata.versions) == ["1.0.0"]
        assert "unpublished" not in metadata.time
        assert metadata.license == "ISC"
        assert metadata.repository_url == "https://github.com/owner/ghost"


class TestRetries:
    """Tests for the bounded retry helper."""

    @pytest.mark.asyncio
    async def test_retries_then_succeeds(self):
        """Test that transient failures are retried."""
        responses = iter([
            httpx.Response(503),
            httpx.Response(429),
            httpx.Response(200, json={"downloads": 42, "start": "a", "end": "b", "package": "x"}),
        ])

        def handler(request: httpx.Request) -> httpx.Response:
            return next(responses)

        stats = await registry_with(handler).fetch_download_stats("x")

        assert stats.downloads == 42

    @pytest.mark.asyncio
    async def test_transport_errors_exhaust_retries(self):
        """Test that persistent transport errors raise TransientFetchError."""
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(TransientFetchError) as exc_info:
            await registry_with(handler, max_retries=3).fetch_metadata("x")

        assert len(calls) == 3
        assert exc_info.value.attempts == 3

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self):
        """Test that a non-retryable status fails immediately."""
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(403)

        with pytest.raises(TransientFetchError):
            await registry_with(handler).fetch_metadata("x")

        assert len(calls) == 1


class TestDownloadsAndTarballs:
    """Tests for download statistics and tarball retrieval."""

    @pytest.mark.asyncio
    async def test_fetch_download_stats(self, fake_registry, registry_client, make_packument):
        """Test last-week download statistics."""
        fake_registry.add(make_packument("left-pad", {"1.0.0": 300}), downloads=1234)

        stats = await registry_client.fetch_download_stats("left-pad")

        assert stats.downloads == 1234
        assert stats.package == "left-pad"
        assert fake_registry.requests[-1].url.path == "/downloads/point/last-week/left-pad"

    @pytest.mark.asyncio
    async def test_fetch_and_extract(self, fake_registry, registry_client, make_packument, build_tarball):
        """Test downloading and extracting a tarball in one call."""
        packument = make_packument("left-pad", {"1.0.0": 300})
        tarball = build_tarball({"package/index.js": "module.exports = 1;", "package/README.md": "#"})
        fake_registry.add(packument, downloads=10, tarballs={"1.0.0": tarball})

        files = await registry_client.fetch_and_extract(
            packument["versions"]["1.0.0"]["dist"]["tarball"],
            "left-pad",
            path_filter=lambda path: path.endswith(".js"),
        )

        assert [f.path for f in files] == ["package/index.js"]
