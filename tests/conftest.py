"""Shared fixtures for prscan tests."""

import io
import json
import tarfile
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from prscan.adapters.npm import NpmRegistry

NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def now() -> datetime:
    """Fixed clock for freshness checks."""
    return NOW


@pytest.fixture
def build_tarball():
    """Factory that builds a gzipped tarball from a path -> content mapping.

    Paths ending with "/" become directory entries.
    """

    def _build(files: dict[str, str | bytes], compress: bool = True) -> bytes:
        buf = io.BytesIO()
        with tarfile.open(fileobj=buf, mode="w:gz" if compress else "w") as tar:
            for path, content in files.items():
                info = tarfile.TarInfo(path.rstrip("/"))
                info.mtime = int(NOW.timestamp())
                if path.endswith("/"):
                    info.type = tarfile.DIRTYPE
                    info.mode = 0o755
                    tar.addfile(info)
                    continue
                data = content.encode() if isinstance(content, str) else content
                info.size = len(data)
                info.mode = 0o644
                tar.addfile(info, io.BytesIO(data))
        return buf.getvalue()

    return _build


@pytest.fixture
def make_packument():
    """Factory for registry packuments.

    ``versions`` maps version -> days since publish relative to NOW.
    """

    def _make(name: str, versions: dict[str, int], latest: str | None = None) -> dict:
        latest = latest or list(versions)[-1]
        return {
            "name": name,
            "description": f"The {name} package",
            "license": "MIT",
            "repository": {"type": "git", "url": f"git+https://github.com/example/{name}.git"},
            "dist-tags": {"latest": latest},
            "time": {
                "created": (NOW - timedelta(days=400)).isoformat(),
                **{v: (NOW - timedelta(days=age)).isoformat() for v, age in versions.items()},
            },
            "versions": {
                v: {
                    "name": name,
                    "version": v,
                    "dist": {
                        "tarball": f"https://registry.npmjs.org/{name}/-/{name}-{v}.tgz",
                        "shasum": "0" * 40,
                    },
                }
                for v in versions
            },
        }

    return _make


class FakeRegistry:
    """In-memory npm registry served through httpx.MockTransport."""

    def __init__(self) -> None:
        self.packuments: dict[str, dict] = {}
        self.downloads: dict[str, int] = {}
        self.tarballs: dict[str, bytes] = {}
        self.requests: list[httpx.Request] = []

    def add(self, packument: dict, downloads: int, tarballs: dict[str, bytes] | None = None) -> None:
        name = packument["name"]
        self.packuments[name] = packument
        self.downloads[name] = downloads
        for version, data in (tarballs or {}).items():
            self.tarballs[packument["versions"][version]["dist"]["tarball"]] = data

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = str(request.url)

        if url in self.tarballs:
            return httpx.Response(200, content=self.tarballs[url])

        if request.url.host == "api.npmjs.org":
            # /downloads/point/{period}/{name}
            name = request.url.path.split("/", 4)[4]
            if name not in self.downloads:
                return httpx.Response(404, json={"error": "package not found"})
            return httpx.Response(200, json={
                "downloads": self.downloads[name],
                "start": "2025-05-25",
                "end": "2025-05-31",
                "package": name,
            })

        if request.url.host == "registry.npmjs.org":
            name = request.url.path.lstrip("/")
            if name in self.packuments:
                return httpx.Response(200, content=json.dumps(self.packuments[name]))

        return httpx.Response(404, json={"error": "Not found"})


@pytest.fixture
def fake_registry() -> FakeRegistry:
    return FakeRegistry()


@pytest.fixture
def registry_client(fake_registry):
    """NpmRegistry wired to the fake registry, without retry delays."""
    client = httpx.AsyncClient(transport=httpx.MockTransport(fake_registry.handler))
    return NpmRegistry(client=client, max_retries=3, retry_delay=0)
