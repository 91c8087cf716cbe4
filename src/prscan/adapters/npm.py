"""NPM registry client."""

import asyncio
import logging
from datetime import datetime

import httpx

from prscan.adapters.archive import (
    DEFAULT_MAX_FILE_SIZE,
    DEFAULT_MAX_TOTAL_SIZE,
    PathFilter,
    extract_tar_gz,
)
from prscan.errors import PackageNotFoundError, TransientFetchError
from prscan.models.schemas import DownloadStats, ExtractedFile, PackageMetadata

logger = logging.getLogger(__name__)

# Status codes worth another attempt
RETRYABLE_STATUS = {408, 429, 500, 502, 503, 504}


class NpmRegistry:
    """Client for the NPM registry.

    Data sources:
    - Package metadata: https://registry.npmjs.org/{package}
    - Download stats: https://api.npmjs.org/downloads/point/{period}/{package}
    - Tarballs: the ``dist.tarball`` URL of each version
    """

    REGISTRY_URL = "https://registry.npmjs.org"
    DOWNLOADS_URL = "https://api.npmjs.org/downloads"

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        max_retries: int = 3,
        retry_delay: float = 0.5,
    ) -> None:
        """Initialize the registry client.

        Args:
            client: Optional httpx client for making requests.
            max_retries: Attempts per request before giving up.
            retry_delay: Seconds to wait between attempts.
        """
        self._client = client
        self.max_retries = max_retries
        self.retry_delay = retry_delay

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create an HTTP client."""
        if self._client is not None:
            return self._client
        return httpx.AsyncClient(timeout=60.0, follow_redirects=True)

    async def _request(self, url: str, name: str) -> httpx.Response:
        """GET with bounded retries.

        Each attempt is independent. A 404 is final and raises
        PackageNotFoundError without retrying.
        """
        client = await self._get_client()
        last_exc: Exception | None = None
        try:
            for attempt in range(1, self.max_retries + 1):
                try:
                    response = await client.get(url)
                    if response.status_code == 404:
                        raise PackageNotFoundError(name)
                    response.raise_for_status()
                    return response
                except httpx.HTTPStatusError as e:
                    if e.response.status_code not in RETRYABLE_STATUS:
                        raise TransientFetchError(url, attempt, e) from e
                    last_exc = e
                except httpx.TransportError as e:
                    last_exc = e

                logger.warning(f"Request to {url} failed (attempt {attempt}/{self.max_retries}): {last_exc}")
                if attempt < self.max_retries and self.retry_delay:
                    await asyncio.sleep(self.retry_delay)
        finally:
            if self._client is None:
                await client.aclose()

        raise TransientFetchError(url, self.max_retries, last_exc) from last_exc

    @staticmethod
    def _encode_name(name: str) -> str:
        # Scoped packages are requested as @scope%2Fname
        return name.replace("/", "%2F")

    async def fetch_metadata(self, name: str) -> PackageMetadata:
        """Fetch the registry record for a package.

        Args:
            name: Package name (supports scoped packages like @org/pkg).

        Returns:
            PackageMetadata with dist-tags, publish times and versions.

        Raises:
            PackageNotFoundError: If the package doesn't exist.
            TransientFetchError: If the registry keeps failing.
        """
        url = f"{self.REGISTRY_URL}/{self._encode_name(name)}"
        logger.debug(f"Fetching metadata for {name}")
        response = await self._request(url, name)
        return self.parse_metadata(response.json(), name)

    @classmethod
    def parse_metadata(cls, data: dict, name: str) -> PackageMetadata:
        """Normalize a raw packument into PackageMetadata."""
        # Unpublished packages keep a nested object under time["unpublished"]
        times: dict[str, datetime | str] = {
            key: value for key, value in (data.get("time") or {}).items()
            if isinstance(value, str)
        }

        versions = {}
        for version, info in (data.get("versions") or {}).items():
            if isinstance(info, dict) and isinstance(info.get("dist"), dict):
                versions[version] = {"version": version, **info}

        return PackageMetadata.model_validate({
            "name": data.get("name", name),
            "description": data.get("description"),
            "homepage": data.get("homepage"),
            "license": cls._extract_license(data.get("license")),
            "repository_url": cls._extract_repo_url(data.get("repository")),
            "dist-tags": data.get("dist-tags") or {},
            "time": times,
            "versions": versions,
        })

    @staticmethod
    def _extract_repo_url(repository: dict | str | None) -> str | None:
        """Extract repository URL from npm repository field.

        Handles various formats:
        - {"type": "git", "url": "git+https://github.com/owner/repo.git"}
        - "github:owner/repo"
        - "https://github.com/owner/repo"
        """
        if not repository:
            return None

        if isinstance(repository, str):
            url = repository
        elif isinstance(repository, dict):
            url = repository.get("url", "")
        else:
            return None

        if not url:
            return None

        url = url.replace("git+", "").replace("git://", "https://")
        url = url.removesuffix(".git")

        if url.startswith("github:"):
            url = f"https://github.com/{url[7:]}"

        return url or None

    @staticmethod
    def _extract_license(license_info) -> str | None:
        """Extract license from npm package data."""
        if isinstance(license_info, str):
            return license_info
        elif isinstance(license_info, dict):
            return license_info.get("type") or license_info.get("name")
        elif isinstance(license_info, list) and license_info:
            first = license_info[0]
            if isinstance(first, str):
                return first
            elif isinstance(first, dict):
                return first.get("type") or first.get("name")

        return None

    async def fetch_download_stats(self, name: str, period: str = "last-week") -> DownloadStats:
        """Fetch download statistics for a package.

        Args:
            name: Package name.
            period: npm point period (last-day, last-week, last-month, last-year).

        Returns:
            DownloadStats for the trailing window.
        """
        url = f"{self.DOWNLOADS_URL}/point/{period}/{self._encode_name(name)}"
        logger.debug(f"Fetching {period} download stats for {name}")
        response = await self._request(url, name)
        data = response.json()
        return DownloadStats(
            downloads=data.get("downloads", 0),
            start=data.get("start", ""),
            end=data.get("end", ""),
            package=data.get("package", name),
        )

    async def fetch_tarball(self, url: str, name: str) -> bytes:
        """Download a version tarball."""
        logger.debug(f"Downloading tarball {url}")
        response = await self._request(url, name)
        return response.content

    async def fetch_and_extract(
        self,
        url: str,
        name: str,
        path_filter: PathFilter | None = None,
        max_file_size: int = DEFAULT_MAX_FILE_SIZE,
        max_total_size: int = DEFAULT_MAX_TOTAL_SIZE,
    ) -> list[ExtractedFile]:
        """Download a tarball and extract it in memory under size bounds."""
        data = await self.fetch_tarball(url, name)
        return extract_tar_gz(
            data,
            path_filter=path_filter,
            max_file_size=max_file_size,
            max_total_size=max_total_size,
        )
