"""End-to-end scan pipeline for changed dependencies."""

import logging
from collections.abc import Callable, Iterable
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path

import httpx

from prscan.adapters.archive import extension_filter, extract_tar_gz
from prscan.adapters.git import LocalGitRepo
from prscan.adapters.github import GitHubRepo
from prscan.adapters.npm import NpmRegistry
from prscan.analyzers.globals import analyze_package_files
from prscan.analyzers.risks import RuleContext, classify
from prscan.config import ScanSettings
from prscan.errors import (
    ContentUnavailableError,
    DependencyScanError,
    MalformedLockError,
    PackageNotFoundError,
)
from prscan.lockfiles import get_parser
from prscan.models.schemas import (
    ChangedFile,
    DependencyKey,
    DependencyScan,
    FileKind,
    LockFileRevision,
    ScanFailure,
    ScanResult,
)

logger = logging.getLogger(__name__)


class ScanStep(str, Enum):
    """Stages of a single dependency scan."""

    FETCH_METADATA = "fetch_metadata"
    FETCH_STATS = "fetch_stats"
    FETCH_ARCHIVE = "fetch_archive"
    EXTRACT = "extract"
    ANALYZE = "analyze"
    CLASSIFY = "classify"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ScanPipeline:
    """Orchestrates the scan of every dependency a change introduces.

    Pipeline stages per dependency:
    1. Fetch registry metadata and check the version exists
    2. Fetch download statistics
    3. Download the version tarball
    4. Extract source files in memory
    5. Analyze global variable usage
    6. Classify risks
    """

    def __init__(
        self,
        settings: ScanSettings | None = None,
        github_token: str | None = None,
        registry: NpmRegistry | None = None,
        github: GitHubRepo | None = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        """Initialize the pipeline.

        Args:
            settings: Limits and thresholds. Defaults to ScanSettings().
            github_token: GitHub personal access token.
            registry: Registry client. Built from settings if not provided.
            github: GitHub client. Built from the token if not provided.
            clock: Returns the current time for the freshness rule.
        """
        self.settings = settings or ScanSettings()
        self.github_token = github_token
        self.clock = clock
        self._own_registry = registry is None
        self._own_github = github is None
        self.registry = registry or self._build_registry(None)
        self.github = github or GitHubRepo(token=github_token, max_retries=self.settings.max_retries)
        self._http_client: httpx.AsyncClient | None = None

    def _build_registry(self, client: httpx.AsyncClient | None) -> NpmRegistry:
        return NpmRegistry(
            client=client,
            max_retries=self.settings.max_retries,
            retry_delay=self.settings.retry_delay,
        )

    async def __aenter__(self) -> "ScanPipeline":
        """Set up shared HTTP client."""
        self._http_client = httpx.AsyncClient(timeout=60.0, follow_redirects=True)
        if self._own_registry:
            self.registry = self._build_registry(self._http_client)
        if self._own_github:
            self.github = GitHubRepo(
                token=self.github_token,
                client=self._http_client,
                max_retries=self.settings.max_retries,
            )
        return self

    async def __aexit__(self, *args) -> None:
        """Clean up HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    async def scan_package(self, name: str, version: str) -> DependencyScan:
        """Run the full scan on one package version.

        Raises:
            DependencyScanError: Naming the step that failed. The original
                exception is chained as the cause.
        """
        logger.info(f"Scanning {name}@{version}")
        settings = self.settings
        step = ScanStep.FETCH_METADATA

        try:
            metadata = await self.registry.fetch_metadata(name)
            tarball_url = metadata.tarball_url(version)
            if tarball_url is None:
                raise PackageNotFoundError(name, version)

            step = ScanStep.FETCH_STATS
            download_stats = await self.registry.fetch_download_stats(name, settings.download_period)

            step = ScanStep.FETCH_ARCHIVE
            logger.info(f"Downloading tarball for {name}@{version}")
            tarball = await self.registry.fetch_tarball(tarball_url, name)

            step = ScanStep.EXTRACT
            files = extract_tar_gz(
                tarball,
                path_filter=extension_filter(settings.include_extensions),
                max_file_size=settings.max_file_size,
                max_total_size=settings.max_total_size,
            )
            sources = [f for f in files if f.kind == FileKind.FILE]
            logger.debug(f"Extracted {len(sources)} source files from {name}@{version}")

            step = ScanStep.ANALYZE
            global_usage, parse_warnings = analyze_package_files(sources)

            step = ScanStep.CLASSIFY
            context = RuleContext(
                name=name,
                version=version,
                metadata=metadata,
                download_stats=download_stats,
                global_usage=global_usage,
                files={f.path: f.text() for f in sources},
                settings=settings,
                now=self.clock(),
            )
            findings = classify(context)
        except Exception as e:
            raise DependencyScanError(name, version, step.value, str(e)) from e

        return DependencyScan(
            name=name,
            version=version,
            metadata=metadata,
            download_stats=download_stats,
            global_usage=global_usage,
            findings=findings,
            parse_warnings=parse_warnings,
        )

    async def scan_changes(self, changes: Iterable[DependencyKey]) -> ScanResult:
        """Scan a set of introduced dependencies, one at a time.

        Dependencies are processed in (name, version) order. With
        ``fail_fast`` the first failure aborts the batch; otherwise it is
        recorded in ``ScanResult.failures`` and the batch continues.
        """
        result = ScanResult()
        ordered = sorted(set(changes), key=lambda dep: (dep.name, dep.version))
        logger.info(f"Scanning {len(ordered)} changed dependencies")

        for dep in ordered:
            try:
                result.changed_dependencies.append(await self.scan_package(dep.name, dep.version))
            except DependencyScanError as e:
                if self.settings.fail_fast:
                    raise
                logger.warning(f"Skipping {dep}: {e}")
                result.failures.append(ScanFailure(
                    name=dep.name,
                    version=dep.version,
                    step=e.step,
                    error=e.reason,
                ))

        return result

    def diff_lockfile_revisions(
        self,
        revisions: Iterable[LockFileRevision],
    ) -> tuple[set[DependencyKey], dict[str, str]]:
        """Union of the dependencies introduced across lock file revisions.

        Returns:
            Tuple of (introduced dependencies, errors by lock file name). A
            malformed lock file contributes nothing and is reported instead.
        """
        changes: set[DependencyKey] = set()
        errors: dict[str, str] = {}

        for revision in revisions:
            parser = get_parser(revision.filename)
            if parser is None:
                continue
            try:
                introduced = parser.diff(revision.old_content, revision.new_content)
            except MalformedLockError as e:
                logger.warning(f"Ignoring {revision.filename}: {e}")
                errors[revision.filename] = str(e)
                continue
            logger.info(f"{revision.filename}: {len(introduced)} introduced dependencies")
            changes |= introduced

        return changes, errors

    async def scan_lockfile_revisions(self, revisions: Iterable[LockFileRevision]) -> ScanResult:
        """Diff lock file revisions and scan what they introduce."""
        changes, errors = self.diff_lockfile_revisions(revisions)
        result = await self.scan_changes(changes)
        result.lockfile_errors = errors
        return result

    async def pull_request_revisions(self, owner: str, repo: str, number: int) -> list[LockFileRevision]:
        """Collect base and head content of every lock file a pull request touches.

        Raises:
            ContentUnavailableError: If a lock file revision cannot be read.
        """
        pr = await self.github.get_pr_info(owner, repo, number)
        changed = await self.github.list_pr_files(owner, repo, number)

        revisions = []
        for changed_file in self._lockfile_changes(changed):
            new_content = await self.github.get_text_file_content(owner, repo, changed_file.filename, pr.head_sha)
            if new_content is None:
                raise ContentUnavailableError(changed_file.filename, pr.head_sha)

            old_content = None
            if changed_file.status != "added":
                old_path = changed_file.previous_filename or changed_file.filename
                old_content = await self.github.get_text_file_content(owner, repo, old_path, pr.base_sha)
                if old_content is None:
                    raise ContentUnavailableError(old_path, pr.base_sha)

            revisions.append(LockFileRevision(
                filename=changed_file.filename,
                old_content=old_content,
                new_content=new_content,
            ))
        return revisions

    async def scan_pull_request(self, owner: str, repo: str, number: int) -> ScanResult:
        """Scan the dependencies a GitHub pull request introduces."""
        logger.info(f"Scanning pull request {owner}/{repo}#{number}")
        revisions = await self.pull_request_revisions(owner, repo, number)
        return await self.scan_lockfile_revisions(revisions)

    async def git_revisions(self, repo_path: str | Path, base: str, head: str) -> list[LockFileRevision]:
        """Collect lock file revisions between two commits of a local checkout."""
        git = LocalGitRepo(repo_path)
        changed = await git.changed_files(base, head)

        revisions = []
        for changed_file in self._lockfile_changes(changed):
            old_content = None if changed_file.status == "added" else await git.show(base, changed_file.filename)
            revisions.append(LockFileRevision(
                filename=changed_file.filename,
                old_content=old_content,
                new_content=await git.show(head, changed_file.filename),
            ))
        return revisions

    async def scan_git_revisions(self, repo_path: str | Path, base: str, head: str) -> ScanResult:
        """Scan the dependencies introduced between two local git revisions."""
        logger.info(f"Scanning {repo_path} between {base} and {head}")
        revisions = await self.git_revisions(repo_path, base, head)
        return await self.scan_lockfile_revisions(revisions)

    @staticmethod
    def _lockfile_changes(changed: Iterable[ChangedFile]) -> list[ChangedFile]:
        # Deleted lock files introduce nothing
        return [
            f for f in changed
            if f.status != "removed" and get_parser(f.filename) is not None
        ]
