"""Pydantic models for scan data."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class AccessMode(str, Enum):
    """How package code touches a global name."""

    READ = "read"
    READ_WRITE = "read-write"


class Severity(str, Enum):
    """Finding severity levels."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class RiskKind(str, Enum):
    """Risk rule identifiers."""

    FRESHNESS = "freshness"
    POPULARITY = "popularity"
    DANGEROUS_GLOBAL = "dangerous-global"
    OBFUSCATION = "obfuscation"
    KEYWORD = "keyword"


class FileKind(str, Enum):
    """Archive entry types kept by the extractor."""

    FILE = "file"
    DIRECTORY = "directory"
    SYMLINK = "symlink"


# --- Dependency Change Models ---


class DependencyKey(BaseModel):
    """One resolved package version observed in a lock file."""

    model_config = ConfigDict(frozen=True)

    name: str
    version: str

    def __str__(self) -> str:
        return f"{self.name}@{self.version}"


DependencySet = frozenset[DependencyKey]
DependencyChange = frozenset[DependencyKey]


class LockFileRevision(BaseModel):
    """Old and new content of one lock file touched by a change."""

    filename: str
    old_content: str | None = None  # None when the file is newly added
    new_content: str


# --- Registry Models ---


class DistInfo(BaseModel):
    """Distribution details for a published version."""

    model_config = ConfigDict(populate_by_name=True)

    tarball: str
    shasum: str | None = None
    integrity: str | None = None
    file_count: int | None = Field(default=None, alias="fileCount")
    unpacked_size: int | None = Field(default=None, alias="unpackedSize")


class VersionInfo(BaseModel):
    """Registry record for a single published version."""

    version: str
    dist: DistInfo
    description: str | None = None


class PackageMetadata(BaseModel):
    """Registry packument for a package name."""

    model_config = ConfigDict(populate_by_name=True)

    name: str
    description: str | None = None
    homepage: str | None = None
    license: str | None = None
    repository_url: str | None = None
    dist_tags: dict[str, str] = Field(default_factory=dict, alias="dist-tags")
    time: dict[str, datetime] = Field(default_factory=dict)
    versions: dict[str, VersionInfo] = Field(default_factory=dict)

    @property
    def latest_version(self) -> str | None:
        """Version the ``latest`` dist-tag points at."""
        return self.dist_tags.get("latest")

    def tarball_url(self, version: str) -> str | None:
        info = self.versions.get(version)
        return info.dist.tarball if info else None

    def published_at(self, version: str) -> datetime | None:
        return self.time.get(version)


class DownloadStats(BaseModel):
    """Download count over a trailing window."""

    downloads: int
    start: str
    end: str
    package: str


class ExtractedFile(BaseModel):
    """An entry read from a package tarball."""

    path: str
    content: bytes = b""
    size: int = 0
    kind: FileKind = FileKind.FILE
    mode: int = 0
    mtime: datetime | None = None

    def text(self) -> str:
        """Decode content as UTF-8, replacing invalid bytes."""
        return self.content.decode("utf-8", errors="replace")


# --- Code Host Models ---


class PullRequestInfo(BaseModel):
    """Revisions a pull request compares."""

    number: int
    head_sha: str
    base_sha: str
    title: str = ""


class ChangedFile(BaseModel):
    """A file touched by a pull request."""

    filename: str
    status: str  # added, modified, removed, renamed, ...
    previous_filename: str | None = None


# --- Risk Models ---


class GlobalUsageEvidence(BaseModel):
    """A dangerous global referenced by package code."""

    model_config = ConfigDict(frozen=True)

    name: str
    mode: AccessMode
    category: str
    description: str


class RiskFinding(BaseModel):
    """A leveled, evidenced risk signal for one package version."""

    model_config = ConfigDict(frozen=True)

    kind: RiskKind
    severity: Severity
    description: str
    evidence: str
    globals: tuple[GlobalUsageEvidence, ...] = ()


# --- Scan Results ---


class DependencyScan(BaseModel):
    """Scan output for one changed dependency."""

    name: str
    version: str
    metadata: PackageMetadata
    download_stats: DownloadStats
    global_usage: dict[str, AccessMode] = Field(default_factory=dict)
    findings: list[RiskFinding] = Field(default_factory=list)
    parse_warnings: list[str] = Field(default_factory=list)

    @property
    def tarball_url(self) -> str | None:
        return self.metadata.tarball_url(self.version)


class ScanFailure(BaseModel):
    """A dependency that could not be scanned in partial-result mode."""

    name: str
    version: str
    step: str
    error: str


class ScanResult(BaseModel):
    """Terminal artifact handed to reporting."""

    changed_dependencies: list[DependencyScan] = Field(default_factory=list)
    failures: list[ScanFailure] = Field(default_factory=list)
    lockfile_errors: dict[str, str] = Field(default_factory=dict)

    @property
    def finding_count(self) -> int:
        return sum(len(dep.findings) for dep in self.changed_dependencies)

    def sorted_by_risk(self) -> list[DependencyScan]:
        """Dependencies ordered by finding count, highest first."""
        return sorted(self.changed_dependencies, key=lambda dep: len(dep.findings), reverse=True)
