"""Data models and schemas."""

from prscan.models.schemas import (
    AccessMode,
    DependencyKey,
    DependencyScan,
    DownloadStats,
    ExtractedFile,
    PackageMetadata,
    RiskFinding,
    ScanResult,
    Severity,
)

__all__ = [
    "AccessMode",
    "DependencyKey",
    "DependencyScan",
    "DownloadStats",
    "ExtractedFile",
    "PackageMetadata",
    "RiskFinding",
    "ScanResult",
    "Severity",
]
