"""Adapters for the npm registry, package archives and code hosts."""

from prscan.adapters.archive import extract_tar_gz
from prscan.adapters.git import LocalGitRepo
from prscan.adapters.github import GitHubRepo, parse_pr_url
from prscan.adapters.npm import NpmRegistry

__all__ = [
    "GitHubRepo",
    "LocalGitRepo",
    "NpmRegistry",
    "extract_tar_gz",
    "parse_pr_url",
]
