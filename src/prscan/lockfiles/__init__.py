"""Lock file parsers and dependency diffing."""

from prscan.lockfiles.base import BaseLockParser, diff_dependencies
from prscan.lockfiles.npm import NpmLockParser
from prscan.lockfiles.pnpm import PnpmLockParser
from prscan.lockfiles.yarn import YarnLockParser

LOCK_PARSERS: tuple[BaseLockParser, ...] = (
    YarnLockParser(),
    PnpmLockParser(),
    NpmLockParser(),
)


def get_parser(path: str) -> BaseLockParser | None:
    """Return the parser for a lock file path, or None if unsupported."""
    for parser in LOCK_PARSERS:
        if parser.handles(path):
            return parser
    return None


__all__ = [
    "BaseLockParser",
    "LOCK_PARSERS",
    "NpmLockParser",
    "PnpmLockParser",
    "YarnLockParser",
    "diff_dependencies",
    "get_parser",
]
