"""Abstract base class for lock file parsers."""

from abc import ABC, abstractmethod

from prscan.models.schemas import DependencyChange, DependencyKey, DependencySet


class BaseLockParser(ABC):
    """Base class for lock file parsers.

    Each parser normalizes one lock file format into a ``DependencySet`` of
    ``(name, version)`` pairs so that diffing does not depend on the format.
    """

    @property
    @abstractmethod
    def filenames(self) -> tuple[str, ...]:
        """Return the lock file basenames this parser handles."""
        ...

    @abstractmethod
    def parse(self, content: str) -> DependencySet:
        """Parse lock file content into a dependency set.

        Args:
            content: Raw lock file text.

        Returns:
            Frozen set of resolved package versions.

        Raises:
            MalformedLockError: If the content does not have the expected shape.
        """
        ...

    def handles(self, path: str) -> bool:
        """Check whether a repository path names a file of this format."""
        basename = path.rsplit("/", 1)[-1]
        return basename in self.filenames

    def diff(self, old_content: str | None, new_content: str) -> DependencyChange:
        """Parse two revisions of a lock file and return the introduced versions.

        A missing old revision (newly added lock file) counts as empty.
        """
        old = self.parse(old_content) if old_content is not None else frozenset()
        return diff_dependencies(old, self.parse(new_content))


def diff_dependencies(old: DependencySet, new: DependencySet) -> DependencyChange:
    """Return the versions present in ``new`` but not in ``old``.

    Upgrades show up as their new version; removals produce nothing.
    """
    return frozenset(new - old)


def split_spec(spec: str) -> DependencyKey:
    """Split a ``name@version`` string at its last ``@``.

    Scoped names keep their leading ``@``.
    """
    at = spec.rfind("@")
    if at <= 0:
        raise ValueError(f"Not a name@version spec: {spec!r}")
    return DependencyKey(name=spec[:at], version=spec[at + 1:])
