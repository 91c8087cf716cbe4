"""pnpm lock file parser."""

import logging

import yaml

from prscan.errors import MalformedLockError
from prscan.lockfiles.base import BaseLockParser
from prscan.models.schemas import DependencyKey, DependencySet

logger = logging.getLogger(__name__)


class PnpmLockParser(BaseLockParser):
    """Parser for ``pnpm-lock.yaml``.

    Package keys come in several generations:

    - v5: ``/name/1.2.3`` and ``/name/1.2.3_peer@1.0.0``
    - v6: ``/name@1.2.3(peer@1.0.0)``
    - v9: ``name@1.2.3(peer@1.0.0)`` under both ``packages`` and ``snapshots``

    Peer-dependency suffixes are stripped so every key reduces to a plain
    ``(name, version)`` pair.
    """

    SECTIONS = ("packages", "snapshots")

    @property
    def filenames(self) -> tuple[str, ...]:
        return ("pnpm-lock.yaml",)

    def parse(self, content: str) -> DependencySet:
        try:
            data = yaml.safe_load(content)
        except yaml.YAMLError as e:
            raise MalformedLockError("pnpm-lock.yaml", f"invalid YAML: {e}") from e

        if data is None:
            return frozenset()
        if not isinstance(data, dict):
            raise MalformedLockError("pnpm-lock.yaml", "top level is not a mapping")

        deps: set[DependencyKey] = set()
        for section in self.SECTIONS:
            packages = data.get(section) or {}
            if not isinstance(packages, dict):
                raise MalformedLockError("pnpm-lock.yaml", f"'{section}' is not a mapping")
            for key in packages:
                dep = self.parse_key(str(key))
                if dep is None:
                    logger.debug(f"Skipping unrecognized pnpm package key: {key}")
                    continue
                deps.add(dep)

        return frozenset(deps)

    @staticmethod
    def parse_key(key: str) -> DependencyKey | None:
        """Convert a pnpm package key into a dependency key.

        Returns None for keys that carry no registry version (tarball, git,
        ``file:`` or ``link:`` sources).
        """
        # Drop peer suffix "(react@18.2.0)(react-dom@18.2.0)"
        paren = key.find("(")
        if paren != -1:
            key = key[:paren]

        segments = key.lstrip("/").split("/")
        scope_len = 2 if segments[0].startswith("@") else 1
        if len(segments) < scope_len:
            return None
        name = "/".join(segments[:scope_len])
        rest = segments[scope_len:]

        if not rest:
            # name@version form (lockfile v6+)
            at = name.rfind("@")
            if at <= 0:
                return None
            name, version = name[:at], name[at + 1:]
        elif len(rest) == 1:
            # /name/version form (lockfile v5), peer suffix after "_"
            version = rest[0].split("_", 1)[0]
        else:
            return None

        if not version or ":" in version or ":" in name or "@" in name[1:]:
            return None
        return DependencyKey(name=name, version=version)
