"""Yarn lock file parser (classic v1 and berry)."""

import logging
import re

import yaml

from prscan.errors import MalformedLockError
from prscan.lockfiles.base import BaseLockParser
from prscan.models.schemas import DependencyKey, DependencySet

logger = logging.getLogger(__name__)

METADATA_KEY = "__metadata"

# Berry lock files are YAML and always open with a __metadata block
_BERRY_MARKER = re.compile(r"^__metadata:\s*$", re.MULTILINE)


class YarnLockParser(BaseLockParser):
    """Parser for ``yarn.lock``.

    Classic (v1) format::

        "@babel/core@^7.0.0", "@babel/core@^7.1.0":
          version "7.12.3"
          resolved "https://registry.yarnpkg.com/..."

    Berry (v2+) format is YAML keyed the same way, with protocol-qualified
    specifiers (``lodash@npm:^4.17.21``) and a ``__metadata`` header entry.
    """

    @property
    def filenames(self) -> tuple[str, ...]:
        return ("yarn.lock",)

    def parse(self, content: str) -> DependencySet:
        entries = self.parse_entries(content)

        deps: set[DependencyKey] = set()
        for key, entry in entries.items():
            if key == METADATA_KEY:
                continue
            if not isinstance(entry, dict) or entry.get("version") is None:
                raise MalformedLockError("yarn.lock", f"entry {key!r} has no version")
            deps.add(DependencyKey(name=self.package_name(key), version=str(entry["version"])))

        return frozenset(deps)

    def parse_entries(self, content: str) -> dict:
        """Parse lock file text into a mapping of entry key to fields."""
        if _BERRY_MARKER.search(content):
            try:
                data = yaml.safe_load(content)
            except yaml.YAMLError as e:
                raise MalformedLockError("yarn.lock", f"invalid YAML: {e}") from e
            if not isinstance(data, dict):
                raise MalformedLockError("yarn.lock", "top level is not a mapping")
            return data
        return self._parse_classic(content)

    @staticmethod
    def package_name(key: str) -> str:
        """Derive the package name from an entry key.

        The first comma-separated specifier is used, any ``:protocol`` suffix
        is cut, and the trailing ``@range`` is removed. A leading ``@`` of a
        scoped name is kept.
        """
        spec = key.split(",")[0].strip()
        spec = spec.split(":")[0].strip()
        at = spec.rfind("@")
        return spec[:at] if at > 0 else spec

    def _parse_classic(self, content: str) -> dict:
        """Parse the indentation-based v1 syntax.

        Only top-level entries and their direct scalar fields are kept;
        nested blocks such as ``dependencies`` are skipped.
        """
        entries: dict[str, dict] = {}
        current: dict | None = None

        for lineno, raw in enumerate(content.splitlines(), 1):
            stripped = raw.strip()
            if not stripped or stripped.startswith("#"):
                continue

            indent = len(raw) - len(raw.lstrip(" "))
            if indent == 0:
                if not stripped.endswith(":"):
                    raise MalformedLockError("yarn.lock", f"line {lineno}: expected an entry key")
                current = {}
                for spec in stripped[:-1].split(","):
                    spec = _unquote(spec.strip())
                    if spec:
                        entries[spec] = current
                continue

            if current is None:
                raise MalformedLockError("yarn.lock", f"line {lineno}: field outside of an entry")

            # Direct fields sit at two spaces; deeper lines belong to nested blocks
            if indent == 2 and not stripped.endswith(":"):
                field, _, value = stripped.partition(" ")
                current[_unquote(field)] = _unquote(value.strip())

        return entries


def _unquote(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] == '"':
        return value[1:-1]
    return value
