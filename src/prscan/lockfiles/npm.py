"""npm package-lock.json parser."""

import json

from prscan.errors import MalformedLockError
from prscan.lockfiles.base import BaseLockParser
from prscan.models.schemas import DependencyKey, DependencySet

NODE_MODULES = "node_modules/"


class NpmLockParser(BaseLockParser):
    """Parser for ``package-lock.json`` and ``npm-shrinkwrap.json``.

    Lockfile v2/v3 list every install location under ``packages`` keyed by
    path (``node_modules/a/node_modules/@scope/b``). Lockfile v1 nests
    ``dependencies`` recursively. v2 carries both; ``packages`` wins.
    """

    @property
    def filenames(self) -> tuple[str, ...]:
        return ("package-lock.json", "npm-shrinkwrap.json")

    def parse(self, content: str) -> DependencySet:
        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            raise MalformedLockError("package-lock.json", f"invalid JSON: {e}") from e

        if not isinstance(data, dict):
            raise MalformedLockError("package-lock.json", "top level is not an object")

        deps: set[DependencyKey] = set()
        if isinstance(data.get("packages"), dict):
            self._collect_packages(data["packages"], deps)
        elif isinstance(data.get("dependencies"), dict):
            self._collect_v1_dependencies(data["dependencies"], deps)

        return frozenset(deps)

    def _collect_packages(self, packages: dict, deps: set[DependencyKey]) -> None:
        for path, info in packages.items():
            # "" is the root project itself
            if not path or NODE_MODULES not in path:
                continue
            if not isinstance(info, dict):
                raise MalformedLockError("package-lock.json", f"entry {path!r} is not an object")
            if info.get("link") or not info.get("version"):
                continue
            name = info.get("name") or path.rsplit(NODE_MODULES, 1)[-1]
            deps.add(DependencyKey(name=name, version=str(info["version"])))

    def _collect_v1_dependencies(self, dependencies: dict, deps: set[DependencyKey]) -> None:
        for name, info in dependencies.items():
            if not isinstance(info, dict):
                raise MalformedLockError("package-lock.json", f"dependency {name!r} is not an object")
            version = info.get("version")
            # Skip file:/git+ sources, they have no registry version
            if version and ":" not in str(version):
                deps.add(DependencyKey(name=name, version=str(version)))
            if isinstance(info.get("dependencies"), dict):
                self._collect_v1_dependencies(info["dependencies"], deps)
