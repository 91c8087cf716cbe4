"""Local git checkout access."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from prscan.errors import GitCommandError
from prscan.models.schemas import ChangedFile

logger = logging.getLogger(__name__)

# `git diff --name-status` letters mapped to the GitHub file status vocabulary
STATUS_CODES = {
    "A": "added",
    "M": "modified",
    "D": "removed",
    "R": "renamed",
    "C": "copied",
    "T": "changed",
}


class LocalGitRepo:
    """Reads changed files and file revisions from a local repository."""

    def __init__(self, path: str | Path = ".") -> None:
        self.path = Path(path)

    async def _run(self, *args: str) -> str:
        """Run a git command in the repository and return its stdout."""
        cmd = ["git", "-C", str(self.path), *args]
        logger.debug(f"Running {' '.join(cmd)}")
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, stderr = await proc.communicate()
        if proc.returncode != 0:
            raise GitCommandError(cmd, proc.returncode, stderr.decode(errors="replace").strip())
        return stdout.decode("utf-8", errors="replace")

    async def changed_files(self, base: str, head: str) -> list[ChangedFile]:
        """List files that differ between two revisions.

        Renames are reported under their new path.
        """
        output = await self._run("diff", "--name-status", "--no-renames", base, head)
        files = []
        for line in output.splitlines():
            if not line.strip():
                continue
            code, _, filename = line.partition("\t")
            status = STATUS_CODES.get(code[:1], "modified")
            files.append(ChangedFile(filename=filename.rsplit("\t", 1)[-1], status=status))
        return files

    async def show(self, rev: str, path: str) -> str:
        """Return the content of ``path`` at revision ``rev``.

        Raises:
            GitCommandError: If the path does not exist at that revision.
        """
        return await self._run("show", f"{rev}:{path}")
