"""In-memory extraction of package tarballs with size bounds."""

from __future__ import annotations

import io
import logging
import tarfile
from collections.abc import Callable, Iterable
from datetime import datetime, timezone

from prscan.errors import ArchiveError, SizeLimitExceededError
from prscan.models.schemas import ExtractedFile, FileKind

logger = logging.getLogger(__name__)

DEFAULT_MAX_FILE_SIZE = 50 * 1024 * 1024
DEFAULT_MAX_TOTAL_SIZE = 500 * 1024 * 1024

# Read members in bounded chunks so the total budget is checked while inflating
CHUNK_SIZE = 64 * 1024

PathFilter = Callable[[str], bool]


def extract_tar_gz(
    data: bytes,
    path_filter: PathFilter | None = None,
    max_file_size: int = DEFAULT_MAX_FILE_SIZE,
    max_total_size: int = DEFAULT_MAX_TOTAL_SIZE,
) -> list[ExtractedFile]:
    """Extract a gzipped (or plain) tarball held in memory.

    Args:
        data: Raw archive bytes.
        path_filter: Optional predicate over entry paths; entries it rejects
            are skipped.
        max_file_size: Entries whose declared size exceeds this are skipped
            without being buffered.
        max_total_size: Extraction aborts once this many content bytes have
            been produced.

    Returns:
        Extracted entries in archive order. Directories and symlinks carry
        empty content.

    Raises:
        SizeLimitExceededError: If the aggregate size budget is exceeded.
        ArchiveError: If the data is not a readable tar archive.
    """
    files: list[ExtractedFile] = []
    total_size = 0

    try:
        # Stream mode: members are visited once, unread bytes are skipped on advance
        with tarfile.open(fileobj=io.BytesIO(data), mode="r|*") as tar:
            for member in tar:
                if path_filter is not None and not path_filter(member.name):
                    continue

                mtime = datetime.fromtimestamp(member.mtime, tz=timezone.utc) if member.mtime else None

                if member.isdir() or member.issym():
                    files.append(ExtractedFile(
                        path=member.name,
                        kind=FileKind.DIRECTORY if member.isdir() else FileKind.SYMLINK,
                        mode=member.mode,
                        mtime=mtime,
                    ))
                    continue

                if not member.isfile():
                    continue

                if member.size > max_file_size:
                    logger.warning(f"File {member.name} exceeds size limit ({member.size} bytes), skipping")
                    continue

                stream = tar.extractfile(member)
                if stream is None:
                    continue

                chunks: list[bytes] = []
                file_size = 0
                while chunk := stream.read(CHUNK_SIZE):
                    file_size += len(chunk)
                    total_size += len(chunk)
                    if total_size > max_total_size:
                        raise SizeLimitExceededError(max_total_size, member.name)
                    chunks.append(chunk)

                files.append(ExtractedFile(
                    path=member.name,
                    content=b"".join(chunks),
                    size=file_size,
                    kind=FileKind.FILE,
                    mode=member.mode,
                    mtime=mtime,
                ))
    except (tarfile.TarError, EOFError, OSError) as e:
        raise ArchiveError(f"Failed to read tarball: {e}") from e

    return files


def list_tar_gz_contents(data: bytes) -> list[str]:
    """List entry paths without reading their content."""
    try:
        with tarfile.open(fileobj=io.BytesIO(data), mode="r|*") as tar:
            return [member.name for member in tar]
    except (tarfile.TarError, EOFError, OSError) as e:
        raise ArchiveError(f"Failed to read tarball: {e}") from e


def get_file_from_tar_gz(data: bytes, file_path: str) -> bytes | None:
    """Return the content of a single entry, or None if absent."""
    files = extract_tar_gz(data, path_filter=lambda path: path == file_path)
    for extracted in files:
        if extracted.kind == FileKind.FILE:
            return extracted.content
    return None


def extension_filter(extensions: Iterable[str]) -> PathFilter:
    """Build a path filter that accepts the given file extensions.

    Extensions are matched case-insensitively, with or without a leading dot.
    """
    normalized = tuple(
        ext.lower() if ext.startswith(".") else f".{ext.lower()}"
        for ext in extensions
    )

    def accept(path: str) -> bool:
        return path.lower().endswith(normalized)

    return accept
