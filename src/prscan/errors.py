"""Exception hierarchy shared by the scan pipeline."""


class PrscanError(Exception):
    """Base class for all scanner errors."""


class PackageNotFoundError(PrscanError):
    """Raised when a package or version does not exist in the registry."""

    def __init__(self, name: str, version: str | None = None) -> None:
        self.name = name
        self.version = version
        target = f"{name}@{version}" if version else name
        super().__init__(f"Package '{target}' not found in npm registry")


class TransientFetchError(PrscanError):
    """Raised when a network fetch keeps failing after all retries."""

    def __init__(self, url: str, attempts: int, cause: Exception | None = None) -> None:
        self.url = url
        self.attempts = attempts
        message = f"Failed to fetch {url} after {attempts} attempts"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)


class SizeLimitExceededError(PrscanError):
    """Raised when archive extraction exceeds the aggregate size budget."""

    def __init__(self, limit: int, path: str | None = None) -> None:
        self.limit = limit
        self.path = path
        super().__init__(f"Total extraction size limit of {limit} bytes exceeded")


class ArchiveError(PrscanError):
    """Raised when a package tarball cannot be read."""


class JavaScriptParseError(PrscanError):
    """Raised when a source file contains syntax errors."""

    def __init__(self, line: int, column: int) -> None:
        self.line = line
        self.column = column
        super().__init__(f"Syntax error at line {line}, column {column}")


class MalformedLockError(PrscanError):
    """Raised when a lock file does not have the expected shape."""

    def __init__(self, filename: str, reason: str) -> None:
        self.filename = filename
        self.reason = reason
        super().__init__(f"Malformed lock file {filename}: {reason}")


class ContentUnavailableError(PrscanError):
    """Raised when a file revision cannot be retrieved from the code host."""

    def __init__(self, path: str, ref: str) -> None:
        self.path = path
        self.ref = ref
        super().__init__(f"Failed to fetch {path} at {ref}")


class DependencyScanError(PrscanError):
    """Raised when one step of a dependency scan fails.

    The original exception is available as ``__cause__``.
    """

    def __init__(self, name: str, version: str, step: str, reason: str) -> None:
        self.name = name
        self.version = version
        self.step = step
        self.reason = reason
        super().__init__(f"Scanning {name}@{version} failed during {step}: {reason}")


class GitCommandError(PrscanError):
    """Raised when a local git invocation exits non-zero."""

    def __init__(self, command: list[str], returncode: int, stderr: str) -> None:
        self.command = command
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(f"git command failed (exit {returncode}): {stderr}")
