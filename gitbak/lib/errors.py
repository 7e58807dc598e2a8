"""
Error taxonomy for gitbak.

Every failure the supervisor can observe is a GitbakError carrying a kind,
an exit code and whether the tick loop may retry it. Startup-phase errors
are always fatal; tick-phase errors go through the retry gate.
"""

import re
from typing import Optional

from gitbak.lib.constants import (
    EXIT_CONFIG,
    EXIT_INTERNAL,
    EXIT_IO,
    EXIT_LOCK_CONTENTION,
    EXIT_LOCK_FAILURE,
    EXIT_NOT_A_REPO,
    EXIT_PLATFORM,
    EXIT_VCS_FAILURE,
)


class GitbakError(Exception):
    """Base class for all gitbak failures."""

    kind = "internal"
    exit_code = EXIT_INTERNAL
    recoverable = False

    def __init__(self, message: str, output: str = ""):
        self.message = message
        self.output = output
        super().__init__(message)

    def __str__(self):
        if self.output:
            return f"{self.message}: {self.output}"
        return self.message


class ConfigError(GitbakError):
    """Invalid or self-inconsistent input at startup."""
    kind = "config"
    exit_code = EXIT_CONFIG

    def __init__(self, parameter: str, message: str, value=None):
        self.parameter = parameter
        self.value = value
        if value is not None:
            text = f"configuration error for {parameter} = {value!r}: {message}"
        else:
            text = f"configuration error for {parameter}: {message}"
        super().__init__(text)


class PlatformError(GitbakError):
    kind = "platform"
    exit_code = EXIT_PLATFORM


class LockContention(GitbakError):
    """Another live gitbak instance holds the repository lock."""
    kind = "lock_contention"
    exit_code = EXIT_LOCK_CONTENTION

    def __init__(self, lock_file: str, pid: int = 0, reason: str = ""):
        self.lock_file = lock_file
        self.pid = pid
        if pid > 0:
            text = f"another gitbak instance is already running for this repository (PID: {pid})"
        else:
            text = "another gitbak instance is already running for this repository"
        if reason:
            text = f"{text}: {reason}"
        super().__init__(text)


class LockStale(GitbakError):
    """Lock file present with no live owner, and reclaiming it failed."""
    kind = "lock_stale"
    exit_code = EXIT_LOCK_FAILURE

    def __init__(self, lock_file: str, pid: int, reason: str):
        self.lock_file = lock_file
        self.pid = pid
        super().__init__(f"found stale lock file {lock_file} from PID {pid}, but {reason}")


class LockIOError(GitbakError):
    """Reading or writing the lock file failed."""
    kind = "lock_io"
    exit_code = EXIT_LOCK_FAILURE

    def __init__(self, lock_file: str, message: str, pid: int = 0):
        self.lock_file = lock_file
        self.pid = pid
        if pid > 0:
            text = f"lock error with file {lock_file} (PID: {pid}): {message}"
        else:
            text = f"lock error with file {lock_file}: {message}"
        super().__init__(text)


class NotARepository(GitbakError):
    kind = "not_a_repository"
    exit_code = EXIT_NOT_A_REPO

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"not a git repository: {path}")


class VCSError(GitbakError):
    """A git invocation failed."""
    exit_code = EXIT_VCS_FAILURE

    def __init__(self, operation: str, message: str, output: str = "",
                 recoverable: Optional[bool] = None):
        self.operation = operation
        if recoverable is not None:
            self.recoverable = recoverable
        super().__init__(f"git {operation} failed: {message}", output)


class VCSTransient(VCSError):
    """Retryable git failure (index lock, temporary I/O)."""
    kind = "vcs_transient"
    recoverable = True


class VCSPermanent(VCSError):
    """Git failure unlikely to clear up on its own."""
    kind = "vcs_permanent"
    recoverable = True


class SpawnError(VCSPermanent):
    """The child process could not be launched at all."""
    kind = "spawn"
    recoverable = False

    def __init__(self, operation: str, command: str, message: str):
        self.command = command
        super().__init__(operation, f"failed to launch {command}: {message}", recoverable=False)


class IOFailure(GitbakError):
    kind = "io"
    exit_code = EXIT_IO
    recoverable = True


class InternalError(GitbakError):
    """Invariant violation; always a bug."""
    kind = "internal"
    exit_code = EXIT_INTERNAL


# stderr fragments that indicate git may succeed if simply retried
TRANSIENT_PATTERNS = [
    re.compile(r"index\.lock", re.IGNORECASE),
    re.compile(r"unable to create .*\.lock", re.IGNORECASE),
    re.compile(r"could not lock", re.IGNORECASE),
    re.compile(r"another git process", re.IGNORECASE),
    re.compile(r"resource temporarily unavailable", re.IGNORECASE),
    re.compile(r"timed out", re.IGNORECASE),
    re.compile(r"input/output error", re.IGNORECASE),
    re.compile(r"interrupted system call", re.IGNORECASE),
]

# stderr fragments after which the session cannot continue
FATAL_PATTERNS = [
    re.compile(r"not a git repository", re.IGNORECASE),
    re.compile(r"cannot change to", re.IGNORECASE),
    re.compile(r"unable to read current working directory", re.IGNORECASE),
]


def classify_git_failure(operation: str, result) -> VCSError:
    """
    Turn a failed CommandResult into a VCSTransient or VCSPermanent error.

    Args:
        operation: git subcommand that failed (e.g., "commit")
        result: CommandResult with non-zero returncode or timed_out set

    Returns:
        The classified error (not raised)
    """
    output = (result.stderr or result.stdout or "").strip()
    message = f"exit status {result.returncode}"
    if result.timed_out:
        message = "timed out"

    for pattern in FATAL_PATTERNS:
        if pattern.search(output):
            return VCSPermanent(operation, message, output, recoverable=False)

    if result.timed_out:
        return VCSTransient(operation, message, output)

    for pattern in TRANSIENT_PATTERNS:
        if pattern.search(output):
            return VCSTransient(operation, message, output)

    return VCSPermanent(operation, message, output)


_TIMESTAMP_RE = re.compile(r"\d{4}-\d{2}-\d{2}[ T]\d{2}:\d{2}:\d{2}(?:\.\d+)?")
_PATH_RE = re.compile(r"(?:/[^\s'\":]+)+")
_HEX_RE = re.compile(r"\b[0-9a-f]{7,40}\b")
_INT_RE = re.compile(r"\d+")


def canonicalize(message: str) -> str:
    """Strip timestamps, paths, object names and numbers from a message."""
    text = _TIMESTAMP_RE.sub("<time>", message)
    text = _PATH_RE.sub("<path>", text)
    text = _HEX_RE.sub("<sha>", text)
    text = _INT_RE.sub("<n>", text)
    return " ".join(text.split())


def error_signature(err: BaseException) -> str:
    """Stable signature used to detect the same failure repeating."""
    kind = getattr(err, "kind", type(err).__name__)
    return f"{kind}:{canonicalize(str(err))}"
