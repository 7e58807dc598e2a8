"""
Single-instance lock for gitbak.

One lock file per repository in the system temp dir, holding the owner's
PID. Authority rests with the kernel-held flock on the file; the PID body
is a hint used for diagnostics and for reclaiming locks left by dead
owners.
"""

import errno
import hashlib
import logging
import os
import tempfile
from pathlib import Path
from typing import Optional

from gitbak.lib.constants import APP_NAME, LOCK_EXTENSION, LOCK_HASH_LEN
from gitbak.lib.errors import LockContention, LockIOError, LockStale, PlatformError

if os.name == "posix":
    import fcntl

logger = logging.getLogger(__name__)

# Some older Unix systems report a held flock as EAGAIN, others as EWOULDBLOCK
WOULD_BLOCK = {errno.EWOULDBLOCK, errno.EAGAIN}


def lock_path_for(repo_path: Path, lock_dir: Optional[Path] = None) -> Path:
    """<tmp>/gitbak-<first 16 hex of sha256(repo)>.lock"""
    digest = hashlib.sha256(str(repo_path).encode()).hexdigest()[:LOCK_HASH_LEN]
    directory = Path(lock_dir) if lock_dir else Path(tempfile.gettempdir())
    return directory / f"{APP_NAME}-{digest}.{LOCK_EXTENSION}"


def pid_alive(pid: int) -> bool:
    """Probe a PID with the null signal."""
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists, owned by someone else
        return True
    except OSError:
        return False
    return True


def read_lock_pid(lock_file: Path) -> Optional[int]:
    """PID stored in a lock file, or None if unreadable or not a positive integer."""
    try:
        text = lock_file.read_text().strip()
    except OSError:
        return None
    try:
        pid = int(text)
    except ValueError:
        return None
    return pid if pid > 0 else None


class Locker:
    """
    Per-repository advisory lock.

    acquire() either returns with the lock held or raises LockContention,
    LockStale, or LockIOError. release() is idempotent and never leaves
    the flock held, even when removing the file fails.
    """

    def __init__(self, repo_path: Path, lock_dir: Optional[Path] = None):
        if os.name != "posix":
            raise PlatformError(
                "gitbak currently only supports Unix-like operating systems (Linux, macOS, BSD); "
                "advisory file locks are not available on this platform"
            )
        self.repo_path = Path(repo_path)
        self.lock_file = lock_path_for(self.repo_path, lock_dir)
        self.pid = os.getpid()
        self._fd: Optional[int] = None
        self.acquired = False

    def __enter__(self) -> "Locker":
        self.acquire()
        return self

    def __exit__(self, *exc) -> None:
        self.release()

    def acquire(self) -> None:
        if self.acquired:
            return
        self._acquire(retry_stale=True)
        logger.info(f"Acquired lock {self.lock_file} (PID {self.pid})")

    def _acquire(self, retry_stale: bool) -> None:
        created = self._open(create=True)
        if not created:
            self._open(create=False)

        try:
            fcntl.flock(self._fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError as e:
            self._close_fd()
            if e.errno not in WOULD_BLOCK:
                raise LockIOError(str(self.lock_file), f"failed to acquire lock: {e}") from e
            self._handle_blocked(retry_stale)
            return

        try:
            self._write_pid()
        except OSError as e:
            self._abandon()
            raise LockIOError(str(self.lock_file), f"failed to write PID to lock file: {e}", self.pid) from e

        self.acquired = True

    def _open(self, create: bool) -> bool:
        """Open the lock file; with create=True, False means it already existed."""
        if create:
            flags = os.O_CREAT | os.O_EXCL | os.O_RDWR
        else:
            flags = os.O_RDWR
        try:
            self._fd = os.open(self.lock_file, flags, 0o666)
        except FileExistsError:
            if create:
                return False
            raise
        except OSError as e:
            action = "create" if create else "open existing"
            raise LockIOError(str(self.lock_file), f"failed to {action} lock file: {e}") from e
        return True

    def _handle_blocked(self, retry_stale: bool) -> None:
        """Someone holds the flock: report them, or reclaim if they are gone."""
        other = read_lock_pid(self.lock_file)
        if other is None:
            raise LockContention(str(self.lock_file), 0, "couldn't identify its PID")
        if pid_alive(other):
            raise LockContention(str(self.lock_file), other)

        if not retry_stale:
            raise LockContention(str(self.lock_file), 0,
                                 "another instance took the lock immediately after the stale lock was removed")

        logger.warning(f"Reclaiming stale lock {self.lock_file} left by PID {other}")
        try:
            os.unlink(self.lock_file)
        except FileNotFoundError:
            pass
        except OSError as e:
            raise LockStale(str(self.lock_file), other, f"failed to remove it: {e}") from e

        if not self._open(create=True):
            raise LockContention(str(self.lock_file), 0,
                                 "another instance took the lock immediately after the stale lock was removed")
        try:
            fcntl.flock(self._fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError as e:
            self._close_fd()
            if e.errno in WOULD_BLOCK:
                raise LockContention(str(self.lock_file), 0,
                                     "another instance took the lock immediately after the stale lock was removed")
            raise LockStale(str(self.lock_file), other, f"failed to lock the recreated file: {e}") from e

        try:
            self._write_pid()
        except OSError as e:
            self._abandon()
            raise LockIOError(str(self.lock_file), f"failed to write PID to lock file: {e}", self.pid) from e

        self.acquired = True

    def _write_pid(self) -> None:
        os.ftruncate(self._fd, 0)
        os.pwrite(self._fd, str(self.pid).encode(), 0)

    def _close_fd(self) -> None:
        if self._fd is not None:
            try:
                os.close(self._fd)
            except OSError:
                logger.debug(f"close of lock fd failed for {self.lock_file}", exc_info=True)
            self._fd = None

    def _abandon(self) -> None:
        """Undo a half-finished acquisition."""
        try:
            self.release()
        except LockIOError as e:
            logger.warning(f"Cleanup after failed acquisition also failed: {e}")

    def release(self) -> None:
        """
        Unlock, close, and remove the lock file.

        Every step is attempted even if an earlier one fails; in-memory
        state is always cleared.

        Raises:
            LockIOError: the first failure observed
        """
        if self._fd is None:
            self.acquired = False
            return

        first_error: Optional[LockIOError] = None
        fd = self._fd

        try:
            os.fstat(fd)
            os.pwrite(fd, b"", 0)
            fcntl.flock(fd, fcntl.LOCK_UN)
        except OSError as e:
            first_error = LockIOError(str(self.lock_file), f"failed to release lock: {e}", self.pid)

        try:
            os.close(fd)
        except OSError as e:
            if first_error is None:
                first_error = LockIOError(str(self.lock_file), f"failed to close lock file: {e}", self.pid)

        self._fd = None
        self.acquired = False

        try:
            os.unlink(self.lock_file)
        except FileNotFoundError:
            pass
        except OSError as e:
            if first_error is None:
                first_error = LockIOError(str(self.lock_file), f"failed to remove lock file: {e}", self.pid)

        if first_error is not None:
            raise first_error
        logger.info(f"Released lock {self.lock_file}")
