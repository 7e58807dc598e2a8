"""
Signal handling and session teardown for gitbak.

Handlers only set a flag and write one byte to a self-pipe. The supervisor
sleeps on that pipe with a selector, so a stop request wakes it at once
while a git child that is already running gets to finish. A second signal
after a stop was requested exits the process immediately.
"""

import logging
import os
import selectors
import signal
from datetime import datetime
from typing import Callable, Optional

from gitbak.lib.constants import APP_NAME, EXIT_FORCED
from gitbak.lib.errors import GitbakError
from gitbak.runner.context import SessionState

logger = logging.getLogger(__name__)

STOP_SIGNALS = (signal.SIGINT, signal.SIGTERM, signal.SIGHUP)

SEPARATOR = "-" * 45


class Lifecycle:
    """
    Bridges POSIX signals into the supervisor's wait loop.

    Usage:
        lifecycle = Lifecycle()
        lifecycle.install()
        try:
            while not lifecycle.wait(seconds):
                ...
        finally:
            lifecycle.close()
    """

    def __init__(self, force_exit: Callable[[int], None] = os._exit):
        self.force_exit = force_exit
        self.stop_requested = False
        self.received: Optional[int] = None
        self._read_fd, self._write_fd = os.pipe()
        os.set_blocking(self._read_fd, False)
        os.set_blocking(self._write_fd, False)
        self._selector = selectors.DefaultSelector()
        self._selector.register(self._read_fd, selectors.EVENT_READ)
        self._previous: dict[int, object] = {}
        self._closed = False

    def install(self, signals=STOP_SIGNALS) -> None:
        """Register stop handlers, remembering whatever was there before."""
        for signum in signals:
            self._previous[signum] = signal.signal(signum, self._handle)
        logger.debug(f"Installed handlers for {[signal.Signals(s).name for s in signals]}")

    def restore(self) -> None:
        for signum, handler in self._previous.items():
            signal.signal(signum, handler)
        self._previous.clear()

    def _handle(self, signum, frame) -> None:
        if self.stop_requested:
            # Escape hatch when shutdown itself hangs
            self.force_exit(EXIT_FORCED)
            return
        self.received = signum
        self._wake()

    def _wake(self) -> None:
        self.stop_requested = True
        try:
            os.write(self._write_fd, b"\0")
        except (BlockingIOError, OSError):
            # Pipe full or closed; the flag alone is enough
            pass

    def request_stop(self) -> None:
        """Ask the supervisor to stop as if a signal had arrived."""
        self._wake()

    def wait(self, timeout: float) -> bool:
        """
        Sleep until timeout elapses or a stop is requested.

        Returns:
            True if the session should stop
        """
        if self.stop_requested:
            return True
        if self._selector.select(max(timeout, 0.0)):
            self._drain()
        return self.stop_requested

    def _drain(self) -> None:
        try:
            while os.read(self._read_fd, 512):
                pass
        except BlockingIOError:
            pass

    def close(self) -> None:
        """Restore handlers and close the pipe. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        self.restore()
        self._selector.close()
        os.close(self._read_fd)
        os.close(self._write_fd)


def format_duration(seconds: float) -> str:
    """90061 -> '25h 1m 1s'"""
    total = int(max(seconds, 0))
    hours, rest = divmod(total, 3600)
    minutes, secs = divmod(rest, 60)
    return f"{hours}h {minutes}m {secs}s"


def render_summary(state: SessionState, graph: str = "", now: Optional[datetime] = None) -> list[str]:
    """Lines of the end-of-session report."""
    now = now or datetime.now()
    lines = [
        "",
        SEPARATOR,
        f"📊 {APP_NAME} Session Summary",
        SEPARATOR,
        f"✅ Total commits made: {state.commits_made}",
        f"⏱️  Session duration: {format_duration(state.duration())}",
    ]

    if state.created_branch:
        lines += [
            f"🌿 Working branch: {state.branch_name}",
            "",
            "To merge these changes to your original branch:",
            f"  git checkout {state.original_branch}",
            f"  git merge {state.branch_name}",
            "",
            "To squash all commits into one:",
            f"  git checkout {state.original_branch}",
            f"  git merge --squash {state.branch_name}",
            f'  git commit -m "Merged {APP_NAME} session"',
            "",
            "To review or reorder the checkpoints interactively:",
            f"  git checkout {state.branch_name}",
            f"  git rebase -i {state.original_branch}",
        ]
    else:
        lines.append(f"🌿 Working branch: {state.branch_name} (unchanged)")

    if graph:
        lines += [
            "",
            "🔍 Branch visualization (last 10 commits):",
            SEPARATOR,
            graph,
        ]

    lines += [
        SEPARATOR,
        f"🛑 {APP_NAME} terminated at {now.strftime('%Y-%m-%d %H:%M:%S')}",
    ]
    return lines


def print_summary(session_log, state: SessionState, probe=None) -> None:
    """Write the session summary to the user channel."""
    graph = ""
    if probe is not None:
        try:
            graph = probe.log_graph()
        except GitbakError as e:
            logger.warning(f"Could not render branch graph: {e}")
    for line in render_summary(state, graph):
        session_log.status(line)
