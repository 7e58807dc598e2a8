"""
Session logging for gitbak.

Two channels:
- internal: the stdlib "gitbak" logger, written to a file when debug is on
- user-visible: the terminal, through rich consoles (stdout and stderr)

All writes are serialized by one lock; the logger is shared between the
supervisor and signal-time shutdown code.
"""

import logging
import threading
from pathlib import Path
from typing import Optional

from rich.console import Console

from gitbak.lib.constants import APP_NAME

LOG_FORMAT = "time=%(asctime)s level=%(levelname)s logger=%(name)s msg=%(message)s"


class SessionLogger:
    """Dual-channel sink used by every gitbak component."""

    def __init__(
        self,
        debug: bool = False,
        log_file: Optional[Path] = None,
        verbose: bool = True,
        stdout: Optional[Console] = None,
        stderr: Optional[Console] = None,
    ):
        self.debug_enabled = debug
        self.log_file = Path(log_file) if log_file else None
        self.verbose = verbose
        self.stdout = stdout or Console(highlight=False)
        self.stderr = stderr or Console(stderr=True, highlight=False)
        self.logger = logging.getLogger(APP_NAME)
        self._lock = threading.RLock()
        self._handler: Optional[logging.Handler] = None
        self._closed = False

        if debug:
            self._attach_handler()
        else:
            # Keeps logging's last-resort stderr handler from echoing warnings twice
            self._handler = logging.NullHandler()
            self.logger.addHandler(self._handler)

    def _attach_handler(self) -> None:
        handler: logging.Handler
        try:
            if self.log_file is None:
                raise OSError("no log file configured")
            self.log_file.parent.mkdir(parents=True, exist_ok=True, mode=0o700)
            handler = logging.FileHandler(self.log_file, encoding="utf-8")
            self._print(self.stdout, f"🔍 Debug logging enabled. Logs will be written to: {self.log_file}")
        except OSError as e:
            handler = logging.StreamHandler()
            self._print(self.stderr, f"⚠️  Failed to open log file: {e}, using stderr instead")

        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler.setLevel(logging.DEBUG)
        self.logger.addHandler(handler)
        self.logger.setLevel(logging.DEBUG)
        self._handler = handler
        self.logger.info("gitbak debug logging started")

    @staticmethod
    def _print(console: Console, message: str, style: Optional[str] = None) -> None:
        # Messages carry user text like "[gitbak]" prefixes; never parse markup
        console.print(message, style=style, markup=False, emoji=False, highlight=False, soft_wrap=True)

    # Internal channel

    def info(self, message: str) -> None:
        with self._lock:
            self.logger.info(message)

    def warning(self, message: str) -> None:
        with self._lock:
            self.logger.warning(message)
            if self.verbose:
                self._print(self.stdout, f"⚠️  {message}", style="yellow")

    def error(self, message: str, exc_info: bool = False) -> None:
        with self._lock:
            self.logger.error(message, exc_info=exc_info)
            self._print(self.stderr, f"❌ {message}", style="red")

    # User-visible channel

    def info_to_user(self, message: str) -> None:
        with self._lock:
            self.logger.info(message)
            if self.verbose:
                self._print(self.stdout, f"ℹ️  {message}")

    def warning_to_user(self, message: str) -> None:
        with self._lock:
            self.logger.warning(message)
            self._print(self.stdout, f"⚠️  {message}", style="yellow")

    def success(self, message: str) -> None:
        with self._lock:
            self.logger.info(message)
            self._print(self.stdout, f"✅ {message}", style="green")

    def status(self, message: str = "") -> None:
        with self._lock:
            self._print(self.stdout, message)

    def close(self) -> None:
        """Flush and detach the file handler. Safe to call more than once."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            if self._handler is not None:
                self._handler.flush()
                self.logger.removeHandler(self._handler)
                self._handler.close()
                self._handler = None
