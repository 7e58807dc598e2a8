"""Command runner for git and other external tools."""

import logging
import os
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from gitbak.lib.errors import SpawnError

logger = logging.getLogger(__name__)

@dataclass
class CommandResult:
    """Result of an external command."""
    returncode: int
    stdout: str
    stderr: str
    timed_out: bool = False

    @property
    def success(self) -> bool:
        return self.returncode == 0 and not self.timed_out

    @property
    def wall_error(self) -> Optional[str]:
        """Set when the command was cut short rather than exiting on its own."""
        if self.timed_out:
            return self.stderr
        return None


class Executor:
    """
    Runs external commands and returns their output.

    Never interprets the exit status; callers decide what a non-zero
    exit means. Children run in their own session so a terminal Ctrl+C
    reaches gitbak only and an in-flight commit is allowed to finish.

    No wall-clock limit by default: a slow hook or a large `add -A` runs to
    completion, and a second stop signal is the way out of a hung child.
    """

    def __init__(self, env: Optional[Mapping[str, str]] = None, timeout: Optional[float] = None):
        self.env = dict(env) if env is not None else None
        self.timeout = timeout

    def _child_env(self) -> dict:
        env = dict(os.environ)
        if self.env:
            env.update(self.env)
        # Never block on an editor or credential prompt
        env.setdefault("GIT_TERMINAL_PROMPT", "0")
        return env

    def run(
        self,
        command: str,
        args: list[str],
        cwd: Path,
        stdin: Optional[str] = None,
    ) -> CommandResult:
        """
        Run a command, waiting for it to exit.

        Args:
            command: Executable name (e.g., "git")
            args: Command arguments (e.g., ["status", "--porcelain"])
            cwd: Working directory for the command
            stdin: Optional text fed to the child's stdin

        Returns:
            CommandResult with returncode, stdout, stderr, and timed_out flag

        Raises:
            SpawnError: if the child could not be launched at all
        """
        cmd = [command] + list(args)
        logger.debug(f"exec: {' '.join(cmd)} (cwd={cwd})")
        try:
            result = subprocess.run(
                cmd,
                cwd=str(cwd),
                input=stdin,
                stdin=None if stdin is not None else subprocess.DEVNULL,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                env=self._child_env(),
                start_new_session=True,
            )
        except subprocess.TimeoutExpired:
            return CommandResult(
                returncode=-1,
                stdout="",
                stderr=f"Command timed out after {self.timeout}s",
                timed_out=True,
            )
        except OSError as e:
            operation = args[0] if args else command
            raise SpawnError(operation, command, str(e)) from e

        logger.debug(f"exit={result.returncode}: {' '.join(cmd)}")
        return CommandResult(
            returncode=result.returncode,
            stdout=result.stdout,
            stderr=result.stderr,
        )


def run_git(executor: Executor, args: list[str], cwd: Path) -> CommandResult:
    """Run a git subcommand through the given executor."""
    return executor.run("git", args, cwd)
