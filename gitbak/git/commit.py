"""Checkpoint commit creation."""

import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from gitbak.git.probe import RepoProbe
from gitbak.git.runner import CommandResult, Executor, run_git
from gitbak.lib.constants import COMMIT_TIMESTAMP_FORMAT
from gitbak.lib.errors import classify_git_failure

logger = logging.getLogger(__name__)

NOTHING_TO_COMMIT_MARKERS = (
    "nothing to commit",
    "nothing added to commit",
    "no changes added to commit",
)


@dataclass
class CommitOutcome:
    """Result of one commit attempt."""
    committed: bool
    number: Optional[int] = None
    message: str = ""


def format_commit_message(prefix: str, counter: int, when: Optional[datetime] = None) -> str:
    """Build "<prefix> #<counter> - <local time>"."""
    when = when or datetime.now()
    return f"{prefix} #{counter} - {when.strftime(COMMIT_TIMESTAMP_FORMAT)}"


def _nothing_to_commit(result: CommandResult) -> bool:
    text = f"{result.stdout}\n{result.stderr}".lower()
    return any(marker in text for marker in NOTHING_TO_COMMIT_MARKERS)


def stage_all(executor: Executor, worktree: Path) -> CommandResult:
    """Stage all changes (new, modified, deleted)."""
    return run_git(executor, ["add", "-A"], worktree)


def commit(executor: Executor, worktree: Path, message: str) -> CommandResult:
    """Create a commit with the given message."""
    return run_git(executor, ["commit", "-m", message], worktree)


class Committer:
    """
    Stages and commits working-tree changes as numbered checkpoints.

    Does not track numbering itself; the caller passes the counter and
    advances it only when an outcome reports committed=True.
    """

    def __init__(self, probe: RepoProbe, executor: Optional[Executor] = None,
                 clock: Callable[[], datetime] = datetime.now):
        self.probe = probe
        self.executor = executor or probe.executor
        self.clock = clock

    @property
    def repo(self) -> Path:
        return self.probe.repo

    def commit(self, prefix: str, counter: int) -> CommitOutcome:
        """
        Commit everything in the working tree as checkpoint #counter.

        Returns:
            CommitOutcome(committed=False) when there is nothing to commit

        Raises:
            VCSTransient / VCSPermanent: if staging or committing failed
        """
        if not self.probe.has_changes():
            return CommitOutcome(committed=False)

        result = stage_all(self.executor, self.repo)
        if not result.success:
            raise classify_git_failure("add", result)

        message = format_commit_message(prefix, counter, self.clock())
        result = commit(self.executor, self.repo, message)
        if not result.success:
            if _nothing_to_commit(result):
                logger.info("git reported nothing to commit after staging")
                return CommitOutcome(committed=False)
            raise classify_git_failure("commit", result)

        logger.info(f"Created checkpoint #{counter}: {message}")
        return CommitOutcome(committed=True, number=counter, message=message)
