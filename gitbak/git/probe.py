"""Read-only repository queries."""

import logging
import re
from pathlib import Path
from typing import Optional

from gitbak.git.runner import Executor, run_git
from gitbak.lib.errors import VCSPermanent, classify_git_failure

logger = logging.getLogger(__name__)

# git exits 128 for "fatal", which for rev-parse means "not inside a work tree"
GIT_FATAL_EXIT = 128

_UNBORN_BRANCH_MARKERS = (
    "does not have any commits yet",
    "bad revision",
    "unknown revision or path not in the working tree",
)


class RepoProbe:
    """
    Read-only queries against one repository.

    Every method distinguishes "the repository answered" from "git failed":
    answers are returned, failures are raised as classified VCS errors.
    """

    def __init__(self, repo: Path, executor: Optional[Executor] = None):
        self.repo = Path(repo)
        self.executor = executor or Executor()

    def _git(self, args: list[str]):
        return run_git(self.executor, args, self.repo)

    def is_repo(self) -> bool:
        """Check that the path is inside a git work tree."""
        if not self.repo.is_dir():
            return False
        result = self._git(["rev-parse", "--is-inside-work-tree"])
        if result.success:
            return result.stdout.strip() == "true"
        if result.returncode == GIT_FATAL_EXIT:
            return False
        raise classify_git_failure("rev-parse", result)

    def current_branch(self) -> Optional[str]:
        """Get the current branch name, or None if HEAD is detached."""
        result = self._git(["branch", "--show-current"])
        if not result.success:
            raise classify_git_failure("branch", result)
        return result.stdout.strip() or None

    def has_changes(self) -> bool:
        """Check for staged, unstaged, or untracked changes."""
        result = self._git(["status", "--porcelain"])
        if not result.success:
            raise classify_git_failure("status", result)
        return bool(result.stdout.strip())

    def branch_exists(self, branch: str) -> bool:
        """Check if a local branch exists."""
        result = self._git(["show-ref", "--verify", "--quiet", f"refs/heads/{branch}"])
        if result.success:
            return True
        # Exit 1 is the expected "no such ref" answer
        if result.returncode == 1:
            return False
        raise classify_git_failure("show-ref", result)

    def commit_subjects(self, ref: str = "HEAD") -> list[str]:
        """
        Get commit subjects reachable from ref, newest first.

        An unborn branch (no commits yet) answers with an empty list.
        """
        result = self._git(["log", "--format=%s", ref, "--"])
        if result.success:
            return [line for line in result.stdout.splitlines() if line]
        if any(marker in result.stderr for marker in _UNBORN_BRANCH_MARKERS):
            return []
        raise classify_git_failure("log", result)

    def last_checkpoint_number(self, branch: str, prefix: str) -> int:
        """
        Find the highest checkpoint number on a branch.

        Scans subjects reachable from the branch tip for "<prefix> #N".

        Returns:
            Largest N found, or 0 if there is none
        """
        if not prefix:
            raise VCSPermanent("log", "empty commit prefix", recoverable=False)
        pattern = re.compile(re.escape(prefix) + r" #(\d+)")

        highest = 0
        for subject in self.commit_subjects(branch):
            match = pattern.search(subject)
            if match:
                highest = max(highest, int(match.group(1)))
        logger.debug(f"Highest checkpoint on {branch} with prefix {prefix!r}: {highest}")
        return highest

    def log_graph(self, limit: int = 10) -> str:
        """One-line graph of recent history across all branches, for display only."""
        result = self._git(["log", "--graph", "--oneline", "--decorate", "--all", "-n", str(limit)])
        if not result.success:
            return ""
        return result.stdout.rstrip()
