"""Branch selection for a checkpoint session."""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from gitbak.git.commit import commit, stage_all
from gitbak.git.probe import RepoProbe
from gitbak.git.runner import run_git
from gitbak.lib.constants import BRANCH_PREFIX, BRANCH_TIMESTAMP_FORMAT, MANUAL_PRE_SESSION_MESSAGE
from gitbak.lib.errors import ConfigError, classify_git_failure
from gitbak.lib.interaction import Interactor, NonInteractiveInteractor

logger = logging.getLogger(__name__)

MODE_FRESH = "fresh"
MODE_STAY = "stay"
MODE_CONTINUE = "continue"

DETACHED = "(detached HEAD)"


@dataclass
class BranchSetup:
    """Outcome of branch preparation."""
    mode: str
    branch_name: str
    original_branch: str
    created_branch: bool = False


def generate_branch_name(now: Optional[datetime] = None) -> str:
    """gitbak-<UTC YYYYMMDD-HHMMSS>"""
    now = now or datetime.now(timezone.utc)
    return f"{BRANCH_PREFIX}-{now.astimezone(timezone.utc).strftime(BRANCH_TIMESTAMP_FORMAT)}"


def session_mode(create_branch: bool, continue_session: bool) -> str:
    if continue_session:
        return MODE_CONTINUE
    if create_branch:
        return MODE_FRESH
    return MODE_STAY


class BranchManager:
    """
    Puts the working tree on the session branch.

    Modes:
    - fresh: create and check out a new branch (never reuse an existing one)
    - stay: leave branches alone, record the current one
    - continue: adopt the current branch, or check out an existing named one
    """

    def __init__(self, probe: RepoProbe, interactor: Optional[Interactor] = None, session_log=None):
        self.probe = probe
        self.executor = probe.executor
        self.interactor = interactor or NonInteractiveInteractor()
        self.session_log = session_log

    def _notify(self, message: str) -> None:
        logger.info(message)
        if self.session_log is not None:
            self.session_log.status(message)

    def _warn(self, message: str) -> None:
        logger.warning(message)
        if self.session_log is not None:
            self.session_log.warning_to_user(message)

    def prepare(self, branch_name: str, create_branch: bool, continue_session: bool) -> BranchSetup:
        """
        Select or create the session branch.

        Args:
            branch_name: Requested branch ("" to generate or auto-detect)
            create_branch: Create a fresh branch
            continue_session: Continue numbering on an existing branch

        Returns:
            BranchSetup describing the branch the working tree is now on

        Raises:
            ConfigError: requested branch is unusable in this mode
            VCSTransient / VCSPermanent: git failed
        """
        original = self.probe.current_branch() or DETACHED
        logger.info(f"Starting gitbak on branch: {original}")

        mode = session_mode(create_branch, continue_session)
        if mode == MODE_CONTINUE:
            return self._prepare_continue(branch_name, original)
        if mode == MODE_FRESH:
            return self._prepare_fresh(branch_name, original)
        return self._prepare_stay(original)

    def _prepare_stay(self, original: str) -> BranchSetup:
        self._notify(f"🌿 Using current branch: {original}")
        return BranchSetup(mode=MODE_STAY, branch_name=original, original_branch=original)

    def _prepare_continue(self, branch_name: str, original: str) -> BranchSetup:
        if not branch_name:
            if original == DETACHED:
                raise ConfigError("branchName", "cannot continue a session on a detached HEAD")
            branch_name = original
        elif branch_name != original:
            if not self.probe.branch_exists(branch_name):
                raise ConfigError("branchName", "branch does not exist; continue mode needs an existing branch",
                                  branch_name)
            self.checkout(branch_name)

        self._notify(f"🔄 Continuing gitbak session on branch: {branch_name}")
        return BranchSetup(mode=MODE_CONTINUE, branch_name=branch_name, original_branch=original)

    def _prepare_fresh(self, branch_name: str, original: str) -> BranchSetup:
        if self.probe.has_changes():
            self._warn("You have uncommitted changes.")
            if self.interactor.confirm("Would you like to commit them before creating the gitbak branch?"):
                self.commit_pending_changes()

        branch_name = branch_name or generate_branch_name()
        if self.probe.branch_exists(branch_name):
            self._warn(f"Branch '{branch_name}' already exists.")
            if not self.interactor.confirm("Would you like to use a different branch name?"):
                raise ConfigError("branchName", "branch already exists; refusing to reuse it", branch_name)
            branch_name = f"{branch_name}-{datetime.now().strftime('%H%M%S')}"
            if self.probe.branch_exists(branch_name):
                raise ConfigError("branchName", "branch already exists; refusing to reuse it", branch_name)
            self._notify(f"🌿 Using new branch name: {branch_name}")

        self.create_and_checkout(branch_name)
        self._notify(f"🌿 Created and switched to new branch: {branch_name}")
        return BranchSetup(mode=MODE_FRESH, branch_name=branch_name, original_branch=original,
                           created_branch=True)

    def commit_pending_changes(self) -> None:
        """Commit whatever is in the tree before the session starts."""
        result = stage_all(self.executor, self.probe.repo)
        if not result.success:
            raise classify_git_failure("add", result)
        result = commit(self.executor, self.probe.repo, MANUAL_PRE_SESSION_MESSAGE)
        if not result.success:
            raise classify_git_failure("commit", result)
        if self.session_log is not None:
            self.session_log.success("Created initial commit")

    def create_and_checkout(self, branch_name: str) -> None:
        result = run_git(self.executor, ["checkout", "-b", branch_name], self.probe.repo)
        if not result.success:
            if "already exists" in result.stderr:
                raise ConfigError("branchName", "branch already exists; refusing to reuse it", branch_name)
            raise classify_git_failure("checkout", result)

    def checkout(self, branch_name: str) -> None:
        result = run_git(self.executor, ["checkout", branch_name], self.probe.repo)
        if not result.success:
            raise classify_git_failure("checkout", result)
