"""Git operations for gitbak.

All git access goes through an Executor so the supervisor and tests can
substitute how commands are run.

Return type conventions:
- Functions returning CommandResult: Caller must check .success before using output.
  Examples: stage_all(), commit(), run_git()
- RepoProbe methods return answers (bool, str, int) and raise classified
  VCS errors when git itself fails.
- Committer.commit() returns CommitOutcome; committed=False means "nothing to commit".
"""

from gitbak.git.runner import (
    CommandResult,
    Executor,
    run_git,
)
from gitbak.git.probe import RepoProbe
from gitbak.git.commit import (
    Committer,
    CommitOutcome,
    format_commit_message,
    stage_all,
    commit,
)
from gitbak.git.branch import (
    BranchManager,
    BranchSetup,
    generate_branch_name,
    session_mode,
    MODE_FRESH,
    MODE_STAY,
    MODE_CONTINUE,
)

__all__ = [
    # runner
    "CommandResult",
    "Executor",
    "run_git",
    # probe
    "RepoProbe",
    # commit
    "Committer",
    "CommitOutcome",
    "format_commit_message",
    "stage_all",
    "commit",
    # branch
    "BranchManager",
    "BranchSetup",
    "generate_branch_name",
    "session_mode",
    "MODE_FRESH",
    "MODE_STAY",
    "MODE_CONTINUE",
]
