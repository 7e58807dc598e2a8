"""Tests for gitbak.workflow.supervisor module."""

import io
import itertools
import os
from unittest.mock import MagicMock, patch

import pytest
from rich.console import Console

from gitbak.git.commit import CommitOutcome
from gitbak.git.runner import CommandResult
from gitbak.lib.config import load_config
from gitbak.lib.constants import (
    EXIT_INTERNAL,
    EXIT_IO,
    EXIT_LOCK_CONTENTION,
    EXIT_NOT_A_REPO,
    EXIT_OK,
    EXIT_VCS_FAILURE,
)
from gitbak.lib.errors import VCSPermanent, VCSTransient
from gitbak.lib.log import SessionLogger
from gitbak.runner.lifecycle import Lifecycle
from gitbak.runner.locking import Locker, lock_path_for
from gitbak.workflow.supervisor import Supervisor, tick_period


def ok(stdout=""):
    return CommandResult(returncode=0, stdout=stdout, stderr="")


def fail(stderr, returncode=128):
    return CommandResult(returncode=returncode, stdout="", stderr=stderr)


class FakeExecutor:
    """Answers git calls by argument prefix; first matching prefix wins."""

    def __init__(self, responses):
        self.responses = responses
        self.calls = []

    def run(self, command, args, cwd, stdin=None):
        self.calls.append(list(args))
        for prefix, answer in self.responses.items():
            if tuple(args[:len(prefix)]) == prefix:
                return answer(args) if callable(answer) else answer
        return ok()

    def commit_messages(self):
        return [c[2] for c in self.calls if c[:2] == ["commit", "-m"]]


class FakeLifecycle:
    """Stops the loop on the Nth wait and records requested timeouts."""

    def __init__(self, stop_after):
        self.stop_after = stop_after
        self.timeouts = []
        self.installed = False
        self.closed = False

    def install(self):
        self.installed = True

    def close(self):
        self.closed = True

    def wait(self, timeout):
        self.timeouts.append(timeout)
        return len(self.timeouts) > self.stop_after


def repo_responses(overrides=None):
    responses = {
        ("rev-parse",): ok("true\n"),
        ("branch", "--show-current"): ok("main\n"),
        ("status", "--porcelain"): ok(" M a.txt\n"),
        ("show-ref",): fail("", returncode=1),
        ("log",): ok(""),
    }
    responses.update(overrides or {})
    return responses


@pytest.fixture
def repo(tmp_path):
    path = tmp_path / "repo"
    path.mkdir()
    return path


@pytest.fixture
def lock_dir(tmp_path):
    path = tmp_path / "locks"
    path.mkdir()
    return path


@pytest.fixture
def git_on_path():
    with patch("gitbak.workflow.supervisor.shutil.which", return_value="/usr/bin/git") as which:
        yield which


@pytest.fixture
def make(repo, lock_dir, git_on_path):
    """Build a Supervisor on a fake repository; returns (supervisor, stdout, stderr)."""

    def build(responses=None, stop_after=0, clock=None, **flags):
        merged = {"repo": str(repo), "non_interactive": True, "no_branch": True}
        merged.update(flags)
        config = load_config(merged, env={}, cwd=repo)
        out, err = io.StringIO(), io.StringIO()
        session_log = SessionLogger(
            verbose=config.verbose,
            stdout=Console(file=out, width=200),
            stderr=Console(file=err, width=200),
        )
        supervisor = Supervisor(
            config,
            session_log,
            executor=FakeExecutor(responses or repo_responses()),
            lifecycle=FakeLifecycle(stop_after),
            lock_dir=lock_dir,
            clock=clock or itertools.count(0, 100000).__next__,
        )
        return supervisor, out, err

    return build


def drive_to_ticking(supervisor):
    for trigger in ("lock", "validate", "prepare", "start_ticking"):
        getattr(supervisor.fsm, trigger)()


class TestTickPeriod:
    """Test tick period computation."""

    def test_fractional_minutes(self):
        assert tick_period(0.1) == pytest.approx(6.0)

    def test_floor_at_one_second(self):
        assert tick_period(0.001) == 1.0

    def test_whole_minutes(self):
        assert tick_period(5) == 300.0


class TestRun:
    """End-to-end runs against a fake repository."""

    def test_stop_before_first_tick(self, make, repo, lock_dir):
        supervisor, out, _ = make(stop_after=0)
        assert supervisor.run() == EXIT_OK
        assert supervisor.executor.commit_messages() == []
        assert "Total commits made: 0" in out.getvalue()
        assert supervisor.lifecycle.installed and supervisor.lifecycle.closed
        assert supervisor.fsm.state == "shutdown"
        assert not lock_path_for(repo, lock_dir).exists()

    def test_commits_once_per_tick(self, make):
        supervisor, out, _ = make(stop_after=3, prefix="[x]")
        assert supervisor.run() == EXIT_OK
        messages = supervisor.executor.commit_messages()
        assert [m.split(" - ")[0] for m in messages] == ["[x] #1", "[x] #2", "[x] #3"]
        assert supervisor.state.commits_made == 3
        assert "Commit #3 created" in out.getvalue()
        assert "Total commits made: 3" in out.getvalue()

    def test_stop_during_commit_lets_it_finish(self, make):
        supervisor, out, _ = make(stop_after=5)
        lifecycle = Lifecycle(force_exit=MagicMock())
        supervisor.lifecycle = lifecycle
        supervisor.committer = MagicMock()

        def commit_then_stop(prefix, counter):
            lifecycle.request_stop()
            return CommitOutcome(committed=True, number=counter)

        supervisor.committer.commit.side_effect = commit_then_stop
        assert supervisor.run() == EXIT_OK
        assert supervisor.committer.commit.call_count == 1
        assert supervisor.state.commits_made == 1
        assert "Commit #1 created" in out.getvalue()
        assert "Total commits made: 1" in out.getvalue()
        lifecycle.force_exit.assert_not_called()

    def test_banner(self, make, repo):
        supervisor, out, _ = make(stop_after=0, prefix="[x]", interval=0.5)
        supervisor.run()
        text = out.getvalue()
        assert f"Repository: {repo}" in text
        assert "Branch: main" in text
        assert "Interval: 0.5 minutes" in text
        assert "Commit prefix: [x]" in text

    def test_continue_numbering(self, make):
        responses = repo_responses({("log",): ok("[x] #5 - 2024-01-01 10:00:00\nInitial commit\n")})
        supervisor, out, _ = make(responses, stop_after=1, prefix="[x]", continue_session=True)
        assert supervisor.run() == EXIT_OK
        assert supervisor.executor.commit_messages()[0].startswith("[x] #6 - ")
        assert "starting from commit #6" in out.getvalue()

    def test_continue_without_previous_commits(self, make):
        supervisor, out, _ = make(stop_after=0, prefix="[x]", continue_session=True)
        supervisor.run()
        assert supervisor.state.commit_counter == 1
        assert "No previous commits found" in out.getvalue()

    def test_fresh_branch_in_summary(self, make):
        supervisor, out, _ = make(stop_after=0, no_branch=False)
        assert supervisor.run() == EXIT_OK
        assert supervisor.state.created_branch is True
        assert "git merge --squash gitbak-" in out.getvalue()

    def test_not_a_repository(self, make, repo, lock_dir):
        responses = repo_responses({("rev-parse",): fail("fatal: not a git repository", 128)})
        supervisor, out, err = make(responses)
        assert supervisor.run() == EXIT_NOT_A_REPO
        assert "not a git repository" in err.getvalue()
        assert "Session Summary" not in out.getvalue()
        assert not lock_path_for(repo, lock_dir).exists()

    def test_second_instance_rejected(self, make, repo, lock_dir):
        holder = Locker(repo, lock_dir)
        holder.acquire()
        try:
            supervisor, _, err = make()
            assert supervisor.run() == EXIT_LOCK_CONTENTION
            assert "already running" in err.getvalue()
            assert str(os.getpid()) in err.getvalue()
            assert lock_path_for(repo, lock_dir).read_text() == str(os.getpid())
        finally:
            holder.release()

    def test_git_missing(self, make, git_on_path, lock_dir):
        git_on_path.return_value = None
        supervisor, _, err = make()
        assert supervisor.run() == EXIT_VCS_FAILURE
        assert "not installed" in err.getvalue()
        assert list(lock_dir.iterdir()) == []

    def test_unexpected_exception_is_internal(self, make, repo, lock_dir):
        supervisor, out, err = make(stop_after=5)
        supervisor.committer = MagicMock()
        supervisor.committer.commit.side_effect = RuntimeError("boom")
        assert supervisor.run() == EXIT_INTERNAL
        assert "boom" in err.getvalue()
        assert "Session Summary" in out.getvalue()
        assert not lock_path_for(repo, lock_dir).exists()

    def test_unrecoverable_tick_error_stops(self, make):
        responses = repo_responses({
            ("add",): fail("fatal: not a git repository (or any of the parent directories): .git"),
        })
        supervisor, out, err = make(responses, stop_after=5)
        assert supervisor.run() == EXIT_VCS_FAILURE
        assert len(supervisor.lifecycle.timeouts) == 1
        assert "Session Summary" in out.getvalue()


class TestRetryGate:
    """Identical-signature retry gate."""

    INDEX_LOCK = "fatal: Unable to create '/r/.git/index.lock': File exists."

    def test_escalates_after_identical_failures(self, make):
        responses = repo_responses({("add",): fail(self.INDEX_LOCK)})
        supervisor, out, err = make(responses, stop_after=10)
        assert supervisor.run() == EXIT_VCS_FAILURE
        assert len(supervisor.lifecycle.timeouts) == 3
        assert "Giving up after 3" in err.getvalue()
        assert "Total commits made: 0" in out.getvalue()

    def test_custom_limit(self, make):
        responses = repo_responses({("add",): fail(self.INDEX_LOCK)})
        supervisor, _, _ = make(responses, stop_after=10, max_retries=1)
        assert supervisor.run() == EXIT_VCS_FAILURE
        assert len(supervisor.lifecycle.timeouts) == 1

    def test_zero_means_retry_forever(self, make):
        responses = repo_responses({("add",): fail(self.INDEX_LOCK)})
        supervisor, _, _ = make(responses, stop_after=6, max_retries=0)
        assert supervisor.run() == EXIT_OK
        assert supervisor.state.consecutive_failures == 6

    def test_alternating_failures_do_not_escalate(self, make):
        errors = itertools.cycle([
            fail(self.INDEX_LOCK),
            fail("error: could not lock config file .git/config: File exists"),
        ])
        responses = repo_responses({("add",): lambda args: next(errors)})
        supervisor, _, _ = make(responses, stop_after=6)
        assert supervisor.run() == EXIT_OK
        assert supervisor.state.consecutive_failures == 1

    def test_success_resets_failures(self, make):
        supervisor, _, _ = make()
        supervisor.committer = MagicMock()
        transient = VCSTransient("add", "exit status 128", self.INDEX_LOCK)
        supervisor.committer.commit.side_effect = [
            transient, transient, CommitOutcome(committed=True, number=1), transient,
        ]
        drive_to_ticking(supervisor)
        for _ in range(4):
            assert supervisor.tick() is None
        assert supervisor.state.consecutive_failures == 1
        assert supervisor.state.commit_counter == 2
        assert supervisor.fsm.state == "ticking"

    def test_os_error_counts_as_io_failure(self, make):
        supervisor, _, err = make(stop_after=10, max_retries=2)
        supervisor.committer = MagicMock()
        supervisor.committer.commit.side_effect = PermissionError(13, "Permission denied")
        assert supervisor.run() == EXIT_IO
        assert len(supervisor.lifecycle.timeouts) == 2
        assert "I/O error during commit" in err.getvalue()

    def test_non_recoverable_propagates_from_tick(self, make):
        supervisor, _, _ = make()
        supervisor.committer = MagicMock()
        supervisor.committer.commit.side_effect = VCSPermanent("commit", "gone", recoverable=False)
        drive_to_ticking(supervisor)
        with pytest.raises(VCSPermanent):
            supervisor.tick()


class TestTickOutput:
    """Per-tick messages."""

    def no_change_supervisor(self, make, **flags):
        supervisor, out, _ = make(**flags)
        supervisor.committer = MagicMock()
        supervisor.committer.commit.return_value = CommitOutcome(committed=False)
        drive_to_ticking(supervisor)
        return supervisor, out

    def test_no_change_silent_by_default(self, make):
        supervisor, out = self.no_change_supervisor(make)
        supervisor.tick()
        assert "No changes" not in out.getvalue()
        assert supervisor.state.commit_counter == 1

    def test_no_change_reported_when_asked(self, make):
        supervisor, out = self.no_change_supervisor(make, show_no_changes=True)
        supervisor.tick()
        assert "No changes to commit at" in out.getvalue()

    def test_no_change_silent_when_quiet(self, make):
        supervisor, out = self.no_change_supervisor(make, show_no_changes=True, quiet=True)
        supervisor.tick()
        assert "No changes" not in out.getvalue()


class TestScheduling:
    """Timer behaviour."""

    def test_overrun_fires_once_then_resumes_cadence(self, make):
        # interval 1 minute = 60 s period; the second tick starts 440 s late
        times = iter([0, 0, 60, 500, 500, 500, 501, 501])
        supervisor, _, _ = make(stop_after=2, interval=1, clock=lambda: next(times))
        supervisor.committer = MagicMock()
        supervisor.committer.commit.return_value = CommitOutcome(committed=False)
        assert supervisor.run() == EXIT_OK
        assert supervisor.lifecycle.timeouts == [60, 0, 59]
        assert supervisor.committer.commit.call_count == 2

    def test_early_wakeup_does_not_tick(self, make):
        times = iter([0, 0, 30, 30, 60, 60, 60])
        supervisor, _, _ = make(stop_after=2, interval=1, clock=lambda: next(times))
        supervisor.committer = MagicMock()
        supervisor.committer.commit.return_value = CommitOutcome(committed=False)
        assert supervisor.run() == EXIT_OK
        assert supervisor.lifecycle.timeouts[:2] == [60, 30]
        assert supervisor.committer.commit.call_count == 1
