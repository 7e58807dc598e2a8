"""
Session supervisor for gitbak.

Drives one session through the SessionFSM:

    init -> locking -> validating -> preparing -> ticking <-> committing -> shutdown

Startup failures are fatal. Tick failures are retried until the same
failure (by signature) repeats max_retries times in a row. Every resource
taken on the way in (log file, lock, signal handlers) is released in
reverse order on every way out.
"""

import logging
import shutil
import time
from contextlib import ExitStack
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from gitbak.git.branch import MODE_CONTINUE, BranchManager
from gitbak.git.commit import Committer
from gitbak.git.probe import RepoProbe
from gitbak.git.runner import Executor
from gitbak.lib.config import Config
from gitbak.lib.constants import APP_NAME, COMMIT_TIMESTAMP_FORMAT, EXIT_OK, MIN_TICK_SECONDS
from gitbak.lib.errors import (
    GitbakError,
    InternalError,
    IOFailure,
    NotARepository,
    VCSPermanent,
    error_signature,
)
from gitbak.lib.interaction import Interactor, create_interactor
from gitbak.lib.log import SessionLogger
from gitbak.runner.context import SessionState
from gitbak.runner.lifecycle import Lifecycle, print_summary
from gitbak.runner.locking import Locker
from gitbak.workflow.fsm import SessionFSM

logger = logging.getLogger(__name__)


def tick_period(interval_minutes: float) -> float:
    """Seconds between ticks, never below the scheduler quantum."""
    return max(interval_minutes * 60.0, MIN_TICK_SECONDS)


class Supervisor:
    """
    Owns one gitbak session from lock acquisition to lock release.

    Collaborators can be injected for tests; by default they are built
    from the config.
    """

    def __init__(
        self,
        config: Config,
        session_log: SessionLogger,
        executor: Optional[Executor] = None,
        interactor: Optional[Interactor] = None,
        lifecycle: Optional[Lifecycle] = None,
        lock_dir: Optional[Path] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self.session_log = session_log
        self.executor = executor or Executor()
        self.interactor = interactor or create_interactor(config.non_interactive, session_log.stdout)
        self.lifecycle = lifecycle
        self.lock_dir = lock_dir
        self.clock = clock

        self.fsm = SessionFSM()
        self.state = SessionState()
        self.probe = RepoProbe(config.repo_path, self.executor)
        self.committer = Committer(self.probe, self.executor)
        self.locker: Optional[Locker] = None
        self._release_error: Optional[GitbakError] = None

    def run(self) -> int:
        """
        Run the session until stopped.

        Returns:
            Process exit code (0 on user-initiated stop)
        """
        with ExitStack() as stack:
            stack.callback(self.session_log.close)
            try:
                code = self._run(stack)
            except GitbakError as e:
                code = self._fail(e)
            except Exception as e:
                code = self._fail(InternalError(f"unexpected {type(e).__name__}: {e}"))

            self._shutdown()
            stack.close()
            if code == EXIT_OK and self._release_error is not None:
                code = self._release_error.exit_code
        return code

    def _run(self, stack: ExitStack) -> int:
        cfg = self.config

        if shutil.which("git") is None:
            raise VCSPermanent("prerequisite check", "git is not installed or not in PATH", recoverable=False)

        self.fsm.lock()
        self.locker = Locker(cfg.repo_path, self.lock_dir)
        self.locker.acquire()
        stack.callback(self._release_lock)

        self.fsm.validate()
        if not self.probe.is_repo():
            raise NotARepository(str(cfg.repo_path))

        self.fsm.prepare()
        manager = BranchManager(self.probe, self.interactor, self.session_log)
        setup = manager.prepare(cfg.branch_name, cfg.create_branch, cfg.continue_session)
        self.state.branch_name = setup.branch_name
        self.state.original_branch = setup.original_branch
        self.state.created_branch = setup.created_branch
        self.state.commit_counter = self._initial_counter(setup.mode, setup.branch_name)
        self._banner()

        if self.lifecycle is None:
            self.lifecycle = Lifecycle()
        self.lifecycle.install()
        stack.callback(self.lifecycle.close)

        self.fsm.start_ticking()
        self.state.start_time = time.monotonic()
        return self._loop()

    def _initial_counter(self, mode: str, branch: str) -> int:
        if mode != MODE_CONTINUE:
            return 1
        highest = self.probe.last_checkpoint_number(branch, self.config.commit_prefix)
        if highest > 0:
            self.session_log.info_to_user(f"Found previous commits - starting from commit #{highest + 1}")
        else:
            self.session_log.info_to_user(
                f"No previous commits found with prefix '{self.config.commit_prefix}' - starting from commit #1"
            )
        return highest + 1

    def _banner(self) -> None:
        cfg = self.config
        out = self.session_log.status
        out(f"🔄 {APP_NAME} started at {datetime.now().strftime(COMMIT_TIMESTAMP_FORMAT)}")
        out(f"📂 Repository: {cfg.repo_path}")
        out(f"🌿 Branch: {self.state.branch_name}")
        out(f"⏱️  Interval: {cfg.interval_minutes:g} minutes")
        out(f"📝 Commit prefix: {cfg.commit_prefix}")
        if cfg.continue_session:
            out(f"🔁 Continuing session from commit #{self.state.commit_counter}")
        else:
            out("🆕 New session")
        out(f"🔊 Verbose mode: {cfg.verbose}")
        out(f"🔔 Show no-changes messages: {cfg.show_no_changes}")
        out("❓ Press Ctrl+C to stop and view session summary")

    def _loop(self) -> int:
        period = tick_period(self.config.interval_minutes)
        next_tick = self.clock() + period
        logger.info(f"Ticking every {period:.1f}s")

        while True:
            if self.lifecycle.wait(next_tick - self.clock()):
                logger.info("Received stop request, shutting down gracefully")
                return EXIT_OK
            if self.clock() < next_tick:
                continue

            code = self.tick()
            if code is not None:
                return code

            next_tick += period
            now = self.clock()
            if next_tick <= now:
                # Overran one or more periods; fire once, right away
                next_tick = now

    def tick(self) -> Optional[int]:
        """
        One commit attempt.

        Returns:
            None to keep ticking, or an exit code to stop with
        """
        self.fsm.tick()
        state = self.state
        try:
            outcome = self.committer.commit(self.config.commit_prefix, state.commit_counter)
        except (GitbakError, OSError) as e:
            error = IOFailure(f"I/O error during commit: {e}") if isinstance(e, OSError) else e
            if not error.recoverable:
                raise
            code = self._tick_failed(error)
            if code is None:
                self.fsm.tick_done()
            return code

        self.fsm.tick_done()
        if outcome.committed:
            self.session_log.success(
                f"Commit #{outcome.number} created at {datetime.now().strftime(COMMIT_TIMESTAMP_FORMAT)}"
            )
            state.record_success()
        else:
            if self.config.show_no_changes and self.config.verbose:
                self.session_log.info_to_user(f"No changes to commit at {datetime.now().strftime('%H:%M:%S')}")
            logger.debug("No changes to commit")
        return None

    def _tick_failed(self, error: GitbakError) -> Optional[int]:
        state = self.state
        failures = state.record_failure(error_signature(error))
        limit = self.config.max_retries
        self.session_log.warning_to_user(f"Error occurred: {error}")

        if limit > 0 and failures >= limit:
            self.session_log.error(
                f"Giving up after {failures} consecutive identical failures: {error}"
            )
            return error.exit_code

        if limit > 0:
            self.session_log.status(
                f"Will retry in {self.config.interval_minutes:g} minutes ({failures}/{limit})."
            )
        else:
            self.session_log.status(f"Will retry in {self.config.interval_minutes:g} minutes.")
        return None

    def _fail(self, error: GitbakError) -> int:
        self.session_log.error(str(error), exc_info=True)
        return error.exit_code

    def _shutdown(self) -> None:
        self.fsm.shutdown()
        if self.fsm.reached_ticking:
            print_summary(self.session_log, self.state, self.probe)

    def _release_lock(self) -> None:
        try:
            self.locker.release()
        except GitbakError as e:
            self._release_error = e
            self.session_log.error(f"Failed to release lock: {e}")
