"""
Per-session bookkeeping for gitbak.
"""

import time
from dataclasses import dataclass, field
from typing import Optional


@dataclass
class SessionState:
    """Counters and branch facts for one running session."""
    commit_counter: int = 1
    commits_made: int = 0
    consecutive_failures: int = 0
    last_error_signature: Optional[str] = None
    start_time: float = field(default_factory=time.monotonic)
    branch_name: str = ""
    original_branch: str = ""
    created_branch: bool = False

    def record_success(self) -> None:
        """A checkpoint landed: advance the counter and clear failure tracking."""
        self.commit_counter += 1
        self.commits_made += 1
        self.consecutive_failures = 0
        self.last_error_signature = None

    def record_failure(self, signature: str) -> int:
        """
        Track a failed tick. A failure with a different signature than the
        previous one starts the count again from 1.

        Returns:
            Consecutive failures with this signature
        """
        if signature == self.last_error_signature:
            self.consecutive_failures += 1
        else:
            self.consecutive_failures = 1
            self.last_error_signature = signature
        return self.consecutive_failures

    def duration(self) -> float:
        """Seconds since the session started."""
        return time.monotonic() - self.start_time
