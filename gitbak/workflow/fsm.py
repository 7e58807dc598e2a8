"""Session state machine using transitions library.

The supervisor drives a session through a fixed sequence of phases:

    init -> locking -> validating -> preparing -> ticking <-> committing

and may jump to shutdown from anywhere. Only explicit triggers are
allowed, so an out-of-order call surfaces as a MachineError instead of
silently corrupting the session.

Usage:
    from gitbak.workflow.fsm import SessionFSM

    fsm = SessionFSM()
    fsm.lock()
    fsm.validate()
"""

import logging
from typing import Callable, Optional

from transitions import Machine

logger = logging.getLogger(__name__)


STATES = [
    "init",
    "locking",
    "validating",
    "preparing",
    "ticking",
    "committing",
    "shutdown",
]

TRANSITIONS = [
    # Startup
    {"trigger": "lock", "source": "init", "dest": "locking"},
    {"trigger": "validate", "source": "locking", "dest": "validating"},
    {"trigger": "prepare", "source": "validating", "dest": "preparing"},
    {"trigger": "start_ticking", "source": "preparing", "dest": "ticking"},

    # Steady state
    {"trigger": "tick", "source": "ticking", "dest": "committing"},
    {"trigger": "tick_done", "source": "committing", "dest": "ticking"},

    # Stop request, fatal error, or escalation
    {"trigger": "shutdown", "source": "*", "dest": "shutdown"},
]

# States in which the session has started taking checkpoints
ACTIVE_STATES = ("ticking", "committing")


class SessionFSM:
    """Phase tracker for one gitbak session.

    Remembers whether ticking was ever reached so shutdown knows whether
    to print the session summary.
    """

    def __init__(self, on_transition: Optional[Callable[[str, str, str], None]] = None):
        self.on_transition = on_transition
        self.reached_ticking = False

        self.machine = Machine(
            model=self,
            states=STATES,
            transitions=TRANSITIONS,
            initial="init",
            auto_transitions=False,
            send_event=True,
            after_state_change="on_state_change",
        )

    def on_state_change(self, event) -> None:
        from_state = event.transition.source
        to_state = event.transition.dest
        trigger = event.event.name

        if to_state == "ticking":
            self.reached_ticking = True

        logger.debug(f"[FSM] {from_state} -> {to_state} ({trigger})")

        if self.on_transition:
            self.on_transition(from_state, to_state, trigger)

    @property
    def active(self) -> bool:
        return self.state in ACTIVE_STATES

    def can(self, trigger: str) -> bool:
        """Check if a trigger can be executed in current state."""
        return trigger in self.machine.get_triggers(self.state)
