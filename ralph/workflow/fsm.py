"""Loop state machine using the transitions library.

One LoopFSM lives for the duration of a build run:

    idle -> selecting_task -> invoking -> verifying -> recording -> idle
                 |                |                        ^
                 v                +------------------------+
               done                  (invocation failed)

idle goes to done when the iteration budget is spent; selecting_task goes
to done when no task is pending. Any non-terminal state may abort.
"""

import logging
from typing import Callable

from transitions import Machine

logger = logging.getLogger(__name__)

IDLE = "idle"
SELECTING_TASK = "selecting_task"
INVOKING = "invoking"
VERIFYING = "verifying"
RECORDING = "recording"
DONE = "done"
ABORTED = "aborted"

STATES = [IDLE, SELECTING_TASK, INVOKING, VERIFYING, RECORDING, DONE, ABORTED]
TERMINAL_STATES = (DONE, ABORTED)

TRANSITIONS = [
    {"trigger": "select_task", "source": IDLE, "dest": SELECTING_TASK},
    {"trigger": "budget_exhausted", "source": IDLE, "dest": DONE},

    {"trigger": "start_invoke", "source": SELECTING_TASK, "dest": INVOKING},
    {"trigger": "backlog_exhausted", "source": SELECTING_TASK, "dest": DONE},

    {"trigger": "start_verify", "source": INVOKING, "dest": VERIFYING},
    {"trigger": "record", "source": INVOKING, "dest": RECORDING},      # invocation failed
    {"trigger": "record", "source": VERIFYING, "dest": RECORDING},

    {"trigger": "next_iteration", "source": RECORDING, "dest": IDLE},

    {"trigger": "abort", "source": [IDLE, SELECTING_TASK, INVOKING, VERIFYING, RECORDING], "dest": ABORTED},
]


class LoopFSM:
    """State machine for one build run.

    Wraps transitions.Machine: logs every transition and forwards it to an
    optional observer callback(from_state, to_state, trigger).
    """

    def __init__(self, on_transition: Callable[[str, str, str], None] | None = None):
        self.on_transition = on_transition
        self.history: list[tuple[str, str, str]] = []

        self.machine = Machine(
            model=self,
            states=STATES,
            transitions=TRANSITIONS,
            initial=IDLE,
            auto_transitions=False,
            send_event=True,
            after_state_change="on_state_change",
        )

    def on_state_change(self, event) -> None:
        from_state = event.transition.source
        to_state = event.transition.dest
        trigger = event.event.name

        logger.info(f"[LOOP] {from_state} -> {to_state} ({trigger})")
        self.history.append((from_state, to_state, trigger))

        if self.on_transition:
            self.on_transition(from_state, to_state, trigger)

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def can(self, trigger: str) -> bool:
        return trigger in self.machine.get_triggers(self.state)
