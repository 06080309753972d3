from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Set

# try_update -> (404) -> try_create -> done, or try_create -> done.
_TRANSITIONS: Dict[str, Set[str]] = {
    "try_update": {"done", "try_create", "failed"},
    "try_create": {"done", "failed"},
    "done": {"done"},
    "failed": {"failed"},
}

_TERMINAL_STATES = {"done", "failed"}


def initial_write_state(*, existing_known: bool, profile_loaded: bool) -> str:
    if existing_known or not profile_loaded:
        return "try_update"
    return "try_create"


def is_terminal_write_state(state: object) -> bool:
    return str(state or "") in _TERMINAL_STATES


@dataclass
class WeakPointWriteStateMachine:
    state: str
    # only the fallback path may turn a missing PUT target into a create
    allow_create_fallback: bool = False
    outcome: str = ""

    def __post_init__(self) -> None:
        if self.state not in _TRANSITIONS:
            raise ValueError(f"invalid_weak_write_state:{self.state}")

    def transition(self, target: str) -> str:
        allowed = _TRANSITIONS.get(self.state)
        if not allowed or target not in allowed:
            raise ValueError(f"invalid_weak_write_transition:{self.state}->{target}")
        self.state = target
        return self.state

    def on_success(self) -> str:
        self.outcome = "updated" if self.state == "try_update" else "added"
        return self.transition("done")

    def on_failure(self, status: int | None) -> str:
        if self.state == "try_update" and self.allow_create_fallback and status == 404:
            return self.transition("try_create")
        return self.transition("failed")

    @property
    def terminal(self) -> bool:
        return is_terminal_write_state(self.state)
