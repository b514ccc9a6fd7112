"""Translate execution backend run states into agent statuses."""

from __future__ import annotations

import re

from arena.types import AgentStatus, RunState

_SEPARATORS = re.compile(r"[\s_\-]+")

_RUN_STATE_TO_AGENT_STATUS: dict[RunState, AgentStatus] = {
    RunState.QUEUED: AgentStatus.INITIALIZING,
    RunState.PENDING: AgentStatus.INITIALIZING,
    RunState.CLAIMED: AgentStatus.INITIALIZING,
    RunState.IN_PROGRESS: AgentStatus.DEVELOPING,
    RunState.SUCCEEDED: AgentStatus.PUSHING,
    RunState.FAILED: AgentStatus.FAILED,
    RunState.CANCELLED: AgentStatus.FAILED,
}


def normalize_run_state(state: str | None) -> RunState | None:
    """Normalize a raw run state (``INPROGRESS``, ``in-progress``, ...).

    Returns:
        The matching :class:`RunState`, or None when unrecognized.
    """
    if not state:
        return None
    key = _SEPARATORS.sub("", state).lower()
    if key == "canceled":
        key = RunState.CANCELLED.value
    return RunState(key) if RunState.is_valid(key) else None


def map_run_state(state: str | None) -> AgentStatus:
    """Map a remote run state to the candidate agent status.

    Total: unrecognized or missing states map to ``initializing`` so a
    backend that adds new states never breaks polling.

    Args:
        state: The run state as reported by the execution backend.

    Returns:
        The candidate agent status.
    """
    run_state = normalize_run_state(state)
    if run_state is None:
        return AgentStatus.INITIALIZING
    return _RUN_STATE_TO_AGENT_STATUS[run_state]
