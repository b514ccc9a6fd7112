"""Decide when a job has converged and polling can stop.

A job converges once there is something worth reviewing (a ready agent, or
every agent failed) and either everyone is done, stragglers have been given
enough time after a majority finished, or the overall wait budget ran out.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass

from arena.types import AgentStatus

DEFAULT_MAJORITY_THRESHOLD = 0.5
DEFAULT_IDLE_TIMEOUT = 60.0  # seconds
DEFAULT_MAX_WAIT = 30 * 60.0  # seconds


@dataclass(frozen=True)
class ConvergenceDecision:
    """Outcome of one policy evaluation.

    Attributes:
        converged: Whether the job should move to review.
        reason: Short explanation for logs ("all_terminal", "idle_timeout",
            "max_wait", or why it is still waiting: "nothing_to_review",
            "no_preview", "waiting").
    """

    converged: bool
    reason: str


@dataclass(frozen=True)
class TerminationPolicy:
    """Quorum- and time-based convergence rule.

    Attributes:
        majority_threshold: Fraction of agents that must be terminal before
            the idle timeout applies.
        idle_timeout: Seconds after the most recent terminal transition after
            which the remaining agents are no longer waited for.
        max_wait: Seconds after job start after which the job converges as
            long as there is something to review.
    """

    majority_threshold: float = DEFAULT_MAJORITY_THRESHOLD
    idle_timeout: float = DEFAULT_IDLE_TIMEOUT
    max_wait: float = DEFAULT_MAX_WAIT

    def majority_count(self, total: int) -> int:
        """Number of terminal agents that constitutes a majority of ``total``."""
        return math.ceil(total * self.majority_threshold)

    def evaluate(
        self,
        statuses: Sequence[AgentStatus],
        started_at: float,
        last_finisher_at: float | None,
        now: float,
        ready_with_preview: bool = False,
    ) -> ConvergenceDecision:
        """Evaluate the policy for one job.

        Args:
            statuses: Current status of every agent in the job.
            started_at: Epoch seconds the job started being monitored.
            last_finisher_at: Epoch seconds of the most recent transition of
                any agent into a terminal status, or None if none happened.
            now: Current epoch seconds.
            ready_with_preview: Whether some ``ready`` agent has a resolved
                preview. Stragglers are only abandoned (idle timeout, max
                wait) once there is a deployed result to look at.

        Returns:
            The :class:`ConvergenceDecision`.
        """
        total = len(statuses)
        if total == 0:
            return ConvergenceDecision(converged=True, reason="no_agents")

        terminal = sum(1 for status in statuses if status.is_terminal)
        all_terminal = terminal == total
        any_ready = any(status == AgentStatus.READY for status in statuses)
        all_failed = all(status.is_failure for status in statuses)

        if not (any_ready or (all_terminal and all_failed)):
            return ConvergenceDecision(converged=False, reason="nothing_to_review")

        if all_terminal:
            return ConvergenceDecision(converged=True, reason="all_terminal")

        if not ready_with_preview:
            return ConvergenceDecision(converged=False, reason="no_preview")

        if now - started_at >= self.max_wait:
            return ConvergenceDecision(converged=True, reason="max_wait")

        if (
            terminal >= self.majority_count(total)
            and last_finisher_at is not None
            and now - last_finisher_at >= self.idle_timeout
        ):
            return ConvergenceDecision(converged=True, reason="idle_timeout")

        return ConvergenceDecision(converged=False, reason="waiting")
