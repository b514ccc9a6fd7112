"""Type definitions and enums for the arena application.

This module centralizes the status families used across the store, the
orchestrator and the HTTP API so that no component compares raw strings.

Usage:
    from arena.types import AgentStatus, JobStatus

    # StrEnum members compare equal to their string values
    if agent.status == AgentStatus.READY:
        ...

    AgentStatus.is_valid("deploying")  # True
    AgentStatus.READY.is_terminal  # True
"""

from __future__ import annotations

from enum import StrEnum


class AgentStatus(StrEnum):
    """Lifecycle status of a single agent inside a job.

    Values:
        INITIALIZING: Run requested, not yet executing ("initializing")
        DEVELOPING: The execution backend is working ("developing")
        PUSHING: Run finished, waiting for the branch to show up ("pushing")
        DEPLOYING: A deployment for the branch is in flight ("deploying")
        READY: Deployed successfully ("ready")
        FAILED: The run itself failed or was cancelled ("failed")
        DEPLOYMENT_FAILED: The run succeeded but its deployment failed
            ("deployment_failed")
    """

    INITIALIZING = "initializing"
    DEVELOPING = "developing"
    PUSHING = "pushing"
    DEPLOYING = "deploying"
    READY = "ready"
    FAILED = "failed"
    DEPLOYMENT_FAILED = "deployment_failed"

    @property
    def is_terminal(self) -> bool:
        """Whether no further transitions are expected for this status."""
        return self in TERMINAL_AGENT_STATUSES

    @property
    def is_failure(self) -> bool:
        """Whether this status is one of the two failure outcomes."""
        return self in FAILED_AGENT_STATUSES

    @classmethod
    def is_valid(cls, value: str) -> bool:
        """Check if a string value is a valid agent status.

        Args:
            value: The string value to validate.

        Returns:
            True if the value matches a valid agent status.
        """
        return value in cls._value2member_map_

    @classmethod
    def values(cls) -> frozenset[str]:
        """Return all valid agent status values as a frozenset."""
        return frozenset(member.value for member in cls)


TERMINAL_AGENT_STATUSES: frozenset[AgentStatus] = frozenset(
    {AgentStatus.READY, AgentStatus.FAILED, AgentStatus.DEPLOYMENT_FAILED}
)

FAILED_AGENT_STATUSES: frozenset[AgentStatus] = frozenset(
    {AgentStatus.FAILED, AgentStatus.DEPLOYMENT_FAILED}
)


class JobStatus(StrEnum):
    """Status of a job as a whole.

    Job status only ever moves forward along ``ordered()``.

    Values:
        PROCESSING: Agents are still being tracked ("processing")
        REVIEW_NEEDED: Polling converged, a human should compare results
            ("review_needed")
        COMPLETED: A human picked a winner ("completed")
    """

    PROCESSING = "processing"
    REVIEW_NEEDED = "review_needed"
    COMPLETED = "completed"

    @property
    def rank(self) -> int:
        """Position of this status in the forward-only ordering."""
        return _JOB_STATUS_ORDER.index(self)

    @classmethod
    def is_valid(cls, value: str) -> bool:
        """Check if a string value is a valid job status.

        Args:
            value: The string value to validate.

        Returns:
            True if the value matches a valid job status.
        """
        return value in cls._value2member_map_

    @classmethod
    def values(cls) -> frozenset[str]:
        """Return all valid job status values as a frozenset."""
        return frozenset(member.value for member in cls)


_JOB_STATUS_ORDER: tuple[JobStatus, ...] = (
    JobStatus.PROCESSING,
    JobStatus.REVIEW_NEEDED,
    JobStatus.COMPLETED,
)


class DeploymentOutcome(StrEnum):
    """Merged result of the code host and deployment pipelines for a branch.

    Values:
        PENDING: Something is in flight ("pending")
        SUCCESS: Deployed ("success")
        FAILURE: Build or deployment failed ("failure")
        NOT_FOUND: Nothing to report yet, usually the branch is not pushed
            ("not_found")
    """

    PENDING = "pending"
    SUCCESS = "success"
    FAILURE = "failure"
    NOT_FOUND = "not_found"


class RunState(StrEnum):
    """Normalized run states reported by the execution backend.

    The backend reports these in upper case without separators
    (``INPROGRESS``); values here are the normalized lower-case form.
    """

    QUEUED = "queued"
    PENDING = "pending"
    CLAIMED = "claimed"
    IN_PROGRESS = "inprogress"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @classmethod
    def is_valid(cls, value: str) -> bool:
        """Check if a string value is a valid normalized run state."""
        return value in cls._value2member_map_


# NOTE: Update this list when adding new exports to this module.
__all__ = [
    "AgentStatus",
    "DeploymentOutcome",
    "FAILED_AGENT_STATUSES",
    "JobStatus",
    "RunState",
    "TERMINAL_AGENT_STATUSES",
]
