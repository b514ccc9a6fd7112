"""Exception hierarchy for the arena application.

``TransientFetchError`` and its subclasses are raised by the REST clients when
a remote call fails. Callers in the polling path catch them per agent and let
the next tick retry. Absent resources are not errors: clients return ``None``
or empty lists for them.
"""

from __future__ import annotations


class ArenaError(Exception):
    """Base class for all arena errors."""


class ConfigurationError(ArenaError):
    """Raised when a required credential or setting is missing."""


class TransientFetchError(ArenaError):
    """Raised when a call to an external service fails and may be retried later."""


class ExecutionClientError(TransientFetchError):
    """Raised when the execution backend call fails."""


class CodeHostError(TransientFetchError):
    """Raised when a code host (GitHub) call fails."""


class DeploymentHostError(TransientFetchError):
    """Raised when a deployment host (Vercel) call fails."""


class SpawnError(ArenaError):
    """Raised when no agent of a job could be started."""

    def __init__(self, message: str, errors: list[Exception] | None = None) -> None:
        super().__init__(message)
        self.errors: list[Exception] = errors or []


# NOTE: Update this list when adding new exports to this module.
__all__ = [
    "ArenaError",
    "CodeHostError",
    "ConfigurationError",
    "DeploymentHostError",
    "ExecutionClientError",
    "SpawnError",
    "TransientFetchError",
]
