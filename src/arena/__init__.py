"""Agent Arena - parallel coding agent orchestration and convergence tracking."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("agent-arena")
except PackageNotFoundError:
    # Package is not installed (e.g., running from source without pip install)
    __version__ = "0.0.0.dev0"

# Re-export core public API
from arena.app import main
from arena.orchestrator import PollingOrchestrator
from arena.store import JobStore

# NOTE: Update this list when adding new exports to this module.
__all__ = [
    "__version__",
    "JobStore",
    "PollingOrchestrator",
    "main",
]
