"""HTTP API for Agent Arena.

The API is a thin layer over the job store and the spawner: it creates jobs,
exposes their state to the review UI and records the reviewer's decision.
"""

from arena.api.app import create_app
from arena.api.routes import create_health_routes, create_routes, create_webhook_routes

# NOTE: Update this list when adding new exports to this module.
__all__ = [
    "create_app",
    "create_health_routes",
    "create_routes",
    "create_webhook_routes",
]
