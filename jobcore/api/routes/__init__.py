"""
API routes module.
"""

from jobcore.api.routes.dead_letters import router as dead_letters_router
from jobcore.api.routes.health import router as health_router
from jobcore.api.routes.jobs import router as jobs_router

__all__ = ["dead_letters_router", "health_router", "jobs_router"]
