"""
API module.
Contains the FastAPI ops application and routes.
"""

from jobcore.api.main import create_app, run

__all__ = ["create_app", "run"]
