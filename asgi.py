"""
asgi.py -- ASGI entry point for MissionGuard.

Run with:  uvicorn asgi:app --reload

api/main.py builds the application; this module only re-exports it so process
managers have a stable import path that does not depend on package layout.
"""

from api.main import app

__all__ = ["app"]
