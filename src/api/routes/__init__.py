"""FastAPI route modules.

Exports all route modules for inclusion in the main application.
"""

from src.api.routes import conversations, integrations, sync

__all__ = [
    "conversations",
    "integrations",
    "sync",
]
