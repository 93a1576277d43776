"""API Routers package

Routers are organized by caller: members and internal systems.
"""

from . import internal_router, queue_router

__all__ = [
    "internal_router",
    "queue_router",
]
