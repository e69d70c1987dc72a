"""API Routes Package."""

from api.routes import health, reconcile

__all__ = [
    "health",
    "reconcile",
]
