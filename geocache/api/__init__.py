"""HTTP API for geocache."""

from .routes import router

__all__ = ["router"]
