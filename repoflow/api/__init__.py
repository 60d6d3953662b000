"""HTTP API for starting runs and polling their status."""

from .app import create_app

__all__ = ["create_app"]
