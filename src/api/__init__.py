"""API endpoints for the Sandbox Pool service."""

from . import sandbox

__all__ = ["sandbox"]
