"""Utility modules for the Sandbox Pool service."""

from .logging import setup_logging

__all__ = [
    "setup_logging",
]
