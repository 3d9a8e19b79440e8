"""Command line interface for tasktrail."""

from .main import app

__all__ = ["app"]
