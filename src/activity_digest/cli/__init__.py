"""
Command line interface for the activity digest.
"""

from .main import app

__all__ = ["app"]
