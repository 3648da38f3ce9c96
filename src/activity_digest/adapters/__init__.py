"""
Activity source adapters.

Each adapter implements :class:`SourceAdapter`: a configuration check, an
optional range preload and a per-day fetch returning canonical activities.
"""

from .auth import AccessToken, RefreshingTokenProvider, StaticTokenProvider, TokenProvider
from .base import BaseSourceAdapter, SourceAdapter
from .gitlab import GitLabAdapter
from .http import TracedHTTPClient

__all__ = [
    "AccessToken",
    "BaseSourceAdapter",
    "GitLabAdapter",
    "RefreshingTokenProvider",
    "SourceAdapter",
    "StaticTokenProvider",
    "TokenProvider",
    "TracedHTTPClient",
]
