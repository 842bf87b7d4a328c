"""
Identity lookup backends.

  HttpDirectoryResolver    → REST front of the corporate directory
  CachingIdentityResolver  → optional TTL cache (DIRECTORY_CACHE_TTL_S > 0)
"""
from .base import IdentityLookupError, IdentityNotFound, IdentityResolver, IdentityUnavailable
from .cache import CachingIdentityResolver
from .http_directory import HttpDirectoryResolver

__all__ = [
    "CachingIdentityResolver",
    "HttpDirectoryResolver",
    "IdentityLookupError",
    "IdentityNotFound",
    "IdentityResolver",
    "IdentityUnavailable",
]
