"""
compliance-audit-router: Identity Resolver interface
"""
from abc import ABC, abstractmethod
from typing import Optional, Tuple

from ..pipeline.models import Identity


class IdentityLookupError(Exception):
    def __init__(self, username: str, reason: str = ""):
        super().__init__(reason or username)
        self.username = username
        self.reason = reason


class IdentityNotFound(IdentityLookupError):
    """The directory has no record for the username."""


class IdentityUnavailable(IdentityLookupError):
    """The directory could not be reached or gave an unusable answer."""


class IdentityResolver(ABC):
    """Maps a username to its directory record and that user's manager."""

    @abstractmethod
    async def resolve(self, username: str) -> Tuple[Identity, Optional[Identity]]:
        """
        Returns (user, manager). ``manager`` is None when the user has none.
        Raises IdentityNotFound or IdentityUnavailable.
        """
        ...

    def is_configured(self) -> bool:
        return True

    async def aclose(self) -> None:
        return None

    @property
    def name(self) -> str:
        return self.__class__.__name__
