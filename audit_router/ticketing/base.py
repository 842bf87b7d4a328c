"""
compliance-audit-router: Ticket Dispatcher interface
"""
from abc import ABC, abstractmethod

from ..pipeline.models import TicketRequest


class DispatchError(Exception):
    """The issue tracker did not create the ticket."""


class TicketDispatcher(ABC):

    @abstractmethod
    async def create_ticket(self, request: TicketRequest) -> str:
        """
        Open one ticket for the alert in ``request``.
        Returns the ticket id. Raises DispatchError on failure.
        """
        ...

    async def add_watchers(self, ticket_id: str, request: TicketRequest) -> None:
        """Subscribe interested parties to an existing ticket. Best effort."""
        return None

    def is_configured(self) -> bool:
        return True

    async def aclose(self) -> None:
        return None

    @property
    def name(self) -> str:
        return self.__class__.__name__
