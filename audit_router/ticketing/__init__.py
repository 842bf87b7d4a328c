from .base import DispatchError, TicketDispatcher
from .jira import JiraTicketDispatcher

__all__ = ["DispatchError", "JiraTicketDispatcher", "TicketDispatcher"]
