from __future__ import annotations

import asyncio
from typing import Any, Callable, Dict, List, Optional

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from audit_router.config import PipelineConfig, Settings
from audit_router.directory.base import IdentityNotFound, IdentityResolver
from audit_router.main import create_app
from audit_router.pipeline.models import Identity, TicketRequest
from audit_router.pipeline.orchestrator import AlertPipeline
from audit_router.ticketing.base import TicketDispatcher
from audit_router.utils.telemetry import telemetry


class FakeResolver(IdentityResolver):
    def __init__(self, users: Optional[Dict[str, Identity]] = None, error: Optional[Exception] = None, delay: float = 0.0):
        self.users = dict(users or {})
        self.error = error
        self.delay = delay
        self.calls: List[str] = []
        self.closed = False

    async def resolve(self, username: str):
        self.calls.append(username)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        user = self.users.get(username)
        if user is None:
            raise IdentityNotFound(username, "no such user")
        manager = self.users.get(user.manager) if user.manager else None
        return user, manager

    async def aclose(self) -> None:
        self.closed = True


class FakeDispatcher(TicketDispatcher):
    def __init__(self, ticket_id: str = "OHSS-1", error: Optional[Exception] = None, delay: float = 0.0):
        self.ticket_id = ticket_id
        self.error = error
        self.delay = delay
        self.calls: List[TicketRequest] = []
        self.watched: List[str] = []
        self.watcher_delay = 0.0
        self.watcher_error: Optional[Exception] = None
        self.closed = False

    async def create_ticket(self, request: TicketRequest) -> str:
        self.calls.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.ticket_id

    async def add_watchers(self, ticket_id: str, request: TicketRequest) -> None:
        if self.watcher_delay:
            await asyncio.sleep(self.watcher_delay)
        if self.watcher_error is not None:
            raise self.watcher_error
        self.watched.append(ticket_id)

    async def aclose(self) -> None:
        self.closed = True


JDOE = Identity(username="jdoe", display_name="Jane Doe", email="jdoe@example.com", manager="msmith")
MSMITH = Identity(username="msmith", display_name="Mark Smith", email="msmith@example.com")


def make_payload(**overrides: Any) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "sid": "s1",
        "search_name": "Privileged login outside change window",
        "app": "search",
        "owner": "admin",
        "results_link": "https://splunk.example.com/app/search/@go?sid=s1",
        "result": {"_raw": "user=jdoe action=sudo host=bastion-1", "user": "jdoe", "host": "bastion-1"},
    }
    payload.update(overrides)
    return payload


def build_settings(**overrides: Any) -> Settings:
    values: Dict[str, Any] = {
        "app_env": "test",
        "directory_base_url": "",
        "jira_base_url": "",
        "directory_cache_ttl_s": 0,
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def alert_payload() -> Callable[..., Dict[str, Any]]:
    return make_payload


@pytest.fixture
def settings_factory() -> Callable[..., Settings]:
    return build_settings


@pytest.fixture
def identities() -> Dict[str, Identity]:
    return {"jdoe": JDOE, "msmith": MSMITH}


@pytest.fixture
def resolver() -> FakeResolver:
    return FakeResolver({"jdoe": JDOE, "msmith": MSMITH})


@pytest.fixture
def dispatcher() -> FakeDispatcher:
    return FakeDispatcher()


@pytest.fixture
def make_app(resolver, dispatcher) -> Callable[..., FastAPI]:
    def _make(**overrides: Any) -> FastAPI:
        return create_app(resolver=resolver, dispatcher=dispatcher, app_settings=build_settings(**overrides))
    return _make


@pytest.fixture
def client(make_app) -> TestClient:
    return TestClient(make_app())


@pytest.fixture(autouse=True)
def reset_telemetry():
    telemetry.reset()
    yield
    telemetry.reset()


async def _iter_chunks(parts):
    for part in parts:
        yield part


@pytest.fixture
def body_chunks() -> Callable[..., Any]:
    def _make(*parts: bytes):
        return _iter_chunks(parts)
    return _make


@pytest.fixture
def pipeline_factory(resolver, dispatcher) -> Callable[..., AlertPipeline]:
    def _make(**config: Any) -> AlertPipeline:
        return AlertPipeline(PipelineConfig(**config), resolver, dispatcher)
    return _make
