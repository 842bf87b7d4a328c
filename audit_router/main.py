"""
compliance-audit-router
=======================
Receives Splunk alerts, looks the alerted user up in the directory and opens
a Jira ticket assigned to them, with their manager watching.
"""
from __future__ import annotations

import logging
import time
import uuid
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .api.routes import LISTENERS, register_routes
from .config import PipelineConfig, Settings, settings
from .directory.base import IdentityResolver
from .directory.cache import CachingIdentityResolver
from .directory.http_directory import HttpDirectoryResolver
from .pipeline.orchestrator import AlertPipeline
from .ticketing.base import TicketDispatcher
from .ticketing.jira import JiraTicketDispatcher
from .utils.logging_utils import clear_request_context, configure_logging, set_request_context, structured_log
from .utils.telemetry import telemetry

configure_logging(settings.log_level)
logger = logging.getLogger("audit_router")

_DEV_ENVS = {"dev", "development", "local", "test", "testing"}


def build_resolver(s: Settings) -> IdentityResolver:
    resolver: IdentityResolver = HttpDirectoryResolver(
        s.directory_base_url,
        token=s.directory_token,
        timeout=s.directory_timeout_s,
        require_manager=s.require_manager,
    )
    if s.directory_cache_ttl_s > 0:
        resolver = CachingIdentityResolver(resolver, ttl_s=s.directory_cache_ttl_s)
    return resolver


def build_dispatcher(s: Settings) -> TicketDispatcher:
    return JiraTicketDispatcher(
        s.jira_base_url,
        token=s.jira_token,
        project_key=s.jira_project_key,
        issue_type=s.jira_issue_type,
        labels=s.jira_labels,
        timeout=s.ticket_timeout_s,
    )


def create_app(
    resolver: Optional[IdentityResolver] = None,
    dispatcher: Optional[TicketDispatcher] = None,
    app_settings: Optional[Settings] = None,
) -> FastAPI:
    s = app_settings or settings
    resolver = resolver or build_resolver(s)
    dispatcher = dispatcher or build_dispatcher(s)
    pipeline = AlertPipeline(PipelineConfig.from_settings(s), resolver, dispatcher)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("%s v%s starting up...", s.app_name, s.app_version)
        for component in (resolver, dispatcher):
            if not component.is_configured():
                logger.warning("%s is not configured; alerts will fail at this stage", component.name)
        logger.info("Identity resolver: %s, ticket dispatcher: %s", resolver.name, dispatcher.name)
        yield
        await resolver.aclose()
        await dispatcher.aclose()
        logger.info("%s shutdown complete.", s.app_name)

    app = FastAPI(
        title=s.app_name,
        version=s.app_version,
        description="Splunk alert → directory lookup → Jira ticket",
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
    )
    app.state.settings = s
    app.state.pipeline = pipeline

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        start = time.monotonic()
        request.state.request_id = request_id
        tokens = set_request_context(request_id=request_id)
        try:
            response = await call_next(request)
            elapsed_ms = int((time.monotonic() - start) * 1000)
            response.headers["x-request-id"] = request_id
            telemetry.incr("http_requests_total")
            telemetry.incr(f"http_status_{response.status_code}_total")
            telemetry.timing("http_request", elapsed_ms / 1000.0)
            structured_log(
                logger, logging.INFO, "http_request",
                method=request.method, path=request.url.path, status_code=response.status_code, elapsed_ms=elapsed_ms,
            )
            return response
        finally:
            clear_request_context(tokens)

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        return PlainTextResponse(str(exc.detail), status_code=exc.status_code, headers=getattr(exc, "headers", None))

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception(
            "unhandled request error: path=%s request_id=%s",
            request.url.path, getattr(request.state, "request_id", "-"),
        )
        body = "Internal Server Error"
        if s.app_env.strip().lower() in _DEV_ENVS or s.expose_internal_error_details:
            body = f"{body}: {exc}"
        return PlainTextResponse(body, status_code=500)

    register_routes(app, LISTENERS, verbose=s.verbose)
    return app


app = create_app()
