"""
compliance-audit-router: Route table

  GET  /readyz         readiness probe, always 200 "OK"
  GET  /healthz        liveness probe, always 200 "OK"
  POST /api/v1/alert   alert intake (see pipeline.orchestrator)
  GET  /metrics        telemetry in Prometheus text format
"""
from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable, Optional, Sequence, Tuple

from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse, Response

from ..pipeline.models import PipelineOutcome
from ..utils.logging_utils import structured_log
from ..utils.telemetry import telemetry

logger = logging.getLogger("audit_router.routes")

DISCONNECT_POLL_S = 0.1


@dataclass(frozen=True)
class Listener:
    path: str
    methods: Tuple[str, ...]
    endpoint: Callable[..., Awaitable[Response]]
    name: str


async def respond_ok() -> PlainTextResponse:
    """Health check: 200 "OK" no matter how downstream services are doing."""
    return PlainTextResponse("OK")


async def metrics(request: Request) -> PlainTextResponse:
    if not request.app.state.settings.enable_metrics:
        return PlainTextResponse("metrics disabled", status_code=503)
    return PlainTextResponse(telemetry.as_prometheus(), media_type="text/plain; version=0.0.4")


async def process_alert(request: Request) -> Response:
    """Run one alert through decode → resolve → dispatch and answer in plain text."""
    pipeline = request.app.state.pipeline
    body_done = asyncio.Event()

    async def chunks() -> AsyncIterator[bytes]:
        try:
            async for chunk in request.stream():
                yield chunk
        finally:
            body_done.set()

    outcome = await run_until_disconnected(
        request,
        pipeline.run(
            chunks(),
            content_type=request.headers.get("content-type"),
            content_length=request.headers.get("content-length"),
        ),
        body_done,
    )
    if outcome is None:
        # client is gone; nothing will be delivered
        return Response(status_code=499)
    return PlainTextResponse(outcome.message, status_code=outcome.status_code)


async def run_until_disconnected(
    request: Request,
    work: Awaitable[PipelineOutcome],
    body_done: asyncio.Event,
    poll_s: float = DISCONNECT_POLL_S,
) -> Optional[PipelineOutcome]:
    """Await ``work`` but cancel it if the client hangs up.

    Disconnects are only polled once the body has been consumed, so the
    watcher never competes with the pipeline for request messages.
    """
    task = asyncio.ensure_future(work)
    try:
        while True:
            done, _ = await asyncio.wait({task}, timeout=poll_s)
            if task in done:
                return task.result()
            if body_done.is_set() and await request.is_disconnected():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
                telemetry.incr("alerts_cancelled_total")
                structured_log(logger, logging.WARNING, "client_disconnected", path=request.url.path)
                return None
    except asyncio.CancelledError:
        task.cancel()
        raise


LISTENERS: Sequence[Listener] = (
    Listener("/readyz", ("GET",), respond_ok, "readyz"),
    Listener("/healthz", ("GET",), respond_ok, "healthz"),
    Listener("/api/v1/alert", ("POST",), process_alert, "process_alert"),
    Listener("/metrics", ("GET",), metrics, "metrics"),
)


def register_routes(app: FastAPI, listeners: Sequence[Listener] = LISTENERS, verbose: bool = False) -> None:
    for listener in listeners:
        if verbose:
            logger.info("enabling endpoint %s %s", listener.path, list(listener.methods))
        app.add_api_route(
            listener.path,
            listener.endpoint,
            methods=list(listener.methods),
            name=listener.name,
            include_in_schema=listener.path == "/api/v1/alert",
        )
