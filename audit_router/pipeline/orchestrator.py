"""
Alert Pipeline Orchestrator
===========================
One run per inbound alert, strictly linear:

  RECEIVED → DECODED → RESOLVED → DISPATCHED → RESPONDED
      ↓          ↓          ↓
  DECODE_FAILED  RESOLVE_FAILED  DISPATCH_FAILED  → RESPONDED

Every stage failure ends the run with its own status code. Only decoder
messages for malformed requests are passed through to the caller; all other
detail goes to the log together with the alert sid and the stage name.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import AsyncIterator, Dict, FrozenSet, List, Optional, Tuple

from ..config import PipelineConfig
from ..directory.base import IdentityNotFound, IdentityResolver, IdentityUnavailable
from ..ticketing.base import DispatchError, TicketDispatcher
from ..utils.logging_utils import clear_request_context, set_request_context, stage_log
from ..utils.telemetry import telemetry
from .decoder import InternalDecodeError, MalformedRequest, check_headers, decode, read_body
from .models import AlertPayload, Identity, OutcomeKind, PipelineOutcome, Stage, TicketRequest

logger = logging.getLogger(__name__)

MSG_OK = "ok"
MSG_INTERNAL = "Internal Server Error"
MSG_LOOKUP_FAILED = "failed identity lookup"
MSG_DISPATCH_FAILED = "failed ticket creation"

TRANSITIONS: Dict[Stage, FrozenSet[Stage]] = {
    Stage.RECEIVED: frozenset({Stage.DECODED, Stage.DECODE_FAILED}),
    Stage.DECODED: frozenset({Stage.RESOLVED, Stage.RESOLVE_FAILED}),
    Stage.RESOLVED: frozenset({Stage.DISPATCHED, Stage.DISPATCH_FAILED}),
    Stage.DISPATCHED: frozenset({Stage.RESPONDED}),
    Stage.DECODE_FAILED: frozenset({Stage.RESPONDED}),
    Stage.RESOLVE_FAILED: frozenset({Stage.RESPONDED}),
    Stage.DISPATCH_FAILED: frozenset({Stage.RESPONDED}),
    Stage.RESPONDED: frozenset(),
}


class InvalidTransition(RuntimeError):
    pass


@dataclass
class PipelineRun:
    """Mutable state of a single run. Never shared between requests."""

    stage: Stage = Stage.RECEIVED
    history: List[Stage] = field(default_factory=lambda: [Stage.RECEIVED])
    sid: Optional[str] = None
    started_at: float = field(default_factory=time.monotonic)

    def advance(self, nxt: Stage) -> None:
        if nxt not in TRANSITIONS[self.stage]:
            raise InvalidTransition(f"{self.stage.value} -> {nxt.value}")
        self.stage = nxt
        self.history.append(nxt)


class StageFailed(Exception):
    def __init__(self, kind: OutcomeKind, status_code: int, message: str):
        super().__init__(message)
        self.kind = kind
        self.status_code = status_code
        self.message = message


class AlertPipeline:
    def __init__(self, config: PipelineConfig, resolver: IdentityResolver, dispatcher: TicketDispatcher) -> None:
        self.config = config
        self.resolver = resolver
        self.dispatcher = dispatcher

    async def run(
        self,
        chunks: AsyncIterator[bytes],
        content_type: Optional[str] = None,
        content_length: Optional[str] = None,
    ) -> PipelineOutcome:
        run = PipelineRun()
        telemetry.incr("alerts_received_total")
        tokens: dict = {}
        ticket_id: Optional[str] = None
        try:
            try:
                alert = await self.decode_stage(run, chunks, content_type, content_length)
                tokens = set_request_context(sid=alert.sid)
                user, manager = await self.resolve_stage(run, alert)
                ticket_id = await self.dispatch_stage(run, alert, user, manager)
            except StageFailed as failure:
                outcome_args = (failure.kind, failure.status_code, failure.message)
            else:
                outcome_args = (OutcomeKind.SUCCESS, 200, MSG_OK)
            self._advance(run, Stage.RESPONDED)
        finally:
            elapsed = time.monotonic() - run.started_at
            telemetry.timing("pipeline_run", elapsed)
            clear_request_context(tokens)

        kind, status_code, message = outcome_args
        telemetry.incr(f"alert_outcome_{kind.value}_total")
        return PipelineOutcome(
            kind=kind,
            status_code=status_code,
            message=message,
            ticket_id=ticket_id,
            stages=tuple(run.history),
        )

    # ── Stages ────────────────────────────────────────────────────────────────

    async def decode_stage(
        self,
        run: PipelineRun,
        chunks: AsyncIterator[bytes],
        content_type: Optional[str] = None,
        content_length: Optional[str] = None,
    ) -> AlertPayload:
        limit = self.config.max_body_bytes
        try:
            check_headers(content_type, content_length, limit)
            try:
                raw = await asyncio.wait_for(read_body(chunks, limit), timeout=self.config.body_read_timeout_s)
            except asyncio.TimeoutError as exc:
                raise InternalDecodeError("timed out reading request body") from exc
            alert = decode(raw, limit, strict=self.config.strict_decoding)
        except MalformedRequest as exc:
            run.sid = exc.sid
            self._advance(run, Stage.DECODE_FAILED)
            stage_log(
                logger, logging.WARNING, "decode", "alert_rejected",
                sid=exc.sid, status_code=exc.status_code, reason=exc.message,
            )
            raise StageFailed(OutcomeKind.DECODE_ERROR, exc.status_code, exc.message)
        except InternalDecodeError as exc:
            self._advance(run, Stage.DECODE_FAILED)
            stage_log(logger, logging.ERROR, "decode", "alert_body_read_failed", error=str(exc))
            raise StageFailed(OutcomeKind.DECODE_ERROR, 500, MSG_INTERNAL)
        except Exception as exc:
            logger.exception("unexpected error decoding alert")
            self._advance(run, Stage.DECODE_FAILED)
            stage_log(logger, logging.ERROR, "decode", "alert_decode_crashed", error=repr(exc))
            raise StageFailed(OutcomeKind.DECODE_ERROR, 500, MSG_INTERNAL)

        run.sid = alert.sid
        self._advance(run, Stage.DECODED)
        stage_log(
            logger, logging.INFO, "decode", "alert_received",
            sid=alert.sid, search_name=alert.search_name, username=alert.result.username, raw=alert.result.raw,
        )
        return alert

    async def resolve_stage(self, run: PipelineRun, alert: AlertPayload) -> Tuple[Identity, Optional[Identity]]:
        username = alert.result.username
        try:
            user, manager = await asyncio.wait_for(
                self.resolver.resolve(username), timeout=self.config.directory_timeout_s,
            )
        except IdentityNotFound as exc:
            self._resolve_failed(run, "identity_not_found", username, exc.reason)
            raise StageFailed(OutcomeKind.LOOKUP_ERROR, 500, MSG_LOOKUP_FAILED)
        except IdentityUnavailable as exc:
            self._resolve_failed(run, "identity_unavailable", username, exc.reason)
            raise StageFailed(OutcomeKind.LOOKUP_ERROR, 503, MSG_LOOKUP_FAILED)
        except asyncio.TimeoutError:
            self._resolve_failed(run, "identity_unavailable", username, f"lookup exceeded {self.config.directory_timeout_s}s")
            raise StageFailed(OutcomeKind.LOOKUP_ERROR, 503, MSG_LOOKUP_FAILED)
        except Exception as exc:
            logger.exception("unexpected error from %s", self.resolver.name)
            self._resolve_failed(run, "identity_unavailable", username, repr(exc))
            raise StageFailed(OutcomeKind.LOOKUP_ERROR, 503, MSG_LOOKUP_FAILED)

        self._advance(run, Stage.RESOLVED)
        stage_log(
            logger, logging.INFO, "resolve", "identity_resolved",
            sid=run.sid, username=user.username, manager=manager.username if manager else None,
        )
        return user, manager

    async def dispatch_stage(
        self,
        run: PipelineRun,
        alert: AlertPayload,
        user: Identity,
        manager: Optional[Identity],
    ) -> str:
        request = TicketRequest.for_alert(alert, user, manager)
        try:
            ticket_id = await asyncio.wait_for(
                self.dispatcher.create_ticket(request), timeout=self.config.ticket_timeout_s,
            )
        except DispatchError as exc:
            self._dispatch_failed(run, user, str(exc))
            raise StageFailed(OutcomeKind.DISPATCH_ERROR, 500, MSG_DISPATCH_FAILED)
        except asyncio.TimeoutError:
            self._dispatch_failed(run, user, f"ticket creation exceeded {self.config.ticket_timeout_s}s")
            raise StageFailed(OutcomeKind.DISPATCH_ERROR, 500, MSG_DISPATCH_FAILED)
        except Exception as exc:
            logger.exception("unexpected error from %s", self.dispatcher.name)
            self._dispatch_failed(run, user, repr(exc))
            raise StageFailed(OutcomeKind.DISPATCH_ERROR, 500, MSG_DISPATCH_FAILED)

        self._advance(run, Stage.DISPATCHED)
        stage_log(
            logger, logging.INFO, "dispatch", "ticket_created",
            sid=run.sid, ticket_id=ticket_id, username=user.username,
        )
        await self._add_watchers(run, ticket_id, request)
        return ticket_id

    # ── Helpers ───────────────────────────────────────────────────────────────

    def _advance(self, run: PipelineRun, nxt: Stage) -> None:
        previous = run.stage
        run.advance(nxt)
        level = logging.INFO if self.config.verbose else logging.DEBUG
        if logger.isEnabledFor(level):
            stage_log(logger, level, nxt.value, "stage_transition", sid=run.sid, previous=previous.value)

    def _resolve_failed(self, run: PipelineRun, event: str, username: str, reason: str) -> None:
        self._advance(run, Stage.RESOLVE_FAILED)
        stage_log(logger, logging.ERROR, "resolve", event, sid=run.sid, username=username, reason=reason)

    def _dispatch_failed(self, run: PipelineRun, user: Identity, reason: str) -> None:
        self._advance(run, Stage.DISPATCH_FAILED)
        stage_log(logger, logging.ERROR, "dispatch", "ticket_dispatch_failed", sid=run.sid, username=user.username, reason=reason)

    async def _add_watchers(self, run: PipelineRun, ticket_id: str, request: TicketRequest) -> None:
        """Runs on its own timeout once the ticket exists; failures are only logged."""
        try:
            await asyncio.wait_for(
                self.dispatcher.add_watchers(ticket_id, request), timeout=self.config.ticket_timeout_s,
            )
            return
        except asyncio.TimeoutError:
            reason = f"adding watchers exceeded {self.config.ticket_timeout_s}s"
        except Exception as exc:
            reason = repr(exc)
        telemetry.incr("ticket_watcher_failures_total")
        stage_log(logger, logging.WARNING, "dispatch", "ticket_watchers_failed", sid=run.sid, ticket_id=ticket_id, reason=reason)
