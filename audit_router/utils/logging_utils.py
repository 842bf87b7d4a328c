"""
Log correlation for alert runs.

Two context variables travel with each request: the ``request_id`` set by
the HTTP middleware and the alert ``sid`` bound by the pipeline once the
body has been decoded. ``RequestContextFilter`` stamps both onto every log
record; ``structured_log`` emits one JSON object per event.
"""
from __future__ import annotations

import contextvars
import json
import logging
from typing import Any

_request_id_var: contextvars.ContextVar[str | None] = contextvars.ContextVar("request_id", default=None)
_alert_sid_var: contextvars.ContextVar[str | None] = contextvars.ContextVar("alert_sid", default=None)

_QUIET_LOGGERS = ("httpx", "httpcore")


def set_request_context(request_id: str | None = None, sid: str | None = None) -> dict[str, contextvars.Token]:
    tokens: dict[str, contextvars.Token] = {}
    if request_id is not None:
        tokens["request_id"] = _request_id_var.set(str(request_id))
    if sid is not None:
        tokens["sid"] = _alert_sid_var.set(str(sid))
    return tokens


def clear_request_context(tokens: dict[str, contextvars.Token]) -> None:
    if "request_id" in tokens:
        _request_id_var.reset(tokens["request_id"])
    if "sid" in tokens:
        _alert_sid_var.reset(tokens["sid"])


def get_request_context() -> dict[str, str | None]:
    return {"request_id": _request_id_var.get(), "sid": _alert_sid_var.get()}


class RequestContextFilter(logging.Filter):
    """Adds ``request_id`` and ``sid`` ("-" when unbound) to each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = _request_id_var.get() or "-"
        record.sid = _alert_sid_var.get() or "-"
        return True


def configure_logging(level_name: str = "INFO") -> None:
    root = logging.getLogger()
    level = getattr(logging, (level_name or "INFO").upper(), logging.INFO)
    if not root.handlers:
        logging.basicConfig(
            level=level,
            format="%(asctime)s %(levelname)s %(name)s [request_id=%(request_id)s sid=%(sid)s] %(message)s",
        )
    root.setLevel(level)
    for handler in root.handlers:
        if not any(isinstance(f, RequestContextFilter) for f in handler.filters):
            handler.addFilter(RequestContextFilter())
    # client libraries stay at WARNING or above
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


def structured_log(logger: logging.Logger, level: int, event: str, **fields: Any) -> None:
    """Log ``event`` as a JSON object.

    The alert sid bound to the current context is added as ``sid`` unless the
    caller passes one explicitly.
    """
    payload = {"event": event, **fields}
    if "sid" not in payload:
        sid = _alert_sid_var.get()
        if sid is not None:
            payload["sid"] = sid
    logger.log(level, json.dumps(payload, ensure_ascii=False, sort_keys=True, default=str))


def stage_log(logger: logging.Logger, level: int, stage: str, event: str, **fields: Any) -> None:
    structured_log(logger, level, event, stage=stage, **fields)
