"""
Request Decoder
===============
Reads and validates the body of an inbound alert.

Client mistakes raise ``MalformedRequest`` whose message is safe to return
to the caller as-is. Failures reading the body itself raise
``InternalDecodeError``; its detail is for the logs only.
"""
from __future__ import annotations

import json
from typing import Any, AsyncIterator, Optional

from pydantic import ValidationError

from .models import AlertPayload


class DecodeError(Exception):
    """Base class for anything that stops a body from becoming an AlertPayload."""


class MalformedRequest(DecodeError):
    def __init__(self, status_code: int, message: str, sid: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.sid = sid


class PayloadTooLarge(MalformedRequest):
    def __init__(self, limit: int):
        super().__init__(413, f"Request body must not be larger than {limit} bytes")
        self.limit = limit


class UnsupportedMediaType(MalformedRequest):
    def __init__(self, content_type: str):
        super().__init__(415, "Content-Type header is not application/json")
        self.content_type = content_type


class InternalDecodeError(DecodeError):
    """The body could not be read. Never shown to the caller."""


def check_headers(content_type: Optional[str], content_length: Optional[str], size_limit: int) -> None:
    if content_type:
        media_type = content_type.split(";", 1)[0].strip().lower()
        if media_type != "application/json":
            raise UnsupportedMediaType(content_type)
    if content_length:
        try:
            declared = int(content_length)
        except ValueError:
            raise MalformedRequest(400, "Content-Length header is invalid")
        if declared > size_limit:
            raise PayloadTooLarge(size_limit)


async def read_body(chunks: AsyncIterator[bytes], size_limit: int) -> bytes:
    """Collect a streamed body, stopping as soon as it grows past ``size_limit``."""
    buf = bytearray()
    try:
        async for chunk in chunks:
            buf.extend(chunk)
            if len(buf) > size_limit:
                raise PayloadTooLarge(size_limit)
    except DecodeError:
        raise
    except Exception as exc:
        raise InternalDecodeError(f"failed reading request body: {exc!r}") from exc
    return bytes(buf)


def _reject_constant(name: str) -> Any:
    raise ValueError(f"invalid JSON constant {name}")


def _parse_single_object(text: str) -> Any:
    decoder = json.JSONDecoder(parse_constant=_reject_constant)
    start = len(text) - len(text.lstrip())
    try:
        data, end = decoder.raw_decode(text, start)
    except json.JSONDecodeError as exc:
        truncated = exc.pos >= len(text.rstrip()) or exc.msg.startswith("Unterminated string")
        if truncated:
            raise MalformedRequest(400, "Request body contains badly-formed JSON")
        raise MalformedRequest(400, f"Request body contains badly-formed JSON (at position {exc.pos})")
    except ValueError:
        raise MalformedRequest(400, "Request body contains badly-formed JSON")
    except RecursionError:
        raise MalformedRequest(400, "Request body is nested too deeply")
    if text[end:].strip():
        raise MalformedRequest(400, "Request body must only contain a single JSON object")
    return data


def _from_validation_error(exc: ValidationError, sid: Optional[str]) -> MalformedRequest:
    err = exc.errors()[0]
    location = ".".join(str(part) for part in err.get("loc", ())) or "body"
    if err.get("type") == "missing":
        return MalformedRequest(400, f'Request body is missing required field "{location}"', sid=sid)
    return MalformedRequest(400, f'Request body contains an invalid value for the "{location}" field', sid=sid)


def decode(raw_body: bytes, size_limit: int, strict: bool = False) -> AlertPayload:
    if len(raw_body) > size_limit:
        raise PayloadTooLarge(size_limit)
    try:
        text = raw_body.decode("utf-8")
    except UnicodeDecodeError:
        raise MalformedRequest(400, "Request body contains badly-formed JSON")
    if not text.strip():
        raise MalformedRequest(400, "Request body must not be empty")

    data = _parse_single_object(text)
    if not isinstance(data, dict):
        raise MalformedRequest(400, "Request body must be a JSON object")

    # kept for log correlation even when the rest of the body is rejected
    sid = data.get("sid") if isinstance(data.get("sid"), str) and data.get("sid") else None

    if strict:
        known = AlertPayload.wire_fields()
        for key in data:
            if key not in known:
                raise MalformedRequest(400, f'Request body contains unknown field "{key}"', sid=sid)

    try:
        return AlertPayload.model_validate(data)
    except ValidationError as exc:
        raise _from_validation_error(exc, sid) from None
    except RecursionError:
        raise MalformedRequest(400, "Request body is nested too deeply", sid=sid) from None
