"""
Server-Sent Events encoding helpers.
"""
from __future__ import annotations

import enum
import json
from datetime import datetime

import orjson


def _json_default(value: object) -> str:
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def json_dumps(payload: object) -> str:
    try:
        return orjson.dumps(payload, default=_json_default).decode("utf-8")
    except orjson.JSONEncodeError:
        return json.dumps(payload, default=_json_default)


def sse_event(event: str, data: str) -> str:
    return f"event: {event}\ndata: {data}\n\n"


def sse_json(event: str, payload: object) -> str:
    return sse_event(event, json_dumps(payload))


def sse_comment(text: str) -> str:
    return f": {text}\n\n"
