"""JSON response helpers shared by the HTTP handlers."""

from __future__ import annotations

import json
import re
from typing import Any

from aiohttp import web

_ESCAPES = {
    "<": "\\u003c",
    ">": "\\u003e",
    "&": "\\u0026",
    "\u2028": "\\u2028",
    "\u2029": "\\u2029",
}
_ESCAPE_RE = re.compile("[<>&\u2028\u2029]")


def _jsonable(value: Any) -> Any:
    to_dict = getattr(value, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    if isinstance(value, dict):
        return {key: _jsonable(item) for key, item in value.items()}
    return value


def _encode_json(value: Any) -> str:
    """Encode value as compact JSON with HTML-sensitive characters escaped."""
    text = json.dumps(_jsonable(value), separators=(",", ":"), ensure_ascii=False)
    return _ESCAPE_RE.sub(lambda match: _ESCAPES[match.group()], text)


def _json_body(value: Any) -> bytes:
    return (_encode_json(value) + "\n").encode("utf-8")


def json_response(status: int, payload: Any) -> web.Response:
    """Return payload as a JSON response with the given status code."""
    return web.Response(status=status, body=_json_body(payload), content_type="application/json")


def error_response(message: str, status: int) -> web.Response:
    """Return a JSON error body of the form {"message": ...}."""
    return web.Response(
        status=status,
        body=_json_body({"message": message}),
        content_type="application/json",
    )