"""HTTP and WebSocket handlers for uploading audio chunks and querying metadata."""

from __future__ import annotations

import asyncio
import base64
import binascii
import contextlib
import json
import queue
import re
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Protocol

from aiohttp import WSMsgType, web

from .model import ChunkMeta, RawChunk
from .pipeline import IngestRejectedError
from .responses import _encode_json, error_response, json_response

UPLOAD_FIELD = "files"

_RFC3339 = re.compile(
    r"(\d{4})-(\d{2})-(\d{2})T(\d{2}):(\d{2}):(\d{2})(?:\.(\d+))?(Z|[+-]\d{2}:\d{2})"
)


class _AudioService(Protocol):
    def upload_audio(self, raw: RawChunk) -> bool: ...

    def get_audio_chunks(self, user_id: str) -> list[ChunkMeta]: ...

    def get_audio_metadata(self, chunk_id: str) -> ChunkMeta: ...


class _FrameError(ValueError):
    """A text frame that cannot be turned into audio data."""


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_rfc3339(text: str) -> datetime | None:
    match = _RFC3339.fullmatch(text)
    if match is None:
        return None
    year, month, day, hour, minute, second, fraction, zone = match.groups()
    if zone == "Z":
        tz = timezone.utc
    else:
        sign = 1 if zone[0] == "+" else -1
        offset = timedelta(hours=int(zone[1:3]), minutes=int(zone[4:6]))
        try:
            tz = timezone(sign * offset)
        except ValueError:
            return None
    micros = int((fraction or "")[:6].ljust(6, "0"))
    try:
        return datetime(
            int(year), int(month), int(day), int(hour), int(minute), int(second), micros, tzinfo=tz
        )
    except ValueError:
        return None


def _timestamp_or_now(text: str) -> datetime:
    parsed = _parse_rfc3339(text) if text else None
    return parsed if parsed is not None else _now()


def _plain_error(message: str, status: int) -> web.Response:
    return web.Response(
        status=status,
        text=message + "\n",
        content_type="text/plain",
        headers={"X-Content-Type-Options": "nosniff"},
    )


def _form_value(form: Any, query: Any, name: str) -> str:
    values: list[str] = []
    if form is not None:
        values.extend(value for value in form.getall(name, []) if isinstance(value, str))
    values.extend(query.getall(name, []))
    return values[0] if values else ""


def _new_chunk(session_id: str, user_id: str, data: bytes, received: datetime) -> RawChunk:
    return RawChunk(
        chunk_id=str(uuid.uuid4()),
        session_id=session_id,
        user_id=user_id,
        data=data,
        received=received,
        ack=queue.Queue(maxsize=1),
    )


def _decode_text_frame(text: str) -> tuple[bytes, datetime]:
    try:
        payload = json.loads(text)
    except ValueError:
        raise _FrameError("invalid json") from None
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise _FrameError("invalid json")
    audio = payload.get("audio_b64") or ""
    stamp = payload.get("timestamp") or ""
    if not isinstance(audio, str) or not isinstance(stamp, str):
        raise _FrameError("invalid json")
    received = _timestamp_or_now(stamp)
    if not audio:
        raise _FrameError("missing audio_b64")
    try:
        data = base64.b64decode(audio, validate=True)
    except (binascii.Error, ValueError):
        raise _FrameError("invalid base64") from None
    return data, received


async def _send(ws: web.WebSocketResponse, text: str) -> None:
    with contextlib.suppress(ConnectionError):
        await ws.send_str(text)


class AudioHandler:
    """Request handlers for chunk upload, lookup and streaming over WebSocket."""

    def __init__(self, service: _AudioService, ack_timeout: float = 5.0) -> None:
        self.service = service
        self.ack_timeout = ack_timeout

    def _submit(self, raw: RawChunk) -> bool:
        try:
            return bool(self.service.upload_audio(raw))
        except IngestRejectedError:
            return False

    async def upload(self, request: web.Request) -> web.Response:
        """Accept a raw body or multipart files and queue each as a chunk."""
        content_type = request.headers.get("Content-Type", "").lower()
        multipart = content_type.startswith("multipart/form-data")
        form = None
        form_failed = False
        if multipart or content_type.startswith("application/x-www-form-urlencoded"):
            try:
                form = await request.post()
            except (ValueError, web.HTTPException):
                form_failed = True

        user_id = _form_value(form, request.query, "user_id")
        session_id = _form_value(form, request.query, "session_id")
        if not user_id or not session_id:
            return _plain_error("missing user_id or session_id", 400)
        received = _timestamp_or_now(_form_value(form, request.query, "timestamp"))

        if multipart:
            if form_failed or form is None:
                return _plain_error("parse multipart failed", 400)
            files = [item for item in form.getall(UPLOAD_FIELD, []) if isinstance(item, web.FileField)]
            if not files:
                return _plain_error("no files provided", 400)
            accepted = []
            for upload in files:
                try:
                    data = upload.file.read()
                except OSError:
                    return _plain_error("read file failed", 400)
                raw = _new_chunk(session_id, user_id, data, received)
                if not self._submit(raw):
                    return _plain_error("pipeline backpressure: rejected", 429)
                accepted.append({"status": "accepted", "chunk_id": raw.chunk_id})
            return json_response(202, accepted)

        if form is not None or form_failed:
            data = b""  # the body was consumed as form fields
        else:
            try:
                data = await request.read()
            except (web.HTTPException, ConnectionError):
                return _plain_error("read body failed", 400)

        raw = _new_chunk(session_id, user_id, data, received)
        if not self._submit(raw):
            return _plain_error("pipeline backpressure: rejected", 429)
        return json_response(202, {"status": "accepted", "chunk_id": raw.chunk_id})

    async def get_chunk_by_id(self, request: web.Request) -> web.Response:
        chunk_id = request.match_info["id"]
        try:
            meta = self.service.get_audio_metadata(chunk_id)
        except LookupError:
            return error_response("audio metadata not found", 404)
        return json_response(200, meta)

    async def get_chunks_by_user(self, request: web.Request) -> web.Response:
        user_id = request.match_info["user_id"]
        try:
            chunks = self.service.get_audio_chunks(user_id)
        except LookupError:
            return error_response("audio metadata not found", 404)
        return json_response(200, chunks)

    async def ws_handler(self, request: web.Request) -> web.StreamResponse:
        """Receive audio frames, acknowledge each, then report its metadata or pending."""
        user_id = request.query.get("user_id", "")
        session_id = request.query.get("session_id", "")
        if not user_id or not session_id:
            return _plain_error("user_id & session_id required", 400)

        ws = web.WebSocketResponse()
        if not ws.can_prepare(request).ok:
            return _plain_error("upgrade failed", 400)
        await ws.prepare(request)

        async for message in ws:
            if message.type == WSMsgType.BINARY:
                data, received = message.data, _now()
            elif message.type == WSMsgType.TEXT:
                try:
                    data, received = _decode_text_frame(message.data)
                except _FrameError as exc:
                    await _send(ws, _encode_json({"error": str(exc)}))
                    continue
            else:
                break

            raw = _new_chunk(session_id, user_id, data, received)
            accepted = self._submit(raw)
            await _send(
                ws, _encode_json({"accepted": accepted, "chunk_id": raw.chunk_id, "type": "ack"})
            )
            if not accepted or raw.ack is None:
                continue

            try:
                meta = await asyncio.to_thread(raw.ack.get, True, self.ack_timeout)
            except queue.Empty:
                await _send(
                    ws,
                    '{"type":"metadata","chunk_id":"%s","status":"pending"}' % raw.chunk_id,
                )
            else:
                await _send(
                    ws, _encode_json({"chunk_id": raw.chunk_id, "meta": meta, "type": "metadata"})
                )
        return ws