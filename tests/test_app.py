import asyncio
import hashlib
import json
from unittest import mock

import pytest
from aiohttp import test_utils

from chunkflow.app import build_services, create_app, main, metrics_text
from chunkflow.handlers import AudioHandler
from chunkflow.model import Metrics


class EmptyService:
    def upload_audio(self, raw):
        return True

    def get_audio_chunks(self, user_id):
        raise LookupError("no audio chunks found for user")

    def get_audio_metadata(self, chunk_id):
        raise LookupError("audio metadata not found")


def make_client(metrics=None):
    app = create_app(AudioHandler(EmptyService()), metrics or Metrics())
    return test_utils.TestClient(test_utils.TestServer(app))


def test_metrics_text_lines_follow_snapshot():
    metrics = Metrics()
    metrics.ingested.add(3)
    metrics.dropped.add(2)
    lines = metrics_text(metrics).splitlines()
    assert lines == [f"{name} {value}" for name, value in metrics.snapshot().items()]
    assert lines[0].split() == ["ingested", "3"]
    assert metrics_text(metrics).endswith("\n")


@pytest.mark.asyncio
async def test_metrics_endpoint():
    metrics = Metrics()
    metrics.stored.add(4)
    async with make_client(metrics) as client:
        resp = await client.get("/metrics")
        text = await resp.text()
    assert resp.status == 200
    assert text == metrics_text(metrics)


@pytest.mark.asyncio
async def test_cors_headers_on_normal_response():
    async with make_client() as client:
        resp = await client.get("/metrics")
    assert resp.headers["Access-Control-Allow-Origin"] == "*"
    assert resp.headers["Access-Control-Allow-Methods"] == "GET, POST, PUT, DELETE, OPTIONS"
    assert resp.headers["Access-Control-Allow-Headers"] == "Content-Type, Authorization"


@pytest.mark.asyncio
async def test_preflight_returns_no_content():
    async with make_client() as client:
        resp = await client.options("/public/upload")
    assert resp.status == 204
    assert resp.headers["Access-Control-Allow-Origin"] == "*"


@pytest.mark.asyncio
async def test_cors_headers_on_unknown_route():
    async with make_client() as client:
        resp = await client.get("/does/not/exist")
    assert resp.status == 404
    assert resp.headers["Access-Control-Allow-Origin"] == "*"


@pytest.mark.asyncio
async def test_upload_only_accepts_post():
    async with make_client() as client:
        resp = await client.get("/public/upload")
    assert resp.status == 405


@pytest.mark.asyncio
async def test_end_to_end_upload_is_stored(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    components = build_services("metadata.json")
    components.pipeline.start()
    try:
        app = create_app(components.handler, components.metrics)
        async with test_utils.TestClient(test_utils.TestServer(app)) as client:
            resp = await client.post("/public/upload?user_id=u1&session_id=s1", data=b"hello")
            chunk_id = (await resp.json())["chunk_id"]
            for _ in range(200):
                found = await client.get(f"/public/chunks/{chunk_id}")
                if found.status == 200:
                    break
                await asyncio.sleep(0.05)
            meta = await found.json()
            sessions = await client.get("/public/sessions/u1")
            session_body = await sessions.json()
            metrics_resp = await client.get("/metrics")
            metrics_body = await metrics_resp.text()
    finally:
        components.pipeline.stop()

    assert resp.status == 202
    assert found.status == 200
    assert meta["size_bytes"] == len(b"hello")
    assert meta["checksum"] == hashlib.sha256(b"hello").hexdigest()
    assert (meta["user_id"], meta["session_id"]) == ("u1", "s1")
    assert [item["chunk_id"] for item in session_body] == [chunk_id]
    assert "stored 1" in metrics_body.splitlines()
    stored = json.loads((tmp_path / "Data" / "metadata.json").read_text())
    assert chunk_id in stored


def test_main_runs_tests_by_default():
    with mock.patch("subprocess.run") as run:
        run.return_value.returncode = 3
        assert main([]) == 3
    command = run.call_args.args[0]
    assert "pytest" in command


def test_main_starts_server_when_tests_disabled(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    with mock.patch("aiohttp.web.run_app") as run_app:
        assert main(["-runUnitTests=false"]) == 0
    run_app.assert_called_once()
    assert run_app.call_args.kwargs["port"] == 8080


def test_main_rejects_bad_flag_value():
    with pytest.raises(SystemExit):
        main(["-runUnitTests=maybe"])