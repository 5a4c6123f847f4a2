"""Application wiring: services, routes, CORS, metrics and the command entry point."""

from __future__ import annotations

import argparse
import logging
import subprocess
import sys
from dataclasses import dataclass
from typing import Awaitable, Callable

from aiohttp import web

from .audiostore import AudioStore
from .handlers import AudioHandler
from .model import Metrics
from .pipeline import Pipeline, default_config
from .service import AudioService

DEFAULT_PORT = "8080"
MAX_UPLOAD_BYTES = 25 << 20

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, PUT, DELETE, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Authorization",
}

_TRUE = {"1", "t", "T", "TRUE", "true", "True"}
_FALSE = {"0", "f", "F", "FALSE", "false", "False"}


@web.middleware
async def cors_middleware(
    request: web.Request,
    handler: Callable[[web.Request], Awaitable[web.StreamResponse]],
) -> web.StreamResponse:
    """Answer preflight requests and add the CORS headers to every response."""
    if request.method == "OPTIONS":
        return web.Response(status=204, headers=CORS_HEADERS)
    response = await handler(request)
    if not response.prepared:
        response.headers.update(CORS_HEADERS)
    return response


async def _add_cors_headers(request: web.Request, response: web.StreamResponse) -> None:
    response.headers.update(CORS_HEADERS)


def metrics_text(metrics: Metrics) -> str:
    """Render the counters as one "name value" line each."""
    return "".join(f"{name} {value}\n" for name, value in metrics.snapshot().items())


def create_app(handler: AudioHandler, metrics: Metrics) -> web.Application:
    """Build the web application with all routes and the CORS middleware."""
    app = web.Application(middlewares=[cors_middleware], client_max_size=MAX_UPLOAD_BYTES)
    app.on_response_prepare.append(_add_cors_headers)

    async def metrics_handler(request: web.Request) -> web.Response:
        return web.Response(text=metrics_text(metrics))

    router = app.router
    router.add_get("/public/chunks/{id}", handler.get_chunk_by_id, allow_head=False)
    router.add_get("/public/sessions/{user_id}", handler.get_chunks_by_user, allow_head=False)
    router.add_post("/public/upload", handler.upload)
    router.add_get("/ws", handler.ws_handler, allow_head=False)
    router.add_route("*", "/metrics", metrics_handler)
    return app


@dataclass
class _Components:
    store: AudioStore
    pipeline: Pipeline
    service: AudioService
    handler: AudioHandler
    metrics: Metrics


def build_services(metadata_file: str = "metadata.json") -> _Components:
    """Wire the store, pipeline, service and handler together."""
    metrics = Metrics()
    store = AudioStore(metadata_file)
    pipeline = Pipeline(default_config(), store, metrics=metrics)
    service = AudioService(pipeline)
    handler = AudioHandler(service)
    return _Components(store, pipeline, service, handler, metrics)


def run_server(port: str) -> None:
    """Start the pipeline and serve HTTP on the given port until interrupted."""
    if not port:
        port = DEFAULT_PORT
    components = build_services("metadata.json")
    components.pipeline.start()
    try:
        app = create_app(components.handler, components.metrics)
        print(f"Server listening on port {port}...")
        web.run_app(app, port=int(port), print=None)
    finally:
        components.pipeline.stop()


def _parse_bool(text: str) -> bool:
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise argparse.ArgumentTypeError(f"invalid boolean value {text!r}")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="chunkflow")
    parser.add_argument(
        "-runUnitTests",
        "--runUnitTests",
        dest="run_unit_tests",
        type=_parse_bool,
        nargs="?",
        const=True,
        default=True,
        help="Setting to true will run unit tests",
    )
    args = parser.parse_args(argv)

    if args.run_unit_tests:
        return subprocess.run([sys.executable, "-m", "pytest", "-v"]).returncode

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s.%(msecs)03d %(message)s",
        datefmt="%Y/%m/%d %H:%M:%S",
    )
    run_server(DEFAULT_PORT)
    return 0