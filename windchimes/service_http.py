from __future__ import annotations

import argparse
import logging
import os
from collections.abc import AsyncIterator, Awaitable, Callable, Iterable
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

import uvicorn
from fastapi import FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse, Response
from pydantic import BaseModel, ValidationError
from starlette.types import ASGIApp, Receive, Scope, Send

from .api import ChimeAPI, build_api
from .models import ChimeConfig

logger = logging.getLogger(__name__)

MAX_BODY_BYTES = 1024
CHIME_PATH = "/api/chime"
CHIME = "\U0001f390"
OPTED_OUT = "Opted out per your browser settings."


class ChimeRequest(BaseModel):
    """Body of a view submission."""

    resource: str
    event: str


def _opted_out(request: Request) -> bool:
    return request.headers.get("sec-gpc") == "1" or request.headers.get("dnt") == "1"


def _client_address(request: Request) -> str | None:
    if request.client is not None and request.client.host:
        return request.client.host
    return request.headers.get("x-real-ip")


async def _read_limited_body(request: Request, limit: int = MAX_BODY_BYTES) -> bytes | None:
    """Read the request body, or return None as soon as it exceeds *limit* bytes."""
    declared = request.headers.get("content-length")
    if declared is not None:
        try:
            if int(declared) > limit:
                return None
        except ValueError:
            return None
    body = bytearray()
    async for chunk in request.stream():
        body.extend(chunk)
        if len(body) > limit:
            return None
    return bytes(body)


class PathScopedCORSMiddleware:
    """Apply CORS handling to *paths* only; every other route gets no CORS headers."""

    def __init__(self, app: ASGIApp, *, paths: Iterable[str], **cors_options: Any) -> None:
        self.app = app
        self.paths = frozenset(paths)
        self.cors = CORSMiddleware(app, **cors_options)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] == "http" and scope["path"] in self.paths:
            await self.cors(scope, receive, send)
        else:
            await self.app(scope, receive, send)


def create_app(
    config: ChimeConfig | None = None,
    *,
    api: ChimeAPI | None = None,
    cors_origins: Iterable[str] | None = None,
) -> FastAPI:
    """Construct a FastAPI app backed by ChimeAPI."""

    chime_api = api or build_api(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        app.state.api.start_timers()
        yield
        app.state.api.shutdown()

    app = FastAPI(
        title="windchimes",
        version="0.1.0",
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.api = chime_api

    origins = list(cors_origins) if cors_origins is not None else chime_api.config.allowed_origins
    app.add_middleware(
        PathScopedCORSMiddleware,
        paths=[CHIME_PATH],
        allow_origins=origins,
        allow_methods=["PUT"],
        allow_headers=["content-type"],
        max_age=60 * 60 * 24,
    )

    @app.middleware("http")
    async def security_headers(
        request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        response = await call_next(request)
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["X-Content-Type-Options"] = "nosniff"
        return response

    @app.get("/healthz", status_code=status.HTTP_200_OK)
    def healthz() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/api/total")
    def total(resource: str | None = None, event: str | None = None) -> dict[str, int]:
        if resource is None or event is None:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST)
        return {"total": app.state.api.get_total(resource, event)}

    @app.get("/api/first-date")
    def first_date(resource: str | None = None, event: str | None = None) -> dict[str, int]:
        if resource is None:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST)
        return {"firstDate": app.state.api.get_first_date(resource, event)}

    @app.put(CHIME_PATH, response_class=PlainTextResponse)
    async def chime(request: Request) -> PlainTextResponse:
        body = await _read_limited_body(request)
        if body is None:
            return PlainTextResponse("", status_code=status.HTTP_413_CONTENT_TOO_LARGE)
        if _opted_out(request):
            return PlainTextResponse(OPTED_OUT)

        payload: ChimeRequest | None = None
        if request.headers.get("content-type", "").startswith("application/json"):
            try:
                payload = ChimeRequest.model_validate_json(body)
            except ValidationError:
                payload = None

        address = _client_address(request)
        if payload is not None and address:
            app.state.api.submit(address, payload.resource, payload.event)
        return PlainTextResponse(CHIME)

    return app


def _default_store() -> str:
    return str(Path(os.environ.get("STATE_DIRECTORY", ".")) / "windchimes.db")


def run(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Run the windchimes view counter service.")
    parser.add_argument("--host", default="127.0.0.1", help="Host interface to bind.")
    parser.add_argument(
        "--port",
        default=os.environ.get("PORT", "8080"),
        help="TCP port, or a unix socket path when it starts with '/'.",
    )
    parser.add_argument("--store", default=_default_store(), help="SQLite database path.")
    parser.add_argument(
        "--period-seconds", type=float, default=3600.0, help="Length of a collection period."
    )
    parser.add_argument(
        "--max-events-per-user", type=int, default=10, help="Accepted events per user per period."
    )
    parser.add_argument(
        "--max-users", type=int, default=100_000, help="Distinct users tracked per period."
    )
    parser.add_argument(
        "--probability", type=float, default=1.0, help="Fraction of users counted (0-1)."
    )
    parser.add_argument(
        "--cors-origin",
        action="append",
        dest="cors_origins",
        default=None,
        help="Allowed CORS origin (repeatable).",
    )
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    config = ChimeConfig(
        period_seconds=args.period_seconds,
        max_events_per_user=args.max_events_per_user,
        max_users_per_period=args.max_users,
        counting_probability=args.probability,
        store_path=args.store,
    )
    app = create_app(config=config, cors_origins=args.cors_origins)
    if args.port.startswith("/"):
        logger.info("Listening on unix socket %s", args.port)
        uvicorn.run(app, uds=args.port, log_level="info")
    else:
        uvicorn.run(app, host=args.host, port=int(args.port), log_level="info")
