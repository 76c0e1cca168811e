# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_relay

import os
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Awaitable, Callable, Optional

import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from loguru import logger
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from starlette.responses import Response

from coreason_relay.exceptions import ProxyError, ProxyTimeoutError
from coreason_relay.logging_utils import configure_logging
from coreason_relay.proxy import ProxyHandler, ProxyMiddleware, proxy


def _env_flag(name: str) -> Optional[bool]:
    value = os.environ.get(name)
    if value is None or not value.strip():
        return None
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_float(name: str) -> Optional[float]:
    value = os.environ.get(name)
    if value is None or not value.strip():
        return None
    return float(value)


# Configuration from Environment Variables
RELAY_TARGET_URL = os.environ.get("RELAY_TARGET_URL", "http://127.0.0.1:9000")
RELAY_MOUNT_PATH = os.environ.get("RELAY_MOUNT_PATH", "/")
RELAY_TIMEOUT_MS = _env_float("RELAY_TIMEOUT_MS")
RELAY_PRESERVE_HOST = bool(_env_flag("RELAY_PRESERVE_HOST"))
RELAY_SECURE = _env_flag("RELAY_SECURE")


async def gateway_error_handler(
    error: ProxyError, response: Response, call_next: Callable[[], Awaitable[Response]]
) -> Response:
    """
    Map pipeline failures to gateway responses: 504 for an upstream timeout,
    502 for every other proxy failure.
    """
    if isinstance(error, ProxyTimeoutError):
        status_code = status.HTTP_504_GATEWAY_TIMEOUT
    else:
        status_code = status.HTTP_502_BAD_GATEWAY

    return JSONResponse(
        status_code=status_code,
        content={"detail": {"error": type(error).__name__, "stage": error.stage, "reason": str(error)}},
    )


def build_handler() -> ProxyHandler:
    """Build the relay handler from the environment configuration."""
    return proxy(
        RELAY_TARGET_URL,
        error_handler=gateway_error_handler,
        timeout_ms=RELAY_TIMEOUT_MS,
        preserve_host_header=RELAY_PRESERVE_HOST,
        secure=RELAY_SECURE,
    )


relay = build_handler()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Manage the lifecycle of the FastAPI application.
    Configures logging on startup and closes the relay's HTTP client on shutdown.
    """
    configure_logging()
    logger.info(f"Relaying {RELAY_MOUNT_PATH} to {RELAY_TARGET_URL}")
    yield
    await relay.aclose()


app = FastAPI(title="CoReason Relay Gateway", lifespan=lifespan)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Turn any crash outside the proxy pipeline into a 500 JSON response."""
    logger.exception("Unexpected gateway crash.")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": {"error": "InternalServerError", "reason": "Internal Gateway Error"}},
    )


@app.get("/healthz")  # type: ignore[misc]
async def healthz() -> Any:
    """Liveness probe. Only reachable when the relay is mounted below a sub-path."""
    return {"status": "ok", "target": RELAY_TARGET_URL}


app.add_middleware(ProxyMiddleware, handler=relay, path=RELAY_MOUNT_PATH)

# Instrument the app
FastAPIInstrumentor.instrument_app(app)


@logger.catch  # type: ignore[misc]
def run_server() -> None:
    """Entry point for the relay-proxy command. Configured via ENV."""
    host = os.environ.get("RELAY_HOST", "0.0.0.0")
    port = int(os.environ.get("RELAY_PORT", "8080"))
    uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    run_server()  # pragma: no cover
