"""FastAPI app factory for the spamwatch contract status API."""

from __future__ import annotations

import logging
import time
import uuid
from contextlib import asynccontextmanager
from typing import Dict, List

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from spamwatch import __version__
from spamwatch.api.contracts import router as contracts_router
from spamwatch.api.dependencies import shutdown_container
from spamwatch.api.health import router as health_router
from spamwatch.errors import ChainNotSupportedError, RequestTimeoutError
from spamwatch.errors import RequestValidationError as ContractRequestError
from spamwatch.observability import configure_logging
from spamwatch.settings import Settings, get_settings

LOGGER = logging.getLogger(__name__)

# Per-client request timestamps inside the sliding one-minute window.
REQUEST_LOG: Dict[str, List[float]] = {}
RATE_LIMIT_WINDOW_SECONDS = 60.0
REQUEST_ID_HEADER = "X-Request-ID"


def _prune_request_log(window_start: float) -> None:
    """Drop timestamps outside the window and forget clients left with none."""

    for client, timestamps in list(REQUEST_LOG.items()):
        timestamps[:] = [t for t in timestamps if t > window_start]
        if not timestamps:
            del REQUEST_LOG[client]


async def rate_limit_middleware(request: Request, call_next):
    """
    Per-client sliding-window rate limiter. Clients that exceed
    ``api.rate_limit_per_minute`` requests in the last 60 seconds get a 429.
    A limit of zero disables the check.
    """
    limit = getattr(request.app.state, "rate_limit_per_minute", 0)
    if not limit:
        return await call_next(request)

    client_ip = request.headers.get("x-forwarded-for") or (request.client.host if request.client else "unknown")
    now = time.time()
    window_start = now - RATE_LIMIT_WINDOW_SECONDS

    _prune_request_log(window_start)
    timestamps = REQUEST_LOG.setdefault(client_ip, [])

    if len(timestamps) >= limit:
        return JSONResponse(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            content={"detail": "Rate limit exceeded. Try again later."},
        )

    timestamps.append(now)
    return await call_next(request)


async def request_id_middleware(request: Request, call_next):
    """Echo the caller's request ID, or mint one, on every response."""

    request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
    request.state.request_id = request_id
    response = await call_next(request)
    response.headers[REQUEST_ID_HEADER] = request_id
    return response


async def _handle_request_error(request: Request, exc: ContractRequestError) -> JSONResponse:
    content = {"detail": str(exc)}
    if isinstance(exc, ChainNotSupportedError):
        content["reason"] = exc.reason
        content["chain_id"] = exc.chain_id
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=content)


async def _handle_timeout(request: Request, exc: RequestTimeoutError) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_504_GATEWAY_TIMEOUT, content={"detail": str(exc)})


@asynccontextmanager
async def _lifespan(app: FastAPI):
    yield
    await shutdown_container()


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Returns:
        Configured FastAPI instance.
    """
    resolved = settings or get_settings()
    configure_logging(resolved)
    app = FastAPI(title="spamwatch Contract Status API", version=__version__, lifespan=_lifespan)
    app.state.rate_limit_per_minute = resolved.api.rate_limit_per_minute
    app.include_router(contracts_router)
    app.include_router(health_router)
    app.add_exception_handler(ContractRequestError, _handle_request_error)
    app.add_exception_handler(RequestTimeoutError, _handle_timeout)
    app.middleware("http")(rate_limit_middleware)
    app.middleware("http")(request_id_middleware)
    return app


__all__ = ["create_app", "rate_limit_middleware", "REQUEST_LOG"]
