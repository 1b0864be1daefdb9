"""OpenZT instance manager FastAPI application.

`app` is built at import time from the environment configuration;
`create_app()` builds one from an explicit ManagerConfig.
"""

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from openzt_manager import __version__
from openzt_manager.api.dependencies import close_orchestrator, init_orchestrator
from openzt_manager.api.v1 import health_router, instances_router
from openzt_manager.config import ManagerConfig, get_manager_config
from openzt_manager.core.errors import InternalError, ManagerError
from openzt_manager.logging import setup_logging
from openzt_manager.logging_schema import LogEvent

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1"


async def handle_manager_error(request: Request, exc: ManagerError) -> JSONResponse:
    """Render a ManagerError as {"error": {"code", "message"}}."""
    logger.warning(
        "%s %s failed: %s",
        request.method,
        request.url.path,
        exc.message,
        extra={
            "event": LogEvent.MANAGER_ERROR,
            "error_code": exc.code.value,
            "path": request.url.path,
        },
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_response().model_dump())


async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(
        "%s %s raised %s",
        request.method,
        request.url.path,
        type(exc).__name__,
        extra={"event": LogEvent.UNHANDLED_EXCEPTION, "path": request.url.path},
    )
    return JSONResponse(status_code=500, content=InternalError().to_response().model_dump())


class BodyLimitMiddleware:
    """ASGI middleware answering 413 for request bodies over limit.

    A declared Content-Length is checked before the body is read. A body
    sent without one (chunked transfer) is buffered up to limit and then
    replayed to the application; reading stops once the limit is passed.
    """

    def __init__(self, app: ASGIApp, limit: int) -> None:
        self.app = app
        self.limit = limit

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        declared = dict(scope["headers"]).get(b"content-length")
        if declared is not None:
            if declared.isdigit() and int(declared) > self.limit:
                await self._reject(scope, receive, send)
            else:
                await self.app(scope, receive, send)
            return

        buffered: list[Message] = []
        received = 0
        while True:
            message = await receive()
            buffered.append(message)
            if message["type"] != "http.request":
                break
            received += len(message.get("body", b""))
            if received > self.limit:
                await self._reject(scope, receive, send)
                return
            if not message.get("more_body", False):
                break

        async def replay() -> Message:
            if buffered:
                return buffered.pop(0)
            return await receive()

        await self.app(scope, replay, send)

    async def _reject(self, scope: Scope, receive: Receive, send: Send) -> None:
        response = JSONResponse(
            status_code=413,
            content={
                "error": {
                    "code": "PAYLOAD_TOO_LARGE",
                    "message": f"Request body exceeds {self.limit} bytes",
                }
            },
        )
        await response(scope, receive, send)


async def metrics() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


def create_app(config: ManagerConfig) -> FastAPI:
    """Assemble routes, middleware and error handlers."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            "Starting OpenZT instance manager %s",
            __version__,
            extra={
                "event": LogEvent.APP_STARTED,
                "image": config.docker.image,
                "max_instances": config.instances.max_instances,
            },
        )
        # Adopts surviving containers and starts the cleanup task
        await init_orchestrator(config)
        try:
            yield
        finally:
            logger.info("Stopping OpenZT instance manager", extra={"event": LogEvent.APP_STOPPED})
            await close_orchestrator()

    app = FastAPI(
        title="OpenZT Instance Manager",
        description="Lifecycle management for containerized OpenZT instances",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.server.cors_origins,
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["*"],
    )
    app.add_middleware(BodyLimitMiddleware, limit=config.server.body_limit_bytes)

    app.add_exception_handler(ManagerError, handle_manager_error)
    app.add_exception_handler(Exception, handle_unexpected_error)

    # Probes and scraping stay outside the versioned prefix
    app.include_router(health_router)
    app.add_api_route("/metrics", metrics, methods=["GET"], include_in_schema=False)
    app.include_router(instances_router, prefix=API_PREFIX)
    return app


_config = get_manager_config()
setup_logging(_config.logging)
app = create_app(_config)


def main() -> None:
    """Run the manager server."""
    uvicorn.run(
        "openzt_manager.main:app",
        host=_config.server.host,
        port=_config.server.port,
        log_config=None,
    )


if __name__ == "__main__":
    main()
