"""FastAPI application factory."""

import logging
import uuid
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from eatlock.api.barcode import router as barcode_router
from eatlock.api.uploads import router as uploads_router
from eatlock.api.vision import router as vision_router
from eatlock.app_logging import configure_logging
from eatlock.containers import AppContainer
from eatlock.errors import EatLockError


def create_app(container: AppContainer) -> FastAPI:
    """Create a FastAPI app configured with dependencies."""
    configure_logging()
    logger = logging.getLogger(__name__)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        state_container: AppContainer = app.state.container
        state_container.queue.start(state_container.job_consumer.handle_batch)
        state_container.upload_sweeper.start()
        yield
        await state_container.upload_sweeper.stop()
        await state_container.queue.stop()
        await state_container.close_resources()

    app = FastAPI(lifespan=lifespan)
    app.state.container = container

    @app.exception_handler(EatLockError)
    async def eatlock_error_handler(
        request: Request, exc: EatLockError
    ) -> JSONResponse:
        """Render domain errors as ``{"error": ..., **extra}``."""
        return JSONResponse(status_code=exc.status_code, content=exc.to_payload())

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(
        request: Request, exc: StarletteHTTPException
    ) -> JSONResponse:
        """Render routing errors in the same envelope as domain errors."""
        detail = "Not found" if exc.status_code == 404 else exc.detail
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": detail},
            headers=exc.headers,
        )

    @app.middleware("http")
    async def request_context(
        request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        """Tag each request with an id and log its outcome."""
        request_id = str(uuid.uuid4())
        try:
            response = await call_next(request)
        except Exception:
            logger.exception(
                "[req:%s] Unhandled error on %s %s",
                request_id,
                request.method,
                request.url.path,
            )
            response = JSONResponse(
                status_code=500, content={"error": "Internal error"}
            )
        response.headers["x-request-id"] = request_id
        logger.info(
            "[req:%s] %s %s -> %s",
            request_id,
            request.method,
            request.url.path,
            response.status_code,
        )
        return response

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "PUT", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
        max_age=86400,
    )

    app.include_router(uploads_router)
    app.include_router(vision_router)
    app.include_router(barcode_router)

    @app.get("/health")
    async def health() -> dict[str, str]:
        """Simple health check endpoint."""
        return {"status": "ok", "service": "eatlock"}

    return app
