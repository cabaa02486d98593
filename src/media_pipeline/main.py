"""FastAPI application entry point."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError

from .api_errors import ApiError, api_error_handler, validation_error_handler
from .config import AppConfig, load_config
from .dependencies import Services, build_services, include_routers
from .logging import configure_logging


def create_app(
    config: AppConfig | None = None,
    *,
    services: Services | None = None,
    start_workers: bool = True,
) -> FastAPI:
    """Build FastAPI instance with configured dependencies."""
    configure_logging()
    cfg = config or load_config()
    svc = services or build_services(cfg)

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        if start_workers:
            svc.pool.start()
        try:
            yield
        finally:
            await svc.pool.stop()

    app = FastAPI(title="Media Pipeline", lifespan=lifespan)
    app.add_exception_handler(ApiError, api_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, validation_error_handler)  # type: ignore[arg-type]
    include_routers(app, cfg, svc)
    return app


def serve() -> None:
    """Run the API with uvicorn using environment configuration."""
    uvicorn.run("src.media_pipeline.main:create_app", factory=True, host="0.0.0.0", port=8000)
