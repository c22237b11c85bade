"""Main application entry point."""

import logging
from contextlib import asynccontextmanager
from typing import Callable, Optional

import uvicorn
from fastapi import FastAPI, Response
from prometheus_fastapi_instrumentator import Instrumentator

from stockwatch.api.routes import status
from stockwatch.config import Settings, settings
from stockwatch.logging_config import setup_logging
from stockwatch.worker.runtime import MonitorRuntime, build_runtime

logger = logging.getLogger(__name__)


def create_app(
    runtime_factory: Optional[Callable[[Settings], MonitorRuntime]] = None,
    configure_logging: bool = True,
) -> FastAPI:
    """
    Create the FastAPI app.

    Args:
        runtime_factory: Builds the monitor at startup (build_runtime by default)
        configure_logging: Install the console and JSON log handlers at startup
    """
    factory = runtime_factory or build_runtime

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager."""
        if configure_logging:
            setup_logging(settings.log_dir, settings.log_level)

        logger.info("Starting stockwatch...")

        # ConfigurationError aborts startup here
        runtime = factory(settings)
        app.state.runtime = runtime
        await runtime.scheduler.start()

        yield

        logger.info("Shutting down...")
        await runtime.close()
        app.state.runtime = None
        logger.info("Shutdown complete")

    app = FastAPI(
        title="stockwatch",
        description="Monitor retail product pages for restocks",
        version="0.1.0",
        lifespan=lifespan,
    )

    # Add Prometheus instrumentation
    instrumentator = Instrumentator(
        should_group_status_codes=True,
        should_ignore_untemplated=True,
        excluded_handlers=["/metrics", "/health", "/favicon.ico"],
    )
    instrumentator.instrument(app).expose(app, include_in_schema=True, tags=["monitoring"])

    app.include_router(status.router)

    @app.get("/health")
    async def health():
        """Health check endpoint."""
        runtime = getattr(app.state, "runtime", None)
        if runtime is None or not runtime.scheduler.running:
            return {"status": "starting"}
        return {"status": "healthy", "links": len(runtime.catalog)}

    @app.get("/favicon.ico")
    async def favicon():
        """Return empty favicon response to avoid 404 noise."""
        return Response(status_code=204)

    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run(
        "stockwatch.main:app",
        host=settings.app_host,
        port=settings.app_port,
        log_level=settings.log_level.lower(),
    )
