"""FastAPI application entry point."""

from contextlib import asynccontextmanager
from datetime import timedelta
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from pickup_engine.api.routes import get_order_service, router, set_order_service
from pickup_engine.config import get_settings
from pickup_engine.services import ReminderSweeper
from pickup_engine.state.manager import get_state_manager
from pickup_engine.utils.logging import get_logger, setup_logging

# Setup logging first
setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    logger.info("application_starting")

    service = await get_order_service()
    logger.info("order_service_initialized", storage=settings.storage_backend)

    sweeper: ReminderSweeper | None = None
    if settings.reminder_sweep_enabled:
        sweeper = ReminderSweeper(
            service,
            threshold=timedelta(minutes=settings.reminder_threshold_minutes),
            interval_seconds=settings.reminder_sweep_interval_seconds,
        )
        sweeper.start()

    yield

    logger.info("application_shutting_down")
    if sweeper is not None:
        await sweeper.stop()
    if settings.storage_backend == "redis":
        state_manager = await get_state_manager()
        await state_manager.disconnect()
    set_order_service(None)


# Create FastAPI app
app = FastAPI(
    title="Pickup Order Engine",
    description="Online order lifecycle and pickup slot scheduling",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS middleware
settings = get_settings()
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "healthy", "service": "pickup-engine"}


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint."""
    return {
        "message": "Pickup Order Engine API",
        "docs": "/docs",
        "health": "/health",
    }


app.include_router(router, prefix="/api/v1", tags=["api"])


def run() -> None:
    """Serve the API with uvicorn."""
    import uvicorn

    reload = settings.environment == "development"
    uvicorn.run(
        "pickup_engine.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=reload,
        # uvicorn ignores workers when reloading
        workers=None if reload else settings.api_workers,
    )


if __name__ == "__main__":
    run()
