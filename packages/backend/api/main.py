"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.routes import health, models
from core.config import settings
from core.factory import get_factory

APP_VERSION = "0.1.0"

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup
    if settings.STORAGE_BACKEND == "local":
        settings.ensure_directories()

    factory = get_factory()
    await factory.startup()
    logger.info("Central store at %s", factory.registry.store_root)

    yield

    # Shutdown
    await factory.shutdown()


app = FastAPI(
    title="Model Depot API",
    description="Shared model storage for local LLM runtimes",
    version=APP_VERSION,
    lifespan=lifespan,
)

# CORS - wide open. This API only binds to 127.0.0.1 and is accessed by
# a local desktop shell or dev server.
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routes
app.include_router(health.router)
app.include_router(models.router, prefix="/api")


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "Model Depot API",
        "version": APP_VERSION,
        "storage_path": str(settings.STORAGE_PATH),
    }


def run() -> None:
    """Serve the API on the configured local address."""
    import uvicorn

    logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")
    uvicorn.run(app, host=settings.API_HOST, port=settings.API_PORT)


if __name__ == "__main__":
    run()
