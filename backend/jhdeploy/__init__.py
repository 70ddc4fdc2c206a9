# jhdeploy/__init__.py
from contextlib import asynccontextmanager
import logging
from fastapi import FastAPI
from jhdeploy.core.config import settings
from jhdeploy.api.router import api_router
from jhdeploy.db.session import init_db
from jhdeploy.services.background_executor import background_executor

logger = logging.getLogger(__name__)

__version__ = "0.1.0"


@asynccontextmanager
async def app_lifespan(app: FastAPI):
    # Startup: Create run history tables
    init_db()
    logger.info("Run history database ready")

    yield

    # Shutdown: cancel runs still in flight
    for run_id in list(background_executor.running_runs):
        await background_executor.cancel_run(run_id)


def create_app() -> FastAPI:
    """Factory function to create the FastAPI app."""
    app = FastAPI(
        title=settings.PROJECT_NAME,
        openapi_url=f"{settings.API_V1_STR}/openapi.json",
        docs_url=f"{settings.API_V1_STR}/docs",
        redoc_url=f"{settings.API_V1_STR}/redoc",
        lifespan=app_lifespan,
    )

    # Include the API router
    app.include_router(api_router, prefix=settings.API_V1_STR)

    # Root endpoint
    @app.get("/")
    async def root():
        return {
            "message": f"{settings.PROJECT_NAME} deployment pipeline API",
            "docs_url": f"{settings.API_V1_STR}/docs",
            "openapi_url": f"{settings.API_V1_STR}/openapi.json",
            "version": __version__,
        }

    # Health check endpoint
    @app.get("/health")
    async def health():
        return {"status": "ok"}

    return app
