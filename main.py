# main.py
"""Application entry point: service wiring, lifespan and routes"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from config import settings
from services.logger_config import setup_logging
from services.factory import ServiceContainer, build_container
from api.endpoints import router

setup_logging()
logger = logging.getLogger(settings.LOGGER_NAME)


def create_app(container: Optional[ServiceContainer] = None) -> FastAPI:
    """
    Build the FastAPI app. A prebuilt container (tests) is used as-is;
    otherwise the configured services are constructed at startup.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager"""
        logger.info("Starting application...")
        services = container or build_container()
        await services.startup()
        app.state.container = services
        logger.info("Services initialized")
        yield

        await services.shutdown()
        logger.info("Application shutdown complete")

    app = FastAPI(
        title=settings.APP_TITLE,
        version=settings.APP_VERSION,
        lifespan=lifespan
    )
    app.include_router(router)
    # Lets ASGI test clients that skip lifespan still resolve the container
    if container is not None:
        app.state.container = container
    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        app,
        host="0.0.0.0",
        port=8000,
        log_level="info"
    )
