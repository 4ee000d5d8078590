"""
Main entry point for the FastAPI application.
Builds the services from settings, configures lifespan events and mounts routers.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from src.api.routes import router as api_router
from src.config.settings import Settings, settings
from src.services.backend import MessageBackend
from src.services.change_feed import RedisChangeFeed
from src.services.messages import MessageService
from src.services.remote import RemoteService
from src.services.storage import LocalMessageStore
from src.services.websocket import ConnectionManager

# Setup Logging
logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def build_backend(config: Settings) -> MessageBackend:
    """Hosted backend when credentials exist, otherwise the local JSON store."""
    remote_config = config.server_remote()
    if remote_config:
        logger.info("Using hosted backend at %s", remote_config.url)
        return RemoteService(remote_config)

    logger.info("Hosted backend not configured, storing messages in %s", config.data_file)
    return LocalMessageStore(config.data_file, config.photos_dir)


# Disable these warnings as they are false positives caused by fasapi syntax
# pylint: disable=redefined-outer-name
# pylint: disable=unused-argument
@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application Lifecycle Manager.
    Releases HTTP and Redis clients on shutdown.
    """
    logger.info("Starting guestbook API...")

    yield

    logger.info("Shutting down guestbook API...")
    service: MessageService = app.state.message_service
    await service.backend.aclose()
    if service.publisher is not None:
        await service.publisher.aclose()


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)}, headers=exc.headers)


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    logger.debug("Rejected request body: %s", exc.errors())
    return JSONResponse(status_code=400, content={"error": "Invalid request body"})


def create_app(config: Optional[Settings] = None) -> FastAPI:
    """Factory to create the app."""
    config = config or settings

    application = FastAPI(
        title=config.app_name,
        description="Bridal shower guestbook API",
        version="0.1.0",
        lifespan=lifespan,
    )

    publisher = None
    if config.redis_url:
        publisher = RedisChangeFeed.from_url(config.redis_url, config.change_feed_channel)

    application.state.settings = config
    application.state.message_service = MessageService(build_backend(config), publisher=publisher)
    application.state.connection_manager = ConnectionManager(publisher)

    # Middleware
    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.add_exception_handler(StarletteHTTPException, http_error_handler)  # type: ignore[arg-type]
    application.add_exception_handler(RequestValidationError, validation_error_handler)  # type: ignore[arg-type]

    # Routers
    application.include_router(api_router, prefix="/api")

    return application


app = create_app()
