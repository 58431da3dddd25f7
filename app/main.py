import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.router import api_router
from app.core.config import get_settings
from app.services.identity_directory import create_identity_directory
from app.services.mentor_calendly_store import create_mentor_calendly_store
from app.services.scheduled_call_store import create_scheduled_call_store
from app.services.user_store import create_user_store


logger = logging.getLogger(__name__)


def _configure_logging() -> None:
    root_logger = logging.getLogger()
    if root_logger.handlers:
        return
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


@asynccontextmanager
async def _lifespan(_: FastAPI) -> AsyncIterator[None]:
    _initialize_data_stores()
    yield


def create_application() -> FastAPI:
    _configure_logging()
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        openapi_url=f"{settings.api_prefix}/openapi.json",
        docs_url=f"{settings.api_prefix}/docs",
        redoc_url=f"{settings.api_prefix}/redoc",
        lifespan=_lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_router, prefix=settings.api_prefix)

    return app


def _initialize_data_stores() -> None:
    settings = get_settings()
    logger.info("Initializing data stores data_store=%s", settings.data_store)
    create_user_store(settings)
    create_identity_directory(settings)
    create_scheduled_call_store(
        store_name=settings.data_store,
        mongodb_uri=settings.mongodb_uri,
        mongodb_db_name=settings.mongodb_db_name,
        mongodb_collection_name=settings.mongodb_scheduled_calls_collection,
        mongodb_connect_timeout_ms=settings.mongodb_connect_timeout_ms,
    )
    create_mentor_calendly_store(
        store_name=settings.data_store,
        mongodb_uri=settings.mongodb_uri,
        mongodb_db_name=settings.mongodb_db_name,
        mongodb_collection_name=settings.mongodb_mentor_calendly_info_collection,
        mongodb_connect_timeout_ms=settings.mongodb_connect_timeout_ms,
    )


app = create_application()
