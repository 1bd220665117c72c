import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from importlib.metadata import version as pkg_version

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from manastash.api import (
    autobuy_router,
    deck_instances_router,
    decks_router,
    folders_router,
    health_router,
    inventory_router,
    substitution_groups_router,
    undo_router,
)
from manastash.config import settings
from manastash.db.database import init_db
from manastash.models.failure import KnownError

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging() -> None:
    logging.basicConfig(level=settings.log_level.upper(), format=LOG_FORMAT)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup/shutdown."""
    configure_logging()
    await init_db()
    yield


app = FastAPI(
    title=settings.app_name,
    version=pkg_version("manastash"),
    lifespan=lifespan,
)


@app.exception_handler(KnownError)
async def known_error_handler(request: Request, exc: KnownError) -> JSONResponse:
    """Render a known failure with its own status code."""
    if exc.status_code >= 500:
        logger.error(
            "%s %s failed: %s (%s)",
            request.method,
            request.url.path,
            exc.message,
            exc.detail,
            exc_info=exc,
        )
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


app.include_router(inventory_router, prefix="/api")
app.include_router(folders_router, prefix="/api")
app.include_router(decks_router, prefix="/api")
app.include_router(deck_instances_router, prefix="/api")
app.include_router(autobuy_router, prefix="/api")
app.include_router(substitution_groups_router, prefix="/api")
app.include_router(undo_router, prefix="/api")
app.include_router(health_router)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Tighten in production
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)
