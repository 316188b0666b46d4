# backend/app/main.py
from __future__ import annotations

from contextlib import asynccontextmanager
import logging
from typing import AsyncGenerator, Dict

from fastapi import APIRouter, FastAPI

from .core.config import is_running_tests, settings
from .core.constants import API_DESCRIPTION, API_TITLE, API_V1_PREFIX, API_VERSION
from .core.logging import configure_logging
from .database import Base, engine
from .errors import register_error_handlers
from . import models  # noqa: F401
from .routes import prometheus
from .routes.v1 import (
    appointments as appointments_v1,
    payments as payments_v1,
    refund_requests as refund_requests_v1,
)

configure_logging()

logger = logging.getLogger(__name__)


@asynccontextmanager
async def app_lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Handle application startup/shutdown without deprecated events."""
    logger.info(f"{API_TITLE} starting up...")
    logger.info(
        f"Database: {engine.url.render_as_string(hide_password=True)}; "
        f"timezone={settings.engine_timezone}; redis={'on' if settings.redis_url else 'off'}"
    )
    if is_running_tests():
        logger.info("Running under pytest (test mode active)")

    # Tables that already exist are left untouched
    Base.metadata.create_all(bind=engine)

    yield

    logger.info(f"{API_TITLE} shutting down...")
    engine.dispose()


app = FastAPI(
    title=API_TITLE,
    description=API_DESCRIPTION,
    version=API_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=app_lifespan,
)

# Register unified error envelope handlers
register_error_handlers(app)

# Create API v1 router
api_v1 = APIRouter(prefix=API_V1_PREFIX)

api_v1.include_router(appointments_v1.router, prefix="/appointments")
api_v1.include_router(payments_v1.router, prefix="/payments")
api_v1.include_router(refund_requests_v1.router, prefix="/refund-requests")

app.include_router(api_v1)
app.include_router(prometheus.router)


@app.get("/health", include_in_schema=False)
def health() -> Dict[str, str]:
    return {"status": "healthy", "version": API_VERSION}
