"""
FastAPI application entry point
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from emailpay import __version__
from emailpay.infrastructure.settings import get_settings
from emailpay.infrastructure.logging_config import setup_logging
from emailpay.api.dependencies import get_container
from emailpay.api.exceptions import (
    http_exception_handler,
    validation_exception_handler,
    general_exception_handler,
)
from emailpay.api.public.health import router as health_router
from emailpay.api.public.metrics import router as metrics_router
from emailpay.api.v1 import router as api_v1_router
from emailpay.utils.trace_id import TraceIDMiddleware
from emailpay.utils.request_logging import RequestLoggingMiddleware

settings = get_settings()
setup_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    # Only close services if a request ever built them
    if get_container.cache_info().currsize:
        get_container().close()


app = FastAPI(
    title="EmailPay API",
    description="Send ETH and PYUSD by email",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
)

if settings.CORS_ENABLED:
    cors_origins = settings.cors_allow_origins_list
    if not cors_origins:
        logger.warning(
            "CORS_ENABLED=True but CORS_ALLOW_ORIGINS is empty or not set. "
            "Set CORS_ALLOW_ORIGINS (comma-separated, e.g., 'http://localhost:3000')."
        )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
        allow_credentials=settings.CORS_ALLOW_CREDENTIALS,
    )

# Order matters - last added is outermost
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(TraceIDMiddleware)

app.add_exception_handler(StarletteHTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, general_exception_handler)

app.include_router(health_router)
app.include_router(metrics_router)
app.include_router(api_v1_router)


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "name": "EmailPay API",
        "version": __version__,
        "status": "running",
    }
