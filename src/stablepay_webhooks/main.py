"""
Module: main.py
Description: FastAPI application entry point for StablePay webhooks.

Initializes the FastAPI application with the cron trigger and operator
routes, the shared store lifecycle, and error handlers.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from mangum import Mangum

from stablepay_webhooks.config.settings import settings
from stablepay_webhooks.handlers.cron import router as cron_router
from stablepay_webhooks.handlers.logs import router as logs_router
from stablepay_webhooks.storage.dynamodb import WebhookStore
from stablepay_webhooks.utils.logger import get_logger

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Open the shared webhook store at startup and close it at shutdown."""
    app.state.store = WebhookStore(
        table_name=settings.webhook_logs_table_name,
        merchants_table_name=settings.merchants_table_name,
        region_name=settings.aws_region
    )

    logger.info(
        "Starting webhook service",
        version=settings.app_version,
        stage=settings.stage,
        region=settings.aws_region
    )

    yield

    app.state.store.close()
    logger.info("Shutting down webhook service")


app = FastAPI(
    title="StablePay Webhooks",
    description="Webhook delivery and retry service for merchant payment events",
    version=settings.app_version,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

app.include_router(cron_router)
app.include_router(logs_router)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    logger.info("Health check requested")

    return {
        "status": "ok",
        "message": "Webhook service is healthy",
        "version": settings.app_version,
        "environment": settings.stage
    }


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """
    Global HTTP exception handler.

    Logs HTTP exceptions and returns {"error": detail} bodies.
    """
    logger.warning(
        "HTTP exception occurred",
        status_code=exc.status_code,
        detail=exc.detail,
        path=request.url.path,
        method=request.method
    )

    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=getattr(exc, "headers", None)
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Return 400 with validation details for malformed requests."""
    logger.warning(
        "Request validation failed",
        path=request.url.path,
        errors=exc.errors()
    )

    return JSONResponse(
        status_code=400,
        content={"error": "Validation error", "details": jsonable_errors(exc)}
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """
    Global exception handler for unhandled errors.

    Logs unexpected exceptions and returns generic error responses.
    """
    logger.error(
        "Unhandled exception occurred",
        error=str(exc),
        error_type=type(exc).__name__,
        path=request.url.path,
        method=request.method
    )

    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error", "message": str(exc) or type(exc).__name__}
    )


def jsonable_errors(exc: RequestValidationError) -> list:
    return [
        {"loc": list(error.get("loc", [])), "msg": error.get("msg"), "type": error.get("type")}
        for error in exc.errors()
    ]


# Lambda handler; lifespan events open and close the store
handler = Mangum(app, lifespan="auto")
