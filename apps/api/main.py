"""
SchoolHub - FastAPI Backend
Main application entry point with health check and API routing.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import InterfaceError, OperationalError

from config import settings, validate_security_settings
from database import Base, async_session_maker, engine
import models  # noqa: F401
from routers import (
    health,
    auth,
    credits,
    notifications,
    documents,
    students,
    teachers,
    library,
    inventory,
    dashboard,
)
from services.db_safety import is_control_plane_error
from services.documents import recover_stale_generations
from services.errors import ControlPlaneError, ServiceError, UpstreamServiceError

logging.basicConfig(
    level=getattr(logging, str(settings.LOG_LEVEL).upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("schoolhub")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    # Startup
    logger.info("Starting SchoolHub API...")
    validate_security_settings()
    if settings.AUTO_CREATE_DB_SCHEMA:
        try:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            logger.info("Database schema verified.")
        except Exception as exc:
            logger.warning("Database bootstrap skipped: %s", exc)
    try:
        async with async_session_maker() as session:
            recovered = await recover_stale_generations(session)
        if recovered:
            logger.info("Failed and refunded %s stale document generations after startup.", recovered)
    except Exception as exc:
        logger.warning("Stale generation recovery skipped: %s", exc)
    yield
    # Shutdown
    await engine.dispose()
    logger.info("Shutting down API...")


app = FastAPI(
    title="SchoolHub API",
    description="School management: credits, documents, notifications, library and inventory",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


@app.exception_handler(OperationalError)
@app.exception_handler(InterfaceError)
async def database_error_handler(request: Request, exc: Exception):
    if is_control_plane_error(exc):
        logger.warning("Control plane error on %s %s: %s", request.method, request.url.path, exc)
        error = ControlPlaneError("Database provider is temporarily restricting requests. Try again later.")
    else:
        logger.error("Database unavailable on %s %s: %s", request.method, request.url.path, exc)
        error = UpstreamServiceError("Database is temporarily unavailable. Try again later.")
    return JSONResponse(status_code=error.status_code, content=error.to_payload())


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Internal server error", "code": "INTERNAL_ERROR"})


# Include routers
app.include_router(health.router, tags=["Health"])
app.include_router(auth.router, prefix="/api/auth", tags=["Authentication"])
app.include_router(credits.router, prefix="/api/credits", tags=["Credits"])
app.include_router(notifications.router, prefix="/api/notifications", tags=["Notifications"])
app.include_router(documents.router, prefix="/api/documents", tags=["Documents"])
app.include_router(students.router, prefix="/api/students", tags=["Students"])
app.include_router(teachers.router, prefix="/api/teachers", tags=["Teachers"])
app.include_router(library.router, prefix="/api/library", tags=["Library"])
app.include_router(inventory.router, prefix="/api/inventory", tags=["Inventory"])
app.include_router(dashboard.router, prefix="/api/dashboard", tags=["Dashboard"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "SchoolHub API",
        "version": "0.1.0",
        "status": "running"
    }
