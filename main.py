"""
CourseGate Backend API Server

FastAPI application for course enrollment: free sign-up, single-use access
code redemption and admin code management.
"""
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from datetime import datetime, timezone
from sqlalchemy import text
import time

from app.api.routes import admin, enrollments, redemption
from app.database import AsyncSessionLocal
from app.exceptions import CourseAccessError, InvariantViolationError, TransientStoreError
from app.services.scheduler import start_scheduler, stop_scheduler

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Handles startup and shutdown events.
    """
    # Startup
    logger.info("Starting CourseGate API server...")

    # Start background scheduler
    start_scheduler()
    logger.info("Background scheduler started")

    yield

    # Shutdown
    logger.info("Shutting down CourseGate API server...")
    stop_scheduler()
    logger.info("Background scheduler stopped")


# Create FastAPI application
app = FastAPI(
    title="CourseGate API",
    description="Course enrollment and access code redemption",
    version=VERSION,
    lifespan=lifespan,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json"
)


# CORS middleware for development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # In production, specify exact origins
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Request logging middleware
@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log all requests with timing"""
    start_time = time.time()

    # Process request
    response = await call_next(request)

    # Calculate duration
    duration_ms = (time.time() - start_time) * 1000

    # Log request
    logger.info(
        f"{request.method} {request.url.path} - "
        f"Status: {response.status_code} - "
        f"Duration: {duration_ms:.2f}ms"
    )

    return response


# Domain error handler
@app.exception_handler(CourseAccessError)
async def course_access_exception_handler(request: Request, exc: CourseAccessError):
    """Render core errors as {success: false, error: message}"""
    if isinstance(exc, InvariantViolationError):
        logger.critical(f"Invariant violation on {request.url.path}: {exc.message}")
    elif isinstance(exc, TransientStoreError):
        logger.warning(f"Transient store failure on {request.url.path}: {exc.detail}")

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "success": False,
            "error": exc.message,
            "code": exc.error_code,
        }
    )


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle all uncaught exceptions"""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": {
                "code": "INTERNAL_ERROR",
                "message": "An internal server error occurred",
                "details": str(exc) if app.debug else None
            }
        }
    )


# Validation error handler
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle request validation errors"""
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error": {
                "code": "VALIDATION_ERROR",
                "message": "Request validation failed",
                "details": jsonable_encoder(exc.errors())
            }
        }
    )


# Health check endpoint
@app.get("/health", tags=["Health"])
async def health_check():
    """
    Health check endpoint.

    Returns server status, version information and database reachability.
    """
    database = "ok"
    try:
        async with AsyncSessionLocal() as session:
            await session.execute(text("SELECT 1"))
    except Exception as e:
        logger.warning(f"Health check database ping failed: {e}")
        database = "unavailable"

    return {
        "status": "ok" if database == "ok" else "degraded",
        "database": database,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": VERSION,
        "service": "coursegate-api"
    }


# Include routers
app.include_router(redemption.router)
app.include_router(enrollments.router)
app.include_router(admin.router)


# Root endpoint
@app.get("/", tags=["Root"])
async def root():
    """API root endpoint"""
    return {
        "name": "CourseGate API",
        "version": VERSION,
        "description": "Course enrollment and access code redemption",
        "docs": "/api/docs",
        "health": "/health"
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level="info"
    )
