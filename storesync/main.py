"""
storesync
Main FastAPI application
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from storesync import __version__
from storesync.config import get_settings
from storesync.exceptions import StoreSyncError
from storesync.utils.helpers import sanitize_error
from storesync.utils.logger import log

# Import routers
from storesync.api import health, orders, products, reports, sync, webhooks

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events"""
    # Startup
    log.info(f"Starting {settings.app_name} v{__version__}")
    log.info(f"Environment: {settings.environment}")

    try:
        from storesync.models.base import init_db
        init_db()
        log.info("Database initialized")
    except Exception as e:
        log.error(f"Database initialization error: {str(e)}")

    if settings.enable_scheduler:
        try:
            from storesync.scheduler import start_scheduler
            start_scheduler()
        except Exception as e:
            log.error(f"Scheduler startup error: {str(e)}")

    yield

    # Shutdown
    from storesync.scheduler import stop_scheduler
    from storesync.connectors.base_connector import close_http_session
    stop_scheduler()
    await close_http_session()
    log.info("Shutting down application")


# Create FastAPI app
app = FastAPI(
    title=settings.app_name,
    version=__version__,
    description="""
    Multi-tenant ingestion and reporting

    Pulls ad, analytics, inventory and storefront data per organization,
    stores one row per natural key and serves time-bucketed reports.
    """,
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(StoreSyncError)
async def storesync_error_handler(request: Request, exc: StoreSyncError):
    """Structured {error, details} body for every domain error."""
    if exc.status_code >= 500:
        log.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    """Missing or malformed query, form or body fields."""
    problems = [
        f"{'.'.join(str(part) for part in error.get('loc', ()))}: {error.get('msg', 'invalid')}"
        for error in exc.errors()
    ]
    return JSONResponse(
        status_code=422,
        content={"error": "Invalid request", "details": sanitize_error("; ".join(problems))},
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    """Anything else is a 500 with a generic summary; the message stays in the log."""
    log.exception(f"{request.method} {request.url.path} failed: {type(exc).__name__}: {exc}")
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error", "details": type(exc).__name__},
    )


# Include routers
app.include_router(health.router, tags=["health"])
app.include_router(sync.router)
app.include_router(orders.router)
app.include_router(reports.router)
app.include_router(products.router)
app.include_router(webhooks.router)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("storesync.main:app", host=settings.api_host, port=settings.api_port, reload=settings.debug)
