"""FastAPI application entry point"""
import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from eventhub.core.config import settings
from eventhub.core.logging import setup_logging
from eventhub.core.middleware import access_log_middleware, setup_cors_middleware
from eventhub.core.otel import initialize_otel, instrument_fastapi, instrument_sqlalchemy
from eventhub.db import redis as session_store
from eventhub.db.session import engine, init_db

# Import routers
from eventhub.api import event_attendees, platform_subscriptions, products, stripe, subscriptions

setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan event handler for startup and shutdown"""
    # Startup
    if initialize_otel():
        logger.info(f"OpenTelemetry exporting traces and logs to {settings.OTEL_EXPORTER_OTLP_ENDPOINT}")
    else:
        logger.info("OpenTelemetry not configured - running without distributed tracing")

    logger.info("Initializing database...")
    try:
        init_db()
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        raise

    logger.info("Testing Redis connection...")
    try:
        session_store.get_redis_client().ping()
        logger.info("Redis connection successful")
    except Exception as e:
        logger.error(f"Redis connection failed: {e}")
        raise

    instrument_sqlalchemy(engine)

    background_tasks = []
    if settings.ENABLE_BACKGROUND_TASKS:
        from eventhub.tasks.attendee_linker import attendee_linker_task
        background_tasks.append(asyncio.create_task(attendee_linker_task()))
        logger.info("Attendee linker task started")

    yield

    # Shutdown
    logger.info("Shutting down...")
    for task in background_tasks:
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task


# Create FastAPI app
app = FastAPI(
    title="EventHub Payments",
    description="Stripe reconciliation for events, tickets and subscriptions",
    version="1.0.0",
    lifespan=lifespan
)

instrument_fastapi(app)
setup_cors_middleware(app)
app.middleware("http")(access_log_middleware)

# Include routers
app.include_router(stripe.router)
app.include_router(subscriptions.router)
app.include_router(platform_subscriptions.router)
app.include_router(event_attendees.router)
app.include_router(products.router)


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler"""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error"}
    )


# Prometheus metrics endpoint
@app.get("/metrics")
def metrics_endpoint():
    """Prometheus metrics endpoint"""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


# Health check endpoint
@app.get("/health")
def health_check():
    """Health check endpoint"""
    return {"status": "healthy"}
