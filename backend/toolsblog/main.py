"""FastAPI application entry point"""
import asyncio
import logging
from contextlib import asynccontextmanager, suppress

from fastapi import FastAPI, Response
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from toolsblog.core import otel
from toolsblog.core.config import settings
from toolsblog.core.logging import setup_logging
from toolsblog.core.middleware import access_log_middleware, setup_cors_middleware, setup_exception_handlers
from toolsblog.db.redis import get_redis_client
from toolsblog.db.session import check_db, engine, init_db
from toolsblog.models import Base  # noqa: F401  registers all models with Base.metadata
from toolsblog.tasks.scheduler import analytics_rollup_task

from toolsblog.api import affiliate, analytics, subscriptions, users, webhooks

setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Telemetry, dependency checks and the rollup task"""
    if otel.initialize_otel():
        otel.setup_otel_logging()
        otel.instrument_app(app, engine)
        logger.info(f"OpenTelemetry exporting to {settings.OTEL_EXPORTER_OTLP_ENDPOINT}")
    else:
        logger.info("OpenTelemetry not configured - running without distributed tracing")

    # Startup fails if either dependency is unreachable
    for name, step in (("database", init_db), ("redis", lambda: get_redis_client().ping())):
        try:
            step()
        except Exception as e:
            logger.error(f"Startup aborted, {name} unavailable: {e}")
            raise
        logger.info(f"Startup: {name} ready")

    rollup_task = None
    if settings.ENABLE_BACKGROUND_TASKS:
        rollup_task = asyncio.create_task(analytics_rollup_task())
        logger.info(f"Analytics rollup scheduled every {settings.ANALYTICS_ROLLUP_INTERVAL_SECONDS}s")

    yield

    if rollup_task is not None:
        rollup_task.cancel()
        with suppress(asyncio.CancelledError):
            await rollup_task
    logger.info("Shutdown complete")


# Create FastAPI app
app = FastAPI(
    title="Tools Blog Backend",
    description="Blog monetization: subscriptions, affiliate tracking and analytics",
    version="1.0.0",
    lifespan=lifespan
)

setup_cors_middleware(app)
app.middleware("http")(access_log_middleware)
setup_exception_handlers(app)

# Include routers
app.include_router(subscriptions.router)
app.include_router(webhooks.router)
app.include_router(affiliate.router)
app.include_router(analytics.router)
app.include_router(users.router)


# Prometheus metrics endpoint
@app.get("/metrics")
def metrics_endpoint():
    """Prometheus metrics endpoint"""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


# Health check endpoint
@app.get("/health")
def health_check():
    """Database and redis reachability; 503 when either is down"""
    checks = {}
    for name, probe in (("database", check_db), ("redis", lambda: get_redis_client().ping())):
        try:
            probe()
            checks[name] = "ok"
        except Exception as e:
            logger.warning(f"Health check: {name} unavailable: {e}")
            checks[name] = "unavailable"
    healthy = all(value == "ok" for value in checks.values())
    return JSONResponse(
        status_code=200 if healthy else 503,
        content={"status": "healthy" if healthy else "degraded", "checks": checks},
    )
