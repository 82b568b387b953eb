"""Main FastAPI application."""
import structlog
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.config import settings
from app.api import router
from app.core.store import create_store
from app.db.session import engine, async_session_maker
from app.db.models import Base
from app.errors import IntelligenceError
from app.services.intelligence.engine import sql_engine_factory
from app.services.monitoring.baseline import InMemoryBaselineStore, RedisBaselineStore
from app.services.monitoring.monitor import ChangeMonitor, RiskScanner
from app.services.webhooks.dispatcher import WebhookNotifier


# Configure structured logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info("Starting application", version=settings.APP_VERSION)

    # Create database tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables created")

    app.state.store = create_store()
    if settings.STORE_BACKEND == "redis":
        baseline_store = RedisBaselineStore.from_url(settings.REDIS_URL)
    else:
        baseline_store = InMemoryBaselineStore()

    engine_factory = sql_engine_factory(async_session_maker)
    notifier = WebhookNotifier(async_session_maker)
    app.state.monitor = ChangeMonitor(engine_factory, baseline_store, on_update=notifier)

    scanner = None
    if settings.RISK_SCAN_ENABLED:
        scanner = RiskScanner(engine_factory, on_update=notifier)
        scanner.start()
        logger.info("Risk scanner started", interval_seconds=scanner.interval_seconds)

    yield

    # Cleanup
    await app.state.monitor.shutdown()
    if scanner is not None:
        await scanner.stop()
    await app.state.store.close()
    await engine.dispose()
    logger.info("Application shutdown complete")


# Create FastAPI app
app = FastAPI(
    title=settings.APP_NAME,
    description="Cascade analysis for trade-compliance anomalies",
    version=settings.APP_VERSION,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure properly in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(IntelligenceError)
async def intelligence_error_handler(request: Request, exc: IntelligenceError):
    if exc.status_code >= 500:
        logger.error("Request failed", path=request.url.path, error=exc.message)
    else:
        logger.info("Request rejected", path=request.url.path, status=exc.status_code, error=exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# Include API routes
app.include_router(router, prefix="/api")


# Root endpoint
@app.get("/")
async def root():
    """Root endpoint with system info."""
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "docs": "/docs",
        "api": "/api",
        "health": "/api/health"
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True
    )
