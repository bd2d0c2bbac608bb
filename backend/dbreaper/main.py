from fastapi import FastAPI
import logging
from contextlib import asynccontextmanager

from dbreaper import __version__
from dbreaper.config import get_settings
from dbreaper.database import check_db_connection
from dbreaper.api.reaper_routes import router as reaper_router
from dbreaper.metrics import metrics_router, metrics_middleware
from dbreaper.logging_config import setup_logging, log_requests_middleware
from dbreaper.error_handlers import register_error_handlers

settings = get_settings()

# Configure production logging with rotation
setup_logging(
    log_level=settings.log_level,
    log_dir=settings.log_dir,
    app_name="dbreaper",
    enable_json=settings.log_json
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup and shutdown tasks"""
    logger.info("Starting application...")

    if not settings.tables:
        logger.warning("No tables configured for reaping; set TABLES to enable reaps")
    else:
        logger.info(f"Tables configured for reaping: {', '.join(settings.tables)}")

    if not settings.require_api_key:
        logger.warning("API key check is disabled; reap endpoints are open")

    yield

    logger.info("Shutting down application...")


app = FastAPI(
    title=settings.app_name,
    description="Retention reaper: moves expired rows into backup tables and dumps them to SQL files",
    version=__version__,
    lifespan=lifespan,
    docs_url="/docs" if settings.debug else None,  # Disable docs in production
    redoc_url="/redoc" if settings.debug else None,
)

# Register error handlers
register_error_handlers(app)

# Add request logging middleware
if settings.enable_request_logging:
    app.middleware("http")(log_requests_middleware)

app.include_router(reaper_router, prefix="/api")
app.include_router(metrics_router)

# Add metrics collection middleware
app.middleware("http")(metrics_middleware)


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "message": "DB Reaper API",
        "status": "running",
        "docs": "/docs"
    }


@app.get("/health")
async def health_check():
    """Health check endpoint with database connectivity test"""
    db_connected = check_db_connection()

    logger.debug("Health check performed", extra={"db_connected": db_connected})

    return {
        "status": "healthy" if db_connected else "unhealthy",
        "service": settings.app_name,
        "database": "connected" if db_connected else "disconnected"
    }
