"""
FastAPI application entry point.

WHAT: Marketplace engine app: listings, deals, disputes, expiry admin
WHY: Expose the matching and deal lifecycle engine over HTTP
HOW: App factory wiring CORS, business exception handlers and the v1 router;
     the lifespan creates tables and reports optional integrations
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .core.config import settings
from .core.database import init_db, close_db
from .utils.logger import setup_logging, get_logger
from .middleware.error_handler import register_exception_handlers
from .api.v1.router import API_V1_PREFIX, api_router

setup_logging()
logger = get_logger(__name__)


def _report_integrations():
    """Log which optional integrations this process runs with."""
    if settings.ADMIN_SECRET:
        logger.info("Expiry admin endpoints enabled")
    else:
        logger.warning("ADMIN_SECRET is not set; expiry admin endpoints will return 503")

    if settings.WEBHOOK_URL:
        logger.info(f"Webhook notifications enabled (timeout {settings.WEBHOOK_TIMEOUT}s)")
    else:
        logger.info("Webhook notifications disabled; notifications are stored in the inbox only")

    logger.info(
        f"Expiry defaults: timeout {settings.EXPIRY_DEFAULT_TIMEOUT_HOURS}h, "
        f"limit {settings.EXPIRY_DEFAULT_LIMIT} (max {settings.EXPIRY_MAX_LIMIT})"
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    WHAT: Startup and shutdown logic
    WHY: Tables must exist before the first request; integrations are opt-in
    HOW: Async context manager for FastAPI lifespan
    """
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")
    init_db()
    _report_integrations()

    yield

    close_db()
    logger.info("Application shutdown complete")


def create_app() -> FastAPI:
    """Build the FastAPI application."""
    application = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="Matching and deal lifecycle engine for an agent marketplace",
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.get_cors_origins_list(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(application)
    application.include_router(api_router)

    @application.get("/")
    async def root():
        """Service banner with the API entry point."""
        return {
            "app": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "api": API_V1_PREFIX,
            "status": "running",
        }

    return application


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "agentmarket.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG
    )
