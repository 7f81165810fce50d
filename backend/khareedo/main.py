from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
import logging

from khareedo.core.config import settings
from khareedo.core.database import Base, get_engine, get_session_local, check_database_connection
from khareedo.core.errors import register_exception_handlers
from khareedo.core.middleware import RequestLoggingMiddleware
from khareedo.api import api_router
from khareedo import models  # noqa: F401  registers every table on Base.metadata
from khareedo.services.roles import seed_roles

# Configure logging
logging.basicConfig(
    level=logging.INFO if settings.DEBUG else logging.WARNING,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle manager."""
    # Startup
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION} ({settings.ENVIRONMENT})")

    # Create database tables (in production, use migrations)
    Base.metadata.create_all(bind=get_engine())
    logger.info("Database tables created/verified")

    db = get_session_local()()
    try:
        result = seed_roles(db)
        if result["created"]:
            logger.info(f"Default roles created: {', '.join(result['created'])}")
    finally:
        db.close()

    yield

    # Shutdown
    logger.info("Shutting down...")


# Create FastAPI application
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Group-buying real estate marketplace: listings, buyer engagement and CRM",
    lifespan=lifespan,
)

# Request logging and proxy scheme handling (must be added before CORS)
app.add_middleware(RequestLoggingMiddleware)

logger.info(f"CORS origins configured: {settings.CORS_ORIGINS}")
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

# Include API routes
app.include_router(api_router, prefix="/api")


@app.get("/")
def root():
    """Health check endpoint."""
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "status": "healthy"
    }


@app.get("/health")
def health_check():
    """Detailed health check."""
    connected = check_database_connection()
    return {
        "status": "healthy" if connected else "degraded",
        "database": "connected" if connected else "unreachable",
        "version": settings.APP_VERSION
    }
