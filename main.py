from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.responses import JSONResponse
from dotenv import load_dotenv
import os
import sys
import logging

from services.database import check_database, close_engine
from services.principal_cache import close_principal_cache
from middleware.jwt_auth import is_jwt_auth_configured
from routers import admin, journeys, location_updates

load_dotenv()

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Validate required environment variables
REQUIRED_ENV_VARS = ["DATABASE_URL", "INTERNAL_JWT_SECRET"]


def validate_environment():
    """Validate that all required environment variables are set."""
    missing = [var for var in REQUIRED_ENV_VARS if not os.getenv(var)]
    if missing:
        logger.error(f"Missing required environment variables: {missing}")
        sys.exit(1)
    if not is_jwt_auth_configured():
        logger.error("INTERNAL_JWT_SECRET must be at least 32 characters")
        sys.exit(1)
    logger.info("Environment validation passed")


def log_integrations():
    """
    Log which optional integrations are enabled.

    Missing optional configuration disables the integration but the
    application keeps running.
    """
    if os.getenv("ROUTEXL_USERNAME") and os.getenv("ROUTEXL_PASSWORD"):
        max_retries = os.getenv("ROUTEXL_MAX_RATE_LIMIT_RETRIES", "0")
        logger.info("=" * 60)
        logger.info("Route optimizer ENABLED")
        logger.info(f"  Endpoint: {os.getenv('ROUTEXL_API_URL', 'https://api.routexl.com/tour')}")
        logger.info(f"  429 retry cap: {max_retries if max_retries != '0' else 'unbounded'}")
        logger.info("=" * 60)
    else:
        logger.warning("=" * 60)
        logger.warning("Route optimizer DISABLED")
        logger.warning("Missing ROUTEXL_USERNAME and/or ROUTEXL_PASSWORD")
        logger.warning("Journey optimization requests will fail with 502")
        logger.warning("=" * 60)

    if os.getenv("REDIS_URL"):
        logger.info(
            f"Principal cache ENABLED: ttl={os.getenv('PRINCIPAL_CACHE_TTL_SECONDS', '300')}s"
        )
    else:
        logger.warning("Principal cache DISABLED (REDIS_URL not set)")

    if os.getenv("EVENTBRIDGE_BUS_NAME"):
        logger.info("=" * 60)
        logger.info("EventBridge integration ENABLED")
        logger.info(f"  AWS Region: {os.getenv('AWS_REGION', 'us-east-1')}")
        logger.info(f"  EventBridge Bus: {os.getenv('EVENTBRIDGE_BUS_NAME')}")
        logger.info(f"  Event Source: {os.getenv('EVENT_SOURCE', 'com.fleetops.core')}")
        logger.info("=" * 60)
    else:
        logger.warning("=" * 60)
        logger.warning("EventBridge integration DISABLED")
        logger.warning("EVENTBRIDGE_BUS_NAME not set")
        logger.warning("Workflow transitions will not be published")
        logger.warning("=" * 60)


# Call validation at startup
validate_environment()
log_integrations()


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    await close_principal_cache()
    await close_engine()


app = FastAPI(title="Fleet Operations Core", lifespan=lifespan)

# Include routers
app.include_router(location_updates.router)
app.include_router(journeys.router)
app.include_router(admin.router)


@app.get("/health")
async def health():
    database_ok = await check_database()
    return JSONResponse(
        status_code=200 if database_ok else 503,
        content={"status": "ok" if database_ok else "degraded", "database": database_ok},
    )
