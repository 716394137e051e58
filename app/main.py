# app/main.py
from contextlib import asynccontextmanager
import logging

from fastapi.middleware.cors import CORSMiddleware
from fastapi import FastAPI

from app.core.config import get_settings
from app.core.errors import register_error_handlers
from app.database import create_db_and_tables
from app.services.admission_service import RateAdmissionGate

# Import models so SQLModel metadata is populated before create_all()
from app.models import user as _user_models  # noqa: F401
from app.models import order as _order_models  # noqa: F401
from app.models import location as _location_models  # noqa: F401

# Routers
from app.routers.orders import router as orders_router
from app.routers.internal_orders import router as internal_orders_router
from app.routers.location import router as location_router

settings = get_settings()

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("uvicorn")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Startup:
      - Create tables (when AUTO_CREATE_TABLES is set).
      - Build the rate admission gate (redis counters, local fallback).

    Shutdown:
      - Close the redis connection pool.
    """
    if settings.AUTO_CREATE_TABLES:
        logger.info("Startup: connecting to Postgres...")
        try:
            create_db_and_tables()
            logger.info("Startup: DB connection OK, tables verified.")
        except Exception as e:
            logger.error(f"Startup: DB connection FAILED: {e}")
            raise

    app.state.admission_gate = RateAdmissionGate.from_settings(settings)
    if settings.REDIS_URL:
        logger.info("Startup: rate limits use redis with local fallback=%s", settings.RATE_LIMIT_FALLBACK_ENABLED)
    else:
        logger.warning("Startup: REDIS_URL not set, rate limits are per process")
    yield
    app.state.admission_gate.close()


app = FastAPI(
    title=settings.PROJECT_NAME or "BuildMate Delivery API",
    version="0.1.0",
    lifespan=lifespan,
)

register_error_handlers(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Versioned API prefix, e.g. /api/v1
app.include_router(orders_router, prefix=settings.API_V1_STR)
app.include_router(internal_orders_router, prefix=settings.API_V1_STR)
app.include_router(location_router, prefix=settings.API_V1_STR)


@app.get("/")
def root():
    """Health check endpoint."""
    return {"status": "ok", "service": "buildmate-delivery"}
