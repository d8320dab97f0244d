# app/main.py
from contextlib import asynccontextmanager
import logging

from fastapi.middleware.cors import CORSMiddleware
from fastapi import FastAPI

from app.core.config import get_settings
from app.database import create_db_and_tables

# Import models so SQLModel metadata is populated before create_all()
from app.models import establishment as _establishment_models  # noqa: F401
from app.models import user as _user_models  # noqa: F401
from app.models import order as _order_models  # noqa: F401
from app.models import side_effect as _side_effect_models  # noqa: F401


# Routers
from app.routers.orders import router as orders_router
from app.routers.receivables import router as receivables_router
from app.routers.side_effects import router as side_effects_router

settings = get_settings()

logging.basicConfig(level=settings.LOG_LEVEL.upper())
logger = logging.getLogger("uvicorn")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup creates missing tables (orders, couriers, outbox, profiles)
    and logs which channel rules this deployment classifies with.
    """
    logger.info("🔄 Startup: opening orders database...")
    try:
        create_db_and_tables()
        logger.info("✅ Startup: orders schema ready.")
    except Exception as e:
        logger.error(f"❌ Startup: orders database unavailable: {e}")
        raise
    logger.info(
        "Deployment mode: %s, partner patterns: %s",
        settings.DEPLOYMENT_MODE,
        settings.PARTNER_SITE_PATTERNS,
    )
    yield


app = FastAPI(
    title=settings.PROJECT_NAME,
    version="0.1.0",
    lifespan=lifespan,
)


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Versioned API prefix, e.g. /api/v1
app.include_router(orders_router, prefix=settings.API_V1_STR)
app.include_router(receivables_router, prefix=settings.API_V1_STR)
app.include_router(side_effects_router, prefix=settings.API_V1_STR)


@app.get("/")
def root():
    """Health check endpoint."""
    return {"status": "ok", "service": "comanda-orders"}
