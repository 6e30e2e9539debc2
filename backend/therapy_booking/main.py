# backend/therapy_booking/main.py
"""
FastAPI application for the therapy session booking engine.

Run with:
    uvicorn therapy_booking.main:app --app-dir backend
"""

from contextlib import asynccontextmanager
import logging
from typing import AsyncGenerator

from fastapi import APIRouter, FastAPI

from .core.config import settings
from .errors import register_error_handlers
from .routes import availability, health, payments, refunds, sessions

# Configure logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

logger = logging.getLogger(__name__)

API_TITLE = "Therapy Booking API"
API_VERSION = "1.0.0"


@asynccontextmanager
async def app_lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    logger.info(f"Starting {API_TITLE} v{API_VERSION} ({settings.environment})")
    if not settings.payhere_merchant_id or not settings.merchant_secret():
        logger.warning("PayHere is not configured; checkout and notifications will fail")
    yield
    logger.info(f"Shutting down {API_TITLE}")


app = FastAPI(
    title=API_TITLE,
    description="Slot scheduling, payment-gated booking and cancellation policy",
    version=API_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=app_lifespan,
)

register_error_handlers(app)

api_v1 = APIRouter(prefix="/api/v1")
api_v1.include_router(availability.router, prefix="/therapists")
api_v1.include_router(payments.router, prefix="/payments")
api_v1.include_router(sessions.router, prefix="/sessions")
api_v1.include_router(refunds.router, prefix="/refunds")

app.include_router(api_v1)
app.include_router(health.router)
