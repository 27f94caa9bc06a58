import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Depends
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from sqlalchemy import text

from app.db.base import get_db
from app.core.config import settings
from app.core.logging import setup_logging
from app.routers import checkins, jobs, onboarding, patients, webhooks
from app.core.errors import (
    EngageException,
    engage_exception_handler,
    validation_exception_handler,
    unhandled_exception_handler,
)

setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Clinic Engage starting (env=%s)", settings.APP_ENV)
    if not (settings.TWILIO_ACCOUNT_SID and settings.TWILIO_AUTH_TOKEN and settings.TWILIO_WHATSAPP_NUMBER):
        logger.warning("Twilio is not configured: outbound messages will stay pending")
    if not settings.LLM_API_KEY:
        logger.warning("LLM_API_KEY is not set: every message will be handled as a question")
    if not settings.CRON_SECRET:
        logger.warning("CRON_SECRET is not set: /jobs/* endpoints are unauthenticated")
    yield


app = FastAPI(
    title="Clinic Engage API",
    description=(
        "**Conversational engagement engine**\n\n"
        "Classifies inbound patient messages, drives daily check-ins and keeps "
        "the gamification ledger (points, levels, streaks, badges).\n\n"
        "All error responses follow the `{code, message, details}` envelope."
    ),
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_exception_handler(EngageException, engage_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

for module in (webhooks, onboarding, checkins, patients, jobs):
    app.include_router(module.router)


@app.get("/health", tags=["health"], summary="Health check")
def health(db: Session = Depends(get_db)):
    """`{"status": "ok", "db": "ok"}`, or 503 when the database is unreachable."""
    try:
        db.execute(text("SELECT 1"))
    except Exception:
        logger.exception("Health check: database unreachable")
        return JSONResponse(status_code=503, content={"status": "error", "db": "unreachable"})
    return {"status": "ok", "db": "ok", "env": settings.APP_ENV}
