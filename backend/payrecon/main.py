"""
Payment Reconciliation — FastAPI Application Entry Point

Aggregates all routers, configures middleware and initializes the database
on startup. Scheduled work (expiry checks, sweeps, notifications) runs in the
separate worker process: `python run.py worker`.
"""
import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from payrecon.config import get_settings
from payrecon.database import SessionLocal, init_db
from payrecon.gateways import close_adapters, get_adapters
from payrecon.logging_config import configure_logging
from payrecon.routes import webhooks_router, payment_router, transactions_router, reconciliation_router

settings = get_settings()
logger = logging.getLogger(__name__)

BOOT_TIME = time.time()


# ─── Startup ─────────────────────────────────────────────────────────
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize logging and database tables, log boot info."""
    configure_logging(settings)
    init_db()

    logger.info(
        "%s v%s started at %s (database: %s, debug: %s)",
        settings.APP_NAME, settings.APP_VERSION, datetime.now().isoformat(),
        settings.DATABASE_URL, settings.DEBUG,
    )
    yield
    if get_adapters.cache_info().currsize:
        close_adapters(get_adapters())
        get_adapters.cache_clear()
    logger.info("%s shutting down", settings.APP_NAME)


# ─── Application Instance ───────────────────────────────────────────
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description=(
        "Payment transaction reconciliation for driving-school enrollments and RTO services. "
        "Receives Razorpay, PhonePe and Cashfree webhooks, keeps transactions and payments "
        "consistent under duplicate delivery, and reconciles missed webhooks by polling."
    ),
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)


# ─── Middleware ──────────────────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log every API request with timing."""
    start = time.time()
    response = await call_next(request)
    duration = round((time.time() - start) * 1000, 1)

    if request.url.path.startswith("/api"):
        logger.info("%s %s -> %s (%sms)", request.method, request.url.path, response.status_code, duration)

    return response


# ─── API Routers ─────────────────────────────────────────────────────
app.include_router(webhooks_router)
app.include_router(payment_router)
app.include_router(transactions_router)
app.include_router(reconciliation_router)


@app.get("/health", tags=["Health"])
def health():
    """Health check including database connectivity."""
    db_ok = False
    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
        db_ok = True
    except SQLAlchemyError:
        logger.exception("Health check: database unreachable")
    finally:
        db.close()

    return {
        "status": "healthy" if db_ok else "degraded",
        "database": "connected" if db_ok else "disconnected",
        "uptime_seconds": round(time.time() - BOOT_TIME, 1),
        "version": settings.APP_VERSION,
    }
