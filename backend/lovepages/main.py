"""
Love Pages Payments API — FastAPI Application Entry Point

Aggregates all routers, configures middleware and error rendering,
and initializes the database on startup.
"""
import time
from datetime import datetime

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from lovepages.config import get_settings
from lovepages.database import SessionLocal, init_db
from lovepages.exceptions import PaymentError
from lovepages.routes import payment_router, users_router, webhooks_router
from lovepages.schemas.schemas import HealthResponse
from lovepages.utils.logger import get_logger

settings = get_settings()
logger = get_logger("lovepages.server", "server.log")

# ─── Application Instance ───────────────────────────────────────────
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description=(
        "Payments API for Love Pages PRO. Covers MercadoPago and PayPal checkout, "
        "client-driven capture, provider webhooks and idempotent PRO activation."
    ),
    docs_url="/docs",
    redoc_url="/redoc",
)

# ─── Startup ─────────────────────────────────────────────────────────
BOOT_TIME = time.time()


@app.on_event("startup")
def on_startup():
    """Initialize database tables and log boot info."""
    init_db()

    boot_msg = (
        f"\n{'='*60}\n"
        f"  {settings.APP_NAME} v{settings.APP_VERSION}\n"
        f"  TIME: {datetime.now().isoformat()}\n"
        f"  ENVIRONMENT: {settings.ENVIRONMENT}\n"
        f"  MERCADOPAGO: {'[OK] Configured' if settings.MERCADOPAGO_ACCESS_TOKEN else '[!] Missing token'}\n"
        f"  PAYPAL: {'[OK] Configured' if settings.PAYPAL_CLIENT_ID else '[!] Missing credentials'}"
        f" ({settings.paypal_base_url})\n"
        f"  SIMULATION: {'enabled' if settings.simulation_enabled else 'disabled'}\n"
        f"  DATABASE: {settings.DATABASE_URL}\n"
        f"  DEBUG: {settings.DEBUG}\n"
        f"{'='*60}"
    )
    logger.info(boot_msg)


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
        logger.info("-> %s %s -> %s (%sms)", request.method, request.url.path, response.status_code, duration)

    return response


# ─── Error Rendering ─────────────────────────────────────────────────
@app.exception_handler(PaymentError)
async def payment_error_handler(request: Request, exc: PaymentError):
    logger.error("%s on %s %s: %s", exc.error_code, request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


# ─── API Routers ─────────────────────────────────────────────────────
app.include_router(users_router)
app.include_router(payment_router)
app.include_router(webhooks_router)


@app.get("/health", tags=["Health"], response_model=HealthResponse)
def deep_health():
    """Health check including database connectivity."""
    db_ok = False
    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
        db_ok = True
    except SQLAlchemyError as e:
        logger.error("health check: database unavailable: %s", e)
    finally:
        db.close()

    return HealthResponse(
        status="healthy" if db_ok else "degraded",
        service=settings.APP_NAME,
        version=settings.APP_VERSION,
        database="connected" if db_ok else "disconnected",
        uptime_seconds=round(time.time() - BOOT_TIME, 1),
    )
