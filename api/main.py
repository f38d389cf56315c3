"""
api/main.py -- FastAPI application entry point for the BiloGames account service.

Run with:  uvicorn asgi:app --reload
           python main.py serve

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- lets the web client call the API from the browser
  3. log_requests          -- one log line per request with latency

Lifespan builds every store and service from Settings (startup), starts the
unverified-account reaper, and tears everything down symmetrically
(shutdown). Services are stored on app.state; route dependencies read them
from there, and tests replace the lifespan to inject their own.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from accounts.reaper import reaper_loop
from accounts.service import AccountService
from api.models import ErrorResponse, HealthResponse
from api.routes.auth import router as auth_router
from auth.codes import CodeService, CodeStore
from auth.google import build_google_bridge
from auth.store import UserStore
from auth.tokens import TokenIssuer
from core.config import get_settings
from core.errors import AccountError
from core.mailer import Mailer

VERSION = "1.0.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("bilogames.api")

_settings = get_settings()


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build stores and services on startup; dispose of them on shutdown.

    Startup order matters:
      1. UserStore first -- owns the engine and creates the users table.
      2. CodeStore on the same engine -- its tables reference users.id.
      3. Services, then the reaper task, which reads them from app.state.
    """
    settings = get_settings()
    logger.info("%s account service starting up", settings.app_name)

    app.state.user_store = UserStore(db_url=settings.database_url)
    app.state.code_service = CodeService(
        CodeStore(app.state.user_store.engine),
        ttl_minutes=settings.verification_code_ttl_minutes,
    )
    app.state.token_issuer = TokenIssuer(settings.secret_key, settings.token_expire_seconds)
    app.state.mailer = Mailer(
        settings.sendgrid_api_key,
        settings.mail_from_email,
        app_name=settings.app_name,
        echo=settings.debug,
    )
    if not app.state.mailer.configured:
        logger.warning("SendGrid not configured -- outgoing mail %s", "logged only" if settings.debug else "disabled")
    app.state.account_service = AccountService(
        users=app.state.user_store,
        codes=app.state.code_service,
        tokens=app.state.token_issuer,
        mailer=app.state.mailer,
        google=build_google_bridge(settings.google_client_id),
    )

    app.state.reaper_task = None
    if settings.reaper_enabled:
        app.state.reaper_task = asyncio.create_task(
            reaper_loop(
                app,
                startup_delay=settings.reaper_startup_delay_seconds,
                interval=settings.reaper_interval_seconds,
                retention_days=settings.unverified_retention_days,
            )
        )
        logger.info(
            "Reaper scheduled (every %ds, retention %d days)",
            settings.reaper_interval_seconds,
            settings.unverified_retention_days,
        )

    yield

    # Shutdown
    if app.state.reaper_task is not None:
        app.state.reaper_task.cancel()
    app.state.user_store.close()
    logger.info("Account service shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="BiloGames Account API",
    description="Registration, sign-in (password and Google), email verification and password reset.",
    version=VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
# ---------------------------------------------------------------------------

app.add_middleware(TrustedHostMiddleware, allowed_hosts=_settings.allowed_hosts)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api", tags=["Auth"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope: {"error": str, "code": str}.
# The web client shows `error` verbatim, so it is always a single line and
# never contains internal detail.
# ---------------------------------------------------------------------------


def _error(status_code: int, message: str, code: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=message, code=code).model_dump(),
    )


@app.exception_handler(AccountError)
async def account_error_handler(request: Request, exc: AccountError) -> JSONResponse:
    """Map every service-layer error to its status and envelope."""
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", exc.code, request.method, request.url.path, exc.message)
    return _error(exc.status_code, exc.message, exc.code)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 naming the first field that failed shape validation."""
    errors = exc.errors()
    message = "Invalid request body"
    if errors:
        first = errors[0]
        field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        if first.get("type") == "missing":
            message = f"{field} is required" if field else "Request body is required"
        elif field:
            message = f"Invalid value for {field}"
    return _error(400, message, "validation_error")


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return _error(exc.status_code, str(exc.detail), f"http_{exc.status_code}")


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The traceback goes to the log only; the client gets a generic message.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error(500, "Server error", "internal_error")


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state.
# ---------------------------------------------------------------------------


@app.get("/api/health", tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return liveness, version and database reachability."""
    try:
        database = "ok" if request.app.state.user_store.ping() else "error"
    except Exception:
        logger.exception("Health check database ping failed")
        database = "error"
    return HealthResponse(version=VERSION, components={"app": "ok", "database": database})
