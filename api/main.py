"""
api/main.py -- FastAPI application factory for the VecindApp auth service.

Run with:      uvicorn asgi:app --reload
               python main.py serve

create_app(settings) builds a fresh application around an explicit Settings
object. Nothing here reads the environment at import time, so tests build as
many independent apps as they need.

Middleware stack (outermost to innermost):
  1. log_requests          -- one access-log line per request
  2. security_headers      -- nosniff / frame / referrer headers on every response
  3. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  4. CORSMiddleware        -- adds CORS headers for allowed browser origins
  5. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter

Unexpected exceptions are rendered by Starlette's ServerErrorMiddleware,
which sits outside all of the above. log_requests still writes the access
line for them, and the catch-all handler sets SECURITY_HEADERS itself.

Lifespan creates the store, token issuer and workflow on startup and disposes
the connection pool on shutdown.
"""

from __future__ import annotations

import logging
import time
import traceback
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.limiter import limiter
from api.models import ErrorResponse, HealthResponse, ServiceInfo
from api.routes.auth import router as auth_router
from auth.store import SqlIdentityStore
from auth.tokens import TokenIssuer
from auth.workflow import AuthWorkflow
from core.config import Settings, get_settings
from core.errors import ServiceError
from core.log_setup import configure_logging

VERSION = "1.0.0"

logger = logging.getLogger("vecindapp.api")

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "no-referrer",
}


def _log_access(request: Request, status_code: int, start: float) -> None:
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        status_code,
        (time.perf_counter() - start) * 1000,
        request.client.host if request.client else "unknown",
    )


# ---------------------------------------------------------------------------
# Lifespan -- startup / shutdown
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Own the pooled store for the whole server lifetime.

    Startup order matters:
      1. Store first -- refuses to start if the database is unreachable,
         so a misconfigured DATABASE_URL fails at boot, not on first login.
         Missing tables are created only after the ping succeeds.
      2. Issuer second -- holds the signing key from Settings.
      3. Workflow last -- depends on both.
    """
    settings: Settings = app.state.settings
    logger.info("Auth service starting up")
    store = SqlIdentityStore.from_settings(settings)
    if not store.ping():
        store.close()
        raise RuntimeError("Could not connect to the database. Check DATABASE_URL.")
    store.create_schema()
    logger.info("Database connection established")

    issuer = TokenIssuer.from_settings(settings)
    app.state.store = store
    app.state.issuer = issuer
    app.state.workflow = AuthWorkflow(store, issuer)

    yield

    store.close()
    logger.info("Auth service shutdown complete")


# ---------------------------------------------------------------------------
# Error rendering
# ---------------------------------------------------------------------------


def _error_response(
    status_code: int,
    message: str,
    code: str,
    errors: list[dict] | None = None,
    stack: str | None = None,
) -> JSONResponse:
    body = ErrorResponse(status_code=status_code, message=message, code=code, errors=errors, stack=stack)
    response = JSONResponse(status_code=status_code, content=body.model_dump(by_alias=True, exclude_none=True))
    response.headers["Cache-Control"] = "no-store"
    return response


def _register_exception_handlers(app: FastAPI) -> None:
    """All handlers return the same ErrorResponse envelope.

    Typed ServiceErrors carry their own status and code. Stack traces are
    attached only to unexpected failures, and only in debug mode, so two
    typed errors of the same kind always render identical bodies.
    """

    @app.exception_handler(ServiceError)
    async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
        errors = [v.to_dict() for v in getattr(exc, "violations", [])] or None
        if exc.status_code >= 500:
            logger.error("%s on %s %s: %s", exc.code, request.method, request.url.path, exc.message)
        return _error_response(exc.status_code, exc.message, exc.code, errors=errors)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        """Malformed JSON or wrong field types -> 400, same shape as workflow validation."""
        errors = [
            {"field": ".".join(str(part) for part in err.get("loc", ()) if part != "body"), "message": err.get("msg", "")}
            for err in exc.errors()
        ]
        return _error_response(400, "Invalid request body.", "validation_failed", errors=errors)

    @app.exception_handler(RateLimitExceeded)
    async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
        """Return 429 with Retry-After when a rate limit is exceeded."""
        # Seconds in the exceeded window, e.g. 60 for "10/minute".
        retry_after = exc.limit.limit.get_expiry() if exc.limit is not None else 60
        response = _error_response(429, "Too many requests. Try again later.", "rate_limited")
        response.headers["Retry-After"] = str(retry_after)
        return response

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        """Routing errors (unknown path, wrong method) in the common envelope."""
        if exc.status_code == 404:
            return _error_response(404, "Route not found.", "not_found")
        return _error_response(exc.status_code, str(exc.detail), f"http_{exc.status_code}")

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Catch-all for unexpected server errors.

        The full traceback goes to the log with method, path and the caller's
        user id when one was authenticated. The client gets a generic message,
        plus the stack only when DEBUG=true.
        """
        identity = getattr(request.state, "identity", None)
        logger.exception(
            "Unhandled exception on %s %s (user_id=%s)",
            request.method,
            request.url.path,
            identity.user_id if identity is not None else "anonymous",
        )
        stack = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__)) if app.state.settings.debug else None
        response = _error_response(500, "Internal server error.", "internal_error", stack=stack)
        response.headers.update(SECURITY_HEADERS)
        return response


# ---------------------------------------------------------------------------
# App factory
# ---------------------------------------------------------------------------


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings)

    app = FastAPI(
        title="VecindApp Auth Service",
        description="Resident registration, login and membership approval for VecindApp.",
        version=VERSION,
        lifespan=lifespan,
    )
    app.state.settings = settings

    # -----------------------------------------------------------------------
    # Middleware stack
    #
    # add_middleware() wraps the current stack, so the LAST one added is the
    # outermost. Register innermost-first: SlowAPI -> CORS -> TrustedHost.
    # -----------------------------------------------------------------------

    app.add_middleware(SlowAPIMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["GET", "POST"],
        allow_headers=["Content-Type", "Authorization"],
        max_age=3600,
    )
    app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.allowed_hosts)

    # SlowAPI looks for app.state.limiter by convention.
    app.state.limiter = limiter

    @app.middleware("http")
    async def security_headers(request: Request, call_next):
        response = await call_next(request)
        for name, value in SECURITY_HEADERS.items():
            response.headers.setdefault(name, value)
        return response

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            # Rendered as 500 by ServerErrorMiddleware, outside this one.
            _log_access(request, 500, start)
            raise
        _log_access(request, response.status_code, start)
        return response

    _register_exception_handlers(app)

    # -----------------------------------------------------------------------
    # Routes
    # -----------------------------------------------------------------------

    app.include_router(auth_router, prefix="/api", tags=["Auth"])

    @app.get("/", response_model=ServiceInfo, tags=["Health"])
    async def root() -> ServiceInfo:
        """Service banner."""
        return ServiceInfo(message="VecindApp authentication service")

    @app.get("/api/health", response_model=HealthResponse, tags=["Health"])
    def health(request: Request) -> HealthResponse:
        """Liveness plus database reachability. No auth, no rate limit."""
        db_ok = request.app.state.store.ping()
        return HealthResponse(
            status="healthy" if db_ok else "degraded",
            version=VERSION,
            components={"app": "ok", "database": "ok" if db_ok else "error"},
        )

    return app
