"""PledgeRank backend: FastAPI application entry point."""

import signal
import uuid
from contextlib import asynccontextmanager

# configure_structlog must run before other pledgerank imports create loggers
from pledgerank.core.logging import configure_structlog
from pledgerank.core.config import get_settings as _get_settings_early

_early_settings = _get_settings_early()
configure_structlog(
    log_level="DEBUG" if _early_settings.debug else "INFO",
    json_logs=not _early_settings.debug,
)

import structlog

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from pledgerank.api.routes import api_router
from pledgerank.core.config import get_settings
from pledgerank.core.exceptions import ConcurrencyError, PledgeRankError
from pledgerank.db import close_db, close_redis, get_redis, init_db, init_redis
from pledgerank.middleware.correlation import get_correlation_id, setup_correlation_middleware
from pledgerank.services.notifier import Notifier, UpdateBus
from pledgerank.services.proof_verifier import build_proof_verifier

logger = structlog.get_logger(__name__)

_HTTP_ERROR_CODES = {401: "unauthorized", 403: "forbidden", 404: "not_found", 405: "method_not_allowed"}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup: verifier, database, Redis, live-update relay. Shutdown in reverse."""
    app.state.shutting_down = False

    def handle_sigterm(signum, frame):
        # /api/health answers 503 from here on so the load balancer drains us
        app.state.shutting_down = True
        logger.info("sigterm_received", action="health_check_503_draining_connections")

    signal.signal(signal.SIGTERM, handle_sigterm)

    settings = get_settings()
    logger.info("startup_begin", app_name=settings.app_name, debug=settings.debug)

    # Without a verifier every commitment would be rejected, so refuse to start
    app.state.proof_verifier = build_proof_verifier()

    await init_db()
    await init_redis()
    logger.info("storage_initialized")

    notifier = Notifier(UpdateBus(), redis=get_redis())
    notifier.start_relay()
    app.state.notifier = notifier
    logger.info("notifier_initialized", relay_enabled=notifier.relay_enabled)

    try:
        yield
    finally:
        logger.info("shutdown_begin")
        await notifier.stop_relay()
        await close_redis()
        await close_db()
        logger.info("shutdown_complete")


def _failure_context(request: Request) -> dict:
    return {
        "correlation_id": get_correlation_id(),
        "path": request.url.path,
        "method": request.method,
        "donor_ref": getattr(request.state, "donor_ref", None),
    }


def _error_response(
    status_code: int,
    code: str,
    detail,
    debug_id: str,
    retryable: bool = False,
    headers: dict | None = None,
    **extra,
) -> JSONResponse:
    # Every error body has the same shape; clients branch on ``code``
    content = {"code": code, "detail": detail, "retryable": retryable, "debug_id": debug_id, **extra}
    return JSONResponse(status_code=status_code, content=content, headers=headers)


async def pledgerank_exception_handler(request: Request, exc: PledgeRankError) -> JSONResponse:
    debug_id = str(uuid.uuid4())
    log = logger.error if exc.status_code >= 500 else logger.info
    log(
        "request_failed",
        code=exc.code,
        status_code=exc.status_code,
        debug_id=debug_id,
        detail=exc.detail,
        **_failure_context(request),
    )

    headers = {"Retry-After": str(exc.retry_after)} if isinstance(exc, ConcurrencyError) else None
    return _error_response(exc.status_code, exc.code, exc.detail, debug_id, exc.retryable, headers)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    debug_id = str(uuid.uuid4())
    errors = [
        {"loc": list(e.get("loc", ())), "msg": e.get("msg", ""), "type": e.get("type", "")}
        for e in exc.errors()
    ]
    logger.info("request_validation_failed", debug_id=debug_id, errors=errors, **_failure_context(request))
    return _error_response(422, "validation_error", "Request validation failed", debug_id, errors=errors)


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Auth and routing failures raised as plain HTTPException."""
    debug_id = str(uuid.uuid4())
    logger.warning(
        "http_exception",
        status_code=exc.status_code,
        debug_id=debug_id,
        detail=exc.detail,
        **_failure_context(request),
    )
    code = _HTTP_ERROR_CODES.get(exc.status_code, "http_error")
    return _error_response(exc.status_code, code, exc.detail, debug_id, headers=getattr(exc, "headers", None))


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Full traceback goes to the logs; the client only gets the debug_id."""
    debug_id = str(uuid.uuid4())
    logger.error(
        "unhandled_exception",
        debug_id=debug_id,
        error=str(exc),
        error_type=type(exc).__name__,
        exc_info=True,
        **_failure_context(request),
    )
    return _error_response(500, "internal_error", "Internal server error", debug_id)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(PledgeRankError, pledgerank_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)


def create_app() -> FastAPI:
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        description="Privacy-preserving contribution ranking and disclosure",
        version="0.1.0",
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=sorted({settings.frontend_url, *settings.clerk_allowed_origins}),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "Retry-After"],
    )

    # Added last so it wraps CORS and sees every request first
    setup_correlation_middleware(app)
    register_exception_handlers(app)
    app.include_router(api_router, prefix="/api")
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("pledgerank.main:app", host="0.0.0.0", port=8000, reload=True)
