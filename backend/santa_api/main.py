from time import perf_counter
from uuid import uuid4
import asyncio

from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError

from santa_api.api.routes import games, reveal, site_admin, verifications
from santa_api.core.cleanup import CleanupScheduler
from santa_api.core.config import settings
from santa_api.core.draw import wait_for_background_tasks
from santa_api.core.errors import PersistenceFailure, RateLimited, SantaError
from santa_api.core.gates import PROXY_HEADER, STAGING_HEADER, SharedSecretGate
from santa_api.core.logger import configure_logging, request_id_var
from santa_api.core.rate_limit import build_rate_limiter, enforce_rate_limit
from santa_api.db.session import async_session_factory, ensure_schema_ready


logger = configure_logging()

app = FastAPI(
    title=settings.app_name,
    description="Secret Santa games: participants, the draw and reveal links",
    version="0.1.0",
)
app.state.rate_limiter = build_rate_limiter()
app.state.cleanup = None

cors_origins = settings.backend_cors_origins
logger.info("CORS origins parsed=%s", cors_origins)

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials="*" not in cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
    max_age=600,
)


@app.middleware("http")
async def tracing_middleware(request: Request, call_next):
    request_id = request.headers.get("X-Request-Id") or str(uuid4())
    token = request_id_var.set(request_id)
    start = perf_counter()
    try:
        response = await call_next(request)
    except Exception:
        duration_ms = (perf_counter() - start) * 1000.0
        logger.exception(
            "Request failed method=%s path=%s duration_ms=%.2f",
            request.method,
            request.url.path,
            duration_ms,
        )
        raise
    else:
        duration_ms = (perf_counter() - start) * 1000.0
        logger.info(
            "Request completed method=%s path=%s status=%s duration_ms=%.2f",
            request.method,
            request.url.path,
            response.status_code,
            duration_ms,
        )
    finally:
        request_id_var.reset(token)

    response.headers["X-Request-Id"] = request_id
    return response


@app.middleware("http")
async def security_headers_middleware(request: Request, call_next):
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    return response


# Added last so they run first, ahead of CORS and tracing.
app.add_middleware(SharedSecretGate, header_name=STAGING_HEADER, secret=settings.staging_secret)
app.add_middleware(SharedSecretGate, header_name=PROXY_HEADER, secret=settings.proxy_secret)


@app.exception_handler(SantaError)
async def santa_error_handler(request: Request, exc: SantaError):
    if exc.status_code >= 500:
        logger.error("Request failed on %s %s: %s", request.method, request.url.path, exc.message)
    headers = None
    if isinstance(exc, RateLimited):
        headers = {"Retry-After": str(exc.retry_after)}
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message}, headers=headers)


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError):
    logger.exception("Database error on %s %s", request.method, request.url.path)
    failure = PersistenceFailure()
    return JSONResponse(status_code=failure.status_code, content={"detail": failure.message})


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


@app.on_event("startup")
async def on_startup() -> None:
    loop = asyncio.get_running_loop()
    loop.set_exception_handler(_handle_async_exception)

    db_url = make_url(settings.database_dsn)
    logger.info(
        "DB config driver=%s host=%s database=%s",
        db_url.get_backend_name(),
        db_url.host,
        db_url.database,
    )
    if settings.environment.lower() != "local":
        settings.validate_secrets()

    await ensure_schema_ready()
    await site_admin.init_site_admin_password(async_session_factory)

    app.state.cleanup = CleanupScheduler(async_session_factory, rate_limiter=app.state.rate_limiter)
    app.state.cleanup.start()


@app.on_event("shutdown")
async def on_shutdown() -> None:
    if app.state.cleanup is not None:
        await app.state.cleanup.stop()
        app.state.cleanup = None
    await wait_for_background_tasks()


def _handle_async_exception(loop, context) -> None:
    message = context.get("message", "Async error")
    exc = context.get("exception")
    if exc:
        logger.error("Async error: %s", message, exc_info=exc)
    else:
        logger.error("Async error: %s", message)


api_router = APIRouter(prefix="/api", dependencies=[Depends(enforce_rate_limit)])
api_router.include_router(games.router)
api_router.include_router(reveal.router)
api_router.include_router(verifications.router)
api_router.include_router(site_admin.router)
app.include_router(api_router)


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}
