"""FastAPI application factory and setup."""

import time
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger
from starlette.responses import JSONResponse

from src.accounts.api.http.app_data import ApplicationDependencies
from src.accounts.api.http.routers.admin import router as admin_router
from src.accounts.api.http.routers.health import router as health_router
from src.accounts.api.http.routers.identity import router as identity_router
from src.accounts.api.utils.app_startup import configure_logging
from src.accounts.core.errors import (
    AccountConflict,
    AuthenticationError,
    RateLimited,
    RecordNotFound,
    TransientStoreError,
)
from src.accounts.core.storage.record_store import get_record_store
from src.accounts.core.storage.sql_record_store import SqlRecordStore
from src.accounts.runtime.context import get_config
from src.accounts.runtime.init_db import init_database

# Initialize logging
configure_logging()


# --- FastAPI app setup ---
@asynccontextmanager
async def lifespan(app: FastAPI):
    await startup()
    try:
        yield
    finally:
        await shutdown()


app = FastAPI(
    title="Flashcard accounts",
    lifespan=lifespan,
    docs_url=None if get_config().app.environment == "production" else "/docs",
    redoc_url=None if get_config().app.environment == "production" else "/redoc",
)

# expose startup for tests
__all__ = ["app", "startup", "shutdown"]

# --- CORS configuration ---
if get_config().app.environment == "production" and "*" in get_config().app.cors.origins:
    raise RuntimeError(
        "CORS misconfigured: cannot use '*' with allow_credentials=True in production"
    )

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_config().app.cors.origins,
    allow_credentials=get_config().app.cors.allow_credentials,
    allow_methods=get_config().app.cors.allow_methods,
    allow_headers=get_config().app.cors.allow_headers,
)


# --- Request logging middleware ---
@app.middleware("http")
async def log_requests(request: Request, call_next):
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    start = time.perf_counter()

    with logger.contextualize(
        request_id=request_id, method=request.method, path=request.url.path
    ):
        logger.info("request.start")
        try:
            response = await call_next(request)
        except Exception as exc:
            duration_ms = (time.perf_counter() - start) * 1000
            logger.bind(
                status_code=500,
                duration_ms=round(duration_ms, 1),
                error_type=type(exc).__name__,
            ).exception("request.error")
            return JSONResponse(
                status_code=500,
                content={"detail": "Internal Server Error", "request_id": request_id},
                headers={"X-Request-ID": request_id},
            )

        duration_ms = (time.perf_counter() - start) * 1000
        logger.bind(
            status_code=response.status_code, duration_ms=round(duration_ms, 1)
        ).info("request.end")
        response.headers.setdefault("X-Request-ID", request_id)
        return response


# --- Domain error mapping ---
@app.exception_handler(AuthenticationError)
async def authentication_error_handler(request: Request, exc: AuthenticationError):
    return JSONResponse(status_code=401, content={"detail": str(exc)})


@app.exception_handler(AccountConflict)
async def account_conflict_handler(request: Request, exc: AccountConflict):
    return JSONResponse(status_code=409, content={"detail": exc.user_message})


@app.exception_handler(RateLimited)
async def rate_limited_handler(request: Request, exc: RateLimited):
    headers = {}
    if exc.retry_after_seconds is not None:
        headers["Retry-After"] = str(exc.retry_after_seconds)
    return JSONResponse(
        status_code=429,
        content={"detail": exc.reason, "retry_after_seconds": exc.retry_after_seconds},
        headers=headers,
    )


@app.exception_handler(RecordNotFound)
async def record_not_found_handler(request: Request, exc: RecordNotFound):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(TransientStoreError)
async def transient_store_error_handler(request: Request, exc: TransientStoreError):
    logger.warning("Record store unavailable: {}", exc)
    return JSONResponse(
        status_code=503,
        content={"detail": exc.user_message},
        headers={"Retry-After": "1"},
    )


# --- Router registration ---
app.include_router(health_router)
app.include_router(identity_router)
app.include_router(admin_router)


# --- Lifecycle hooks ---
async def startup() -> None:
    config = get_config()
    logger.info("Starting up application in {} environment", config.app.environment)

    # Tests install their own dependencies before the app starts
    if getattr(app.state, "app_dependencies", None) is None:
        store = get_record_store()
        if config.app.environment != "production" and isinstance(store, SqlRecordStore):
            init_database(store.db)
        app.state.app_dependencies = ApplicationDependencies.build(store)

    if not await app.state.app_dependencies.record_store.is_available():
        logger.warning("Record store is not reachable at startup")


async def shutdown() -> None:
    logger.info("Shutting down application")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        app,
        host=get_config().app.host,
        port=get_config().app.port,
        access_log=False,  # We handle access logging in middleware
    )
