"""FastAPI application entry point."""

from __future__ import annotations

import logging
import logging.handlers
import os
import sys
import time
import uuid
from contextlib import asynccontextmanager

from tabletalk.core.config import settings

# ── Logging configuration (done once, before any app imports) ─

os.makedirs(settings.LOG_DIR, exist_ok=True)

_fmt = logging.Formatter("%(asctime)s %(name)s %(levelname)s %(message)s")
_stream_handler = logging.StreamHandler(sys.stdout)
_stream_handler.setFormatter(_fmt)
_file_handler = logging.handlers.RotatingFileHandler(
    os.path.join(settings.LOG_DIR, "app.log"), maxBytes=10 * 1024 * 1024, backupCount=3
)
_file_handler.setFormatter(_fmt)

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    handlers=[_stream_handler, _file_handler],
)
# Quieten noisy third-party loggers
for _noisy in ("httpx", "httpcore", "uvicorn.access"):
    logging.getLogger(_noisy).setLevel(logging.WARNING)

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from tabletalk.routes.chat import router as chat_router
from tabletalk.routes.datasets import router as datasets_router
from tabletalk.routes.deps import build_services
from tabletalk.routes.health import router as health_router
from tabletalk.routes.upload import router as upload_router
from tabletalk.services.code_execution.sandbox import check_runtime_available

logger = logging.getLogger("main")


# ── Lifespan ──────────────────────────────────────────────


@asynccontextmanager
async def lifespan(app: FastAPI):
    # 1. Storage directories (resolved absolute paths from settings)
    for _dir in (settings.DATA_DIR, settings.UPLOAD_DIR):
        os.makedirs(_dir, exist_ok=True)
    logger.info("Data directories ensured.")

    # 2. Sandbox runtime
    if not check_runtime_available(settings.SANDBOX_RUNTIME):
        logger.error(
            "Sandbox runtime '%s' not found on PATH — analysis requests will fail",
            settings.SANDBOX_RUNTIME,
        )
    elif settings.SANDBOX_RUNTIME == "local":
        logger.warning("SANDBOX_RUNTIME=local: generated code runs without container isolation")

    # 3. Registry, executor, LLM collaborators, pipeline
    app.state.services = build_services(settings)
    logger.info(
        "Services ready (llm=%s, sandbox=%s, max_concurrency=%d)",
        settings.LLM_PROVIDER, settings.SANDBOX_RUNTIME, settings.SANDBOX_MAX_CONCURRENCY,
    )

    yield


# ── App ───────────────────────────────────────────────────


app = FastAPI(lifespan=lifespan, title="TableTalk API", version="1.0.0")


# ── Middleware ────────────────────────────────────────────


@app.middleware("http")
async def log_requests(request, call_next):
    request_id = uuid.uuid4().hex[:8]
    request.state.request_id = request_id
    start = time.time()
    try:
        response = await call_next(request)
        dt = time.time() - start
        logger.info("%s %s %s %.2fs [%s]", request.method, request.url.path, response.status_code, dt, request_id)
        response.headers["X-Request-ID"] = request_id
        return response
    except Exception as e:
        dt = time.time() - start
        logger.error("%s %s ERROR %s %.2fs [%s]", request.method, request.url.path, type(e).__name__, dt, request_id)
        raise


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["*"],
)


# ── Error handlers ────────────────────────────────────────
# CORSMiddleware doesn't add headers to error responses, so we must.


def _cors_headers(origin: str | None = None) -> dict:
    allowed = origin if origin in settings.CORS_ORIGINS else (settings.CORS_ORIGINS[0] if settings.CORS_ORIGINS else "*")
    return {
        "Access-Control-Allow-Origin": allowed,
        "Access-Control-Allow-Credentials": "true",
        "Access-Control-Allow-Methods": "*",
        "Access-Control-Allow-Headers": "*",
    }


@app.exception_handler(HTTPException)
async def http_exception_handler(request, exc):
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail},
        headers=_cors_headers(request.headers.get("origin")),
    )


@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    request_id = getattr(request.state, "request_id", "unknown")
    logger.exception("Unhandled %s [request_id=%s]", type(exc).__name__, request_id)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error", "request_id": request_id},
        headers=_cors_headers(request.headers.get("origin")),
    )


# ── Routes ────────────────────────────────────────────────

app.include_router(health_router, tags=["health"])
app.include_router(upload_router, tags=["upload"])
app.include_router(datasets_router, tags=["datasets"])
app.include_router(chat_router, tags=["chat"])
