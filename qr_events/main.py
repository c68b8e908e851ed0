from __future__ import annotations
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator

from .db import init_db
from .routers import credentials, scanner
from .core.config import get_settings
from .core.errors import CheckInError
from .core.logging_setup import setup_logging
from .core.redis import ping_redis
from .core.nats import nats_connect, nats_close

settings = get_settings()
logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(settings)
    await init_db()
    # infra is best-effort; scanning still works without NATS/Redis
    if settings.nats_enabled:
        try:
            await nats_connect()
        except Exception:
            logger.warning("NATS unavailable; check-in events will not be published", exc_info=True)
    if not await ping_redis():
        logger.warning("Redis unavailable at %s", settings.redis_url)
    yield
    await nats_close()

app = FastAPI(title="qr-events-checkin", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:5173",
        "http://127.0.0.1:5173",
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.exception_handler(CheckInError)
async def checkin_error_handler(request: Request, exc: CheckInError):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.to_dict()})

app.include_router(credentials.router)
app.include_router(scanner.router)

@app.get("/health")
async def health():
    return {"status": "ok", "service": "qr-events-checkin"}

Instrumentator().instrument(app).expose(app)
