from __future__ import annotations
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator

from .core.config import get_settings
from .db import init_db
from .routers import checkins
from .core.redis import ping_redis
from .core.nats import nats_connect, nats_close

settings = get_settings()

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    # best-effort connect to infra; service still runs if these fail
    if settings.publish_checkins:
        try:
            await nats_connect()
        except Exception as e:
            logger.warning(f"NATS unavailable at startup, check-ins will not be published until it is: {e}")
    if settings.rl_enabled and not await ping_redis():
        logger.warning("Redis unavailable at startup, rate limiting is open")
    if not settings.qr_secret:
        logger.warning("QR_SECRET is not set; using a per-process secret, issued QR codes will not survive a restart")
    logger.info("geo-checkin-svc started")
    yield
    try:
        await nats_close()
    except Exception as e:
        logger.warning(f"NATS drain failed on shutdown: {e}")

app = FastAPI(title="geo-checkin-svc", lifespan=lifespan)

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

app.include_router(checkins.router)

@app.get("/health")
async def health():
    return {"status": "ok", "service": "geo-checkin-svc"}

Instrumentator().instrument(app).expose(app)
