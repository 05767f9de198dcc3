"""Main FastAPI application for the feed authentication service."""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from app.config import APP_VERSION, CORS_ORIGINS, DB_PATH, LOG_LEVEL
from app.db import Database
from app.errors import register_exception_handlers
from app.rate_limit import limiter, rate_limit_exceeded_handler
from app.routers import auth, health
from app.services.email import EmailDispatcher

logging.basicConfig(
    stream=sys.stdout,
    level=LOG_LEVEL,
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
)
logging.getLogger("aiosqlite").setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open the shared store and mail transport, close them on shutdown."""
    database = Database(DB_PATH)
    dispatcher = EmailDispatcher()
    await database.connect()
    await dispatcher.start()
    app.state.db = database
    app.state.dispatcher = dispatcher
    logger.info("Feed auth service v%s started", APP_VERSION)
    try:
        yield
    finally:
        await dispatcher.stop()
        await database.close()


app = FastAPI(
    title="Feed Auth API",
    description="Password login with device-aware one-time passcode step-up",
    version=APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
app.add_middleware(SlowAPIMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["*"],
    allow_credentials=True,
)
register_exception_handlers(app)

app.include_router(health.router)
app.include_router(auth.router)
