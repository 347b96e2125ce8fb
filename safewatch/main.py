"""FastAPI application entry point."""

from __future__ import annotations

import sys
from contextlib import asynccontextmanager
from pathlib import Path

# Ensure safewatch/ is on sys.path for absolute imports
_code_dir = str(Path(__file__).resolve().parent)
if _code_dir not in sys.path:  # pragma: no cover
    sys.path.insert(0, _code_dir)

__version__ = "0.1.0"

import redis as redis_lib
from fastapi import FastAPI
from sqlalchemy import text

import models  # noqa: F401  (registers tables on Base.metadata)
from api import api_router
from config import settings
from database import Base, SessionLocal, engine


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Configure unified logging before anything else
    from logging_config import setup_logging
    setup_logging("Server")

    import logging
    logger = logging.getLogger(__name__)

    if not settings.API_TOKEN:
        logger.warning("API_TOKEN is empty: every authenticated endpoint will answer 401")

    # Startup: create tables if they don't exist (dev convenience; use alembic in prod)
    Base.metadata.create_all(bind=engine)

    # Make sure the periodic scheduler, batch and budget jobs are queued
    try:
        from services.scheduler import recover_periodic_jobs
        queued = recover_periodic_jobs()
        logger.info("Queued %d periodic jobs", queued)
    except Exception:
        logger.exception("Failed to queue periodic jobs on startup")

    yield


app = FastAPI(title="Safewatch Escalation API", version=__version__, lifespan=lifespan)

app.include_router(api_router)


@app.get("/health")
def health():
    redis_ok = True
    try:
        redis_lib.from_url(settings.REDIS_URL).ping()
    except Exception:
        redis_ok = False

    db_ok = True
    try:
        with SessionLocal() as session:
            session.execute(text("SELECT 1"))
    except Exception:
        db_ok = False

    return {
        "status": "ok" if redis_ok and db_ok else "degraded",
        "redis": redis_ok,
        "database": db_ok,
        "version": __version__,
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True, log_config=None)
