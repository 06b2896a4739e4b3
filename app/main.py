# app/main.py
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from app import settings
from app.security import HmacVerifier
from app.services.pipeline import WebhookPipeline
from app.storage.db import Database
from app.util.logger import get_logger, setup_logging

# Routers
from app.routers.admin import router as admin_router
from app.routers.webhook import router as webhook_router

setup_logging()
logger = get_logger("wabot")


def create_app(database: Optional[Database] = None, pipeline: Optional[WebhookPipeline] = None) -> FastAPI:
    """
    Build the service. Tests pass their own Database / WebhookPipeline;
    the default wires the env-configured store, HMAC verifier and channel.
    """
    if pipeline is not None:
        database = pipeline.db
    database = database or Database()
    pipeline = pipeline or WebhookPipeline(database, HmacVerifier(settings.WHATSAPP_APP_SECRET))

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        database.create_all()
        logger.info({"event": "startup", "env": settings.APP_ENV, "dry_run": settings.DRY_RUN,
                     "db": database.url})
        yield
        database.dispose()

    app = FastAPI(title="WhatsApp Auto-Reply", lifespan=lifespan)

    app.state.env = settings.APP_ENV
    app.state.dry_run = settings.DRY_RUN
    app.state.db = database
    app.state.pipeline = pipeline

    app.include_router(webhook_router)
    app.include_router(admin_router)

    # -------------------------------------------------------------------------
    # Health
    # -------------------------------------------------------------------------
    @app.get("/healthz")
    def healthz():
        return {"ok": True}

    @app.head("/healthz")
    def healthz_head():
        return {}

    return app


app = create_app()
