"""FastAPI application entrypoint."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from standing.api import audit, auth, catalog, members, ops, payments
from standing.api.errors import install_error_handlers
from standing.container import Container, build_container
from standing.infra import postgres
from standing.jobs.scheduler import JobScheduler
from standing.obs import init as obs_init
from standing.settings import settings
from standing.storage.postgres import PostgresStorage

logger = logging.getLogger(__name__)


def _schedule_sweeps(container: Container) -> JobScheduler:
    scheduler = JobScheduler()
    scheduler.start()
    scheduler.schedule_every(
        container.session_sweep.name,
        container.session_sweep.run_once,
        minutes=settings.sweep_interval_minutes,
    )
    scheduler.schedule_every(
        container.standing_sweep.name,
        container.standing_sweep.run_once,
        minutes=settings.sweep_interval_minutes,
    )
    return scheduler


def _allowed_origins() -> list[str]:
    allow_origins = list(settings.cors_allow_origins)
    if not allow_origins:
        allow_origins = ["http://localhost:3000"] if settings.is_dev() else []
    # Starlette disallows wildcard '*' with allow_credentials=True.
    if "*" in allow_origins:
        allow_origins = ["http://localhost:3000", "http://127.0.0.1:3000"] if settings.is_dev() else []
    return allow_origins


def create_app(container: Optional[Container] = None) -> FastAPI:
    """Build the application. Without a container, storage is backed by the Postgres pool."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owns_pool = container is None
        if owns_pool:
            pool = await postgres.init_pool()
            app.state.container = build_container(PostgresStorage(pool))
        if settings.is_prod() and not settings.payment_webhook_secret:
            logger.warning("payment webhook secret is not configured; every webhook will be rejected")
        scheduler: Optional[JobScheduler] = None
        if settings.scheduler_enabled:
            scheduler = _schedule_sweeps(app.state.container)
            app.state.scheduler = scheduler
        logger.info(
            "service started",
            extra={"environment": settings.environment, "scheduler": scheduler is not None},
        )
        try:
            yield
        finally:
            if scheduler is not None:
                scheduler.shutdown()
            if owns_pool:
                await postgres.close_pool()

    app = FastAPI(title="Standing", lifespan=lifespan)
    if container is not None:
        app.state.container = container
    install_error_handlers(app)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=_allowed_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    obs_init(app)

    app.include_router(auth.router)
    app.include_router(members.router)
    app.include_router(payments.router)
    app.include_router(catalog.router)
    app.include_router(audit.router)
    app.include_router(ops.router)
    return app


app = create_app()
