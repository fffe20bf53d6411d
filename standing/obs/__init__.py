"""Observability package bootstrap."""

from __future__ import annotations

from fastapi import FastAPI

from standing.obs import logging as obs_logging
from standing.obs import middleware
from standing.settings import settings

_initialised = False


def init(app: FastAPI) -> None:
    global _initialised
    middleware.install(app, enabled=settings.obs_enabled)
    if _initialised:
        return
    obs_logging.configure_logging()
    _initialised = True
