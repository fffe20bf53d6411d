"""Global error handlers ensuring request_id is included in JSON responses."""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from standing.errors import StandingError, Unauthenticated
from standing.infra.cookies import clear_session_cookie
from standing.obs import logging as obs_logging

logger = logging.getLogger(__name__)


def get_request_id(request: Optional[Request] = None, default: str = "unknown") -> str:
    rid = getattr(request.state, "request_id", None) if request is not None else None
    if rid:
        return rid
    return obs_logging.current_request_id() or default


def install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(StandingError)
    async def standing_exc_handler(request: Request, exc: StandingError):  # type: ignore[override]
        payload = {"detail": exc.detail, "request_id": get_request_id(request)}
        if exc.status_code >= 500:
            logger.error("request failed", extra={"detail": exc.detail}, exc_info=exc)
        response = JSONResponse(status_code=exc.status_code, content=payload)
        if isinstance(exc, Unauthenticated):
            clear_session_cookie(response)
        return response

    @app.exception_handler(StarletteHTTPException)
    async def http_exc_handler(request: Request, exc: StarletteHTTPException):  # type: ignore[override]
        payload = {"detail": exc.detail, "request_id": get_request_id(request)}
        return JSONResponse(status_code=exc.status_code, content=payload, headers=getattr(exc, "headers", None))

    @app.exception_handler(RequestValidationError)
    async def validation_exc_handler(request: Request, exc: RequestValidationError):  # type: ignore[override]
        payload = {
            "detail": "validation_error",
            "errors": [
                {"loc": list(err.get("loc", ())), "msg": err.get("msg"), "type": err.get("type")}
                for err in exc.errors()
            ],
            "request_id": get_request_id(request),
        }
        return JSONResponse(status_code=422, content=payload)
