"""Operations endpoints providing health checks and metrics."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request, Response, status
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from redis.exceptions import RedisError

from standing.api.deps import current_session, get_container
from standing.container import Container
from standing.errors import StorageFailure
from standing.infra.redis import redis_client
from standing.models import MemberRole, TypeKind
from standing.settings import settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="", tags=["ops"])


async def require_metrics_access(request: Request, container: Container = Depends(get_container)) -> None:
    if settings.obs_metrics_public:
        return
    context = await current_session(request, container)
    container.gate.authorize(context, MemberRole.ADMIN)


@router.get("/health/live")
async def health_live() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/health/ready")
async def health_ready(container: Container = Depends(get_container)) -> Response:
    checks: dict[str, str] = {}
    try:
        async with container.storage.unit_of_work() as uow:
            await uow.types.list(TypeKind.MEMBERSHIP)
        checks["storage"] = "ok"
    except StorageFailure:
        checks["storage"] = "unavailable"
    try:
        await redis_client.ping()
        checks["redis"] = "ok"
    except (RedisError, OSError):
        # security events are best effort, so redis never fails readiness
        checks["redis"] = "degraded"
    ready = checks["storage"] == "ok"
    if not ready:
        logger.warning("readiness check failed", extra={"checks": checks})
    return JSONResponse(
        content={"status": "ok" if ready else "unavailable", "checks": checks},
        status_code=status.HTTP_200_OK if ready else status.HTTP_503_SERVICE_UNAVAILABLE,
    )


@router.get("/metrics")
async def metrics_endpoint(_: None = Depends(require_metrics_access)) -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
