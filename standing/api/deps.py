"""FastAPI dependencies for sessions, CSRF and role checks.

Order on every protected route: resolve the session, authorize the member,
then, for mutating methods, require the CSRF token bound to that session.
"""

from __future__ import annotations

from fastapi import Depends, Request

from standing.audit.recorder import Provenance
from standing.auth.csrf import MUTATING_METHODS
from standing.auth.sessions import SessionContext
from standing.container import Container
from standing.models import MemberRole
from standing.obs import logging as obs_logging
from standing.settings import settings


def get_container(request: Request) -> Container:
    return request.app.state.container


def provenance(request: Request) -> Provenance:
    client = request.client
    return Provenance(ip=client.host if client else None, user_agent=request.headers.get("user-agent"))


async def current_session(request: Request, container: Container = Depends(get_container)) -> SessionContext:
    token = request.cookies.get(settings.session_cookie_name)
    context = await container.sessions.validate(token)
    obs_logging.bind_session(str(context.member.id), str(context.session.id))
    return context


async def csrf_protect(
    request: Request,
    context: SessionContext,
    container: Container,
) -> None:
    if request.method.upper() not in MUTATING_METHODS:
        return
    await container.csrf.require(context.session.id, request.headers.get(settings.csrf_header_name))


def require_role(role: MemberRole, *, good_standing: bool = False):
    async def _dep(
        request: Request,
        context: SessionContext = Depends(current_session),
        container: Container = Depends(get_container),
    ) -> SessionContext:
        container.gate.authorize(context, role, require_good_standing=good_standing)
        await csrf_protect(request, context, container)
        return context

    return _dep


require_member = require_role(MemberRole.MEMBER)
require_admin = require_role(MemberRole.ADMIN)
require_good_standing = require_role(MemberRole.MEMBER, good_standing=True)
