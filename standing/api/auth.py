"""Signup, login, logout and self-service session routes."""

from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, Request, Response, status

from standing.api import schemas
from standing.api.deps import current_session, get_container, provenance, require_member
from standing.audit.recorder import Provenance
from standing.auth.sessions import SessionContext
from standing.container import Container
from standing.errors import Conflict
from standing.infra.cookies import clear_session_cookie, set_session_cookie
from standing.membership.service import ProfileChanges
from standing.settings import settings

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/signup", response_model=schemas.MemberOut, status_code=status.HTTP_201_CREATED)
async def signup_endpoint(
    payload: schemas.SignupRequest,
    container: Container = Depends(get_container),
    origin: Provenance = Depends(provenance),
) -> schemas.MemberOut:
    member = await container.membership.signup(
        email=payload.email,
        username=payload.username,
        password=payload.password,
        display_name=payload.display_name,
        membership_type_id=payload.membership_type_id,
        provenance=origin,
    )
    return schemas.member_out(member)


@router.post("/setup", response_model=schemas.MemberOut, status_code=status.HTTP_201_CREATED)
async def setup_endpoint(
    payload: schemas.SetupRequest,
    container: Container = Depends(get_container),
    origin: Provenance = Depends(provenance),
) -> schemas.MemberOut:
    """First-run bootstrap: seed the default types and create the first admin."""
    if await container.membership.setup_complete():
        raise Conflict("setup_complete")
    await container.types.seed_defaults()
    member = await container.membership.bootstrap_admin(
        email=payload.email,
        username=payload.username,
        password=payload.password,
        display_name=payload.display_name,
        provenance=origin,
    )
    return schemas.member_out(member)


@router.post("/login", response_model=schemas.LoginResponse)
async def login_endpoint(
    payload: schemas.LoginRequest,
    request: Request,
    response: Response,
    container: Container = Depends(get_container),
    origin: Provenance = Depends(provenance),
) -> schemas.LoginResponse:
    result = await container.auth.login(
        payload.email,
        payload.password,
        ip=origin.ip,
        user_agent=origin.user_agent,
        previous_token=request.cookies.get(settings.session_cookie_name),
    )
    set_session_cookie(response, result.raw_token)
    member = await container.membership.get_member(result.member.id)
    return schemas.LoginResponse(
        member=schemas.member_out(member),
        csrf_token=result.csrf_token,
        expires_at=result.session.expires_at,
    )


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT, response_class=Response, response_model=None)
async def logout_endpoint(
    context: SessionContext = Depends(require_member),
    container: Container = Depends(get_container),
) -> Response:
    await container.auth.logout(context)
    response = Response(status_code=status.HTTP_204_NO_CONTENT)
    clear_session_cookie(response)
    return response


@router.post("/logout-all", status_code=status.HTTP_204_NO_CONTENT, response_class=Response, response_model=None)
async def logout_all_endpoint(
    context: SessionContext = Depends(require_member),
    container: Container = Depends(get_container),
) -> Response:
    await container.auth.logout_everywhere(context)
    response = Response(status_code=status.HTTP_204_NO_CONTENT)
    clear_session_cookie(response)
    return response


@router.post("/csrf", response_model=schemas.CsrfResponse)
async def csrf_endpoint(
    context: SessionContext = Depends(current_session),
    container: Container = Depends(get_container),
) -> schemas.CsrfResponse:
    # No CSRF header here: the Lax session cookie is not sent on cross-site POSTs.
    return schemas.CsrfResponse(csrf_token=await container.auth.rotate_csrf(context))


@router.get("/me", response_model=schemas.MemberOut)
async def me_endpoint(
    context: SessionContext = Depends(require_member),
    container: Container = Depends(get_container),
) -> schemas.MemberOut:
    return schemas.member_out(await container.membership.get_member(context.member.id))


@router.patch("/me", response_model=schemas.MemberOut)
async def update_me_endpoint(
    payload: schemas.SelfUpdateRequest,
    context: SessionContext = Depends(require_member),
    container: Container = Depends(get_container),
    origin: Provenance = Depends(provenance),
) -> schemas.MemberOut:
    member = await container.membership.update_profile(
        context.member.id,
        ProfileChanges(display_name=payload.display_name),
        actor_id=context.member.id,
        provenance=origin,
    )
    return schemas.member_out(member)


@router.get("/sessions", response_model=List[schemas.SessionOut])
async def sessions_endpoint(
    context: SessionContext = Depends(require_member),
    container: Container = Depends(get_container),
) -> List[schemas.SessionOut]:
    sessions = await container.sessions.list_for_member(context.member.id)
    return [
        schemas.SessionOut.model_validate(item).model_copy(update={"current": item.id == context.session.id})
        for item in sessions
    ]


@router.post("/password", status_code=status.HTTP_204_NO_CONTENT, response_class=Response, response_model=None)
async def change_password_endpoint(
    payload: schemas.PasswordChangeRequest,
    context: SessionContext = Depends(require_member),
    container: Container = Depends(get_container),
    origin: Provenance = Depends(provenance),
) -> Response:
    await container.auth.change_password(context, payload.current_password, payload.new_password, provenance=origin)
    response = Response(status_code=status.HTTP_204_NO_CONTENT)
    clear_session_cookie(response)
    return response
