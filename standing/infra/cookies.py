"""Session cookie helpers.

The session cookie is HttpOnly, scoped to the whole site, and lives exactly
as long as the server-side session.
"""

from __future__ import annotations

from fastapi import Response

from standing.settings import settings


def set_session_cookie(response: Response, raw_token: str) -> None:
    max_age = int(settings.session_ttl_hours) * 3600
    response.set_cookie(
        key=settings.session_cookie_name,
        value=raw_token,
        max_age=max_age,
        expires=max_age,
        path="/",
        secure=bool(settings.cookie_secure),
        httponly=True,
        samesite=settings.cookie_samesite,  # type: ignore[arg-type]
        domain=settings.cookie_domain or None,
    )


def clear_session_cookie(response: Response) -> None:
    response.delete_cookie(
        key=settings.session_cookie_name,
        path="/",
        domain=settings.cookie_domain or None,
    )
