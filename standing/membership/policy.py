"""Input normalisation and validation for member records."""

from __future__ import annotations

import re

from standing.errors import ValidationError

USERNAME_PATTERN = r"^[a-z0-9_-]{3,30}$"
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"
PASSWORD_MIN_LEN = 8
PASSWORD_MAX_LEN = 256
DISPLAY_NAME_MAX_LEN = 80
NOTES_MAX_LEN = 2000

_USERNAME_RE = re.compile(USERNAME_PATTERN)
_EMAIL_RE = re.compile(EMAIL_PATTERN)


def normalise_email(email: str) -> str:
    value = (email or "").strip().lower()
    if len(value) > 254 or not _EMAIL_RE.match(value):
        raise ValidationError("invalid_email")
    return value


def normalise_username(username: str) -> str:
    value = (username or "").strip().lower()
    if not _USERNAME_RE.match(value):
        raise ValidationError("invalid_username")
    return value


def normalise_display_name(display_name: str | None, fallback: str) -> str:
    value = (display_name or "").strip()
    if len(value) > DISPLAY_NAME_MAX_LEN:
        raise ValidationError("display_name_too_long")
    return value or fallback


def guard_password(password: str) -> None:
    if len(password or "") < PASSWORD_MIN_LEN:
        raise ValidationError("password_too_short")
    if len(password) > PASSWORD_MAX_LEN:
        raise ValidationError("password_too_long")


def guard_notes(notes: str | None) -> str | None:
    if notes is None:
        return None
    if len(notes) > NOTES_MAX_LEN:
        raise ValidationError("notes_too_long")
    return notes
