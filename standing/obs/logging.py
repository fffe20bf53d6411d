"""JSON log lines that carry the request and session they belong to.

Credentials handled by this service (passwords and their hashes, session
token hashes, CSRF tokens, webhook signatures) and member email addresses
are scrubbed from every field before a line is written, including fields
nested inside dicts.
"""

from __future__ import annotations

import json
import logging
from contextvars import ContextVar, Token
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

from standing.settings import settings

# Fields bound for the lifetime of one request: request_id, ip, member_id, session_id.
_BOUND: ContextVar[Mapping[str, str]] = ContextVar("standing_log_context", default={})

_REDACTED = "[redacted]"

# Matched against the lower-cased field name with dashes folded to
# underscores, so the X-Signature header and csrf_token hit the same rules.
_REDACTED_FRAGMENTS = (
    "password",
    "token",
    "signature",
    "secret",
    "email",
    "cookie",
    "authorization",
)

_MAX_TEXT = 256
_MAX_ITEMS = 10

_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {"message", "asctime"}


def bind_request(*, request_id: str, client_ip: Optional[str] = None) -> Token:
    """Start a fresh log context for an incoming request."""
    fields = {"request_id": request_id}
    if client_ip:
        fields["ip"] = client_ip
    return _BOUND.set(fields)


def bind_session(member_id: str, session_id: str) -> None:
    """Tag the rest of the request's lines with the authenticated session."""
    _BOUND.set({**_BOUND.get(), "member_id": member_id, "session_id": session_id})


def release(token: Token) -> None:
    _BOUND.reset(token)


def current_request_id() -> Optional[str]:
    return _BOUND.get().get("request_id")


def is_redacted_field(name: str) -> bool:
    folded = name.lower().replace("-", "_")
    return any(fragment in folded for fragment in _REDACTED_FRAGMENTS)


def scrub(name: str, value: Any) -> Any:
    if is_redacted_field(name):
        return _REDACTED
    if isinstance(value, str):
        return value if len(value) <= _MAX_TEXT else value[:_MAX_TEXT] + "…"
    if isinstance(value, Mapping):
        cleaned: Dict[str, Any] = {}
        for key, nested in list(value.items())[:_MAX_ITEMS]:
            cleaned[str(key)] = scrub(str(key), nested)
        if len(value) > _MAX_ITEMS:
            cleaned["…"] = f"+{len(value) - _MAX_ITEMS} keys"
        return cleaned
    if isinstance(value, (list, tuple, set, frozenset)):
        items = [scrub(name, item) for item in list(value)[:_MAX_ITEMS]]
        if len(value) > _MAX_ITEMS:
            items.append("…")
        return items
    if value is None or isinstance(value, (bool, int, float)):
        return value
    return str(value)


class JSONLogFormatter(logging.Formatter):
    """One JSON object per line: fixed envelope, bound context, then the record's extras."""

    def format(self, record: logging.LogRecord) -> str:  # noqa: A003 (match logging api)
        line: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "msg": record.getMessage(),
            "service": settings.service_name,
            "env": settings.environment,
        }
        line.update(_BOUND.get())
        for key, value in vars(record).items():
            if key in _RECORD_ATTRS or key.startswith("_"):
                continue
            line[key] = scrub(key, value)
        if record.exc_info:
            line["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(line, separators=(",", ":"), default=str)


def configure_logging() -> None:
    """Route every logger through a single JSON handler on stderr."""
    handler = logging.StreamHandler()
    handler.setFormatter(JSONLogFormatter())
    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(settings.obs_log_level)
