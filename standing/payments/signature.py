"""HMAC signatures for payment webhook deliveries.

Header format: ``t=<unix seconds>,v1=<hex hmac-sha256(secret, "<t>.<body>")>``.
"""

from __future__ import annotations

import hashlib
import hmac
import time
from typing import Optional

from standing.errors import InvalidSignature

SIGNATURE_HEADER = "X-Signature"


def compute(secret: str, body: bytes, timestamp: int) -> str:
    signed = f"{timestamp}.".encode("utf-8") + body
    return hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()


def sign(secret: str, body: bytes, *, timestamp: Optional[int] = None) -> str:
    ts = int(time.time()) if timestamp is None else timestamp
    return f"t={ts},v1={compute(secret, body, ts)}"


def _parse(header: str) -> tuple[int, list[str]]:
    timestamp: Optional[int] = None
    signatures: list[str] = []
    for part in header.split(","):
        key, _, value = part.strip().partition("=")
        if key == "t":
            try:
                timestamp = int(value)
            except ValueError as exc:
                raise InvalidSignature() from exc
        elif key == "v1" and value:
            signatures.append(value)
    if timestamp is None or not signatures:
        raise InvalidSignature()
    return timestamp, signatures


def verify(
    secret: str,
    header: Optional[str],
    body: bytes,
    *,
    tolerance_seconds: int = 300,
    now: Optional[float] = None,
) -> None:
    """Raise ``InvalidSignature`` unless the header signs ``body`` recently enough."""
    if not secret or not header:
        raise InvalidSignature()
    timestamp, signatures = _parse(header)
    current = time.time() if now is None else now
    if abs(current - timestamp) > tolerance_seconds:
        raise InvalidSignature("signature_expired")
    expected = compute(secret, body, timestamp)
    if not any(hmac.compare_digest(expected, candidate) for candidate in signatures):
        raise InvalidSignature()
