"""Wiring for the service objects shared by the API and background jobs."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from standing.audit.recorder import AuditRecorder
from standing.auth.csrf import CsrfGuard
from standing.auth.gate import AccessGate
from standing.auth.service import AuthService
from standing.auth.sessions import SessionStore
from standing.catalog.service import TypeService
from standing.infra import rate_limit
from standing.jobs.sweeps import SessionSweepJob, StandingSweepJob
from standing.membership.service import MembershipService
from standing.payments.reconciler import PaymentReconciler
from standing.settings import Settings, settings as default_settings
from standing.storage.base import Storage


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class Container:
    storage: Storage
    audit: AuditRecorder
    membership: MembershipService
    sessions: SessionStore
    csrf: CsrfGuard
    gate: AccessGate
    auth: AuthService
    reconciler: PaymentReconciler
    types: TypeService
    session_sweep: SessionSweepJob
    standing_sweep: StandingSweepJob


def build_container(
    storage: Storage,
    *,
    config: Optional[Settings] = None,
    clock: Callable[[], datetime] = _now,
    limiter=rate_limit.allow_login,
) -> Container:
    config = config or default_settings
    grace = (
        timedelta(days=config.membership_grace_period_days)
        if config.membership_grace_period_days is not None
        else None
    )
    audit = AuditRecorder(storage, clock=clock)
    membership = MembershipService(storage, audit, grace_period=grace, clock=clock)
    sessions = SessionStore(
        storage.sessions,
        membership.lookup,
        ttl=timedelta(hours=config.session_ttl_hours),
        clock=clock,
    )
    csrf = CsrfGuard(storage.csrf, clock=clock)
    auth = AuthService(
        storage,
        sessions,
        csrf,
        audit,
        login_attempts_per_minute=config.login_attempts_per_minute,
        limiter=limiter,
        clock=clock,
    )
    return Container(
        storage=storage,
        audit=audit,
        membership=membership,
        sessions=sessions,
        csrf=csrf,
        gate=AccessGate(clock=clock),
        auth=auth,
        reconciler=PaymentReconciler(storage, membership, audit, clock=clock),
        types=TypeService(storage, audit, clock=clock),
        session_sweep=SessionSweepJob(sessions),
        standing_sweep=StandingSweepJob(membership),
    )
