"""Background sweeps for expired sessions and lapsed memberships."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from standing.auth.sessions import SessionStore
from standing.membership.service import MembershipService, SweepReport
from standing.obs import metrics as obs_metrics

logger = logging.getLogger(__name__)


class SessionSweepJob:
    """Deletes sessions past their expiry so the table does not grow unbounded."""

    name = "standing-session-sweep"

    def __init__(self, sessions: SessionStore) -> None:
        self._sessions = sessions

    async def run_once(self) -> int:
        started = datetime.now(timezone.utc)
        try:
            deleted = await self._sessions.sweep_expired()
            obs_metrics.BACKGROUND_RUNS.labels(job=self.name, result="success").inc()
            return deleted
        except Exception:
            obs_metrics.BACKGROUND_RUNS.labels(job=self.name, result="error").inc()
            logger.exception("session sweep failed")
            raise
        finally:
            duration = (datetime.now(timezone.utc) - started).total_seconds()
            obs_metrics.BACKGROUND_DURATION.labels(job=self.name).observe(duration)


class StandingSweepJob:
    """Persists expiries (and grace suspensions) that dues dates already imply."""

    name = "standing-membership-sweep"

    def __init__(self, membership: MembershipService) -> None:
        self._membership = membership

    async def run_once(self) -> SweepReport:
        started = datetime.now(timezone.utc)
        try:
            report = await self._membership.sweep_lapsed()
            obs_metrics.BACKGROUND_RUNS.labels(job=self.name, result="success").inc()
            return report
        except Exception:
            obs_metrics.BACKGROUND_RUNS.labels(job=self.name, result="error").inc()
            logger.exception("standing sweep failed")
            raise
        finally:
            duration = (datetime.now(timezone.utc) - started).total_seconds()
            obs_metrics.BACKGROUND_DURATION.labels(job=self.name).observe(duration)
