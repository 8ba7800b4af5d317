"""
OPSGUARD - Elevation Sessions

Tracks the current time-bounded step-up grant.

States:
    NoSession     - nothing granted, or the grant was cleared
    ActiveSession - token held and ``now < expires_at``
    Expired       - same as NoSession; detected lazily on query, no event fires

A session only lives in process memory. Restarting the host clears it.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from opsguard.access.claims import MAX_ELEVATION_MINUTES, Claims
from opsguard.config import settings


logger = logging.getLogger(__name__)


Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ElevationSession:
    """A step-up grant."""

    token: str
    granted_at: datetime
    expires_at: datetime
    reason: Optional[str] = None

    def is_live(self, now: datetime) -> bool:
        return now < self.expires_at

    def remaining(self, now: datetime) -> timedelta:
        return max(self.expires_at - now, timedelta(0))


class ElevationSessionManager:
    """
    Holds at most one elevation session.

    All reads and writes go through one lock so the manager can be shared
    between threads of a multi-threaded host.
    """

    def __init__(self, clock: Optional[Clock] = None):
        self._clock = clock or utc_now
        self._lock = threading.RLock()
        self._session: Optional[ElevationSession] = None

    def now(self) -> datetime:
        return self._clock()

    @property
    def session(self) -> Optional[ElevationSession]:
        """The stored session, expired or not."""
        with self._lock:
            return self._session

    def current(self) -> Optional[ElevationSession]:
        """The stored session if it has not expired yet."""
        with self._lock:
            if self._session and self._session.is_live(self.now()):
                return self._session
            return None

    def activate(
        self,
        token: str,
        duration_minutes: Optional[float] = None,
        reason: Optional[str] = None,
        claims: Optional[Claims] = None,
    ) -> ElevationSession:
        """
        Start a new session, replacing any previous one.

        Duration falls back to the claims' policy default, then to the
        configured default. Grants are capped at ``MAX_ELEVATION_MINUTES``.
        """
        minutes = duration_minutes
        if minutes is not None and not 0 < minutes < float("inf"):
            minutes = MAX_ELEVATION_MINUTES if minutes == float("inf") else None
        if not minutes and claims is not None:
            minutes = claims.elevation_policy.default_duration_minutes
        if not minutes:
            minutes = settings.DEFAULT_ELEVATION_MINUTES
        minutes = min(minutes, MAX_ELEVATION_MINUTES)

        with self._lock:
            granted_at = self.now()
            session = ElevationSession(
                token=token,
                granted_at=granted_at,
                expires_at=granted_at + timedelta(minutes=minutes),
                reason=reason,
            )
            replaced = self._session is not None
            self._session = session

        logger.info(
            "Elevation activated",
            extra={
                "reason": reason,
                "duration_minutes": minutes,
                "expires_at": session.expires_at.isoformat(),
                "replaced_previous": replaced,
            },
        )
        return session

    def clear(self) -> None:
        """Drop the current session unconditionally."""
        with self._lock:
            had_session = self._session is not None
            self._session = None
        if had_session:
            logger.info("Elevation cleared")

    def is_active(self, claims: Optional[Claims] = None) -> bool:
        """
        Check if elevation is currently in effect.

        True when the stored session is live, when the claims assert an
        ``active_until`` in the future, or when now falls inside one of the
        claims' scheduled elevation windows.
        """
        with self._lock:
            now = self.now()
            if self._session and self._session.is_live(now):
                return True

        if claims is None:
            return False

        policy = claims.elevation_policy
        if policy.active_until is not None and now < policy.active_until:
            return True

        return any(window.contains(now) for window in policy.schedule_windows)
