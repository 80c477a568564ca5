"""
Login Throttling Service

WHY: Prevent brute-force password attacks by limiting failed login attempts.
After too many failures, the identifier is temporarily blocked.

SECURITY FEATURES:
- Tracks failed attempts per email AND per origin address
- Block after max_attempts failures within the rolling window
- Block duration: block_minutes
- Counters exist whether or not an account matches the email, so a block
  never reveals account existence
- Cleared for the email on successful login
"""

from __future__ import annotations

from datetime import timedelta

from ..errors import RateLimited
from ..extensions import db
from ..models import RateLimit
from ..time_utils import to_naive_utc, utcnow
from .auth_service import normalize_email

EMAIL_LIMIT = "signin"
ORIGIN_LIMIT = "signin_origin"


class LoginThrottle:
    def __init__(
        self,
        *,
        max_attempts: int = 5,
        origin_max_attempts: int = 20,
        window: timedelta = timedelta(minutes=15),
        block: timedelta = timedelta(minutes=15),
        clock=utcnow,
    ):
        self.max_attempts = max_attempts
        self.origin_max_attempts = origin_max_attempts
        self.window = window
        self.block = block
        self.clock = clock

    def _limits_for(self, email: str, origin: str | None) -> list[tuple[str, str, int]]:
        limits = [(normalize_email(email), EMAIL_LIMIT, self.max_attempts)]
        if origin:
            limits.append((origin, ORIGIN_LIMIT, self.origin_max_attempts))
        return limits

    def _row(self, identifier: str, limit_type: str) -> RateLimit | None:
        return db.session.query(RateLimit).filter_by(identifier=identifier, limit_type=limit_type).first()

    def check(self, email: str, origin: str | None = None) -> None:
        """Raise RateLimited if the email or the origin is currently blocked."""
        now = self.clock()
        for identifier, limit_type, _ in self._limits_for(email, origin):
            row = self._row(identifier, limit_type)
            if row is None or row.blocked_until is None:
                continue
            blocked_until = to_naive_utc(row.blocked_until)
            if blocked_until > now:
                raise RateLimited(retry_after_seconds=max(1, int((blocked_until - now).total_seconds())))

    def record_failure(self, email: str, origin: str | None = None) -> int:
        """
        Count one failed attempt against the email and the origin.

        Returns the attempt count for the email within the current window.
        Caller commits.
        """
        now = self.clock()
        email_count = 0
        for identifier, limit_type, limit in self._limits_for(email, origin):
            row = self._row(identifier, limit_type)
            if row is None:
                row = RateLimit(identifier=identifier, limit_type=limit_type, attempt_count=0, window_start=now, last_attempt=now)
                db.session.add(row)
            elif to_naive_utc(row.window_start) + self.window <= now:
                # Window rolled over
                row.attempt_count = 0
                row.window_start = now
                row.blocked_until = None

            row.attempt_count += 1
            row.last_attempt = now
            if row.attempt_count >= limit:
                row.blocked_until = now + self.block

            if limit_type == EMAIL_LIMIT:
                email_count = row.attempt_count
        return email_count

    def reset(self, email: str) -> None:
        """Clear the email counter after a successful login. The origin counter stays."""
        db.session.query(RateLimit).filter_by(
            identifier=normalize_email(email), limit_type=EMAIL_LIMIT
        ).delete(synchronize_session=False)

    def status(self, email: str) -> dict:
        """
        Detailed lockout status for an email.

        Returns dict with locked, failed_attempts, max_attempts,
        seconds_until_unlock, window and block lengths.
        """
        now = self.clock()
        row = self._row(normalize_email(email), EMAIL_LIMIT)
        failed = 0
        seconds = None
        if row is not None:
            if to_naive_utc(row.window_start) + self.window > now:
                failed = row.attempt_count
            if row.blocked_until is not None and to_naive_utc(row.blocked_until) > now:
                seconds = int((to_naive_utc(row.blocked_until) - now).total_seconds())
        return {
            "locked": seconds is not None,
            "failed_attempts": failed,
            "max_attempts": self.max_attempts,
            "seconds_until_unlock": seconds,
            "lockout_window_minutes": int(self.window.total_seconds() / 60),
            "lockout_duration_minutes": int(self.block.total_seconds() / 60),
        }

    def prune(self) -> int:
        """Delete rows whose window and block have both lapsed. Returns count deleted."""
        now = self.clock()
        stale = db.session.query(RateLimit).filter(
            RateLimit.window_start <= now - self.window,
            db.or_(RateLimit.blocked_until.is_(None), RateLimit.blocked_until <= now),
        )
        return stale.delete(synchronize_session=False)
