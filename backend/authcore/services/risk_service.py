# Overview: Deterministic risk scoring for audit events.

"""
Risk Scoring

Every signal is computed from data present at event time: the event itself
plus the principal's and origin's audit history. Same inputs, same score.

| signal                                          | weight           |
|-------------------------------------------------|------------------|
| failed attempts from the same origin (window)   | 10 each, max 40  |
| impossible travel since the last login          | 35               |
| first-time device for the principal             | 15               |
| first-time origin for the principal             | 10               |
| off-hours vs. the principal's login history     | 15               |
| non-success outcome                             | 5                |

Device, origin and off-hours signals need history: a principal's very first
login is not "new" to anything.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from ..extensions import db
from ..models import AuditEvent, EventType, Outcome
from ..time_utils import to_naive_utc, utcnow

VELOCITY_WEIGHT = 10
VELOCITY_CAP = 40
IMPOSSIBLE_TRAVEL_WEIGHT = 35
NEW_DEVICE_WEIGHT = 15
NEW_ORIGIN_WEIGHT = 10
OFF_HOURS_WEIGHT = 15
FAILURE_WEIGHT = 5

MAX_TRAVEL_SPEED_KMH = 900.0
OFF_HOURS_MIN_HISTORY = 5
OFF_HOURS_TOLERANCE_HOURS = 1
HISTORY_LIMIT = 50

FAILED_ATTEMPT_TYPES = (EventType.LOGIN_FAILED, EventType.MFA_FAILED)
LOGIN_TYPES = (EventType.LOGIN_SUCCESS, EventType.LOGIN_FAILED)


class Flag:
    FAILED_ATTEMPT_VELOCITY = "failed_attempt_velocity"
    IMPOSSIBLE_TRAVEL = "impossible_travel"
    NEW_DEVICE = "new_device"
    NEW_ORIGIN = "new_origin"
    OFF_HOURS = "off_hours"


@dataclass
class RiskAssessment:
    score: int = 0
    flags: list[str] = field(default_factory=list)

    @property
    def level(self) -> str:
        return risk_level(self.score)

    def add(self, weight: int, flag: str | None = None) -> None:
        self.score = min(100, self.score + weight)
        if flag and flag not in self.flags:
            self.flags.append(flag)


def risk_level(score: int) -> str:
    if score < 25:
        return "low"
    if score < 50:
        return "medium"
    if score < 75:
        return "high"
    return "critical"


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    r = 6371.0
    p1, p2 = math.radians(lat1), math.radians(lat2)
    dp = p2 - p1
    dl = math.radians(lon2 - lon1)
    a = math.sin(dp / 2) ** 2 + math.cos(p1) * math.cos(p2) * math.sin(dl / 2) ** 2
    return 2 * r * math.asin(math.sqrt(a))


def _geo(payload: dict | None) -> tuple[float, float] | None:
    geo = (payload or {}).get("geo")
    if not isinstance(geo, dict):
        return None
    try:
        return float(geo["lat"]), float(geo["lon"])
    except (KeyError, TypeError, ValueError):
        return None


def _hour_distance(a: int, b: int) -> int:
    diff = abs(a - b) % 24
    return min(diff, 24 - diff)


class RiskScorer:
    def __init__(self, *, velocity_window: timedelta = timedelta(minutes=15), clock=utcnow):
        self.velocity_window = velocity_window
        self.clock = clock

    def _failed_from_origin(self, origin: str, now: datetime) -> int:
        return db.session.query(AuditEvent).filter(
            AuditEvent.origin == origin,
            AuditEvent.event_type.in_(FAILED_ATTEMPT_TYPES),
            AuditEvent.created_at >= now - self.velocity_window,
        ).count()

    def _login_history(self, principal_id: int) -> list[AuditEvent]:
        return (
            db.session.query(AuditEvent)
            .filter(
                AuditEvent.principal_id == principal_id,
                AuditEvent.event_type == EventType.LOGIN_SUCCESS,
            )
            .order_by(AuditEvent.created_at.desc(), AuditEvent.id.desc())
            .limit(HISTORY_LIMIT)
            .all()
        )

    def score(
        self,
        event_type: str,
        *,
        principal_id: int | None = None,
        outcome: str = Outcome.SUCCESS,
        origin: str | None = None,
        device_id: str | None = None,
        payload: dict | None = None,
        now: datetime | None = None,
    ) -> RiskAssessment:
        """Score one event before it is written. Reads history only."""
        now = now or self.clock()
        assessment = RiskAssessment()

        if origin:
            failures = self._failed_from_origin(origin, now)
            if failures:
                assessment.add(min(VELOCITY_CAP, failures * VELOCITY_WEIGHT), Flag.FAILED_ATTEMPT_VELOCITY)

        if principal_id is not None and event_type in LOGIN_TYPES:
            history = self._login_history(principal_id)
            if history:
                self._score_history(assessment, history, origin, device_id, payload, now)

        if outcome != Outcome.SUCCESS:
            assessment.add(FAILURE_WEIGHT)

        return assessment

    def _score_history(self, assessment, history, origin, device_id, payload, now) -> None:
        last = history[0]
        here = _geo(payload)
        there = _geo(last.event_data)
        if here and there:
            distance = haversine_km(there[0], there[1], here[0], here[1])
            # Floor of one minute keeps same-instant logins finite
            hours = max((now - to_naive_utc(last.created_at)).total_seconds() / 3600.0, 1 / 60)
            if distance / hours > MAX_TRAVEL_SPEED_KMH:
                assessment.add(IMPOSSIBLE_TRAVEL_WEIGHT, Flag.IMPOSSIBLE_TRAVEL)

        if device_id and device_id not in {e.device_id for e in history}:
            assessment.add(NEW_DEVICE_WEIGHT, Flag.NEW_DEVICE)

        if origin and origin not in {e.origin for e in history}:
            assessment.add(NEW_ORIGIN_WEIGHT, Flag.NEW_ORIGIN)

        if len(history) >= OFF_HOURS_MIN_HISTORY:
            hours_seen = {to_naive_utc(e.created_at).hour for e in history}
            if all(_hour_distance(now.hour, h) > OFF_HOURS_TOLERANCE_HOURS for h in hours_seen):
                assessment.add(OFF_HOURS_WEIGHT, Flag.OFF_HOURS)
