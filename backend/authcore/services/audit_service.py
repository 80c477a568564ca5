# Overview: Append-only audit trail with risk scoring and security alerts.

"""
Audit & Risk Pipeline

WHY: Immutable audit log for compliance and security monitoring.
Every login attempt, session transition and authorization denial is logged.

CONTRACT: record() never raises and never fails the originating operation.
A write failure is rolled back, logged to the "authcore.audit" logger and
counted in AuditPipeline.failures; the caller carries on.

Call record() at a unit-of-work boundary (after the caller committed or
rolled back): it commits the shared session.

ALERTS: a risk score at or above alert_threshold additionally creates a
SecurityAlert, an outbox event for notification consumers, and sends the
security_alert_raised signal.
"""

from __future__ import annotations

import logging
import threading

from ..extensions import db, security_alert_raised
from ..models import AuditEvent, EventType, OutboxEvent, Outcome, SecurityAlert
from ..time_utils import utcnow
from .risk_service import RiskScorer

fallback_logger = logging.getLogger("authcore.audit")


def _principal_id(principal):
    if principal is None or isinstance(principal, int):
        return principal
    return getattr(principal, "id", None)


def _session_id(session):
    if session is None or isinstance(session, str):
        return session
    return getattr(session, "id", None)


class AuditPipeline:
    def __init__(self, *, scorer: RiskScorer | None = None, alert_threshold: int = 70, clock=utcnow):
        self.clock = clock
        self.scorer = scorer or RiskScorer(clock=clock)
        self.alert_threshold = alert_threshold
        self._failures = 0
        self._failures_lock = threading.Lock()

    @property
    def failures(self) -> int:
        return self._failures

    def record(
        self,
        event_type: str,
        *,
        principal=None,
        session=None,
        outcome: str = Outcome.SUCCESS,
        origin: str | None = None,
        client_signature: str | None = None,
        device_id: str | None = None,
        resource_type: str | None = None,
        resource_id=None,
        action: str | None = None,
        payload: dict | None = None,
        error: dict | None = None,
    ) -> AuditEvent | None:
        """
        Append one audit event. Returns it, or None if recording failed.

        principal/session may be model instances or bare ids.
        """
        try:
            return self._write(
                event_type,
                principal_id=_principal_id(principal),
                session_id=_session_id(session),
                outcome=outcome,
                origin=origin,
                client_signature=client_signature,
                device_id=device_id,
                resource_type=resource_type,
                resource_id=str(resource_id) if resource_id is not None else None,
                action=action,
                payload=payload,
                error=error,
            )
        except Exception:
            db.session.rollback()
            with self._failures_lock:
                self._failures += 1
            fallback_logger.exception(
                "Failed to record audit event %s (principal=%s outcome=%s)",
                event_type, _principal_id(principal), outcome,
            )
            return None

    def _write(self, event_type, *, principal_id, session_id, outcome, origin, client_signature,
               device_id, resource_type, resource_id, action, payload, error) -> AuditEvent:
        now = self.clock()
        assessment = self.scorer.score(
            event_type,
            principal_id=principal_id,
            outcome=outcome,
            origin=origin,
            device_id=device_id,
            payload=payload,
            now=now,
        )

        event = AuditEvent(
            event_type=event_type,
            principal_id=principal_id,
            session_id=session_id,
            origin=origin,
            client_signature=client_signature,
            device_id=device_id,
            resource_type=resource_type,
            resource_id=resource_id,
            action=action,
            outcome=outcome,
            risk_score=assessment.score,
            anomaly_flags=list(assessment.flags),
            event_data=payload or {},
            error_details=error,
            created_at=now,
        )
        db.session.add(event)

        alert = None
        if assessment.score >= self.alert_threshold:
            db.session.flush()
            alert = SecurityAlert(
                alert_type=event_type,
                severity=assessment.level,
                principal_id=principal_id,
                audit_event_id=event.id,
                origin=origin,
                description=f"{event_type} scored {assessment.score}: {', '.join(assessment.flags) or 'no flags'}",
                event_data={"risk_score": assessment.score, "anomaly_flags": list(assessment.flags)},
                created_at=now,
            )
            db.session.add(alert)
            db.session.flush()
            db.session.add(OutboxEvent(
                event_type="security_alert",
                entity="security_alerts",
                entity_id=str(alert.id),
                payload=alert.to_dict(),
                created_at=now,
            ))

        db.session.commit()

        if alert is not None:
            # Receivers are notified after the fact; their failures stay theirs.
            try:
                security_alert_raised.send(self, alert=alert, event=event)
            except Exception:
                fallback_logger.exception("security_alert_raised receiver failed for alert %s", alert.id)

        return event

    def correct(self, original_id: int, *, principal=None, reason: str, payload: dict | None = None) -> AuditEvent | None:
        """Record a correction as a new event referencing the original."""
        data = dict(payload or {})
        data["corrects"] = original_id
        data["reason"] = reason
        return self.record(EventType.AUDIT_CORRECTION, principal=principal, payload=data)

    def resolve_alert(self, alert_id: int, *, actor) -> SecurityAlert | None:
        """Mark an alert resolved. Returns None if it doesn't exist; already-resolved alerts are returned unchanged."""
        alert = db.session.get(SecurityAlert, alert_id)
        if alert is None:
            return None
        if alert.resolved_at is None:
            alert.resolved_at = self.clock()
            alert.resolved_by = _principal_id(actor)
            db.session.commit()
        return alert
