from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Outcome:
    SUCCESS = "success"
    FAILURE = "failure"
    ERROR = "error"


class EventType:
    LOGIN_SUCCESS = "LOGIN_SUCCESS"
    LOGIN_FAILED = "LOGIN_FAILED"
    LOGIN_BLOCKED = "LOGIN_BLOCKED"
    MFA_VERIFIED = "MFA_VERIFIED"
    MFA_FAILED = "MFA_FAILED"
    MFA_ENROLLED = "MFA_ENROLLED"
    MFA_DISABLED = "MFA_DISABLED"
    SESSION_REFRESHED = "SESSION_REFRESHED"
    SESSION_REVOKED = "SESSION_REVOKED"
    SESSION_EXPIRED = "SESSION_EXPIRED"
    ACCESS_DENIED = "ACCESS_DENIED"
    PRINCIPAL_CREATED = "PRINCIPAL_CREATED"
    ROLE_CHANGED = "ROLE_CHANGED"
    STATUS_CHANGED = "STATUS_CHANGED"
    INVITE_CREATED = "INVITE_CREATED"
    INVITE_ACCEPTED = "INVITE_ACCEPTED"
    PASSWORD_CHANGED = "PASSWORD_CHANGED"
    AUDIT_CORRECTION = "AUDIT_CORRECTION"


class AuditEvent(db.Model):
    """
    Security audit trail.

    WHY: Every authentication and authorization decision must be
    attributable and reviewable after the fact.

    IMMUTABLE: Never update or delete. Append-only for audit integrity.
    The ORM refuses both (AppendOnlyViolation). Corrections are new events
    whose event_data carries {"corrects": <original id>}.
    """
    __tablename__ = "audit_events"
    __table_args__ = (
        db.Index("ix_audit_events_principal_type", "principal_id", "event_type"),
        db.Index("ix_audit_events_origin_created", "origin", "created_at"),
        db.CheckConstraint("risk_score >= 0 AND risk_score <= 100", name="ck_audit_events_risk_score"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Nullable for unauthenticated attempts
    principal_id = db.Column(db.Integer, db.ForeignKey("principals.id"), nullable=True, index=True)
    session_id = db.Column(db.String(36), nullable=True, index=True)

    event_type = db.Column(db.String(64), nullable=False, index=True)  # LOGIN_FAILED, SESSION_REVOKED, ACCESS_DENIED, ...

    # Client context
    origin = db.Column(db.String(45), nullable=True)
    client_signature = db.Column(db.String(512), nullable=True)
    device_id = db.Column(db.String(128), nullable=True)

    resource_type = db.Column(db.String(64), nullable=True)
    resource_id = db.Column(db.String(64), nullable=True)
    action = db.Column(db.String(64), nullable=True)
    outcome = db.Column(db.String(16), nullable=False, index=True)

    risk_score = db.Column(db.Integer, nullable=False, default=0)
    anomaly_flags = db.Column(db.JSON, nullable=False, default=list)

    event_data = db.Column(db.JSON, nullable=True)
    error_details = db.Column(db.JSON, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "principal_id": self.principal_id,
            "session_id": self.session_id,
            "event_type": self.event_type,
            "origin": self.origin,
            "device_id": self.device_id,
            "resource_type": self.resource_type,
            "resource_id": self.resource_id,
            "action": self.action,
            "outcome": self.outcome,
            "risk_score": self.risk_score,
            "anomaly_flags": list(self.anomaly_flags or []),
            "event_data": self.event_data or {},
            "error_details": self.error_details,
            "created_at": to_utc_z(self.created_at),
        }


class SecurityAlert(db.Model):
    """
    High-risk event surfaced for review.

    Distinct from the audit record: alerts are operational and may be
    resolved; the audit event they point to never changes.
    """
    __tablename__ = "security_alerts"
    __table_args__ = (
        db.Index("ix_security_alerts_unresolved", "resolved_at", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    alert_type = db.Column(db.String(64), nullable=False)
    severity = db.Column(db.String(16), nullable=False)  # low, medium, high, critical

    principal_id = db.Column(db.Integer, db.ForeignKey("principals.id"), nullable=True, index=True)
    audit_event_id = db.Column(db.Integer, db.ForeignKey("audit_events.id"), nullable=True)
    origin = db.Column(db.String(45), nullable=True)

    description = db.Column(db.Text, nullable=False)
    event_data = db.Column(db.JSON, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False)
    resolved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    resolved_by = db.Column(db.Integer, db.ForeignKey("principals.id"), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "alert_type": self.alert_type,
            "severity": self.severity,
            "principal_id": self.principal_id,
            "audit_event_id": self.audit_event_id,
            "origin": self.origin,
            "description": self.description,
            "event_data": self.event_data or {},
            "created_at": to_utc_z(self.created_at),
            "resolved_at": to_utc_z(self.resolved_at),
            "resolved_by": self.resolved_by,
        }


class RateLimit(db.Model):
    """
    Failed-attempt counter per (identifier, limit_type).

    identifier is a normalized email or an origin address; the row exists
    whether or not any account matches, so blocking reveals nothing.
    """
    __tablename__ = "rate_limits"
    __table_args__ = (
        db.UniqueConstraint("identifier", "limit_type", name="uq_rate_limits_identifier_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    identifier = db.Column(db.String(255), nullable=False)
    limit_type = db.Column(db.String(32), nullable=False)

    attempt_count = db.Column(db.Integer, nullable=False, default=0)
    window_start = db.Column(db.DateTime(timezone=True), nullable=False)
    last_attempt = db.Column(db.DateTime(timezone=True), nullable=False)
    blocked_until = db.Column(db.DateTime(timezone=True), nullable=True)


class OutboxEvent(db.Model):
    """Best-effort notification sink. Consumers poll unprocessed rows."""
    __tablename__ = "outbox_events"
    __table_args__ = (
        db.Index("ix_outbox_events_unprocessed", "processed_at", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    event_type = db.Column(db.String(64), nullable=False)
    entity = db.Column(db.String(64), nullable=False)
    entity_id = db.Column(db.String(64), nullable=True)
    payload = db.Column(db.JSON, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False)
    processed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    retry_count = db.Column(db.Integer, nullable=False, default=0)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "event_type": self.event_type,
            "entity": self.entity,
            "entity_id": self.entity_id,
            "payload": self.payload or {},
            "created_at": to_utc_z(self.created_at),
            "processed_at": to_utc_z(self.processed_at),
            "retry_count": self.retry_count,
        }
