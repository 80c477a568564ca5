from __future__ import annotations

import uuid

from sqlalchemy.orm import validates

from ..extensions import db
from ..time_utils import to_utc_z


# Mirrors authcore.permissions.roles.validate_scope so the database refuses
# rows that bypass the ORM.
SCOPE_CHECK_SQL = (
    "(role IN ('owner', 'backoffice') AND retailer_id IS NULL AND location_id IS NULL)"
    " OR (role = 'retailer' AND retailer_id IS NOT NULL AND location_id IS NULL)"
    " OR (role = 'location_user' AND retailer_id IS NOT NULL AND location_id IS NOT NULL)"
)


class PrincipalStatus:
    ACTIVE = "active"
    SUSPENDED = "suspended"
    INACTIVE = "inactive"


ALL_STATUSES = (PrincipalStatus.ACTIVE, PrincipalStatus.SUSPENDED, PrincipalStatus.INACTIVE)


class SessionState:
    ACTIVE = "active"
    MFA_PENDING = "active+mfa_pending"
    VERIFIED = "active+verified"
    EXPIRED = "expired"
    REVOKED = "revoked"


TERMINAL_STATES = (SessionState.EXPIRED, SessionState.REVOKED)


def _new_session_id() -> str:
    return str(uuid.uuid4())


class Principal(db.Model):
    """
    One account: identity, role, organizational scope, status.

    SCOPE INVARIANT (CHECK constraint + flush-time check):
    - owner / backoffice: no retailer, no location
    - retailer: retailer, no location
    - location_user: retailer AND location

    WHY never hard-deleted: audit events, sessions and invites reference
    principals. Deactivation sets status=inactive instead.
    """
    __tablename__ = "principals"
    __table_args__ = (
        db.CheckConstraint(SCOPE_CHECK_SQL, name="ck_principals_role_scope"),
        db.CheckConstraint(
            "status IN ('active', 'suspended', 'inactive')",
            name="ck_principals_status",
        ),
        db.Index("ix_principals_retailer_location", "retailer_id", "location_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Stored lowercased; uniqueness is therefore case-insensitive
    email = db.Column(db.String(255), nullable=False, unique=True, index=True)
    password_hash = db.Column(db.String(255), nullable=False)

    role = db.Column(db.String(32), nullable=False, index=True)
    retailer_id = db.Column(db.Integer, db.ForeignKey("retailers.id"), nullable=True)
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=True)

    status = db.Column(db.String(16), nullable=False, default=PrincipalStatus.ACTIVE, index=True)

    # Credential metadata
    password_changed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    mfa_enabled = db.Column(db.Boolean, nullable=False, default=False)

    profile_metadata = db.Column(db.JSON, nullable=True)

    last_login_at = db.Column(db.DateTime(timezone=True), nullable=True)
    last_login_ip = db.Column(db.String(45), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
    created_by = db.Column(db.Integer, db.ForeignKey("principals.id"), nullable=True)

    retailer = db.relationship("Retailer", backref=db.backref("principals", lazy=True))
    location = db.relationship("Location", backref=db.backref("principals", lazy=True))

    @validates("email")
    def _normalize_email(self, key, value):
        return value.strip().lower() if value else value

    @property
    def is_active(self) -> bool:
        return self.status == PrincipalStatus.ACTIVE

    def __repr__(self) -> str:
        return f"<Principal id={self.id} role={self.role} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "role": self.role,
            "retailer_id": self.retailer_id,
            "location_id": self.location_id,
            "status": self.status,
            "mfa_enabled": self.mfa_enabled,
            "profile_metadata": self.profile_metadata or {},
            "password_changed_at": to_utc_z(self.password_changed_at),
            "last_login_at": to_utc_z(self.last_login_at),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class AuthSession(db.Model):
    """
    One login.

    SECURITY:
    - Only SHA-256 hashes of the access and refresh tokens are stored.
    - A revocation record (revoked_at/revoked_by/revoke_reason) or an expiry
      record (expired_at/expired_reason) is terminal. Terminal sessions never
      authenticate a request and are never reopened.
    - last_activity <= expires_at at all times.
    """
    __tablename__ = "auth_sessions"
    __table_args__ = (
        db.Index("ix_auth_sessions_principal_created", "principal_id", "created_at"),
        db.Index("ix_auth_sessions_expires", "expires_at"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_new_session_id)
    principal_id = db.Column(db.Integer, db.ForeignKey("principals.id"), nullable=False, index=True)

    access_token_hash = db.Column(db.String(64), nullable=False, unique=True, index=True)
    refresh_token_hash = db.Column(db.String(64), nullable=False, unique=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False)
    last_activity = db.Column(db.DateTime(timezone=True), nullable=False)

    # Creation metadata
    origin = db.Column(db.String(45), nullable=True)
    client_signature = db.Column(db.String(512), nullable=True)
    device_id = db.Column(db.String(128), nullable=True)

    mfa_required = db.Column(db.Boolean, nullable=False, default=False)
    mfa_verified = db.Column(db.Boolean, nullable=False, default=False)
    mfa_failed_attempts = db.Column(db.Integer, nullable=False, default=0)

    # Passive termination (absolute expiry or inactivity timeout)
    expired_at = db.Column(db.DateTime(timezone=True), nullable=True)
    expired_reason = db.Column(db.String(64), nullable=True)

    # Revocation record - all null while the session is live
    revoked_at = db.Column(db.DateTime(timezone=True), nullable=True)
    revoked_by = db.Column(db.Integer, db.ForeignKey("principals.id"), nullable=True)
    revoke_reason = db.Column(db.String(255), nullable=True)

    principal = db.relationship(
        "Principal",
        foreign_keys=[principal_id],
        backref=db.backref("sessions", lazy=True),
    )

    @property
    def state(self) -> str:
        if self.revoked_at is not None:
            return SessionState.REVOKED
        if self.expired_at is not None:
            return SessionState.EXPIRED
        if self.mfa_required:
            return SessionState.VERIFIED if self.mfa_verified else SessionState.MFA_PENDING
        return SessionState.ACTIVE

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "principal_id": self.principal_id,
            "state": self.state,
            "created_at": to_utc_z(self.created_at),
            "expires_at": to_utc_z(self.expires_at),
            "last_activity": to_utc_z(self.last_activity),
            "origin": self.origin,
            "client_signature": self.client_signature,
            "device_id": self.device_id,
            "mfa_required": self.mfa_required,
            "mfa_verified": self.mfa_verified,
            "expired_at": to_utc_z(self.expired_at),
            "expired_reason": self.expired_reason,
            "revoked_at": to_utc_z(self.revoked_at),
            "revoked_by": self.revoked_by,
            "revoke_reason": self.revoke_reason,
        }


class MfaDevice(db.Model):
    """
    Enrolled second factor.

    A device is pending until the first code is confirmed (confirmed_at);
    only confirmed, active devices count as enrollment.
    Backup codes are stored as bcrypt hashes and removed once used.
    """
    __tablename__ = "mfa_devices"
    __table_args__ = (
        db.Index("ix_mfa_devices_principal_active", "principal_id", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    principal_id = db.Column(db.Integer, db.ForeignKey("principals.id"), nullable=False, index=True)

    device_type = db.Column(db.String(16), nullable=False, default="totp")
    device_name = db.Column(db.String(128), nullable=True)

    # Base32 TOTP secret
    secret = db.Column(db.String(64), nullable=False)
    backup_codes = db.Column(db.JSON, nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    confirmed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    last_used_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    principal = db.relationship("Principal", backref=db.backref("mfa_devices", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "principal_id": self.principal_id,
            "device_type": self.device_type,
            "device_name": self.device_name,
            "is_active": self.is_active,
            "confirmed": self.confirmed_at is not None,
            "backup_codes_remaining": len(self.backup_codes or []),
            "last_used_at": to_utc_z(self.last_used_at),
            "created_at": to_utc_z(self.created_at),
        }


class InviteToken(db.Model):
    """
    Pending invitation that becomes a Principal on acceptance.

    Carries the same role/scope invariant as Principal so an invite can
    never mint an out-of-scope account. Single use.
    """
    __tablename__ = "invite_tokens"
    __table_args__ = (
        db.CheckConstraint(SCOPE_CHECK_SQL, name="ck_invite_tokens_role_scope"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    token_hash = db.Column(db.String(64), nullable=False, unique=True, index=True)

    email = db.Column(db.String(255), nullable=False, index=True)
    role = db.Column(db.String(32), nullable=False)
    retailer_id = db.Column(db.Integer, db.ForeignKey("retailers.id"), nullable=True)
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=True)

    invited_by = db.Column(db.Integer, db.ForeignKey("principals.id"), nullable=False)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False)
    used_at = db.Column(db.DateTime(timezone=True), nullable=True)
    used_by = db.Column(db.Integer, db.ForeignKey("principals.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    @validates("email")
    def _normalize_email(self, key, value):
        return value.strip().lower() if value else value

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "role": self.role,
            "retailer_id": self.retailer_id,
            "location_id": self.location_id,
            "invited_by": self.invited_by,
            "expires_at": to_utc_z(self.expires_at),
            "used_at": to_utc_z(self.used_at),
            "used_by": self.used_by,
            "created_at": to_utc_z(self.created_at),
        }
