# Overview: AuthCore facade - the one object routes, CLI commands and jobs consume.

"""
AuthCore

Explicitly constructed once per application in create_app() and stored on
app.extensions["authcore"]. Tests build independent instances with their
own clock and settings. Nothing here is a module-level singleton.

Consumers outside the core see only this surface:
- authenticate / verify_mfa / refresh / revoke / current_principal
- is_allowed / scope_predicate
- record_audit_event (fire-and-forget)

Scope violations raised inside acting_as() blocks reach the audit trail
through the scope_violation signal, so jobs and CLI commands are audited
like HTTP requests.
"""

from __future__ import annotations

from datetime import timedelta

from flask import current_app

from .extensions import db, scope_violation
from .models import EventType, OutboxEvent, Outcome, PrincipalStatus
from .permissions import DEFAULT_RULES, PolicyEngine
from .services import invite_service, principal_service
from .services.audit_service import AuditPipeline
from .services.auth_service import CredentialVerifier
from .services.login_throttle_service import LoginThrottle
from .services.mfa_service import MfaService
from .services.risk_service import RiskScorer
from .services.scope_service import scope_predicate
from .services.session_service import (
    REVOKE_ACCOUNT_INACTIVE,
    Credentials,
    SessionHandle,
    SessionManager,
    SessionPolicy,
)
from .time_utils import to_utc_z, utcnow

__all__ = ["AuthCore", "Credentials", "SessionHandle", "get_core"]


class AuthCore:
    def __init__(
        self,
        *,
        policy: PolicyEngine,
        sessions: SessionManager,
        audit: AuditPipeline,
        mfa: MfaService,
        bcrypt_rounds: int = 12,
        invite_ttl: timedelta = timedelta(hours=72),
        clock=utcnow,
    ):
        self.policy = policy
        self.sessions = sessions
        self.audit = audit
        self.mfa = mfa
        self.bcrypt_rounds = bcrypt_rounds
        self.invite_ttl = invite_ttl
        self.clock = clock

    @classmethod
    def from_config(cls, config, *, clock=utcnow) -> "AuthCore":
        """
        Build every component from a Flask config mapping.

        Raises ConfigurationError when the policy table is malformed.
        """
        rules = config.get("POLICY_RULES")
        policy = PolicyEngine(DEFAULT_RULES if rules is None else rules)

        rounds = config.get("BCRYPT_ROUNDS", 12)
        audit = AuditPipeline(
            scorer=RiskScorer(
                velocity_window=timedelta(minutes=config.get("RISK_VELOCITY_WINDOW_MINUTES", 15)),
                clock=clock,
            ),
            alert_threshold=config.get("RISK_ALERT_THRESHOLD", 70),
            clock=clock,
        )
        mfa = MfaService(
            issuer=config.get("MFA_ISSUER", "AuthCore"),
            backup_code_count=config.get("MFA_BACKUP_CODES", 10),
            bcrypt_rounds=rounds,
            clock=clock,
        )
        sessions = SessionManager(
            policy=SessionPolicy(
                ttl=timedelta(minutes=config.get("SESSION_TTL_MINUTES", 480)),
                max_lifetime=timedelta(hours=config.get("SESSION_MAX_LIFETIME_HOURS", 24)),
                idle_timeout=timedelta(minutes=config.get("SESSION_IDLE_TIMEOUT_MINUTES", 30)),
                warning=timedelta(minutes=config.get("SESSION_WARNING_MINUTES", 5)),
                max_concurrent=config.get("MAX_CONCURRENT_SESSIONS", 5),
            ),
            throttle=LoginThrottle(
                max_attempts=config.get("LOGIN_MAX_FAILED_ATTEMPTS", 5),
                origin_max_attempts=config.get("LOGIN_ORIGIN_MAX_FAILED_ATTEMPTS", 20),
                window=timedelta(minutes=config.get("LOGIN_WINDOW_MINUTES", 15)),
                block=timedelta(minutes=config.get("LOGIN_BLOCK_MINUTES", 15)),
                clock=clock,
            ),
            verifier=CredentialVerifier(
                rounds=rounds,
                timeout_seconds=config.get("AUTH_HASH_TIMEOUT_SECONDS", 5.0),
                workers=config.get("AUTH_HASH_WORKERS", 4),
            ),
            mfa=mfa,
            audit=audit,
            mfa_max_attempts=config.get("MFA_MAX_ATTEMPTS", 3),
            clock=clock,
        )
        return cls(
            policy=policy,
            sessions=sessions,
            audit=audit,
            mfa=mfa,
            bcrypt_rounds=rounds,
            invite_ttl=timedelta(hours=config.get("INVITE_TTL_HOURS", 72)),
            clock=clock,
        )

    # -- sessions --

    def authenticate(self, credentials: Credentials) -> SessionHandle:
        return self.sessions.authenticate(credentials)

    def verify_mfa(self, access_token: str, code: str) -> SessionHandle:
        return self.sessions.verify_mfa(access_token, code)

    def refresh(self, refresh_token: str) -> SessionHandle:
        return self.sessions.refresh(refresh_token)

    def revoke(self, session_ref, reason: str = "logout", actor=None) -> bool:
        return self.sessions.revoke(session_ref, reason, actor)

    def current_principal(self, access_token: str):
        return self.sessions.current_principal(access_token)

    def session_status(self, access_token: str) -> dict:
        return self.sessions.session_status(access_token)

    # -- authorization --

    def is_allowed(self, principal, resource_path: str, action: str | None = None) -> bool:
        return self.policy.is_allowed(principal, resource_path, action)

    def scope_predicate(self, principal, entity_class=None):
        return scope_predicate(principal, entity_class)

    # -- audit --

    def record_audit_event(self, event_type: str, **kwargs):
        return self.audit.record(event_type, **kwargs)

    # -- principal store --

    def create_principal(self, actor=None, **fields):
        principal = principal_service.create_principal(actor=actor, bcrypt_rounds=self.bcrypt_rounds, **fields)
        self.audit.record(
            EventType.PRINCIPAL_CREATED,
            principal=actor,
            resource_type="principal",
            resource_id=principal.id,
            payload={"role": principal.role, "retailer_id": principal.retailer_id, "location_id": principal.location_id},
        )
        return principal

    def change_role(self, actor, principal_id: int, **scope):
        target = principal_service.get_principal(principal_id)
        before = {"role": target.role, "retailer_id": target.retailer_id, "location_id": target.location_id} if target else None
        principal = principal_service.change_role(actor, principal_id, **scope)
        self.audit.record(
            EventType.ROLE_CHANGED,
            principal=actor,
            resource_type="principal",
            resource_id=principal_id,
            action="manage_roles",
            payload={"before": before, "after": scope},
        )
        return principal

    def set_status(self, actor, principal_id: int, status: str):
        principal = principal_service.set_status(actor, principal_id, status)
        revoked = 0
        if status != PrincipalStatus.ACTIVE:
            revoked = self.sessions.revoke_all(principal_id, REVOKE_ACCOUNT_INACTIVE, actor=actor)
        self.audit.record(
            EventType.STATUS_CHANGED,
            principal=actor,
            resource_type="principal",
            resource_id=principal_id,
            payload={"status": status, "sessions_revoked": revoked},
        )
        return principal

    def create_invite(self, actor, **fields):
        invite, token = invite_service.create_invite(actor, ttl=self.invite_ttl, clock=self.clock, **fields)
        # Delivery is a consumer's job; the raw token never leaves this call.
        db.session.add(OutboxEvent(
            event_type="invite_email",
            entity="invite_tokens",
            entity_id=str(invite.id),
            payload={
                "email": invite.email,
                "role": invite.role,
                "retailer_id": invite.retailer_id,
                "location_id": invite.location_id,
                "expires_at": to_utc_z(invite.expires_at),
            },
            created_at=self.clock(),
        ))
        db.session.commit()
        self.audit.record(
            EventType.INVITE_CREATED,
            principal=actor,
            resource_type="invite",
            resource_id=invite.id,
            payload={"email": invite.email, "role": invite.role},
        )
        return invite, token

    def accept_invite(self, token: str, password: str):
        principal = invite_service.accept_invite(token, password, bcrypt_rounds=self.bcrypt_rounds, clock=self.clock)
        db.session.add(OutboxEvent(
            event_type="welcome_email",
            entity="principals",
            entity_id=str(principal.id),
            payload={"email": principal.email, "role": principal.role},
            created_at=self.clock(),
        ))
        db.session.commit()
        self.audit.record(
            EventType.INVITE_ACCEPTED,
            principal=principal,
            outcome=Outcome.SUCCESS,
            resource_type="principal",
            resource_id=principal.id,
        )
        return principal


def get_core() -> AuthCore:
    """The AuthCore of the current application."""
    return current_app.extensions["authcore"]


@scope_violation.connect
def audit_scope_violation(sender, predicate, detail, **extra):
    """Record a denial raised inside acting_as() as ACCESS_DENIED."""
    get_core().record_audit_event(
        EventType.ACCESS_DENIED,
        principal=predicate.principal_id,
        outcome=Outcome.FAILURE,
        resource_type="scope",
        resource_id=predicate.kind,
        payload={
            "detail": detail,
            "retailer_id": predicate.retailer_id,
            "location_id": predicate.location_id,
        },
    )
