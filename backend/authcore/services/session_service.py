# Overview: Session lifecycle - authenticate, validate, refresh, revoke, MFA state, housekeeping.

"""
Session Manager

WHY: Secure session management with absolute expiry, inactivity timeout,
rotation on refresh and immediate revocation. One explicitly constructed
instance per application (see AuthCore); tests build as many as they like.

STATES: active -> active+mfa_pending -> active+verified -> expired | revoked
(terminal). A row only exists once credentials verified; there is no
persisted "pending" state.

SECURITY FEATURES:
- Access and refresh tokens: 32 random bytes each, stored as SHA-256 only
- Absolute ceiling: created_at + max_lifetime, never extended by refresh
- Rolling expiry: refresh sets min(now + ttl, ceiling)
- Inactivity timeout: now - last_activity > idle_timeout terminates
- Every request re-validates against the database; no cached decisions
- Failed logins are throttled per email and per origin before the
  password is even checked

CONCURRENCY: transitions for one session id are serialized by an
in-process lock plus SELECT ... FOR UPDATE. Refresh writes through a
compare-and-set on "not revoked, not expired, same refresh token", so a
revocation that lands first always wins and the refresh changes nothing.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta

from sqlalchemy import update

from ..errors import (
    AccountSuspended,
    InvalidCredentials,
    InvalidSession,
    MfaRequired,
    RateLimited,
    SessionExpired,
    SessionRevoked,
)
from ..extensions import db, session_state_changed
from ..models import AuthSession, EventType, Outcome, Principal, SessionState
from ..time_utils import to_naive_utc, to_utc_z, utcnow
from .audit_service import AuditPipeline
from .auth_service import CredentialVerifier, generate_token, hash_token, normalize_email
from .concurrency import KeyedLocks, lock_for_update
from .login_throttle_service import LoginThrottle
from .mfa_service import MfaService

EXPIRED_ABSOLUTE = "absolute_expiry"
EXPIRED_IDLE = "inactivity_timeout"
REVOKE_LOGOUT = "logout"
REVOKE_CONCURRENT_LIMIT = "concurrent_session_limit"
REVOKE_ACCOUNT_INACTIVE = "account_inactive"
REVOKE_MFA_FAILED = "mfa_failed"
REVOKE_PASSWORD_CHANGED = "password_changed"


@dataclass(frozen=True)
class SessionPolicy:
    ttl: timedelta = timedelta(hours=8)
    max_lifetime: timedelta = timedelta(hours=24)
    idle_timeout: timedelta = timedelta(minutes=30)
    warning: timedelta = timedelta(minutes=5)
    max_concurrent: int = 5

    def initial_expiry(self, now: datetime) -> datetime:
        return self.next_expiry(now, now)

    def next_expiry(self, created_at: datetime, now: datetime) -> datetime:
        return min(now + self.ttl, created_at + self.max_lifetime)

    def ceiling(self, created_at: datetime) -> datetime:
        return created_at + self.max_lifetime


@dataclass
class Credentials:
    email: str
    password: str
    origin: str | None = None
    client_signature: str | None = None
    device_id: str | None = None
    geo: dict | None = None


@dataclass
class SessionHandle:
    """What the client holds. Tokens are plaintext here and nowhere else."""
    session_id: str
    access_token: str
    refresh_token: str | None
    expires_at: datetime
    state: str

    @property
    def mfa_required(self) -> bool:
        return self.state == SessionState.MFA_PENDING

    def to_dict(self) -> dict:
        data = {
            "session_id": self.session_id,
            "token": self.access_token,
            "expires_at": to_utc_z(self.expires_at),
            "state": self.state,
            "mfa_required": self.mfa_required,
        }
        if self.refresh_token is not None:
            data["refresh_token"] = self.refresh_token
        return data


@dataclass
class SessionContext:
    """Validated principal and session for one request."""
    principal: Principal
    session: AuthSession
    extra: dict = field(default_factory=dict)


class SessionManager:
    def __init__(
        self,
        *,
        policy: SessionPolicy | None = None,
        throttle: LoginThrottle | None = None,
        verifier: CredentialVerifier | None = None,
        mfa: MfaService | None = None,
        audit: AuditPipeline | None = None,
        mfa_max_attempts: int = 3,
        clock=utcnow,
    ):
        self.clock = clock
        self.policy = policy or SessionPolicy()
        self.throttle = throttle or LoginThrottle(clock=clock)
        self.verifier = verifier or CredentialVerifier()
        self.mfa = mfa or MfaService(clock=clock)
        self.audit = audit or AuditPipeline(clock=clock)
        self.mfa_max_attempts = mfa_max_attempts
        self._locks = KeyedLocks()

    # -- helpers --

    def _publish(self, session: AuthSession, state: str, reason: str | None = None) -> None:
        session_state_changed.send(
            self,
            session_id=session.id,
            principal_id=session.principal_id,
            state=state,
            reason=reason,
        )

    def _session_id_for(self, column, token: str | None) -> str:
        if not token:
            raise InvalidSession()
        row = db.session.query(AuthSession.id).filter(column == hash_token(token)).first()
        if row is None:
            raise InvalidSession()
        return row.id

    def _lock_row(self, session_id: str) -> AuthSession:
        query = db.session.query(AuthSession).filter_by(id=session_id).populate_existing()
        session = lock_for_update(query).first()
        if session is None:
            raise InvalidSession()
        return session

    def _audit_session(self, event_type: str, session: AuthSession, outcome: str = Outcome.SUCCESS, **payload) -> None:
        self.audit.record(
            event_type,
            principal=session.principal_id,
            session=session.id,
            outcome=outcome,
            origin=session.origin,
            client_signature=session.client_signature,
            device_id=session.device_id,
            resource_type="session",
            resource_id=session.id,
            payload=payload or None,
        )

    def _expire(self, session: AuthSession, now: datetime, reason: str) -> None:
        session.expired_at = now
        session.expired_reason = reason
        db.session.commit()
        self._publish(session, SessionState.EXPIRED, reason)
        self._audit_session(EventType.SESSION_EXPIRED, session, reason=reason)

    def _revoke_in_place(self, session: AuthSession, now: datetime, reason: str, actor_id: int | None = None) -> None:
        session.revoked_at = now
        session.revoked_by = actor_id
        session.revoke_reason = reason
        db.session.commit()
        self._publish(session, SessionState.REVOKED, reason)
        self._audit_session(EventType.SESSION_REVOKED, session, reason=reason)

    def _check_live(self, session: AuthSession, now: datetime) -> None:
        """Raise for terminal or timed-out sessions, recording passive expiry the first time it's seen."""
        if session.revoked_at is not None:
            raise SessionRevoked()
        if session.expired_at is not None:
            raise SessionExpired()
        if now > to_naive_utc(session.expires_at):
            self._expire(session, now, EXPIRED_ABSOLUTE)
            raise SessionExpired()
        if now - to_naive_utc(session.last_activity) > self.policy.idle_timeout:
            self._expire(session, now, EXPIRED_IDLE)
            raise SessionExpired()

    def _check_principal(self, session: AuthSession, now: datetime) -> Principal:
        principal = session.principal
        if principal is None or not principal.is_active:
            self._revoke_in_place(session, now, REVOKE_ACCOUNT_INACTIVE)
            raise AccountSuspended()
        return principal

    def _live_sessions(self, principal_id: int, now: datetime) -> list[AuthSession]:
        return (
            db.session.query(AuthSession)
            .filter(
                AuthSession.principal_id == principal_id,
                AuthSession.revoked_at.is_(None),
                AuthSession.expired_at.is_(None),
                AuthSession.expires_at > now,
                AuthSession.last_activity >= now - self.policy.idle_timeout,
            )
            .order_by(AuthSession.created_at.asc(), AuthSession.id.asc())
            .all()
        )

    # -- authentication --

    def authenticate(self, credentials: Credentials) -> SessionHandle:
        """
        Verify credentials and open a session.

        Raises RateLimited, InvalidCredentials (generic, never says whether
        the account exists) or AccountSuspended (only after a correct
        password). Nothing is persisted for a failed attempt except the
        throttle counters and the audit event.
        """
        email = normalize_email(credentials.email)
        context = {
            "origin": credentials.origin,
            "client_signature": credentials.client_signature,
            "device_id": credentials.device_id,
        }
        payload = {"email": email}
        if credentials.geo:
            payload["geo"] = credentials.geo

        try:
            self.throttle.check(email, credentials.origin)
        except RateLimited as exc:
            self.audit.record(
                EventType.LOGIN_BLOCKED,
                outcome=Outcome.FAILURE,
                payload={**payload, "retry_after_seconds": exc.retry_after_seconds},
                **context,
            )
            raise

        principal = db.session.query(Principal).filter_by(email=email).first()
        verified = self.verifier.verify(credentials.password or "", principal.password_hash if principal else None)

        if not verified:
            self.throttle.record_failure(email, credentials.origin)
            db.session.commit()
            self.audit.record(
                EventType.LOGIN_FAILED,
                principal=principal,
                outcome=Outcome.FAILURE,
                payload=payload,
                **context,
            )
            raise InvalidCredentials()

        if not principal.is_active:
            self.audit.record(
                EventType.LOGIN_FAILED,
                principal=principal,
                outcome=Outcome.FAILURE,
                payload={**payload, "reason": REVOKE_ACCOUNT_INACTIVE},
                **context,
            )
            raise AccountSuspended()

        now = self.clock()
        self.throttle.reset(email)

        # Oldest live sessions make room for the new one
        live = self._live_sessions(principal.id, now)
        overflow = len(live) - self.policy.max_concurrent + 1
        evicted = live[:overflow] if overflow > 0 else []
        for old in evicted:
            old.revoked_at = now
            old.revoke_reason = REVOKE_CONCURRENT_LIMIT

        access_token = generate_token()
        refresh_token = generate_token()
        session = AuthSession(
            principal_id=principal.id,
            access_token_hash=hash_token(access_token),
            refresh_token_hash=hash_token(refresh_token),
            created_at=now,
            expires_at=self.policy.initial_expiry(now),
            last_activity=now,
            origin=credentials.origin,
            client_signature=credentials.client_signature,
            device_id=credentials.device_id,
            mfa_required=bool(principal.mfa_enabled),
            mfa_verified=False,
        )
        principal.last_login_at = now
        principal.last_login_ip = credentials.origin
        db.session.add(session)
        try:
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

        for old in evicted:
            self._publish(old, SessionState.REVOKED, REVOKE_CONCURRENT_LIMIT)
        self._publish(session, session.state)
        self.audit.record(
            EventType.LOGIN_SUCCESS,
            principal=principal,
            session=session,
            payload={**payload, "mfa_pending": session.mfa_required, "evicted_sessions": [s.id for s in evicted]},
            **context,
        )

        return SessionHandle(session.id, access_token, refresh_token, session.expires_at, session.state)

    def verify_mfa(self, access_token: str, code: str) -> SessionHandle:
        """
        Complete the second factor for an mfa_pending session.

        Wrong code -> InvalidCredentials; the mfa_max_attempts-th wrong code
        revokes the session (SessionRevoked).
        """
        session_id = self._session_id_for(AuthSession.access_token_hash, access_token)
        with self._locks.hold(session_id):
            session = self._lock_row(session_id)
            now = self.clock()
            self._check_live(session, now)
            principal = self._check_principal(session, now)

            if session.mfa_required and not session.mfa_verified:
                if self.mfa.verify(principal.id, code):
                    session.mfa_verified = True
                    session.last_activity = now
                    db.session.commit()
                    self._publish(session, SessionState.VERIFIED)
                    self._audit_session(EventType.MFA_VERIFIED, session)
                else:
                    session.mfa_failed_attempts = (session.mfa_failed_attempts or 0) + 1
                    attempts = session.mfa_failed_attempts
                    if attempts >= self.mfa_max_attempts:
                        self._revoke_in_place(session, now, REVOKE_MFA_FAILED)
                        self._audit_session(EventType.MFA_FAILED, session, Outcome.FAILURE, attempts=attempts)
                        raise SessionRevoked()
                    db.session.commit()
                    self._audit_session(EventType.MFA_FAILED, session, Outcome.FAILURE, attempts=attempts)
                    raise InvalidCredentials()

            return SessionHandle(session.id, access_token, None, session.expires_at, session.state)

    # -- per-request validation --

    def validate(self, access_token: str) -> SessionContext:
        """
        Hard server-side check, in order:
        unknown -> InvalidSession, revoked -> SessionRevoked,
        past expiry -> SessionExpired (whatever last_activity says),
        idle too long -> SessionExpired, principal not active ->
        AccountSuspended (session revoked), MFA pending -> MfaRequired.

        On success last_activity is advanced.
        """
        session_id = self._session_id_for(AuthSession.access_token_hash, access_token)
        with self._locks.hold(session_id):
            session = self._lock_row(session_id)
            now = self.clock()
            self._check_live(session, now)
            principal = self._check_principal(session, now)
            if session.mfa_required and not session.mfa_verified:
                raise MfaRequired()

            session.last_activity = min(now, to_naive_utc(session.expires_at))
            db.session.commit()
            return SessionContext(principal=principal, session=session)

    def current_principal(self, access_token: str) -> Principal:
        return self.validate(access_token).principal

    def session_status(self, access_token: str) -> dict:
        """
        Soft check for clients: remaining lifetime and idle time, no writes.

        warning is True when either runs out within policy.warning.
        """
        if not access_token:
            return {"valid": False, "state": None}
        session = db.session.query(AuthSession).filter_by(access_token_hash=hash_token(access_token)).first()
        if session is None:
            return {"valid": False, "state": None}

        now = self.clock()
        expires_at = to_naive_utc(session.expires_at)
        idle_deadline = to_naive_utc(session.last_activity) + self.policy.idle_timeout
        state = session.state
        if not session.is_terminal and (now > expires_at or now > idle_deadline):
            state = SessionState.EXPIRED

        until_expiry = max(0, int((expires_at - now).total_seconds()))
        until_idle = max(0, int((idle_deadline - now).total_seconds()))
        valid = state in (SessionState.ACTIVE, SessionState.VERIFIED)
        return {
            "valid": valid,
            "state": state,
            "session_id": session.id,
            "seconds_until_expiry": until_expiry,
            "seconds_until_idle_timeout": until_idle,
            "warning": valid and min(until_expiry, until_idle) <= self.policy.warning.total_seconds(),
        }

    # -- refresh & revocation --

    def refresh(self, refresh_token: str) -> SessionHandle:
        """
        Rotate both tokens and roll the expiry forward, never past the ceiling.

        All-or-nothing: if the compare-and-set loses (a revoke or another
        refresh got there first) the transaction is rolled back and the
        stored state is whatever the winner wrote.
        """
        token_hash = hash_token(refresh_token or "")
        session_id = self._session_id_for(AuthSession.refresh_token_hash, refresh_token)
        with self._locks.hold(session_id):
            session = self._lock_row(session_id)
            now = self.clock()
            if session.refresh_token_hash != token_hash:
                raise InvalidSession()
            self._check_live(session, now)
            self._check_principal(session, now)
            if session.mfa_required and not session.mfa_verified:
                raise MfaRequired()

            state = session.state
            created_at = to_naive_utc(session.created_at)
            new_expiry = self.policy.next_expiry(created_at, now)
            access_token = generate_token()
            new_refresh_token = generate_token()

            result = db.session.execute(
                update(AuthSession)
                .where(
                    AuthSession.id == session_id,
                    AuthSession.revoked_at.is_(None),
                    AuthSession.expired_at.is_(None),
                    AuthSession.refresh_token_hash == token_hash,
                )
                .values(
                    access_token_hash=hash_token(access_token),
                    refresh_token_hash=hash_token(new_refresh_token),
                    expires_at=new_expiry,
                    last_activity=now,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                db.session.rollback()
                current = self._lock_row(session_id)
                if current.revoked_at is not None:
                    raise SessionRevoked()
                if current.expired_at is not None:
                    raise SessionExpired()
                raise InvalidSession()
            db.session.commit()

        self._audit_session(EventType.SESSION_REFRESHED, session, expires_at=new_expiry.isoformat())
        return SessionHandle(session_id, access_token, new_refresh_token, new_expiry, state)

    def revoke(self, session_ref, reason: str = REVOKE_LOGOUT, actor=None) -> bool:
        """
        Write the revocation record. Idempotent: returns False (and changes
        nothing) when the session is already revoked or unknown.

        session_ref: SessionHandle, AuthSession or session id.
        """
        session_id = getattr(session_ref, "session_id", None) or getattr(session_ref, "id", None) or session_ref
        actor_id = getattr(actor, "id", actor)
        with self._locks.hold(session_id):
            now = self.clock()
            result = db.session.execute(
                update(AuthSession)
                .where(AuthSession.id == session_id, AuthSession.revoked_at.is_(None))
                .values(revoked_at=now, revoked_by=actor_id, revoke_reason=reason)
                .execution_options(synchronize_session=False)
            )
            changed = result.rowcount == 1
            db.session.commit()

        if changed:
            session = db.session.get(AuthSession, session_id)
            self._publish(session, SessionState.REVOKED, reason)
            self._audit_session(EventType.SESSION_REVOKED, session, reason=reason, actor_id=actor_id)
        return changed

    def revoke_token(self, access_token: str, reason: str = REVOKE_LOGOUT, actor=None) -> bool:
        try:
            session_id = self._session_id_for(AuthSession.access_token_hash, access_token)
        except InvalidSession:
            return False
        return self.revoke(session_id, reason, actor)

    def revoke_all(self, principal_id: int, reason: str, actor=None, *, except_session_id: str | None = None) -> int:
        """
        Revoke every non-terminal session of a principal (password change,
        suspension, admin action). Returns count revoked.
        """
        actor_id = getattr(actor, "id", actor)
        now = self.clock()
        query = db.session.query(AuthSession.id).filter(
            AuthSession.principal_id == principal_id,
            AuthSession.revoked_at.is_(None),
            AuthSession.expired_at.is_(None),
        )
        if except_session_id:
            query = query.filter(AuthSession.id != except_session_id)
        session_ids = [row.id for row in query.all()]
        if not session_ids:
            return 0

        result = db.session.execute(
            update(AuthSession)
            .where(AuthSession.id.in_(session_ids), AuthSession.revoked_at.is_(None))
            .values(revoked_at=now, revoked_by=actor_id, revoke_reason=reason)
            .execution_options(synchronize_session=False)
        )
        db.session.commit()

        for session_id in session_ids:
            session_state_changed.send(
                self, session_id=session_id, principal_id=principal_id, state=SessionState.REVOKED, reason=reason,
            )
        self.audit.record(
            EventType.SESSION_REVOKED,
            principal=principal_id,
            outcome=Outcome.SUCCESS,
            resource_type="principal",
            resource_id=principal_id,
            payload={"reason": reason, "session_ids": session_ids, "actor_id": actor_id},
        )
        return result.rowcount

    def change_password(self, principal: Principal, current_password: str, new_password: str, *, keep_session_id: str | None = None) -> int:
        """
        Replace the password and revoke every other session.

        Raises InvalidCredentials when current_password is wrong and
        PasswordValidationError when new_password is weak. Returns sessions revoked.
        """
        if not self.verifier.verify(current_password or "", principal.password_hash):
            raise InvalidCredentials()
        principal.password_hash = self.verifier.hash(new_password)
        principal.password_changed_at = self.clock()
        db.session.commit()
        self.audit.record(EventType.PASSWORD_CHANGED, principal=principal, resource_type="principal", resource_id=principal.id)
        return self.revoke_all(principal.id, REVOKE_PASSWORD_CHANGED, actor=principal, except_session_id=keep_session_id)

    # -- housekeeping --

    def sweep(self) -> dict:
        """
        Mark timed-out sessions terminal and prune lapsed throttle rows.

        Housekeeping only: validate() enforces the same limits inline.
        """
        now = self.clock()
        live = (AuthSession.revoked_at.is_(None), AuthSession.expired_at.is_(None))
        expired = db.session.execute(
            update(AuthSession)
            .where(*live, AuthSession.expires_at < now)
            .values(expired_at=now, expired_reason=EXPIRED_ABSOLUTE)
            .execution_options(synchronize_session=False)
        ).rowcount
        idle = db.session.execute(
            update(AuthSession)
            .where(*live, AuthSession.last_activity < now - self.policy.idle_timeout)
            .values(expired_at=now, expired_reason=EXPIRED_IDLE)
            .execution_options(synchronize_session=False)
        ).rowcount
        pruned = self.throttle.prune()
        db.session.commit()
        return {"expired": expired, "idle": idle, "rate_limits_pruned": pruned}
