# Overview: Flask API routes for authentication and session lifecycle; parses input and returns JSON responses.

"""
Authentication API routes

Thin transport over AuthCore. AuthError subclasses propagate to the
application's error handler, which renders {"error", "code"} with the
matching status (401/403/429) and audits denials.

SECURITY FEATURES:
- Login throttled per email and per origin, checked before the password
- Generic "Invalid credentials" whether or not the account exists
- Access/refresh token pair, rotated on refresh
- Second factor required before an MFA-enrolled session can act
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..core import Credentials, get_core
from ..decorators import bearer_token, require_auth
from ..errors import AuthError, InvalidCredentials, InvalidSession, InviteError, PasswordValidationError
from ..models import EventType
from ..extensions import db
from ..services.auth_service import verify_password


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


@auth_bp.post("/login")
def login_route():
    """
    Authenticate and open a session.

    Body: email, password, optional device_id and geo {"lat", "lon"}.
    Returns the session handle (token, refresh_token, expires_at, state).
    When state is "active+mfa_pending" the client must call /mfa/verify.
    """
    data = request.get_json(silent=True) or {}
    email = data.get("email") or data.get("username") or data.get("identifier")
    password = data.get("password")

    if not all([email, password]):
        return jsonify({"error": "email and password required"}), 400

    try:
        handle = get_core().authenticate(Credentials(
            email=email,
            password=password,
            origin=request.remote_addr,
            client_signature=request.headers.get("User-Agent"),
            device_id=data.get("device_id") or request.headers.get("X-Device-Id"),
            geo=data.get("geo") if isinstance(data.get("geo"), dict) else None,
        ))
        return jsonify({**handle.to_dict(), "message": "Login successful"}), 200

    except AuthError:
        raise
    except Exception:
        current_app.logger.exception("Failed to login principal")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("/mfa/verify")
def mfa_verify_route():
    """Complete the second factor. Expects Authorization: Bearer <token> and body {"code"}."""
    token = bearer_token()
    if token is None:
        raise InvalidSession()

    data = request.get_json(silent=True) or {}
    code = data.get("code")
    if not code:
        return jsonify({"error": "code required"}), 400

    handle = get_core().verify_mfa(token, str(code))
    return jsonify(handle.to_dict()), 200


@auth_bp.post("/refresh")
def refresh_route():
    """Exchange a refresh token for a rotated token pair with a rolled expiry."""
    data = request.get_json(silent=True) or {}
    refresh_token = data.get("refresh_token")
    if not refresh_token:
        return jsonify({"error": "refresh_token required"}), 400

    handle = get_core().refresh(refresh_token)
    return jsonify(handle.to_dict()), 200


@auth_bp.post("/logout")
def logout_route():
    """
    Revoke the presented session.

    Works for sessions still waiting on MFA. Idempotent: a second logout
    reports revoked=false.
    """
    token = bearer_token()
    if token is None:
        return jsonify({"error": "Authorization header required"}), 401

    revoked = get_core().sessions.revoke_token(token, reason="logout")
    return jsonify({"revoked": revoked, "message": "Logout successful"}), 200


@auth_bp.get("/session")
def session_status_route():
    """
    Soft session check for client-side warnings. Never extends the session.

    Returns valid, state, seconds_until_expiry, seconds_until_idle_timeout, warning.
    """
    return jsonify(get_core().session_status(bearer_token())), 200


@auth_bp.get("/me")
@require_auth
def me_route():
    context = g.session_context
    return jsonify({
        "principal": context.principal.to_dict(),
        "session": context.session.to_dict(),
    }), 200


@auth_bp.post("/password")
@require_auth
def change_password_route():
    """Change password. Every other session of the principal is revoked."""
    data = request.get_json(silent=True) or {}
    current_password = data.get("current_password")
    new_password = data.get("new_password")
    if not all([current_password, new_password]):
        return jsonify({"error": "current_password and new_password required"}), 400

    try:
        revoked = get_core().sessions.change_password(
            g.current_principal,
            current_password,
            new_password,
            keep_session_id=g.session_context.session.id,
        )
        return jsonify({"message": "Password changed", "sessions_revoked": revoked}), 200

    except PasswordValidationError as e:
        return jsonify({"error": str(e)}), 400


@auth_bp.post("/mfa/enroll")
@require_auth
def mfa_enroll_route():
    """Start TOTP enrollment. Returns the provisioning URI for the authenticator app."""
    data = request.get_json(silent=True) or {}
    core = get_core()
    device, uri = core.mfa.begin_totp_enrollment(g.current_principal, data.get("device_name"))
    db.session.commit()
    return jsonify({"device": device.to_dict(), "provisioning_uri": uri}), 201


@auth_bp.post("/mfa/enroll/confirm")
@require_auth
def mfa_enroll_confirm_route():
    """Confirm enrollment with a current code. Returns the one-time backup codes."""
    data = request.get_json(silent=True) or {}
    code = data.get("code")
    if not code:
        return jsonify({"error": "code required"}), 400

    core = get_core()
    principal = g.current_principal
    backup_codes = core.mfa.confirm_totp_enrollment(principal, str(code))
    db.session.commit()
    core.record_audit_event(EventType.MFA_ENROLLED, principal=principal, resource_type="principal", resource_id=principal.id)
    return jsonify({"mfa_enabled": True, "backup_codes": backup_codes}), 200


@auth_bp.post("/mfa/disable")
@require_auth
def mfa_disable_route():
    """Turn MFA off. Requires the current password, not just a live session."""
    data = request.get_json(silent=True) or {}
    principal = g.current_principal
    if not verify_password(data.get("password") or "", principal.password_hash):
        raise InvalidCredentials()

    core = get_core()
    disabled = core.mfa.disable(principal)
    db.session.commit()
    core.record_audit_event(
        EventType.MFA_DISABLED,
        principal=principal,
        resource_type="principal",
        resource_id=principal.id,
        payload={"devices_disabled": disabled},
    )
    return jsonify({"mfa_enabled": False, "devices_disabled": disabled}), 200


@auth_bp.post("/invites/accept")
def accept_invite_route():
    """Accept an invite: creates the principal with the invite's role and scope."""
    data = request.get_json(silent=True) or {}
    token = data.get("token")
    password = data.get("password")
    if not all([token, password]):
        return jsonify({"error": "token and password required"}), 400

    try:
        principal = get_core().accept_invite(token, password)
        return jsonify({"principal": principal.to_dict()}), 201

    except (InviteError, PasswordValidationError, ValueError) as e:
        return jsonify({"error": str(e)}), 400
