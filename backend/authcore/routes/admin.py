# Overview: Flask API routes for administration - sessions, audit trail, alerts, principals, invites.

from flask import Blueprint, g, jsonify, request

from ..core import get_core
from ..decorators import require_access, require_auth
from ..errors import InviteError, PasswordValidationError, ScopeInvariantError
from ..extensions import db
from ..models import AuditEvent, SecurityAlert
from ..permissions import Action
from ..services import principal_service


admin_bp = Blueprint("admin", __name__, url_prefix="/api/admin")

MAX_PAGE_SIZE = 500


def _limit() -> int:
    try:
        limit = int(request.args.get("limit", 100))
    except ValueError:
        limit = 100
    return max(1, min(limit, MAX_PAGE_SIZE))


# -- SESSIONS --

@admin_bp.post("/sessions/<session_id>/revoke")
@require_auth
@require_access(action=Action.REVOKE)
def revoke_session_route(session_id: str):
    """Revoke any session. Idempotent: revoked=false when already revoked or unknown."""
    data = request.get_json(silent=True) or {}
    reason = data.get("reason") or "admin_revocation"
    revoked = get_core().revoke(session_id, reason=reason, actor=g.current_principal)
    return jsonify({"session_id": session_id, "revoked": revoked}), 200


# -- AUDIT --

@admin_bp.get("/audit-events")
@require_auth
@require_access()
def list_audit_events_route():
    """
    Read the audit trail, newest first.

    Filters: principal_id, event_type, outcome, min_risk; limit (max 500).
    """
    query = db.session.query(AuditEvent)
    if request.args.get("principal_id"):
        query = query.filter(AuditEvent.principal_id == request.args.get("principal_id", type=int))
    if request.args.get("event_type"):
        query = query.filter(AuditEvent.event_type == request.args["event_type"])
    if request.args.get("outcome"):
        query = query.filter(AuditEvent.outcome == request.args["outcome"])
    if request.args.get("min_risk"):
        query = query.filter(AuditEvent.risk_score >= request.args.get("min_risk", type=int))

    events = query.order_by(AuditEvent.id.desc()).limit(_limit()).all()
    return jsonify({"events": [e.to_dict() for e in events]}), 200


@admin_bp.get("/security-alerts")
@require_auth
@require_access()
def list_security_alerts_route():
    query = db.session.query(SecurityAlert)
    if request.args.get("unresolved") in ("1", "true"):
        query = query.filter(SecurityAlert.resolved_at.is_(None))
    alerts = query.order_by(SecurityAlert.id.desc()).limit(_limit()).all()
    return jsonify({"alerts": [a.to_dict() for a in alerts]}), 200


@admin_bp.post("/security-alerts/<int:alert_id>/resolve")
@require_auth
@require_access(action=Action.UPDATE)
def resolve_security_alert_route(alert_id: int):
    alert = get_core().audit.resolve_alert(alert_id, actor=g.current_principal)
    if alert is None:
        return jsonify({"error": "Alert not found"}), 404
    return jsonify({"alert": alert.to_dict()}), 200


# -- PRINCIPALS --

@admin_bp.get("/principals")
@require_auth
@require_access()
def list_principals_route():
    principals = principal_service.list_principals(g.current_principal)
    return jsonify({"principals": [p.to_dict() for p in principals]}), 200


@admin_bp.post("/principals")
@require_auth
@require_access()
def create_principal_route():
    data = request.get_json(silent=True) or {}
    if not all([data.get("email"), data.get("password"), data.get("role")]):
        return jsonify({"error": "email, password and role required"}), 400

    try:
        principal = get_core().create_principal(
            actor=g.current_principal,
            email=data["email"],
            password=data["password"],
            role=data["role"],
            retailer_id=data.get("retailer_id"),
            location_id=data.get("location_id"),
            profile_metadata=data.get("profile_metadata"),
        )
        return jsonify({"principal": principal.to_dict()}), 201

    except (ScopeInvariantError, PasswordValidationError, ValueError) as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 400


@admin_bp.post("/principals/<int:principal_id>/role")
@require_auth
@require_access(action=Action.MANAGE_ROLES)
def change_role_route(principal_id: int):
    """Change role and scope together. Body: role, retailer_id, location_id."""
    data = request.get_json(silent=True) or {}
    if not data.get("role"):
        return jsonify({"error": "role required"}), 400

    try:
        principal = get_core().change_role(
            g.current_principal,
            principal_id,
            role=data["role"],
            retailer_id=data.get("retailer_id"),
            location_id=data.get("location_id"),
        )
        return jsonify({"principal": principal.to_dict()}), 200

    except LookupError as e:
        return jsonify({"error": str(e)}), 404
    except ScopeInvariantError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 400


@admin_bp.post("/principals/<int:principal_id>/status")
@require_auth
@require_access(action=Action.UPDATE)
def set_status_route(principal_id: int):
    """Suspend, deactivate or reactivate. Leaving active revokes every session."""
    data = request.get_json(silent=True) or {}
    status = data.get("status")
    if not status:
        return jsonify({"error": "status required"}), 400

    try:
        principal = get_core().set_status(g.current_principal, principal_id, status)
        return jsonify({"principal": principal.to_dict()}), 200

    except LookupError as e:
        return jsonify({"error": str(e)}), 404
    except ValueError as e:
        return jsonify({"error": str(e)}), 400


# -- INVITES --

@admin_bp.post("/invites")
@require_auth
@require_access()
def create_invite_route():
    """Invite a principal within the actor's authority. Returns the single-use token."""
    data = request.get_json(silent=True) or {}
    if not all([data.get("email"), data.get("role")]):
        return jsonify({"error": "email and role required"}), 400

    try:
        invite, token = get_core().create_invite(
            g.current_principal,
            email=data["email"],
            role=data["role"],
            retailer_id=data.get("retailer_id"),
            location_id=data.get("location_id"),
        )
        return jsonify({"invite": invite.to_dict(), "token": token}), 201

    except (InviteError, ScopeInvariantError) as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 400
