# Overview: Principal Store operations - provisioning, role/scope changes, status transitions.

"""
Principal Service

WHY: Role and scope decide everything a principal can see. Changing them is
itself privileged: the actor must outrank the target, may not hand out a
role above its own, and a retailer actor stays inside its own retailer.

Principals are never deleted; status moves between active, suspended and
inactive. Session revocation on suspension is the caller's job (AuthCore
does it) so this module stays free of session state.
"""

from __future__ import annotations

import re

from ..errors import Forbidden, ScopeInvariantError
from ..extensions import db
from ..models import ALL_STATUSES, Location, Principal, PrincipalStatus, Retailer
from ..permissions.roles import ROLE_RANK, Role, outranks, validate_scope
from .auth_service import hash_password, normalize_email

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def get_principal(principal_id: int) -> Principal | None:
    return db.session.get(Principal, principal_id)


def get_principal_by_email(email: str) -> Principal | None:
    return db.session.query(Principal).filter_by(email=normalize_email(email)).first()


def validate_scope_references(role: str, retailer_id: int | None, location_id: int | None) -> None:
    """
    Role/scope invariant plus referential checks.

    Raises ScopeInvariantError for a role/scope mismatch, an unknown
    retailer or a location that belongs to another retailer.
    """
    validate_scope(role, retailer_id, location_id)
    if retailer_id is not None and db.session.get(Retailer, retailer_id) is None:
        raise ScopeInvariantError("Retailer not found")
    if location_id is not None:
        location = db.session.get(Location, location_id)
        if location is None or location.retailer_id != retailer_id:
            raise ScopeInvariantError("Location does not belong to the retailer")


def require_can_assign(actor, role: str, retailer_id: int | None) -> None:
    """
    Raise Forbidden unless `actor` may hand out `role` within `retailer_id`.

    actor=None means a system context (CLI provisioning, invite acceptance
    of a previously authorized invite) and is always allowed.
    """
    if actor is None:
        return
    if ROLE_RANK.get(role, 0) > ROLE_RANK.get(actor.role, 0):
        raise Forbidden(f"{actor.role} cannot assign {role}")
    if actor.role == Role.RETAILER and retailer_id != actor.retailer_id:
        raise Forbidden("retailer actor outside own retailer")
    if actor.role == Role.LOCATION_USER:
        raise Forbidden("location users cannot manage principals")


def require_can_manage(actor, target: Principal) -> None:
    """Raise Forbidden unless `actor` outranks `target` and shares its retailer where scoped."""
    if actor is None:
        return
    if actor.id == target.id or not outranks(actor.role, target.role):
        raise Forbidden(f"{actor.role} does not outrank {target.role}")
    if actor.role == Role.RETAILER and target.retailer_id != actor.retailer_id:
        raise Forbidden("retailer actor outside own retailer")


def create_principal(
    *,
    email: str,
    password: str,
    role: str,
    retailer_id: int | None = None,
    location_id: int | None = None,
    actor=None,
    profile_metadata: dict | None = None,
    bcrypt_rounds: int = 12,
    commit: bool = True,
) -> Principal:
    """
    Create a principal with a bcrypt-hashed password.

    Raises:
        ValueError: malformed or already registered email
        PasswordValidationError: weak password
        ScopeInvariantError: role/scope mismatch or bad references
        Forbidden: actor may not create this role/scope
    """
    email = normalize_email(email)
    if not EMAIL_PATTERN.match(email):
        raise ValueError("Invalid email address")

    require_can_assign(actor, role, retailer_id)
    validate_scope_references(role, retailer_id, location_id)

    if get_principal_by_email(email) is not None:
        raise ValueError("Email already registered")

    principal = Principal(
        email=email,
        password_hash=hash_password(password, rounds=bcrypt_rounds),
        role=role,
        retailer_id=retailer_id,
        location_id=location_id,
        status=PrincipalStatus.ACTIVE,
        profile_metadata=profile_metadata or {},
        created_by=getattr(actor, "id", None),
    )
    db.session.add(principal)
    if commit:
        db.session.commit()
    return principal


def change_role(
    actor,
    principal_id: int,
    *,
    role: str,
    retailer_id: int | None = None,
    location_id: int | None = None,
) -> Principal:
    """
    Change a principal's role and scope together.

    Both the current and the new role/scope must be within the actor's
    authority. Raises Forbidden, ScopeInvariantError or LookupError.
    """
    target = get_principal(principal_id)
    if target is None:
        raise LookupError("Principal not found")

    require_can_manage(actor, target)
    require_can_assign(actor, role, retailer_id)
    validate_scope_references(role, retailer_id, location_id)

    target.role = role
    target.retailer_id = retailer_id
    target.location_id = location_id
    db.session.commit()
    return target


def set_status(actor, principal_id: int, status: str) -> Principal:
    """Move a principal between active, suspended and inactive. Raises Forbidden, ValueError or LookupError."""
    if status not in ALL_STATUSES:
        raise ValueError(f"Unknown status: {status!r}")

    target = get_principal(principal_id)
    if target is None:
        raise LookupError("Principal not found")

    require_can_manage(actor, target)
    target.status = status
    db.session.commit()
    return target


def list_principals(actor) -> list[Principal]:
    """Principals visible to `actor`: everyone for owner/backoffice, own retailer for retailer, self otherwise."""
    query = db.session.query(Principal).order_by(Principal.id.asc())
    if actor.role in (Role.OWNER, Role.BACKOFFICE):
        return query.all()
    if actor.role == Role.RETAILER:
        return query.filter(Principal.retailer_id == actor.retailer_id).all()
    return query.filter(Principal.id == actor.id).all()
