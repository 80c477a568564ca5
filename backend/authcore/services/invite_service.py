# Overview: Invitation flow - the provisioning path that supplies new principals.

from __future__ import annotations

from datetime import timedelta

from ..errors import InviteError
from ..extensions import db
from ..models import InviteToken
from ..time_utils import to_naive_utc, utcnow
from .auth_service import generate_token, hash_token, normalize_email
from .principal_service import (
    create_principal,
    get_principal_by_email,
    require_can_assign,
    validate_scope_references,
)


def create_invite(
    actor,
    *,
    email: str,
    role: str,
    retailer_id: int | None = None,
    location_id: int | None = None,
    ttl: timedelta = timedelta(hours=72),
    clock=utcnow,
) -> tuple[InviteToken, str]:
    """
    Create a single-use invite. Returns (invite, plaintext_token).

    The actor's authority is checked now, so acceptance later needs none.
    Raises Forbidden, ScopeInvariantError or InviteError.
    """
    email = normalize_email(email)
    require_can_assign(actor, role, retailer_id)
    validate_scope_references(role, retailer_id, location_id)
    if get_principal_by_email(email) is not None:
        raise InviteError("Email already registered")

    token = generate_token()
    invite = InviteToken(
        token_hash=hash_token(token),
        email=email,
        role=role,
        retailer_id=retailer_id,
        location_id=location_id,
        invited_by=actor.id,
        expires_at=clock() + ttl,
    )
    db.session.add(invite)
    db.session.commit()
    return invite, token


def accept_invite(token: str, password: str, *, bcrypt_rounds: int = 12, clock=utcnow):
    """
    Turn an invite into a principal. Raises InviteError for unknown, used
    or expired tokens and PasswordValidationError for weak passwords.
    """
    invite = db.session.query(InviteToken).filter_by(token_hash=hash_token(token or "")).first()
    if invite is None or invite.used_at is not None:
        raise InviteError("Invite is invalid or already used")
    now = clock()
    if to_naive_utc(invite.expires_at) <= now:
        raise InviteError("Invite has expired")

    principal = create_principal(
        email=invite.email,
        password=password,
        role=invite.role,
        retailer_id=invite.retailer_id,
        location_id=invite.location_id,
        bcrypt_rounds=bcrypt_rounds,
        commit=False,
    )
    principal.created_by = invite.invited_by
    db.session.flush()
    invite.used_at = now
    invite.used_by = principal.id
    db.session.commit()
    return principal
