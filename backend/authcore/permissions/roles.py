# Overview: Role taxonomy, role ranking and the role/scope invariant.

from ..errors import ScopeInvariantError


class Role:
    """Fixed role enumeration."""
    OWNER = "owner"
    BACKOFFICE = "backoffice"
    RETAILER = "retailer"
    LOCATION_USER = "location_user"


ALL_ROLES = (Role.OWNER, Role.BACKOFFICE, Role.RETAILER, Role.LOCATION_USER)

# Higher outranks lower. Role and scope changes require the actor to outrank the target.
ROLE_RANK = {
    Role.OWNER: 40,
    Role.BACKOFFICE: 30,
    Role.RETAILER: 20,
    Role.LOCATION_USER: 10,
}


class ScopeLevel:
    GLOBAL = "global"
    RETAILER = "retailer"
    LOCATION = "location"


ROLE_SCOPE = {
    Role.OWNER: ScopeLevel.GLOBAL,
    Role.BACKOFFICE: ScopeLevel.GLOBAL,
    Role.RETAILER: ScopeLevel.RETAILER,
    Role.LOCATION_USER: ScopeLevel.LOCATION,
}


def is_valid_role(role) -> bool:
    return role in ROLE_RANK


def outranks(actor_role: str, target_role: str) -> bool:
    return ROLE_RANK.get(actor_role, 0) > ROLE_RANK.get(target_role, 0)


def validate_scope(role: str, retailer_id, location_id) -> None:
    """
    Enforce the role/scope invariant.

    - owner, backoffice: neither retailer nor location
    - retailer: retailer, no location
    - location_user: retailer AND location

    Raises ScopeInvariantError.
    """
    if not is_valid_role(role):
        raise ScopeInvariantError(f"Unknown role: {role!r}")

    level = ROLE_SCOPE[role]
    if level == ScopeLevel.GLOBAL:
        if retailer_id is not None or location_id is not None:
            raise ScopeInvariantError(f"Role {role} must not carry a retailer or location scope")
    elif level == ScopeLevel.RETAILER:
        if retailer_id is None:
            raise ScopeInvariantError("Role retailer requires a retailer scope")
        if location_id is not None:
            raise ScopeInvariantError("Role retailer must not carry a location scope")
    else:
        if retailer_id is None or location_id is None:
            raise ScopeInvariantError("Role location_user requires both retailer and location scope")
