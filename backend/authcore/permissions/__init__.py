# Overview: Permission system package.
# Re-exports the public policy API.

from .actions import Action, ALL_ACTIONS, METHOD_ACTIONS
from .definitions import DEFAULT_RULES, ROUTE_RULES, RESOURCE_RULES
from .engine import CompiledRule, Decision, PolicyEngine, compile_rules
from .roles import (
    ALL_ROLES,
    ROLE_RANK,
    ROLE_SCOPE,
    Role,
    ScopeLevel,
    is_valid_role,
    outranks,
    validate_scope,
)

__all__ = [
    "Action",
    "ALL_ACTIONS",
    "METHOD_ACTIONS",
    "DEFAULT_RULES",
    "ROUTE_RULES",
    "RESOURCE_RULES",
    "CompiledRule",
    "Decision",
    "PolicyEngine",
    "compile_rules",
    "ALL_ROLES",
    "ROLE_RANK",
    "ROLE_SCOPE",
    "Role",
    "ScopeLevel",
    "is_valid_role",
    "outranks",
    "validate_scope",
]
