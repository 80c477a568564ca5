# Overview: Policy engine - pure (role, resource path, action) -> allow/deny.

"""
RBAC Policy Engine

Resolution order:
1. owner -> ALLOW, before the table is consulted. This is a fixed escape
   hatch so that editing rules can never lock the owner out.
2. No rule matches the path at all (literal or wildcard) -> ALLOW for any
   caller (open by default, closed by explicit rule). Deliberate; see DESIGN.md.
3. Among the path's rules, keep those covering the action. None -> DENY.
   Otherwise the governing rule is:
   - a fully literal match beats any wildcard match
   - otherwise the fewest wildcard segments wins
   - ties go to the rule registered first
4. Governing rule -> ALLOW iff the caller's role is listed. Unauthenticated
   callers (role None) are never listed.

The compiled table is immutable. reload() builds a complete new table and
swaps the reference; a failed reload leaves the old table in place.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional

from ..errors import ConfigurationError
from .actions import ALL_ACTIONS
from .helpers import is_wildcard, parse_pattern, segments_match, split_path
from .roles import ALL_ROLES, Role


class Decision:
    ALLOW = "allow"
    DENY = "deny"


@dataclass(frozen=True)
class CompiledRule:
    pattern: str
    segments: tuple[str, ...]
    allowed_roles: frozenset[str]
    actions: Optional[frozenset[str]]
    description: str
    order: int

    @property
    def wildcard_count(self) -> int:
        return sum(1 for s in self.segments if is_wildcard(s))

    @property
    def specificity(self) -> tuple[int, int]:
        # Lower sorts first: fewer wildcards, then earlier registration.
        return (self.wildcard_count, self.order)

    def matches_path(self, path_segments: tuple[str, ...]) -> bool:
        return segments_match(self.segments, path_segments)

    def covers(self, action: str | None) -> bool:
        return self.actions is None or action in self.actions

    def to_dict(self) -> dict:
        return {
            "path": self.pattern,
            "allowed_roles": sorted(self.allowed_roles),
            "actions": sorted(self.actions) if self.actions is not None else None,
            "description": self.description,
        }


def compile_rules(rules: Iterable) -> tuple[CompiledRule, ...]:
    """
    Validate and compile (path, allowed_roles, actions, description) tuples.

    Raises ConfigurationError on the first malformed rule.
    """
    compiled = []
    for order, rule in enumerate(rules):
        try:
            path, allowed_roles, actions, description = rule
        except (TypeError, ValueError):
            raise ConfigurationError(f"Rule #{order} must be (path, allowed_roles, actions, description)")

        segments = parse_pattern(path)

        if isinstance(allowed_roles, str) or not allowed_roles:
            raise ConfigurationError(f"Rule {path!r} must list at least one role")
        unknown_roles = set(allowed_roles) - set(ALL_ROLES)
        if unknown_roles:
            raise ConfigurationError(f"Rule {path!r} names unknown roles: {sorted(unknown_roles)}")

        action_set = None
        if actions is not None:
            if isinstance(actions, str) or not actions:
                raise ConfigurationError(f"Rule {path!r} actions must be None or a non-empty collection")
            action_set = frozenset(actions)
            unknown_actions = action_set - ALL_ACTIONS
            if unknown_actions:
                raise ConfigurationError(f"Rule {path!r} names unknown actions: {sorted(unknown_actions)}")

        compiled.append(CompiledRule(
            pattern="/".join(segments),
            segments=segments,
            allowed_roles=frozenset(allowed_roles),
            actions=action_set,
            description=description or "",
            order=order,
        ))
    return tuple(compiled)


class PolicyEngine:
    """Read-only rule table plus the resolution algorithm."""

    def __init__(self, rules: Iterable):
        self._rules = compile_rules(rules)

    @property
    def rules(self) -> tuple[CompiledRule, ...]:
        return self._rules

    def reload(self, rules: Iterable) -> None:
        """Controlled configuration reload. Raises ConfigurationError and keeps the old table on failure."""
        self._rules = compile_rules(rules)

    def _lookup(self, resource_path: str, action: str | None) -> tuple[bool, Optional[CompiledRule]]:
        """(path is governed, governing rule for action). The rule is None when no matching rule lists the action."""
        path_segments = split_path(resource_path)
        matches = [r for r in self._rules if r.matches_path(path_segments)]
        if not matches:
            return False, None
        candidates = [r for r in matches if r.covers(action)]
        if not candidates:
            return True, None
        return True, min(candidates, key=lambda r: r.specificity)

    def governing_rule(self, resource_path: str, action: str | None = None) -> Optional[CompiledRule]:
        return self._lookup(resource_path, action)[1]

    def resolve(self, role: str | None, resource_path: str, action: str | None = None) -> str:
        if role == Role.OWNER:
            return Decision.ALLOW

        governed, rule = self._lookup(resource_path, action)
        if not governed:
            return Decision.ALLOW
        if rule is None or role is None:
            return Decision.DENY
        return Decision.ALLOW if role in rule.allowed_roles else Decision.DENY

    def is_allowed(self, principal, resource_path: str, action: str | None = None) -> bool:
        role = getattr(principal, "role", None) if principal is not None else None
        return self.resolve(role, resource_path, action) == Decision.ALLOW

    def explain(self, role: str | None, resource_path: str, action: str | None = None) -> dict:
        """Describe how a decision was reached (admin tooling)."""
        rule = None
        if role == Role.OWNER:
            basis = "owner_short_circuit"
        else:
            governed, rule = self._lookup(resource_path, action)
            if not governed:
                basis = "default_open"
            elif rule is None:
                basis = "action_not_listed"
            else:
                basis = "rule"
        return {
            "role": role,
            "path": resource_path,
            "action": action,
            "decision": self.resolve(role, resource_path, action),
            "basis": basis,
            "rule": rule.to_dict() if rule is not None else None,
        }
