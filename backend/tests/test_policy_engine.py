# Overview: Pytest coverage for the RBAC policy engine.

"""
Policy Engine Tests

Resolution rules under test:
1. owner is always allowed, whatever the table says
2. the most specific matching rule governs (literal beats wildcard)
3. paths with no rule are open; governed paths are closed to unlisted actions
4. a malformed table is rejected at load time and never half-applied
"""

import pytest

from authcore.errors import ConfigurationError
from authcore.permissions import (
    DEFAULT_RULES,
    Action,
    Decision,
    PolicyEngine,
    Role,
    compile_rules,
)
from authcore.permissions.helpers import segments_match, split_path


@pytest.fixture
def engine():
    return PolicyEngine(DEFAULT_RULES)


class TestPathMatching:
    def test_split_path_ignores_outer_slashes(self):
        assert split_path("/api/orders/1/") == ("api", "orders", "1")
        assert split_path("") == ()

    def test_wildcard_matches_exactly_one_segment(self):
        rule = ("orders", ":id")
        assert segments_match(rule, ("orders", "42"))
        assert not segments_match(rule, ("orders",))
        assert not segments_match(rule, ("orders", "42", "edit"))

    def test_empty_segment_never_matches(self):
        assert not segments_match(("orders", ":id"), ("orders", ""))


class TestResolution:
    def test_owner_short_circuits_every_rule(self, engine):
        """owner is allowed even on owner-excluded rules and unknown actions."""
        engine.reload([("shipping", (Role.BACKOFFICE,), None, "not for owners")])
        assert engine.resolve(Role.OWNER, "shipping") == Decision.ALLOW
        assert engine.resolve(Role.OWNER, "api/admin/anything", Action.DELETE) == Decision.ALLOW

    def test_unmatched_path_is_open(self, engine):
        """No governing rule means allow, for any role and for anonymous callers."""
        assert engine.resolve(Role.LOCATION_USER, "api/auth/login", Action.CREATE) == Decision.ALLOW
        assert engine.resolve(None, "api/auth/login", Action.CREATE) == Decision.ALLOW

    def test_anonymous_caller_denied_on_governed_path(self, engine):
        assert engine.resolve(None, "api/customers", Action.READ) == Decision.DENY

    def test_listed_role_allowed(self, engine):
        assert engine.resolve(Role.LOCATION_USER, "api/customers/5", Action.READ) == Decision.ALLOW

    def test_action_restricted_rule(self, engine):
        """Retail staff may read but not delete customers."""
        assert engine.resolve(Role.RETAILER, "api/customers/5", Action.UPDATE) == Decision.ALLOW
        assert engine.resolve(Role.RETAILER, "api/customers/5", Action.DELETE) == Decision.DENY
        assert engine.resolve(Role.BACKOFFICE, "api/customers/5", Action.DELETE) == Decision.ALLOW

    def test_literal_beats_wildcard(self):
        """orders/new governs over orders/:id regardless of registration order."""
        engine = PolicyEngine([
            ("orders/:id", (Role.RETAILER, Role.BACKOFFICE), None, "detail"),
            ("orders/new", (Role.BACKOFFICE,), None, "create form"),
        ])
        assert engine.resolve(Role.RETAILER, "orders/7") == Decision.ALLOW
        assert engine.resolve(Role.RETAILER, "orders/new") == Decision.DENY
        assert engine.governing_rule("orders/new").pattern == "orders/new"

    def test_fewest_wildcards_then_first_registered(self):
        engine = PolicyEngine([
            ("a/:x/:y", (Role.RETAILER,), None, "two wildcards"),
            ("a/:x/c", (Role.BACKOFFICE,), None, "one wildcard, first"),
            ("a/b/:y", (Role.LOCATION_USER,), None, "one wildcard, second"),
        ])
        assert engine.governing_rule("a/b/c").description == "one wildcard, first"
        assert engine.governing_rule("a/z/z").description == "two wildcards"

    def test_location_user_denied_admin_views(self, engine):
        """Location users never reach distributor-only routes."""
        assert engine.resolve(Role.LOCATION_USER, "admin/users") == Decision.DENY
        assert engine.resolve(Role.LOCATION_USER, "api/admin/audit-events", Action.READ) == Decision.DENY

    def test_revoke_any_session_is_owner_only(self, engine):
        path = "api/admin/sessions/abc/revoke"
        assert engine.resolve(Role.BACKOFFICE, path, Action.REVOKE) == Decision.DENY
        assert engine.resolve(Role.OWNER, path, Action.REVOKE) == Decision.ALLOW

    def test_unlisted_action_on_governed_path_denied(self, engine):
        """A path with rules is closed for actions none of them list, even for listed roles."""
        assert engine.resolve(None, "api/admin/audit-events", Action.DELETE) == Decision.DENY
        assert engine.resolve(None, "api/customers", Action.MANAGE_ROLES) == Decision.DENY
        assert engine.resolve(Role.LOCATION_USER, "api/admin/principals", Action.UPDATE) == Decision.DENY
        assert engine.resolve(Role.LOCATION_USER, "api/shipments/5", Action.CREATE) == Decision.DENY
        assert engine.resolve(Role.BACKOFFICE, "api/admin/audit-events", Action.DELETE) == Decision.DENY
        assert engine.governing_rule("api/admin/audit-events", Action.DELETE) is None

    def test_missing_action_only_matches_unrestricted_rules(self):
        engine = PolicyEngine([("reports", (Role.RETAILER,), (Action.READ,), "read only")])
        assert engine.resolve(Role.RETAILER, "reports") == Decision.DENY
        assert engine.resolve(Role.RETAILER, "reports", Action.READ) == Decision.ALLOW

    def test_is_allowed_takes_principal(self, engine, retailer_user_a):
        assert engine.is_allowed(retailer_user_a, "api/admin/principals", Action.READ)
        assert not engine.is_allowed(retailer_user_a, "api/admin/principals", Action.CREATE)
        assert not engine.is_allowed(None, "api/admin/principals", Action.READ)


class TestExplain:
    def test_explain_reports_basis(self, engine):
        assert engine.explain(Role.OWNER, "shipping")["basis"] == "owner_short_circuit"
        assert engine.explain(Role.RETAILER, "nowhere/special")["basis"] == "default_open"

        explained = engine.explain(Role.RETAILER, "shipping")
        assert explained["basis"] == "rule"
        assert explained["decision"] == Decision.DENY
        assert explained["rule"]["path"] == "shipping"

    def test_explain_unlisted_action(self, engine):
        explained = engine.explain(None, "api/admin/audit-events", Action.DELETE)
        assert explained["basis"] == "action_not_listed"
        assert explained["decision"] == Decision.DENY
        assert explained["rule"] is None


class TestRuleValidation:
    @pytest.mark.parametrize("rule", [
        ("orders", (Role.RETAILER,), None),                      # wrong arity
        ("", (Role.RETAILER,), None, "empty path"),
        ("orders/:", (Role.RETAILER,), None, "bare wildcard"),
        ("orders//x", (Role.RETAILER,), None, "empty segment"),
        ("orders", (), None, "no roles"),
        ("orders", "retailer", None, "roles as string"),
        ("orders", ("cashier",), None, "unknown role"),
        ("orders", (Role.RETAILER,), ("fly",), "unknown action"),
        ("orders", (Role.RETAILER,), (), "empty actions"),
        (42, (Role.RETAILER,), None, "path not a string"),
    ])
    def test_malformed_rule_rejected(self, rule):
        with pytest.raises(ConfigurationError):
            compile_rules([rule])

    def test_failed_reload_keeps_previous_table(self, engine):
        before = engine.rules
        with pytest.raises(ConfigurationError):
            engine.reload([("orders", ("cashier",), None, "bad")])
        assert engine.rules is before
        assert engine.resolve(Role.RETAILER, "shipping") == Decision.DENY

    def test_default_table_compiles(self):
        assert len(compile_rules(DEFAULT_RULES)) == len(DEFAULT_RULES)
