# Overview: Pytest coverage for login throttling.

"""
Login Throttle Tests

SECURITY TESTS:
1. Five failures in the window block the email, even for the right password
2. The block reveals nothing about whether the account exists
3. The block lapses after the block duration
4. A successful login clears the email counter
5. One origin spraying many emails is blocked on its own counter
"""

import pytest

from authcore.errors import InvalidCredentials, RateLimited
from authcore.extensions import db
from authcore.models import AuditEvent, AuthSession, EventType

from conftest import credentials


def fail_login(core, email, times, **kwargs):
    for _ in range(times):
        with pytest.raises(InvalidCredentials):
            core.authenticate(credentials(email, "WrongPass1!", **kwargs))


class TestEmailThrottle:
    def test_sixth_attempt_blocked_even_with_correct_password(self, core, retailer_user_a):
        fail_login(core, retailer_user_a, 5)

        with pytest.raises(RateLimited) as blocked:
            core.authenticate(credentials(retailer_user_a))

        assert blocked.value.retry_after_seconds == 15 * 60
        assert db.session.query(AuthSession).count() == 0
        assert db.session.query(AuditEvent).filter_by(event_type=EventType.LOGIN_BLOCKED).count() == 1

    def test_unknown_email_blocked_the_same_way(self, core):
        fail_login(core, "ghost@example.com", 5)
        with pytest.raises(RateLimited):
            core.authenticate(credentials("ghost@example.com"))

    def test_block_lapses(self, core, clock, retailer_user_a):
        fail_login(core, retailer_user_a, 5)
        clock.advance(minutes=15, seconds=1)

        handle = core.authenticate(credentials(retailer_user_a))
        assert handle.session_id

    def test_failures_outside_window_do_not_accumulate(self, core, clock, retailer_user_a):
        fail_login(core, retailer_user_a, 4)
        clock.advance(minutes=16)
        fail_login(core, retailer_user_a, 4)

        assert core.authenticate(credentials(retailer_user_a)).session_id

    def test_success_clears_email_counter(self, core, retailer_user_a):
        fail_login(core, retailer_user_a, 4)
        core.authenticate(credentials(retailer_user_a))
        fail_login(core, retailer_user_a, 4)

        assert core.sessions.throttle.status(retailer_user_a.email)["failed_attempts"] == 4
        assert core.authenticate(credentials(retailer_user_a)).session_id

    def test_status_reports_lock(self, core, retailer_user_a):
        fail_login(core, retailer_user_a, 5)
        status = core.sessions.throttle.status(retailer_user_a.email)
        assert status["locked"] is True
        assert status["seconds_until_unlock"] == 15 * 60


class TestOriginThrottle:
    def test_origin_spraying_many_emails_blocked(self, core, retailer_user_a):
        limit = core.sessions.throttle.origin_max_attempts
        for i in range(limit):
            fail_login(core, f"user{i}@example.com", 1, origin="203.0.113.50")

        with pytest.raises(RateLimited):
            core.authenticate(credentials(retailer_user_a, origin="203.0.113.50"))
        # Same account from elsewhere is unaffected
        assert core.authenticate(credentials(retailer_user_a, origin="198.51.100.20")).session_id

    def test_prune_removes_lapsed_rows(self, core, clock, retailer_user_a):
        fail_login(core, retailer_user_a, 2)
        clock.advance(hours=1)
        assert core.sessions.throttle.prune() == 2
