# Overview: Property-based coverage for the refresh expiry rule.

"""
For any sequence of refreshes, the new expiry is min(now + ttl, created_at +
max_lifetime): never past the ceiling, never behind the clock while the
session lives, and once the ceiling passes the session cannot be revived.
"""

from datetime import timedelta

import pytest
from hypothesis import HealthCheck, given, settings, strategies as st

from authcore.core import AuthCore
from authcore.errors import SessionExpired
from authcore.extensions import db
from authcore.models import AuthSession
from authcore.time_utils import to_naive_utc

from conftest import credentials

TTL = timedelta(minutes=60)
LIFETIME = timedelta(hours=3)


@pytest.fixture
def short_lived_core(app, clock):
    config = dict(app.config)
    config.update({"SESSION_TTL_MINUTES": 60, "SESSION_MAX_LIFETIME_HOURS": 3, "MAX_CONCURRENT_SESSIONS": 100})
    return AuthCore.from_config(config, clock=clock)


@settings(
    max_examples=25,
    deadline=None,
    suppress_health_check=[HealthCheck.function_scoped_fixture],
)
@given(steps=st.lists(st.integers(min_value=1, max_value=29), min_size=1, max_size=20))
def test_refresh_respects_lifetime_ceiling(short_lived_core, clock, retailer_user_a, steps):
    core = short_lived_core
    handle = core.authenticate(credentials(retailer_user_a))
    created = clock()
    expires_at = handle.expires_at
    token = handle.refresh_token

    for minutes in steps:
        clock.advance(minutes=minutes)
        now = clock()

        if now > expires_at:
            with pytest.raises(SessionExpired):
                core.refresh(token)
            break

        rotated = core.refresh(token)
        assert rotated.expires_at == min(now + TTL, created + LIFETIME)
        assert rotated.expires_at <= created + LIFETIME

        row = db.session.get(AuthSession, rotated.session_id)
        assert to_naive_utc(row.last_activity) <= to_naive_utc(row.expires_at)

        expires_at = rotated.expires_at
        token = rotated.refresh_token
