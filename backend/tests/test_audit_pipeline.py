# Overview: Pytest coverage for the audit trail, risk scoring and security alerts.

"""
Audit & Risk Pipeline Tests

1. Risk signals are computed from event data and history, deterministically
2. High scores raise a SecurityAlert, an outbox row and a signal
3. A failing audit write never fails the caller
4. Audit rows are append-only
"""

import logging

import pytest
from sqlalchemy import delete, update

from authcore.errors import AppendOnlyViolation, InvalidCredentials
from authcore.extensions import db, security_alert_raised
from authcore.models import AuditEvent, EventType, OutboxEvent, Outcome, SecurityAlert
from authcore.services import audit_service
from authcore.services.risk_service import Flag, RiskScorer, haversine_km, risk_level

from conftest import credentials

NEW_YORK = {"lat": 40.7128, "lon": -74.0060}
TOKYO = {"lat": 35.6762, "lon": 139.6503}
BOSTON = {"lat": 42.3601, "lon": -71.0589}


def last_event(event_type) -> AuditEvent:
    return (
        db.session.query(AuditEvent)
        .filter_by(event_type=event_type)
        .order_by(AuditEvent.id.desc())
        .first()
    )


class TestRiskHelpers:
    def test_risk_levels(self):
        assert [risk_level(s) for s in (0, 24, 25, 50, 74, 75, 100)] == [
            "low", "low", "medium", "high", "high", "critical", "critical",
        ]

    def test_haversine(self):
        assert haversine_km(0, 0, 0, 0) == 0
        assert 10_800 < haversine_km(NEW_YORK["lat"], NEW_YORK["lon"], TOKYO["lat"], TOKYO["lon"]) < 10_900


class TestRiskSignals:
    def test_first_login_scores_zero(self, core, retailer_user_a):
        core.authenticate(credentials(retailer_user_a, device_id="laptop", geo=NEW_YORK))
        event = last_event(EventType.LOGIN_SUCCESS)
        assert event.risk_score == 0
        assert event.anomaly_flags == []

    def test_new_device_and_origin(self, core, clock, retailer_user_a):
        core.authenticate(credentials(retailer_user_a, device_id="laptop"))
        clock.advance(hours=2)
        core.authenticate(credentials(retailer_user_a, device_id="phone", origin="192.0.2.44"))

        event = last_event(EventType.LOGIN_SUCCESS)
        assert set(event.anomaly_flags) == {Flag.NEW_DEVICE, Flag.NEW_ORIGIN}
        assert event.risk_score == 25

    def test_impossible_travel(self, core, clock, retailer_user_a):
        core.authenticate(credentials(retailer_user_a, geo=NEW_YORK))
        clock.advance(hours=1)
        core.authenticate(credentials(retailer_user_a, geo=TOKYO))

        event = last_event(EventType.LOGIN_SUCCESS)
        assert event.anomaly_flags == [Flag.IMPOSSIBLE_TRAVEL]
        assert event.risk_score == 35

    def test_plausible_travel_not_flagged(self, core, clock, retailer_user_a):
        core.authenticate(credentials(retailer_user_a, geo=NEW_YORK))
        clock.advance(hours=2)
        core.authenticate(credentials(retailer_user_a, geo=BOSTON))
        assert last_event(EventType.LOGIN_SUCCESS).risk_score == 0

    def test_failed_attempt_velocity_capped(self, core, retailer_user_a):
        for _ in range(4):
            with pytest.raises(InvalidCredentials):
                core.authenticate(credentials(retailer_user_a, "WrongPass1!", origin="203.0.113.9"))

        scorer = RiskScorer(clock=core.clock)
        assessment = scorer.score(EventType.LOGIN_FAILED, origin="203.0.113.9", outcome=Outcome.FAILURE)
        assert assessment.flags == [Flag.FAILED_ATTEMPT_VELOCITY]
        assert assessment.score == 40 + 5

    def test_off_hours(self, core, clock, retailer_user_a):
        for _ in range(5):
            core.authenticate(credentials(retailer_user_a))
            clock.advance(days=1)
        clock.advance(hours=10)  # 00:00 instead of the usual 14:00

        core.authenticate(credentials(retailer_user_a))
        event = last_event(EventType.LOGIN_SUCCESS)
        assert Flag.OFF_HOURS in event.anomaly_flags

    def test_scoring_is_deterministic(self, core, clock, retailer_user_a):
        core.authenticate(credentials(retailer_user_a, device_id="laptop", geo=NEW_YORK))
        clock.advance(minutes=30)
        scorer = RiskScorer(clock=core.clock)
        kwargs = dict(principal_id=retailer_user_a.id, origin="192.0.2.1", device_id="tablet", payload={"geo": TOKYO})

        first = scorer.score(EventType.LOGIN_SUCCESS, **kwargs)
        second = scorer.score(EventType.LOGIN_SUCCESS, **kwargs)
        assert (first.score, first.flags) == (second.score, second.flags)


class TestAlerts:
    def test_high_risk_login_raises_alert(self, core, clock, retailer_user_a):
        """Failures from one origin, then a success there from across the world."""
        core.authenticate(credentials(retailer_user_a, geo=NEW_YORK))
        clock.advance(minutes=10)
        for _ in range(4):
            with pytest.raises(InvalidCredentials):
                core.authenticate(credentials(retailer_user_a, "WrongPass1!", origin="203.0.113.9"))

        received = []

        def receiver(sender, alert, event):
            received.append(alert.id)

        with security_alert_raised.connected_to(receiver):
            core.authenticate(credentials(retailer_user_a, origin="203.0.113.9", geo=TOKYO))

        event = last_event(EventType.LOGIN_SUCCESS)
        assert event.risk_score == 40 + 35 + 10
        alert = db.session.query(SecurityAlert).filter_by(audit_event_id=event.id).one()
        assert alert.severity == "critical"
        assert received == [alert.id]

        outbox = db.session.query(OutboxEvent).filter_by(entity="security_alerts").one()
        assert outbox.entity_id == str(alert.id)

    def test_low_risk_raises_nothing(self, core, retailer_user_a):
        core.authenticate(credentials(retailer_user_a))
        assert db.session.query(SecurityAlert).count() == 0

    def test_resolve_alert(self, core, owner):
        core.audit.alert_threshold = 0
        event = core.record_audit_event(EventType.ACCESS_DENIED, principal=owner, outcome=Outcome.FAILURE)
        alert = db.session.query(SecurityAlert).filter_by(audit_event_id=event.id).one()

        resolved = core.audit.resolve_alert(alert.id, actor=owner)
        assert resolved.resolved_by == owner.id
        assert core.audit.resolve_alert(999999, actor=owner) is None

    def test_failing_receiver_does_not_fail_record(self, core, owner):
        core.audit.alert_threshold = 0

        def broken(sender, **kwargs):
            raise RuntimeError("pager down")

        with security_alert_raised.connected_to(broken):
            event = core.record_audit_event(EventType.ACCESS_DENIED, principal=owner, outcome=Outcome.FAILURE)
        assert event is not None
        assert db.session.query(SecurityAlert).count() == 1


class TestFailureIsolation:
    def test_write_failure_is_swallowed_and_counted(self, core, retailer_user_a, monkeypatch, caplog):
        def explode(*args, **kwargs):
            raise RuntimeError("disk full")

        monkeypatch.setattr(core.audit.scorer, "score", explode)

        with caplog.at_level(logging.ERROR, logger="authcore.audit"):
            handle = core.authenticate(credentials(retailer_user_a))

        assert handle.session_id
        assert core.audit.failures == 1
        assert db.session.query(AuditEvent).count() == 0
        assert "Failed to record audit event LOGIN_SUCCESS" in caplog.text

    def test_record_without_principal(self, core):
        event = core.record_audit_event(EventType.LOGIN_FAILED, outcome=Outcome.FAILURE, origin="192.0.2.9")
        assert event.principal_id is None
        assert event.origin == "192.0.2.9"


class TestAppendOnly:
    def test_update_rejected(self, core, owner):
        event = core.record_audit_event(EventType.PRINCIPAL_CREATED, principal=owner)
        event.outcome = Outcome.FAILURE
        with pytest.raises(AppendOnlyViolation):
            db.session.commit()
        db.session.rollback()

    def test_delete_rejected(self, core, owner):
        event = core.record_audit_event(EventType.PRINCIPAL_CREATED, principal=owner)
        db.session.delete(event)
        with pytest.raises(AppendOnlyViolation):
            db.session.commit()
        db.session.rollback()

    def test_bulk_statements_rejected(self, core, owner):
        core.record_audit_event(EventType.PRINCIPAL_CREATED, principal=owner)
        with pytest.raises(AppendOnlyViolation):
            db.session.execute(update(AuditEvent).values(risk_score=0))
        with pytest.raises(AppendOnlyViolation):
            db.session.execute(delete(AuditEvent))
        db.session.rollback()
        assert db.session.query(AuditEvent).count() == 1

    def test_correction_is_a_new_event(self, core, owner):
        original = core.record_audit_event(EventType.ROLE_CHANGED, principal=owner, payload={"role": "retailer"})
        correction = core.audit.correct(original.id, principal=owner, reason="wrong target recorded")

        assert correction.id != original.id
        assert correction.event_data["corrects"] == original.id
        assert db.session.get(AuditEvent, original.id).event_data == {"role": "retailer"}

    def test_audit_module_logger_name(self):
        assert audit_service.fallback_logger.name == "authcore.audit"
