# Overview: Pytest coverage for row-scope enforcement on the SQLAlchemy session.

"""
Scope Enforcement Tests

SECURITY TESTS: prove that every ORM read and write is narrowed to the
bound principal's scope, with no cooperation from the calling code.

Covered:
1. Visibility truth table per role
2. Out-of-scope fetch is a 403, same as a missing row
3. Writes that leave the scope are rejected before any SQL runs
4. A rejected flush leaves no partial write
5. ORM bulk UPDATE/DELETE are narrowed and their assignments checked
6. Nothing bound means nothing visible
7. A denial that escapes an acting_as() block is rolled back and audited
"""

import pytest
from sqlalchemy import delete, select, update

from authcore.errors import Forbidden
from authcore.extensions import db
from authcore.extensions import scope_violation
from authcore.models import AuditEvent, Customer, EventType, Order, Outcome, PrincipalStatus, Retailer
from authcore.services.scope_service import (
    ScopeKind,
    ScopePredicate,
    acting_as,
    current_predicate,
    scope_predicate,
    scoped_get,
    system_scope,
)


def visible_customer_ids():
    return {c.id for c in db.session.execute(select(Customer)).scalars()}


def customer_row(customer_id):
    """Read a row's stored scope regardless of any binding."""
    with system_scope():
        return db.session.execute(
            select(Customer.retailer_id, Customer.location_id, Customer.name).where(Customer.id == customer_id)
        ).one()


class TestScopePredicate:
    def test_predicate_per_role(self, owner, backoffice, retailer_user_a, location_user_a1, retailer_a, location_a1):
        assert scope_predicate(owner).allows_all
        assert scope_predicate(backoffice).allows_all

        retailer = scope_predicate(retailer_user_a)
        assert retailer.kind == ScopeKind.RETAILER
        assert retailer.retailer_id == retailer_a.id

        location = scope_predicate(location_user_a1)
        assert location.kind == ScopeKind.LOCATION
        assert (location.retailer_id, location.location_id) == (retailer_a.id, location_a1.id)

    def test_inactive_principal_sees_nothing(self, owner):
        owner.status = PrincipalStatus.SUSPENDED
        assert scope_predicate(owner).allows_none
        assert scope_predicate(None).allows_none

    def test_unscoped_entity_class_rejected(self, owner):
        with pytest.raises(TypeError):
            scope_predicate(owner, Retailer)
        assert scope_predicate(owner, Customer).allows_all

    def test_matches_values(self):
        predicate = ScopePredicate(ScopeKind.LOCATION, retailer_id=1, location_id=10)
        assert predicate.matches_values(1, 10)
        assert not predicate.matches_values(1, None)
        assert not predicate.matches_values(2, 10)


class TestVisibility:
    def test_truth_table(self, customers, owner, backoffice, retailer_user_a, retailer_user_b, location_user_a1):
        everything = {customers.a1, customers.a2, customers.a_wide, customers.b1}
        expected = [
            (owner, everything),
            (backoffice, everything),
            (retailer_user_a, {customers.a1, customers.a2, customers.a_wide}),
            (retailer_user_b, {customers.b1}),
            # retailer-wide rows have no location, so a location user never sees them
            (location_user_a1, {customers.a1}),
        ]
        for principal, ids in expected:
            with acting_as(principal):
                assert visible_customer_ids() == ids, principal.role

    def test_nothing_bound_fails_closed(self, customers):
        assert current_predicate().allows_none
        assert visible_customer_ids() == set()

    def test_suspended_principal_sees_nothing(self, customers, retailer_user_a):
        retailer_user_a.status = PrincipalStatus.SUSPENDED
        db.session.commit()
        with acting_as(retailer_user_a):
            assert visible_customer_ids() == set()

    def test_binding_restored_after_block(self, customers, owner, location_user_a1):
        with acting_as(owner):
            with acting_as(location_user_a1):
                assert visible_customer_ids() == {customers.a1}
            assert len(visible_customer_ids()) == 4
        assert current_predicate().allows_none

    def test_joins_are_narrowed_too(self, customers, location_user_a1, retailer_a, location_a1, location_b1, retailer_b):
        with system_scope():
            db.session.add_all([
                Order(reference="ORD-A1", customer_id=customers.a1, retailer_id=retailer_a.id, location_id=location_a1.id),
                Order(reference="ORD-B1", customer_id=customers.b1, retailer_id=retailer_b.id, location_id=location_b1.id),
            ])
            db.session.commit()

        with acting_as(location_user_a1):
            rows = db.session.execute(
                select(Order.reference, Customer.name).join(Customer, Customer.id == Order.customer_id)
            ).all()
        assert rows == [("ORD-A1", "Alice A1")]


class TestScopedGet:
    def test_out_of_scope_row_forbidden(self, customers, location_user_a1):
        """Reading a customer at another location: 403, nothing disclosed."""
        with acting_as(location_user_a1):
            assert scoped_get(Customer, customers.a1).id == customers.a1
            with pytest.raises(Forbidden):
                scoped_get(Customer, customers.a2)
            with pytest.raises(Forbidden):
                scoped_get(Customer, customers.b1)

    def test_missing_row_indistinguishable(self, customers, location_user_a1):
        with acting_as(location_user_a1):
            with pytest.raises(Forbidden) as missing:
                scoped_get(Customer, 999999)
            with pytest.raises(Forbidden) as foreign:
                scoped_get(Customer, customers.b1)
        assert missing.value.to_dict() == foreign.value.to_dict()

    def test_row_cached_under_wider_scope_not_served(self, customers, owner, location_user_a1):
        with acting_as(owner):
            scoped_get(Customer, customers.b1)
        with acting_as(location_user_a1):
            with pytest.raises(Forbidden):
                scoped_get(Customer, customers.b1)


class TestWriteChecks:
    def test_insert_outside_scope_rejected(self, customers, retailer_user_a, retailer_b):
        with acting_as(retailer_user_a):
            db.session.add(Customer(name="Smuggled", retailer_id=retailer_b.id))
            with pytest.raises(Forbidden):
                db.session.commit()
            db.session.rollback()

        with system_scope():
            assert db.session.query(Customer).filter_by(name="Smuggled").count() == 0

    def test_insert_inside_scope_allowed(self, customers, retailer_user_a, retailer_a, location_a2):
        with acting_as(retailer_user_a):
            db.session.add(Customer(name="New A2", retailer_id=retailer_a.id, location_id=location_a2.id))
            db.session.commit()
            assert "New A2" in {c.name for c in db.session.execute(select(Customer)).scalars()}

    def test_move_out_of_scope_rejected(self, customers, retailer_user_a, retailer_b):
        """Reassigning retailer_id to another retailer fails and stores nothing."""
        with acting_as(retailer_user_a):
            customer = scoped_get(Customer, customers.a1)
            customer.retailer_id = retailer_b.id
            with pytest.raises(Forbidden):
                db.session.commit()
            db.session.rollback()

        assert customer_row(customers.a1).retailer_id != retailer_b.id

    def test_move_between_own_locations_allowed(self, customers, retailer_user_a, location_a2):
        with acting_as(retailer_user_a):
            customer = scoped_get(Customer, customers.a1)
            customer.location_id = location_a2.id
            db.session.commit()

        assert customer_row(customers.a1).location_id == location_a2.id

    def test_location_user_cannot_move_row_to_sibling_location(self, customers, location_user_a1, location_a2):
        with acting_as(location_user_a1):
            customer = scoped_get(Customer, customers.a1)
            customer.location_id = location_a2.id
            with pytest.raises(Forbidden):
                db.session.commit()
            db.session.rollback()

    def test_foreign_location_under_own_retailer_rejected(self, customers, retailer_user_a, location_b1):
        """retailer_id stays in scope but the location belongs to someone else."""
        with acting_as(retailer_user_a):
            customer = scoped_get(Customer, customers.a1)
            customer.location_id = location_b1.id
            with pytest.raises(Forbidden):
                db.session.commit()
            db.session.rollback()

    def test_rejected_flush_is_atomic(self, customers, retailer_user_a, retailer_b):
        """An in-scope edit and an out-of-scope insert in one flush: neither lands."""
        with acting_as(retailer_user_a):
            customer = scoped_get(Customer, customers.a2)
            customer.name = "Renamed"
            db.session.add(Customer(name="Smuggled", retailer_id=retailer_b.id))
            with pytest.raises(Forbidden):
                db.session.commit()
            db.session.rollback()

        assert customer_row(customers.a2).name == "Arthur A2"
        with system_scope():
            assert db.session.query(Customer).filter_by(name="Smuggled").count() == 0

    def test_delete_outside_scope_rejected(self, customers, owner, location_user_a1):
        with acting_as(owner):
            foreign = scoped_get(Customer, customers.b1)
        with acting_as(location_user_a1):
            db.session.delete(foreign)
            with pytest.raises(Forbidden):
                db.session.commit()
            db.session.rollback()

        assert customer_row(customers.b1).name == "Bob B1"

    def test_nothing_bound_cannot_write(self, retailer_a):
        db.session.add(Customer(name="Orphan", retailer_id=retailer_a.id))
        with pytest.raises(Forbidden):
            db.session.commit()
        db.session.rollback()


class TestBulkStatements:
    def test_bulk_update_narrowed(self, customers, location_user_a1):
        with acting_as(location_user_a1):
            result = db.session.execute(
                update(Customer).values(phone="555-0100").execution_options(synchronize_session=False)
            )
            db.session.commit()
        assert result.rowcount == 1

        with system_scope():
            phones = dict(db.session.execute(select(Customer.id, Customer.phone)).all())
        assert phones[customers.a1] == "555-0100"
        assert phones[customers.b1] is None

    def test_bulk_update_cannot_reassign_scope(self, customers, retailer_user_a, retailer_b):
        with acting_as(retailer_user_a):
            with pytest.raises(Forbidden):
                db.session.execute(
                    update(Customer).values(retailer_id=retailer_b.id).execution_options(synchronize_session=False)
                )
            db.session.rollback()

        assert customer_row(customers.a1).retailer_id != retailer_b.id

    def test_bulk_delete_narrowed(self, customers, retailer_user_b):
        with acting_as(retailer_user_b):
            result = db.session.execute(delete(Customer).execution_options(synchronize_session=False))
            db.session.commit()
        assert result.rowcount == 1

        with acting_as(retailer_user_b):
            assert visible_customer_ids() == set()
        with system_scope():
            assert len(visible_customer_ids()) == 3


class TestViolationAudit:
    """Jobs and CLI commands get the ACCESS_DENIED trail HTTP requests get."""

    def denials(self):
        return db.session.query(AuditEvent).filter_by(event_type=EventType.ACCESS_DENIED).all()

    def test_denied_write_in_block_is_audited(self, core, customers, location_user_a1):
        principal_id = location_user_a1.id
        with pytest.raises(Forbidden):
            with acting_as(location_user_a1):
                customer = scoped_get(Customer, customers.a1)
                customer.retailer_id = 999
                db.session.flush()

        denials = self.denials()
        assert len(denials) == 1
        assert denials[0].principal_id == principal_id
        assert denials[0].outcome == Outcome.FAILURE
        assert (denials[0].resource_type, denials[0].resource_id) == ("scope", ScopeKind.LOCATION)
        assert current_predicate().allows_none
        assert customer_row(customers.a1).retailer_id != 999

    def test_denied_read_in_block_is_audited(self, core, customers, retailer_user_a):
        with pytest.raises(Forbidden):
            with acting_as(retailer_user_a):
                scoped_get(Customer, customers.b1)
        assert [d.principal_id for d in self.denials()] == [retailer_user_a.id]

    def test_nested_blocks_audit_once(self, core, customers, owner, location_user_a1):
        with pytest.raises(Forbidden):
            with acting_as(owner):
                with acting_as(location_user_a1):
                    scoped_get(Customer, customers.b1)
        assert len(self.denials()) == 1
        assert current_predicate().allows_none

    def test_pending_writes_discarded_before_audit(self, core, customers, retailer_user_a, retailer_a, retailer_b):
        with pytest.raises(Forbidden):
            with acting_as(retailer_user_a):
                db.session.add(Customer(name="Legit", retailer_id=retailer_a.id))
                db.session.add(Customer(name="Smuggled", retailer_id=retailer_b.id))
                db.session.flush()

        assert len(self.denials()) == 1
        with system_scope():
            assert db.session.query(Customer).filter(Customer.name.in_(["Legit", "Smuggled"])).count() == 0

    def test_signal_carries_predicate(self, core, customers, location_user_a1):
        received = []

        def receiver(sender, predicate, detail, **extra):
            received.append((predicate.kind, predicate.principal_id, detail))

        with scope_violation.connected_to(receiver):
            with pytest.raises(Forbidden):
                with acting_as(location_user_a1):
                    scoped_get(Customer, customers.a2)

        assert received == [(ScopeKind.LOCATION, location_user_a1.id, f"Customer {customers.a2} not visible")]

    def test_denial_handled_inside_block_is_not_reported(self, core, customers, location_user_a1):
        with acting_as(location_user_a1):
            with pytest.raises(Forbidden):
                scoped_get(Customer, customers.b1)
        assert self.denials() == []
