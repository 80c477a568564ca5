# Overview: Row-scope predicates and their enforcement on every ORM statement.

"""
Scope Enforcement

WHY: Filtering in route handlers covers only the routes that remember to
filter. Here the predicate lives on the SQLAlchemy session itself, so every
ORM read and write is narrowed whatever the entry point (HTTP route, CLI
command, background job, admin tool).

MULTI-TENANT:
- owner, backoffice: always-true
- retailer: retailer_id == principal.retailer_id (all its locations)
- location_user: location_id == principal.location_id AND retailer_id == principal.retailer_id
- nobody bound: always-false (fail closed); provisioning code enters system_scope()

ENFORCEMENT POINTS:
- do_orm_execute: SELECTs get with_loader_criteria for every scoped model;
  ORM UPDATE/DELETE get the predicate conjoined to their WHERE and their
  assigned scope values checked
- before_flush: new, dirty (old AND new values) and deleted scoped rows are
  checked; a violation raises Forbidden before any SQL is emitted, so no
  partial write is observable

REPORTING: a Forbidden that escapes an acting_as() or system_scope() block
rolls the session back, then sends scope_violation once; AuthCore records it
as ACCESS_DENIED. HTTP requests are audited by the app's error handler.

SECURITY: Forbidden carries no detail about which boundary was crossed.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass

import sqlalchemy as sa
from sqlalchemy import event, inspect, select
from sqlalchemy.orm import with_loader_criteria

from ..errors import Forbidden
from ..extensions import db, scope_violation
from ..models import Location, PrincipalStatus, ScopedRowMixin, SCOPED_MODELS
from ..permissions.roles import Role

logger = logging.getLogger(__name__)

SCOPE_INFO_KEY = "authcore.scope"


class ScopeKind:
    ALL = "all"
    NONE = "none"
    RETAILER = "retailer"
    LOCATION = "location"


@dataclass(frozen=True)
class ScopePredicate:
    """
    Immutable snapshot of one principal's row boundary.

    Bound to a session instead of the Principal itself, so evaluating it
    never triggers a lazy load in the middle of a flush.
    """
    kind: str
    retailer_id: int | None = None
    location_id: int | None = None
    principal_id: int | None = None

    @classmethod
    def everything(cls, principal_id: int | None = None) -> "ScopePredicate":
        return cls(ScopeKind.ALL, principal_id=principal_id)

    @classmethod
    def nothing(cls, principal_id: int | None = None) -> "ScopePredicate":
        return cls(ScopeKind.NONE, principal_id=principal_id)

    @property
    def allows_all(self) -> bool:
        return self.kind == ScopeKind.ALL

    @property
    def allows_none(self) -> bool:
        return self.kind == ScopeKind.NONE

    def clause(self, model):
        """SQL expression for `model` (a ScopedRowMixin class or alias)."""
        if self.kind == ScopeKind.ALL:
            return sa.true()
        if self.kind == ScopeKind.RETAILER:
            return model.retailer_id == self.retailer_id
        if self.kind == ScopeKind.LOCATION:
            return sa.and_(
                model.location_id == self.location_id,
                model.retailer_id == self.retailer_id,
            )
        return sa.false()

    def matches_values(self, retailer_id, location_id) -> bool:
        if self.kind == ScopeKind.ALL:
            return True
        if self.kind == ScopeKind.RETAILER:
            return retailer_id is not None and retailer_id == self.retailer_id
        if self.kind == ScopeKind.LOCATION:
            return (
                location_id is not None
                and location_id == self.location_id
                and retailer_id == self.retailer_id
            )
        return False

    def matches(self, row) -> bool:
        return self.matches_values(getattr(row, "retailer_id", None), getattr(row, "location_id", None))


def scope_predicate(principal, entity_class=None) -> ScopePredicate:
    """
    Compute the row predicate for `principal`.

    entity_class, when given, must be a scoped model; all scoped models
    share the same scope columns so the predicate does not vary by class.
    """
    if entity_class is not None and not (
        isinstance(entity_class, type) and issubclass(entity_class, ScopedRowMixin)
    ):
        raise TypeError(f"{entity_class!r} carries no organizational scope")

    if principal is None:
        return ScopePredicate.nothing()

    principal_id = getattr(principal, "id", None)
    if getattr(principal, "status", None) != PrincipalStatus.ACTIVE:
        return ScopePredicate.nothing(principal_id)

    role = principal.role
    if role in (Role.OWNER, Role.BACKOFFICE):
        return ScopePredicate.everything(principal_id)
    if role == Role.RETAILER and principal.retailer_id is not None:
        return ScopePredicate(ScopeKind.RETAILER, principal.retailer_id, None, principal_id)
    if role == Role.LOCATION_USER and principal.retailer_id is not None and principal.location_id is not None:
        return ScopePredicate(ScopeKind.LOCATION, principal.retailer_id, principal.location_id, principal_id)

    return ScopePredicate.nothing(principal_id)


# -- SESSION BINDING --

def current_predicate(session=None) -> ScopePredicate:
    session = session if session is not None else db.session
    return session.info.get(SCOPE_INFO_KEY) or ScopePredicate.nothing()


def bind_predicate(session, predicate: ScopePredicate) -> None:
    session.info[SCOPE_INFO_KEY] = predicate


def bind_principal(session, principal) -> ScopePredicate:
    predicate = scope_predicate(principal)
    bind_predicate(session, predicate)
    return predicate


def unbind(session) -> None:
    session.info.pop(SCOPE_INFO_KEY, None)


@contextmanager
def _bound(predicate: ScopePredicate, session=None):
    session = session if session is not None else db.session
    previous = session.info.get(SCOPE_INFO_KEY)
    bind_predicate(session, predicate)
    try:
        yield predicate
    except Forbidden as exc:
        # The block's unit of work is abandoned; the denial is reported after it is gone.
        session.rollback()
        _restore(session, previous)
        _report_violation(session, predicate, exc)
        raise
    finally:
        _restore(session, previous)


def _restore(session, previous) -> None:
    if previous is None:
        unbind(session)
    else:
        bind_predicate(session, previous)


def _report_violation(session, predicate: ScopePredicate, exc: Forbidden) -> None:
    """Send scope_violation once per exception, however many blocks it unwinds."""
    if getattr(exc, "scope_reported", False):
        return
    exc.scope_reported = True
    try:
        scope_violation.send(session, predicate=predicate, detail=str(exc))
    except Exception:
        logger.exception("scope_violation receiver failed for principal %s", predicate.principal_id)


def acting_as(principal, session=None):
    """Run a block (job, CLI command, admin tool) under `principal`'s scope."""
    return _bound(scope_predicate(principal), session)


def system_scope(session=None):
    """Unrestricted scope for provisioning, seeding and migrations. Never used on request paths."""
    return _bound(ScopePredicate.everything(), session)


def scoped_get(model, row_id, session=None):
    """
    Fetch one row through the scoped SELECT path.

    Raises Forbidden both when the row does not exist and when it is out of
    scope, so callers can't discover other tenants' ids. The identity map
    is refreshed so a row loaded earlier under a wider scope is not served.
    """
    session = session if session is not None else db.session
    row = session.execute(
        select(model).where(model.id == row_id).execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if row is None or not current_predicate(session).matches(row):
        raise Forbidden(f"{model.__name__} {row_id} not visible")
    return row


# -- ENFORCEMENT --

def _location_belongs(session, retailer_id, location_id) -> bool:
    if location_id is None:
        return True
    with session.no_autoflush:
        location = session.get(Location, location_id)
    return location is not None and location.retailer_id == retailer_id


def _deny(predicate: ScopePredicate, detail: str):
    logger.warning("Scope violation by principal %s: %s", predicate.principal_id, detail)
    raise Forbidden(detail)


def _original_value(state, key):
    history = state.attrs[key].history
    if history.deleted:
        return history.deleted[0]
    if history.unchanged:
        return history.unchanged[0]
    return getattr(state.obj(), key)


def check_flush_scope(session, flush_context, instances) -> None:
    predicate = current_predicate(session)

    for obj in session.new:
        if not isinstance(obj, ScopedRowMixin):
            continue
        if not predicate.matches(obj):
            _deny(predicate, f"insert of {type(obj).__name__} outside scope")
        if not _location_belongs(session, obj.retailer_id, obj.location_id):
            _deny(predicate, f"{type(obj).__name__} location does not belong to its retailer")

    for obj in session.dirty:
        if not isinstance(obj, ScopedRowMixin) or not session.is_modified(obj, include_collections=False):
            continue
        state = inspect(obj)
        old_retailer = _original_value(state, "retailer_id")
        old_location = _original_value(state, "location_id")
        if not predicate.matches_values(old_retailer, old_location):
            _deny(predicate, f"update of {type(obj).__name__} {obj.id} outside scope")
        if not predicate.matches(obj):
            _deny(predicate, f"update moves {type(obj).__name__} {obj.id} outside scope")
        if not _location_belongs(session, obj.retailer_id, obj.location_id):
            _deny(predicate, f"{type(obj).__name__} location does not belong to its retailer")

    for obj in session.deleted:
        if not isinstance(obj, ScopedRowMixin):
            continue
        state = inspect(obj)
        if not predicate.matches_values(_original_value(state, "retailer_id"), _original_value(state, "location_id")):
            _deny(predicate, f"delete of {type(obj).__name__} {obj.id} outside scope")


def _assigned_scope_values(orm_execute_state) -> list[dict]:
    """Scope columns assigned by an ORM UPDATE, whether via .values() or bulk parameter lists."""
    assigned = []
    parameters = orm_execute_state.parameters
    if isinstance(parameters, dict):
        parameters = [parameters] if parameters else []

    if not parameters:
        params = orm_execute_state.statement.compile().params
        values = {k: params[k] for k in ("retailer_id", "location_id") if k in params}
        if values:
            assigned.append(values)
        return assigned

    for row in parameters:
        values = {k: row[k] for k in ("retailer_id", "location_id") if k in row}
        if values:
            assigned.append(values)
    return assigned


def _check_bulk_update(orm_execute_state, model, predicate: ScopePredicate) -> None:
    if predicate.allows_all or predicate.allows_none:
        return
    for values in _assigned_scope_values(orm_execute_state):
        retailer_id = values.get("retailer_id", predicate.retailer_id)
        if retailer_id != predicate.retailer_id:
            _deny(predicate, f"bulk update moves {model.__name__} outside scope")
        if "location_id" in values:
            location_id = values["location_id"]
            if predicate.kind == ScopeKind.LOCATION and location_id != predicate.location_id:
                _deny(predicate, f"bulk update moves {model.__name__} outside scope")
            if not _location_belongs(orm_execute_state.session, retailer_id, location_id):
                _deny(predicate, f"{model.__name__} location does not belong to its retailer")


def apply_statement_scope(orm_execute_state) -> None:
    if orm_execute_state.is_select:
        if orm_execute_state.is_column_load or orm_execute_state.is_relationship_load:
            return
        predicate = current_predicate(orm_execute_state.session)
        if predicate.allows_all:
            return
        options = [
            with_loader_criteria(model, predicate.clause(model), include_aliases=True)
            for model in SCOPED_MODELS
        ]
        orm_execute_state.statement = orm_execute_state.statement.options(*options)
        return

    if orm_execute_state.is_update or orm_execute_state.is_delete:
        mapper = orm_execute_state.bind_mapper
        if mapper is None or not issubclass(mapper.class_, ScopedRowMixin):
            return
        predicate = current_predicate(orm_execute_state.session)
        model = mapper.class_
        if orm_execute_state.is_update:
            _check_bulk_update(orm_execute_state, model, predicate)
        if not predicate.allows_all:
            orm_execute_state.statement = orm_execute_state.statement.where(predicate.clause(model))


def install_scope_enforcement(session_target) -> None:
    """Register the scope hooks once on a session, sessionmaker or scoped_session."""
    if not event.contains(session_target, "do_orm_execute", apply_statement_scope):
        event.listen(session_target, "do_orm_execute", apply_statement_scope)
    if not event.contains(session_target, "before_flush", check_flush_scope):
        event.listen(session_target, "before_flush", check_flush_scope)
