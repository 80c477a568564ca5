# Overview: Flush-time data-model invariants (append-only audit, principal scope, no hard delete).

from sqlalchemy import event

from ..errors import AppendOnlyViolation, ScopeInvariantError
from ..permissions.roles import validate_scope
from .auth import InviteToken, Principal
from .security import AuditEvent
from .tenancy import Location

APPEND_ONLY_MODELS = (AuditEvent,)
NO_DELETE_MODELS = (AuditEvent, Principal)


def _check_scope_row(session, obj) -> None:
    validate_scope(obj.role, obj.retailer_id, obj.location_id)
    if obj.location_id is not None:
        with session.no_autoflush:
            location = session.get(Location, obj.location_id)
        if location is None or location.retailer_id != obj.retailer_id:
            raise ScopeInvariantError("Location does not belong to the principal's retailer")


def enforce_model_invariants(session, flush_context, instances) -> None:
    for obj in session.deleted:
        if isinstance(obj, NO_DELETE_MODELS):
            raise AppendOnlyViolation(f"{type(obj).__name__} rows are never deleted")

    for obj in session.dirty:
        if isinstance(obj, APPEND_ONLY_MODELS) and session.is_modified(obj, include_collections=False):
            raise AppendOnlyViolation(f"{type(obj).__name__} rows are append-only")

    for obj in list(session.new) + list(session.dirty):
        if isinstance(obj, (Principal, InviteToken)):
            _check_scope_row(session, obj)


def reject_bulk_mutation(orm_execute_state) -> None:
    if not (orm_execute_state.is_update or orm_execute_state.is_delete):
        return
    mapper = orm_execute_state.bind_mapper
    if mapper is None:
        return
    if issubclass(mapper.class_, APPEND_ONLY_MODELS):
        raise AppendOnlyViolation(f"{mapper.class_.__name__} rows are append-only")
    if orm_execute_state.is_delete and issubclass(mapper.class_, NO_DELETE_MODELS):
        raise AppendOnlyViolation(f"{mapper.class_.__name__} rows are never deleted")


def install_model_guards(session_target) -> None:
    """Register the guards once on a session, sessionmaker or scoped_session."""
    if not event.contains(session_target, "before_flush", enforce_model_invariants):
        event.listen(session_target, "before_flush", enforce_model_invariants)
    if not event.contains(session_target, "do_orm_execute", reject_bulk_mutation):
        event.listen(session_target, "do_orm_execute", reject_bulk_mutation)
