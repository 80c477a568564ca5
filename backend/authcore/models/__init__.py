from .tenancy import Retailer, Location
from .auth import (
    Principal, PrincipalStatus, ALL_STATUSES, AuthSession, SessionState, TERMINAL_STATES,
    MfaDevice, InviteToken,
)
from .security import AuditEvent, EventType, Outcome, SecurityAlert, RateLimit, OutboxEvent
from .business import ScopedRowMixin, Customer, Order, Claim, Shipment, SCOPED_MODELS
from .guards import install_model_guards

__all__ = [
    'Retailer', 'Location',
    'Principal', 'PrincipalStatus', 'ALL_STATUSES', 'AuthSession', 'SessionState', 'TERMINAL_STATES',
    'MfaDevice', 'InviteToken',
    'AuditEvent', 'EventType', 'Outcome', 'SecurityAlert', 'RateLimit', 'OutboxEvent',
    'ScopedRowMixin', 'Customer', 'Order', 'Claim', 'Shipment', 'SCOPED_MODELS',
    'install_model_guards',
]
