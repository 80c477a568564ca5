# Overview: The default permission rule table.
# Each rule is defined as: (path, allowed_roles, actions, description)
# actions=None means the rule applies to every action on that path.
#
# Paths with no rule are open to any caller. Add a rule to close one.

from .actions import Action
from .roles import Role


EVERYONE = (Role.OWNER, Role.BACKOFFICE, Role.RETAILER, Role.LOCATION_USER)
DISTRIBUTOR = (Role.OWNER, Role.BACKOFFICE)
RETAIL_STAFF = (Role.RETAILER, Role.LOCATION_USER)
MANAGERS = (Role.OWNER, Role.BACKOFFICE, Role.RETAILER)

READ_WRITE = (Action.CREATE, Action.READ, Action.UPDATE)


# -- UI ROUTES --

ROUTE_RULES = [
    ("dashboard", EVERYONE, None, "Unified dashboard - all roles (data filtered by scope)"),
    ("settings", EVERYONE, None, "User settings - all roles can manage their profile"),

    ("orders", EVERYONE, None, "View orders (filtered by role and location)"),
    ("orders/new", RETAIL_STAFF, None, "Create new customer orders - retailer staff only"),
    ("orders/:id", EVERYONE, None, "View order details (scope enforced)"),

    ("customers", EVERYONE, None, "View customers (filtered by retailer/location)"),
    ("customers/:id", EVERYONE, None, "View customer details (scope enforced)"),

    ("products", EVERYONE, None, "View product catalog - all roles can browse"),
    ("products/:id", EVERYONE, None, "View product details - all roles"),

    ("claims", EVERYONE, None, "View claims (filtered by role and location)"),
    ("claims/new", RETAIL_STAFF, None, "Submit new claim - retailer staff"),
    ("claims/:id", EVERYONE, None, "View claim details (scope enforced)"),

    ("shipping", DISTRIBUTOR, None, "Warehouse fulfillment dashboard"),

    ("retailers", DISTRIBUTOR, None, "Manage retailers - distributor only"),
    ("retailers/new", DISTRIBUTOR, None, "Add new retailer - distributor only"),
    ("retailers/:id", DISTRIBUTOR, None, "View/edit retailer details - distributor only"),
    ("retailers/:id/edit", DISTRIBUTOR, None, "Edit retailer - distributor only"),

    ("admin", DISTRIBUTOR, None, "Admin dashboard - distributor only"),
    ("admin/dashboard", DISTRIBUTOR, None, "Admin dashboard - distributor only"),
    ("admin/users", DISTRIBUTOR, None, "User management - distributor only"),
    ("admin/orders", DISTRIBUTOR, None, "Global order management - distributor only"),
    ("admin/customers", DISTRIBUTOR, None, "Global customer management - distributor only"),
    ("admin/products", DISTRIBUTOR, None, "Product catalog management - distributor only"),
    ("admin/shipping", DISTRIBUTOR, None, "Shipping provider management - distributor only"),
    ("admin/gift-rules", DISTRIBUTOR, None, "Gift rules management - distributor only"),
    ("admin/test", DISTRIBUTOR, None, "Admin testing tools - distributor only"),
]


# -- DATA RESOURCES --

RESOURCE_RULES = [
    ("api/customers", EVERYONE, READ_WRITE, "Customers within scope"),
    ("api/customers", DISTRIBUTOR, (Action.DELETE,), "Delete customers - distributor only"),
    ("api/customers/:id", EVERYONE, READ_WRITE, "Customer within scope"),
    ("api/customers/:id", DISTRIBUTOR, (Action.DELETE,), "Delete customer - distributor only"),

    ("api/orders", EVERYONE, READ_WRITE, "Orders within scope"),
    ("api/orders", DISTRIBUTOR, (Action.DELETE,), "Delete orders - distributor only"),
    ("api/orders/:id", EVERYONE, READ_WRITE, "Order within scope"),
    ("api/orders/:id", DISTRIBUTOR, (Action.DELETE,), "Delete order - distributor only"),

    ("api/claims", EVERYONE, (Action.CREATE, Action.READ), "Claims within scope"),
    ("api/claims/:id", EVERYONE, (Action.READ,), "Claim within scope"),
    ("api/claims/:id", MANAGERS, (Action.UPDATE,), "Update claim - managers only"),
    ("api/claims/:id", DISTRIBUTOR, (Action.DELETE,), "Delete claim - distributor only"),

    ("api/shipments", EVERYONE, (Action.READ,), "Shipments within scope"),
    ("api/shipments", DISTRIBUTOR, (Action.CREATE, Action.UPDATE, Action.DELETE), "Fulfillment - distributor only"),
    ("api/shipments/:id", EVERYONE, (Action.READ,), "Shipment within scope"),
    ("api/shipments/:id", DISTRIBUTOR, (Action.UPDATE, Action.DELETE), "Fulfillment - distributor only"),

    ("api/admin/audit-events", DISTRIBUTOR, (Action.READ,), "Read the audit trail"),
    ("api/admin/security-alerts", DISTRIBUTOR, (Action.READ, Action.UPDATE), "Review security alerts"),
    ("api/admin/security-alerts/:id/resolve", DISTRIBUTOR, None, "Resolve security alerts"),
    ("api/admin/sessions/:id/revoke", (Role.OWNER,), None, "Revoke any session - owner only"),

    ("api/admin/principals", MANAGERS, (Action.READ,), "List principals within scope"),
    ("api/admin/principals", DISTRIBUTOR, (Action.CREATE,), "Provision principals - distributor only"),
    ("api/admin/principals/:id/role", DISTRIBUTOR, None, "Change role and scope"),
    ("api/admin/principals/:id/status", MANAGERS, None, "Suspend or reactivate principals"),
    ("api/admin/invites", MANAGERS, None, "Invite principals within scope"),
]


DEFAULT_RULES = ROUTE_RULES + RESOURCE_RULES
