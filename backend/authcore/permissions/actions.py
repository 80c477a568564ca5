# Overview: Action constants used by permission rules.


class Action:
    """Actions a rule can be restricted to. VIEW is used for UI route access."""
    VIEW = "view"
    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"
    REVOKE = "revoke"
    MANAGE_ROLES = "manage_roles"


ALL_ACTIONS = frozenset({
    Action.VIEW,
    Action.CREATE,
    Action.READ,
    Action.UPDATE,
    Action.DELETE,
    Action.REVOKE,
    Action.MANAGE_ROLES,
})

# Maps HTTP methods onto data actions for routes that don't name one.
METHOD_ACTIONS = {
    "GET": Action.READ,
    "HEAD": Action.READ,
    "POST": Action.CREATE,
    "PUT": Action.UPDATE,
    "PATCH": Action.UPDATE,
    "DELETE": Action.DELETE,
}
