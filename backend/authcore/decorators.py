# Overview: Request decorators that authenticate the caller and gate routes through the policy engine.

from functools import wraps

from flask import g, request

from .core import get_core
from .errors import AuthError, Forbidden
from .extensions import db
from .permissions import METHOD_ACTIONS
from .services.scope_service import bind_principal


def bearer_token() -> str | None:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    return auth_header.split(" ", 1)[1].strip() or None


def require_auth(f):
    """
    Require a live, fully verified session and bind the caller's row scope.

    Sets the following Flask g attributes:
    - g.current_principal: The authenticated Principal
    - g.session_context: The full SessionContext
    - g.access_token: The bearer token as presented

    SECURITY: Raises (rendered by the AuthError handler):
    - AuthError 401 if no Authorization header
    - InvalidSession / SessionExpired / SessionRevoked 401
    - MfaRequired 401 while the second factor is pending
    - AccountSuspended 403
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = bearer_token()
        if token is None:
            raise AuthError()

        context = get_core().sessions.validate(token)

        g.current_principal = context.principal
        g.session_context = context
        g.access_token = token

        # MULTI-TENANT: every ORM statement in this request is narrowed from here on
        bind_principal(db.session, context.principal)

        return f(*args, **kwargs)

    return decorated_function


def require_access(resource: str | None = None, action: str | None = None):
    """
    Gate a route through the policy engine.

    resource defaults to the request path, action to the HTTP method's
    data action (GET -> read, PATCH -> update, ...). Works without
    require_auth for public paths: the caller is then unauthenticated.
    Denials raise Forbidden; the AuthError handler audits and renders them.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            principal = g.get("current_principal")
            path = resource or request.path
            wanted = action or METHOD_ACTIONS.get(request.method)

            if not get_core().is_allowed(principal, path, wanted):
                raise Forbidden(f"policy denied {wanted} on {path}")

            return f(*args, **kwargs)

        return decorated_function
    return decorator
