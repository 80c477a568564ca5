# Overview: Error taxonomy shared by the session manager, policy engine and scope layer.

"""
Authentication and authorization errors.

Every AuthError carries an HTTP status and a PUBLIC message. The public
message is what reaches the client; the exception's own message may hold
detail for server logs only.

ENUMERATION RESISTANCE:
- InvalidCredentials never says whether the account exists.
- Forbidden never says which scope boundary was crossed.
"""


class AuthError(Exception):
    """Base class for recoverable authentication/authorization failures."""
    status_code = 401
    code = "unauthenticated"
    public_message = "Authentication required"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.public_message)

    def to_dict(self) -> dict:
        return {"error": self.public_message, "code": self.code}


class InvalidCredentials(AuthError):
    code = "invalid_credentials"
    public_message = "Invalid credentials"


class InvalidSession(AuthError):
    code = "invalid_session"
    public_message = "Invalid or expired token"


class AccountSuspended(AuthError):
    status_code = 403
    code = "account_inactive"
    public_message = "Account is not active"


class MfaRequired(AuthError):
    code = "mfa_required"
    public_message = "Multi-factor verification required"


class SessionExpired(AuthError):
    code = "session_expired"
    public_message = "Session expired"


class SessionRevoked(AuthError):
    code = "session_revoked"
    public_message = "Session revoked"


class RateLimited(AuthError):
    status_code = 429
    code = "rate_limited"
    public_message = "Too many failed attempts, try again later"

    def __init__(self, retry_after_seconds: int | None = None, message: str | None = None):
        super().__init__(message)
        self.retry_after_seconds = retry_after_seconds

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["retry_after_seconds"] = self.retry_after_seconds
        return data


class Forbidden(AuthError):
    """Policy or scope denial. Distinguishable from authentication failures, nothing more."""
    status_code = 403
    code = "forbidden"
    public_message = "Forbidden"


class ConfigurationError(Exception):
    """Malformed policy table or settings. Fatal at startup."""
    pass


class ScopeInvariantError(ValueError):
    """Role and organizational scope disagree (e.g. location_user without a location)."""
    pass


class PasswordValidationError(ValueError):
    """Raised when password doesn't meet strength requirements."""
    pass


class InviteError(ValueError):
    """Invite token unknown, expired or already used."""
    pass


class AppendOnlyViolation(RuntimeError):
    """Attempt to update/delete an append-only record or hard-delete a principal."""
    pass
