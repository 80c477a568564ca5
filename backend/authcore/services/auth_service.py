# Overview: Credential primitives - password policy, bcrypt hashing, token generation.

"""
Credential Service

WHY: One place for everything that touches secrets. Passwords use bcrypt,
session tokens are high-entropy random strings stored only as SHA-256.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor from BCRYPT_ROUNDS, default 12)
- Minimum 8 characters, upper, lower, digit and special char required
- Verification runs in a bounded worker pool; a timeout is a failed
  verification, never a success (fail closed)
- Unknown accounts are verified against a dummy hash of the same cost so the
  response time does not reveal whether the email exists
"""

import hashlib
import logging
import re
import secrets
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from functools import lru_cache

import bcrypt

from ..errors import PasswordValidationError

logger = logging.getLogger(__name__)


def validate_password_strength(password: str) -> None:
    """
    Validate password meets strength requirements.

    Requirements:
    - Minimum 8 characters
    - At least one uppercase letter
    - At least one lowercase letter
    - At least one digit
    - At least one special character (!@#$%^&*(),.'":{}|<>)

    Raises PasswordValidationError if requirements not met.
    """
    if not isinstance(password, str) or len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")

    if not re.search(r'[A-Z]', password):
        raise PasswordValidationError("Password must contain at least one uppercase letter")

    if not re.search(r'[a-z]', password):
        raise PasswordValidationError("Password must contain at least one lowercase letter")

    if not re.search(r'\d', password):
        raise PasswordValidationError("Password must contain at least one digit")

    if not re.search(r"[!@#$%^&*(),.'\":{}|<>]", password):
        raise PasswordValidationError("Password must contain at least one special character")


def hash_password(password: str, rounds: int = 12) -> str:
    """Validate strength, then bcrypt-hash. Returns the hash as str for storage."""
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=rounds)
    return bcrypt.hashpw(password.encode('utf-8'), salt).decode('utf-8')


def verify_password(password: str, password_hash: str) -> bool:
    """
    Verify password against bcrypt hash.

    WHY timing-safe: bcrypt.checkpw() compares in constant time.
    An empty password still pays the full hash cost, so it can't be told
    apart by response time. A missing or malformed stored hash verifies as False.
    """
    if not password_hash:
        return False
    try:
        return bcrypt.checkpw((password or "").encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        return False


@lru_cache(maxsize=8)
def dummy_password_hash(rounds: int) -> str:
    """Hash of a random secret with the configured cost, for unknown-account verification."""
    salt = bcrypt.gensalt(rounds=rounds)
    return bcrypt.hashpw(secrets.token_hex(16).encode('utf-8'), salt).decode('utf-8')


def generate_token() -> str:
    """
    Generate cryptographically secure random token.

    Returns 64-character hex string (32 bytes of entropy).
    This is the plaintext token sent to client (never stored).
    """
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    """
    Hash token for database storage using SHA-256.

    WHY SHA-256 not bcrypt: Tokens are already high-entropy (unlike passwords).
    """
    return hashlib.sha256(token.encode('utf-8')).hexdigest()


def normalize_email(email) -> str:
    return (email or "").strip().lower()


class CredentialVerifier:
    """
    Bounded-time password verification.

    bcrypt runs on a small thread pool; the caller waits at most
    timeout_seconds. A timeout or worker error returns False.
    """

    def __init__(self, *, rounds: int = 12, timeout_seconds: float = 5.0, workers: int = 4):
        self.rounds = rounds
        self.timeout_seconds = timeout_seconds
        self._executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="authcore-hash")

    def verify(self, password: str, password_hash: str | None) -> bool:
        target = password_hash or dummy_password_hash(self.rounds)
        future = self._executor.submit(verify_password, password, target)
        try:
            matched = future.result(timeout=self.timeout_seconds)
        except FutureTimeout:
            future.cancel()
            logger.warning("Password verification timed out after %ss", self.timeout_seconds)
            return False
        # A dummy-hash match is impossible in practice but must never authenticate
        return bool(matched) and password_hash is not None

    def hash(self, password: str) -> str:
        return hash_password(password, rounds=self.rounds)
