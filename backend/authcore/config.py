# backend/authcore/config.py
from __future__ import annotations
import os


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name)
    if value is None or value.strip() == "":
        return default
    return int(value)


def _env_float(name: str, default: float) -> float:
    value = os.environ.get(name)
    if value is None or value.strip() == "":
        return default
    return float(value)


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/authcore.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///authcore.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Sessions: rolling TTL, hard ceiling measured from creation, idle timeout
    SESSION_TTL_MINUTES = _env_int("SESSION_TTL_MINUTES", 8 * 60)
    SESSION_MAX_LIFETIME_HOURS = _env_int("SESSION_MAX_LIFETIME_HOURS", 24)
    SESSION_IDLE_TIMEOUT_MINUTES = _env_int("SESSION_IDLE_TIMEOUT_MINUTES", 30)
    SESSION_WARNING_MINUTES = _env_int("SESSION_WARNING_MINUTES", 5)
    MAX_CONCURRENT_SESSIONS = _env_int("MAX_CONCURRENT_SESSIONS", 5)

    # Login throttling (keyed by email and by origin address)
    LOGIN_MAX_FAILED_ATTEMPTS = _env_int("LOGIN_MAX_FAILED_ATTEMPTS", 5)
    LOGIN_ORIGIN_MAX_FAILED_ATTEMPTS = _env_int("LOGIN_ORIGIN_MAX_FAILED_ATTEMPTS", 20)
    LOGIN_WINDOW_MINUTES = _env_int("LOGIN_WINDOW_MINUTES", 15)
    LOGIN_BLOCK_MINUTES = _env_int("LOGIN_BLOCK_MINUTES", 15)

    # Credential hashing
    BCRYPT_ROUNDS = _env_int("BCRYPT_ROUNDS", 12)
    AUTH_HASH_TIMEOUT_SECONDS = _env_float("AUTH_HASH_TIMEOUT_SECONDS", 5.0)
    AUTH_HASH_WORKERS = _env_int("AUTH_HASH_WORKERS", 4)

    # Multi-factor
    MFA_ISSUER = os.environ.get("MFA_ISSUER", "AuthCore")
    MFA_MAX_ATTEMPTS = _env_int("MFA_MAX_ATTEMPTS", 3)
    MFA_BACKUP_CODES = _env_int("MFA_BACKUP_CODES", 10)

    # Risk scoring
    RISK_ALERT_THRESHOLD = _env_int("RISK_ALERT_THRESHOLD", 70)
    RISK_VELOCITY_WINDOW_MINUTES = _env_int("RISK_VELOCITY_WINDOW_MINUTES", 15)

    # Invitations
    INVITE_TTL_HOURS = _env_int("INVITE_TTL_HOURS", 72)

    # None -> authcore.permissions.DEFAULT_RULES
    POLICY_RULES = None

    # Browser origins allowed to call the API
    CORS_ALLOWED_ORIGINS = [
        o.strip() for o in os.environ.get(
            "CORS_ALLOWED_ORIGINS",
            "http://localhost:5173,http://127.0.0.1:5173",
        ).split(",") if o.strip()
    ]
