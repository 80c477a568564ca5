# Overview: TOTP second factor and one-time backup codes.

"""
Multi-Factor Service

WHY: A stolen password alone must not open a session. Principals with MFA
enrolled get sessions in the active+mfa_pending state until a code is
verified (see SessionManager.verify_mfa).

DESIGN:
- RFC 6238 TOTP (30 s step, 6 digits) via pyotp, one step of clock drift
  accepted either side
- Enrollment is two-phase: begin() stores an unconfirmed device and returns
  the provisioning URI; confirm() proves the authenticator works, then
  enables MFA and returns the backup codes (shown once, stored as bcrypt)
- Backup codes are single use
"""

from __future__ import annotations

import secrets

import bcrypt
import pyotp

from ..errors import InvalidCredentials
from ..extensions import db
from ..models import MfaDevice
from ..time_utils import as_aware_utc, utcnow
from .auth_service import verify_password

BACKUP_CODE_BYTES = 4  # 8 hex characters


def _hash_backup_code(code: str, rounds: int) -> str:
    return bcrypt.hashpw(code.encode('utf-8'), bcrypt.gensalt(rounds=rounds)).decode('utf-8')


def _normalize_code(code) -> str:
    return "".join(str(code or "").split()).replace("-", "").lower()


class MfaService:
    def __init__(self, *, issuer: str = "AuthCore", backup_code_count: int = 10, bcrypt_rounds: int = 12, clock=utcnow):
        self.issuer = issuer
        self.backup_code_count = backup_code_count
        self.bcrypt_rounds = bcrypt_rounds
        self.clock = clock

    def active_device(self, principal_id: int) -> MfaDevice | None:
        return (
            db.session.query(MfaDevice)
            .filter(
                MfaDevice.principal_id == principal_id,
                MfaDevice.is_active.is_(True),
                MfaDevice.confirmed_at.isnot(None),
            )
            .order_by(MfaDevice.id.desc())
            .first()
        )

    def _pending_device(self, principal_id: int) -> MfaDevice | None:
        return (
            db.session.query(MfaDevice)
            .filter(
                MfaDevice.principal_id == principal_id,
                MfaDevice.is_active.is_(True),
                MfaDevice.confirmed_at.is_(None),
            )
            .order_by(MfaDevice.id.desc())
            .first()
        )

    def _totp_matches(self, device: MfaDevice, code: str) -> bool:
        if not code.isdigit() or len(code) != 6:
            return False
        # pyotp reads naive datetimes as local time
        return pyotp.TOTP(device.secret).verify(code, for_time=as_aware_utc(self.clock()), valid_window=1)

    def begin_totp_enrollment(self, principal, device_name: str | None = None) -> tuple[MfaDevice, str]:
        """
        Create an unconfirmed TOTP device.

        Returns (device, provisioning_uri). Any earlier unconfirmed device is
        discarded. Caller commits.
        """
        stale = self._pending_device(principal.id)
        if stale is not None:
            stale.is_active = False

        secret = pyotp.random_base32()
        device = MfaDevice(
            principal_id=principal.id,
            device_type="totp",
            device_name=device_name,
            secret=secret,
            backup_codes=[],
            is_active=True,
        )
        db.session.add(device)
        uri = pyotp.TOTP(secret).provisioning_uri(name=principal.email, issuer_name=self.issuer)
        return device, uri

    def confirm_totp_enrollment(self, principal, code: str) -> list[str]:
        """
        Confirm the pending device with a current code and enable MFA.

        Returns the plaintext backup codes (only time they are visible).
        Raises InvalidCredentials on a wrong code or no pending device.
        Caller commits.
        """
        device = self._pending_device(principal.id)
        if device is None or not self._totp_matches(device, _normalize_code(code)):
            raise InvalidCredentials("MFA enrollment code rejected")

        previous = self.active_device(principal.id)
        if previous is not None:
            previous.is_active = False

        codes = [secrets.token_hex(BACKUP_CODE_BYTES) for _ in range(self.backup_code_count)]
        now = self.clock()
        device.backup_codes = [_hash_backup_code(c, self.bcrypt_rounds) for c in codes]
        device.confirmed_at = now
        device.last_used_at = now
        principal.mfa_enabled = True
        return codes

    def verify(self, principal_id: int, code: str) -> bool:
        """
        Check a TOTP code or consume a backup code. Caller commits.

        Returns False when nothing matches or no device is enrolled.
        """
        device = self.active_device(principal_id)
        if device is None:
            return False

        normalized = _normalize_code(code)
        if self._totp_matches(device, normalized):
            device.last_used_at = self.clock()
            return True

        remaining = list(device.backup_codes or [])
        for stored in remaining:
            if verify_password(normalized, stored):
                remaining.remove(stored)
                # Reassign so the JSON column registers the change
                device.backup_codes = remaining
                device.last_used_at = self.clock()
                return True
        return False

    def disable(self, principal) -> int:
        """Deactivate every device and clear the enrollment flag. Returns devices deactivated."""
        devices = db.session.query(MfaDevice).filter(
            MfaDevice.principal_id == principal.id,
            MfaDevice.is_active.is_(True),
        ).all()
        for device in devices:
            device.is_active = False
        principal.mfa_enabled = False
        return len(devices)
