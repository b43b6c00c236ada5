from __future__ import annotations

import logging
import math
import re
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Optional
from uuid import UUID

from sqlmodel import Session
from werkzeug.security import check_password_hash, generate_password_hash

from ..core.config import Settings
from ..core.errors import PermissionDeniedError, PinLockedError, ValidationError, WrongPinError
from ..models import PinStatus
from ..models.db import as_utc, utcnow
from .repository import LedgerRepository


logger = logging.getLogger(__name__)


class PinService:
    """Transaction PIN storage, verification and brute-force lockout.

    PINs are only ever stored as salted one-way hashes. ``verify_pin`` and the
    current-PIN check in ``set_pin`` share one counter. Every attempt is counted
    before the hash is compared, in the same statement that tests the lock, and
    the attempt that reaches ``pin_max_attempts`` locks the PIN for
    ``pin_lock_minutes``. A correct PIN resets the counter unless another
    request has locked it meanwhile. While locked, every check fails without
    looking at the submitted PIN and without counting. A lock that has run out
    starts a fresh counter.
    """

    def __init__(
        self,
        session: Session,
        settings: Settings,
        repository: Optional[LedgerRepository] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.session = session
        self.settings = settings
        self.repository = repository or LedgerRepository(session)
        self.clock = clock or utcnow
        self._pattern = re.compile(rf"^\d{{{settings.pin_length}}}$")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _is_valid_format(self, pin: Optional[str]) -> bool:
        return pin is not None and bool(self._pattern.match(pin))

    def _hash(self, pin: str) -> str:
        return generate_password_hash(pin, method=self.settings.pin_hash_method)

    def _locked_error(self, locked_until: datetime, now: datetime) -> PinLockedError:
        minutes = max(1, math.ceil((locked_until - now).total_seconds() / 60))
        return PinLockedError(
            "PIN is temporarily locked due to too many failed attempts. "
            f"Try again in {minutes} minutes.",
            minutes_remaining=minutes,
        )

    def _check(self, account_id: UUID, pin: str, *, wrong_message: str) -> None:
        now = self.clock()
        attempt = self.repository.reserve_pin_attempt(
            account_id,
            now=now,
            max_attempts=self.settings.pin_max_attempts,
            lock_until=now + timedelta(minutes=self.settings.pin_lock_minutes),
        )
        self.session.commit()
        credential = self.repository.get_pin_credential(account_id)
        if credential is None:
            raise ValidationError("No PIN set for this account")
        if attempt is None:
            raise self._locked_error(as_utc(credential.locked_until) or now, now)

        if check_password_hash(credential.hashed_secret, pin):
            self.repository.release_pin_attempts(account_id, attempt)
            self.session.commit()
            return

        remaining = max(self.settings.pin_max_attempts - attempt, 0)
        logger.warning(
            "pin.failed_attempt",
            extra={
                "account_id": str(account_id),
                "failed_attempts": attempt,
                "locked": remaining == 0,
            },
        )
        if remaining == 0:
            raise WrongPinError(
                f"{wrong_message}. PIN is now locked for {self.settings.pin_lock_minutes} minutes.",
                attempts_remaining=0,
            )
        raise WrongPinError(
            f"{wrong_message}. {remaining} attempt(s) remaining",
            attempts_remaining=remaining,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def has_pin(self, account_id: UUID) -> bool:
        return self.repository.get_pin_credential(account_id) is not None

    def set_pin(
        self,
        account_id: UUID,
        new_pin: Optional[str],
        current_pin: Optional[str] = None,
    ) -> None:
        self.repository.require_account(account_id)
        if not self._is_valid_format(new_pin):
            raise ValidationError(f"PIN must be exactly {self.settings.pin_length} digits")

        credential = self.repository.get_pin_credential(account_id)
        if credential is not None:
            if not current_pin:
                raise ValidationError("Current PIN is required to change PIN")
            if not self._is_valid_format(current_pin):
                raise ValidationError("Invalid PIN format")
            self._check(account_id, current_pin, wrong_message="Current PIN is incorrect")

        self.repository.save_pin_credential(account_id, self._hash(new_pin))
        self.session.commit()
        logger.info(
            "pin.set",
            extra={"account_id": str(account_id), "changed": credential is not None},
        )

    def verify_pin(self, account_id: UUID, pin: Optional[str]) -> None:
        self.repository.require_account(account_id)
        if not self._is_valid_format(pin):
            raise ValidationError("Invalid PIN format")
        credential = self.repository.get_pin_credential(account_id)
        if credential is None:
            raise ValidationError("No PIN set for this account")
        self._check(account_id, pin, wrong_message="Incorrect PIN")
        logger.info("pin.verified", extra={"account_id": str(account_id)})

    def check_status(self, account_id: UUID) -> PinStatus:
        self.repository.require_account(account_id)
        credential = self.repository.get_pin_credential(account_id)
        if credential is None:
            return PinStatus(has_pin=False, is_locked=False)

        locked_until = as_utc(credential.locked_until)
        is_locked = locked_until is not None and locked_until > self.clock()
        return PinStatus(
            has_pin=True,
            is_locked=is_locked,
            locked_until=locked_until if is_locked else None,
            attempts=credential.failed_attempts,
        )

    def reset_pin(self, account_id: UUID, admin_id: Optional[UUID]) -> None:
        """Administrative escape hatch: drop the credential entirely."""
        admin = self.repository.get_account(admin_id) if admin_id is not None else None
        if admin is None or not admin.is_admin:
            raise PermissionDeniedError("Only an admin can reset a PIN")
        self.repository.require_account(account_id)
        removed = self.repository.delete_pin_credential(account_id)
        self.repository.add_audit_log(
            "reset_pin",
            account_id=account_id,
            details={"had_pin": removed, "admin_id": str(admin_id)},
        )
        self.session.commit()
        logger.info(
            "pin.reset",
            extra={"account_id": str(account_id), "admin_id": str(admin_id), "had_pin": removed},
        )
