from __future__ import annotations

from typing import Optional
from uuid import UUID


class LedgerError(Exception):
    """Base class for every error the ledger services raise on purpose."""


class ValidationError(LedgerError):
    """Raised when input is rejected before any side effect."""


class AccountNotFoundError(LedgerError):
    """Raised when an account id is missing from the store."""


class InsufficientBalanceError(LedgerError):
    """Raised when a debit would drop balance below zero."""


class DuplicateEventError(LedgerError):
    """Raised when a success transaction already carries the external reference."""


class InvalidStateTransitionError(LedgerError):
    """Raised when a terminal transaction would be modified."""


class AuthenticationMismatchError(LedgerError):
    """Raised when a webhook payer does not match the resolved account."""


class WebhookSignatureError(LedgerError):
    """Raised when the gateway signature header is missing or wrong."""


class ProviderError(LedgerError):
    """A provider call ended without a confirmed success.

    ``message`` is safe to show to the account holder; the raw provider text
    only goes to the logs.
    """

    category = "provider_error"

    def __init__(self, message: str, transaction_id: Optional[UUID] = None) -> None:
        super().__init__(message)
        self.transaction_id = transaction_id


class ProviderUnavailableError(ProviderError):
    category = "unavailable"


class ProviderTimeoutError(ProviderError):
    category = "timeout"


class ProviderRejectedError(ProviderError):
    category = "rejected"


class WrongPinError(LedgerError):
    def __init__(self, message: str, attempts_remaining: int) -> None:
        super().__init__(message)
        self.attempts_remaining = attempts_remaining


class PinLockedError(LedgerError):
    def __init__(self, message: str, minutes_remaining: int) -> None:
        super().__init__(message)
        self.minutes_remaining = minutes_remaining


class NotEligibleError(LedgerError):
    """Raised when a referral reward is claimed before the threshold."""


class PermissionDeniedError(LedgerError):
    """Raised when an administrative action comes from a non-admin account."""
