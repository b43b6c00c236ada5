from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any, Optional
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from ..core.config import Settings
from ..core.errors import (
    InsufficientBalanceError,
    ProviderError,
    ProviderRejectedError,
    ProviderTimeoutError,
    ProviderUnavailableError,
    ValidationError,
)
from ..models import (
    OUTCOME_FIELDS,
    PurchaseRequest,
    TransactionKind,
    TransactionModel,
    TransactionStatus,
)
from .pin import PinService
from .providers import OutcomeKind, ProviderOutcome, PurchaseProvider
from .repository import LedgerRepository, new_internal_reference


logger = logging.getLogger(__name__)

UNAVAILABLE_MESSAGE = "Service temporarily unavailable. Please try again later."
REJECTED_MESSAGE = "Transaction was rejected by the provider. Please contact support."
INSUFFICIENT_MESSAGE = "Insufficient wallet balance"

_FAILURES: dict[OutcomeKind, tuple[type[ProviderError], str]] = {
    OutcomeKind.UNAVAILABLE: (ProviderUnavailableError, UNAVAILABLE_MESSAGE),
    OutcomeKind.TIMEOUT: (ProviderTimeoutError, UNAVAILABLE_MESSAGE),
    OutcomeKind.REJECTED: (ProviderRejectedError, REJECTED_MESSAGE),
}

SUCCESS_MESSAGES = {
    TransactionKind.AIRTIME: "Airtime purchase successful",
    TransactionKind.DATA: "Data purchase successful",
    TransactionKind.ELECTRICITY: "Electricity payment successful",
    TransactionKind.PRODUCT_PURCHASE: "Order placed successfully",
}


class TransactionOrchestrator:
    """Runs a wallet-funded purchase through its provider exactly once.

    The lifecycle of a purchase is ``pending -> success | failed``:

    * validation, the PIN gate and the balance check happen before anything is
      written, so a rejected request leaves no trace;
    * the pending row is committed before the provider is called, so every
      provider attempt has a record;
    * the balance is only debited after the provider confirmed delivery, with
      a conditional ``UPDATE`` that cannot overdraw.

    Every exit path after the provider call leaves the row terminal.
    """

    def __init__(
        self,
        session: Session,
        settings: Settings,
        providers: Mapping[TransactionKind, PurchaseProvider],
        pin_service: PinService,
        repository: Optional[LedgerRepository] = None,
    ) -> None:
        self.session = session
        self.settings = settings
        self.providers = providers
        self.pin_service = pin_service
        self.repository = repository or LedgerRepository(session)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _provider_for(self, kind: TransactionKind) -> PurchaseProvider:
        provider = self.providers.get(kind)
        if provider is None:
            raise ValidationError(f"Transactions of kind {kind.value} cannot be purchased")
        return provider

    def _check_amount(self, amount: int) -> None:
        if amount < self.settings.min_transaction_amount:
            raise ValidationError(
                f"Minimum transaction amount is {self.settings.min_transaction_amount} kobo"
            )
        if amount > self.settings.max_transaction_amount:
            raise ValidationError(
                f"Maximum transaction amount is {self.settings.max_transaction_amount} kobo"
            )

    def _pin_gate(self, account_id: UUID, pin: Optional[str]) -> None:
        if not (self.settings.require_pin_for_purchases or self.pin_service.has_pin(account_id)):
            return
        if not pin:
            raise ValidationError("Transaction PIN is required")
        self.pin_service.verify_pin(account_id, pin)

    def _call_provider(
        self,
        provider: PurchaseProvider,
        transaction: TransactionModel,
        request: PurchaseRequest,
    ) -> ProviderOutcome:
        try:
            return provider.purchase(transaction.internal_reference, request.details, request.amount)
        except Exception as exc:  # noqa: BLE001 - adapter bugs must not leave a pending row
            logger.exception(
                "purchase.provider_crashed",
                extra={"transaction_id": str(transaction.id), "provider": provider.name},
            )
            return ProviderOutcome(OutcomeKind.UNAVAILABLE, error=repr(exc))

    def _fail(
        self,
        transaction: TransactionModel,
        details: dict[str, Any],
        *,
        category: str,
        message: str,
    ) -> None:
        self.repository.finalize_transaction(
            transaction,
            status=TransactionStatus.FAILED,
            details={**details, "error_category": category, "error_message": message},
        )
        self.session.commit()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def purchase(self, account_id: UUID, request: PurchaseRequest) -> TransactionModel:
        kind = TransactionKind(request.details.kind)
        provider = self._provider_for(kind)
        self._check_amount(request.amount)
        provider.validate(request.details, request.amount)

        account = self.repository.require_account(account_id)
        self._pin_gate(account_id, request.pin)

        account = self.repository.reload_account(account.id)
        if account.balance < request.amount:
            raise InsufficientBalanceError(INSUFFICIENT_MESSAGE)

        details = request.details.model_dump(mode="json", exclude=OUTCOME_FIELDS)
        details["provider"] = provider.name
        transaction = self.repository.record_transaction(
            TransactionModel(
                account_id=account_id,
                kind=kind.value,
                amount=request.amount,
                status=TransactionStatus.PENDING.value,
                internal_reference=new_internal_reference(),
                details=details,
            )
        )
        self.session.commit()
        logger.info(
            "purchase.pending",
            extra={
                "account_id": str(account_id),
                "transaction_id": str(transaction.id),
                "kind": kind.value,
                "amount": request.amount,
            },
        )

        outcome = self._call_provider(provider, transaction, request)

        if not outcome.confirmed:
            error_cls, message = _FAILURES[outcome.kind]
            logger.warning(
                "purchase.failed",
                extra={
                    "transaction_id": str(transaction.id),
                    "category": outcome.kind.value,
                    "provider_error": outcome.error,
                },
            )
            self._fail(transaction, details, category=outcome.kind.value, message=message)
            raise error_cls(message, transaction_id=transaction.id)

        try:
            account = self.repository.debit_account(account_id, request.amount)
        except InsufficientBalanceError:
            # Delivered but unpaid: needs manual reconciliation.
            logger.error(
                "purchase.debit_failed_after_delivery",
                extra={
                    "account_id": str(account_id),
                    "transaction_id": str(transaction.id),
                    "provider_reference": outcome.reference,
                    "amount": request.amount,
                },
            )
            self._fail(
                transaction,
                details,
                category="insufficient_balance",
                message=INSUFFICIENT_MESSAGE,
            )
            raise

        try:
            self.repository.finalize_transaction(
                transaction,
                status=TransactionStatus.SUCCESS,
                details={
                    **details,
                    "provider_reference": outcome.reference,
                    "api_response": outcome.response,
                },
            )
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            logger.exception(
                "purchase.commit_failed",
                extra={"transaction_id": str(transaction.id), "provider_reference": outcome.reference},
            )
            transaction = self.repository.get_transaction(transaction.id)
            self._fail(transaction, details, category="internal_error", message=UNAVAILABLE_MESSAGE)
            raise

        self.session.refresh(transaction)
        logger.info(
            "purchase.succeeded",
            extra={
                "account_id": str(account_id),
                "transaction_id": str(transaction.id),
                "provider_reference": outcome.reference,
                "balance": account.balance,
            },
        )
        return transaction

    def success_message(self, transaction: TransactionModel) -> str:
        return SUCCESS_MESSAGES.get(TransactionKind(transaction.kind), "Purchase successful")
