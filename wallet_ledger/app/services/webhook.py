from __future__ import annotations

import hmac
import logging
from decimal import Decimal, InvalidOperation
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session

from ..core.config import Settings
from ..core.errors import (
    AccountNotFoundError,
    AuthenticationMismatchError,
    DuplicateEventError,
    ValidationError,
    WebhookSignatureError,
)
from ..models import (
    AccountModel,
    TransactionKind,
    TransactionModel,
    TransactionStatus,
    WebhookAck,
    WebhookEvent,
)
from ..models.schemas import TopUpDetails, WebhookData
from .repository import LedgerRepository, new_internal_reference


logger = logging.getLogger(__name__)

COMPLETED_EVENT = "charge.completed"
BANK_TRANSFER = "bank_transfer"
SUCCESSFUL = "successful"


class WebhookService:
    """Turns gateway payment notifications into exactly-once wallet credits.

    The gateway's ``flw_ref`` is the idempotency key: a second delivery of the
    same charge finds the existing success transaction and is acknowledged
    without touching the ledger. Deliveries that race each other are settled
    by the partial unique index on ``transactions.external_reference``.
    """

    def __init__(
        self,
        session: Session,
        settings: Settings,
        repository: Optional[LedgerRepository] = None,
    ) -> None:
        self.session = session
        self.settings = settings
        self.repository = repository or LedgerRepository(session)

    def verify_signature(self, signature: Optional[str]) -> None:
        expected = self.settings.flutterwave_secret_hash
        if not expected:
            return
        if not signature or not hmac.compare_digest(signature, expected):
            raise WebhookSignatureError("Invalid webhook signature")

    def _to_minor_units(self, amount: Optional[Decimal]) -> int:
        if amount is None:
            raise ValidationError("Missing amount in webhook payload")
        try:
            kobo = amount * 100
            if kobo != kobo.to_integral_value():
                raise ValidationError(f"Amount {amount} has more than two decimal places")
            kobo = int(kobo)
        except InvalidOperation as exc:
            raise ValidationError(f"Invalid amount {amount}") from exc
        if kobo <= 0:
            raise ValidationError("Webhook amount must be positive")
        return kobo

    def _resolve_account(self, data: WebhookData) -> AccountModel:
        payer_email = data.customer.email if data.customer else None

        account = self.repository.find_account_by_client_reference(data.tx_ref)
        if account is None and payer_email:
            account = self.repository.find_account_by_email(payer_email)
        if account is None:
            raise AccountNotFoundError(
                f"No account found for transaction reference {data.tx_ref}"
            )

        if not payer_email or payer_email.strip().lower() != account.email.lower():
            logger.error(
                "webhook.email_mismatch",
                extra={"account_id": str(account.id), "tx_ref": data.tx_ref},
            )
            raise AuthenticationMismatchError("Email mismatch in transaction")
        return account

    def process_event(self, event: WebhookEvent) -> WebhookAck:
        data = event.data
        if (
            event.event != COMPLETED_EVENT
            or data is None
            or data.payment_type != BANK_TRANSFER
            or data.status != SUCCESSFUL
        ):
            logger.info("webhook.ignored", extra={"event": event.event})
            return WebhookAck(message="Event ignored")

        if not data.flw_ref:
            raise ValidationError("Missing flw_ref in webhook payload")

        if self.repository.find_transaction_by_external_reference(data.flw_ref) is not None:
            logger.info("webhook.duplicate", extra={"flw_ref": data.flw_ref})
            return WebhookAck(message="Transaction already processed")

        if not data.tx_ref:
            raise ValidationError("Missing tx_ref in webhook payload")
        currency = (data.currency or self.settings.currency).upper()
        if currency != self.settings.currency:
            raise ValidationError(f"Unsupported currency {currency}")
        amount = self._to_minor_units(data.amount)
        account = self._resolve_account(data)

        details = TopUpDetails(
            currency=currency,
            client_reference=data.tx_ref,
            payer_email=data.customer.email if data.customer else None,
            gateway_payload=data.model_dump(mode="json"),
        )
        try:
            credited = self.repository.credit_account(account.id, amount)
            transaction = self.repository.record_transaction(
                TransactionModel(
                    account_id=account.id,
                    kind=TransactionKind.TOP_UP.value,
                    amount=amount,
                    status=TransactionStatus.SUCCESS.value,
                    internal_reference=new_internal_reference(),
                    external_reference=data.flw_ref,
                    details=details.model_dump(mode="json"),
                )
            )
            previous_balance = credited.balance - amount
            self.repository.add_audit_log(
                "wallet_funding_webhook",
                account_id=account.id,
                details={
                    "amount": amount,
                    "tx_ref": data.tx_ref,
                    "flw_ref": data.flw_ref,
                    "previous_balance": previous_balance,
                    "new_balance": credited.balance,
                },
            )
            self.session.commit()
        except DuplicateEventError:
            logger.info("webhook.duplicate_race", extra={"flw_ref": data.flw_ref})
            return WebhookAck(message="Transaction already processed")
        except IntegrityError:
            self.session.rollback()
            logger.info("webhook.duplicate_race", extra={"flw_ref": data.flw_ref})
            return WebhookAck(message="Transaction already processed")

        logger.info(
            "webhook.credited",
            extra={
                "account_id": str(account.id),
                "transaction_id": str(transaction.id),
                "amount": amount,
                "previous_balance": previous_balance,
                "balance": credited.balance,
            },
        )
        return WebhookAck(message="Wallet funded successfully")
