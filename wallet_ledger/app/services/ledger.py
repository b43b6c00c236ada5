from __future__ import annotations

import logging
import re
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session

from ..core.config import Settings
from ..core.errors import ValidationError
from ..models import (
    AccountCreate,
    AccountModel,
    AccountResponse,
    StatementResponse,
    TransactionModel,
    TransactionResponse,
)
from ..models.db import as_utc
from .repository import LedgerRepository


logger = logging.getLogger(__name__)


def account_to_response(account: AccountModel) -> AccountResponse:
    return AccountResponse(
        id=account.id,
        name=account.name,
        email=account.email,
        phone=account.phone,
        balance=account.balance,
        is_admin=account.is_admin,
        referral_code=account.referral_code,
        referred_by=account.referred_by,
        total_referrals=account.total_referrals,
        referral_earnings=account.referral_earnings,
        virtual_account_number=account.virtual_account_number,
        virtual_account_bank_name=account.virtual_account_bank_name,
        created_at=as_utc(account.created_at),
    )


def transaction_to_response(transaction: TransactionModel) -> TransactionResponse:
    return TransactionResponse.model_validate(
        {
            "id": transaction.id,
            "account_id": transaction.account_id,
            "kind": transaction.kind,
            "amount": transaction.amount,
            "status": transaction.status,
            "internal_reference": transaction.internal_reference,
            "external_reference": transaction.external_reference,
            "details": {"kind": transaction.kind, **transaction.details},
            "created_at": as_utc(transaction.created_at),
            "updated_at": as_utc(transaction.updated_at),
        }
    )


class LedgerService:
    def __init__(
        self,
        session: Session,
        settings: Settings,
        repository: Optional[LedgerRepository] = None,
    ) -> None:
        self.session = session
        self.settings = settings
        self.repository = repository or LedgerRepository(session)

    # ------------------------------------------------------------------
    # Helper utilities
    # ------------------------------------------------------------------
    def _referral_code(self, name: str, account_id: UUID) -> str:
        slug = re.sub(r"\s+", "", name).upper() or "USER"
        code = f"{self.settings.referral_code_prefix}-{slug}{account_id.hex[-3:].upper()}"
        while self.repository.find_account_by_referral_code(code) is not None:
            code = f"{self.settings.referral_code_prefix}-{slug}{uuid4().hex[-5:].upper()}"
        return code

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def create_account(self, payload: AccountCreate) -> AccountResponse:
        email = payload.email.strip().lower()
        if self.repository.find_account_by_email(email) is not None:
            raise ValidationError("An account with this email already exists")

        referred_by = None
        if payload.referral_code:
            referrer = self.repository.find_account_by_referral_code(payload.referral_code)
            if referrer is None:
                logger.warning(
                    "account.unknown_referral_code",
                    extra={"referral_code": payload.referral_code},
                )
            else:
                referred_by = referrer.id

        try:
            account = self.repository.add_account(
                name=payload.name,
                email=email,
                phone=payload.phone,
                referral_code=self._referral_code(payload.name, uuid4()),
                referred_by=referred_by,
            )
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise ValidationError("An account with this email already exists") from exc

        logger.info(
            "account.created",
            extra={
                "account_id": str(account.id),
                "referred_by": str(referred_by) if referred_by else None,
            },
        )
        return account_to_response(account)

    def get_account(self, account_id: UUID) -> AccountResponse:
        return account_to_response(self.repository.require_account(account_id))

    def get_statement(
        self,
        account_id: UUID,
        limit: int = 50,
        cursor: Optional[str] = None,
    ) -> StatementResponse:
        """Transactions newest first; ``cursor`` is the id of the last item seen."""
        self.repository.require_account(account_id)

        transactions = self.repository.list_transactions(account_id)

        start_index = 0
        if cursor:
            try:
                cursor_id = UUID(cursor)
            except ValueError as exc:
                raise ValidationError("Invalid cursor") from exc
            for idx, transaction in enumerate(transactions):
                if transaction.id == cursor_id:
                    start_index = idx + 1
                    break
            else:
                raise ValidationError("Invalid cursor")

        page = transactions[start_index : start_index + limit]
        next_cursor = None
        if start_index + limit < len(transactions):
            next_cursor = str(page[-1].id)

        return StatementResponse(
            items=[transaction_to_response(transaction) for transaction in page],
            next_cursor=next_cursor,
        )
