from __future__ import annotations

import secrets
import string
from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from sqlalchemy import and_, case, func, or_, update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from ..core.errors import (
    AccountNotFoundError,
    DuplicateEventError,
    InsufficientBalanceError,
    InvalidStateTransitionError,
)
from ..models import (
    AccountModel,
    AuditLogModel,
    PinCredentialModel,
    ReferralRewardClaimModel,
    TransactionModel,
    TransactionStatus,
)
from ..models.db import utcnow

_REFERENCE_ALPHABET = string.ascii_uppercase + string.digits


def new_internal_reference() -> str:
    return "TRX-" + "".join(secrets.choice(_REFERENCE_ALPHABET) for _ in range(10))


class LedgerRepository:
    """Ledger store around the SQLModel session.

    Balance and counter mutations are single ``UPDATE`` statements whose
    arithmetic is evaluated by the database, so two writers racing on one row
    always compose. Nothing in here commits: the calling service owns the unit
    of work and commits once per atomic step.
    """

    def __init__(self, session: Session) -> None:
        self.session = session

    # Account operations -------------------------------------------------
    def add_account(
        self,
        *,
        name: str,
        email: str,
        phone: Optional[str],
        referral_code: str,
        referred_by: Optional[UUID] = None,
    ) -> AccountModel:
        account = AccountModel(
            name=name,
            email=email,
            phone=phone,
            referral_code=referral_code,
            referred_by=referred_by,
        )
        self.session.add(account)
        self.session.flush()
        self.session.refresh(account)
        return account

    def get_account(self, account_id: UUID) -> Optional[AccountModel]:
        return self.session.get(AccountModel, account_id)

    def require_account(self, account_id: UUID) -> AccountModel:
        account = self.get_account(account_id)
        if account is None:
            raise AccountNotFoundError(f"Account {account_id} not found")
        return account

    def reload_account(self, account_id: UUID) -> AccountModel:
        account = self.session.get(AccountModel, account_id, populate_existing=True)
        if account is None:
            raise AccountNotFoundError(f"Account {account_id} not found")
        return account

    def find_account_by_email(self, email: str) -> Optional[AccountModel]:
        stmt = select(AccountModel).where(
            func.lower(AccountModel.email) == email.strip().lower()
        )
        return self.session.exec(stmt).first()

    def find_account_by_referral_code(self, referral_code: str) -> Optional[AccountModel]:
        stmt = select(AccountModel).where(AccountModel.referral_code == referral_code)
        return self.session.exec(stmt).first()

    def find_account_by_client_reference(self, reference: str) -> Optional[AccountModel]:
        stmt = select(AccountModel).where(AccountModel.virtual_account_reference == reference)
        return self.session.exec(stmt).first()

    def credit_account(self, account_id: UUID, amount: int) -> AccountModel:
        stmt = (
            update(AccountModel)
            .where(AccountModel.id == account_id)
            .values(balance=AccountModel.balance + amount)
            .execution_options(synchronize_session=False)
        )
        result = self.session.exec(stmt)
        if result.rowcount == 0:
            raise AccountNotFoundError(f"Account {account_id} not found")
        return self.reload_account(account_id)

    def debit_account(self, account_id: UUID, amount: int) -> AccountModel:
        stmt = (
            update(AccountModel)
            .where(AccountModel.id == account_id)
            .where(AccountModel.balance >= amount)
            .values(balance=AccountModel.balance - amount)
            .execution_options(synchronize_session=False)
        )
        result = self.session.exec(stmt)
        if result.rowcount == 0:
            self.require_account(account_id)
            raise InsufficientBalanceError("Insufficient wallet balance")
        return self.reload_account(account_id)

    def add_referral_earnings(self, account_id: UUID, amount: int) -> None:
        stmt = (
            update(AccountModel)
            .where(AccountModel.id == account_id)
            .values(referral_earnings=AccountModel.referral_earnings + amount)
            .execution_options(synchronize_session=False)
        )
        self.session.exec(stmt)

    def increment_referrals(self, account_id: UUID, cap: int) -> Optional[int]:
        """Bump ``total_referrals`` unless the cap is reached.

        Returns the new total, or ``None`` when the account is already at the cap.
        """
        stmt = (
            update(AccountModel)
            .where(AccountModel.id == account_id)
            .where(AccountModel.total_referrals < cap)
            .values(total_referrals=AccountModel.total_referrals + 1)
            .execution_options(synchronize_session=False)
        )
        result = self.session.exec(stmt)
        if result.rowcount == 0:
            self.require_account(account_id)
            return None
        return self.reload_account(account_id).total_referrals

    def mark_referral_counted(self, referred_id: UUID, referrer_id: UUID) -> bool:
        """Link ``referred_id`` to ``referrer_id`` and flag it as counted.

        Only succeeds once per referred account, and never over a link to a
        different referrer.
        """
        stmt = (
            update(AccountModel)
            .where(AccountModel.id == referred_id)
            .where(AccountModel.referral_counted.is_(False))
            .where(
                or_(
                    AccountModel.referred_by.is_(None),
                    AccountModel.referred_by == referrer_id,
                )
            )
            .values(referred_by=referrer_id, referral_counted=True)
            .execution_options(synchronize_session=False)
        )
        return self.session.exec(stmt).rowcount > 0

    # Transactions -------------------------------------------------------
    def record_transaction(self, transaction: TransactionModel) -> TransactionModel:
        """Insert a transaction.

        A second success row for the same external reference violates the
        partial unique index; the whole unit of work is rolled back and
        ``DuplicateEventError`` is raised.
        """
        self.session.add(transaction)
        try:
            self.session.flush()
        except IntegrityError as exc:
            self.session.rollback()
            if transaction.external_reference is None:
                raise
            raise DuplicateEventError(
                f"Transaction with reference {transaction.external_reference} already processed"
            ) from exc
        self.session.refresh(transaction)
        return transaction

    def get_transaction(self, transaction_id: UUID) -> Optional[TransactionModel]:
        return self.session.get(TransactionModel, transaction_id)

    def find_transaction_by_external_reference(
        self, reference: str
    ) -> Optional[TransactionModel]:
        stmt = (
            select(TransactionModel)
            .where(TransactionModel.external_reference == reference)
            .where(TransactionModel.status == TransactionStatus.SUCCESS.value)
        )
        return self.session.exec(stmt).first()

    def finalize_transaction(
        self,
        transaction: TransactionModel,
        *,
        status: TransactionStatus,
        details: dict[str, Any],
    ) -> TransactionModel:
        if transaction.status != TransactionStatus.PENDING.value:
            raise InvalidStateTransitionError(
                f"Transaction {transaction.internal_reference} is already {transaction.status}"
            )
        if status == TransactionStatus.PENDING:
            raise InvalidStateTransitionError("A transaction cannot be moved back to pending")
        transaction.status = status.value
        transaction.details = details
        transaction.updated_at = utcnow()
        self.session.add(transaction)
        self.session.flush()
        return transaction

    def list_transactions(self, account_id: UUID) -> list[TransactionModel]:
        stmt = (
            select(TransactionModel)
            .where(TransactionModel.account_id == account_id)
            .order_by(TransactionModel.created_at.desc(), TransactionModel.id.desc())
        )
        return list(self.session.exec(stmt))

    # PIN credentials ----------------------------------------------------
    def get_pin_credential(self, account_id: UUID) -> Optional[PinCredentialModel]:
        return self.session.get(PinCredentialModel, account_id, populate_existing=True)

    def save_pin_credential(self, account_id: UUID, hashed_secret: str) -> PinCredentialModel:
        credential = self.get_pin_credential(account_id)
        if credential is None:
            credential = PinCredentialModel(account_id=account_id, hashed_secret=hashed_secret)
        credential.hashed_secret = hashed_secret
        credential.failed_attempts = 0
        credential.locked_until = None
        credential.updated_at = utcnow()
        self.session.add(credential)
        self.session.flush()
        return credential

    def reserve_pin_attempt(
        self,
        account_id: UUID,
        *,
        now: datetime,
        max_attempts: int,
        lock_until: datetime,
    ) -> Optional[int]:
        """Count one attempt before the PIN is checked.

        The lock test and the increment are one ``UPDATE``: an expired lock
        starts a fresh counter, and the attempt that reaches ``max_attempts``
        sets the lock. Returns the attempt number, or ``None`` while locked.
        """
        column = PinCredentialModel.locked_until
        expired = and_(column.is_not(None), column <= now)
        attempt = case((expired, 1), else_=PinCredentialModel.failed_attempts + 1)
        stmt = (
            update(PinCredentialModel)
            .where(PinCredentialModel.account_id == account_id)
            .where(or_(column.is_(None), column <= now))
            .values(
                failed_attempts=attempt,
                locked_until=case((attempt >= max_attempts, lock_until), else_=None),
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        result = self.session.exec(stmt)
        if result.rowcount == 0:
            return None
        return self.get_pin_credential(account_id).failed_attempts

    def release_pin_attempts(self, account_id: UUID, attempt: int) -> bool:
        """Reset the counter after a correct PIN.

        A lock survives unless this attempt is the one that set it.
        """
        stmt = (
            update(PinCredentialModel)
            .where(PinCredentialModel.account_id == account_id)
            .where(
                or_(
                    PinCredentialModel.locked_until.is_(None),
                    PinCredentialModel.failed_attempts == attempt,
                )
            )
            .values(failed_attempts=0, locked_until=None, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        return self.session.exec(stmt).rowcount > 0

    def delete_pin_credential(self, account_id: UUID) -> bool:
        credential = self.get_pin_credential(account_id)
        if credential is None:
            return False
        self.session.delete(credential)
        self.session.flush()
        return True

    # Referral reward claims ---------------------------------------------
    def get_referral_claim(
        self, account_id: UUID, reward_type: str
    ) -> Optional[ReferralRewardClaimModel]:
        stmt = (
            select(ReferralRewardClaimModel)
            .where(ReferralRewardClaimModel.account_id == account_id)
            .where(ReferralRewardClaimModel.reward_type == reward_type)
        )
        return self.session.exec(stmt).first()

    def add_referral_claim(
        self,
        *,
        account_id: UUID,
        reward_type: str,
        details: dict[str, Any],
        transaction_id: UUID,
    ) -> ReferralRewardClaimModel:
        claim = ReferralRewardClaimModel(
            account_id=account_id,
            reward_type=reward_type,
            details=details,
            transaction_id=transaction_id,
        )
        self.session.add(claim)
        self.session.flush()
        return claim

    # Audit log ----------------------------------------------------------
    def add_audit_log(
        self,
        action: str,
        *,
        account_id: Optional[UUID] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.session.add(
            AuditLogModel(action=action, account_id=account_id, details=details or {})
        )

    def list_audit_logs(self, action: Optional[str] = None) -> list[AuditLogModel]:
        stmt = select(AuditLogModel).order_by(AuditLogModel.created_at)
        if action is not None:
            stmt = stmt.where(AuditLogModel.action == action)
        return list(self.session.exec(stmt))
