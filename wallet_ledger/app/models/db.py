from __future__ import annotations
from datetime import datetime, UTC
from typing import Any, Optional
from uuid import UUID, uuid4
from sqlalchemy import JSON, Column, Index, UniqueConstraint, text
from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    return datetime.now(UTC)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes; everything here is stored in UTC.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class Account(SQLModel, table=True):
    __tablename__ = "accounts"

    id: UUID = Field(default_factory=uuid4, primary_key=True, index=True)
    name: str
    email: str = Field(unique=True, index=True)
    phone: Optional[str] = None
    balance: int = Field(default=0, ge=0)
    is_admin: bool = False
    referral_code: str = Field(unique=True, index=True)
    referred_by: Optional[UUID] = Field(default=None, foreign_key="accounts.id")
    referral_counted: bool = False
    total_referrals: int = 0
    referral_earnings: int = 0
    virtual_account_number: Optional[str] = None
    virtual_account_bank_name: Optional[str] = None
    virtual_account_reference: Optional[str] = Field(default=None, unique=True, index=True)
    created_at: datetime = Field(default_factory=utcnow)


class Transaction(SQLModel, table=True):
    __tablename__ = "transactions"
    # A provider reference may sit on many failed rows but on one success row only.
    __table_args__ = (
        Index(
            "uq_transactions_external_reference_success",
            "external_reference",
            unique=True,
            sqlite_where=text("status = 'success'"),
            postgresql_where=text("status = 'success'"),
        ),
    )

    id: UUID = Field(default_factory=uuid4, primary_key=True, index=True)
    account_id: UUID = Field(foreign_key="accounts.id", index=True)
    kind: str
    amount: int = Field(gt=0)
    status: str = Field(default="pending", index=True)
    internal_reference: str = Field(unique=True, index=True)
    external_reference: Optional[str] = None
    details: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    created_at: datetime = Field(default_factory=utcnow, index=True)
    updated_at: datetime = Field(default_factory=utcnow)


class PinCredential(SQLModel, table=True):
    __tablename__ = "pin_credentials"

    account_id: UUID = Field(foreign_key="accounts.id", primary_key=True)
    hashed_secret: str
    failed_attempts: int = 0
    locked_until: Optional[datetime] = None
    updated_at: datetime = Field(default_factory=utcnow)


class ReferralRewardClaim(SQLModel, table=True):
    __tablename__ = "referral_reward_claims"
    __table_args__ = (
        UniqueConstraint("account_id", "reward_type", name="uq_referral_claim_account_reward"),
    )

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    account_id: UUID = Field(foreign_key="accounts.id", index=True)
    reward_type: str
    details: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    status: str = "claimed"
    transaction_id: Optional[UUID] = Field(default=None, foreign_key="transactions.id")
    created_at: datetime = Field(default_factory=utcnow)


class AuditLog(SQLModel, table=True):
    __tablename__ = "admin_logs"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    action: str = Field(index=True)
    account_id: Optional[UUID] = Field(default=None, index=True)
    details: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    created_at: datetime = Field(default_factory=utcnow)
