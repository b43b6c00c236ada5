from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel


class TransactionKind(str, Enum):
    TOP_UP = "top_up"
    AIRTIME = "airtime"
    DATA = "data"
    ELECTRICITY = "electricity"
    PRODUCT_PURCHASE = "product_purchase"
    REFERRAL_REWARD = "referral_reward"


class TransactionStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


class RewardType(str, Enum):
    DATA_BUNDLE = "data_bundle"
    AIRTIME = "airtime"
    WALLET_CREDIT = "wallet_credit"


class PinAction(str, Enum):
    SET_PIN = "set_pin"
    VERIFY_PIN = "verify_pin"
    CHECK_PIN_STATUS = "check_pin_status"
    RESET_PIN = "reset_pin"


Network = Literal["mtn", "airtel", "glo", "9mobile"]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------
class AccountCreate(BaseModel):
    name: str = Field(..., min_length=1, description="Display name of the account holder")
    email: EmailStr
    phone: Optional[str] = Field(default=None, pattern=r"^\+?\d{10,14}$")
    referral_code: Optional[str] = Field(default=None, description="Referral code used at signup")


class AccountResponse(BaseModel):
    id: UUID
    name: str
    email: str
    phone: Optional[str] = None
    balance: int = Field(..., ge=0, description="Balance in minor units (kobo)")
    is_admin: bool
    referral_code: str
    referred_by: Optional[UUID] = None
    total_referrals: int
    referral_earnings: int
    virtual_account_number: Optional[str] = None
    virtual_account_bank_name: Optional[str] = None
    created_at: datetime


# ---------------------------------------------------------------------------
# Transaction details, one shape per kind
# ---------------------------------------------------------------------------
class TopUpDetails(BaseModel):
    kind: Literal["top_up"] = "top_up"
    payment_method: str = "bank_transfer"
    currency: str
    client_reference: Optional[str] = None
    payer_email: Optional[str] = None
    gateway_payload: dict[str, Any] = Field(default_factory=dict)


class PurchaseOutcome(BaseModel):
    """Fields the orchestrator fills in once a purchase is terminal."""

    provider: Optional[str] = None
    provider_reference: Optional[str] = None
    api_response: Optional[dict[str, Any]] = None
    error_category: Optional[str] = None
    error_message: Optional[str] = None


OUTCOME_FIELDS = frozenset(PurchaseOutcome.model_fields)


class AirtimeDetails(PurchaseOutcome):
    kind: Literal["airtime"] = "airtime"
    network: Network
    phone: str = Field(..., pattern=r"^\+?\d{10,14}$")


class DataDetails(PurchaseOutcome):
    kind: Literal["data"] = "data"
    network: Network
    plan: str = Field(..., description="Catalog plan code, e.g. mtn-1gb-30days")
    phone: str = Field(..., pattern=r"^\+?\d{10,14}$")


class ElectricityDetails(PurchaseOutcome):
    kind: Literal["electricity"] = "electricity"
    disco: str
    meter_number: str = Field(..., pattern=r"^\d{6,13}$")
    meter_type: Literal["prepaid", "postpaid"]


class ProductPurchaseDetails(PurchaseOutcome):
    kind: Literal["product_purchase"] = "product_purchase"
    product_id: str
    product_name: str
    quantity: int = Field(default=1, ge=1)
    order_id: Optional[str] = None


class ReferralRewardDetails(BaseModel):
    kind: Literal["referral_reward"] = "referral_reward"
    reward_type: RewardType
    data_size: Optional[str] = None
    network: Optional[str] = None
    note: Optional[str] = None


PurchaseDetails = Annotated[
    Union[AirtimeDetails, DataDetails, ElectricityDetails, ProductPurchaseDetails],
    Field(discriminator="kind"),
]

TransactionDetails = Annotated[
    Union[
        TopUpDetails,
        AirtimeDetails,
        DataDetails,
        ElectricityDetails,
        ProductPurchaseDetails,
        ReferralRewardDetails,
    ],
    Field(discriminator="kind"),
]


class TransactionResponse(BaseModel):
    id: UUID
    account_id: UUID
    kind: TransactionKind
    amount: int
    status: TransactionStatus
    internal_reference: str
    external_reference: Optional[str] = None
    details: TransactionDetails
    created_at: datetime
    updated_at: datetime


class StatementResponse(BaseModel):
    items: list[TransactionResponse]
    next_cursor: Optional[str] = None


# ---------------------------------------------------------------------------
# Purchases
# ---------------------------------------------------------------------------
class PurchaseRequest(BaseModel):
    amount: int = Field(..., ge=1, description="Amount in minor units (kobo)")
    pin: Optional[str] = Field(default=None, description="Transaction PIN")
    details: PurchaseDetails


class PurchaseResponse(BaseModel):
    success: bool = True
    message: str
    transaction: TransactionResponse


# ---------------------------------------------------------------------------
# Gateway webhook
# ---------------------------------------------------------------------------
class WebhookCustomer(BaseModel):
    model_config = ConfigDict(extra="allow")

    email: Optional[str] = None


class WebhookData(BaseModel):
    model_config = ConfigDict(extra="allow")

    status: Optional[str] = None
    payment_type: Optional[str] = None
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    tx_ref: Optional[str] = None
    flw_ref: Optional[str] = None
    customer: Optional[WebhookCustomer] = None


class WebhookEvent(BaseModel):
    model_config = ConfigDict(extra="allow")

    event: Optional[str] = None
    data: Optional[WebhookData] = None


class WebhookAck(BaseModel):
    success: bool = True
    message: str


# ---------------------------------------------------------------------------
# Transaction PIN
# ---------------------------------------------------------------------------
class PinRequest(CamelModel):
    action: PinAction
    user_id: UUID
    pin: Optional[str] = None
    current_pin: Optional[str] = None
    admin_id: Optional[UUID] = None


class PinStatus(BaseModel):
    has_pin: bool
    is_locked: bool
    locked_until: Optional[datetime] = None
    attempts: int = 0


class PinResponse(CamelModel):
    success: bool
    message: Optional[str] = None
    has_pin: Optional[bool] = None
    is_locked: Optional[bool] = None
    locked_until: Optional[datetime] = None
    attempts: Optional[int] = None


# ---------------------------------------------------------------------------
# Referrals
# ---------------------------------------------------------------------------
class ReferralCountRequest(CamelModel):
    referrer_id: UUID
    referred_user_id: UUID
    referred_user_name: Optional[str] = None
    referral_code: Optional[str] = None


class ReferralCountResponse(CamelModel):
    success: bool
    message: str
    new_total_referrals: int
    limit_reached: bool


class RewardEligibility(CamelModel):
    enabled: bool
    eligible: bool
    required_count: int
    current_count: int


class RewardClaimRequest(CamelModel):
    reward_type: RewardType
    network: Optional[Network] = None


class RewardClaimResponse(CamelModel):
    success: bool = True
    claimed: bool
    message: str
    transaction: Optional[TransactionResponse] = None


# ---------------------------------------------------------------------------
# Virtual accounts
# ---------------------------------------------------------------------------
class VirtualAccountRequest(BaseModel):
    first_name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)
    bvn: Optional[str] = Field(default=None, pattern=r"^\d{11}$")


class VirtualAccountResponse(BaseModel):
    bank_name: str
    account_number: str
    reference: str
