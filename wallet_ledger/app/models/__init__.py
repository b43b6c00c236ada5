from .db import Account as AccountModel
from .db import AuditLog as AuditLogModel
from .db import PinCredential as PinCredentialModel
from .db import ReferralRewardClaim as ReferralRewardClaimModel
from .db import Transaction as TransactionModel
from .schemas import (
    OUTCOME_FIELDS,
    AccountCreate,
    AccountResponse,
    PinAction,
    PinRequest,
    PinResponse,
    PinStatus,
    PurchaseRequest,
    PurchaseResponse,
    ReferralCountRequest,
    ReferralCountResponse,
    RewardClaimRequest,
    RewardClaimResponse,
    RewardEligibility,
    RewardType,
    StatementResponse,
    TransactionKind,
    TransactionResponse,
    TransactionStatus,
    VirtualAccountRequest,
    VirtualAccountResponse,
    WebhookAck,
    WebhookEvent,
)

__all__ = [
    "OUTCOME_FIELDS",
    "AccountCreate",
    "AccountResponse",
    "PinAction",
    "PinRequest",
    "PinResponse",
    "PinStatus",
    "PurchaseRequest",
    "PurchaseResponse",
    "ReferralCountRequest",
    "ReferralCountResponse",
    "RewardClaimRequest",
    "RewardClaimResponse",
    "RewardEligibility",
    "RewardType",
    "StatementResponse",
    "TransactionKind",
    "TransactionResponse",
    "TransactionStatus",
    "VirtualAccountRequest",
    "VirtualAccountResponse",
    "WebhookAck",
    "WebhookEvent",
    "AccountModel",
    "AuditLogModel",
    "PinCredentialModel",
    "ReferralRewardClaimModel",
    "TransactionModel",
]
