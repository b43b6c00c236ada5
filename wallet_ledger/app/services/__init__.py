from .ledger import LedgerService
from .orchestrator import TransactionOrchestrator
from .pin import PinService
from .providers import (
    MaskawaProvider,
    OutcomeKind,
    ProviderOutcome,
    PurchaseProvider,
    StoreProvider,
    build_provider_registry,
)
from .referrals import ClaimResult, ReferralService
from .repository import LedgerRepository
from .virtual_accounts import VirtualAccountService
from .webhook import WebhookService

__all__ = [
    "ClaimResult",
    "LedgerRepository",
    "LedgerService",
    "MaskawaProvider",
    "OutcomeKind",
    "PinService",
    "ProviderOutcome",
    "PurchaseProvider",
    "ReferralService",
    "StoreProvider",
    "TransactionOrchestrator",
    "VirtualAccountService",
    "WebhookService",
    "build_provider_registry",
]
