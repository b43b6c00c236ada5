from collections.abc import Callable, Mapping
from datetime import datetime
from typing import Optional

import httpx
from fastapi import Depends
from sqlmodel import Session

from ..models import TransactionKind
from ..models.db import utcnow
from ..services import (
    LedgerRepository,
    LedgerService,
    PinService,
    PurchaseProvider,
    ReferralService,
    TransactionOrchestrator,
    VirtualAccountService,
    WebhookService,
    build_provider_registry,
)
from .config import Settings, get_settings
from .db import get_session


def get_clock() -> Callable[[], datetime]:
    return utcnow


def get_http_transport() -> Optional[httpx.BaseTransport]:
    """Outbound transport for provider and gateway calls; ``None`` means the network."""
    return None


def get_repository(session: Session = Depends(get_session)) -> LedgerRepository:
    return LedgerRepository(session)


def get_provider_registry(
    settings: Settings = Depends(get_settings),
    transport: Optional[httpx.BaseTransport] = Depends(get_http_transport),
) -> Mapping[TransactionKind, PurchaseProvider]:
    return build_provider_registry(settings, transport=transport)


def get_ledger_service(
    session: Session = Depends(get_session),
    settings: Settings = Depends(get_settings),
    repository: LedgerRepository = Depends(get_repository),
) -> LedgerService:
    return LedgerService(session, settings, repository)


def get_pin_service(
    session: Session = Depends(get_session),
    settings: Settings = Depends(get_settings),
    repository: LedgerRepository = Depends(get_repository),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> PinService:
    return PinService(session, settings, repository, clock=clock)


def get_webhook_service(
    session: Session = Depends(get_session),
    settings: Settings = Depends(get_settings),
    repository: LedgerRepository = Depends(get_repository),
) -> WebhookService:
    return WebhookService(session, settings, repository)


def get_orchestrator(
    session: Session = Depends(get_session),
    settings: Settings = Depends(get_settings),
    repository: LedgerRepository = Depends(get_repository),
    providers: Mapping[TransactionKind, PurchaseProvider] = Depends(get_provider_registry),
    pin_service: PinService = Depends(get_pin_service),
) -> TransactionOrchestrator:
    return TransactionOrchestrator(session, settings, providers, pin_service, repository)


def get_referral_service(
    session: Session = Depends(get_session),
    settings: Settings = Depends(get_settings),
    repository: LedgerRepository = Depends(get_repository),
) -> ReferralService:
    return ReferralService(session, settings, repository)


def get_virtual_account_service(
    session: Session = Depends(get_session),
    settings: Settings = Depends(get_settings),
    repository: LedgerRepository = Depends(get_repository),
    transport: Optional[httpx.BaseTransport] = Depends(get_http_transport),
) -> VirtualAccountService:
    return VirtualAccountService(session, settings, repository, transport=transport)
