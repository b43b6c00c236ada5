import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Header, Query, status
from fastapi.responses import JSONResponse

from ..core.dependencies import (
    get_ledger_service,
    get_orchestrator,
    get_pin_service,
    get_referral_service,
    get_virtual_account_service,
    get_webhook_service,
)
from ..core.errors import LedgerError
from ..models import (
    AccountCreate,
    AccountResponse,
    PinAction,
    PinRequest,
    PinResponse,
    PurchaseRequest,
    PurchaseResponse,
    ReferralCountRequest,
    ReferralCountResponse,
    RewardClaimRequest,
    RewardClaimResponse,
    RewardEligibility,
    StatementResponse,
    VirtualAccountRequest,
    VirtualAccountResponse,
    WebhookAck,
    WebhookEvent,
)
from ..services import (
    LedgerService,
    PinService,
    ReferralService,
    TransactionOrchestrator,
    VirtualAccountService,
    WebhookService,
)
from ..services.ledger import transaction_to_response
from .exceptions import error_body


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/accounts", tags=["accounts"])

@router.post("", response_model=AccountResponse, status_code=status.HTTP_201_CREATED)
def create_account(
    payload: AccountCreate,
    service: LedgerService = Depends(get_ledger_service),
) -> AccountResponse:
    return service.create_account(payload)

@router.get("/{account_id}", response_model=AccountResponse)
def get_account(
    account_id: UUID,
    service: LedgerService = Depends(get_ledger_service),
) -> AccountResponse:
    return service.get_account(account_id)

@router.get("/{account_id}/transactions", response_model=StatementResponse)
def list_transactions(
    account_id: UUID,
    limit: int = Query(50, ge=1, le=200),
    cursor: Optional[str] = None,
    service: LedgerService = Depends(get_ledger_service),
) -> StatementResponse:
    return service.get_statement(account_id, limit=limit, cursor=cursor)

@router.post(
    "/{account_id}/purchases",
    response_model=PurchaseResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_purchase(
    account_id: UUID,
    payload: PurchaseRequest,
    orchestrator: TransactionOrchestrator = Depends(get_orchestrator),
) -> PurchaseResponse:
    transaction = orchestrator.purchase(account_id, payload)
    return PurchaseResponse(
        message=orchestrator.success_message(transaction),
        transaction=transaction_to_response(transaction),
    )

@router.get("/{account_id}/referral-reward", response_model=RewardEligibility)
def get_referral_reward(
    account_id: UUID,
    service: ReferralService = Depends(get_referral_service),
) -> RewardEligibility:
    return service.evaluate_eligibility(account_id)

@router.post("/{account_id}/referral-reward", response_model=RewardClaimResponse)
def claim_referral_reward(
    account_id: UUID,
    payload: RewardClaimRequest,
    service: ReferralService = Depends(get_referral_service),
) -> RewardClaimResponse:
    result = service.claim_reward(account_id, payload.reward_type, payload.network)
    return RewardClaimResponse(
        claimed=result.claimed,
        message=result.message,
        transaction=transaction_to_response(result.transaction) if result.transaction else None,
    )

@router.post(
    "/{account_id}/virtual-account",
    response_model=VirtualAccountResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_virtual_account(
    account_id: UUID,
    payload: VirtualAccountRequest,
    service: VirtualAccountService = Depends(get_virtual_account_service),
) -> VirtualAccountResponse:
    return service.create_virtual_account(account_id, payload)

pin_router = APIRouter(prefix="/pin", tags=["pin"])

@pin_router.post("", response_model=PinResponse, response_model_exclude_none=True)
def handle_pin(
    payload: PinRequest,
    service: PinService = Depends(get_pin_service),
) -> PinResponse:
    if payload.action is PinAction.SET_PIN:
        changed = service.has_pin(payload.user_id)
        service.set_pin(payload.user_id, payload.pin, payload.current_pin)
        message = "PIN changed successfully" if changed else "PIN set successfully"
        return PinResponse(success=True, message=message)
    if payload.action is PinAction.VERIFY_PIN:
        service.verify_pin(payload.user_id, payload.pin)
        return PinResponse(success=True, message="PIN verified successfully")
    if payload.action is PinAction.CHECK_PIN_STATUS:
        pin_status = service.check_status(payload.user_id)
        return PinResponse(success=True, **pin_status.model_dump())
    service.reset_pin(payload.user_id, payload.admin_id)
    return PinResponse(success=True, message="PIN reset successfully")

webhook_router = APIRouter(prefix="/webhooks", tags=["webhooks"])

@webhook_router.post("/flutterwave", response_model=WebhookAck)
def flutterwave_webhook(
    payload: WebhookEvent,
    service: WebhookService = Depends(get_webhook_service),
    verif_hash: Optional[str] = Header(default=None, alias="verif-hash"),
):
    service.verify_signature(verif_hash)
    try:
        return service.process_event(payload)
    except LedgerError as exc:
        # Any failure is a 500 so the gateway retries the delivery.
        logger.error("webhook.failed", extra={"error": str(exc), "type": type(exc).__name__})
        return JSONResponse(status_code=500, content=error_body(exc))

referral_router = APIRouter(prefix="/referrals", tags=["referrals"])

@referral_router.post("/count", response_model=ReferralCountResponse)
def update_referral_count(
    payload: ReferralCountRequest,
    service: ReferralService = Depends(get_referral_service),
) -> ReferralCountResponse:
    return service.record_referral(
        payload.referrer_id,
        payload.referred_user_id,
        payload.referred_user_name,
        payload.referral_code,
    )

__all__ = ["router", "pin_router", "webhook_router", "referral_router"]
