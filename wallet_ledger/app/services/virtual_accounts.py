from __future__ import annotations

import logging
import secrets
import time
from typing import Optional
from uuid import UUID

import httpx
from sqlmodel import Session

from ..core.config import Settings
from ..core.errors import (
    ProviderRejectedError,
    ProviderTimeoutError,
    ProviderUnavailableError,
)
from ..models import VirtualAccountRequest, VirtualAccountResponse
from .repository import LedgerRepository


logger = logging.getLogger(__name__)


class VirtualAccountService:
    """Provisions the dedicated bank account an account holder funds by transfer.

    The ``tx_ref`` sent to the gateway is stored on the account and comes back
    as the client reference of every funding webhook for that bank account.
    """

    def __init__(
        self,
        session: Session,
        settings: Settings,
        repository: Optional[LedgerRepository] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.session = session
        self.settings = settings
        self.repository = repository or LedgerRepository(session)
        self.transport = transport

    def _new_reference(self) -> str:
        return f"{self.settings.referral_code_prefix}-va-{int(time.time() * 1000)}-{secrets.randbelow(1000)}"

    def create_virtual_account(
        self, account_id: UUID, payload: VirtualAccountRequest
    ) -> VirtualAccountResponse:
        account = self.repository.require_account(account_id)
        if account.virtual_account_number and account.virtual_account_reference:
            return VirtualAccountResponse(
                bank_name=account.virtual_account_bank_name or "",
                account_number=account.virtual_account_number,
                reference=account.virtual_account_reference,
            )

        if not self.settings.flutterwave_secret_key:
            raise ProviderUnavailableError("Payment gateway is not configured")

        tx_ref = self._new_reference()
        is_permanent = payload.bvn is not None
        body = {
            "email": account.email,
            "tx_ref": tx_ref,
            "phonenumber": account.phone or "",
            "firstname": payload.first_name,
            "lastname": payload.last_name,
            "narration": f"{payload.first_name} {payload.last_name}",
            "is_permanent": is_permanent,
        }
        if is_permanent:
            body["bvn"] = payload.bvn

        try:
            with httpx.Client(
                base_url=self.settings.flutterwave_base_url,
                timeout=self.settings.provider_timeout_seconds,
                transport=self.transport,
            ) as client:
                response = client.post(
                    "/virtual-account-numbers",
                    json=body,
                    headers={"Authorization": f"Bearer {self.settings.flutterwave_secret_key}"},
                )
        except httpx.TimeoutException as exc:
            logger.warning("virtual_account.timeout", extra={"account_id": str(account_id)})
            raise ProviderTimeoutError(
                "Service temporarily unavailable. Please try again later."
            ) from exc
        except httpx.HTTPError as exc:
            logger.warning(
                "virtual_account.transport_error",
                extra={"account_id": str(account_id), "error": repr(exc)},
            )
            raise ProviderUnavailableError(
                "Service temporarily unavailable. Please try again later."
            ) from exc

        try:
            data = response.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}
        if response.status_code >= 500:
            raise ProviderUnavailableError("Service temporarily unavailable. Please try again later.")
        if response.is_error or data.get("status") != "success":
            logger.warning(
                "virtual_account.rejected",
                extra={
                    "account_id": str(account_id),
                    "status_code": response.status_code,
                    "gateway_message": data.get("message"),
                },
            )
            raise ProviderRejectedError("Failed to create virtual account")

        created = data.get("data")
        if not isinstance(created, dict):
            created = {}
        bank_name = created.get("bank_name")
        account_number = created.get("account_number")
        if not bank_name or not account_number:
            logger.warning(
                "virtual_account.malformed_response",
                extra={"account_id": str(account_id), "status_code": response.status_code},
            )
            raise ProviderRejectedError("Failed to create virtual account")
        account_number = str(account_number)

        account.virtual_account_bank_name = bank_name
        account.virtual_account_number = account_number
        account.virtual_account_reference = tx_ref
        self.session.add(account)
        self.repository.add_audit_log(
            "create_virtual_account",
            account_id=account_id,
            details={
                "tx_ref": tx_ref,
                "is_permanent": is_permanent,
                "bank_name": bank_name,
                "account_number": account_number[-4:],
            },
        )
        self.session.commit()
        logger.info(
            "virtual_account.created",
            extra={"account_id": str(account_id), "bank_name": bank_name},
        )
        return VirtualAccountResponse(
            bank_name=bank_name,
            account_number=account_number,
            reference=tx_ref,
        )
