"""Outbound purchase providers.

Each adapter turns a purchase into one provider call and classifies the result
exactly once into a :class:`ProviderOutcome`. Nothing downstream parses
provider error text.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Protocol, Union

import httpx

from ..core.config import Settings
from ..core.errors import ValidationError
from ..models import TransactionKind
from ..models.schemas import (
    AirtimeDetails,
    DataDetails,
    ElectricityDetails,
    ProductPurchaseDetails,
)
from .catalog import DISCO_CODES, METER_TYPE_CODES, NETWORK_CODES, get_data_plan


logger = logging.getLogger(__name__)

PurchaseDetailsModel = Union[AirtimeDetails, DataDetails, ElectricityDetails, ProductPurchaseDetails]

SUCCESS_STATUSES = frozenset({"success", "successful", "completed", "delivered"})
FAILURE_STATUSES = frozenset({"failed", "fail", "error", "rejected", "cancelled", "declined"})


class OutcomeKind(str, Enum):
    CONFIRMED = "confirmed"
    REJECTED = "rejected"
    UNAVAILABLE = "unavailable"
    TIMEOUT = "timeout"


@dataclass
class ProviderOutcome:
    kind: OutcomeKind
    reference: Optional[str] = None
    response: dict[str, Any] = field(default_factory=dict)
    # Raw provider error text. Logged, never shown to the account holder.
    error: Optional[str] = None

    @property
    def confirmed(self) -> bool:
        return self.kind is OutcomeKind.CONFIRMED


class PurchaseProvider(Protocol):
    name: str

    def validate(self, details: PurchaseDetailsModel, amount: int) -> None:
        ...

    def purchase(
        self, reference: str, details: PurchaseDetailsModel, amount: int
    ) -> ProviderOutcome:
        ...


def to_major_units(amount: int) -> Union[int, float]:
    naira, kobo = divmod(amount, 100)
    return naira if kobo == 0 else amount / 100


def classify_response(response: httpx.Response) -> ProviderOutcome:
    """Map an HTTP response from a VTU provider to an outcome."""
    status_code = response.status_code
    if status_code in (401, 403) or status_code == 429 or status_code >= 500:
        return ProviderOutcome(
            OutcomeKind.UNAVAILABLE,
            error=f"HTTP {status_code}: {response.text[:500]}",
        )
    if status_code >= 400:
        return ProviderOutcome(
            OutcomeKind.REJECTED,
            error=f"HTTP {status_code}: {response.text[:500]}",
        )

    content_type = response.headers.get("content-type", "")
    if "application/json" not in content_type:
        return ProviderOutcome(OutcomeKind.CONFIRMED, response={"status_code": status_code})

    try:
        body = response.json()
    except ValueError:
        return ProviderOutcome(OutcomeKind.CONFIRMED, response={"status_code": status_code})
    if not isinstance(body, dict):
        return ProviderOutcome(OutcomeKind.CONFIRMED, response={"data": body})

    reference = body.get("reference") or body.get("ident") or body.get("id")
    reference = str(reference) if reference is not None else None
    status = str(body.get("Status") or body.get("status") or "").strip().lower()

    if status in FAILURE_STATUSES:
        error = body.get("message") or body.get("error") or body.get("api_response") or status
        return ProviderOutcome(OutcomeKind.REJECTED, reference=reference, response=body, error=str(error))
    if not status or status in SUCCESS_STATUSES:
        return ProviderOutcome(OutcomeKind.CONFIRMED, reference=reference, response=body)

    # "processing", "pending" and friends: delivery is not confirmed.
    return ProviderOutcome(
        OutcomeKind.UNAVAILABLE,
        reference=reference,
        response=body,
        error=f"Unconfirmed provider status: {status}",
    )


class MaskawaProvider:
    """Airtime, data and electricity through the Maskawa VTU API."""

    name = "maskawa"

    def __init__(
        self,
        base_url: str,
        token: Optional[str],
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self.transport = transport

    def validate(self, details: PurchaseDetailsModel, amount: int) -> None:
        if isinstance(details, DataDetails):
            plan = get_data_plan(details.plan)
            if plan is None or plan.network != details.network:
                raise ValidationError(f"Unknown data plan {details.plan} for {details.network}")
            if plan.price != amount:
                raise ValidationError(f"Amount does not match the price of plan {plan.code}")
        elif isinstance(details, ElectricityDetails):
            if details.disco not in DISCO_CODES:
                raise ValidationError(f"Unsupported electricity distributor {details.disco}")
        elif not isinstance(details, AirtimeDetails):
            raise ValidationError(f"{self.name} cannot fulfil {details.kind} purchases")

    def build_request(
        self, details: PurchaseDetailsModel, amount: int
    ) -> tuple[str, dict[str, Any]]:
        if isinstance(details, AirtimeDetails):
            return "/api/topup/", {
                "network": NETWORK_CODES[details.network],
                "amount": to_major_units(amount),
                "mobile_number": details.phone,
                "Ported_number": True,
                "airtime_type": "VTU",
            }
        if isinstance(details, DataDetails):
            plan = get_data_plan(details.plan)
            return "/api/data/", {
                "network": NETWORK_CODES[details.network],
                "mobile_number": details.phone,
                "plan": plan.provider_plan_id,
                "Ported_number": True,
                "payment_medium": "MAIN WALLET",
            }
        if isinstance(details, ElectricityDetails):
            return "/api/billpayment/", {
                "disco_name": DISCO_CODES[details.disco],
                "amount": to_major_units(amount),
                "meter_number": details.meter_number,
                "MeterType": METER_TYPE_CODES[details.meter_type],
            }
        raise ValidationError(f"{self.name} cannot fulfil {details.kind} purchases")

    def purchase(
        self, reference: str, details: PurchaseDetailsModel, amount: int
    ) -> ProviderOutcome:
        if not self.token:
            return ProviderOutcome(OutcomeKind.UNAVAILABLE, error="Maskawa token is not configured")

        endpoint, payload = self.build_request(details, amount)
        logger.info(
            "provider.request",
            extra={"provider": self.name, "endpoint": endpoint, "reference": reference},
        )
        try:
            with httpx.Client(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self.transport,
            ) as client:
                response = client.post(
                    endpoint,
                    json=payload,
                    headers={"Authorization": f"Token {self.token}"},
                )
        except httpx.TimeoutException as exc:
            return ProviderOutcome(OutcomeKind.TIMEOUT, error=f"Timed out: {exc!r}")
        except httpx.HTTPError as exc:
            return ProviderOutcome(OutcomeKind.UNAVAILABLE, error=f"Transport error: {exc!r}")

        return classify_response(response)


class StoreProvider:
    """In-house store orders: paying from the wallet needs no external call."""

    name = "store"

    def validate(self, details: PurchaseDetailsModel, amount: int) -> None:
        if not isinstance(details, ProductPurchaseDetails):
            raise ValidationError(f"{self.name} cannot fulfil {details.kind} purchases")

    def purchase(
        self, reference: str, details: PurchaseDetailsModel, amount: int
    ) -> ProviderOutcome:
        order_id = details.order_id or f"ORD-{reference}"
        return ProviderOutcome(
            OutcomeKind.CONFIRMED,
            reference=order_id,
            response={
                "order_id": order_id,
                "product_id": details.product_id,
                "quantity": details.quantity,
                "payment_method": "wallet",
            },
        )


def build_provider_registry(
    settings: Settings,
    transport: Optional[httpx.BaseTransport] = None,
) -> dict[TransactionKind, PurchaseProvider]:
    maskawa = MaskawaProvider(
        base_url=settings.maskawa_base_url,
        token=settings.maskawa_token,
        timeout=settings.provider_timeout_seconds,
        transport=transport,
    )
    return {
        TransactionKind.AIRTIME: maskawa,
        TransactionKind.DATA: maskawa,
        TransactionKind.ELECTRICITY: maskawa,
        TransactionKind.PRODUCT_PURCHASE: StoreProvider(),
    }
