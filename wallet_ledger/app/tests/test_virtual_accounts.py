import json

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session

from ..services import LedgerRepository
from .conftest import funding_event


def flutterwave_ok(request: httpx.Request) -> httpx.Response:
    return httpx.Response(
        200,
        json={
            "status": "success",
            "message": "Virtual account created",
            "data": {"bank_name": "WEMA BANK", "account_number": "7824822527"},
        },
    )


def test_provision_then_fund_through_client_reference(
    client: TestClient, make_account, gateway, session: Session
) -> None:
    account = make_account("Wale Ade")
    gateway.responder = flutterwave_ok

    response = client.post(
        f"/accounts/{account['id']}/virtual-account",
        json={"first_name": "Wale", "last_name": "Ade"},
    )

    assert response.status_code == 201
    body = response.json()
    assert body["bank_name"] == "WEMA BANK"
    assert body["account_number"] == "7824822527"

    (request,) = gateway.requests
    assert request.url.path == "/v3/virtual-account-numbers"
    assert request.headers["Authorization"] == "Bearer FLWSECK_TEST-key"
    sent = json.loads(request.content)
    assert sent["tx_ref"] == body["reference"]
    assert sent["is_permanent"] is False
    assert "bvn" not in sent

    (log,) = LedgerRepository(session).list_audit_logs("create_virtual_account")
    assert log.details["account_number"] == "2527"

    event = funding_event(account["email"], 700, "FLW-VA-1", tx_ref=body["reference"])
    assert client.post("/webhooks/flutterwave", json=event).status_code == 200
    snapshot = client.get(f"/accounts/{account['id']}").json()
    assert snapshot["balance"] == 70_000
    assert snapshot["virtual_account_number"] == "7824822527"


def test_provisioning_is_idempotent(client: TestClient, make_account, gateway) -> None:
    account = make_account("Xavier")
    gateway.responder = flutterwave_ok
    payload = {"first_name": "Xavier", "last_name": "Obi", "bvn": "12345678901"}

    first = client.post(f"/accounts/{account['id']}/virtual-account", json=payload)
    second = client.post(f"/accounts/{account['id']}/virtual-account", json=payload)

    assert first.json() == second.json()
    assert len(gateway.requests) == 1
    assert json.loads(gateway.requests[0].content)["is_permanent"] is True


def test_gateway_rejection_is_reported(client: TestClient, make_account, gateway) -> None:
    account = make_account("Yemi")
    gateway.responder = lambda request: httpx.Response(
        400, json={"status": "error", "message": "Invalid BVN"}
    )

    response = client.post(
        f"/accounts/{account['id']}/virtual-account",
        json={"first_name": "Yemi", "last_name": "Ola"},
    )

    assert response.status_code == 502
    assert response.json()["error"] == "Failed to create virtual account"
    assert client.get(f"/accounts/{account['id']}").json()["virtual_account_number"] is None


@pytest.mark.parametrize(
    "reply",
    [
        [{"status": "success"}],
        {"status": "success"},
        {"status": "success", "data": {"bank_name": "WEMA BANK"}},
        {"status": "success", "data": "7824822527"},
    ],
)
def test_malformed_gateway_reply_is_rejected(
    client: TestClient, make_account, gateway, reply
) -> None:
    account = make_account("Zainab")
    gateway.responder = lambda request: httpx.Response(200, json=reply)

    response = client.post(
        f"/accounts/{account['id']}/virtual-account",
        json={"first_name": "Zainab", "last_name": "Musa"},
    )

    assert response.status_code == 502
    assert response.json()["category"] == "rejected"
    assert client.get(f"/accounts/{account['id']}").json()["virtual_account_number"] is None
