from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from itertools import count
from typing import Any

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session, SQLModel

from ..core.config import Settings, get_settings
from ..core.db import create_engine_for_url, get_engine, get_session, set_engine
from ..core.dependencies import get_clock, get_http_transport
from ..main import app


class FakeClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class FakeGateway:
    """Stands in for Maskawa and Flutterwave behind an ``httpx.MockTransport``."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.responder: Callable[[httpx.Request], httpx.Response] = self.confirm
        self.transport = httpx.MockTransport(self._handle)

    def _handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.responder(request)

    @staticmethod
    def confirm(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"Status": "successful", "ident": "MSK-0001"})


@pytest.fixture
def settings() -> Settings:
    return Settings(
        database_url="sqlite://",
        pin_hash_method="pbkdf2:sha256:1000",
        maskawa_token="test-token",
        flutterwave_secret_key="FLWSECK_TEST-key",
        flutterwave_secret_hash=None,
        min_transaction_amount=1_000,
        referral_invite_cap=10,
    )


@pytest.fixture
def engine(tmp_path):
    test_db = tmp_path / "test.db"
    engine = create_engine_for_url(f"sqlite:///{test_db}")
    SQLModel.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2024, 5, 1, 12, 0, tzinfo=UTC))


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def client(engine, settings, clock, gateway) -> TestClient:
    original_engine = get_engine()
    set_engine(engine)

    def _get_session_override():
        with Session(engine) as session:
            yield session

    app.dependency_overrides[get_session] = _get_session_override
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_http_transport] = lambda: gateway.transport

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
    set_engine(original_engine)


_emails = count(1)


@pytest.fixture
def make_account(client: TestClient) -> Callable[..., dict[str, Any]]:
    def _make(name: str = "Amina Bello", **fields: Any) -> dict[str, Any]:
        payload = {"name": name, "email": f"user{next(_emails)}@example.com", **fields}
        response = client.post("/accounts", json=payload)
        assert response.status_code == 201, response.text
        return response.json()

    return _make


def funding_event(email: str, amount: float, flw_ref: str, tx_ref: str = "haaman-va-test") -> dict:
    return {
        "event": "charge.completed",
        "data": {
            "status": "successful",
            "payment_type": "bank_transfer",
            "amount": amount,
            "currency": "NGN",
            "tx_ref": tx_ref,
            "flw_ref": flw_ref,
            "customer": {"email": email},
        },
    }


_refs = count(1)


@pytest.fixture
def fund(client: TestClient) -> Callable[[dict[str, Any], float], dict[str, Any]]:
    """Credit an account through the funding webhook; ``amount`` is in naira."""

    def _fund(account: dict[str, Any], amount: float) -> dict[str, Any]:
        response = client.post(
            "/webhooks/flutterwave",
            json=funding_event(account["email"], amount, f"FLW-FUND-{next(_refs)}"),
        )
        assert response.status_code == 200, response.text
        return client.get(f"/accounts/{account['id']}").json()

    return _fund
