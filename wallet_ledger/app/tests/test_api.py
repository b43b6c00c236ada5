import uuid

from fastapi.testclient import TestClient


def test_health(client: TestClient) -> None:
    assert client.get("/health").json() == {"status": "ok"}


def test_create_account_and_fetch(client: TestClient) -> None:
    response = client.post(
        "/accounts",
        json={"name": "Amina Bello", "email": "Amina@Example.com", "phone": "08031234567"},
    )
    assert response.status_code == 201
    account = response.json()
    assert account["balance"] == 0
    assert account["email"] == "amina@example.com"
    assert account["referral_code"].startswith("haaman-AMINABELLO")

    snapshot = client.get(f"/accounts/{account['id']}")
    assert snapshot.status_code == 200
    assert snapshot.json()["id"] == account["id"]


def test_duplicate_email_is_rejected(client: TestClient) -> None:
    client.post("/accounts", json={"name": "Bola", "email": "bola@example.com"})

    response = client.post("/accounts", json={"name": "Bola Two", "email": "BOLA@example.com"})

    assert response.status_code == 400
    assert response.json()["success"] is False


def test_unknown_account_returns_404(client: TestClient) -> None:
    response = client.get(f"/accounts/{uuid.uuid4()}")

    assert response.status_code == 404
    body = response.json()
    assert body["success"] is False
    assert "not found" in body["error"]


def test_signup_with_referral_code_links_referrer(client: TestClient, make_account) -> None:
    referrer = make_account("Chidi Okeke")

    referred = make_account("Dayo", referral_code=referrer["referral_code"])
    stranger = make_account("Efe", referral_code="haaman-NOBODY123")

    assert referred["referred_by"] == referrer["id"]
    assert stranger["referred_by"] is None
    # Linking at signup does not count the referral.
    assert client.get(f"/accounts/{referrer['id']}").json()["total_referrals"] == 0


def test_transaction_history_pagination(client: TestClient, make_account, fund) -> None:
    account = make_account("Frank")
    for amount in (100, 200, 300):
        fund(account, amount)

    first_page = client.get(f"/accounts/{account['id']}/transactions", params={"limit": 2})
    assert first_page.status_code == 200
    items = first_page.json()["items"]
    assert len(items) == 2
    assert [item["amount"] for item in items] == [30_000, 20_000]
    assert all(item["details"]["kind"] == "top_up" for item in items)

    cursor = first_page.json()["next_cursor"]
    second_page = client.get(
        f"/accounts/{account['id']}/transactions", params={"cursor": cursor}
    )
    remain = second_page.json()["items"]
    assert len(remain) == 1
    assert remain[0]["amount"] == 10_000
    assert second_page.json()["next_cursor"] is None


def test_transaction_history_invalid_cursor_returns_400(
    client: TestClient, make_account
) -> None:
    account = make_account("Helen")

    response = client.get(
        f"/accounts/{account['id']}/transactions",
        params={"cursor": "not-a-transaction-id"},
    )

    assert response.status_code == 400
    assert response.json()["error"] == "Invalid cursor"
