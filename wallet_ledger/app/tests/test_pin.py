from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta
from uuid import UUID

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session

from ..core.errors import PinLockedError, ValidationError, WrongPinError
from ..models import AccountModel
from ..services import LedgerRepository, PinService


@pytest.fixture
def account_id(session: Session):
    account = LedgerRepository(session).add_account(
        name="Pin Holder", email="pin@example.com", phone=None, referral_code="haaman-PIN001"
    )
    session.commit()
    return account.id


@pytest.fixture
def make_admin(make_account, engine):
    def _make(name: str) -> str:
        account_id = make_account(name)["id"]
        with Session(engine) as admin_session:
            account = admin_session.get(AccountModel, UUID(account_id))
            account.is_admin = True
            admin_session.add(account)
            admin_session.commit()
        return account_id

    return _make


@pytest.fixture
def pins(session: Session, settings, clock) -> PinService:
    return PinService(session, settings, clock=clock)


def test_lockout_after_five_failures(pins: PinService, account_id, clock) -> None:
    pins.set_pin(account_id, "1234")

    remaining = []
    for _ in range(5):
        with pytest.raises(WrongPinError) as excinfo:
            pins.verify_pin(account_id, "9999")
        remaining.append(excinfo.value.attempts_remaining)

    assert remaining == [4, 3, 2, 1, 0]
    assert "locked for 30 minutes" in str(excinfo.value)

    # Locked: even the right PIN is refused, and refusals are not counted.
    clock.advance(minutes=10)
    with pytest.raises(PinLockedError) as locked:
        pins.verify_pin(account_id, "1234")
    assert locked.value.minutes_remaining == 20
    assert pins.check_status(account_id).attempts == 5

    clock.advance(minutes=20, seconds=1)
    pins.verify_pin(account_id, "1234")
    status = pins.check_status(account_id)
    assert status.is_locked is False
    assert status.attempts == 0


def test_expired_lock_gives_fresh_attempts(pins: PinService, account_id, clock) -> None:
    pins.set_pin(account_id, "1234")
    for _ in range(5):
        with pytest.raises(WrongPinError):
            pins.verify_pin(account_id, "0000")

    clock.advance(minutes=31)
    with pytest.raises(WrongPinError) as excinfo:
        pins.verify_pin(account_id, "0000")

    assert excinfo.value.attempts_remaining == 4


def test_success_resets_counter(pins: PinService, account_id) -> None:
    pins.set_pin(account_id, "1234")
    for _ in range(3):
        with pytest.raises(WrongPinError):
            pins.verify_pin(account_id, "4321")

    pins.verify_pin(account_id, "1234")

    assert pins.check_status(account_id).attempts == 0


def test_pin_is_stored_hashed(pins: PinService, account_id, session: Session) -> None:
    pins.set_pin(account_id, "1234")

    credential = LedgerRepository(session).get_pin_credential(account_id)

    assert credential.hashed_secret != "1234"
    assert credential.hashed_secret.startswith("pbkdf2:sha256")


def test_changing_pin_requires_current_pin(pins: PinService, account_id) -> None:
    pins.set_pin(account_id, "1234")

    with pytest.raises(ValidationError, match="Current PIN is required"):
        pins.set_pin(account_id, "5678")
    with pytest.raises(WrongPinError, match="Current PIN is incorrect"):
        pins.set_pin(account_id, "5678", current_pin="1111")

    pins.set_pin(account_id, "5678", current_pin="1234")
    pins.verify_pin(account_id, "5678")


@pytest.mark.parametrize("bad_pin", ["123", "12345", "12a4", ""])
def test_pin_format_is_enforced(pins: PinService, account_id, bad_pin) -> None:
    with pytest.raises(ValidationError):
        pins.set_pin(account_id, bad_pin)


def test_verify_without_pin(pins: PinService, account_id) -> None:
    with pytest.raises(ValidationError, match="No PIN set"):
        pins.verify_pin(account_id, "1234")


def test_pin_endpoint_actions(client: TestClient, make_account, make_admin) -> None:
    account = make_account("Pinned")
    user_id = account["id"]

    set_response = client.post("/pin", json={"action": "set_pin", "userId": user_id, "pin": "2468"})
    assert set_response.json() == {"success": True, "message": "PIN set successfully"}

    status = client.post("/pin", json={"action": "check_pin_status", "userId": user_id}).json()
    assert status == {"success": True, "hasPin": True, "isLocked": False, "attempts": 0}

    wrong = client.post("/pin", json={"action": "verify_pin", "userId": user_id, "pin": "1111"})
    assert wrong.status_code == 400
    assert wrong.json()["attemptsRemaining"] == 4

    changed = client.post(
        "/pin",
        json={"action": "set_pin", "userId": user_id, "pin": "1357", "currentPin": "2468"},
    )
    assert changed.json()["message"] == "PIN changed successfully"

    admin_id = make_admin("Support Desk")
    reset = client.post("/pin", json={"action": "reset_pin", "userId": user_id, "adminId": admin_id})
    assert reset.json()["success"] is True
    status = client.post("/pin", json={"action": "check_pin_status", "userId": user_id}).json()
    assert status["hasPin"] is False


def test_locked_pin_endpoint_returns_423(client: TestClient, make_account, clock) -> None:
    user_id = make_account("Locked Out")["id"]
    client.post("/pin", json={"action": "set_pin", "userId": user_id, "pin": "2468"})
    for _ in range(5):
        client.post("/pin", json={"action": "verify_pin", "userId": user_id, "pin": "0000"})

    response = client.post("/pin", json={"action": "verify_pin", "userId": user_id, "pin": "2468"})

    assert response.status_code == 423
    assert response.json()["isLocked"] is True
    assert "Try again in 30 minutes" in response.json()["error"]


def test_reset_requires_an_admin(client: TestClient, make_account, make_admin) -> None:
    user_id = make_account("Reset Me")["id"]
    client.post("/pin", json={"action": "set_pin", "userId": user_id, "pin": "2468"})

    anonymous = client.post("/pin", json={"action": "reset_pin", "userId": user_id})
    not_admin = client.post(
        "/pin",
        json={"action": "reset_pin", "userId": user_id, "adminId": make_account("Peer")["id"]},
    )

    assert anonymous.status_code == 403
    assert not_admin.status_code == 403
    status = client.post("/pin", json={"action": "check_pin_status", "userId": user_id}).json()
    assert status["hasPin"] is True

    admin_id = make_admin("Operations")
    allowed = client.post("/pin", json={"action": "reset_pin", "userId": user_id, "adminId": admin_id})
    assert allowed.status_code == 200


def test_parallel_guesses_stop_at_the_limit(
    pins: PinService, account_id, engine, settings, clock
) -> None:
    pins.set_pin(account_id, "1234")

    def guess(_):
        with Session(engine) as worker_session:
            try:
                PinService(worker_session, settings, clock=clock).verify_pin(account_id, "9999")
            except WrongPinError:
                return "wrong"
            except PinLockedError:
                return "locked"
        return "verified"

    with ThreadPoolExecutor(max_workers=8) as pool:
        outcomes = list(pool.map(guess, range(24)))

    assert outcomes.count("wrong") == settings.pin_max_attempts
    assert outcomes.count("locked") == 24 - settings.pin_max_attempts
    status = pins.check_status(account_id)
    assert status.is_locked is True
    assert status.attempts == settings.pin_max_attempts


def test_correct_pin_in_flight_keeps_a_newer_lock(
    pins: PinService, account_id, engine, settings, clock
) -> None:
    pins.set_pin(account_id, "1234")

    with Session(engine) as other_session:
        repository = LedgerRepository(other_session)
        attempt = repository.reserve_pin_attempt(
            account_id,
            now=clock(),
            max_attempts=settings.pin_max_attempts,
            lock_until=clock() + timedelta(minutes=settings.pin_lock_minutes),
        )
        other_session.commit()

        for _ in range(settings.pin_max_attempts - 1):
            with pytest.raises(WrongPinError):
                pins.verify_pin(account_id, "0000")

        assert repository.release_pin_attempts(account_id, attempt) is False
        other_session.commit()

    status = pins.check_status(account_id)
    assert status.is_locked is True
    assert status.attempts == settings.pin_max_attempts


def test_last_allowed_attempt_can_still_succeed(pins: PinService, account_id, settings) -> None:
    pins.set_pin(account_id, "1234")
    for _ in range(settings.pin_max_attempts - 1):
        with pytest.raises(WrongPinError):
            pins.verify_pin(account_id, "0000")

    pins.verify_pin(account_id, "1234")

    status = pins.check_status(account_id)
    assert status.is_locked is False
    assert status.attempts == 0
