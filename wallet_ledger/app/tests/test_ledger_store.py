import uuid
from concurrent.futures import ThreadPoolExecutor

import pytest
from sqlmodel import Session

from ..core.errors import (
    AccountNotFoundError,
    DuplicateEventError,
    InsufficientBalanceError,
    InvalidStateTransitionError,
)
from ..models import TransactionModel, TransactionStatus
from ..services import LedgerRepository
from ..services.repository import new_internal_reference


def _account(session: Session, email: str = "store@example.com", balance: int = 0):
    repository = LedgerRepository(session)
    account = repository.add_account(
        name="Store Test",
        email=email,
        phone=None,
        referral_code=f"haaman-{email}",
    )
    if balance:
        repository.credit_account(account.id, balance)
    session.commit()
    return account.id


def _top_up(account_id, amount: int, external_reference=None, status=TransactionStatus.SUCCESS):
    return TransactionModel(
        account_id=account_id,
        kind="top_up",
        amount=amount,
        status=status.value,
        internal_reference=new_internal_reference(),
        external_reference=external_reference,
        details={"kind": "top_up", "currency": "NGN"},
    )


def test_concurrent_credits_are_not_lost(engine, session: Session) -> None:
    account_id = _account(session)

    def credit(_):
        with Session(engine) as worker_session:
            LedgerRepository(worker_session).credit_account(account_id, 100)
            worker_session.commit()

    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(credit, range(40)))

    assert LedgerRepository(session).reload_account(account_id).balance == 4_000


def test_racing_credits_and_debits_balance_out(engine, session: Session) -> None:
    account_id = _account(session, balance=1_000)

    def move(index):
        with Session(engine) as worker_session:
            repository = LedgerRepository(worker_session)
            try:
                if index % 2:
                    repository.debit_account(account_id, 150)
                else:
                    repository.credit_account(account_id, 100)
            except InsufficientBalanceError:
                return 0
            worker_session.commit()
            return -150 if index % 2 else 100

    with ThreadPoolExecutor(max_workers=8) as pool:
        moves = list(pool.map(move, range(60)))

    balance = LedgerRepository(session).reload_account(account_id).balance
    assert balance == 1_000 + sum(moves)
    assert balance >= 0
    assert moves.count(100) == 30


def test_debit_never_overdraws(session: Session) -> None:
    account_id = _account(session, balance=500)
    repository = LedgerRepository(session)

    assert repository.debit_account(account_id, 300).balance == 200
    with pytest.raises(InsufficientBalanceError):
        repository.debit_account(account_id, 201)

    session.commit()
    assert repository.reload_account(account_id).balance == 200


def test_credit_unknown_account_raises(session: Session) -> None:
    with pytest.raises(AccountNotFoundError):
        LedgerRepository(session).credit_account(uuid.uuid4(), 100)


def test_external_reference_unique_among_success_rows(session: Session) -> None:
    account_id = _account(session)
    repository = LedgerRepository(session)

    repository.record_transaction(_top_up(account_id, 100, "FLW-1", TransactionStatus.FAILED))
    repository.record_transaction(_top_up(account_id, 100, "FLW-1"))
    session.commit()

    with pytest.raises(DuplicateEventError):
        repository.record_transaction(_top_up(account_id, 100, "FLW-1"))

    assert repository.find_transaction_by_external_reference("FLW-1") is not None
    assert len(repository.list_transactions(account_id)) == 2


def test_terminal_transactions_are_immutable(session: Session) -> None:
    account_id = _account(session)
    repository = LedgerRepository(session)
    transaction = repository.record_transaction(
        _top_up(account_id, 100, status=TransactionStatus.PENDING)
    )

    repository.finalize_transaction(
        transaction, status=TransactionStatus.FAILED, details={"kind": "top_up"}
    )
    session.commit()

    with pytest.raises(InvalidStateTransitionError):
        repository.finalize_transaction(
            transaction, status=TransactionStatus.SUCCESS, details={"kind": "top_up"}
        )


def test_referral_counter_stops_at_cap(session: Session) -> None:
    account_id = _account(session)
    repository = LedgerRepository(session)

    assert repository.increment_referrals(account_id, cap=2) == 1
    assert repository.increment_referrals(account_id, cap=2) == 2
    assert repository.increment_referrals(account_id, cap=2) is None
