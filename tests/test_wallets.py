from datetime import datetime

import pytest
from pydantic import ValidationError

from database import Base, create_db_engine, make_sessionmaker
from filters import WalletFilters
from models import TransactionType, User
from schemas import TransactionIn, WalletIn, WalletUpdateIn
from services import (
    TransactionService,
    UserNotFound,
    WalletNotFound,
    WalletService,
    normalize_currency,
)


def make_session():
    engine = create_db_engine("sqlite+pysqlite:///:memory:")
    Base.metadata.create_all(engine)
    return make_sessionmaker(engine)()


def make_user(session, email: str = "lena@example.com") -> User:
    user = User(name="Lena", email=email, password_hash="x")
    session.add(user)
    session.commit()
    return user


def test_create_wallet_reports_initial_balance() -> None:
    session = make_session()
    user = make_user(session)

    created = WalletService(session).create(
        user.id, WalletIn(name="Savings", currency="rub", initial_balance=50_000)
    )

    assert created.id is not None
    assert created.currency == "RUB"
    assert created.initial_balance == 50_000
    assert created.current_balance == 50_000


def test_create_wallet_for_missing_user_raises() -> None:
    session = make_session()
    with pytest.raises(UserNotFound):
        WalletService(session).create(
            77, WalletIn(name="Ghost", currency="EUR", initial_balance=0)
        )


def test_wallet_input_rejects_bad_currency_and_negative_balance() -> None:
    with pytest.raises(ValidationError):
        WalletIn(name="Cash", currency="EURO", initial_balance=0)
    with pytest.raises(ValidationError):
        WalletIn(name="Cash", currency="EUR", initial_balance=-1)


def test_normalize_currency() -> None:
    assert normalize_currency(" usd ") == "USD"
    with pytest.raises(ValueError):
        normalize_currency("U$D")
    with pytest.raises(ValueError):
        normalize_currency("")


def test_get_with_balance_reflects_transactions() -> None:
    session = make_session()
    user = make_user(session)
    wallets = WalletService(session)
    created = wallets.create(
        user.id, WalletIn(name="Main", currency="EUR", initial_balance=1_000)
    )
    TransactionService(session).create(
        created.id,
        TransactionIn(
            description="Salary",
            amount=2_000,
            type=TransactionType.income,
            date=datetime(2024, 1, 31),
        ),
    )

    view = wallets.get_with_balance(created.id)

    assert view.current_balance == 3_000
    assert view.name == "Main"


def test_update_changes_name_and_currency_but_not_history() -> None:
    session = make_session()
    user = make_user(session)
    wallets = WalletService(session)
    created = wallets.create(
        user.id, WalletIn(name="Old", currency="EUR", initial_balance=10)
    )

    updated = wallets.update(created.id, WalletUpdateIn(name="New", currency="gbp"))

    assert updated.name == "New"
    assert updated.currency == "GBP"
    assert updated.initial_balance == 10


def test_update_and_delete_missing_wallet_raise() -> None:
    session = make_session()
    wallets = WalletService(session)

    with pytest.raises(WalletNotFound):
        wallets.update(5, WalletUpdateIn(name="X", currency="EUR"))
    with pytest.raises(WalletNotFound):
        wallets.delete(5)


def test_list_wallets_pages_newest_first_with_balances() -> None:
    session = make_session()
    user = make_user(session)
    other = make_user(session, email="other@example.com")
    wallets = WalletService(session)
    ids = [
        wallets.create(
            user.id, WalletIn(name=f"W{i}", currency="EUR", initial_balance=i * 100)
        ).id
        for i in range(1, 13)
    ]
    wallets.create(other.id, WalletIn(name="W1", currency="EUR", initial_balance=0))
    TransactionService(session).create(
        ids[-1],
        TransactionIn(
            description="Coffee",
            amount=50,
            type=TransactionType.expense,
            date=datetime(2024, 2, 2),
        ),
    )

    first = wallets.list_wallets(user.id, page_number=1, page_size=5)
    last = wallets.list_wallets(user.id, page_number=3, page_size=5)

    assert first.total_records == 12
    assert first.total_pages == 3
    assert first.has_next and not first.has_previous
    assert [w.id for w in first.data] == list(reversed(ids))[:5]
    assert first.data[0].current_balance == 1_200 - 50
    assert len(last.data) == 2
    assert not last.has_next


def test_list_wallets_filters_by_currency_and_name() -> None:
    session = make_session()
    user = make_user(session)
    wallets = WalletService(session)
    wallets.create(user.id, WalletIn(name="Cash", currency="EUR", initial_balance=0))
    wallets.create(user.id, WalletIn(name="Cash", currency="USD", initial_balance=0))
    wallets.create(user.id, WalletIn(name="Card", currency="USD", initial_balance=0))

    by_currency = wallets.list_wallets(user.id, WalletFilters(currency_equals="usd"))
    by_both = wallets.list_wallets(
        user.id, WalletFilters(currency_equals="USD", name_equals="Cash")
    )
    nothing = wallets.list_wallets(user.id, WalletFilters(name_equals="cash"))

    assert sorted(w.name for w in by_currency.data) == ["Card", "Cash"]
    assert by_both.total_records == 1
    assert by_both.data[0].currency == "USD"
    assert nothing.data == []
    assert nothing.total_records == 0


def test_delete_wallet_removes_it() -> None:
    session = make_session()
    user = make_user(session)
    wallets = WalletService(session)
    created = wallets.create(
        user.id, WalletIn(name="Temp", currency="EUR", initial_balance=0)
    )

    wallets.delete(created.id)

    with pytest.raises(WalletNotFound):
        wallets.get(created.id)
    assert wallets.list_wallets(user.id).total_records == 0
