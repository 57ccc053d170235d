from datetime import datetime

import pytest
from sqlalchemy.orm import Session

from database import Base, create_db_engine, make_sessionmaker
from models import TransactionType, User, Wallet
from schemas import TransactionIn
from services import (
    MetricsService,
    TransactionService,
    WalletNotFound,
    WalletService,
    densify_top_expenses,
)


def make_session():
    engine = create_db_engine("sqlite+pysqlite:///:memory:")
    Base.metadata.create_all(engine)
    return make_sessionmaker(engine)()


def make_wallet(session: Session, user: User, name: str) -> Wallet:
    wallet = Wallet(user_id=user.id, name=name, currency="EUR", initial_balance=0)
    session.add(wallet)
    session.commit()
    return wallet


def make_user(session: Session, email: str = "maria@example.com") -> User:
    user = User(name="Maria", email=email, password_hash="x")
    session.add(user)
    session.commit()
    return user


def post(session, wallet_id, amount, txn_type, when, description="Entry"):
    return TransactionService(session).create(
        wallet_id,
        TransactionIn(description=description, amount=amount, type=txn_type, date=when),
    )


def test_monthly_summary_excludes_adjacent_months() -> None:
    session = make_session()
    user = make_user(session)
    wallet = make_wallet(session, user, "Daily")
    post(session, wallet.id, 1, TransactionType.income, datetime(2024, 2, 28, 23, 59))
    post(session, wallet.id, 10, TransactionType.income, datetime(2024, 3, 1, 0, 0))
    post(session, wallet.id, 100, TransactionType.expense, datetime(2024, 3, 31, 23, 59))
    post(session, wallet.id, 1_000, TransactionType.expense, datetime(2024, 4, 1, 0, 0))

    summary = MetricsService(session).monthly_summary(wallet.id, 2024, 3)

    assert summary.name == "Daily"
    assert summary.currency == "EUR"
    assert summary.income == 10
    assert summary.expense == 100


def test_monthly_summary_december_rolls_into_next_year() -> None:
    session = make_session()
    user = make_user(session)
    wallet = make_wallet(session, user, "Daily")
    post(session, wallet.id, 40, TransactionType.expense, datetime(2023, 12, 31, 22, 0))
    post(session, wallet.id, 70, TransactionType.expense, datetime(2024, 1, 1, 0, 0))

    summary = MetricsService(session).monthly_summary(wallet.id, 2023, 12)

    assert summary.expense == 40
    assert summary.income == 0


def test_monthly_summary_without_transactions_is_zero() -> None:
    session = make_session()
    user = make_user(session)
    wallet = make_wallet(session, user, "Empty")

    view = WalletService(session).monthly_summary(wallet.id, 2024, 7)

    assert view.id == wallet.id
    assert (view.year, view.month) == (2024, 7)
    assert (view.income, view.expense) == (0, 0)


def test_monthly_summary_missing_wallet_raises() -> None:
    session = make_session()
    with pytest.raises(WalletNotFound):
        MetricsService(session).monthly_summary(321, 2024, 3)


def test_top_expenses_are_limited_and_sparse() -> None:
    session = make_session()
    user = make_user(session)
    busy = make_wallet(session, user, "Busy")
    light = make_wallet(session, user, "Light")
    quiet = make_wallet(session, user, "Quiet")

    for amount in (50, 900, 300, 700, 10):
        post(session, busy.id, amount, TransactionType.expense, datetime(2024, 3, 10))
    post(session, busy.id, 5_000, TransactionType.income, datetime(2024, 3, 11))
    post(session, busy.id, 9_999, TransactionType.expense, datetime(2024, 4, 1))
    post(session, light.id, 20, TransactionType.expense, datetime(2024, 3, 2))
    post(session, light.id, 80, TransactionType.expense, datetime(2024, 3, 3))
    post(session, quiet.id, 400, TransactionType.income, datetime(2024, 3, 3))

    top = MetricsService(session).top_expenses_per_wallet(user.id, 2024, 3)

    assert set(top) == {busy.id, light.id}
    assert [t.amount for t in top[busy.id]] == [900, 700, 300]
    assert [t.amount for t in top[light.id]] == [80, 20]
    assert all(t.type == TransactionType.expense for t in top[busy.id])


def test_top_expenses_ignore_other_users() -> None:
    session = make_session()
    owner = make_user(session)
    stranger = make_user(session, email="stranger@example.com")
    mine = make_wallet(session, owner, "Mine")
    theirs = make_wallet(session, stranger, "Theirs")
    post(session, mine.id, 5, TransactionType.expense, datetime(2024, 3, 1))
    post(session, theirs.id, 6, TransactionType.expense, datetime(2024, 3, 1))

    top = MetricsService(session).top_expenses_per_wallet(owner.id, 2024, 3)

    assert list(top) == [mine.id]


def test_top_expenses_view_keeps_every_wallet() -> None:
    session = make_session()
    user = make_user(session)
    spender = make_wallet(session, user, "Spender")
    saver = make_wallet(session, user, "Saver")
    post(session, spender.id, 120, TransactionType.expense, datetime(2024, 3, 15))

    raw = MetricsService(session).top_expenses_per_wallet(user.id, 2024, 3)
    assert saver.id not in raw

    view = WalletService(session).top_expenses_view(user.id, 2024, 3)

    by_id = {entry.id: entry for entry in view}
    assert len(view) == 2
    assert by_id[saver.id].top_three_expenses == []
    assert [t.amount for t in by_id[spender.id].top_three_expenses] == [120]
    assert by_id[spender.id].name == "Spender"


def test_densify_fills_missing_wallets_with_empty_lists() -> None:
    wallets = [
        Wallet(id=2, user_id=1, name="B", currency="USD", initial_balance=0),
        Wallet(id=1, user_id=1, name="A", currency="EUR", initial_balance=0),
    ]

    view = densify_top_expenses(wallets, {})

    assert [entry.id for entry in view] == [2, 1]
    assert all(entry.top_three_expenses == [] for entry in view)
