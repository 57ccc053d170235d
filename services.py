from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import case, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from filters import TransactionFilters, UserFilters, WalletFilters
from models import Transaction, TransactionType, User, UserRole, Wallet
from pagination import Page, paginate
from periods import month_period
from schemas import (
    ChangePasswordIn,
    CreatedWalletOut,
    TransactionIn,
    TransactionOut,
    UserIn,
    UserUpdateIn,
    WalletIn,
    WalletMonthlySummaryOut,
    WalletOut,
    WalletTopExpensesOut,
    WalletUpdateIn,
)
from security import hash_password, verify_password

logger = logging.getLogger(__name__)

TOP_EXPENSES_LIMIT = 3


class NotFoundError(ValueError):
    pass


class WalletNotFound(NotFoundError):
    def __init__(self, wallet_id: int) -> None:
        super().__init__(f"Wallet {wallet_id} not found")
        self.wallet_id = wallet_id


class TransactionNotFound(NotFoundError):
    def __init__(self, transaction_id: int) -> None:
        super().__init__(f"Transaction {transaction_id} not found")
        self.transaction_id = transaction_id


class UserNotFound(NotFoundError):
    def __init__(self, user_id: int) -> None:
        super().__init__(f"User {user_id} not found")
        self.user_id = user_id


class EmailAlreadyRegistered(ValueError):
    pass


class InvalidPassword(ValueError):
    pass


def normalize_currency(code: str) -> str:
    currency = (code or "").strip().upper()
    if len(currency) != 3 or not (currency.isascii() and currency.isalpha()):
        raise ValueError("Currency code must be 3 letters, e.g. USD, EUR, RUB")
    return currency


def _sum_of(txn_type: TransactionType):
    return func.coalesce(
        func.sum(
            case(
                (Transaction.type == txn_type, Transaction.amount),
                else_=0,
            )
        ),
        0,
    )


class TransactionService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def create(self, wallet_id: int, data: TransactionIn) -> Transaction:
        if self.session.get(Wallet, wallet_id) is None:
            raise WalletNotFound(wallet_id)
        txn = Transaction(
            wallet_id=wallet_id,
            description=data.description,
            date=data.date,
            amount=data.amount,
            type=data.type,
        )
        self.session.add(txn)
        self.session.commit()
        self.session.refresh(txn)
        logger.info(
            f"transaction_created: wallet_id={wallet_id} transaction_id={txn.id} "
            f"type={txn.type.value}"
        )
        return txn

    def get(self, transaction_id: int) -> Transaction:
        txn = self.session.get(Transaction, transaction_id)
        if not txn:
            raise TransactionNotFound(transaction_id)
        return txn

    def list_for_wallet(
        self,
        wallet_id: int,
        filters: Optional[TransactionFilters] = None,
        page_number: int = 1,
        page_size: int = 10,
    ) -> tuple[list[Transaction], int]:
        filters = filters or TransactionFilters()
        filters.validate()
        stmt = (
            select(Transaction)
            .where(Transaction.wallet_id == wallet_id)
            .order_by(Transaction.date.desc(), Transaction.id.desc())
        )
        stmt = filters.apply(stmt)
        items, total = paginate(self.session, stmt, page_number, page_size)
        logger.info(
            f"transactions_listed: wallet_id={wallet_id} page={page_number} "
            f"size={page_size} returned={len(items)} total={total}"
        )
        return items, total

    def grouped_by_month(
        self, wallet_id: int, year: int, month: int
    ) -> list[Transaction]:
        """
        Month's transactions as one flat list: the type with the larger total
        comes first, each block sorted by amount desc then date asc.
        """
        period = month_period(year, month)
        rows = self.session.scalars(
            select(Transaction)
            .where(
                Transaction.wallet_id == wallet_id,
                Transaction.date >= period.start,
                Transaction.date < period.end,
            )
            .order_by(Transaction.id)
        ).all()

        groups: dict[TransactionType, list[Transaction]] = {
            txn_type: [] for txn_type in TransactionType
        }
        for txn in rows:
            groups[txn.type].append(txn)

        blocks = sorted(
            (block for block in groups.values() if block),
            key=lambda block: sum(t.amount for t in block),
            reverse=True,
        )
        ordered: list[Transaction] = []
        for block in blocks:
            ordered.extend(sorted(block, key=lambda t: (-t.amount, t.date)))
        logger.info(
            f"transactions_grouped: wallet_id={wallet_id} period={year}-{month:02d} "
            f"count={len(ordered)}"
        )
        return ordered


class BalanceService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def current_balance(self, wallet_id: int) -> int:
        wallet = self.session.get(Wallet, wallet_id)
        if not wallet:
            raise WalletNotFound(wallet_id)

        row = self.session.execute(
            select(
                _sum_of(TransactionType.income).label("income"),
                _sum_of(TransactionType.expense).label("expenses"),
            ).where(Transaction.wallet_id == wallet_id)
        ).one()
        return int(wallet.initial_balance) + int(row.income) - int(row.expenses)

    def current_balances_for_user(self, user_id: int) -> dict[int, int]:
        wallets = self.session.execute(
            select(Wallet.id, Wallet.initial_balance).where(Wallet.user_id == user_id)
        ).all()
        if not wallets:
            return {}

        totals = self.session.execute(
            select(
                Transaction.wallet_id,
                _sum_of(TransactionType.income).label("income"),
                _sum_of(TransactionType.expense).label("expenses"),
            )
            .join(Wallet, Wallet.id == Transaction.wallet_id)
            .where(Wallet.user_id == user_id)
            .group_by(Transaction.wallet_id)
        ).all()
        net = {row.wallet_id: int(row.income) - int(row.expenses) for row in totals}

        return {
            wallet.id: int(wallet.initial_balance) + net.get(wallet.id, 0)
            for wallet in wallets
        }


@dataclass(frozen=True)
class MonthlySummary:
    name: str
    currency: str
    income: int
    expense: int


class MetricsService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def monthly_summary(self, wallet_id: int, year: int, month: int) -> MonthlySummary:
        wallet = self.session.get(Wallet, wallet_id)
        if not wallet:
            raise WalletNotFound(wallet_id)

        period = month_period(year, month)
        row = self.session.execute(
            select(
                _sum_of(TransactionType.income).label("income"),
                _sum_of(TransactionType.expense).label("expenses"),
            ).where(
                Transaction.wallet_id == wallet_id,
                Transaction.date >= period.start,
                Transaction.date < period.end,
            )
        ).one()
        return MonthlySummary(
            name=wallet.name,
            currency=wallet.currency,
            income=int(row.income),
            expense=int(row.expenses),
        )

    def top_expenses_per_wallet(
        self, user_id: int, year: int, month: int, limit: int = TOP_EXPENSES_LIMIT
    ) -> dict[int, list[Transaction]]:
        """
        Largest expenses of the month for each of the user's wallets.

        Sparse: wallets without a qualifying expense have no key. Equal
        amounts keep id order.
        """
        period = month_period(year, month)
        rank = (
            func.row_number()
            .over(
                partition_by=Transaction.wallet_id,
                order_by=(Transaction.amount.desc(), Transaction.id.asc()),
            )
            .label("expense_rank")
        )
        ranked = (
            select(Transaction.id.label("id"), rank)
            .join(Wallet, Wallet.id == Transaction.wallet_id)
            .where(
                Wallet.user_id == user_id,
                Transaction.type == TransactionType.expense,
                Transaction.date >= period.start,
                Transaction.date < period.end,
            )
            .subquery()
        )
        stmt = (
            select(Transaction)
            .join(ranked, ranked.c.id == Transaction.id)
            .where(ranked.c.expense_rank <= limit)
            .order_by(
                Transaction.wallet_id, Transaction.amount.desc(), Transaction.id.asc()
            )
        )

        result: dict[int, list[Transaction]] = {}
        for txn in self.session.scalars(stmt):
            result.setdefault(txn.wallet_id, []).append(txn)
        return result


def densify_top_expenses(
    wallets: list[Wallet], top_expenses: dict[int, list[Transaction]]
) -> list[WalletTopExpensesOut]:
    """One entry per wallet, empty where ``top_expenses`` has no key."""
    return [
        WalletTopExpensesOut(
            id=wallet.id,
            name=wallet.name,
            currency=wallet.currency,
            top_three_expenses=[
                TransactionOut.model_validate(txn)
                for txn in top_expenses.get(wallet.id, [])
            ],
        )
        for wallet in wallets
    ]


class WalletService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def create(self, user_id: int, data: WalletIn) -> CreatedWalletOut:
        if self.session.get(User, user_id) is None:
            raise UserNotFound(user_id)
        wallet = Wallet(
            user_id=user_id,
            name=data.name,
            currency=normalize_currency(data.currency),
            initial_balance=data.initial_balance,
        )
        self.session.add(wallet)
        self.session.commit()
        self.session.refresh(wallet)
        balance = BalanceService(self.session).current_balance(wallet.id)
        logger.info(
            f"wallet_created: user_id={user_id} wallet_id={wallet.id} "
            f"currency={wallet.currency}"
        )
        return CreatedWalletOut(
            id=wallet.id,
            name=wallet.name,
            currency=wallet.currency,
            initial_balance=wallet.initial_balance,
            current_balance=balance,
        )

    def get(self, wallet_id: int) -> Wallet:
        wallet = self.session.get(Wallet, wallet_id)
        if not wallet:
            raise WalletNotFound(wallet_id)
        return wallet

    def get_with_balance(self, wallet_id: int) -> WalletOut:
        wallet = self.get(wallet_id)
        balance = BalanceService(self.session).current_balance(wallet_id)
        return WalletOut(
            id=wallet.id,
            name=wallet.name,
            currency=wallet.currency,
            current_balance=balance,
        )

    def list_wallets(
        self,
        user_id: int,
        filters: Optional[WalletFilters] = None,
        page_number: int = 1,
        page_size: int = 10,
    ) -> Page[WalletOut]:
        filters = filters or WalletFilters()
        stmt = (
            select(Wallet).where(Wallet.user_id == user_id).order_by(Wallet.id.desc())
        )
        stmt = filters.apply(stmt)
        wallets, total = paginate(self.session, stmt, page_number, page_size)
        balances = BalanceService(self.session).current_balances_for_user(user_id)
        logger.info(
            f"wallets_listed: user_id={user_id} page={page_number} "
            f"returned={len(wallets)} total={total}"
        )
        return Page[WalletOut](
            data=[
                WalletOut(
                    id=wallet.id,
                    name=wallet.name,
                    currency=wallet.currency,
                    current_balance=balances.get(wallet.id, wallet.initial_balance),
                )
                for wallet in wallets
            ],
            page_number=page_number,
            page_size=page_size,
            total_records=total,
        )

    def update(self, wallet_id: int, data: WalletUpdateIn) -> Wallet:
        wallet = self.get(wallet_id)
        wallet.name = data.name
        wallet.currency = normalize_currency(data.currency)
        self.session.commit()
        self.session.refresh(wallet)
        logger.info(
            f"wallet_updated: wallet_id={wallet_id} currency={wallet.currency}"
        )
        return wallet

    def delete(self, wallet_id: int) -> None:
        wallet = self.get(wallet_id)
        self.session.delete(wallet)
        self.session.commit()
        logger.info(f"wallet_deleted: wallet_id={wallet_id}")

    def monthly_summary(
        self, wallet_id: int, year: int, month: int
    ) -> WalletMonthlySummaryOut:
        summary = MetricsService(self.session).monthly_summary(wallet_id, year, month)
        logger.info(
            f"wallet_monthly_summary: wallet_id={wallet_id} period={year}-{month:02d} "
            f"currency={summary.currency}"
        )
        return WalletMonthlySummaryOut(
            id=wallet_id,
            name=summary.name,
            currency=summary.currency,
            year=year,
            month=month,
            income=summary.income,
            expense=summary.expense,
        )

    def top_expenses_view(
        self, user_id: int, year: int, month: int
    ) -> list[WalletTopExpensesOut]:
        top_expenses = MetricsService(self.session).top_expenses_per_wallet(
            user_id, year, month
        )
        wallets = self.session.scalars(
            select(Wallet).where(Wallet.user_id == user_id).order_by(Wallet.id.desc())
        ).all()
        logger.info(
            f"wallet_top_expenses: user_id={user_id} period={year}-{month:02d} "
            f"wallets={len(wallets)} with_expenses={len(top_expenses)}"
        )
        return densify_top_expenses(list(wallets), top_expenses)


class UserService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def _email_taken(self, email: str, exclude_id: Optional[int] = None) -> bool:
        stmt = select(User.id).where(User.email == email)
        if exclude_id is not None:
            stmt = stmt.where(User.id != exclude_id)
        return self.session.scalar(stmt) is not None

    def create(self, data: UserIn) -> User:
        email = str(data.email)
        if self._email_taken(email):
            raise EmailAlreadyRegistered("Email is already registered")
        user = User(
            name=data.name.strip(),
            email=email,
            password_hash=hash_password(data.password),
            role=UserRole.user.value,
        )
        self.session.add(user)
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise EmailAlreadyRegistered("Email is already registered") from exc
        self.session.refresh(user)
        logger.info(f"user_created: user_id={user.id}")
        return user

    def get(self, user_id: int) -> User:
        user = self.session.get(User, user_id)
        if not user:
            raise UserNotFound(user_id)
        return user

    def find_by_email(self, email: str) -> Optional[User]:
        return self.session.scalar(select(User).where(User.email == email))

    def list(
        self,
        filters: Optional[UserFilters] = None,
        page_number: int = 1,
        page_size: int = 10,
    ) -> tuple[list[User], int]:
        filters = filters or UserFilters()
        stmt = filters.apply(select(User).order_by(User.name, User.id))
        return paginate(self.session, stmt, page_number, page_size)

    def update_profile(self, user_id: int, data: UserUpdateIn) -> User:
        user = self.get(user_id)
        email = str(data.email)
        if self._email_taken(email, exclude_id=user_id):
            raise EmailAlreadyRegistered("Email is already registered")
        user.name = data.name.strip()
        user.email = email
        self.session.commit()
        self.session.refresh(user)
        logger.info(f"user_updated: user_id={user_id}")
        return user

    def change_password(self, user_id: int, data: ChangePasswordIn) -> None:
        user = self.get(user_id)
        if not verify_password(data.current_password, user.password_hash):
            raise InvalidPassword("Current password is incorrect")
        user.password_hash = hash_password(data.new_password)
        self.session.commit()
        logger.info(f"user_password_changed: user_id={user_id}")

    def delete(self, user_id: int) -> None:
        user = self.get(user_id)
        self.session.delete(user)
        self.session.commit()
        logger.info(f"user_deleted: user_id={user_id}")

    def authenticate(self, email: str, password: str) -> User:
        user = self.find_by_email(email)
        if not user or not verify_password(password, user.password_hash):
            raise InvalidPassword("Invalid email or password")
        return user
