from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Optional

from sqlalchemy import Select

from models import Transaction, TransactionType, User, Wallet


def _has_text(value: Optional[str]) -> bool:
    return value is not None and value.strip() != ""


@dataclass
class TransactionFilters:
    type: Optional[TransactionType] = None
    description_contains: Optional[str] = None
    min_amount: Optional[int] = None
    max_amount: Optional[int] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None

    def validate(self) -> None:
        if (
            self.min_amount is not None
            and self.max_amount is not None
            and self.min_amount > self.max_amount
        ):
            raise ValueError("Minimum amount cannot be greater than maximum amount")
        if (
            self.date_from is not None
            and self.date_to is not None
            and self.date_to < self.date_from
        ):
            raise ValueError("Date 'from' cannot be later than date 'to'")

    def apply(self, stmt: Select) -> Select:
        if self.type:
            stmt = stmt.where(Transaction.type == self.type)
        if self.date_from is not None:
            stmt = stmt.where(
                Transaction.date >= datetime.combine(self.date_from, time.min)
            )
        if self.date_to is not None and self.date_to < date.max:
            # inclusive upper bound: everything before the next midnight
            upper = datetime.combine(self.date_to + timedelta(days=1), time.min)
            stmt = stmt.where(Transaction.date < upper)
        if self.min_amount is not None:
            stmt = stmt.where(Transaction.amount >= self.min_amount)
        if self.max_amount is not None:
            stmt = stmt.where(Transaction.amount <= self.max_amount)
        if _has_text(self.description_contains):
            stmt = stmt.where(
                Transaction.description.contains(
                    self.description_contains, autoescape=True
                )
            )
        return stmt


@dataclass
class WalletFilters:
    currency_equals: Optional[str] = None
    name_equals: Optional[str] = None

    def apply(self, stmt: Select) -> Select:
        if _has_text(self.currency_equals):
            stmt = stmt.where(Wallet.currency == self.currency_equals.strip().upper())
        if _has_text(self.name_equals):
            stmt = stmt.where(Wallet.name == self.name_equals)
        return stmt


@dataclass
class UserFilters:
    name_equals: Optional[str] = None
    email_equals: Optional[str] = None
    role_equals: Optional[str] = None

    def apply(self, stmt: Select) -> Select:
        if _has_text(self.email_equals):
            stmt = stmt.where(User.email == self.email_equals)
        if _has_text(self.name_equals):
            stmt = stmt.where(User.name == self.name_equals)
        if _has_text(self.role_equals):
            stmt = stmt.where(User.role == self.role_equals)
        return stmt
