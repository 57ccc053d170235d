from datetime import datetime

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from models import TransactionType


class TransactionIn(BaseModel):
    description: str = Field(..., min_length=1, max_length=100)
    amount: int = Field(..., ge=1, le=1_000_000)
    type: TransactionType
    date: datetime


class TransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    wallet_id: int
    description: str
    amount: int
    type: TransactionType
    date: datetime


class WalletIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    currency: str = Field(..., min_length=3, max_length=3, pattern=r"^[A-Za-z]{3}$")
    initial_balance: int = Field(..., ge=0, le=10_000_000)


class WalletUpdateIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    currency: str = Field(..., min_length=3, max_length=3, pattern=r"^[A-Za-z]{3}$")


class WalletOut(BaseModel):
    id: int
    name: str
    currency: str
    current_balance: int


class CreatedWalletOut(BaseModel):
    id: int
    name: str
    currency: str
    initial_balance: int
    current_balance: int


class WalletMonthlySummaryOut(BaseModel):
    id: int
    name: str
    currency: str
    year: int
    month: int
    income: int
    expense: int


class WalletTopExpensesOut(BaseModel):
    id: int
    name: str
    currency: str
    top_three_expenses: list[TransactionOut] = Field(default_factory=list)


class UserIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    # bcrypt only looks at the first 72 bytes
    password: str = Field(..., min_length=6, max_length=72)


class UserUpdateIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr


class ChangePasswordIn(BaseModel):
    current_password: str = Field(..., min_length=1, max_length=72)
    new_password: str = Field(..., min_length=6, max_length=72)


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    email: str
    role: str


class LoginIn(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1, max_length=72)


class TokenOut(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
