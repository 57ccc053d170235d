import logging
from dataclasses import dataclass
from datetime import date
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Path, Query, Response
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from config import get_settings
from database import Base, SessionLocal, engine
from filters import TransactionFilters, UserFilters, WalletFilters
from models import TransactionType, UserRole, Wallet
from pagination import MAX_PAGE_SIZE, Page
from periods import month_period
from response_cache import (
    MONTHLY_SUMMARY_TTL_SECS,
    TOP_EXPENSES_TTL_SECS,
    ResponseCache,
    grouped_ttl,
)
from schemas import (
    ChangePasswordIn,
    CreatedWalletOut,
    LoginIn,
    TokenOut,
    TransactionIn,
    TransactionOut,
    UserIn,
    UserOut,
    UserUpdateIn,
    WalletIn,
    WalletMonthlySummaryOut,
    WalletOut,
    WalletTopExpensesOut,
    WalletUpdateIn,
)
from security import (
    generate_access_token,
    token_max_age_seconds,
    validate_access_token,
)
from services import (
    InvalidPassword,
    NotFoundError,
    TransactionService,
    UserService,
    WalletService,
)

settings = get_settings()
logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title="Finance Wallets")
response_cache = ResponseCache()
bearer_scheme = HTTPBearer(auto_error=False)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@app.on_event("startup")
def startup_event():
    if settings.auto_create_schema:
        Base.metadata.create_all(engine)
        logger.info("startup: schema created")


@dataclass(frozen=True)
class CurrentUser:
    id: int
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.admin.value


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> CurrentUser:
    if credentials is None:
        raise HTTPException(
            status_code=401,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    identity = validate_access_token(credentials.credentials)
    if identity is None:
        raise HTTPException(
            status_code=401,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    user_id, role = identity
    return CurrentUser(id=user_id, role=role)


def require_admin(current: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    if not current.is_admin:
        raise HTTPException(status_code=403, detail="Admin role required")
    return current


def ensure_self_or_admin(current: CurrentUser, user_id: int) -> None:
    if current.id != user_id and not current.is_admin:
        raise HTTPException(status_code=403, detail="Access to this user is denied")


def owned_wallet(db: Session, wallet_id: int, current: CurrentUser) -> Wallet:
    try:
        wallet = WalletService(db).get(wallet_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    if wallet.user_id != current.id and not current.is_admin:
        raise HTTPException(status_code=403, detail="Access to this wallet is denied")
    return wallet


# --- users -----------------------------------------------------------------


@app.post("/api/users", status_code=201, response_model=UserOut)
def create_user(data: UserIn, db: Session = Depends(get_db)):
    try:
        user = UserService(db).create(data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return UserOut.model_validate(user)


@app.post("/api/auth/login", response_model=TokenOut)
def login(data: LoginIn, db: Session = Depends(get_db)):
    try:
        user = UserService(db).authenticate(str(data.email), data.password)
    except InvalidPassword as exc:
        logger.info("login_failed")
        raise HTTPException(
            status_code=401,
            detail=str(exc),
            headers={"WWW-Authenticate": "Bearer"},
        ) from exc
    logger.info(f"login: user_id={user.id}")
    return TokenOut(
        access_token=generate_access_token(user.id, user.role),
        expires_in=token_max_age_seconds(),
    )


@app.get("/api/users", response_model=Page[UserOut])
def list_users(
    name: Optional[str] = Query(None),
    email: Optional[str] = Query(None),
    role: Optional[str] = Query(None),
    page_number: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=MAX_PAGE_SIZE),
    db: Session = Depends(get_db),
    _admin: CurrentUser = Depends(require_admin),
):
    filters = UserFilters(name_equals=name, email_equals=email, role_equals=role)
    users, total = UserService(db).list(filters, page_number, page_size)
    return Page[UserOut](
        data=[UserOut.model_validate(user) for user in users],
        page_number=page_number,
        page_size=page_size,
        total_records=total,
    )


@app.get("/api/users/{user_id}", response_model=UserOut)
def get_user(
    user_id: int,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(get_current_user),
):
    ensure_self_or_admin(current, user_id)
    try:
        user = UserService(db).get(user_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return UserOut.model_validate(user)


@app.put("/api/users/{user_id}", response_model=UserOut)
def update_user(
    user_id: int,
    data: UserUpdateIn,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(get_current_user),
):
    ensure_self_or_admin(current, user_id)
    try:
        user = UserService(db).update_profile(user_id, data)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return UserOut.model_validate(user)


@app.put("/api/users/{user_id}/change-password", status_code=204)
def change_password(
    user_id: int,
    data: ChangePasswordIn,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(get_current_user),
):
    if current.id != user_id:
        raise HTTPException(status_code=403, detail="Access to this user is denied")
    try:
        UserService(db).change_password(user_id, data)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return Response(status_code=204)


@app.delete("/api/users/{user_id}", status_code=204)
def delete_user(
    user_id: int,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(get_current_user),
):
    ensure_self_or_admin(current, user_id)
    service = UserService(db)
    try:
        wallet_ids = [wallet.id for wallet in service.get(user_id).wallets]
        service.delete(user_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    for wallet_id in wallet_ids:
        response_cache.invalidate_wallet(wallet_id)
    response_cache.invalidate_user(user_id)
    return Response(status_code=204)


# --- wallets ---------------------------------------------------------------


@app.post("/api/wallets", status_code=201, response_model=CreatedWalletOut)
def create_wallet(
    data: WalletIn,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(get_current_user),
):
    try:
        created = WalletService(db).create(current.id, data)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    response_cache.invalidate_user(current.id)
    return created


@app.get("/api/wallets", response_model=Page[WalletOut])
def list_wallets(
    currency: Optional[str] = Query(None),
    name: Optional[str] = Query(None),
    page_number: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=MAX_PAGE_SIZE),
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(get_current_user),
):
    filters = WalletFilters(currency_equals=currency, name_equals=name)
    return WalletService(db).list_wallets(current.id, filters, page_number, page_size)


@app.get(
    "/api/wallets/users/{user_id}/top-three-expenses/{year}/{month}",
    response_model=list[WalletTopExpensesOut],
)
def wallet_top_expenses(
    user_id: int,
    year: int = Path(..., ge=1, le=9999),
    month: int = Path(..., ge=1, le=12),
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(get_current_user),
):
    ensure_self_or_admin(current, user_id)
    key = ("top_expenses", user_id, year, month)
    cached = response_cache.get(key)
    if cached is not None:
        logger.info(f"cache_hit: key={key}")
        return cached
    result = WalletService(db).top_expenses_view(user_id, year, month)
    response_cache.set(key, result, TOP_EXPENSES_TTL_SECS)
    return result


@app.get("/api/wallets/{wallet_id}", response_model=WalletOut)
def get_wallet(
    wallet_id: int,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(get_current_user),
):
    owned_wallet(db, wallet_id, current)
    return WalletService(db).get_with_balance(wallet_id)


@app.put("/api/wallets/{wallet_id}", response_model=WalletOut)
def update_wallet(
    wallet_id: int,
    data: WalletUpdateIn,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(get_current_user),
):
    wallet = owned_wallet(db, wallet_id, current)
    service = WalletService(db)
    try:
        service.update(wallet_id, data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    response_cache.invalidate_wallet(wallet_id)
    response_cache.invalidate_user(wallet.user_id)
    return service.get_with_balance(wallet_id)


@app.delete("/api/wallets/{wallet_id}", status_code=204)
def delete_wallet(
    wallet_id: int,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(get_current_user),
):
    wallet = owned_wallet(db, wallet_id, current)
    owner_id = wallet.user_id
    WalletService(db).delete(wallet_id)
    response_cache.invalidate_wallet(wallet_id)
    response_cache.invalidate_user(owner_id)
    return Response(status_code=204)


@app.get(
    "/api/wallets/{wallet_id}/monthly-summary/{year}/{month}",
    response_model=WalletMonthlySummaryOut,
)
def wallet_monthly_summary(
    wallet_id: int,
    year: int = Path(..., ge=1, le=9999),
    month: int = Path(..., ge=1, le=12),
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(get_current_user),
):
    owned_wallet(db, wallet_id, current)
    key = ("summary", wallet_id, year, month)
    cached = response_cache.get(key)
    if cached is not None:
        logger.info(f"cache_hit: key={key}")
        return cached
    summary = WalletService(db).monthly_summary(wallet_id, year, month)
    response_cache.set(key, summary, MONTHLY_SUMMARY_TTL_SECS)
    return summary


# --- transactions ----------------------------------------------------------


@app.post("/api/transactions", status_code=201, response_model=TransactionOut)
def create_transaction(
    data: TransactionIn,
    wallet_id: int = Query(...),
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(get_current_user),
):
    wallet = owned_wallet(db, wallet_id, current)
    owner_id = wallet.user_id
    try:
        txn = TransactionService(db).create(wallet_id, data)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    response_cache.invalidate_wallet(wallet_id)
    response_cache.invalidate_user(owner_id)
    return TransactionOut.model_validate(txn)


@app.get("/api/transactions", response_model=Page[TransactionOut])
def list_transactions(
    wallet_id: int = Query(...),
    transaction_type: Optional[TransactionType] = Query(None, alias="type"),
    description: Optional[str] = Query(None, max_length=100),
    min_amount: Optional[int] = Query(None, ge=0),
    max_amount: Optional[int] = Query(None, ge=0),
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    page_number: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=MAX_PAGE_SIZE),
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(get_current_user),
):
    owned_wallet(db, wallet_id, current)
    filters = TransactionFilters(
        type=transaction_type,
        description_contains=description,
        min_amount=min_amount,
        max_amount=max_amount,
        date_from=date_from,
        date_to=date_to,
    )
    try:
        items, total = TransactionService(db).list_for_wallet(
            wallet_id, filters, page_number, page_size
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return Page[TransactionOut](
        data=[TransactionOut.model_validate(txn) for txn in items],
        page_number=page_number,
        page_size=page_size,
        total_records=total,
    )


@app.get("/api/transactions/{transaction_id}", response_model=TransactionOut)
def get_transaction(
    transaction_id: int,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(get_current_user),
):
    try:
        txn = TransactionService(db).get(transaction_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    owned_wallet(db, txn.wallet_id, current)
    return TransactionOut.model_validate(txn)


@app.get(
    "/api/transactions/{wallet_id}/{year}/{month}",
    response_model=list[TransactionOut],
)
def grouped_transactions(
    wallet_id: int,
    year: int = Path(..., ge=1, le=9999),
    month: int = Path(..., ge=1, le=12),
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(get_current_user),
):
    owned_wallet(db, wallet_id, current)
    key = ("grouped", wallet_id, year, month)
    cached = response_cache.get(key)
    if cached is not None:
        logger.info(f"cache_hit: key={key}")
        return cached
    result = [
        TransactionOut.model_validate(txn)
        for txn in TransactionService(db).grouped_by_month(wallet_id, year, month)
    ]
    response_cache.set(key, result, grouped_ttl(month_period(year, month)))
    return result
