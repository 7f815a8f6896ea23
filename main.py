import os
import logging
from contextlib import asynccontextmanager
from datetime import date, timedelta
from functools import lru_cache
from typing import List, Optional

from fastapi import FastAPI, Depends, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import OAuth2PasswordBearer
from pymongo.database import Database

from accounts import AccountService
from catalog import CatalogService
from config import Settings, configure_logging, get_settings
from database import ensure_indexes, get_db
from errors import (
    AuthenticationFailed,
    AuthorizationDenied,
    InvalidArgument,
    LibraryError,
    NotFound,
    ValidationFailed,
)
from fines import FineService
from lending import LendingService
from payments import PaymentService
from policy import AuthorizationPolicy
from schemas import (
    AccountStatus,
    AccountUpdatePayload,
    BookCopyOut,
    BookOut,
    BookPayload,
    BorrowPayload,
    ChangePasswordPayload,
    CompletePayload,
    CopyPayload,
    CopyStatus,
    CopyStatusPayload,
    FailPayload,
    FineOut,
    FinePayload,
    FineStatus,
    LoanOut,
    LoanStatus,
    LoginPayload,
    PatronOut,
    PaymentMethod,
    PaymentOut,
    PaymentPayload,
    PaymentStatus,
    RegisterPayload,
    ReturnPayload,
    Role,
    RolePayload,
    StaffOut,
    StaffPayload,
    StaffRole,
    StatusPayload,
    Token,
)
from security import PasswordHasher, Principal, TokenService

logger = logging.getLogger("library.api")


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    configure_logging(settings.log_level)
    ensure_indexes(get_db())
    logger.info("Library API started")
    yield


# Collaborators

@lru_cache
def get_hasher() -> PasswordHasher:
    return PasswordHasher()


def get_token_service(settings: Settings = Depends(get_settings)) -> TokenService:
    return TokenService(
        settings.secret_key,
        settings.jwt_algorithm,
        timedelta(seconds=settings.access_token_expire_seconds),
    )


def get_accounts(db: Database = Depends(get_db)) -> AccountService:
    return AccountService(db, get_hasher())


def get_catalog(db: Database = Depends(get_db)) -> CatalogService:
    return CatalogService(db)


def get_lending(db: Database = Depends(get_db), settings: Settings = Depends(get_settings)) -> LendingService:
    return LendingService(db, settings.loan_period_days)


def get_fines(db: Database = Depends(get_db), settings: Settings = Depends(get_settings)) -> FineService:
    return FineService(db, settings.daily_fine_rate)


def get_payments(db: Database = Depends(get_db)) -> PaymentService:
    return PaymentService(db)


# Authentication and authorization

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/user/login", auto_error=False)
policy = AuthorizationPolicy()


def authorize(request: Request, token: Optional[str] = Depends(oauth2_scheme),
              tokens: TokenService = Depends(get_token_service)) -> None:
    """Runs before every route: resolve the bearer token and apply the role table."""
    request.state.principal = None
    if policy.is_public(request.method, request.url.path):
        return
    principal = tokens.validate(token) if token else None
    policy.check(request.method, request.url.path, principal)
    request.state.principal = principal


def current_principal(request: Request) -> Principal:
    principal = getattr(request.state, "principal", None)
    if principal is None:
        raise AuthenticationFailed("Authentication required")
    return principal


def own_account_id(principal: Principal, accounts: AccountService) -> Optional[str]:
    """Patron id of a USER caller; None for staff, who may act on any account."""
    if principal.is_staff:
        return None
    try:
        return accounts.get_patron_by_email(principal.email).id
    except NotFound:
        raise AuthenticationFailed("Account no longer exists")


def ensure_owner(principal: Principal, accounts: AccountService, account_id: str) -> None:
    own = own_account_id(principal, accounts)
    if own is not None and own != account_id:
        raise AuthorizationDenied("User mismatch")


def scope_to_self(principal: Principal, accounts: AccountService, user_id: Optional[str]) -> Optional[str]:
    """Account filter for list queries: USER callers are pinned to their own id."""
    own = own_account_id(principal, accounts)
    if own is None:
        return user_id
    if user_id and user_id != own:
        raise AuthorizationDenied("User mismatch")
    return own


app = FastAPI(
    title="Library Lending API",
    version="1.0.0",
    lifespan=lifespan,
    dependencies=[Depends(authorize)],
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Error translation

def error_body(status: int, error: str, message: str, path: str) -> dict:
    return {"status": status, "error": error, "message": message, "path": path}


@app.exception_handler(LibraryError)
async def library_error_handler(request: Request, exc: LibraryError):
    logger.warning("%s: %s at %s", exc.error, exc.message, request.url.path)
    body = error_body(exc.status_code, exc.error, exc.message, request.url.path)
    if isinstance(exc, ValidationFailed):
        body["details"] = exc.details
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return JSONResponse(body, status_code=exc.status_code, headers=headers)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    details = [
        {"field": ".".join(str(p) for p in err.get("loc", ())[1:]), "message": err.get("msg", "")}
        for err in exc.errors()
    ]
    return await library_error_handler(request, ValidationFailed("Invalid request", details))


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("Unexpected error at %s", request.url.path)
    body = error_body(500, "Internal Server Error", "An unexpected error occurred", request.url.path)
    return JSONResponse(body, status_code=500)


# Health

@app.get("/")
def root():
    return {"name": "Library Lending API", "status": "ok"}


# Auth

@app.post("/api/auth/register", response_model=PatronOut, status_code=201)
def register(payload: RegisterPayload, accounts: AccountService = Depends(get_accounts)):
    logger.info("Registration attempt for email: %s", payload.email)
    return accounts.register_patron(payload)


@app.post("/api/auth/user/login", response_model=Token)
def user_login(payload: LoginPayload, accounts: AccountService = Depends(get_accounts),
               tokens: TokenService = Depends(get_token_service)):
    patron = accounts.authenticate_patron(payload.email, payload.password)
    logger.info("User login successful: %s", patron.email)
    return Token(access_token=tokens.issue(patron.email, Role.USER), email=patron.email, role=Role.USER)


@app.post("/api/auth/staff/login", response_model=Token)
def staff_login(payload: LoginPayload, accounts: AccountService = Depends(get_accounts),
                tokens: TokenService = Depends(get_token_service)):
    member = accounts.authenticate_staff(payload.email, payload.password)
    role = Role(member.role.value)
    logger.info("Librarian login successful: %s with role: %s", member.email, role.value)
    return Token(access_token=tokens.issue(member.email, role), email=member.email, role=role)


@app.get("/api/auth/verify", response_model=Token)
def verify(token: Optional[str] = Depends(oauth2_scheme), tokens: TokenService = Depends(get_token_service)):
    if not token:
        raise AuthenticationFailed("Invalid authorization header")
    principal = tokens.validate(token)
    return Token(access_token=token, email=principal.email, role=principal.role, message="Token is valid")


@app.get("/api/me")
def me(principal: Principal = Depends(current_principal), accounts: AccountService = Depends(get_accounts)):
    if principal.role == Role.USER:
        return accounts.get_patron_by_email(principal.email)
    return accounts.get_staff_by_email(principal.email)


# Patrons

@app.get("/api/users", response_model=List[PatronOut])
def list_users(status: Optional[AccountStatus] = None, name: Optional[str] = None,
               skip: int = Query(0, ge=0), limit: int = Query(50, ge=1, le=200),
               accounts: AccountService = Depends(get_accounts)):
    return accounts.list_patrons(status, name, skip, limit)


@app.get("/api/users/{user_id}", response_model=PatronOut)
def get_user(user_id: str, accounts: AccountService = Depends(get_accounts)):
    return accounts.get_patron(user_id)


@app.patch("/api/users/{user_id}", response_model=PatronOut)
def update_user(user_id: str, payload: AccountUpdatePayload, accounts: AccountService = Depends(get_accounts)):
    return accounts.update_patron(user_id, payload)


@app.post("/api/users/{user_id}/status", response_model=PatronOut)
def set_user_status(user_id: str, payload: StatusPayload, accounts: AccountService = Depends(get_accounts)):
    return accounts.set_patron_status(user_id, payload.status)


@app.post("/api/users/{user_id}/change-password")
def change_user_password(user_id: str, payload: ChangePasswordPayload,
                         principal: Principal = Depends(current_principal),
                         accounts: AccountService = Depends(get_accounts)):
    ensure_owner(principal, accounts, user_id)
    accounts.change_patron_password(user_id, payload.current_password, payload.new_password)
    return {"message": "Password changed successfully"}


@app.delete("/api/users/{user_id}", status_code=204)
def delete_user(user_id: str, accounts: AccountService = Depends(get_accounts)):
    accounts.delete_patron(user_id)


# Staff (librarians)

@app.post("/api/staff", response_model=StaffOut, status_code=201)
def create_staff(payload: StaffPayload, accounts: AccountService = Depends(get_accounts)):
    return accounts.create_staff(payload)


@app.get("/api/staff", response_model=List[StaffOut])
def list_staff(role: Optional[StaffRole] = None, status: Optional[AccountStatus] = None,
               skip: int = Query(0, ge=0), limit: int = Query(50, ge=1, le=200),
               accounts: AccountService = Depends(get_accounts)):
    return accounts.list_staff(role, status, skip, limit)


@app.get("/api/staff/{staff_id}", response_model=StaffOut)
def get_staff(staff_id: str, accounts: AccountService = Depends(get_accounts)):
    return accounts.get_staff(staff_id)


@app.patch("/api/staff/{staff_id}", response_model=StaffOut)
def update_staff(staff_id: str, payload: AccountUpdatePayload, accounts: AccountService = Depends(get_accounts)):
    return accounts.update_staff(staff_id, payload)


@app.post("/api/staff/{staff_id}/status", response_model=StaffOut)
def set_staff_status(staff_id: str, payload: StatusPayload, accounts: AccountService = Depends(get_accounts)):
    return accounts.set_staff_status(staff_id, payload.status)


@app.post("/api/staff/{staff_id}/role", response_model=StaffOut)
def set_staff_role(staff_id: str, payload: RolePayload, accounts: AccountService = Depends(get_accounts)):
    return accounts.change_role(staff_id, payload.role)


@app.post("/api/staff/{staff_id}/change-password")
def change_staff_password(staff_id: str, payload: ChangePasswordPayload,
                          principal: Principal = Depends(current_principal),
                          accounts: AccountService = Depends(get_accounts)):
    if principal.role != Role.ADMIN and accounts.get_staff(staff_id).email != principal.email:
        raise AuthorizationDenied("Librarian mismatch")
    accounts.change_staff_password(staff_id, payload.current_password, payload.new_password)
    return {"message": "Password changed successfully"}


@app.delete("/api/staff/{staff_id}", status_code=204)
def delete_staff(staff_id: str, accounts: AccountService = Depends(get_accounts)):
    accounts.delete_staff(staff_id)


# Catalog

@app.post("/api/books", response_model=BookOut, status_code=201)
def create_book(payload: BookPayload, catalog: CatalogService = Depends(get_catalog)):
    return catalog.create_book(payload)


@app.get("/api/books", response_model=List[BookOut])
def list_books(q: Optional[str] = None, skip: int = Query(0, ge=0), limit: int = Query(50, ge=1, le=200),
               catalog: CatalogService = Depends(get_catalog)):
    return catalog.list_books(q, skip, limit)


@app.get("/api/books/{book_id}", response_model=BookOut)
def get_book(book_id: str, catalog: CatalogService = Depends(get_catalog)):
    return catalog.get_book(book_id)


@app.post("/api/book-copies", response_model=BookCopyOut, status_code=201)
def create_copy(payload: CopyPayload, catalog: CatalogService = Depends(get_catalog)):
    return catalog.create_copy(payload)


@app.get("/api/book-copies", response_model=List[BookCopyOut])
def list_copies(book_id: Optional[str] = Query(None, alias="bookId"),
                status: Optional[CopyStatus] = None,
                skip: int = Query(0, ge=0), limit: int = Query(50, ge=1, le=200),
                catalog: CatalogService = Depends(get_catalog)):
    return catalog.list_copies(book_id, status, skip, limit)


@app.get("/api/book-copies/count")
def count_copies(book_id: Optional[str] = Query(None, alias="bookId"),
                 status: Optional[CopyStatus] = None,
                 catalog: CatalogService = Depends(get_catalog)):
    return {"count": catalog.count_copies(book_id, status)}


@app.get("/api/book-copies/barcode/{barcode}", response_model=BookCopyOut)
def get_copy_by_barcode(barcode: str, catalog: CatalogService = Depends(get_catalog)):
    return catalog.get_copy_by_barcode(barcode)


@app.get("/api/book-copies/{copy_id}", response_model=BookCopyOut)
def get_copy(copy_id: str, catalog: CatalogService = Depends(get_catalog)):
    return catalog.get_copy(copy_id)


@app.get("/api/book-copies/{copy_id}/available")
def copy_available(copy_id: str, catalog: CatalogService = Depends(get_catalog)):
    return {"available": catalog.is_copy_available(copy_id)}


@app.post("/api/book-copies/{copy_id}/status", response_model=BookCopyOut)
def set_copy_status(copy_id: str, payload: CopyStatusPayload, catalog: CatalogService = Depends(get_catalog)):
    return catalog.set_copy_status(copy_id, payload.status)


# Loans

@app.post("/api/loans", response_model=LoanOut, status_code=201)
def borrow(payload: BorrowPayload, principal: Principal = Depends(current_principal),
           accounts: AccountService = Depends(get_accounts), lending: LendingService = Depends(get_lending)):
    ensure_owner(principal, accounts, payload.account_id)
    return lending.borrow(payload.account_id, payload.copy_id, payload.borrow_date, payload.due_date)


@app.get("/api/loans", response_model=List[LoanOut])
def list_loans(status: Optional[LoanStatus] = None, user_id: Optional[str] = Query(None, alias="userId"),
               copy_id: Optional[str] = Query(None, alias="copyId"), overdue: bool = False,
               skip: int = Query(0, ge=0), limit: int = Query(50, ge=1, le=200),
               principal: Principal = Depends(current_principal),
               accounts: AccountService = Depends(get_accounts), lending: LendingService = Depends(get_lending)):
    user_id = scope_to_self(principal, accounts, user_id)
    if overdue:
        if status is not None:
            raise InvalidArgument("The overdue filter cannot be combined with status")
        return lending.overdue(user_id, copy_id=copy_id, skip=skip, limit=limit)
    return lending.list_loans(user_id, copy_id, status, skip, limit)


@app.post("/api/loans/mark-overdue")
def mark_overdue(as_of: Optional[date] = Query(None, alias="asOf"),
                 lending: LendingService = Depends(get_lending)):
    updated = lending.sweep_overdue(as_of)
    return {"message": "Overdue records have been updated", "updated": updated}


@app.get("/api/loans/overdue", response_model=List[LoanOut])
def overdue_loans(user_id: Optional[str] = Query(None, alias="userId"),
                  principal: Principal = Depends(current_principal),
                  accounts: AccountService = Depends(get_accounts), lending: LendingService = Depends(get_lending)):
    user_id = scope_to_self(principal, accounts, user_id)
    return lending.overdue(user_id)


@app.get("/api/loans/search/{field}", response_model=List[LoanOut])
def search_loans(field: str, start_date: date = Query(..., alias="startDate"),
                 end_date: date = Query(..., alias="endDate"), lending: LendingService = Depends(get_lending)):
    return lending.search_by_date(field.replace("-", "_"), start_date, end_date)


@app.get("/api/loans/copy/{copy_id}/available")
def loan_copy_available(copy_id: str, lending: LendingService = Depends(get_lending)):
    return {"available": lending.is_copy_available(copy_id)}


@app.get("/api/loans/user/{user_id}/active", response_model=List[LoanOut])
def active_loans(user_id: str, principal: Principal = Depends(current_principal),
                 accounts: AccountService = Depends(get_accounts), lending: LendingService = Depends(get_lending)):
    ensure_owner(principal, accounts, user_id)
    return lending.active_by_account(user_id)


@app.get("/api/loans/user/{user_id}/active-count")
def active_count(user_id: str, principal: Principal = Depends(current_principal),
                 accounts: AccountService = Depends(get_accounts), lending: LendingService = Depends(get_lending)):
    ensure_owner(principal, accounts, user_id)
    return {"activeCount": lending.count_active_by_account(user_id)}


@app.get("/api/loans/user/{user_id}/limit-check")
def limit_check(user_id: str, limit: Optional[int] = Query(None, ge=1),
                principal: Principal = Depends(current_principal),
                settings: Settings = Depends(get_settings),
                accounts: AccountService = Depends(get_accounts), lending: LendingService = Depends(get_lending)):
    ensure_owner(principal, accounts, user_id)
    return {"limitExceeded": lending.has_exceeded_limit(user_id, limit or settings.borrow_limit)}


@app.get("/api/loans/{loan_id}", response_model=LoanOut)
def get_loan(loan_id: str, principal: Principal = Depends(current_principal),
             accounts: AccountService = Depends(get_accounts), lending: LendingService = Depends(get_lending)):
    loan = lending.get_loan(loan_id)
    ensure_owner(principal, accounts, loan.account_id)
    return loan


@app.post("/api/loans/{loan_id}/return", response_model=LoanOut)
def return_loan(loan_id: str, payload: Optional[ReturnPayload] = None,
                principal: Principal = Depends(current_principal),
                accounts: AccountService = Depends(get_accounts), lending: LendingService = Depends(get_lending)):
    loan = lending.get_loan(loan_id)
    ensure_owner(principal, accounts, loan.account_id)
    return lending.return_loan(loan_id, payload.return_date if payload else None)


# Fines

@app.post("/api/fines", response_model=FineOut, status_code=201)
def create_fine(payload: FinePayload, fines: FineService = Depends(get_fines)):
    return fines.create_fine(payload.loan_id, payload.amount, payload.reason)


@app.get("/api/fines", response_model=List[FineOut])
def list_fines(status: Optional[FineStatus] = None, user_id: Optional[str] = Query(None, alias="userId"),
               skip: int = Query(0, ge=0), limit: int = Query(50, ge=1, le=200),
               principal: Principal = Depends(current_principal),
               accounts: AccountService = Depends(get_accounts), fines: FineService = Depends(get_fines)):
    user_id = scope_to_self(principal, accounts, user_id)
    return fines.list_fines(status, user_id, skip, limit)


@app.post("/api/fines/assess/loan/{loan_id}", response_model=FineOut, status_code=201)
def assess_fine(loan_id: str, daily_rate: Optional[float] = Query(None, gt=0, alias="dailyRate"),
                fines: FineService = Depends(get_fines)):
    return fines.assess(loan_id, daily_rate)


@app.get("/api/fines/total/status/{status}")
def total_fines_by_status(status: FineStatus, fines: FineService = Depends(get_fines)):
    return {"status": status.value, "total": fines.total_by_status(status)}


@app.get("/api/fines/count/status/{status}")
def count_fines_by_status(status: FineStatus, fines: FineService = Depends(get_fines)):
    return {"status": status.value, "count": fines.count_by_status(status)}


@app.get("/api/fines/exists/loan/{loan_id}")
def fine_exists(loan_id: str, fines: FineService = Depends(get_fines)):
    return {"exists": fines.exists_for_loan(loan_id)}


@app.get("/api/fines/loan/{loan_id}", response_model=FineOut)
def fine_for_loan(loan_id: str, principal: Principal = Depends(current_principal),
                  accounts: AccountService = Depends(get_accounts), fines: FineService = Depends(get_fines)):
    fine = fines.fine_for_loan(loan_id)
    ensure_owner(principal, accounts, fine.account_id)
    return fine


@app.get("/api/fines/user/{user_id}/pending", response_model=List[FineOut])
def pending_fines(user_id: str, principal: Principal = Depends(current_principal),
                  accounts: AccountService = Depends(get_accounts), fines: FineService = Depends(get_fines)):
    ensure_owner(principal, accounts, user_id)
    return fines.pending_for_account(user_id)


@app.get("/api/fines/user/{user_id}/total-pending")
def total_pending(user_id: str, principal: Principal = Depends(current_principal),
                  accounts: AccountService = Depends(get_accounts), fines: FineService = Depends(get_fines)):
    ensure_owner(principal, accounts, user_id)
    return {"userId": user_id, "totalPending": fines.total_pending_by_account(user_id)}


@app.get("/api/fines/user/{user_id}/has-pending")
def has_pending(user_id: str, principal: Principal = Depends(current_principal),
                accounts: AccountService = Depends(get_accounts), fines: FineService = Depends(get_fines)):
    ensure_owner(principal, accounts, user_id)
    return {"hasPending": fines.has_pending_by_account(user_id)}


@app.get("/api/fines/{fine_id}", response_model=FineOut)
def get_fine(fine_id: str, principal: Principal = Depends(current_principal),
             accounts: AccountService = Depends(get_accounts), fines: FineService = Depends(get_fines)):
    fine = fines.get_fine(fine_id)
    ensure_owner(principal, accounts, fine.account_id)
    return fine


@app.post("/api/fines/{fine_id}/pay", response_model=FineOut)
def pay_fine(fine_id: str, fines: FineService = Depends(get_fines)):
    return fines.pay(fine_id)


@app.post("/api/fines/{fine_id}/waive", response_model=FineOut)
def waive_fine(fine_id: str, fines: FineService = Depends(get_fines)):
    return fines.waive(fine_id)


# Payments

@app.post("/api/payments", response_model=PaymentOut, status_code=201)
def create_payment(payload: PaymentPayload, principal: Principal = Depends(current_principal),
                   accounts: AccountService = Depends(get_accounts), fines: FineService = Depends(get_fines),
                   payments: PaymentService = Depends(get_payments)):
    if principal.role == Role.USER:
        ensure_owner(principal, accounts, fines.get_fine(payload.fine_id).account_id)
    return payments.create(payload)


@app.get("/api/payments", response_model=List[PaymentOut])
def list_payments(fine_id: Optional[str] = Query(None, alias="fineId"),
                  user_id: Optional[str] = Query(None, alias="userId"),
                  status: Optional[PaymentStatus] = None, method: Optional[PaymentMethod] = None,
                  skip: int = Query(0, ge=0), limit: int = Query(50, ge=1, le=200),
                  principal: Principal = Depends(current_principal),
                  accounts: AccountService = Depends(get_accounts), payments: PaymentService = Depends(get_payments)):
    user_id = scope_to_self(principal, accounts, user_id)
    return payments.list_payments(fine_id, user_id, status, method, skip, limit)


@app.get("/api/payments/revenue")
def revenue(start_date: date = Query(..., alias="startDate"), end_date: date = Query(..., alias="endDate"),
            payments: PaymentService = Depends(get_payments)):
    return {
        "startDate": start_date.isoformat(),
        "endDate": end_date.isoformat(),
        "totalRevenue": payments.revenue_between(start_date, end_date),
    }


@app.get("/api/payments/transaction/{transaction_id}", response_model=PaymentOut)
def payment_by_transaction(transaction_id: str, payments: PaymentService = Depends(get_payments)):
    return payments.by_transaction_id(transaction_id)


@app.get("/api/payments/exists/transaction/{transaction_id}")
def payment_exists(transaction_id: str, payments: PaymentService = Depends(get_payments)):
    return {"exists": payments.exists_by_transaction_id(transaction_id)}


@app.get("/api/payments/fine/{fine_id}/total-paid")
def total_paid_for_fine(fine_id: str, principal: Principal = Depends(current_principal),
                        accounts: AccountService = Depends(get_accounts), fines: FineService = Depends(get_fines),
                        payments: PaymentService = Depends(get_payments)):
    ensure_owner(principal, accounts, fines.get_fine(fine_id).account_id)
    return {"fineId": fine_id, "totalPaid": payments.total_paid_by_fine(fine_id)}


@app.get("/api/payments/user/{user_id}/total-paid")
def total_paid_for_user(user_id: str, principal: Principal = Depends(current_principal),
                        accounts: AccountService = Depends(get_accounts),
                        payments: PaymentService = Depends(get_payments)):
    ensure_owner(principal, accounts, user_id)
    return {"userId": user_id, "totalPaid": payments.total_paid_by_account(user_id)}


@app.get("/api/payments/{payment_id}", response_model=PaymentOut)
def get_payment(payment_id: str, principal: Principal = Depends(current_principal),
                accounts: AccountService = Depends(get_accounts), payments: PaymentService = Depends(get_payments)):
    payment = payments.get_payment(payment_id)
    ensure_owner(principal, accounts, payment.account_id)
    return payment


@app.post("/api/payments/{payment_id}/process", response_model=PaymentOut)
def process_payment(payment_id: str, payments: PaymentService = Depends(get_payments)):
    return payments.process(payment_id)


@app.post("/api/payments/{payment_id}/complete", response_model=PaymentOut)
def complete_payment(payment_id: str, payload: Optional[CompletePayload] = None,
                     payments: PaymentService = Depends(get_payments)):
    return payments.complete(payment_id, payload.transaction_id if payload else None)


@app.post("/api/payments/{payment_id}/fail", response_model=PaymentOut)
def fail_payment(payment_id: str, payload: Optional[FailPayload] = None,
                 payments: PaymentService = Depends(get_payments)):
    return payments.fail(payment_id, payload.reason if payload else None)


@app.post("/api/payments/{payment_id}/refund", response_model=PaymentOut)
def refund_payment(payment_id: str, payments: PaymentService = Depends(get_payments)):
    return payments.refund(payment_id)


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
