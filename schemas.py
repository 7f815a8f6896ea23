"""
Database Schemas for the Library Lending Service

Each document model maps to one MongoDB collection, named in snake
case (Patron -> patrons, BookCopy -> book_copies). The request and response
models used by the API live at the bottom of the file.
Dates are kept as ISO strings in the database and parsed back on read.
"""
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from pydantic import BaseModel, Field
from typing import Optional

CENT = Decimal("0.01")


def to_money(value) -> float:
    """Round an amount to whole cents, half up, using its decimal value."""
    return float(Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP))


class AccountStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    SUSPENDED = "SUSPENDED"


class StaffRole(str, Enum):
    STAFF = "STAFF"
    ADMIN = "ADMIN"


class Role(str, Enum):
    """Role claim carried by a token."""
    USER = "USER"
    STAFF = "STAFF"
    ADMIN = "ADMIN"


class CopyStatus(str, Enum):
    AVAILABLE = "AVAILABLE"
    BORROWED = "BORROWED"
    LOST = "LOST"
    DAMAGED = "DAMAGED"
    RETIRED = "RETIRED"


class LoanStatus(str, Enum):
    BORROWED = "BORROWED"
    RETURNED = "RETURNED"
    OVERDUE = "OVERDUE"


class FineStatus(str, Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    WAIVED = "WAIVED"


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"


class PaymentMethod(str, Enum):
    CASH = "CASH"
    CREDIT_CARD = "CREDIT_CARD"
    DEBIT_CARD = "DEBIT_CARD"
    ONLINE = "ONLINE"


# Stored documents

class Patron(BaseModel):
    name: str = Field(..., description="Full name")
    email: str = Field(..., description="Email address, unique among patrons")
    password_hash: str = Field(..., description="Hashed password")
    phone_number: Optional[str] = Field(None, description="Phone number, unique among patrons")
    address: Optional[str] = None
    membership_date: date
    status: AccountStatus


class Staff(BaseModel):
    name: str
    email: str = Field(..., description="Email address, unique among staff")
    password_hash: str
    phone_number: Optional[str] = None
    address: Optional[str] = None
    role: StaffRole
    hire_date: date
    status: AccountStatus


class Book(BaseModel):
    title: str
    author: str
    isbn: Optional[str] = None
    year: Optional[int] = None
    genre: Optional[str] = None
    publisher: Optional[str] = None


class BookCopy(BaseModel):
    book_id: str
    barcode: str = Field(..., description="Unique barcode of the physical copy")
    condition: str = Field("NEW", description="NEW, GOOD, FAIR or POOR")
    status: CopyStatus = CopyStatus.AVAILABLE
    location: Optional[str] = None
    acquisition_date: Optional[date] = None


class Loan(BaseModel):
    account_id: str
    copy_id: str
    borrow_date: date
    due_date: date
    return_date: Optional[date] = None
    status: LoanStatus = LoanStatus.BORROWED


class Fine(BaseModel):
    loan_id: str = Field(..., description="Loan this fine is tied to (one fine per loan)")
    account_id: str = Field(..., description="Borrowing account, copied from the loan")
    amount: float = Field(..., ge=0)
    assessed_date: date
    status: FineStatus = FineStatus.PENDING
    reason: Optional[str] = None


class Payment(BaseModel):
    fine_id: str
    account_id: str = Field(..., description="Account that owes the fine")
    amount: float = Field(..., gt=0)
    payment_date: Optional[date] = None
    payment_method: PaymentMethod
    transaction_id: Optional[str] = Field(None, description="Gateway reference, unique when present")
    status: PaymentStatus = PaymentStatus.PENDING
    failure_reason: Optional[str] = None


# Request payloads

class RegisterPayload(BaseModel):
    name: str = Field(..., min_length=1)
    email: str = Field(..., pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    password: str = Field(..., min_length=6)
    phone_number: Optional[str] = None
    address: Optional[str] = None


class StaffPayload(RegisterPayload):
    role: Optional[StaffRole] = None
    hire_date: Optional[date] = None


class LoginPayload(BaseModel):
    email: str
    password: str


class AccountUpdatePayload(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = Field(None, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    phone_number: Optional[str] = None
    address: Optional[str] = None


class StatusPayload(BaseModel):
    status: AccountStatus


class RolePayload(BaseModel):
    role: StaffRole


class ChangePasswordPayload(BaseModel):
    current_password: str
    new_password: str = Field(..., min_length=6)


class BookPayload(Book):
    pass


class CopyPayload(BaseModel):
    book_id: str
    barcode: str = Field(..., min_length=1)
    condition: str = "NEW"
    location: Optional[str] = None
    acquisition_date: Optional[date] = None


class CopyStatusPayload(BaseModel):
    status: CopyStatus


class BorrowPayload(BaseModel):
    account_id: str
    copy_id: str
    borrow_date: Optional[date] = Field(None, description="Defaults to today")
    due_date: Optional[date] = Field(None, description="Defaults to borrow date plus the loan period")


class ReturnPayload(BaseModel):
    return_date: Optional[date] = Field(None, description="Defaults to today")


class FinePayload(BaseModel):
    loan_id: str
    amount: float = Field(..., ge=0)
    reason: Optional[str] = None


class PaymentPayload(BaseModel):
    fine_id: str
    amount: float = Field(..., gt=0)
    payment_method: PaymentMethod
    transaction_id: Optional[str] = None


class CompletePayload(BaseModel):
    transaction_id: Optional[str] = None


class FailPayload(BaseModel):
    reason: Optional[str] = None


# Responses

class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"
    email: str
    role: Role
    message: str = "Login successful"


class PatronOut(BaseModel):
    id: str
    name: str
    email: str
    phone_number: Optional[str] = None
    address: Optional[str] = None
    membership_date: date
    status: AccountStatus


class StaffOut(BaseModel):
    id: str
    name: str
    email: str
    phone_number: Optional[str] = None
    address: Optional[str] = None
    role: StaffRole
    hire_date: date
    status: AccountStatus


class BookOut(Book):
    id: str


class BookCopyOut(BookCopy):
    id: str


class LoanOut(Loan):
    id: str


class FineOut(Fine):
    id: str


class PaymentOut(Payment):
    id: str
