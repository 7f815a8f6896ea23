"""
Lending engine: borrowing, returning and the overdue sweep.

Loan lifecycle::

    BORROWED -> RETURNED
    BORROWED -> OVERDUE -> RETURNED

A copy is claimed with a conditional update on ``status: AVAILABLE`` before
the loan document is written, so two borrowers racing for the same copy
cannot both succeed. The loser sees InvalidState. If writing the loan fails
the claim is released again. Returning works the other way round: the loan is
flipped to RETURNED first and flipped back if the copy cannot be released.

These are compensating writes, not a multi-document transaction. A crash
between the two writes can leave a copy BORROWED with no active loan;
CatalogService.set_copy_status recovers such a copy.

The engine does not look at borrow limits or unpaid fines; callers use
count_active_by_account / has_exceeded_limit and the fine queries for that.
"""
import logging
from datetime import date, timedelta
from typing import Callable, List, Optional

from pymongo import ReturnDocument
from pymongo.database import Database

from database import create_document, from_document, get_documents, now, to_object_id
from errors import InvalidArgument, InvalidState, NotFound
from schemas import CopyStatus, Loan, LoanOut, LoanStatus

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = [LoanStatus.BORROWED.value, LoanStatus.OVERDUE.value]
DATE_FIELDS = ("borrow_date", "due_date", "return_date")


def load_loan(db: Database, loan_id: str) -> dict:
    doc = db["loans"].find_one({"_id": to_object_id(loan_id, "Borrowed")})
    if not doc:
        raise NotFound.for_id("Borrowed", loan_id)
    return doc


class LendingService:
    def __init__(self, db: Database, loan_period_days: int = 14,
                 clock: Callable[[], date] = date.today):
        self.db = db
        self.loans = db["loans"]
        self.copies = db["book_copies"]
        self.loan_period = timedelta(days=loan_period_days)
        self.clock = clock

    def borrow(self, account_id: str, copy_id: str,
               borrow_date: Optional[date] = None, due_date: Optional[date] = None) -> LoanOut:
        if not self.db["patrons"].find_one({"_id": to_object_id(account_id, "User")}):
            raise NotFound.for_id("User", account_id)
        copy_oid = to_object_id(copy_id, "BookCopy")

        borrow_date = borrow_date or self.clock()
        due_date = due_date or borrow_date + self.loan_period
        if due_date < borrow_date:
            raise InvalidArgument("Due date cannot be before borrow date")

        claimed = self.copies.find_one_and_update(
            {"_id": copy_oid, "status": CopyStatus.AVAILABLE.value},
            {"$set": {"status": CopyStatus.BORROWED.value, "updated_at": now()}},
        )
        if claimed is None:
            if not self.copies.find_one({"_id": copy_oid}):
                raise NotFound.for_id("BookCopy", copy_id)
            raise InvalidState(f"Book copy with ID {copy_id} is not available for borrowing")

        loan = Loan(
            account_id=account_id,
            copy_id=copy_id,
            borrow_date=borrow_date,
            due_date=due_date,
            status=LoanStatus.BORROWED,
        )
        try:
            loan_id = create_document(self.db, "loans", loan)
        except Exception:
            logger.error("Loan insert for copy %s failed; releasing the claim", copy_id)
            self.copies.update_one(
                {"_id": copy_oid, "status": CopyStatus.BORROWED.value},
                {"$set": {"status": CopyStatus.AVAILABLE.value, "updated_at": now()}},
            )
            raise
        logger.info("Loan %s created: copy %s to user %s, due %s", loan_id, copy_id, account_id, due_date)
        return self.get_loan(loan_id)

    def return_loan(self, loan_id: str, return_date: Optional[date] = None) -> LoanOut:
        doc = load_loan(self.db, loan_id)
        if doc["status"] == LoanStatus.RETURNED.value:
            raise InvalidState("Book has already been returned")
        return_date = return_date or self.clock()
        if return_date < date.fromisoformat(doc["borrow_date"]):
            raise InvalidArgument("Return date cannot be before borrow date")

        updated = self.loans.find_one_and_update(
            {"_id": doc["_id"], "status": {"$ne": LoanStatus.RETURNED.value}},
            {"$set": {
                "status": LoanStatus.RETURNED.value,
                "return_date": return_date.isoformat(),
                "updated_at": now(),
            }},
            return_document=ReturnDocument.AFTER,
        )
        if updated is None:
            raise InvalidState("Book has already been returned")
        try:
            self.copies.update_one(
                {"_id": to_object_id(doc["copy_id"], "BookCopy")},
                {"$set": {"status": CopyStatus.AVAILABLE.value, "updated_at": now()}},
            )
        except Exception:
            # put the loan back so the return can be retried
            self.loans.update_one(
                {"_id": doc["_id"], "status": LoanStatus.RETURNED.value},
                {"$set": {"status": doc["status"], "updated_at": now()}, "$unset": {"return_date": ""}},
            )
            logger.error("Return of loan %s rolled back: copy %s could not be released", loan_id, doc["copy_id"])
            raise
        logger.info("Loan %s returned on %s", loan_id, return_date)
        return from_document(LoanOut, updated)

    def sweep_overdue(self, as_of: Optional[date] = None) -> int:
        """Mark BORROWED loans due before ``as_of`` as OVERDUE. Returns how many changed."""
        as_of = as_of or self.clock()
        result = self.loans.update_many(
            {"status": LoanStatus.BORROWED.value, "due_date": {"$lt": as_of.isoformat()}},
            {"$set": {"status": LoanStatus.OVERDUE.value, "updated_at": now()}},
        )
        logger.info("Overdue sweep as of %s marked %d loan(s)", as_of, result.modified_count)
        return result.modified_count

    # Queries

    def get_loan(self, loan_id: str) -> LoanOut:
        return from_document(LoanOut, load_loan(self.db, loan_id))

    def _find(self, filt: dict, skip: int = 0, limit: Optional[int] = None) -> List[LoanOut]:
        docs = get_documents(self.db, "loans", filt, limit=limit, skip=skip, sort=[("borrow_date", -1)])
        return [from_document(LoanOut, d) for d in docs]

    def list_loans(self, account_id: Optional[str] = None, copy_id: Optional[str] = None,
                   status: Optional[LoanStatus] = None, skip: int = 0, limit: Optional[int] = None) -> List[LoanOut]:
        filt = {}
        if account_id:
            filt["account_id"] = account_id
        if copy_id:
            filt["copy_id"] = copy_id
        if status:
            filt["status"] = status.value
        return self._find(filt, skip, limit)

    def active_by_account(self, account_id: str) -> List[LoanOut]:
        return self._find({"account_id": account_id, "status": {"$in": ACTIVE_STATUSES}})

    def overdue(self, account_id: Optional[str] = None, as_of: Optional[date] = None,
                copy_id: Optional[str] = None, skip: int = 0, limit: Optional[int] = None) -> List[LoanOut]:
        as_of = as_of or self.clock()
        filt = {"$or": [
            {"status": LoanStatus.OVERDUE.value},
            {"status": LoanStatus.BORROWED.value, "due_date": {"$lt": as_of.isoformat()}},
        ]}
        if account_id:
            filt["account_id"] = account_id
        if copy_id:
            filt["copy_id"] = copy_id
        return self._find(filt, skip, limit)

    def search_by_date(self, field: str, start: date, end: date) -> List[LoanOut]:
        if field not in DATE_FIELDS:
            raise InvalidArgument(f"Cannot search loans by {field}")
        if end < start:
            raise InvalidArgument("End date cannot be before start date")
        return self._find({field: {"$gte": start.isoformat(), "$lte": end.isoformat()}})

    def count_active_by_account(self, account_id: str) -> int:
        return self.loans.count_documents({"account_id": account_id, "status": {"$in": ACTIVE_STATUSES}})

    def has_exceeded_limit(self, account_id: str, limit: int) -> bool:
        return self.count_active_by_account(account_id) >= limit

    def is_copy_available(self, copy_id: str) -> bool:
        doc = self.copies.find_one({"_id": to_object_id(copy_id, "BookCopy")})
        if not doc:
            raise NotFound.for_id("BookCopy", copy_id)
        return doc["status"] == CopyStatus.AVAILABLE.value
