"""Fine assessment and the PENDING -> PAID / WAIVED transitions."""
import logging
from datetime import date
from decimal import Decimal
from typing import Callable, List, Optional

from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import create_document, from_document, get_documents, now, to_object_id
from errors import Conflict, InvalidArgument, InvalidState, NotFound
from lending import load_loan
from schemas import Fine, FineOut, FineStatus, to_money

logger = logging.getLogger(__name__)


def format_rate(rate: float) -> str:
    return f"{rate:.2f}"


class FineService:
    def __init__(self, db: Database, default_daily_rate: float = 5.0,
                 clock: Callable[[], date] = date.today):
        self.db = db
        self.fines = db["fines"]
        self.default_daily_rate = default_daily_rate
        self.clock = clock

    def _insert(self, fine: Fine) -> FineOut:
        try:
            fid = create_document(self.db, "fines", fine)
        except DuplicateKeyError:
            raise Conflict(f"Fine already exists for borrowed record with ID {fine.loan_id}")
        return self.get_fine(fid)

    def create_fine(self, loan_id: str, amount: float, reason: Optional[str] = None) -> FineOut:
        loan = load_loan(self.db, loan_id)
        if self.exists_for_loan(loan_id):
            raise Conflict(f"Fine already exists for borrowed record with ID {loan_id}")
        fine = self._insert(Fine(
            loan_id=loan_id,
            account_id=loan["account_id"],
            amount=to_money(amount),
            assessed_date=self.clock(),
            status=FineStatus.PENDING,
            reason=reason,
        ))
        logger.info("Fine %s created for loan %s: %.2f", fine.id, loan_id, fine.amount)
        return fine

    def assess(self, loan_id: str, daily_rate: Optional[float] = None) -> FineOut:
        """
        Assess a fine for an overdue loan.

        The overdue period runs from the due date to the return date, or to
        today when the loan is still out. A loan that is not late is
        rejected, and so is a loan that already has a fine.
        """
        rate = self.default_daily_rate if daily_rate is None else daily_rate
        if rate <= 0:
            raise InvalidArgument("Daily rate must be positive")
        loan = load_loan(self.db, loan_id)
        if self.exists_for_loan(loan_id):
            raise Conflict("Fine already exists for this borrowed record")

        today = self.clock()
        due = date.fromisoformat(loan["due_date"])
        returned = loan.get("return_date")
        effective_return = date.fromisoformat(returned) if returned else today
        if effective_return <= due:
            raise InvalidArgument(
                f"Book is not overdue. Due date: {due}, Return date: {effective_return}"
            )

        days_overdue = (effective_return - due).days
        fine = self._insert(Fine(
            loan_id=loan_id,
            account_id=loan["account_id"],
            amount=to_money(Decimal(str(rate)) * days_overdue),
            assessed_date=today,
            status=FineStatus.PENDING,
            reason=f"Book returned {days_overdue} day(s) late at {format_rate(rate)} per day",
        ))
        logger.info("Fine %s assessed on loan %s: %d day(s) x %s = %.2f",
                    fine.id, loan_id, days_overdue, format_rate(rate), fine.amount)
        return fine

    def _resolve(self, fine_id: str, target: FineStatus) -> FineOut:
        doc = self.fines.find_one_and_update(
            {"_id": to_object_id(fine_id, "Fine"), "status": FineStatus.PENDING.value},
            {"$set": {"status": target.value, "updated_at": now()}},
            return_document=ReturnDocument.AFTER,
        )
        if doc is None:
            current = self.get_fine(fine_id)
            raise InvalidState(
                f"Only pending fines can be {target.value.lower()}. Current status: {current.status.value}"
            )
        logger.info("Fine %s marked %s", fine_id, target.value)
        return from_document(FineOut, doc)

    def pay(self, fine_id: str) -> FineOut:
        return self._resolve(fine_id, FineStatus.PAID)

    def waive(self, fine_id: str) -> FineOut:
        return self._resolve(fine_id, FineStatus.WAIVED)

    # Queries

    def get_fine(self, fine_id: str) -> FineOut:
        doc = self.fines.find_one({"_id": to_object_id(fine_id, "Fine")})
        if not doc:
            raise NotFound.for_id("Fine", fine_id)
        return from_document(FineOut, doc)

    def fine_for_loan(self, loan_id: str) -> FineOut:
        load_loan(self.db, loan_id)
        doc = self.fines.find_one({"loan_id": loan_id})
        if not doc:
            raise NotFound(f"Fine for borrowed record not found with borrowedId: {loan_id}")
        return from_document(FineOut, doc)

    def list_fines(self, status: Optional[FineStatus] = None, account_id: Optional[str] = None,
                   skip: int = 0, limit: Optional[int] = None) -> List[FineOut]:
        filt = {}
        if status:
            filt["status"] = status.value
        if account_id:
            filt["account_id"] = account_id
        docs = get_documents(self.db, "fines", filt, limit=limit, skip=skip, sort=[("assessed_date", -1)])
        return [from_document(FineOut, d) for d in docs]

    def pending_for_account(self, account_id: str) -> List[FineOut]:
        return self.list_fines(status=FineStatus.PENDING, account_id=account_id)

    def _sum(self, match: dict) -> float:
        rows = list(self.fines.aggregate([
            {"$match": match},
            {"$group": {"_id": None, "total": {"$sum": "$amount"}}},
        ]))
        return to_money(rows[0]["total"]) if rows else 0.0

    def total_pending_by_account(self, account_id: str) -> float:
        return self._sum({"account_id": account_id, "status": FineStatus.PENDING.value})

    def total_by_status(self, status: FineStatus) -> float:
        return self._sum({"status": status.value})

    def count_by_status(self, status: FineStatus) -> int:
        return self.fines.count_documents({"status": status.value})

    def exists_for_loan(self, loan_id: str) -> bool:
        return self.fines.count_documents({"loan_id": loan_id}) > 0

    def has_pending_by_account(self, account_id: str) -> bool:
        return self.fines.count_documents(
            {"account_id": account_id, "status": FineStatus.PENDING.value}
        ) > 0
