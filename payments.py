"""
Payments recorded against fines.

Transitions are driven by the caller (there is no gateway integration):

    PENDING -> COMPLETED | FAILED
    COMPLETED -> REFUNDED

Completing payments does not change the fine's status. A fine stays
PENDING until staff pay or waive it, even if completed payments cover it;
total_paid_by_fine gives the settled amount for that decision.
"""
import logging
from datetime import date
from typing import Callable, List, Optional

from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import create_document, from_document, get_documents, now, to_object_id
from errors import Conflict, InvalidArgument, InvalidState, NotFound
from schemas import Payment, PaymentMethod, PaymentOut, PaymentPayload, PaymentStatus, to_money

logger = logging.getLogger(__name__)


class PaymentService:
    def __init__(self, db: Database, clock: Callable[[], date] = date.today):
        self.db = db
        self.payments = db["payments"]
        self.clock = clock

    def create(self, payload: PaymentPayload) -> PaymentOut:
        fine = self.db["fines"].find_one({"_id": to_object_id(payload.fine_id, "Fine")})
        if not fine:
            raise NotFound.for_id("Fine", payload.fine_id)
        if payload.transaction_id and self.exists_by_transaction_id(payload.transaction_id):
            raise Conflict(f"Payment with transaction ID {payload.transaction_id} already exists")
        amount = to_money(payload.amount)
        if amount <= 0:
            raise InvalidArgument("Payment amount must be at least 0.01")
        payment = Payment(
            fine_id=payload.fine_id,
            account_id=fine["account_id"],
            amount=amount,
            payment_date=self.clock(),
            payment_method=payload.payment_method,
            transaction_id=payload.transaction_id or None,
            status=PaymentStatus.PENDING,
        )
        try:
            pid = create_document(self.db, "payments", payment)
        except DuplicateKeyError:
            raise Conflict(f"Payment with transaction ID {payload.transaction_id} already exists")
        logger.info("Payment %s of %.2f created for fine %s", pid, payment.amount, payload.fine_id)
        return self.get_payment(pid)

    def _transition(self, payment_id: str, source: PaymentStatus, changes: dict, verb: str) -> PaymentOut:
        changes["updated_at"] = now()
        try:
            doc = self.payments.find_one_and_update(
                {"_id": to_object_id(payment_id, "Payment"), "status": source.value},
                {"$set": changes},
                return_document=ReturnDocument.AFTER,
            )
        except DuplicateKeyError:
            raise Conflict(f"Payment with transaction ID {changes.get('transaction_id')} already exists")
        if doc is None:
            current = self.get_payment(payment_id)
            raise InvalidState(
                f"Only {source.value.lower()} payments can be {verb}. Current status: {current.status.value}"
            )
        logger.info("Payment %s %s", payment_id, verb)
        return from_document(PaymentOut, doc)

    def process(self, payment_id: str) -> PaymentOut:
        """Stamp the payment date on a pending payment; completion is a separate call."""
        current = self.get_payment(payment_id)
        changes = {}
        if current.payment_date is None:
            changes["payment_date"] = self.clock().isoformat()
        return self._transition(payment_id, PaymentStatus.PENDING, changes, "processed")

    def complete(self, payment_id: str, transaction_id: Optional[str] = None) -> PaymentOut:
        current = self.get_payment(payment_id)
        changes = {
            "status": PaymentStatus.COMPLETED.value,
            "payment_date": self.clock().isoformat(),
        }
        if transaction_id and transaction_id != current.transaction_id:
            if self.exists_by_transaction_id(transaction_id):
                raise Conflict(f"Payment with transaction ID {transaction_id} already exists")
            changes["transaction_id"] = transaction_id
        return self._transition(payment_id, PaymentStatus.PENDING, changes, "completed")

    def fail(self, payment_id: str, reason: Optional[str] = None) -> PaymentOut:
        changes = {"status": PaymentStatus.FAILED.value}
        if reason:
            changes["failure_reason"] = reason
        return self._transition(payment_id, PaymentStatus.PENDING, changes, "failed")

    def refund(self, payment_id: str) -> PaymentOut:
        return self._transition(
            payment_id, PaymentStatus.COMPLETED, {"status": PaymentStatus.REFUNDED.value}, "refunded"
        )

    # Queries

    def get_payment(self, payment_id: str) -> PaymentOut:
        doc = self.payments.find_one({"_id": to_object_id(payment_id, "Payment")})
        if not doc:
            raise NotFound.for_id("Payment", payment_id)
        return from_document(PaymentOut, doc)

    def by_transaction_id(self, transaction_id: str) -> PaymentOut:
        doc = self.payments.find_one({"transaction_id": transaction_id})
        if not doc:
            raise NotFound(f"Payment not found with transactionId: {transaction_id}")
        return from_document(PaymentOut, doc)

    def list_payments(self, fine_id: Optional[str] = None, account_id: Optional[str] = None,
                      status: Optional[PaymentStatus] = None, method: Optional[PaymentMethod] = None,
                      skip: int = 0, limit: Optional[int] = None) -> List[PaymentOut]:
        filt = {}
        if fine_id:
            filt["fine_id"] = fine_id
        if account_id:
            filt["account_id"] = account_id
        if status:
            filt["status"] = status.value
        if method:
            filt["payment_method"] = method.value
        docs = get_documents(self.db, "payments", filt, limit=limit, skip=skip, sort=[("payment_date", -1)])
        return [from_document(PaymentOut, d) for d in docs]

    def _sum_completed(self, match: dict) -> float:
        match = dict(match, status=PaymentStatus.COMPLETED.value)
        rows = list(self.payments.aggregate([
            {"$match": match},
            {"$group": {"_id": None, "total": {"$sum": "$amount"}}},
        ]))
        return to_money(rows[0]["total"]) if rows else 0.0

    def total_paid_by_fine(self, fine_id: str) -> float:
        if not self.db["fines"].find_one({"_id": to_object_id(fine_id, "Fine")}):
            raise NotFound.for_id("Fine", fine_id)
        return self._sum_completed({"fine_id": fine_id})

    def total_paid_by_account(self, account_id: str) -> float:
        return self._sum_completed({"account_id": account_id})

    def revenue_between(self, start: date, end: date) -> float:
        if end < start:
            raise InvalidArgument("End date cannot be before start date")
        return self._sum_completed({"payment_date": {"$gte": start.isoformat(), "$lte": end.isoformat()}})

    def exists_by_transaction_id(self, transaction_id: str) -> bool:
        return self.payments.count_documents({"transaction_id": transaction_id}) > 0
