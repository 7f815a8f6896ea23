"""Books and their physical copies, as far as lending needs them."""
import logging
from typing import List, Optional

from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import create_document, from_document, get_documents, now, to_object_id
from errors import Conflict, InvalidState, NotFound
from schemas import BookCopy, BookCopyOut, BookOut, BookPayload, CopyPayload, CopyStatus, LoanStatus

logger = logging.getLogger(__name__)

# Statuses staff may set by hand. BORROWED is owned by the lending engine.
MANUAL_COPY_STATUSES = {CopyStatus.AVAILABLE, CopyStatus.LOST, CopyStatus.DAMAGED, CopyStatus.RETIRED}


class CatalogService:
    def __init__(self, db: Database):
        self.db = db

    def create_book(self, payload: BookPayload) -> BookOut:
        bid = create_document(self.db, "books", payload)
        logger.info("Book created: %s (%s)", payload.title, bid)
        return self.get_book(bid)

    def get_book(self, book_id: str) -> BookOut:
        doc = self.db["books"].find_one({"_id": to_object_id(book_id, "Book")})
        if not doc:
            raise NotFound.for_id("Book", book_id)
        return from_document(BookOut, doc)

    def list_books(self, q: Optional[str] = None, skip: int = 0, limit: int = 50) -> List[BookOut]:
        filt = {}
        if q:
            regex = {"$regex": q, "$options": "i"}
            filt["$or"] = [{"title": regex}, {"author": regex}, {"isbn": regex}]
        docs = get_documents(self.db, "books", filt, limit=limit, skip=skip, sort=[("title", 1)])
        return [from_document(BookOut, d) for d in docs]

    def create_copy(self, payload: CopyPayload) -> BookCopyOut:
        self.get_book(payload.book_id)
        if self.db["book_copies"].find_one({"barcode": payload.barcode}):
            raise Conflict(f"Book copy with barcode {payload.barcode} already exists")
        copy = BookCopy(status=CopyStatus.AVAILABLE, **payload.model_dump())
        try:
            cid = create_document(self.db, "book_copies", copy)
        except DuplicateKeyError:
            raise Conflict(f"Book copy with barcode {payload.barcode} already exists")
        logger.info("Book copy %s added for book %s", payload.barcode, payload.book_id)
        return self.get_copy(cid)

    def get_copy(self, copy_id: str) -> BookCopyOut:
        doc = self.db["book_copies"].find_one({"_id": to_object_id(copy_id, "BookCopy")})
        if not doc:
            raise NotFound.for_id("BookCopy", copy_id)
        return from_document(BookCopyOut, doc)

    def get_copy_by_barcode(self, barcode: str) -> BookCopyOut:
        doc = self.db["book_copies"].find_one({"barcode": barcode})
        if not doc:
            raise NotFound(f"BookCopy not found with barcode: {barcode}")
        return from_document(BookCopyOut, doc)

    def _copy_filter(self, book_id: Optional[str], status: Optional[CopyStatus]) -> dict:
        filt = {}
        if book_id:
            filt["book_id"] = book_id
        if status:
            filt["status"] = status.value
        return filt

    def list_copies(self, book_id: Optional[str] = None, status: Optional[CopyStatus] = None,
                    skip: int = 0, limit: int = 50) -> List[BookCopyOut]:
        docs = get_documents(self.db, "book_copies", self._copy_filter(book_id, status),
                             limit=limit, skip=skip, sort=[("barcode", 1)])
        return [from_document(BookCopyOut, d) for d in docs]

    def count_copies(self, book_id: Optional[str] = None, status: Optional[CopyStatus] = None) -> int:
        return self.db["book_copies"].count_documents(self._copy_filter(book_id, status))

    def is_copy_available(self, copy_id: str) -> bool:
        return self.get_copy(copy_id).status == CopyStatus.AVAILABLE

    def set_copy_status(self, copy_id: str, status: CopyStatus) -> BookCopyOut:
        """
        Set one of the manual statuses.

        A copy with an active loan is refused. A copy left BORROWED without an
        active loan (an interrupted borrow or return) may be set back by hand.
        """
        if status not in MANUAL_COPY_STATUSES:
            raise InvalidState("Copies become BORROWED only through a loan")
        current = self.db["book_copies"].find_one({"_id": to_object_id(copy_id, "BookCopy")})
        if not current:
            raise NotFound.for_id("BookCopy", copy_id)
        active = self.db["loans"].find_one({
            "copy_id": copy_id,
            "status": {"$in": [LoanStatus.BORROWED.value, LoanStatus.OVERDUE.value]},
        })
        if active:
            raise InvalidState(f"Book copy {copy_id} is on loan; return it first")
        doc = self.db["book_copies"].find_one_and_update(
            {"_id": current["_id"], "status": current["status"], "updated_at": current.get("updated_at")},
            {"$set": {"status": status.value, "updated_at": now()}},
            return_document=ReturnDocument.AFTER,
        )
        if not doc:
            raise InvalidState(f"Book copy {copy_id} changed while being updated; try again")
        if current["status"] == CopyStatus.BORROWED.value:
            logger.warning("Book copy %s was BORROWED without an active loan; set to %s", copy_id, status.value)
        logger.info("Book copy %s status set to %s", copy_id, status.value)
        return from_document(BookCopyOut, doc)
