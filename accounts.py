"""
Patron and staff accounts.

Passwords are hashed here, before anything reaches the database, by the
PasswordHasher handed to the service. Defaults (status, role, membership
and hire dates) are filled once by the new_patron/new_staff factories.
"""
import logging
from datetime import date
from typing import Callable, List, Optional

from pymongo.database import Database
from pymongo.errors import DuplicateKeyError
from pymongo import ReturnDocument

from database import create_document, from_document, get_documents, now, to_object_id
from errors import AuthenticationFailed, Conflict, NotFound
from schemas import (
    AccountStatus,
    AccountUpdatePayload,
    Patron,
    PatronOut,
    RegisterPayload,
    Staff,
    StaffOut,
    StaffPayload,
    StaffRole,
)
from security import PasswordHasher

logger = logging.getLogger(__name__)


def new_patron(payload: RegisterPayload, password_hash: str, today: date) -> Patron:
    return Patron(
        name=payload.name,
        email=payload.email.lower(),
        password_hash=password_hash,
        phone_number=payload.phone_number,
        address=payload.address,
        membership_date=today,
        status=AccountStatus.ACTIVE,
    )


def new_staff(payload: StaffPayload, password_hash: str, today: date) -> Staff:
    return Staff(
        name=payload.name,
        email=payload.email.lower(),
        password_hash=password_hash,
        phone_number=payload.phone_number,
        address=payload.address,
        role=payload.role or StaffRole.STAFF,
        hire_date=payload.hire_date or today,
        status=AccountStatus.ACTIVE,
    )


class _AccountStore:
    """Lookups and updates shared by the patron and staff collections."""

    def __init__(self, db: Database, collection: str, kind: str, out_model):
        self.col = db[collection]
        self.kind = kind
        self.out_model = out_model

    def raw(self, account_id: str) -> dict:
        doc = self.col.find_one({"_id": to_object_id(account_id, self.kind)})
        if not doc:
            raise NotFound.for_id(self.kind, account_id)
        return doc

    def by_email(self, email: str) -> Optional[dict]:
        return self.col.find_one({"email": email.lower()})

    def ensure_unique(self, email: Optional[str], phone: Optional[str], exclude=None) -> None:
        if email:
            doc = self.by_email(email)
            if doc and doc["_id"] != exclude:
                raise Conflict(f"{self.kind} with email {email} already exists")
        if phone:
            doc = self.col.find_one({"phone_number": phone})
            if doc and doc["_id"] != exclude:
                raise Conflict(f"{self.kind} with phone number {phone} already exists")

    def update(self, account_id: str, changes: dict):
        changes["updated_at"] = now()
        try:
            doc = self.col.find_one_and_update(
                {"_id": to_object_id(account_id, self.kind)},
                {"$set": changes},
                return_document=ReturnDocument.AFTER,
            )
        except DuplicateKeyError:
            raise Conflict(f"{self.kind} email or phone number already in use")
        if not doc:
            raise NotFound.for_id(self.kind, account_id)
        return from_document(self.out_model, doc)


class AccountService:
    def __init__(self, db: Database, hasher: PasswordHasher,
                 clock: Callable[[], date] = date.today):
        self.db = db
        self.hasher = hasher
        self.clock = clock
        self.patrons = _AccountStore(db, "patrons", "User", PatronOut)
        self.staff = _AccountStore(db, "staff", "Librarian", StaffOut)

    # Registration

    def register_patron(self, payload: RegisterPayload) -> PatronOut:
        self.patrons.ensure_unique(payload.email, payload.phone_number)
        patron = new_patron(payload, self.hasher.hash(payload.password), self.clock())
        try:
            pid = create_document(self.db, "patrons", patron)
        except DuplicateKeyError:
            raise Conflict(f"User with email {payload.email} already exists")
        logger.info("User registered: %s", patron.email)
        return self.get_patron(pid)

    def create_staff(self, payload: StaffPayload) -> StaffOut:
        self.staff.ensure_unique(payload.email, payload.phone_number)
        member = new_staff(payload, self.hasher.hash(payload.password), self.clock())
        try:
            sid = create_document(self.db, "staff", member)
        except DuplicateKeyError:
            raise Conflict(f"Librarian with email {payload.email} already exists")
        logger.info("Librarian created: %s with role %s", member.email, member.role.value)
        return self.get_staff(sid)

    # Authentication

    def _authenticate(self, store: _AccountStore, email: str, password: str) -> dict:
        doc = store.by_email(email)
        if not doc:
            logger.warning("%s login failed - email not found: %s", store.kind, email)
            raise AuthenticationFailed("Invalid email or password")
        if doc.get("status") != AccountStatus.ACTIVE.value:
            logger.warning("%s login failed - account not active: %s", store.kind, email)
            raise AuthenticationFailed("Account is not active")
        if not self.hasher.verify(password, doc.get("password_hash", "")):
            logger.warning("%s login failed - invalid password: %s", store.kind, email)
            raise AuthenticationFailed("Invalid email or password")
        return doc

    def authenticate_patron(self, email: str, password: str) -> PatronOut:
        return from_document(PatronOut, self._authenticate(self.patrons, email, password))

    def authenticate_staff(self, email: str, password: str) -> StaffOut:
        return from_document(StaffOut, self._authenticate(self.staff, email, password))

    # Lookups

    def get_patron(self, patron_id: str) -> PatronOut:
        return from_document(PatronOut, self.patrons.raw(patron_id))

    def get_staff(self, staff_id: str) -> StaffOut:
        return from_document(StaffOut, self.staff.raw(staff_id))

    def get_patron_by_email(self, email: str) -> PatronOut:
        doc = self.patrons.by_email(email)
        if not doc:
            raise NotFound(f"User not found with email: {email}")
        return from_document(PatronOut, doc)

    def get_staff_by_email(self, email: str) -> StaffOut:
        doc = self.staff.by_email(email)
        if not doc:
            raise NotFound(f"Librarian not found with email: {email}")
        return from_document(StaffOut, doc)

    def list_patrons(self, status: Optional[AccountStatus] = None, name: Optional[str] = None,
                     skip: int = 0, limit: int = 50) -> List[PatronOut]:
        filt = {}
        if status:
            filt["status"] = status.value
        if name:
            filt["name"] = {"$regex": name, "$options": "i"}
        docs = get_documents(self.db, "patrons", filt, limit=limit, skip=skip, sort=[("name", 1)])
        return [from_document(PatronOut, d) for d in docs]

    def list_staff(self, role: Optional[StaffRole] = None, status: Optional[AccountStatus] = None,
                   skip: int = 0, limit: int = 50) -> List[StaffOut]:
        filt = {}
        if role:
            filt["role"] = role.value
        if status:
            filt["status"] = status.value
        docs = get_documents(self.db, "staff", filt, limit=limit, skip=skip, sort=[("name", 1)])
        return [from_document(StaffOut, d) for d in docs]

    # Mutations

    def _update(self, store: _AccountStore, account_id: str, payload: AccountUpdatePayload):
        changes = payload.model_dump(exclude_none=True)
        if "email" in changes:
            changes["email"] = changes["email"].lower()
        current = store.raw(account_id)
        store.ensure_unique(changes.get("email"), changes.get("phone_number"), exclude=current["_id"])
        return store.update(account_id, changes)

    def update_patron(self, patron_id: str, payload: AccountUpdatePayload) -> PatronOut:
        return self._update(self.patrons, patron_id, payload)

    def update_staff(self, staff_id: str, payload: AccountUpdatePayload) -> StaffOut:
        return self._update(self.staff, staff_id, payload)

    def set_patron_status(self, patron_id: str, status: AccountStatus) -> PatronOut:
        logger.info("User %s status set to %s", patron_id, status.value)
        return self.patrons.update(patron_id, {"status": status.value})

    def set_staff_status(self, staff_id: str, status: AccountStatus) -> StaffOut:
        logger.info("Librarian %s status set to %s", staff_id, status.value)
        return self.staff.update(staff_id, {"status": status.value})

    def change_role(self, staff_id: str, role: StaffRole) -> StaffOut:
        logger.info("Librarian %s role set to %s", staff_id, role.value)
        return self.staff.update(staff_id, {"role": role.value})

    def _change_password(self, store: _AccountStore, account_id: str, current: str, new: str) -> None:
        doc = store.raw(account_id)
        if not self.hasher.verify(current, doc.get("password_hash", "")):
            raise AuthenticationFailed("Current password is incorrect")
        store.update(account_id, {"password_hash": self.hasher.hash(new)})
        logger.info("%s %s changed password", store.kind, account_id)

    def change_patron_password(self, patron_id: str, current: str, new: str) -> None:
        self._change_password(self.patrons, patron_id, current, new)

    def change_staff_password(self, staff_id: str, current: str, new: str) -> None:
        self._change_password(self.staff, staff_id, current, new)

    def delete_patron(self, patron_id: str) -> None:
        result = self.db["patrons"].delete_one({"_id": to_object_id(patron_id, "User")})
        if result.deleted_count == 0:
            raise NotFound.for_id("User", patron_id)
        logger.info("User %s deleted", patron_id)

    def delete_staff(self, staff_id: str) -> None:
        result = self.db["staff"].delete_one({"_id": to_object_id(staff_id, "Librarian")})
        if result.deleted_count == 0:
            raise NotFound.for_id("Librarian", staff_id)
        logger.info("Librarian %s deleted", staff_id)
