from __future__ import annotations
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import List, Optional

CENT = Decimal("0.01")
MAX_MONEY = Decimal("9999.99")


def to_money(value) -> Decimal:
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


# ---- catalog (reference data, curated outside the engine)


@dataclass
class Author:
    author_id: int
    first_name: str
    last_name: str
    email: Optional[str] = None
    nationality: Optional[str] = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


@dataclass
class Publisher:
    publisher_id: int
    name: str
    established_year: Optional[int] = None
    website: Optional[str] = None


@dataclass
class Category:
    category_id: int
    name: str
    description: Optional[str] = None
    parent_category_id: Optional[int] = None


@dataclass
class Book:
    book_id: int
    isbn: str
    title: str
    author_id: int
    publisher_id: int
    publication_year: int
    total_copies: int = 1
    available_copies: int = 1
    language: str = "English"
    category_ids: List[int] = field(default_factory=list)
    # bumped on every inventory write; used for compare-and-set
    version: int = 0

    @property
    def copies_out(self) -> int:
        return self.total_copies - self.available_copies


# ---- members


class MemberStatus(str, Enum):
    ACTIVE = "Active"
    SUSPENDED = "Suspended"
    EXPIRED = "Expired"
    BANNED = "Banned"


class MembershipType(str, Enum):
    STUDENT = "Student"
    REGULAR = "Regular"
    PREMIUM = "Premium"
    STAFF = "Staff"


@dataclass
class Member:
    member_id: int
    membership_id: str
    first_name: str
    last_name: str
    email: str
    date_of_birth: date
    membership_start_date: date
    membership_expiry_date: date
    membership_type: MembershipType = MembershipType.REGULAR
    status: MemberStatus = MemberStatus.ACTIVE
    phone: Optional[str] = None

    @property
    def name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    def membership_covers(self, day: date) -> bool:
        return self.membership_start_date <= day < self.membership_expiry_date


# ---- circulation


class BorrowingStatus(str, Enum):
    BORROWED = "Borrowed"
    RETURNED = "Returned"
    OVERDUE = "Overdue"
    LOST = "Lost"


OPEN_BORROWING = (BorrowingStatus.BORROWED, BorrowingStatus.OVERDUE)


@dataclass
class Borrowing:
    borrow_id: int
    member_id: int
    book_id: int
    borrow_date: date
    due_date: date
    return_date: Optional[date] = None
    status: BorrowingStatus = BorrowingStatus.BORROWED
    fine_amount: Decimal = Decimal("0.00")
    notes: Optional[str] = None

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_BORROWING

    def is_overdue(self, today: date) -> bool:
        return self.is_open and self.due_date < today

    def effective_status(self, today: date) -> BorrowingStatus:
        """Stored status with the Overdue flag derived for ``today``."""
        if self.is_overdue(today):
            return BorrowingStatus.OVERDUE
        return self.status

    def days_overdue(self, as_of: date) -> int:
        return max(0, (as_of - self.due_date).days)


class ReservationStatus(str, Enum):
    ACTIVE = "Active"
    FULFILLED = "Fulfilled"
    CANCELLED = "Cancelled"
    EXPIRED = "Expired"


@dataclass
class Reservation:
    reservation_id: int
    member_id: int
    book_id: int
    reservation_date: datetime
    expiry_date: datetime
    status: ReservationStatus = ReservationStatus.ACTIVE
    fulfilled_at: Optional[datetime] = None
    claim_deadline: Optional[datetime] = None
    claimed_borrow_id: Optional[int] = None

    def is_live(self, now: datetime) -> bool:
        """Active and not yet past expiry (expiry is also checked lazily)."""
        return self.status == ReservationStatus.ACTIVE and now <= self.expiry_date

    @property
    def is_earmark(self) -> bool:
        """Fulfilled, holding a copy, but not yet collected."""
        return self.status == ReservationStatus.FULFILLED and self.claimed_borrow_id is None

    def claim_lapsed(self, now: datetime) -> bool:
        """An earmark whose claim window ran out before ``now``."""
        return self.is_earmark and self.claim_deadline is not None and now > self.claim_deadline


class FineReason(str, Enum):
    OVERDUE = "Overdue"
    DAMAGE = "Damage"
    LOST = "Lost"


class FineStatus(str, Enum):
    UNPAID = "Unpaid"
    PAID = "Paid"
    WAIVED = "Waived"


@dataclass
class Fine:
    fine_id: int
    borrow_id: int
    member_id: int
    amount: Decimal
    reason: FineReason
    issued_date: date
    paid_date: Optional[date] = None
    status: FineStatus = FineStatus.UNPAID

    @property
    def is_settled(self) -> bool:
        return self.status != FineStatus.UNPAID
