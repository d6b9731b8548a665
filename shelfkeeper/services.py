from __future__ import annotations
import logging
import threading
from contextlib import contextmanager
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Dict, Iterator, List, Optional

from .config import LibraryPolicy
from .domain import (
    MAX_MONEY,
    Author,
    Book,
    Borrowing,
    BorrowingStatus,
    Category,
    Fine,
    FineReason,
    FineStatus,
    Member,
    MembershipType,
    MemberStatus,
    Publisher,
    Reservation,
    ReservationStatus,
    to_money,
)
from .errors import (
    EligibilityError,
    IntegrityViolation,
    InvalidBorrowingState,
    InvalidFineState,
    InvalidReservationState,
    NoCopiesAvailable,
    NotFoundError,
    DuplicateActiveReservation,
    ValidationError,
)
from .notifications import (
    CLAIM_LAPSED,
    FINE_ISSUED,
    RESERVATION_EXPIRED,
    RESERVATION_FULFILLED,
    Notification,
)
from .repositories import MEMBERSHIP_PREFIX, InMemoryStore

logger = logging.getLogger(__name__)

MAX_MEMBERSHIP_SEQ = 99999


def _check_money(amount, what: str) -> Decimal:
    value = to_money(amount)
    if value <= 0:
        raise ValidationError(f"{what} must be positive, got {value}")
    if value > MAX_MONEY:
        raise ValidationError(f"{what} exceeds {MAX_MONEY}: {value}")
    return value


class InventoryLedger:
    """
    Single authority for a book's copy counts.

    Every write goes through ``BookRepo.compare_and_set`` inside a store
    transaction, so two callers racing for the last copy cannot both win.
    """

    def __init__(self, store: InMemoryStore) -> None:
        self.store = store

    def available(self, book_id: int) -> int:
        with self.store.transaction():
            return self.store.books.require(book_id).available_copies

    def try_decrement(self, book_id: int) -> Book:
        with self.store.transaction():
            book = self.store.books.require(book_id)
            if book.available_copies <= 0:
                raise NoCopiesAvailable(f"no copies of book {book_id} available")
            return self.store.books.compare_and_set(
                book_id, book.version, available_copies=book.available_copies - 1
            )

    def increment(self, book_id: int) -> Book:
        with self.store.transaction():
            book = self.store.books.require(book_id)
            if book.available_copies >= book.total_copies:
                logger.critical(
                    "[ledger] increment would exceed total: book=%s available=%s total=%s",
                    book_id,
                    book.available_copies,
                    book.total_copies,
                )
                raise IntegrityViolation(
                    f"book {book_id}: available copies would exceed total {book.total_copies}"
                )
            return self.store.books.compare_and_set(
                book_id, book.version, available_copies=book.available_copies + 1
            )

    def add_copies(self, book_id: int, count: int) -> Book:
        if count <= 0:
            raise ValidationError("copies to add must be positive")
        with self.store.transaction():
            book = self.store.books.require(book_id)
            return self.store.books.compare_and_set(
                book_id,
                book.version,
                total_copies=book.total_copies + count,
                available_copies=book.available_copies + count,
            )

    def write_off(self, book_id: int) -> Book:
        """Remove a copy that is out on loan and will never come back."""
        with self.store.transaction():
            book = self.store.books.require(book_id)
            total = book.total_copies - 1
            if total < 0 or book.available_copies > total:
                logger.critical(
                    "[ledger] write-off of a copy that is not out: book=%s available=%s total=%s",
                    book_id,
                    book.available_copies,
                    book.total_copies,
                )
                raise IntegrityViolation(f"book {book_id}: no copy on loan to write off")
            return self.store.books.compare_and_set(book_id, book.version, total_copies=total)


class FineEngine:
    def __init__(self, store: InMemoryStore, policy: LibraryPolicy) -> None:
        self.store = store
        self.policy = policy

    def compute_overdue(self, borrowing: Borrowing, as_of: date) -> Decimal:
        days = borrowing.days_overdue(as_of)
        amount = to_money(days * self.policy.daily_overdue_rate)
        return min(amount, to_money(self.policy.max_overdue_fine))

    def assess_overdue(
        self,
        borrowing: Borrowing,
        as_of: date,
        notes: Optional[List[Notification]] = None,
    ) -> Optional[Fine]:
        """
        Issue or refresh the single Overdue fine of ``borrowing``.

        Re-running with a later date updates the unpaid fine in place; a
        Paid or Waived overdue fine is left alone. Charges stop accruing at
        the return date.
        """
        if borrowing.return_date is not None and as_of > borrowing.return_date:
            as_of = borrowing.return_date
        amount = self.compute_overdue(borrowing, as_of)

        with self.store.transaction():
            existing = self.store.fines.find_overdue_fine(borrowing.borrow_id)
            if existing is not None:
                if existing.status == FineStatus.UNPAID and amount > 0 and amount != existing.amount:
                    existing.amount = amount
                    self._sync_borrowing_total(borrowing.borrow_id)
                return existing

            if amount <= 0:
                return None
            fine = self._create(borrowing, FineReason.OVERDUE, amount, as_of, notes)
            logger.info(
                "[fines] overdue fine %s for borrowing %s: %s",
                fine.fine_id,
                borrowing.borrow_id,
                amount,
            )
            return fine

    def issue_fine(
        self,
        borrow_id: int,
        reason: FineReason,
        amount,
        issued_date: date,
        notes: Optional[List[Notification]] = None,
    ) -> Fine:
        if reason == FineReason.OVERDUE:
            raise ValidationError("overdue fines are assessed, not issued directly")
        value = _check_money(amount, "fine amount")
        with self.store.transaction():
            borrowing = self.store.borrowings.require(borrow_id)
            if issued_date < borrowing.borrow_date:
                raise ValidationError("fine cannot predate its borrowing")
            fine = self._create(borrowing, reason, value, issued_date, notes)
            logger.info("[fines] %s fine %s for borrowing %s: %s", reason.value, fine.fine_id, borrow_id, value)
            return fine

    def pay(self, fine_id: int, amount, paid_date: date) -> Fine:
        value = to_money(amount)
        if value <= 0:
            raise ValidationError(f"payment must be positive, got {value}")
        with self.store.transaction():
            fine = self.store.fines.require(fine_id)
            if fine.is_settled:
                raise InvalidFineState(f"fine {fine_id} is already {fine.status.value}")
            if value != fine.amount:
                raise ValidationError(f"payment {value} does not match fine amount {fine.amount}")
            if paid_date < fine.issued_date:
                raise ValidationError("payment cannot predate the fine")
            fine.status = FineStatus.PAID
            fine.paid_date = paid_date
            return fine

    def waive(self, fine_id: int) -> Fine:
        with self.store.transaction():
            fine = self.store.fines.require(fine_id)
            if fine.is_settled:
                raise InvalidFineState(f"fine {fine_id} is already {fine.status.value}")
            fine.status = FineStatus.WAIVED
            self._sync_borrowing_total(fine.borrow_id)
            return fine

    def total_unpaid(self, member_id: int) -> Decimal:
        with self.store.transaction():
            return self.store.fines.total_unpaid(member_id)

    def _create(self, borrowing, reason, amount, issued_date, notes) -> Fine:
        fine = Fine(
            fine_id=self.store.fines.next_id(),
            borrow_id=borrowing.borrow_id,
            member_id=borrowing.member_id,
            amount=amount,
            reason=reason,
            issued_date=issued_date,
        )
        self.store.fines.add(fine)
        self._sync_borrowing_total(borrowing.borrow_id)
        if notes is not None:
            notes.append(
                Notification(
                    FINE_ISSUED,
                    borrowing.member_id,
                    {"fine_id": fine.fine_id, "reason": reason.value, "amount": str(amount)},
                )
            )
        return fine

    def _sync_borrowing_total(self, borrow_id: int) -> None:
        borrowing = self.store.borrowings.require(borrow_id)
        borrowing.fine_amount = sum(
            (
                f.amount
                for f in self.store.fines.list_for_borrowing(borrow_id)
                if f.status != FineStatus.WAIVED
            ),
            Decimal("0.00"),
        )


class ReservationService:
    """
    Waitlist and earmarks.

    Claim deadlines live on the reservation rows, so any facade over the
    same store can lapse them. A lapsed earmark is released wherever a
    decision depends on it (reserve, borrow, copy freed) as well as by
    ``sweep_unclaimed``.
    """

    def __init__(self, store: InMemoryStore, policy: LibraryPolicy) -> None:
        self.store = store
        self.policy = policy

    def reserve(
        self,
        member_id: int,
        book_id: int,
        now: datetime,
        ttl: Optional[timedelta] = None,
        notes: Optional[List[Notification]] = None,
    ) -> Reservation:
        ttl = self.policy.reservation_ttl if ttl is None else ttl
        if ttl <= timedelta(0):
            raise ValidationError("reservation ttl must be positive")

        with self.store.transaction():
            member = self.store.members.require(member_id)
            self.store.books.require(book_id)
            if member.status != MemberStatus.ACTIVE:
                raise EligibilityError(f"member {member_id} is {member.status.value}")

            self._lapse_claims(book_id, now, notes)
            held = self.store.reservations.find_earmark(member_id, book_id)
            if held is not None:
                raise DuplicateActiveReservation(
                    f"member {member_id} has reservation {held.reservation_id} "
                    f"for book {book_id} waiting to be collected"
                )
            existing = self.store.reservations.find_active(member_id, book_id)
            if existing is not None:
                if existing.is_live(now):
                    raise DuplicateActiveReservation(
                        f"member {member_id} already holds reservation "
                        f"{existing.reservation_id} for book {book_id}"
                    )
                self._expire(existing, notes)

            r = Reservation(
                reservation_id=self.store.reservations.next_id(),
                member_id=member_id,
                book_id=book_id,
                reservation_date=now,
                expiry_date=now + ttl,
            )
            self.store.reservations.add(r)
            logger.info("[reserve] reservation %s: member=%s book=%s", r.reservation_id, member_id, book_id)

            # a copy may already be sitting on the shelf
            self.on_copy_freed(book_id, now, notes)
            return r

    def cancel(self, reservation_id: int, now: datetime, notes: Optional[List[Notification]] = None) -> Reservation:
        with self.store.transaction():
            r = self.store.reservations.require(reservation_id)
            if r.is_earmark:
                r.status = ReservationStatus.CANCELLED
                logger.info("[reserve] earmark %s released by cancellation", reservation_id)
                self.on_copy_freed(r.book_id, now, notes)
                return r
            if r.status != ReservationStatus.ACTIVE:
                raise InvalidReservationState(f"reservation {reservation_id} is {r.status.value}")
            if not r.is_live(now):
                raise InvalidReservationState(f"reservation {reservation_id} has expired")
            r.status = ReservationStatus.CANCELLED
            return r

    def expire_sweep(self, now: datetime, notes: Optional[List[Notification]] = None) -> List[Reservation]:
        with self.store.transaction():
            expired = [r for r in self.store.reservations.list_active() if r.expiry_date < now]
            for r in expired:
                self._expire(r, notes)
        if expired:
            logger.info("[reserve] expired %d reservation(s)", len(expired))
        return expired

    def on_copy_freed(
        self, book_id: int, now: datetime, notes: Optional[List[Notification]] = None
    ) -> List[Reservation]:
        """
        Hand free copies of ``book_id`` to waiting reservations, oldest first.

        The copy stays counted as available; the reservation moving to
        Fulfilled earmarks it until the member borrows it or the claim
        window runs out.
        """
        fulfilled: List[Reservation] = []
        with self.store.transaction():
            book = self.store.books.require(book_id)
            self._lapse_claims(book_id, now, notes)
            free = book.available_copies - len(self.store.reservations.list_earmarks_for_book(book_id))
            for r in self.store.reservations.list_active_for_book(book_id):
                if free <= 0:
                    break
                if not r.is_live(now):
                    self._expire(r, notes)
                    continue
                r.status = ReservationStatus.FULFILLED
                r.fulfilled_at = now
                r.claim_deadline = now + self.policy.claim_window
                fulfilled.append(r)
                free -= 1
                if notes is not None:
                    notes.append(
                        Notification(
                            RESERVATION_FULFILLED,
                            r.member_id,
                            {
                                "reservation_id": r.reservation_id,
                                "book_id": book_id,
                                "claim_deadline": r.claim_deadline.isoformat(),
                            },
                        )
                    )
                logger.info("[reserve] reservation %s fulfilled for member %s", r.reservation_id, r.member_id)
        return fulfilled

    def release_lapsed(
        self, book_id: int, now: datetime, notes: Optional[List[Notification]] = None
    ) -> List[Reservation]:
        """Lapse overdue earmarks on ``book_id`` and re-offer their copies."""
        with self.store.transaction():
            lapsed = self._lapse_claims(book_id, now, notes)
            if lapsed:
                self.on_copy_freed(book_id, now, notes)
            return lapsed

    def sweep_unclaimed(self, now: datetime, notes: Optional[List[Notification]] = None) -> List[Reservation]:
        """Lapse earmarks whose claim window has passed and re-offer the copies."""
        with self.store.transaction():
            lapsed = self.store.reservations.list_lapsed_claims(now)
            for r in lapsed:
                self._lapse(r, notes)
            for book_id in sorted({r.book_id for r in lapsed}):
                self.on_copy_freed(book_id, now, notes)
        if lapsed:
            logger.info("[reserve] %d unclaimed reservation(s) lapsed", len(lapsed))
        return lapsed

    def claim(self, member_id: int, book_id: int, borrow_id: int, now: datetime) -> Optional[Reservation]:
        """Mark the member's reservation for ``book_id`` as collected by ``borrow_id``."""
        with self.store.transaction():
            r = self.store.reservations.find_earmark(member_id, book_id)
            if r is None:
                r = self.store.reservations.find_active(member_id, book_id)
                if r is None or not r.is_live(now):
                    return None
                r.status = ReservationStatus.FULFILLED
                r.fulfilled_at = now
            r.claimed_borrow_id = borrow_id
            return r

    def earmarked_for_others(self, member_id: int, book_id: int) -> int:
        with self.store.transaction():
            return sum(
                1 for r in self.store.reservations.list_earmarks_for_book(book_id) if r.member_id != member_id
            )

    def _lapse_claims(self, book_id: int, now: datetime, notes: Optional[List[Notification]]) -> List[Reservation]:
        lapsed = [r for r in self.store.reservations.list_earmarks_for_book(book_id) if r.claim_lapsed(now)]
        for r in lapsed:
            self._lapse(r, notes)
        return lapsed

    def _lapse(self, r: Reservation, notes: Optional[List[Notification]]) -> None:
        r.status = ReservationStatus.EXPIRED
        logger.info("[reserve] reservation %s not collected by %s", r.reservation_id, r.claim_deadline)
        if notes is not None:
            notes.append(
                Notification(CLAIM_LAPSED, r.member_id, {"reservation_id": r.reservation_id, "book_id": r.book_id})
            )

    def _expire(self, r: Reservation, notes: Optional[List[Notification]]) -> None:
        r.status = ReservationStatus.EXPIRED
        if notes is not None:
            notes.append(
                Notification(RESERVATION_EXPIRED, r.member_id, {"reservation_id": r.reservation_id, "book_id": r.book_id})
            )


class BorrowingService:
    def __init__(
        self,
        store: InMemoryStore,
        ledger: InventoryLedger,
        fines: FineEngine,
        reservations: ReservationService,
        policy: LibraryPolicy,
    ) -> None:
        self.store = store
        self.ledger = ledger
        self.fines = fines
        self.reservations = reservations
        self.policy = policy

    def check_eligibility(self, member: Member, book_id: int, today: date) -> None:
        if member.status != MemberStatus.ACTIVE:
            raise EligibilityError(f"member {member.member_id} is {member.status.value}")
        if not member.membership_covers(today):
            raise EligibilityError(f"membership of member {member.member_id} does not cover {today}")

        unpaid = self.store.fines.total_unpaid(member.member_id)
        if unpaid > self.policy.unpaid_fine_threshold:
            raise EligibilityError(
                f"member {member.member_id} owes {unpaid} (limit {self.policy.unpaid_fine_threshold})"
            )

        open_loans = self.store.borrowings.list_open_by_member(member.member_id)
        if len(open_loans) >= self.policy.max_active_loans:
            raise EligibilityError(f"member {member.member_id} reached {self.policy.max_active_loans} loans")
        if not self.policy.allow_duplicate_loans and any(b.book_id == book_id for b in open_loans):
            raise EligibilityError(f"member {member.member_id} already has book {book_id} out")

    def borrow(
        self,
        member_id: int,
        book_id: int,
        now: datetime,
        notes: Optional[List[Notification]] = None,
    ) -> Borrowing:
        today = now.date()
        with self.store.transaction():
            member = self.store.members.require(member_id)
            self.check_eligibility(member, book_id, today)

            book = self.store.books.require(book_id)
            self.reservations.release_lapsed(book_id, now, notes)
            held = self.reservations.earmarked_for_others(member_id, book_id)
            if book.available_copies - held <= 0:
                logger.info("[checkout] book %s: all copies out or earmarked", book_id)
                raise NoCopiesAvailable(f"no copies of book {book_id} available")
            self.ledger.try_decrement(book_id)

            borrowing = Borrowing(
                borrow_id=self.store.borrowings.next_id(),
                member_id=member_id,
                book_id=book_id,
                borrow_date=today,
                due_date=today + timedelta(days=self.policy.loan_days),
            )
            self.store.borrowings.add(borrowing)
            self.reservations.claim(member_id, book_id, borrowing.borrow_id, now)
            logger.info("[checkout] borrowing %s: member=%s book=%s", borrowing.borrow_id, member_id, book_id)
            return borrowing

    def return_book(
        self,
        borrow_id: int,
        return_date: date,
        now: datetime,
        notes: Optional[List[Notification]] = None,
    ) -> Borrowing:
        with self.store.transaction():
            borrowing = self.store.borrowings.require(borrow_id)
            if not borrowing.is_open:
                raise InvalidBorrowingState(f"borrowing {borrow_id} is already {borrowing.status.value}")
            if return_date < borrowing.borrow_date:
                raise ValidationError(
                    f"return date {return_date} precedes borrow date {borrowing.borrow_date}"
                )

            borrowing.status = BorrowingStatus.RETURNED
            borrowing.return_date = return_date
            self.ledger.increment(borrowing.book_id)

            fine = self.fines.assess_overdue(borrowing, return_date, notes)
            if fine is not None:
                logger.info("[return] borrowing %s settled with fine %s", borrow_id, fine.amount)

            self.reservations.on_copy_freed(borrowing.book_id, now, notes)
            return borrowing

    def mark_lost(
        self,
        borrow_id: int,
        today: date,
        replacement_cost=None,
        notes: Optional[List[Notification]] = None,
    ) -> Fine:
        cost = self.policy.default_replacement_cost if replacement_cost is None else replacement_cost
        with self.store.transaction():
            borrowing = self.store.borrowings.require(borrow_id)
            if not borrowing.is_open:
                raise InvalidBorrowingState(f"borrowing {borrow_id} is already {borrowing.status.value}")
            if today < borrowing.borrow_date:
                raise ValidationError(f"loss date {today} precedes borrow date {borrowing.borrow_date}")

            self.fines.assess_overdue(borrowing, today, notes)
            borrowing.status = BorrowingStatus.LOST
            self.ledger.write_off(borrowing.book_id)
            fine = self.fines.issue_fine(borrow_id, FineReason.LOST, cost, today, notes)
            logger.info("[lost] borrowing %s marked lost", borrow_id)
            return fine

    def refresh_overdue(self, today: date) -> List[Borrowing]:
        with self.store.transaction():
            flagged = []
            for b in self.store.borrowings.list_open():
                if b.status == BorrowingStatus.BORROWED and b.is_overdue(today):
                    b.status = BorrowingStatus.OVERDUE
                    flagged.append(b)
            return flagged

    def list_overdue(self, today: date) -> List[Borrowing]:
        with self.store.transaction():
            return [b for b in self.store.borrowings.list_open() if b.is_overdue(today)]


class MembershipIdAllocator:
    """
    Hands out ``LIB-<year>-<seq>`` identifiers.

    ``allocation(year)`` holds a per-year lock and a store transaction
    while the caller inserts the member, so the max+1 read and the insert
    cannot interleave with another allocation for the same year. Take it
    before entering any other transaction.
    """

    def __init__(self, store: InMemoryStore) -> None:
        self.store = store
        self._locks: Dict[int, threading.Lock] = {}
        self._guard = threading.Lock()

    def _lock_for(self, year: int) -> threading.Lock:
        with self._guard:
            return self._locks.setdefault(year, threading.Lock())

    @staticmethod
    def format_id(year: int, seq: int) -> str:
        return f"{MEMBERSHIP_PREFIX}-{year}-{seq:05d}"

    def next_id(self, year: int) -> str:
        if not 1000 <= year <= 9999:
            raise ValidationError(f"year out of range: {year}")
        with self.store.transaction():
            seq = self.store.members.max_membership_seq(year) + 1
        if seq > MAX_MEMBERSHIP_SEQ:
            raise IntegrityViolation(f"membership sequence for {year} exhausted")
        return self.format_id(year, seq)

    @contextmanager
    def allocation(self, year: int) -> Iterator[str]:
        with self._lock_for(year):
            with self.store.transaction():
                yield self.next_id(year)


class MembershipService:
    def __init__(self, store: InMemoryStore, allocator: MembershipIdAllocator) -> None:
        self.store = store
        self.allocator = allocator

    def register_member(
        self,
        first_name: str,
        last_name: str,
        email: str,
        date_of_birth: date,
        start: date,
        expiry: date,
        membership_type: MembershipType = MembershipType.REGULAR,
        phone: Optional[str] = None,
    ) -> Member:
        if expiry <= start:
            raise ValidationError("membership expiry must be after its start")
        if not email or "@" not in email:
            raise ValidationError(f"invalid email: {email!r}")

        with self.allocator.allocation(start.year) as membership_id:
            member = Member(
                member_id=self.store.members.next_id(),
                membership_id=membership_id,
                first_name=first_name,
                last_name=last_name,
                email=email,
                date_of_birth=date_of_birth,
                membership_start_date=start,
                membership_expiry_date=expiry,
                membership_type=membership_type,
                phone=phone,
            )
            self.store.members.add(member)
        logger.info("[members] registered %s as %s", member.name, membership_id)
        return member

    def set_status(self, member_id: int, status: MemberStatus) -> Member:
        with self.store.transaction():
            member = self.store.members.require(member_id)
            member.status = status
            return member


class CatalogService:
    def __init__(self, store: InMemoryStore) -> None:
        self.store = store

    def add_author(self, first_name: str, last_name: str, email: Optional[str] = None, nationality: Optional[str] = None) -> Author:
        with self.store.transaction():
            a = Author(
                author_id=self.store.catalog.authors.next_id(),
                first_name=first_name,
                last_name=last_name,
                email=email,
                nationality=nationality,
            )
            self.store.catalog.add_author(a)
            return a

    def add_publisher(self, name: str, established_year: Optional[int] = None, website: Optional[str] = None) -> Publisher:
        with self.store.transaction():
            p = Publisher(
                publisher_id=self.store.catalog.publishers.next_id(),
                name=name,
                established_year=established_year,
                website=website,
            )
            self.store.catalog.add_publisher(p)
            return p

    def add_category(self, name: str, description: Optional[str] = None, parent_id: Optional[int] = None) -> Category:
        with self.store.transaction():
            if parent_id is not None and self.store.catalog.get_category(parent_id) is None:
                raise NotFoundError(f"unknown category {parent_id}")
            c = Category(
                category_id=self.store.catalog.categories.next_id(),
                name=name,
                description=description,
                parent_category_id=parent_id,
            )
            self.store.catalog.add_category(c)
            return c

    def add_book(
        self,
        isbn: str,
        title: str,
        author_id: int,
        publisher_id: int,
        publication_year: int,
        copies: int = 1,
        category_ids: Optional[List[int]] = None,
    ) -> Book:
        if copies < 0:
            raise ValidationError("total copies cannot be negative")
        if not isbn or len(isbn) > 17:
            raise ValidationError(f"invalid ISBN: {isbn!r}")
        with self.store.transaction():
            if self.store.catalog.get_author(author_id) is None:
                raise NotFoundError(f"unknown author {author_id}")
            if self.store.catalog.get_publisher(publisher_id) is None:
                raise NotFoundError(f"unknown publisher {publisher_id}")
            for cid in category_ids or []:
                if self.store.catalog.get_category(cid) is None:
                    raise NotFoundError(f"unknown category {cid}")
            b = Book(
                book_id=self.store.books.next_id(),
                isbn=isbn,
                title=title,
                author_id=author_id,
                publisher_id=publisher_id,
                publication_year=publication_year,
                total_copies=copies,
                available_copies=copies,
                category_ids=list(category_ids or []),
            )
            self.store.books.add(b)
            return b

    def search(self, text: str) -> List[Book]:
        t = text.lower().strip()
        with self.store.transaction():
            def matches(b: Book) -> bool:
                author = self.store.catalog.get_author(b.author_id)
                return (
                    t in b.title.lower()
                    or t in b.isbn.lower()
                    or (author is not None and t in author.full_name.lower())
                )

            return [b for b in self.store.books.list_books() if matches(b)]
