from __future__ import annotations
import copy
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Callable, List, Optional, Tuple, TypeVar

from .config import LibraryPolicy
from .domain import (
    Book,
    Borrowing,
    Category,
    Fine,
    FineReason,
    Member,
    MembershipType,
    MemberStatus,
    Reservation,
)
from .errors import IntegrityViolation, VersionConflict
from .notifications import LoggingNotifier, Notification, NotificationOutbox, Notifier
from .repositories import InMemoryStore
from .services import (
    BorrowingService,
    CatalogService,
    FineEngine,
    InventoryLedger,
    MembershipIdAllocator,
    MembershipService,
    ReservationService,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class SweepReport:
    expired_reservations: List[int] = field(default_factory=list)
    lapsed_claims: List[int] = field(default_factory=list)
    flagged_overdue: List[int] = field(default_factory=list)
    assessed_fines: List[int] = field(default_factory=list)


class LibrarySystem:
    """
    Facade that wires the store and services and runs each use case as
    one transaction.

    Either every effect of a use case commits or none does. Errors pass
    through unchanged; only optimistic version conflicts are retried.
    Notifications raised inside a use case are delivered after commit.
    """

    def __init__(
        self,
        policy: Optional[LibraryPolicy] = None,
        store: Optional[InMemoryStore] = None,
        notifier: Optional[Notifier] = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.policy = policy or LibraryPolicy()
        self.store = store or InMemoryStore()
        self.clock = clock
        self.outbox = NotificationOutbox(notifier or LoggingNotifier())

        # services
        self.ledger = InventoryLedger(self.store)
        self.fines = FineEngine(self.store, self.policy)
        self.reservations = ReservationService(self.store, self.policy)
        self.borrowing = BorrowingService(
            self.store, self.ledger, self.fines, self.reservations, self.policy
        )
        self.allocator = MembershipIdAllocator(self.store)
        self.membership = MembershipService(self.store, self.allocator)
        self.catalog = CatalogService(self.store)

    # ---- plumbing

    def _now(self, now: Optional[datetime]) -> datetime:
        return now if now is not None else self.clock()

    def _run(self, use_case: str, work: Callable[[List[Notification]], T]) -> T:
        attempt = 0
        while True:
            notes: List[Notification] = []
            try:
                with self.store.transaction():
                    # snapshot before releasing records to callers
                    result = copy.deepcopy(work(notes))
            except VersionConflict:
                attempt += 1
                if attempt > self.policy.max_txn_retries:
                    logger.critical("[%s] version conflict persisted after %d attempts", use_case, attempt)
                    raise
                logger.warning("[%s] version conflict, retrying (%d)", use_case, attempt)
                continue
            except IntegrityViolation:
                logger.critical("[%s] integrity violation, transaction rolled back", use_case, exc_info=True)
                raise

            if notes:
                self.outbox.enqueue(notes)
                self.flush_notifications()
            return result

    def flush_notifications(self) -> int:
        return self.outbox.dispatch()

    # ---- member module
    def register_member(
        self,
        first_name: str,
        last_name: str,
        email: str,
        date_of_birth: date,
        membership_type: MembershipType = MembershipType.REGULAR,
        start: Optional[date] = None,
        expiry: Optional[date] = None,
        phone: Optional[str] = None,
    ) -> Member:
        start = start or self.clock().date()
        expiry = expiry or start + timedelta(days=365)
        try:
            member = self.membership.register_member(
                first_name, last_name, email, date_of_birth, start, expiry, membership_type, phone
            )
        except IntegrityViolation:
            logger.critical("[register_member] integrity violation for %s", email, exc_info=True)
            raise
        return self.get_member(member.member_id)

    def set_member_status(self, member_id: int, status: MemberStatus) -> Member:
        return self._run("set_member_status", lambda notes: self.membership.set_status(member_id, status))

    # ---- book/catalog module
    def add_author(self, first_name: str, last_name: str, **kwargs):
        return self._run("add_author", lambda notes: self.catalog.add_author(first_name, last_name, **kwargs))

    def add_publisher(self, name: str, **kwargs):
        return self._run("add_publisher", lambda notes: self.catalog.add_publisher(name, **kwargs))

    def add_category(self, name: str, description: Optional[str] = None, parent_id: Optional[int] = None) -> Category:
        return self._run("add_category", lambda notes: self.catalog.add_category(name, description, parent_id))

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
        return self._run(
            "add_book",
            lambda notes: self.catalog.add_book(
                isbn, title, author_id, publisher_id, publication_year, copies, category_ids
            ),
        )

    def add_copies(self, book_id: int, count: int, now: Optional[datetime] = None) -> Book:
        now = self._now(now)

        def work(notes):
            book = self.ledger.add_copies(book_id, count)
            self.reservations.on_copy_freed(book_id, now, notes)
            return book

        return self._run("add_copies", work)

    def search_books(self, text: str) -> List[Book]:
        return self._run("search_books", lambda notes: self.catalog.search(text))

    def delete_author(self, author_id: int) -> None:
        self.store.delete_author(author_id)

    def delete_publisher(self, publisher_id: int) -> None:
        self.store.delete_publisher(publisher_id)

    def delete_category(self, category_id: int) -> None:
        self.store.delete_category(category_id)

    def delete_book(self, book_id: int) -> None:
        self.store.delete_book(book_id)

    def delete_member(self, member_id: int) -> None:
        self.store.delete_member(member_id)

    # ---- circulation module
    def borrow_book(self, member_id: int, book_id: int, now: Optional[datetime] = None) -> int:
        now = self._now(now)
        borrowing = self._run("borrow", lambda notes: self.borrowing.borrow(member_id, book_id, now, notes))
        return borrowing.borrow_id

    def return_book(
        self,
        borrow_id: int,
        return_date: Optional[date] = None,
        now: Optional[datetime] = None,
    ) -> Borrowing:
        now = self._now(now)
        return_date = return_date or now.date()
        return self._run(
            "return", lambda notes: self.borrowing.return_book(borrow_id, return_date, now, notes)
        )

    def report_lost(self, borrow_id: int, replacement_cost=None, today: Optional[date] = None) -> int:
        today = today or self.clock().date()
        fine = self._run(
            "report_lost",
            lambda notes: self.borrowing.mark_lost(borrow_id, today, replacement_cost, notes),
        )
        return fine.fine_id

    def reserve_book(
        self,
        member_id: int,
        book_id: int,
        ttl: Optional[timedelta] = None,
        now: Optional[datetime] = None,
    ) -> int:
        now = self._now(now)
        r = self._run(
            "reserve", lambda notes: self.reservations.reserve(member_id, book_id, now, ttl, notes)
        )
        return r.reservation_id

    def cancel_reservation(self, reservation_id: int, now: Optional[datetime] = None) -> None:
        now = self._now(now)
        self._run("cancel_reservation", lambda notes: self.reservations.cancel(reservation_id, now, notes))

    # ---- fines
    def charge_damage(self, borrow_id: int, amount, today: Optional[date] = None) -> int:
        today = today or self.clock().date()
        fine = self._run(
            "charge_damage",
            lambda notes: self.fines.issue_fine(borrow_id, FineReason.DAMAGE, amount, today, notes),
        )
        return fine.fine_id

    def pay_fine(self, fine_id: int, amount, paid_date: Optional[date] = None) -> None:
        paid_date = paid_date or self.clock().date()
        self._run("pay_fine", lambda notes: self.fines.pay(fine_id, amount, paid_date))

    def waive_fine(self, fine_id: int) -> None:
        self._run("waive_fine", lambda notes: self.fines.waive(fine_id))

    def unpaid_total(self, member_id: int) -> Decimal:
        return self.fines.total_unpaid(member_id)

    # ---- background work
    def expire_reservations(self, now: Optional[datetime] = None) -> List[int]:
        now = self._now(now)
        expired = self._run("expire_reservations", lambda notes: self.reservations.expire_sweep(now, notes))
        return [r.reservation_id for r in expired]

    def sweep_claims(self, now: Optional[datetime] = None) -> List[int]:
        now = self._now(now)
        lapsed = self._run("sweep_claims", lambda notes: self.reservations.sweep_unclaimed(now, notes))
        return [r.reservation_id for r in lapsed]

    def run_daily_sweep(self, now: Optional[datetime] = None) -> SweepReport:
        now = self._now(now)
        today = now.date()

        def work(notes):
            report = SweepReport()
            report.expired_reservations = [
                r.reservation_id for r in self.reservations.expire_sweep(now, notes)
            ]
            report.lapsed_claims = [r.reservation_id for r in self.reservations.sweep_unclaimed(now, notes)]
            report.flagged_overdue = [b.borrow_id for b in self.borrowing.refresh_overdue(today)]
            for b in self.borrowing.list_overdue(today):
                fine = self.fines.assess_overdue(b, today, notes)
                if fine is not None:
                    report.assessed_fines.append(fine.fine_id)
            return report

        report = self._run("daily_sweep", work)
        logger.info(
            "[sweep] expired=%d lapsed=%d overdue=%d fines=%d",
            len(report.expired_reservations),
            len(report.lapsed_claims),
            len(report.flagged_overdue),
            len(report.assessed_fines),
        )
        return report

    # ---- lookups
    def get_book(self, book_id: int) -> Book:
        return self._run("get_book", lambda notes: self.store.books.require(book_id))

    def get_member(self, member_id: int) -> Member:
        return self._run("get_member", lambda notes: self.store.members.require(member_id))

    def get_borrowing(self, borrow_id: int) -> Borrowing:
        return self._run("get_borrowing", lambda notes: self.store.borrowings.require(borrow_id))

    def get_reservation(self, reservation_id: int) -> Reservation:
        return self._run("get_reservation", lambda notes: self.store.reservations.require(reservation_id))

    def get_fine(self, fine_id: int) -> Fine:
        return self._run("get_fine", lambda notes: self.store.fines.require(fine_id))

    def fines_for_member(self, member_id: int) -> List[Fine]:
        return self._run("fines_for_member", lambda notes: self.store.fines.list_by_member(member_id))

    # ---- reporting
    def report_overdue(self, today: Optional[date] = None) -> List[Borrowing]:
        today = today or self.clock().date()
        return self._run("report_overdue", lambda notes: self.borrowing.list_overdue(today))

    def report_inventory(self) -> List[Tuple[Book, int, int]]:
        """
        Returns tuples of (Book, total_copies, available_copies)
        """

        def work(notes):
            return [(b, b.total_copies, b.available_copies) for b in self.store.books.list_books()]

        return self._run("report_inventory", work)
