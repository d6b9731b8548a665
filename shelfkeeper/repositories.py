"""
In-memory storage for shelfkeeper.

``InMemoryStore`` plays the transactional store the engine is layered on:
serializable transactions (one re-entrant lock), savepoint rollback for
nested blocks, compare-and-set on book rows and the uniqueness and
referential rules of the schema. Repositories are plain dict-backed
tables and must only be touched inside ``store.transaction()``.
"""

from __future__ import annotations
import copy
import threading
from contextlib import contextmanager
from decimal import Decimal
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Tuple

from .domain import (
    Author,
    Book,
    Borrowing,
    Category,
    Fine,
    FineReason,
    FineStatus,
    Member,
    Publisher,
    Reservation,
    ReservationStatus,
)
from .errors import (
    DuplicateActiveReservation,
    DuplicateRecordError,
    IntegrityViolation,
    NotFoundError,
    ReferenceRestrictedError,
    UnknownBookError,
    VersionConflict,
)

MEMBERSHIP_PREFIX = "LIB"

_MISSING = object()
# journal key for a table's id counter
_COUNTER = "<next_id>"


class _Journal:
    """
    Undo log for open transaction levels.

    Each level maps ``(table, key)`` to the row as it was when the level
    first touched it (``_MISSING`` for rows that did not exist yet).
    Entering a nested level also records every row already dirty in an
    enclosing level, since callers may still hold references to those
    rows and change them without going through the table again.
    """

    def __init__(self) -> None:
        self.levels: List[Dict[Tuple["_Table", object], object]] = []

    @property
    def active(self) -> bool:
        return bool(self.levels)

    def record(self, table: "_Table", key) -> None:
        level = self.levels[-1]
        if (table, key) not in level:
            level[(table, key)] = table._preimage(key)

    def begin(self) -> None:
        level: Dict[Tuple[_Table, object], object] = {}
        for outer in self.levels:
            for table, key in outer:
                if (table, key) not in level:
                    level[(table, key)] = table._preimage(key)
        self.levels.append(level)

    def commit(self) -> None:
        level = self.levels.pop()
        if self.levels:
            parent = self.levels[-1]
            for entry, before in level.items():
                parent.setdefault(entry, before)

    def rollback(self) -> None:
        level = self.levels.pop()
        for (table, key), before in level.items():
            table._revert(key, before)


class _Table:
    def __init__(self, journal: Optional[_Journal] = None) -> None:
        self._rows: Dict[int, object] = {}
        self._next_id = 1
        self._journal = journal

    def next_id(self) -> int:
        self._touch(_COUNTER)
        new_id = self._next_id
        self._next_id += 1
        return new_id

    # journal plumbing

    def _touch(self, key) -> None:
        if self._journal is not None and self._journal.active:
            self._journal.record(self, key)

    def _preimage(self, key):
        if key == _COUNTER:
            return self._next_id
        row = self._rows.get(key, _MISSING)
        return row if row is _MISSING else copy.deepcopy(row)

    def _revert(self, key, before) -> None:
        if key == _COUNTER:
            self._next_id = before
        elif before is _MISSING:
            self._rows.pop(key, None)
        else:
            self._rows[key] = before

    # row access; every row handed out is journaled first

    def _row(self, key):
        row = self._rows.get(key)
        if row is not None:
            self._touch(key)
        return row

    def _put(self, key, row) -> None:
        self._touch(key)
        self._rows[key] = row

    def _drop(self, key) -> None:
        self._touch(key)
        del self._rows[key]

    def _select(self, predicate: Callable[[object], bool]) -> list:
        found = [(key, row) for key, row in self._rows.items() if predicate(row)]
        for key, _ in found:
            self._touch(key)
        return [row for _, row in found]

    def _values(self) -> Iterable:
        # read-only scans; rows seen here must not be handed out
        return self._rows.values()


class CatalogRepo:
    def __init__(self, journal: Optional[_Journal] = None) -> None:
        self.authors = _Table(journal)
        self.publishers = _Table(journal)
        self.categories = _Table(journal)

    # authors
    def add_author(self, author: Author) -> None:
        if author.email and any(a.email == author.email for a in self.authors._values()):
            raise DuplicateRecordError(f"author email already used: {author.email}")
        self.authors._put(author.author_id, author)

    def get_author(self, author_id: int) -> Optional[Author]:
        return self.authors._row(author_id)

    def remove_author(self, author_id: int) -> None:
        self.authors._drop(author_id)

    # publishers
    def add_publisher(self, publisher: Publisher) -> None:
        if any(p.name == publisher.name for p in self.publishers._values()):
            raise DuplicateRecordError(f"publisher already exists: {publisher.name}")
        self.publishers._put(publisher.publisher_id, publisher)

    def get_publisher(self, publisher_id: int) -> Optional[Publisher]:
        return self.publishers._row(publisher_id)

    def remove_publisher(self, publisher_id: int) -> None:
        self.publishers._drop(publisher_id)

    # categories
    def add_category(self, category: Category) -> None:
        if any(c.name == category.name for c in self.categories._values()):
            raise DuplicateRecordError(f"category already exists: {category.name}")
        self.categories._put(category.category_id, category)

    def get_category(self, category_id: int) -> Optional[Category]:
        return self.categories._row(category_id)

    def list_children(self, category_id: int) -> List[Category]:
        return self.categories._select(lambda c: c.parent_category_id == category_id)

    def remove_category(self, category_id: int) -> None:
        self.categories._drop(category_id)


class BookRepo(_Table):
    def add(self, book: Book) -> None:
        if any(b.isbn == book.isbn for b in self._values()):
            raise DuplicateRecordError(f"ISBN already catalogued: {book.isbn}")
        self._put(book.book_id, book)

    def get(self, book_id: int) -> Optional[Book]:
        return self._row(book_id)

    def require(self, book_id: int) -> Book:
        book = self._row(book_id)
        if book is None:
            raise UnknownBookError(f"unknown book {book_id}")
        return book

    def list_books(self) -> List[Book]:
        return self._select(lambda b: True)

    def is_referenced(self, *, author_id: Optional[int] = None, publisher_id: Optional[int] = None) -> bool:
        return any(
            (author_id is not None and b.author_id == author_id)
            or (publisher_id is not None and b.publisher_id == publisher_id)
            for b in self._values()
        )

    def compare_and_set(self, book_id: int, expected_version: int, **changes) -> Book:
        """Apply ``changes`` only if the row still has ``expected_version``."""
        book = self.require(book_id)
        if book.version != expected_version:
            raise VersionConflict(
                f"book {book_id} moved from version {expected_version} to {book.version}"
            )
        for name, value in changes.items():
            setattr(book, name, value)
        book.version += 1
        return book

    def remove(self, book_id: int) -> None:
        self._drop(book_id)


class MemberRepo(_Table):
    def add(self, member: Member) -> None:
        for m in self._values():
            if m.email == member.email:
                raise DuplicateRecordError(f"email already registered: {member.email}")
            if m.membership_id == member.membership_id:
                raise IntegrityViolation(f"membership id collision: {member.membership_id}")
        self._put(member.member_id, member)

    def get(self, member_id: int) -> Optional[Member]:
        return self._row(member_id)

    def require(self, member_id: int) -> Member:
        member = self._row(member_id)
        if member is None:
            raise NotFoundError(f"unknown member {member_id}")
        return member

    def list_all(self) -> List[Member]:
        return self._select(lambda m: True)

    def max_membership_seq(self, year: int) -> int:
        """Largest sequence number already allocated for ``year`` (0 if none)."""
        prefix = f"{MEMBERSHIP_PREFIX}-{year}-"
        seqs = [
            int(m.membership_id[len(prefix):])
            for m in self._values()
            if m.membership_id.startswith(prefix)
        ]
        return max(seqs, default=0)

    def remove(self, member_id: int) -> None:
        self._drop(member_id)


class BorrowingRepo(_Table):
    def add(self, borrowing: Borrowing) -> None:
        self._put(borrowing.borrow_id, borrowing)

    def get(self, borrow_id: int) -> Optional[Borrowing]:
        return self._row(borrow_id)

    def require(self, borrow_id: int) -> Borrowing:
        borrowing = self._row(borrow_id)
        if borrowing is None:
            raise NotFoundError(f"unknown borrowing {borrow_id}")
        return borrowing

    def list_by_member(self, member_id: int) -> List[Borrowing]:
        return self._select(lambda b: b.member_id == member_id)

    def list_open_by_member(self, member_id: int) -> List[Borrowing]:
        return self._select(lambda b: b.member_id == member_id and b.is_open)

    def list_open_by_book(self, book_id: int) -> List[Borrowing]:
        return self._select(lambda b: b.book_id == book_id and b.is_open)

    def list_open(self) -> List[Borrowing]:
        return self._select(lambda b: b.is_open)

    def ids_for_book(self, book_id: int) -> List[int]:
        return [b.borrow_id for b in self._values() if b.book_id == book_id]


class ReservationRepo(_Table):
    def add(self, r: Reservation) -> None:
        if r.status == ReservationStatus.ACTIVE and self.find_active(r.member_id, r.book_id):
            raise DuplicateActiveReservation(
                f"member {r.member_id} already holds an active reservation for book {r.book_id}"
            )
        self._put(r.reservation_id, r)

    def get(self, reservation_id: int) -> Optional[Reservation]:
        return self._row(reservation_id)

    def require(self, reservation_id: int) -> Reservation:
        r = self._row(reservation_id)
        if r is None:
            raise NotFoundError(f"unknown reservation {reservation_id}")
        return r

    def find_active(self, member_id: int, book_id: int) -> Optional[Reservation]:
        found = self._select(
            lambda r: r.member_id == member_id
            and r.book_id == book_id
            and r.status == ReservationStatus.ACTIVE
        )
        return found[0] if found else None

    def list_active(self) -> List[Reservation]:
        return self._select(lambda r: r.status == ReservationStatus.ACTIVE)

    def list_active_for_book(self, book_id: int) -> List[Reservation]:
        items = self._select(lambda r: r.book_id == book_id and r.status == ReservationStatus.ACTIVE)
        # FIFO by reservation_date, ties by id
        return sorted(items, key=lambda r: (r.reservation_date, r.reservation_id))

    def list_earmarks_for_book(self, book_id: int) -> List[Reservation]:
        return self._select(lambda r: r.book_id == book_id and r.is_earmark)

    def list_lapsed_claims(self, now) -> List[Reservation]:
        """Earmarks whose claim window has run out, oldest deadline first."""
        items = self._select(lambda r: r.claim_lapsed(now))
        return sorted(items, key=lambda r: (r.claim_deadline, r.reservation_id))

    def find_earmark(self, member_id: int, book_id: int) -> Optional[Reservation]:
        found = self._select(lambda r: r.member_id == member_id and r.book_id == book_id and r.is_earmark)
        return found[0] if found else None

    def remove_where(self, *, member_id: Optional[int] = None, book_id: Optional[int] = None) -> int:
        doomed = [
            rid
            for rid, r in self._rows.items()
            if (member_id is not None and r.member_id == member_id)
            or (book_id is not None and r.book_id == book_id)
        ]
        for rid in doomed:
            self._drop(rid)
        return len(doomed)


class FineRepo(_Table):
    def add(self, fine: Fine) -> None:
        self._put(fine.fine_id, fine)

    def get(self, fine_id: int) -> Optional[Fine]:
        return self._row(fine_id)

    def require(self, fine_id: int) -> Fine:
        fine = self._row(fine_id)
        if fine is None:
            raise NotFoundError(f"unknown fine {fine_id}")
        return fine

    def list_for_borrowing(self, borrow_id: int) -> List[Fine]:
        return self._select(lambda f: f.borrow_id == borrow_id)

    def find_overdue_fine(self, borrow_id: int) -> Optional[Fine]:
        return next(
            (f for f in self.list_for_borrowing(borrow_id) if f.reason == FineReason.OVERDUE),
            None,
        )

    def has_unpaid_for(self, borrow_ids: Iterable[int]) -> bool:
        ids = set(borrow_ids)
        return any(f.borrow_id in ids and f.status == FineStatus.UNPAID for f in self._values())

    def list_by_member(self, member_id: int) -> List[Fine]:
        return self._select(lambda f: f.member_id == member_id)

    def list_unpaid_by_member(self, member_id: int) -> List[Fine]:
        return self._select(lambda f: f.member_id == member_id and f.status == FineStatus.UNPAID)

    def total_unpaid(self, member_id: int) -> Decimal:
        return sum(
            (f.amount for f in self._values() if f.member_id == member_id and f.status == FineStatus.UNPAID),
            Decimal("0.00"),
        )


class InMemoryStore:
    """
    Transactional store holding every table.

    ``transaction()`` serializes callers on one re-entrant lock. Each
    level keeps an undo journal of the rows it touched and replays it if
    its block raises, so a nested block behaves like a savepoint and the
    outermost block like a full commit/rollback. Rows nobody touched are
    never copied.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._journal = _Journal()
        self.catalog = CatalogRepo(self._journal)
        self.books = BookRepo(self._journal)
        self.members = MemberRepo(self._journal)
        self.borrowings = BorrowingRepo(self._journal)
        self.reservations = ReservationRepo(self._journal)
        self.fines = FineRepo(self._journal)

    @property
    def depth(self) -> int:
        return len(self._journal.levels)

    @contextmanager
    def transaction(self) -> Iterator["InMemoryStore"]:
        with self._lock:
            self._journal.begin()
            try:
                yield self
            except BaseException:
                self._journal.rollback()
                raise
            else:
                self._journal.commit()

    # ---- referential integrity on delete

    def delete_author(self, author_id: int) -> None:
        with self.transaction():
            if self.catalog.get_author(author_id) is None:
                raise NotFoundError(f"unknown author {author_id}")
            if self.books.is_referenced(author_id=author_id):
                raise ReferenceRestrictedError(f"author {author_id} is referenced by books")
            self.catalog.remove_author(author_id)

    def delete_publisher(self, publisher_id: int) -> None:
        with self.transaction():
            if self.catalog.get_publisher(publisher_id) is None:
                raise NotFoundError(f"unknown publisher {publisher_id}")
            if self.books.is_referenced(publisher_id=publisher_id):
                raise ReferenceRestrictedError(f"publisher {publisher_id} is referenced by books")
            self.catalog.remove_publisher(publisher_id)

    def delete_category(self, category_id: int) -> None:
        with self.transaction():
            if self.catalog.get_category(category_id) is None:
                raise NotFoundError(f"unknown category {category_id}")
            for book in self.books._select(lambda b: category_id in b.category_ids):
                book.category_ids.remove(category_id)
            for child in self.catalog.list_children(category_id):
                child.parent_category_id = None
            self.catalog.remove_category(category_id)

    def delete_book(self, book_id: int) -> None:
        with self.transaction():
            self.books.require(book_id)
            if self.borrowings.list_open_by_book(book_id):
                raise ReferenceRestrictedError(f"book {book_id} has open borrowings")
            if self.fines.has_unpaid_for(self.borrowings.ids_for_book(book_id)):
                raise ReferenceRestrictedError(f"book {book_id} has unpaid fines")
            self.reservations.remove_where(book_id=book_id)
            self.books.remove(book_id)

    def delete_member(self, member_id: int) -> None:
        with self.transaction():
            self.members.require(member_id)
            if self.borrowings.list_open_by_member(member_id):
                raise ReferenceRestrictedError(f"member {member_id} has open borrowings")
            if self.fines.list_unpaid_by_member(member_id):
                raise ReferenceRestrictedError(f"member {member_id} has unpaid fines")
            self.reservations.remove_where(member_id=member_id)
            self.members.remove(member_id)

    # ---- invariant audit

    def check_inventory(self) -> None:
        """Raise IntegrityViolation if any book's copy counts are inconsistent."""
        with self.transaction():
            for book in self.books.list_books():
                if not 0 <= book.available_copies <= book.total_copies:
                    raise IntegrityViolation(
                        f"book {book.book_id}: available={book.available_copies} "
                        f"total={book.total_copies}"
                    )
                out = len(self.borrowings.list_open_by_book(book.book_id))
                if book.copies_out != out:
                    raise IntegrityViolation(
                        f"book {book.book_id}: {book.available_copies} available + {out} out "
                        f"!= {book.total_copies} total"
                    )
