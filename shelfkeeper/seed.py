from __future__ import annotations
from datetime import date, datetime, timedelta

from .api import LibrarySystem
from .domain import MembershipType


def seed_demo_data(sys: LibrarySystem, now: datetime) -> None:
    # catalog
    herbert = sys.add_author("Frank", "Herbert", nationality="American")
    rowling = sys.add_author("J.K.", "Rowling", nationality="British")
    martin = sys.add_author("Robert", "Martin", nationality="American")
    ace = sys.add_publisher("Ace Books", established_year=1952)
    scholastic = sys.add_publisher("Scholastic", established_year=1920)
    ph = sys.add_publisher("Prentice Hall", established_year=1913)
    fiction = sys.add_category("Fiction")
    scifi = sys.add_category("Science Fiction", parent_id=fiction.category_id)
    software = sys.add_category("Software")

    dune = sys.add_book(
        "9780441172719", "Dune", herbert.author_id, ace.publisher_id, 1965,
        copies=1, category_ids=[scifi.category_id],
    )
    hp1 = sys.add_book(
        "9780590353427", "Harry Potter and the Sorcerer's Stone", rowling.author_id,
        scholastic.publisher_id, 1998, copies=1, category_ids=[fiction.category_id],
    )
    clean_code = sys.add_book(
        "9780132350884", "Clean Code", martin.author_id, ph.publisher_id, 2008,
        copies=3, category_ids=[software.category_id],
    )

    # members
    start = now.date() - timedelta(days=60)
    alice = sys.register_member("Alice", "Reader", "alice@example.com", date(1990, 4, 2), start=start)
    bob = sys.register_member(
        "Bob", "Librarian", "bob@example.com", date(1985, 9, 14), MembershipType.STAFF, start=start
    )
    ava = sys.register_member(
        "Ava", "Admin", "admin@example.com", date(1979, 1, 30), MembershipType.PREMIUM, start=start
    )

    # Alice's Dune loan is three days overdue
    sys.borrow_book(alice.member_id, dune.book_id, now=now - timedelta(days=sys.policy.loan_days + 3))
    sys.borrow_book(alice.member_id, clean_code.book_id, now=now)
    sys.borrow_book(bob.member_id, hp1.book_id, now=now)

    # Alice wants HP1 next
    sys.reserve_book(alice.member_id, hp1.book_id, now=now)
    sys.reserve_book(ava.member_id, dune.book_id, now=now)
