from __future__ import annotations
from datetime import datetime

from shelfkeeper import LibraryPolicy, LibrarySystem, configure_logging, seed_demo_data
from shelfkeeper.errors import ConflictError


def demo_flow() -> None:
    configure_logging()
    now = datetime.now()
    sys = LibrarySystem(policy=LibraryPolicy.from_env())
    seed_demo_data(sys, now)

    # Search
    print("\n[demo] search 'clean':", [b.title for b in sys.search_books("clean")])

    # Report inventory
    print("\n[demo] inventory:")
    for book, total, available in sys.report_inventory():
        print(f"  - {book.title}: total={total}, available={available}")

    # Return the overdue loan (fine assessed, Ava's Dune reservation fulfilled)
    overdue = sys.report_overdue(now.date())
    for borrowing in overdue:
        print(f"\n[demo] returning overdue borrowing {borrowing.borrow_id}")
        sys.return_book(borrowing.borrow_id, now=now)

    with sys.store.transaction():
        members = {m.first_name: m.member_id for m in sys.store.members.list_all()}

    alice_id = members["Alice"]
    for fine in sys.fines_for_member(alice_id):
        print(f"[demo] Alice pays fine {fine.fine_id}: ${fine.amount}")
        sys.pay_fine(fine.fine_id, fine.amount, paid_date=now.date())

    # Bob tries to take the Dune copy earmarked for Ava
    dune = next(b for b in sys.search_books("dune"))
    try:
        sys.borrow_book(members["Bob"], dune.book_id, now=now)
        outcome = "SUCCESS"
    except ConflictError as exc:
        outcome = f"DENIED ({exc})"
    print("\n[demo] Bob tries checkout Dune while Ava holds it:", outcome)

    print("\n[demo] overdue loans:", [b.borrow_id for b in sys.report_overdue(now.date())])


if __name__ == "__main__":
    demo_flow()
