import threading

import pytest

from shelfkeeper.errors import DuplicateActiveReservation, NoCopiesAvailable


def _race(n, target):
    barrier = threading.Barrier(n)
    outcomes = [None] * n

    def run(i):
        barrier.wait()
        try:
            outcomes[i] = target(i)
        except Exception as exc:
            outcomes[i] = exc

    threads = [threading.Thread(target=run, args=(i,)) for i in range(n)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    return outcomes


def test_two_borrowers_race_for_last_copy(lib, make_book, make_member):
    book = make_book(copies=1)
    members = [make_member(), make_member()]

    outcomes = _race(2, lambda i: lib.borrow_book(members[i].member_id, book.book_id))

    wins = [o for o in outcomes if isinstance(o, int)]
    losses = [o for o in outcomes if isinstance(o, NoCopiesAvailable)]
    assert len(wins) == 1 and len(losses) == 1
    assert lib.get_book(book.book_id).available_copies == 0
    lib.store.check_inventory()


@pytest.mark.parametrize("copies", [3, 5])
def test_many_borrowers_never_overbook(lib, make_book, make_member, copies):
    book = make_book(copies=copies)
    members = [make_member() for _ in range(12)]

    outcomes = _race(len(members), lambda i: lib.borrow_book(members[i].member_id, book.book_id))

    assert sum(isinstance(o, int) for o in outcomes) == copies
    assert all(isinstance(o, (int, NoCopiesAvailable)) for o in outcomes)
    assert lib.get_book(book.book_id).available_copies == 0
    lib.store.check_inventory()


def test_concurrent_returns_and_borrows_keep_counts(lib, make_book, make_member):
    book = make_book(copies=4)
    holders = [make_member() for _ in range(4)]
    loans = [lib.borrow_book(m.member_id, book.book_id) for m in holders]
    newcomers = [make_member() for _ in range(4)]

    def step(i):
        if i < 4:
            return lib.return_book(loans[i])
        return lib.borrow_book(newcomers[i - 4].member_id, book.book_id)

    _race(8, step)

    after = lib.get_book(book.book_id)
    assert 0 <= after.available_copies <= after.total_copies
    lib.store.check_inventory()


def test_duplicate_reservations_race(lib, make_book, make_member):
    book, other = make_book(copies=1), make_member()
    lib.borrow_book(other.member_id, book.book_id)
    member = make_member()

    outcomes = _race(4, lambda i: lib.reserve_book(member.member_id, book.book_id))

    assert sum(isinstance(o, int) for o in outcomes) == 1
    assert sum(isinstance(o, DuplicateActiveReservation) for o in outcomes) == 3
