from datetime import timedelta

import pytest

from shelfkeeper import MemberStatus, ReservationStatus
from shelfkeeper.errors import (
    DuplicateActiveReservation,
    EligibilityError,
    InvalidReservationState,
    NoCopiesAvailable,
    ValidationError,
)
from shelfkeeper.notifications import CLAIM_LAPSED, RESERVATION_EXPIRED, RESERVATION_FULFILLED
from shelfkeeper.services import BorrowingService

from .conftest import NOW


@pytest.fixture
def checked_out(lib, make_book, make_member):
    """A single-copy book currently out with its first borrower."""
    book = make_book(copies=1)
    holder = make_member("Takver")
    bid = lib.borrow_book(holder.member_id, book.book_id)
    return book, bid


def test_duplicate_active_reservation_rejected(lib, checked_out, make_member):
    book, _ = checked_out
    member = make_member()
    rid = lib.reserve_book(member.member_id, book.book_id)

    with pytest.raises(DuplicateActiveReservation):
        lib.reserve_book(member.member_id, book.book_id)

    lib.cancel_reservation(rid)
    assert lib.get_reservation(rid).status == ReservationStatus.CANCELLED
    again = lib.reserve_book(member.member_id, book.book_id)
    assert again != rid
    assert lib.get_reservation(again).status == ReservationStatus.ACTIVE


def test_new_reservation_allowed_after_fulfilment(lib, checked_out, make_member):
    book, bid = checked_out
    member = make_member()
    rid = lib.reserve_book(member.member_id, book.book_id)
    lib.return_book(bid)
    assert lib.get_reservation(rid).status == ReservationStatus.FULFILLED

    assert lib.reserve_book(member.member_id, book.book_id) != rid


def test_reserve_on_shelf_copy_is_fulfilled_at_once(lib, make_book, make_member, notifier):
    book, member = make_book(copies=1), make_member()
    rid = lib.reserve_book(member.member_id, book.book_id)

    r = lib.get_reservation(rid)
    assert r.status == ReservationStatus.FULFILLED
    assert r.claim_deadline == NOW + lib.policy.claim_window
    assert notifier.kinds() == [RESERVATION_FULFILLED]
    assert lib.get_book(book.book_id).available_copies == 1


def test_fifo_by_date_then_id(lib, checked_out, make_member):
    book, bid = checked_out
    late, first, tied_a, tied_b = make_member(), make_member(), make_member(), make_member()

    r_late = lib.reserve_book(late.member_id, book.book_id, now=NOW + timedelta(hours=3))
    r_first = lib.reserve_book(first.member_id, book.book_id, now=NOW)
    r_tied_a = lib.reserve_book(tied_a.member_id, book.book_id, now=NOW + timedelta(hours=1))
    r_tied_b = lib.reserve_book(tied_b.member_id, book.book_id, now=NOW + timedelta(hours=1))

    lib.return_book(bid, now=NOW + timedelta(hours=4))
    statuses = {rid: lib.get_reservation(rid).status for rid in (r_late, r_first, r_tied_a, r_tied_b)}
    assert statuses[r_first] == ReservationStatus.FULFILLED
    assert statuses[r_tied_a] == ReservationStatus.ACTIVE
    assert statuses[r_late] == ReservationStatus.ACTIVE

    # first claims, returns; tie broken by lower id
    claim = lib.borrow_book(first.member_id, book.book_id, now=NOW + timedelta(hours=5))
    lib.return_book(claim, now=NOW + timedelta(hours=6))
    assert lib.get_reservation(r_tied_a).status == ReservationStatus.FULFILLED
    assert lib.get_reservation(r_tied_b).status == ReservationStatus.ACTIVE


def test_earmarked_copy_is_held_for_its_reserver(lib, checked_out, make_member):
    book, bid = checked_out
    reserver, walk_in = make_member(), make_member()
    rid = lib.reserve_book(reserver.member_id, book.book_id)
    lib.return_book(bid)

    with pytest.raises(NoCopiesAvailable):
        lib.borrow_book(walk_in.member_id, book.book_id)

    claimed = lib.borrow_book(reserver.member_id, book.book_id)
    r = lib.get_reservation(rid)
    assert r.status == ReservationStatus.FULFILLED
    assert r.claimed_borrow_id == claimed
    assert lib.get_book(book.book_id).available_copies == 0


def test_unclaimed_copy_passes_to_next_after_window(lib, checked_out, make_member, notifier):
    book, bid = checked_out
    first, second = make_member(), make_member()
    r1 = lib.reserve_book(first.member_id, book.book_id, ttl=timedelta(days=30))
    r2 = lib.reserve_book(second.member_id, book.book_id, ttl=timedelta(days=30), now=NOW + timedelta(minutes=1))
    lib.return_book(bid)

    # still inside the window
    assert lib.sweep_claims(now=NOW + timedelta(days=2)) == []

    lapsed = lib.sweep_claims(now=NOW + lib.policy.claim_window + timedelta(seconds=1))
    assert lapsed == [r1]
    assert lib.get_reservation(r1).status == ReservationStatus.EXPIRED
    assert lib.get_reservation(r2).status == ReservationStatus.FULFILLED
    assert CLAIM_LAPSED in notifier.kinds()
    assert notifier.kinds().count(RESERVATION_FULFILLED) == 2


def test_claimed_reservation_does_not_lapse(lib, checked_out, make_member):
    book, bid = checked_out
    member = make_member()
    rid = lib.reserve_book(member.member_id, book.book_id)
    lib.return_book(bid)
    lib.borrow_book(member.member_id, book.book_id)

    assert lib.sweep_claims(now=NOW + timedelta(days=10)) == []
    assert lib.get_reservation(rid).status == ReservationStatus.FULFILLED


def test_expire_sweep(lib, checked_out, make_member, notifier):
    book, _ = checked_out
    short, long_ = make_member(), make_member()
    r_short = lib.reserve_book(short.member_id, book.book_id, ttl=timedelta(days=1))
    r_long = lib.reserve_book(long_.member_id, book.book_id, ttl=timedelta(days=30))

    assert lib.expire_reservations(now=NOW + timedelta(days=2)) == [r_short]
    assert lib.get_reservation(r_short).status == ReservationStatus.EXPIRED
    assert lib.get_reservation(r_long).status == ReservationStatus.ACTIVE
    assert notifier.kinds() == [RESERVATION_EXPIRED]


def test_expiry_is_checked_lazily(lib, checked_out, make_member):
    book, bid = checked_out
    stale, fresh = make_member(), make_member()
    r_stale = lib.reserve_book(stale.member_id, book.book_id, ttl=timedelta(days=1))
    r_fresh = lib.reserve_book(fresh.member_id, book.book_id, ttl=timedelta(days=30))
    later = NOW + timedelta(days=2)

    with pytest.raises(InvalidReservationState):
        lib.cancel_reservation(r_stale, now=later)

    # no sweep has run; the stale one is skipped at fulfilment time
    lib.return_book(bid, now=later)
    assert lib.get_reservation(r_stale).status == ReservationStatus.EXPIRED
    assert lib.get_reservation(r_fresh).status == ReservationStatus.FULFILLED


def test_stale_active_reservation_does_not_block_new_one(lib, checked_out, make_member):
    book, _ = checked_out
    member = make_member()
    old = lib.reserve_book(member.member_id, book.book_id, ttl=timedelta(days=1))
    new = lib.reserve_book(member.member_id, book.book_id, now=NOW + timedelta(days=2))
    assert lib.get_reservation(old).status == ReservationStatus.EXPIRED
    assert lib.get_reservation(new).status == ReservationStatus.ACTIVE


def test_cancel_terminal_reservation_fails(lib, checked_out, make_member):
    book, _ = checked_out
    member = make_member()
    rid = lib.reserve_book(member.member_id, book.book_id)
    lib.cancel_reservation(rid)
    with pytest.raises(InvalidReservationState):
        lib.cancel_reservation(rid)


def test_cancelling_an_earmark_hands_copy_on(lib, checked_out, make_member):
    book, bid = checked_out
    first, second = make_member(), make_member()
    r1 = lib.reserve_book(first.member_id, book.book_id)
    r2 = lib.reserve_book(second.member_id, book.book_id, now=NOW + timedelta(minutes=1))
    lib.return_book(bid)

    lib.cancel_reservation(r1)
    assert lib.get_reservation(r1).status == ReservationStatus.CANCELLED
    assert lib.get_reservation(r2).status == ReservationStatus.FULFILLED


def test_added_copies_fulfil_waiting_reservations(lib, checked_out, make_member):
    book, _ = checked_out
    member = make_member()
    rid = lib.reserve_book(member.member_id, book.book_id)
    lib.add_copies(book.book_id, 1)
    assert lib.get_reservation(rid).status == ReservationStatus.FULFILLED


def test_inactive_member_cannot_reserve(lib, checked_out, make_member):
    book, _ = checked_out
    member = make_member()
    lib.set_member_status(member.member_id, MemberStatus.BANNED)
    with pytest.raises(EligibilityError):
        lib.reserve_book(member.member_id, book.book_id)


def test_non_positive_ttl_rejected(lib, checked_out, make_member):
    book, _ = checked_out
    with pytest.raises(ValidationError):
        lib.reserve_book(make_member().member_id, book.book_id, ttl=timedelta(0))


def test_rolled_back_sweep_keeps_claim_pending(lib, checked_out, make_member, monkeypatch):
    book, bid = checked_out
    member = make_member()
    rid = lib.reserve_book(member.member_id, book.book_id)
    lib.return_book(bid)
    later = NOW + lib.policy.claim_window + timedelta(seconds=1)

    def explode(self, today):
        raise RuntimeError("sweep aborted")

    monkeypatch.setattr(BorrowingService, "refresh_overdue", explode)
    with pytest.raises(RuntimeError):
        lib.run_daily_sweep(now=later)
    assert lib.get_reservation(rid).status == ReservationStatus.FULFILLED

    monkeypatch.undo()
    assert lib.run_daily_sweep(now=later).lapsed_claims == [rid]
    assert lib.get_reservation(rid).status == ReservationStatus.EXPIRED


def test_lapsed_earmark_does_not_block_walk_in(lib, checked_out, make_member, notifier):
    book, bid = checked_out
    reserver, walk_in = make_member(), make_member()
    rid = lib.reserve_book(reserver.member_id, book.book_id)
    lib.return_book(bid)

    # nobody ran a sweep; the borrow itself notices the window is over
    later = NOW + lib.policy.claim_window + timedelta(days=5)
    lib.borrow_book(walk_in.member_id, book.book_id, now=later)

    assert lib.get_reservation(rid).status == ReservationStatus.EXPIRED
    assert lib.get_book(book.book_id).available_copies == 0
    assert CLAIM_LAPSED in notifier.kinds()


def test_lapsed_earmark_passes_to_next_in_line_at_borrow(lib, checked_out, make_member):
    book, bid = checked_out
    first, second, walk_in = make_member(), make_member(), make_member()
    r1 = lib.reserve_book(first.member_id, book.book_id, ttl=timedelta(days=30))
    r2 = lib.reserve_book(second.member_id, book.book_id, ttl=timedelta(days=30), now=NOW + timedelta(minutes=1))
    lib.return_book(bid)
    later = NOW + lib.policy.claim_window + timedelta(days=1)

    with pytest.raises(NoCopiesAvailable):
        lib.borrow_book(walk_in.member_id, book.book_id, now=later)

    claimed = lib.borrow_book(second.member_id, book.book_id, now=later)
    assert lib.get_reservation(r1).status == ReservationStatus.EXPIRED
    assert lib.get_reservation(r2).claimed_borrow_id == claimed


def test_cannot_reserve_again_while_copy_waits(lib, make_book, make_member):
    book, member = make_book(copies=1), make_member()
    rid = lib.reserve_book(member.member_id, book.book_id)
    assert lib.get_reservation(rid).status == ReservationStatus.FULFILLED

    with pytest.raises(DuplicateActiveReservation):
        lib.reserve_book(member.member_id, book.book_id)

    later = NOW + lib.policy.claim_window + timedelta(days=1)
    again = lib.reserve_book(member.member_id, book.book_id, now=later)
    assert lib.get_reservation(rid).status == ReservationStatus.EXPIRED
    assert lib.get_reservation(again).status == ReservationStatus.FULFILLED
