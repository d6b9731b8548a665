"""
shelfkeeper package.

Lending-library engine: copy inventory, borrowings, reservations, fines
and membership ids on top of a transactional store.
"""

from .domain import (
    Author,
    Publisher,
    Category,
    Book,
    MemberStatus,
    MembershipType,
    Member,
    BorrowingStatus,
    Borrowing,
    ReservationStatus,
    Reservation,
    FineReason,
    FineStatus,
    Fine,
)

from .errors import (
    LibraryError,
    ValidationError,
    EligibilityError,
    NotFoundError,
    UnknownBookError,
    ConflictError,
    NoCopiesAvailable,
    DuplicateActiveReservation,
    DuplicateRecordError,
    ReferenceRestrictedError,
    StateError,
    InvalidFineState,
    InvalidBorrowingState,
    InvalidReservationState,
    IntegrityViolation,
    VersionConflict,
)

from .config import LibraryPolicy, configure_logging

from .repositories import InMemoryStore

from .services import (
    InventoryLedger,
    FineEngine,
    ReservationService,
    BorrowingService,
    MembershipIdAllocator,
    MembershipService,
    CatalogService,
)

from .notifications import Notification, Notifier, LoggingNotifier, NotificationOutbox

from .api import LibrarySystem, SweepReport
from .scheduler import SweepScheduler
from .seed import seed_demo_data

__all__ = [
    # domain
    "Author",
    "Publisher",
    "Category",
    "Book",
    "MemberStatus",
    "MembershipType",
    "Member",
    "BorrowingStatus",
    "Borrowing",
    "ReservationStatus",
    "Reservation",
    "FineReason",
    "FineStatus",
    "Fine",
    # errors
    "LibraryError",
    "ValidationError",
    "EligibilityError",
    "NotFoundError",
    "UnknownBookError",
    "ConflictError",
    "NoCopiesAvailable",
    "DuplicateActiveReservation",
    "DuplicateRecordError",
    "ReferenceRestrictedError",
    "StateError",
    "InvalidFineState",
    "InvalidBorrowingState",
    "InvalidReservationState",
    "IntegrityViolation",
    "VersionConflict",
    # config
    "LibraryPolicy",
    "configure_logging",
    # storage
    "InMemoryStore",
    # services
    "InventoryLedger",
    "FineEngine",
    "ReservationService",
    "BorrowingService",
    "MembershipIdAllocator",
    "MembershipService",
    "CatalogService",
    # notifications
    "Notification",
    "Notifier",
    "LoggingNotifier",
    "NotificationOutbox",
    # api
    "LibrarySystem",
    "SweepReport",
    "SweepScheduler",
    # seed
    "seed_demo_data",
]
