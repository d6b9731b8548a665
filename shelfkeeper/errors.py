class LibraryError(Exception):
    """Base exception for shelfkeeper errors."""


# ---- validation


class ValidationError(LibraryError):
    """Malformed input, rejected before any mutation."""


class EligibilityError(ValidationError):
    """Member may not borrow right now (status, fines, limits)."""


# ---- lookups


class NotFoundError(LibraryError):
    """Requested record does not exist."""


class UnknownBookError(NotFoundError):
    """Requested book id does not exist."""


# ---- conflicts (expected, recoverable outcomes)


class ConflictError(LibraryError):
    """Request lost against current state; caller may try again later."""


class NoCopiesAvailable(ConflictError):
    """No loanable copy of the book is left."""


class DuplicateActiveReservation(ConflictError):
    """Member already holds an Active reservation for this book."""


class DuplicateRecordError(ConflictError):
    """A unique field (ISBN, email, ...) is already taken."""


class ReferenceRestrictedError(ConflictError):
    """Record cannot be deleted while other records reference it."""


# ---- state misuse


class StateError(LibraryError):
    """Operation not allowed in the record's current state."""


class InvalidFineState(StateError):
    """Fine is already Paid or Waived."""


class InvalidBorrowingState(StateError):
    """Borrowing is already Returned or Lost."""


class InvalidReservationState(StateError):
    """Reservation is no longer Active."""


# ---- integrity


class IntegrityViolation(LibraryError):
    """A data invariant was breached; indicates a concurrency-control bug."""


class VersionConflict(IntegrityViolation):
    """Optimistic row version moved underneath a compare-and-set."""
