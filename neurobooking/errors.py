from collections.abc import Iterable


class BookingError(Exception):
    """Base class for every failure the booking core reports to its caller."""

    pass


class InvalidRequest(BookingError):
    """Raised when a required field is missing or zero, or selections and shift ids do not line up."""

    pass


class SurgeryNotFound(BookingError):
    """Raised when a surgery id does not exist in the surgery store."""

    pass


class SchedulingConflict(BookingError):
    """Raised when the surgeon already has an overlapping scheduled surgery at the hospital."""

    pass


class ShiftNoLongerAvailable(BookingError):
    """Raised when one or more shifts were booked by someone else before the commit ran."""

    def __init__(self, shift_ids: Iterable[str]) -> None:
        self.shift_ids = list(shift_ids)
        super().__init__(
            f"Shifts no longer available: {', '.join(self.shift_ids)}"
        )


class StorageFailure(BookingError):
    """Raised when the backing store times out or is unavailable."""

    pass


# Mapping of booking errors to HTTP status codes
CUSTOM_ERRORS = {
    InvalidRequest: 400,
    SurgeryNotFound: 404,
    SchedulingConflict: 409,
    ShiftNoLongerAvailable: 409,
    StorageFailure: 503,
}
