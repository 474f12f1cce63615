"""Error taxonomy for the booking core.

Every error carries a machine-readable ``kind`` and the HTTP status the
API layer answers with. Only :class:`ConcurrencyConflict` is retryable.
"""


class ParkingError(Exception):
    kind = "parking_error"
    status_code = 400
    retryable = False

    def __init__(self, message=None):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__

    def to_dict(self):
        return {"error": self.kind, "message": self.message, "retryable": self.retryable}


class NotFound(ParkingError):
    kind = "not_found"
    status_code = 404


class Forbidden(ParkingError):
    kind = "forbidden"
    status_code = 403


class InvalidStateTransition(ParkingError):
    kind = "invalid_state_transition"
    status_code = 409


class CapacityExhausted(ParkingError):
    kind = "capacity_exhausted"
    status_code = 409


class NoCapacity(CapacityExhausted):
    """The lot's available counter is already zero."""
    kind = "no_capacity"


class NoSlotAvailable(CapacityExhausted):
    """The counter says there is room but no slot is AVAILABLE (e.g. maintenance)."""
    kind = "no_slot_available"


class ConcurrencyConflict(ParkingError):
    kind = "concurrency_conflict"
    status_code = 409
    retryable = True


class ValidationError(ParkingError):
    kind = "validation_error"
    status_code = 400


class CounterOutOfRange(ParkingError):
    """An adjustment would push availableSpaces outside [0, totalSpaces]."""
    kind = "counter_out_of_range"
    status_code = 409
