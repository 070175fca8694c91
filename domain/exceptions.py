"""Domain Errors

Business rule violations subclass ValueError so callers that only know about
ValueError keep working; storage failures do not.
"""
from decimal import Decimal
from typing import Any, Dict, List, Optional


class ReservationEngineError(ValueError):
    """Base class for every rejected reservation operation"""

    code = "reservation_error"

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = details

    def to_dict(self) -> Dict[str, Any]:
        payload = {"detail": self.message, "error": self.code}
        payload.update(_jsonable(self.details))
        return payload


def _jsonable(details: Dict[str, Any]) -> Dict[str, Any]:
    result = {}
    for key, value in details.items():
        if isinstance(value, Decimal):
            value = float(value)
        result[key] = value
    return result


# ==================== VALIDATION ====================

class ValidationFailed(ReservationEngineError):
    code = "validation_error"


class InvalidDateRange(ValidationFailed):
    code = "invalid_date_range"

    def __init__(self, reasons: List[str]):
        super().__init__("Invalid booking dates: " + "; ".join(reasons), reasons=list(reasons))
        self.reasons = list(reasons)


class InvalidGuestInfo(ValidationFailed):
    code = "invalid_guest_info"


class InvalidRoomSelection(ValidationFailed):
    code = "invalid_room_selection"


class InvalidAmount(ValidationFailed):
    code = "invalid_amount"


# ==================== NOT FOUND ====================

class NotFound(ReservationEngineError):
    code = "not_found"


class RoomNotFound(NotFound):
    code = "room_not_found"

    def __init__(self, room_ids: List[str]):
        super().__init__(f"Room(s) not found: {', '.join(room_ids)}", room_ids=list(room_ids))
        self.room_ids = list(room_ids)


class ReservationNotFound(NotFound):
    code = "reservation_not_found"

    def __init__(self, reference: str):
        super().__init__(f"Booking {reference} not found", reservation=reference)


class TransactionNotFound(NotFound):
    code = "transaction_not_found"

    def __init__(self, transaction_id: str):
        super().__init__(f"Payment {transaction_id} not found", transaction_id=transaction_id)


# ==================== CONFLICT ====================

class ConflictError(ReservationEngineError):
    code = "conflict"


class RoomUnavailable(ConflictError):
    code = "room_unavailable"

    def __init__(self, room_numbers: List[str]):
        super().__init__(
            f"Room(s) {', '.join(room_numbers)} not available for the selected dates",
            room_numbers=list(room_numbers),
        )
        self.room_numbers = list(room_numbers)


class RoomBlocked(ConflictError):
    code = "room_blocked"

    def __init__(self, room_numbers: List[str], reason: str):
        super().__init__(
            f"Room(s) {', '.join(room_numbers)} cannot be booked: {reason}",
            room_numbers=list(room_numbers),
            reason=reason,
        )
        self.room_numbers = list(room_numbers)
        self.reason = reason


class OccupancyExceeded(ConflictError):
    code = "occupancy_exceeded"

    def __init__(self, max_occupancy: int, requested: int):
        super().__init__(
            f"Maximum occupancy for the selected rooms is {max_occupancy} guests, {requested} requested",
            max=max_occupancy,
            requested=requested,
        )
        self.max_occupancy = max_occupancy
        self.requested = requested


class Overpayment(ConflictError):
    code = "overpayment"

    def __init__(self, amount: Decimal, pending: Decimal):
        super().__init__(
            f"Payment amount ({amount}) exceeds pending amount ({pending})",
            amount=amount,
            pending=pending,
        )
        self.amount = amount
        self.pending = pending


# ==================== STATE ====================

class InvalidStateTransition(ReservationEngineError):
    code = "invalid_state_transition"

    def __init__(self, message: str, current: str, target: Optional[str] = None):
        super().__init__(message, current=current, target=target)
        self.current = current
        self.target = target


class PaymentRejected(ReservationEngineError):
    code = "payment_rejected"


# ==================== STORAGE ====================

class StorageError(Exception):
    """Failures raised by the reservation store"""


class ConcurrencyConflict(StorageError):
    """Optimistic version mismatch or lock contention; safe to retry"""


class DuplicateKey(StorageError):
    """A uniqueness constraint of the store was violated"""

    def __init__(self, key: str, value: str):
        super().__init__(f"Duplicate {key}: {value}")
        self.key = key
        self.value = value
