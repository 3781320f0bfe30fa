"""Domain error taxonomy.

Every error carries a stable ``code`` and the HTTP status the API layer
translates it to. Messages are written for callers; storage error text never
ends up in them.
"""

from typing import Any, Dict, List, Optional


class BookingEngineError(Exception):
    """Base class for all errors raised by the engine."""

    code = "ENGINE_ERROR"
    status_code = 400

    def __init__(self, message: str, *, code: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        self.message = message
        if code:
            self.code = code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"ok": False, "error": self.code, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body


class ConflictError(BookingEngineError):
    """The requested resource is held by someone else. Retry with other input."""

    code = "CONFLICT"
    status_code = 409


class SlotConflictError(ConflictError):
    """Slot already held or confirmed for the staff member and interval."""

    code = "SLOT_CONFLICT"

    def __init__(self, staff_id: str, message: str = "Slot is already taken for this staff member"):
        self.staff_id = staff_id
        super().__init__(message, details={"staff_id": staff_id})


class InvalidTransitionError(BookingEngineError):
    """State change not permitted from the current status."""

    code = "INVALID_TRANSITION"
    status_code = 409

    def __init__(self, message: str, *, current_status: Optional[str] = None, target_status: Optional[str] = None,
                 code: Optional[str] = None):
        self.current_status = current_status
        self.target_status = target_status
        details = {}
        if current_status is not None:
            details["current_status"] = current_status
        if target_status is not None:
            details["target_status"] = target_status
        super().__init__(message, code=code, details=details)


class ValidationError(BookingEngineError):
    """Malformed input."""

    code = "VALIDATION_ERROR"
    status_code = 400


class FutureBookingError(ValidationError):
    """Attendance can only be recorded once the booking has started."""

    code = "FUTURE_BOOKING"


class NotFoundError(BookingEngineError):
    """Unknown booking, shift, promotion or entity id."""

    code = "NOT_FOUND"
    status_code = 404

    def __init__(self, entity: str, entity_id: Any):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} not found", details={"entity": entity, "id": str(entity_id)})


class SettlementInvariantError(BookingEngineError):
    """percent_master + percent_salon does not add up to 100."""

    code = "SETTLEMENT_INVARIANT"
    status_code = 422


class PromotionEvaluationError(BookingEngineError):
    """Promotion evaluation failed. Never blocks the attendance transition."""

    code = "PROMOTION_EVALUATION_FAILED"
    status_code = 500


class BatchPartialFailure(BookingEngineError):
    """One or more entities failed during a bulk recalculation."""

    code = "BATCH_PARTIAL_FAILURE"
    status_code = 207

    def __init__(self, errors: List[Dict[str, Any]], processed: int):
        self.errors = errors
        self.processed = processed
        super().__init__(
            f"{len(errors)} of {processed} entities failed",
            details={"errors": errors, "entities_processed": processed},
        )
