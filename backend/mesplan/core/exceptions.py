"""
Domain exceptions and their HTTP mapping.

Services and the scheduling engine raise these; the global handler in
``mesplan.main`` turns them into structured JSON error responses.
"""
from typing import Any, Dict, List, Optional

from fastapi import HTTPException


class MESPlanException(Exception):
    code = "MESPLAN_ERROR"
    status_code = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class EntityNotFoundException(MESPlanException):
    code = "NOT_FOUND"
    status_code = 404

    def __init__(self, entity: str, entity_id: Any):
        super().__init__(f"{entity} with id '{entity_id}' not found.", {"entity": entity, "id": entity_id})


class BusinessRuleViolationException(MESPlanException):
    code = "BUSINESS_RULE_VIOLATION"
    status_code = 422


class InvalidPolicyError(MESPlanException):
    """Unknown dispatch rule or an out-of-range policy parameter."""

    code = "INVALID_POLICY"
    status_code = 400

    def __init__(self, errors: List[str]):
        super().__init__("Invalid scheduling policy: " + "; ".join(errors), {"errors": errors})
        self.errors = errors


class MalformedSlotError(MESPlanException):
    """Slot with end <= start, or a machine/operation reference that does not resolve."""

    code = "MALFORMED_SLOT"
    status_code = 400

    def __init__(self, errors: List[str]):
        super().__init__("Malformed schedule slot(s): " + "; ".join(errors), {"errors": errors})
        self.errors = errors


class ConcurrentModificationError(MESPlanException):
    code = "CONCURRENT_MODIFICATION"
    status_code = 409

    def __init__(self, machine_ids: List[int]):
        super().__init__(
            "Schedule for machine(s) changed during commit; retry with fresh state.",
            {"machine_ids": machine_ids},
        )
        self.machine_ids = machine_ids


class MachineBusyError(MESPlanException):
    code = "MACHINE_BUSY"
    status_code = 409

    def __init__(self, machine_ids: List[int]):
        super().__init__(
            "Machine(s) currently under an active schedule mutation.",
            {"machine_ids": machine_ids},
        )
        self.machine_ids = machine_ids


def to_http_exception(exc: MESPlanException) -> HTTPException:
    detail: Dict[str, Any] = {"code": exc.code, "message": exc.message}
    if exc.details:
        detail["details"] = exc.details
    return HTTPException(status_code=exc.status_code, detail=detail)
