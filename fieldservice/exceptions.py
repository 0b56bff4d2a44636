"""
Engine error taxonomy.

Each error is an HTTPException so services can raise it the same way the
routers do; ``detail`` carries the structured payload
``{"kind", "message", "field", "lines"}`` so a client can point at the
offending input.
"""
from typing import Any, Dict, List, Optional

from fastapi import HTTPException, status


class EngineError(HTTPException):
    kind = "EngineError"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        lines: Optional[List[Dict[str, Any]]] = None
    ):
        self.message = message
        self.field = field
        self.lines = lines or []
        detail = {"kind": self.kind, "message": message}
        if field:
            detail["field"] = field
        if lines:
            detail["lines"] = lines
        super().__init__(status_code=type(self).status_code, detail=detail)

    def __str__(self):
        return f"{self.kind}: {self.message}"


class NotFound(EngineError):
    kind = "NotFound"
    status_code = status.HTTP_404_NOT_FOUND


class InvalidTransition(EngineError):
    kind = "InvalidTransition"
    status_code = status.HTTP_409_CONFLICT


class AwaitingSalesApproval(InvalidTransition):
    kind = "AwaitingSalesApproval"


class PermissionDenied(EngineError):
    kind = "PermissionDenied"
    status_code = status.HTTP_403_FORBIDDEN


class IneligibleTechnician(EngineError):
    kind = "IneligibleTechnician"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class NoOpReassignment(EngineError):
    kind = "NoOpReassignment"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class InvalidField(EngineError):
    kind = "InvalidField"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class InvalidReason(EngineError):
    kind = "InvalidReason"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class InvalidQuantity(EngineError):
    kind = "InvalidQuantity"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class InvalidLocation(EngineError):
    kind = "InvalidLocation"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class InsufficientStock(EngineError):
    kind = "InsufficientStock"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class DuplicateLineItem(EngineError):
    kind = "DuplicateLineItem"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class SessionAlreadyOpen(EngineError):
    kind = "SessionAlreadyOpen"
    status_code = status.HTTP_409_CONFLICT


class NoOpenSession(EngineError):
    kind = "NoOpenSession"
    status_code = status.HTTP_409_CONFLICT


class ClockSkew(EngineError):
    kind = "ClockSkew"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class ConcurrencyConflict(EngineError):
    """Another operation changed the same rows first; re-read and retry."""
    kind = "ConcurrencyConflict"
    status_code = status.HTTP_409_CONFLICT


class OperationTimeout(EngineError):
    """Lock wait expired; nothing was written, safe to retry."""
    kind = "OperationTimeout"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


class ImmutableRecordError(Exception):
    """Raised by the ORM guards when code tries to edit an audit row."""
