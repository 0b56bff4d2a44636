"""
Reason codes as a tagged variant: ``Enumerated(code)`` for a value from a
closed list, ``Other(text)`` when the user picked "Other" and wrote the reason.
"""
from dataclasses import dataclass
from typing import Iterable, Optional, Union

from fieldservice.exceptions import InvalidReason

OTHER = "Other"

REASSIGNMENT_REASONS = (
    "Technician unavailable",
    "Workload balancing",
    "Skill mismatch",
    "Customer request",
    "Performance issues",
    "Administrative",
    OTHER,
)

# "Used in Service" is written by consumption only, never chosen by hand
ADJUSTMENT_REASONS = (
    "Added Stock",
    "Stock Return",
    "Damage",
    "Adjustment",
    OTHER,
)

USED_IN_SERVICE = "Used in Service"
TRANSFER = "Transfer"


@dataclass(frozen=True)
class Enumerated:
    code: str
    note: Optional[str] = None


@dataclass(frozen=True)
class Other:
    text: str

    @property
    def code(self) -> str:
        return OTHER

    @property
    def note(self) -> str:
        return self.text


Reason = Union[Enumerated, Other]


def parse_reason(code: Optional[str], note: Optional[str], allowed: Iterable[str], field: str = "reason") -> Reason:
    """Validate a (code, note) pair from a client against a closed list"""
    allowed = tuple(allowed)
    if not code:
        raise InvalidReason("A reason is required", field=field)
    if code not in allowed:
        raise InvalidReason(f"Unknown reason '{code}'. Allowed: {', '.join(allowed)}", field=field)
    if code == OTHER:
        if not note or not note.strip():
            raise InvalidReason("A note is required when the reason is 'Other'", field="note")
        return Other(note.strip())
    return Enumerated(code, note.strip() if note and note.strip() else None)
