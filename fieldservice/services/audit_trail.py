"""
Audit Trail Service

Append-only records attached to a service request:
- Approval / rejection / completion decisions
- Assignment and reassignment events
- History read-out (approvals, assignments, work sessions)

Nothing here commits; the caller owns the transaction.
"""
import logging
from datetime import datetime
from typing import Optional, List, Dict

from sqlalchemy.orm import Session

from fieldservice.models import (
    ApprovalRecord, AssignmentEvent, WorkSession, ServiceRequest, User
)

logger = logging.getLogger(__name__)


# =============================================================================
# Approval records
# =============================================================================

def log_approval(
    db: Session,
    request: ServiceRequest,
    approver: User,
    stage: str,
    outcome: str,
    comments: Optional[str] = None,
    at: Optional[datetime] = None
) -> ApprovalRecord:
    """
    Append an approval record.

    Args:
        db: Database session
        request: Request being decided
        approver: Acting user; the role is copied so later role changes don't rewrite history
        stage: SALES, SERVICE or COMPLETION
        outcome: APPROVED or REJECTED
        comments: Optional free text
        at: Timestamp override (defaults to now)

    Returns:
        The new, unflushed record
    """
    record = ApprovalRecord(
        request_id=request.id,
        approver_id=approver.id,
        approver_role=approver.role,
        stage=stage,
        outcome=outcome,
        comments=comments,
        created_at=at or datetime.utcnow()
    )
    db.add(record)
    logger.debug(f"Approval record {stage}/{outcome} queued for {request.request_number}")
    return record


def approvals_for(db: Session, request_id: int) -> List[ApprovalRecord]:
    return db.query(ApprovalRecord).filter(
        ApprovalRecord.request_id == request_id
    ).order_by(ApprovalRecord.id).all()


# =============================================================================
# Assignment events
# =============================================================================

def log_assignment(
    db: Session,
    request: ServiceRequest,
    previous_technician_id: Optional[int],
    new_technician_id: int,
    mode: str,
    actor: User,
    reason_code: Optional[str] = None,
    reason_note: Optional[str] = None,
    at: Optional[datetime] = None
) -> AssignmentEvent:
    """Append an assignment event (first assignment has no previous technician)"""
    assignment = AssignmentEvent(
        request_id=request.id,
        previous_technician_id=previous_technician_id,
        new_technician_id=new_technician_id,
        mode=mode,
        reason_code=reason_code,
        reason_note=reason_note,
        actor_id=actor.id,
        created_at=at or datetime.utcnow()
    )
    db.add(assignment)
    logger.debug(
        f"Assignment event {mode} queued for {request.request_number}: "
        f"{previous_technician_id} -> {new_technician_id}"
    )
    return assignment


def assignments_for(db: Session, request_id: int) -> List[AssignmentEvent]:
    return db.query(AssignmentEvent).filter(
        AssignmentEvent.request_id == request_id
    ).order_by(AssignmentEvent.id).all()


def current_assignment(db: Session, request_id: int) -> Optional[AssignmentEvent]:
    """The latest event wins as the current assignment"""
    return db.query(AssignmentEvent).filter(
        AssignmentEvent.request_id == request_id
    ).order_by(AssignmentEvent.id.desc()).first()


# =============================================================================
# History
# =============================================================================

def request_history(db: Session, request_id: int) -> Dict[str, list]:
    sessions = db.query(WorkSession).filter(
        WorkSession.request_id == request_id
    ).order_by(WorkSession.id).all()

    return {
        "approvals": approvals_for(db, request_id),
        "assignments": assignments_for(db, request_id),
        "sessions": sessions,
    }
