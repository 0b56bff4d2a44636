"""
Service Request Lifecycle

Two layers:
- ``next_state``: a pure function deciding, from the current status, the
  operation and a snapshot of the request's context, which status comes next
  and which side effects must be recorded. It never touches the database.
- ``RequestLifecycle``: loads and locks the request, builds the context,
  asks ``next_state``, carries out the effects through the approval gate,
  assignment manager, work session tracker and stock ledger, and commits the
  whole operation as one transaction.

``RequestLifecycle`` is the only writer of ``ServiceRequest.status``.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Tuple, List, Dict, Any, Callable

from sqlalchemy.orm import Session

from fieldservice import roles
from fieldservice.config import Settings, settings as default_settings
from fieldservice.database import atomic
from fieldservice.exceptions import (
    InvalidTransition, AwaitingSalesApproval, PermissionDenied, NotFound,
    SessionAlreadyOpen, NoOpenSession, InvalidReason, InvalidField, IneligibleTechnician
)
from fieldservice.models import (
    ServiceRequest, RequestStatus, RequestType, ApprovalRecord, ApprovalStage, ApprovalOutcome,
    AssignmentMode, Customer, Region, User, WorkSession, StockMovement,
    WAREHOUSE, technician_location
)
from fieldservice.services import approval_gate, audit_trail
from fieldservice.services.assignment import AssignmentManager
from fieldservice.services.stock_ledger import StockLedger, normalize_location
from fieldservice.services.work_sessions import WorkSessionTracker

logger = logging.getLogger(__name__)


# =============================================================================
# Transition table
# =============================================================================

class Operation:
    SUBMIT = "submit"
    APPROVE = "approve"
    REJECT = "reject"
    ASSIGN = "assign"
    REASSIGN = "reassign"
    REASSIGN_FOR_REWORK = "reassign_for_rework"
    START_WORK = "start_work"
    STOP_WORK = "stop_work"
    CONSUME_STOCK = "consume_stock"
    ACKNOWLEDGE_COMPLETION = "acknowledge_completion"


class Effect:
    APPEND_APPROVAL = "append_approval"
    APPEND_ASSIGNMENT = "append_assignment"
    OPEN_SESSION = "open_session"
    CLOSE_SESSION = "close_session"
    CLOSE_SESSION_ADMIN = "close_session_admin"
    CONSUME_STOCK = "consume_stock"
    APPEND_COMPLETION = "append_completion"


# None stands for "not created yet"
ALLOWED_FROM = {
    Operation.SUBMIT: (None, RequestStatus.DRAFT),
    Operation.APPROVE: (RequestStatus.PENDING_APPROVAL,),
    Operation.REJECT: (RequestStatus.PENDING_APPROVAL,),
    Operation.ASSIGN: (RequestStatus.APPROVED,),
    Operation.REASSIGN: (RequestStatus.ASSIGNED, RequestStatus.IN_PROGRESS),
    Operation.REASSIGN_FOR_REWORK: (RequestStatus.WORK_COMPLETED,),
    # IN_PROGRESS only to resume after a reassignment closed the previous session
    Operation.START_WORK: (RequestStatus.ASSIGNED, RequestStatus.IN_PROGRESS),
    Operation.STOP_WORK: (RequestStatus.IN_PROGRESS,),
    Operation.CONSUME_STOCK: (RequestStatus.IN_PROGRESS, RequestStatus.WORK_COMPLETED),
    Operation.ACKNOWLEDGE_COMPLETION: (RequestStatus.WORK_COMPLETED,),
}


@dataclass(frozen=True)
class TransitionContext:
    """Everything next_state needs to know about the caller and the request"""
    caller_id: int
    caller_role: str
    creator_role: str = ""
    assigned_technician_id: Optional[int] = None
    approval_records: Tuple[ApprovalRecord, ...] = ()
    has_open_session: bool = False


@dataclass(frozen=True)
class Transition:
    new_status: str
    effects: Tuple[str, ...]
    approval_stage: Optional[str] = None


def _require_assigned_technician(context: TransitionContext, operation: str):
    if context.assigned_technician_id is None or context.caller_id != context.assigned_technician_id:
        raise PermissionDenied(f"Only the assigned technician may {operation.replace('_', ' ')}")


def _require_assignment_privilege(context: TransitionContext, operation: str):
    if not roles.can_assign(context.caller_role):
        raise PermissionDenied(f"Role '{context.caller_role}' may not {operation.replace('_', ' ')}")


def next_state(current: Optional[str], operation: str, context: TransitionContext) -> Transition:
    """
    Decide the outcome of ``operation`` on a request in status ``current``.

    Returns the resulting status and the effects to record, or raises
    InvalidTransition / PermissionDenied / SessionAlreadyOpen / NoOpenSession.
    """
    if operation not in ALLOWED_FROM:
        raise InvalidTransition(f"Unknown operation '{operation}'")
    if current in RequestStatus.TERMINAL:
        raise InvalidTransition(f"Request is {current}; no further transitions are accepted", field="status")
    if current not in ALLOWED_FROM[operation]:
        raise InvalidTransition(f"Cannot {operation.replace('_', ' ')} a request in status {current}", field="status")

    if operation == Operation.SUBMIT:
        if not roles.can_submit(context.caller_role):
            raise PermissionDenied(f"Role '{context.caller_role}' may not submit service requests")
        return Transition(RequestStatus.PENDING_APPROVAL, ())

    if operation in (Operation.APPROVE, Operation.REJECT):
        records = list(context.approval_records)
        stage = approval_gate.outstanding_stage(context.creator_role, records)
        if not approval_gate.can_approve(context.creator_role, context.caller_role, records):
            if (
                operation == Operation.APPROVE
                and stage == ApprovalStage.SALES
                and context.caller_role in roles.SERVICE_APPROVERS
            ):
                raise AwaitingSalesApproval("Request is awaiting sales approval before service approval")
            raise PermissionDenied(
                f"Role '{context.caller_role}' may not {operation} at the {stage.lower()} approval stage"
            )
        if operation == Operation.REJECT:
            return Transition(RequestStatus.REJECTED, (Effect.APPEND_APPROVAL,), stage)
        new_status = RequestStatus.APPROVED if approval_gate.is_final_approval(stage) else RequestStatus.PENDING_APPROVAL
        return Transition(new_status, (Effect.APPEND_APPROVAL,), stage)

    if operation == Operation.ASSIGN:
        _require_assignment_privilege(context, operation)
        return Transition(RequestStatus.ASSIGNED, (Effect.APPEND_ASSIGNMENT,))

    if operation == Operation.REASSIGN:
        _require_assignment_privilege(context, operation)
        effects = (Effect.CLOSE_SESSION_ADMIN,) if context.has_open_session else ()
        return Transition(current, effects + (Effect.APPEND_ASSIGNMENT,))

    if operation == Operation.REASSIGN_FOR_REWORK:
        _require_assignment_privilege(context, operation)
        return Transition(RequestStatus.ASSIGNED, (Effect.APPEND_ASSIGNMENT,))

    if operation == Operation.START_WORK:
        _require_assigned_technician(context, operation)
        if context.has_open_session:
            raise SessionAlreadyOpen("A work session is already open for this request", field="request_id")
        return Transition(RequestStatus.IN_PROGRESS, (Effect.OPEN_SESSION,))

    if operation == Operation.STOP_WORK:
        _require_assigned_technician(context, operation)
        if not context.has_open_session:
            raise NoOpenSession("No open work session for this request", field="request_id")
        return Transition(RequestStatus.WORK_COMPLETED, (Effect.CLOSE_SESSION,))

    if operation == Operation.CONSUME_STOCK:
        if context.caller_id != context.assigned_technician_id:
            _require_assignment_privilege(context, operation)
        return Transition(current, (Effect.CONSUME_STOCK,))

    # ACKNOWLEDGE_COMPLETION
    _require_assignment_privilege(context, operation)
    return Transition(RequestStatus.COMPLETED, (Effect.APPEND_COMPLETION,))


# =============================================================================
# Request number generation
# =============================================================================

def generate_request_number(db: Session) -> str:
    """
    Generate unique request number in format: SR-YYYY-NNNNN
    Example: SR-2026-00001
    """
    year = datetime.now().year
    prefix = f"SR-{year}-"

    last_request = db.query(ServiceRequest).filter(
        ServiceRequest.request_number.like(f"{prefix}%")
    ).order_by(ServiceRequest.id.desc()).first()

    if last_request:
        try:
            new_num = int(last_request.request_number.split("-")[-1]) + 1
        except (ValueError, IndexError):
            new_num = 1
    else:
        new_num = 1

    return f"{prefix}{new_num:05d}"


# =============================================================================
# Orchestration
# =============================================================================

class RequestLifecycle:
    """Drives one caller's operations against service requests"""

    def __init__(
        self,
        db: Session,
        actor: User,
        config: Optional[Settings] = None,
        clock: Callable[[], datetime] = datetime.utcnow
    ):
        self.db = db
        self.actor = actor
        self.config = config or default_settings
        self.tracker = WorkSessionTracker(db, clock)
        self.assignments = AssignmentManager(db, actor, self.tracker, self.config)
        self.ledger = StockLedger(db, actor)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _load(self, request_id: int, lock: bool = True) -> ServiceRequest:
        query = self.db.query(ServiceRequest).filter(ServiceRequest.id == request_id)
        if lock:
            query = query.with_for_update()
        request = query.first()
        if not request:
            raise NotFound(f"Service request {request_id} not found", field="request_id")
        return request

    def _context(self, request: ServiceRequest) -> TransitionContext:
        return TransitionContext(
            caller_id=self.actor.id,
            caller_role=self.actor.role,
            creator_role=request.created_by_role,
            assigned_technician_id=request.assigned_technician_id,
            approval_records=tuple(audit_trail.approvals_for(self.db, request.id)),
            has_open_session=self.tracker.open_session(request.id) is not None
        )

    def _transition(self, request: ServiceRequest, operation: str) -> Transition:
        transition = next_state(request.status, operation, self._context(request))
        previous = request.status
        request.status = transition.new_status
        # Always write the row so the version check catches concurrent writers
        request.updated_at = datetime.utcnow()
        logger.info(
            f"{request.request_number}: {operation} by {self.actor.email} "
            f"({previous} -> {transition.new_status})"
        )
        return transition

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, request_id: int) -> ServiceRequest:
        return self._load(request_id, lock=False)

    def list_requests(
        self,
        status: Optional[str] = None,
        region_id: Optional[int] = None,
        technician_id: Optional[int] = None
    ) -> List[ServiceRequest]:
        query = self.db.query(ServiceRequest)
        if status:
            query = query.filter(ServiceRequest.status == status)
        if region_id is not None:
            query = query.filter(ServiceRequest.region_id == region_id)
        if technician_id is not None:
            query = query.filter(ServiceRequest.assigned_technician_id == technician_id)
        return query.order_by(ServiceRequest.id.desc()).all()

    def history(self, request_id: int) -> Dict[str, list]:
        self._load(request_id, lock=False)
        return audit_trail.request_history(self.db, request_id)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def submit(
        self,
        type: str,
        customer_id: int,
        region_id: int,
        description: Optional[str] = None,
        priority: str = "NORMAL",
        resubmitted_from_id: Optional[int] = None
    ) -> ServiceRequest:
        with atomic(self.db, Operation.SUBMIT):
            if type not in RequestType.ALL:
                raise InvalidField(f"Unknown request type '{type}'", field="type")
            if not self.db.query(Customer).filter(Customer.id == customer_id).first():
                raise NotFound(f"Customer {customer_id} not found", field="customer_id")
            if not self.db.query(Region).filter(Region.id == region_id).first():
                raise NotFound(f"Region {region_id} not found", field="region_id")

            context = TransitionContext(caller_id=self.actor.id, caller_role=self.actor.role)
            transition = next_state(None, Operation.SUBMIT, context)

            request = ServiceRequest(
                request_number=generate_request_number(self.db),
                type=type,
                status=transition.new_status,
                priority=priority,
                description=description,
                customer_id=customer_id,
                region_id=region_id,
                created_by=self.actor.id,
                created_by_role=self.actor.role,
                resubmitted_from_id=resubmitted_from_id
            )
            self.db.add(request)
            self.db.flush()
            logger.info(f"{request.request_number} submitted by {self.actor.email} ({self.actor.role})")
        return request

    def resubmit(self, request_id: int) -> ServiceRequest:
        """Open a new request from a rejected one; the rejected request stays terminal"""
        original = self._load(request_id, lock=False)
        if not self.config.allow_resubmit_rejected:
            raise InvalidTransition("Rejected requests are terminal and cannot be resubmitted", field="status")
        if original.status != RequestStatus.REJECTED:
            raise InvalidTransition(f"Only REJECTED requests can be resubmitted, not {original.status}", field="status")
        return self.submit(
            type=original.type,
            customer_id=original.customer_id,
            region_id=original.region_id,
            description=original.description,
            priority=original.priority,
            resubmitted_from_id=original.id
        )

    def approve(self, request_id: int, comments: Optional[str] = None) -> ServiceRequest:
        with atomic(self.db, Operation.APPROVE):
            request = self._load(request_id)
            transition = self._transition(request, Operation.APPROVE)
            audit_trail.log_approval(
                self.db, request, self.actor,
                stage=transition.approval_stage,
                outcome=ApprovalOutcome.APPROVED,
                comments=comments
            )
            if transition.new_status == RequestStatus.APPROVED:
                request.approved_by = self.actor.id
        return request

    def reject(self, request_id: int, comments: str) -> ServiceRequest:
        with atomic(self.db, Operation.REJECT):
            if not comments or not comments.strip():
                raise InvalidReason("Comments are required to reject a request", field="comments")
            request = self._load(request_id)
            transition = self._transition(request, Operation.REJECT)
            audit_trail.log_approval(
                self.db, request, self.actor,
                stage=transition.approval_stage,
                outcome=ApprovalOutcome.REJECTED,
                comments=comments.strip()
            )
        return request

    def assign(self, request_id: int, technician_id: Optional[int] = None, auto: bool = False) -> ServiceRequest:
        with atomic(self.db, Operation.ASSIGN):
            request = self._load(request_id)
            self._transition(request, Operation.ASSIGN)
            if not auto and technician_id is None:
                raise IneligibleTechnician("A technician is required for manual assignment", field="technician_id")
            self.assignments.assign(request, None if auto else technician_id)
        return request

    def reassign(
        self,
        request_id: int,
        new_technician_id: int,
        reason: Optional[str],
        note: Optional[str] = None,
        allow_same: bool = False
    ) -> ServiceRequest:
        with atomic(self.db, Operation.REASSIGN):
            request = self._load(request_id)
            transition = self._transition(request, Operation.REASSIGN)
            self.assignments.reassign(
                request, new_technician_id, reason, note,
                allow_same=allow_same,
                close_open_session=Effect.CLOSE_SESSION_ADMIN in transition.effects
            )
        return request

    def reassign_for_rework(
        self,
        request_id: int,
        new_technician_id: int,
        reason: Optional[str],
        note: Optional[str] = None
    ) -> ServiceRequest:
        with atomic(self.db, Operation.REASSIGN_FOR_REWORK):
            request = self._load(request_id)
            transition = self._transition(request, Operation.REASSIGN_FOR_REWORK)
            self.assignments.reassign(
                request, new_technician_id, reason, note,
                allow_same=True,
                mode=AssignmentMode.REWORK,
                close_open_session=Effect.CLOSE_SESSION_ADMIN in transition.effects
            )
            request.post_work_reassign_count = (request.post_work_reassign_count or 0) + 1
        return request

    def start_work(self, request_id: int) -> WorkSession:
        with atomic(self.db, Operation.START_WORK):
            request = self._load(request_id)
            self._transition(request, Operation.START_WORK)
            session = self.tracker.start(request, self.actor.id)
        return session

    def stop_work(self, request_id: int, notes: Optional[str] = None) -> WorkSession:
        with atomic(self.db, Operation.STOP_WORK):
            request = self._load(request_id)
            self._transition(request, Operation.STOP_WORK)
            session = self.tracker.stop(request, self.actor.id, notes)
        return session

    def consume_stock(self, request_id: int, items: List[Dict[str, Any]]) -> List[StockMovement]:
        with atomic(self.db, Operation.CONSUME_STOCK):
            request = self._load(request_id)
            self._transition(request, Operation.CONSUME_STOCK)
            if not roles.can_assign(self.actor.role):
                # Technicians draw from the warehouse or their own van only
                own = (WAREHOUSE, technician_location(self.actor.id))
                if any(normalize_location(line["source"]) not in own for line in items):
                    raise PermissionDenied(
                        "Technicians may only consume from the warehouse or their own stock",
                        field="items"
                    )
            movements = self.ledger.consume(items, request)
        return movements

    def acknowledge_completion(self, request_id: int, comments: Optional[str] = None) -> ServiceRequest:
        with atomic(self.db, Operation.ACKNOWLEDGE_COMPLETION):
            request = self._load(request_id)
            self._transition(request, Operation.ACKNOWLEDGE_COMPLETION)
            now = datetime.utcnow()
            audit_trail.log_approval(
                self.db, request, self.actor,
                stage=ApprovalStage.COMPLETION,
                outcome=ApprovalOutcome.APPROVED,
                comments=comments,
                at=now
            )
            request.acknowledged_by = self.actor.id
            request.acknowledged_at = now
            request.completion_comments = comments
        return request
