"""
Technician assignment: manual and automatic assignment, reassignment with a
reason, and the workload figures the auto mode is based on.
"""
import logging
from typing import Optional, List, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from fieldservice import roles
from fieldservice.config import Settings, settings as default_settings
from fieldservice.exceptions import IneligibleTechnician, NoOpReassignment, NotFound
from fieldservice.models import (
    User, UserStatus, ServiceRequest, RequestStatus, AssignmentEvent, AssignmentMode, WorkSession
)
from fieldservice.reasons import Reason, parse_reason, REASSIGNMENT_REASONS
from fieldservice.services import audit_trail
from fieldservice.services.work_sessions import WorkSessionTracker

logger = logging.getLogger(__name__)


class AssignmentManager:

    def __init__(
        self,
        db: Session,
        actor: User,
        tracker: WorkSessionTracker,
        config: Optional[Settings] = None
    ):
        self.db = db
        self.actor = actor
        self.tracker = tracker
        self.config = config or default_settings

    # ------------------------------------------------------------------
    # Eligibility and workload
    # ------------------------------------------------------------------

    def _technicians(self, region_id: Optional[int] = None):
        query = self.db.query(User).filter(
            User.role == roles.TECHNICIAN,
            User.status == UserStatus.ACTIVE
        )
        if region_id is not None:
            query = query.filter(User.region_id == region_id)
        return query

    def open_assignment_counts(self) -> dict:
        rows = self.db.query(
            ServiceRequest.assigned_technician_id, func.count(ServiceRequest.id)
        ).filter(
            ServiceRequest.status.in_(RequestStatus.OPEN_ASSIGNMENT),
            ServiceRequest.assigned_technician_id.isnot(None)
        ).group_by(ServiceRequest.assigned_technician_id).all()
        return {technician_id: count for technician_id, count in rows}

    def technicians_with_workload(self, region_id: Optional[int] = None) -> List[Tuple[User, int]]:
        """Eligible technicians with their open task count, least loaded first"""
        counts = self.open_assignment_counts()
        technicians = self._technicians(region_id).all()
        ranked = [(t, counts.get(t.id, 0)) for t in technicians]
        # Ties go to the earliest-created technician record
        ranked.sort(key=lambda pair: (pair[1], pair[0].created_at, pair[0].id))
        return ranked

    def validate_technician(self, request: ServiceRequest, technician_id: int) -> User:
        technician = self.db.query(User).filter(User.id == technician_id).first()
        if not technician:
            raise NotFound(f"Technician {technician_id} not found", field="technician_id")
        if technician.role != roles.TECHNICIAN:
            raise IneligibleTechnician(f"{technician.name} is not a technician", field="technician_id")
        if technician.status != UserStatus.ACTIVE:
            raise IneligibleTechnician(f"{technician.name} is {technician.status}", field="technician_id")
        if technician.region_id != request.region_id:
            raise IneligibleTechnician(
                f"{technician.name} does not belong to the request's region",
                field="technician_id"
            )
        return technician

    def pick_technician(self, request: ServiceRequest) -> User:
        ranked = self.technicians_with_workload(request.region_id)
        if not ranked and self.config.auto_assign_any_region:
            logger.warning(f"No technician in region {request.region_id}; widening auto-assign to all regions")
            ranked = self.technicians_with_workload(None)
        if not ranked:
            raise IneligibleTechnician(
                f"No active technician available for auto-assignment of {request.request_number}",
                field="region_id"
            )
        return ranked[0][0]

    # ------------------------------------------------------------------
    # Assignment
    # ------------------------------------------------------------------

    def assign(self, request: ServiceRequest, technician_id: Optional[int] = None) -> AssignmentEvent:
        """Manual when technician_id is given, automatic otherwise"""
        if technician_id is None:
            technician = self.pick_technician(request)
            mode = AssignmentMode.AUTO
        else:
            technician = self.validate_technician(request, technician_id)
            mode = AssignmentMode.MANUAL

        request.assigned_technician_id = technician.id
        event = audit_trail.log_assignment(
            self.db, request,
            previous_technician_id=None,
            new_technician_id=technician.id,
            mode=mode,
            actor=self.actor
        )
        logger.info(f"{request.request_number} assigned to {technician.name} ({mode})")
        return event

    def parse_reason(self, reason_code: Optional[str], note: Optional[str]) -> Optional[Reason]:
        if not reason_code and not self.config.reassign_reason_required:
            return None
        return parse_reason(reason_code, note, REASSIGNMENT_REASONS)

    def reassign(
        self,
        request: ServiceRequest,
        new_technician_id: int,
        reason_code: Optional[str],
        note: Optional[str] = None,
        allow_same: bool = False,
        mode: str = AssignmentMode.REASSIGN,
        close_open_session: bool = False
    ) -> Tuple[AssignmentEvent, Optional[WorkSession]]:
        """
        Hand the request to another technician.

        With close_open_session, the session still open under the previous
        technician is closed and flagged as administratively terminated before
        the new event is written.
        Returns the event and the closed session (or None).
        """
        previous_id = request.assigned_technician_id
        if new_technician_id == previous_id and not allow_same:
            raise NoOpReassignment(
                f"{request.request_number} is already assigned to technician {new_technician_id}",
                field="new_technician_id"
            )

        reason = self.parse_reason(reason_code, note)
        technician = self.validate_technician(request, new_technician_id)

        closed = None
        if close_open_session:
            closed = self.tracker.close_administratively(request, closed_by=self.actor.id)

        request.assigned_technician_id = technician.id
        event = audit_trail.log_assignment(
            self.db, request,
            previous_technician_id=previous_id,
            new_technician_id=technician.id,
            mode=mode,
            actor=self.actor,
            reason_code=reason.code if reason else None,
            reason_note=reason.note if reason else None
        )
        logger.info(
            f"{request.request_number} reassigned {previous_id} -> {technician.id} "
            f"({reason.code if reason else 'no reason'})"
        )
        return event, closed
