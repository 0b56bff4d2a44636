"""
Work Session Tracker

One open timed session per request. The application check gives a precise
error; the partial unique index on work_sessions(request_id) WHERE end_time
IS NULL is what holds under concurrent starts, and a violation of it is
reported as SessionAlreadyOpen as well.
"""
import logging
import math
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from fieldservice.exceptions import SessionAlreadyOpen, NoOpenSession, ClockSkew
from fieldservice.models import WorkSession, ServiceRequest

logger = logging.getLogger(__name__)


class WorkSessionTracker:
    """Open, close and administratively terminate work sessions"""

    def __init__(self, db: Session, clock: Callable[[], datetime] = datetime.utcnow):
        self.db = db
        self.clock = clock

    def open_session(self, request_id: int) -> Optional[WorkSession]:
        return self.db.query(WorkSession).filter(
            WorkSession.request_id == request_id,
            WorkSession.end_time.is_(None)
        ).first()

    def start(self, request: ServiceRequest, technician_id: int) -> WorkSession:
        if self.open_session(request.id):
            raise SessionAlreadyOpen(
                f"A work session is already open for {request.request_number}",
                field="request_id"
            )

        session = WorkSession(
            request_id=request.id,
            technician_id=technician_id,
            start_time=self.clock()
        )
        self.db.add(session)
        try:
            # Flush now so a racing start trips the unique index here
            self.db.flush()
        except IntegrityError:
            self.db.rollback()
            raise SessionAlreadyOpen(
                f"A work session is already open for {request.request_number}",
                field="request_id"
            )
        logger.info(f"Work session opened on {request.request_number} by technician {technician_id}")
        return session

    def stop(self, request: ServiceRequest, technician_id: int, notes: Optional[str] = None) -> WorkSession:
        session = self.open_session(request.id)
        if not session:
            raise NoOpenSession(f"No open work session for {request.request_number}", field="request_id")

        self._close(session, self.clock())
        session.notes = notes
        logger.info(
            f"Work session {session.id} closed on {request.request_number} "
            f"after {session.duration_seconds}s"
        )
        return session

    def close_administratively(self, request: ServiceRequest, closed_by: int) -> Optional[WorkSession]:
        """Close whatever session is open (used on reassignment); returns None if nothing was open"""
        session = self.open_session(request.id)
        if not session:
            return None

        self._close(session, self.clock())
        session.administratively_closed = True
        session.closed_by = closed_by
        logger.warning(
            f"Work session {session.id} on {request.request_number} administratively closed by user {closed_by}"
        )
        return session

    def _close(self, session: WorkSession, end_time: datetime):
        duration = end_time - session.start_time
        if duration.total_seconds() <= 0:
            raise ClockSkew(
                f"End time {end_time.isoformat()} is not after start time {session.start_time.isoformat()}",
                field="end_time"
            )
        session.end_time = end_time
        # Round up so a positive sub-second session never records zero
        session.duration_seconds = math.ceil(duration.total_seconds())
