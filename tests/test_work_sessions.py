from datetime import datetime, timedelta

import pytest
from sqlalchemy.exc import IntegrityError

from fieldservice.database import atomic
from fieldservice.exceptions import SessionAlreadyOpen, NoOpenSession, ClockSkew, PermissionDenied, InvalidTransition
from fieldservice.models import RequestStatus, WorkSession
from fieldservice.services.lifecycle import RequestLifecycle


def test_start_and_stop_work(seed, lifecycle, assigned_request):
    tech = lifecycle(seed.users.tech_a)

    session = tech.start_work(assigned_request.id)
    assert session.end_time is None
    assert tech.get(assigned_request.id).status == RequestStatus.IN_PROGRESS

    closed = tech.stop_work(assigned_request.id, notes="Replaced the sediment filter")
    assert closed.id == session.id
    assert closed.duration_seconds == 30 * 60
    assert closed.notes == "Replaced the sediment filter"
    assert closed.administratively_closed is False
    assert tech.get(assigned_request.id).status == RequestStatus.WORK_COMPLETED


def test_double_start_fails(seed, lifecycle, assigned_request):
    tech = lifecycle(seed.users.tech_a)
    tech.start_work(assigned_request.id)

    with pytest.raises(SessionAlreadyOpen):
        tech.start_work(assigned_request.id)

    sessions = tech.history(assigned_request.id)["sessions"]
    assert len(sessions) == 1
    assert sessions[0].end_time is None


def test_only_assigned_technician_works(seed, lifecycle, assigned_request):
    with pytest.raises(PermissionDenied):
        lifecycle(seed.users.tech_b).start_work(assigned_request.id)
    with pytest.raises(PermissionDenied):
        lifecycle(seed.users.service_admin).start_work(assigned_request.id)


def test_stop_before_start(seed, lifecycle, assigned_request):
    with pytest.raises(InvalidTransition):
        lifecycle(seed.users.tech_a).stop_work(assigned_request.id)


def test_stop_without_open_session(seed, lifecycle, in_progress_request):
    lifecycle(seed.users.service_admin).reassign(in_progress_request.id, seed.users.tech_b.id, reason="Administrative")

    with pytest.raises(NoOpenSession):
        lifecycle(seed.users.tech_b).stop_work(in_progress_request.id)


def test_zero_duration_is_clock_skew(seed, db, assigned_request):
    frozen = datetime(2026, 3, 1, 9, 0, 0)
    tech = RequestLifecycle(db, seed.users.tech_a, clock=lambda: frozen)
    tech.start_work(assigned_request.id)

    with pytest.raises(ClockSkew):
        tech.stop_work(assigned_request.id)

    # Nothing was written by the failed stop
    request = tech.get(assigned_request.id)
    assert request.status == RequestStatus.IN_PROGRESS
    assert request.work_sessions[0].end_time is None


def test_open_session_index_rejects_second_open_row(seed, db, assigned_request):
    db.add(WorkSession(request_id=assigned_request.id, technician_id=seed.users.tech_a.id, start_time=datetime(2026, 3, 1, 9)))
    db.commit()

    db.add(WorkSession(request_id=assigned_request.id, technician_id=seed.users.tech_a.id, start_time=datetime(2026, 3, 1, 10)))
    with pytest.raises(IntegrityError):
        db.flush()
    db.rollback()


def test_open_session_index_maps_to_engine_error(seed, db, assigned_request):
    db.add(WorkSession(request_id=assigned_request.id, technician_id=seed.users.tech_a.id, start_time=datetime(2026, 3, 1, 9)))
    db.commit()

    with pytest.raises(SessionAlreadyOpen):
        with atomic(db, "start_work"):
            db.add(WorkSession(
                request_id=assigned_request.id, technician_id=seed.users.tech_a.id, start_time=datetime(2026, 3, 1, 10)
            ))

    assert db.query(WorkSession).count() == 1


def test_closed_sessions_do_not_block_a_new_one(seed, db, assigned_request):
    db.add(WorkSession(
        request_id=assigned_request.id, technician_id=seed.users.tech_a.id,
        start_time=datetime(2026, 3, 1, 9), end_time=datetime(2026, 3, 1, 10), duration_seconds=3600
    ))
    db.add(WorkSession(request_id=assigned_request.id, technician_id=seed.users.tech_a.id, start_time=datetime(2026, 3, 1, 11)))
    db.commit()

    assert db.query(WorkSession).filter(WorkSession.end_time.is_(None)).count() == 1


def test_sub_second_session_records_positive_duration(seed, db, make_clock, assigned_request):
    tech = RequestLifecycle(db, seed.users.tech_a, clock=make_clock(step=timedelta(milliseconds=400)))
    tech.start_work(assigned_request.id)

    closed = tech.stop_work(assigned_request.id)

    assert closed.duration_seconds == 1
    assert tech.history(assigned_request.id)["sessions"][0].duration_seconds > 0
