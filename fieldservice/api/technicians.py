from fastapi import APIRouter, Depends
from sqlalchemy import func
from sqlalchemy.orm import Session
from typing import Optional, List

from fieldservice import roles
from fieldservice.api.deps import get_current_user
from fieldservice.database import get_db
from fieldservice.exceptions import PermissionDenied
from fieldservice.models import User, ServiceRequest, RequestStatus, WorkSession, technician_location
from fieldservice.schemas import TechnicianWorkload, TechnicianStats, ServiceRequestListItem, StockBalanceResponse
from fieldservice.services.assignment import AssignmentManager
from fieldservice.services.stock_ledger import StockLedger
from fieldservice.services.work_sessions import WorkSessionTracker

router = APIRouter()


@router.get("/technicians/workload", response_model=List[TechnicianWorkload])
async def technician_workload(
    region_id: Optional[int] = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Active technicians with their open task count, least loaded first"""
    if not roles.can_assign(user.role):
        raise PermissionDenied(f"Role '{user.role}' may not view technician workload")
    manager = AssignmentManager(db, user, WorkSessionTracker(db))
    return [
        {"technician": technician, "open_tasks": count}
        for technician, count in manager.technicians_with_workload(region_id)
    ]


@router.get("/technicians/my-tasks", response_model=List[ServiceRequestListItem])
async def my_tasks(
    include_closed: bool = False,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Requests currently assigned to the calling technician"""
    query = db.query(ServiceRequest).filter(ServiceRequest.assigned_technician_id == user.id)
    if not include_closed:
        query = query.filter(ServiceRequest.status.in_(
            RequestStatus.OPEN_ASSIGNMENT + (RequestStatus.WORK_COMPLETED,)
        ))
    return query.order_by(ServiceRequest.id.desc()).all()


@router.get("/technicians/my-stock", response_model=List[StockBalanceResponse])
async def my_stock(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Field inventory held by the calling technician"""
    return StockLedger(db, user).balances(location=technician_location(user.id))


@router.get("/technicians/my-stats", response_model=TechnicianStats)
async def my_stats(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Task counts by status and total closed work time for the calling technician"""
    counts = dict(
        db.query(ServiceRequest.status, func.count(ServiceRequest.id))
        .filter(ServiceRequest.assigned_technician_id == user.id)
        .group_by(ServiceRequest.status)
        .all()
    )
    total_work_seconds = db.query(func.coalesce(func.sum(WorkSession.duration_seconds), 0)).filter(
        WorkSession.technician_id == user.id,
        WorkSession.end_time.isnot(None)
    ).scalar()

    return {
        "assigned": counts.get(RequestStatus.ASSIGNED, 0),
        "in_progress": counts.get(RequestStatus.IN_PROGRESS, 0),
        "completed": counts.get(RequestStatus.WORK_COMPLETED, 0) + counts.get(RequestStatus.COMPLETED, 0),
        "total_work_seconds": total_work_seconds
    }
