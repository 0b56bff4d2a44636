"""
Service request API endpoints: submission, two-tier approval, assignment,
work sessions, stock consumption and completion.
"""
from fastapi import APIRouter, Depends, HTTPException, status, Query
from sqlalchemy.orm import Session
from typing import Optional, List
import logging

from fieldservice.api.deps import get_current_user
from fieldservice.database import get_db
from fieldservice.models import User
from fieldservice.schemas import (
    ServiceRequestCreate, ServiceRequestResponse, ServiceRequestListItem,
    ApproveRequest, RejectRequest, AssignRequest, ReassignRequest, ReworkRequest,
    StopWorkRequest, AcknowledgeRequest, ConsumeStockRequest,
    WorkSessionResponse, StockMovementResponse, RequestHistoryResponse
)
from fieldservice.services.lifecycle import RequestLifecycle

router = APIRouter()
logger = logging.getLogger(__name__)


def _unexpected(action: str, e: Exception) -> HTTPException:
    logger.error(f"Error while trying to {action}: {str(e)}")
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"Failed to {action}"
    )


# ============ Reads ============

@router.get("/service-requests", response_model=List[ServiceRequestListItem])
async def list_service_requests(
    status_filter: Optional[str] = Query(None, alias="status"),
    region_id: Optional[int] = None,
    technician_id: Optional[int] = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """List service requests, newest first"""
    return RequestLifecycle(db, user).list_requests(
        status=status_filter,
        region_id=region_id,
        technician_id=technician_id
    )


@router.get("/service-requests/{request_id}", response_model=ServiceRequestResponse)
async def get_service_request(
    request_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return RequestLifecycle(db, user).get(request_id)


@router.get("/service-requests/{request_id}/history", response_model=RequestHistoryResponse)
async def get_service_request_history(
    request_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Approvals, assignments and work sessions in chronological order"""
    return RequestLifecycle(db, user).history(request_id)


# ============ Submission and approval ============

@router.post("/service-requests", response_model=ServiceRequestResponse, status_code=status.HTTP_201_CREATED)
async def submit_service_request(
    data: ServiceRequestCreate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    try:
        return RequestLifecycle(db, user).submit(
            type=data.type,
            customer_id=data.customer_id,
            region_id=data.region_id,
            description=data.description,
            priority=data.priority
        )
    except HTTPException:
        raise
    except Exception as e:
        raise _unexpected("submit service request", e)


@router.post("/service-requests/{request_id}/resubmit", response_model=ServiceRequestResponse, status_code=status.HTTP_201_CREATED)
async def resubmit_service_request(
    request_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Open a fresh request from a rejected one (when enabled)"""
    try:
        return RequestLifecycle(db, user).resubmit(request_id)
    except HTTPException:
        raise
    except Exception as e:
        raise _unexpected("resubmit service request", e)


@router.post("/service-requests/{request_id}/approve", response_model=ServiceRequestResponse)
async def approve_service_request(
    request_id: int,
    data: ApproveRequest = ApproveRequest(),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    try:
        return RequestLifecycle(db, user).approve(request_id, comments=data.comments)
    except HTTPException:
        raise
    except Exception as e:
        raise _unexpected("approve service request", e)


@router.post("/service-requests/{request_id}/reject", response_model=ServiceRequestResponse)
async def reject_service_request(
    request_id: int,
    data: RejectRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    try:
        return RequestLifecycle(db, user).reject(request_id, comments=data.comments)
    except HTTPException:
        raise
    except Exception as e:
        raise _unexpected("reject service request", e)


# ============ Assignment ============

@router.post("/service-requests/{request_id}/assign", response_model=ServiceRequestResponse)
async def assign_service_request(
    request_id: int,
    data: AssignRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    try:
        return RequestLifecycle(db, user).assign(request_id, technician_id=data.technician_id, auto=data.auto)
    except HTTPException:
        raise
    except Exception as e:
        raise _unexpected("assign service request", e)


@router.post("/service-requests/{request_id}/reassign", response_model=ServiceRequestResponse)
async def reassign_service_request(
    request_id: int,
    data: ReassignRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    try:
        return RequestLifecycle(db, user).reassign(
            request_id,
            new_technician_id=data.new_technician_id,
            reason=data.reason,
            note=data.note,
            allow_same=data.allow_same
        )
    except HTTPException:
        raise
    except Exception as e:
        raise _unexpected("reassign service request", e)


@router.post("/service-requests/{request_id}/rework", response_model=ServiceRequestResponse)
async def rework_service_request(
    request_id: int,
    data: ReworkRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Send completed work back to a technician"""
    try:
        return RequestLifecycle(db, user).reassign_for_rework(
            request_id,
            new_technician_id=data.new_technician_id,
            reason=data.reason,
            note=data.note
        )
    except HTTPException:
        raise
    except Exception as e:
        raise _unexpected("send service request for rework", e)


# ============ Field work ============

@router.post("/service-requests/{request_id}/start-work", response_model=WorkSessionResponse)
async def start_work(
    request_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    try:
        return RequestLifecycle(db, user).start_work(request_id)
    except HTTPException:
        raise
    except Exception as e:
        raise _unexpected("start work", e)


@router.post("/service-requests/{request_id}/stop-work", response_model=WorkSessionResponse)
async def stop_work(
    request_id: int,
    data: StopWorkRequest = StopWorkRequest(),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    try:
        return RequestLifecycle(db, user).stop_work(request_id, notes=data.notes)
    except HTTPException:
        raise
    except Exception as e:
        raise _unexpected("stop work", e)


@router.post("/service-requests/{request_id}/consume-stock", response_model=List[StockMovementResponse])
async def consume_stock(
    request_id: int,
    data: ConsumeStockRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Record parts and products used on the job; all lines or none"""
    try:
        lines = [line.model_dump() for line in data.items]
        return RequestLifecycle(db, user).consume_stock(request_id, lines)
    except HTTPException:
        raise
    except Exception as e:
        raise _unexpected("consume stock", e)


@router.post("/service-requests/{request_id}/acknowledge", response_model=ServiceRequestResponse)
async def acknowledge_completion(
    request_id: int,
    data: AcknowledgeRequest = AcknowledgeRequest(),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    try:
        return RequestLifecycle(db, user).acknowledge_completion(request_id, comments=data.comments)
    except HTTPException:
        raise
    except Exception as e:
        raise _unexpected("acknowledge completion", e)
