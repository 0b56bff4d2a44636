"""
Stock ledger API endpoints: transfers between the warehouse and technicians,
manual adjustments, balances, movement history and low-stock alerts.
"""
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from typing import Optional, List
import logging

from fieldservice import roles
from fieldservice.api.deps import get_current_user
from fieldservice.database import get_db, atomic
from fieldservice.exceptions import NotFound, PermissionDenied
from fieldservice.models import User, ServiceRequest
from fieldservice.reasons import parse_reason, ADJUSTMENT_REASONS
from fieldservice.schemas import (
    TransferRequest, AdjustmentRequest, StockChangeResponse,
    StockBalanceResponse, StockMovementResponse, LowStockItem
)
from fieldservice.services.stock_ledger import StockLedger

router = APIRouter()
logger = logging.getLogger(__name__)


def _require_stock_privilege(user: User):
    if not roles.can_manage_stock(user.role):
        raise PermissionDenied(f"Role '{user.role}' may not move or adjust stock")


def _change_response(ledger: StockLedger, movement) -> dict:
    touched = [loc for loc in (movement.source_location, movement.destination_location) if loc]
    return {
        "movement": movement,
        "balances": [b for loc in touched for b in ledger.balances(item_id=movement.item_id, location=loc)],
    }


@router.post("/stock/transfers", response_model=StockChangeResponse, status_code=status.HTTP_201_CREATED)
async def transfer_stock(
    data: TransferRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Move stock between the warehouse and a technician (either direction) or between technicians"""
    try:
        _require_stock_privilege(user)
        ledger = StockLedger(db, user)
        with atomic(db, "transfer_stock"):
            request = None
            if data.request_id is not None:
                request = db.query(ServiceRequest).filter(ServiceRequest.id == data.request_id).first()
                if not request:
                    raise NotFound(f"Service request {data.request_id} not found", field="request_id")
            movement = ledger.transfer(
                data.item_id, data.quantity, data.from_location, data.to_location, request=request
            )
        return _change_response(ledger, movement)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error transferring stock: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to transfer stock"
        )


@router.post("/stock/adjustments", response_model=StockChangeResponse, status_code=status.HTTP_201_CREATED)
async def adjust_stock(
    data: AdjustmentRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Record received stock, returns, damage or a correction at one location"""
    try:
        _require_stock_privilege(user)
        ledger = StockLedger(db, user)
        with atomic(db, "adjust_stock"):
            reason = parse_reason(data.reason, data.note, ADJUSTMENT_REASONS)
            movement = ledger.adjust(data.item_id, data.location, data.quantity_change, reason)
        return _change_response(ledger, movement)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error adjusting stock: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to adjust stock"
        )


@router.get("/stock/balances", response_model=List[StockBalanceResponse])
async def list_balances(
    item_id: Optional[int] = None,
    location: Optional[str] = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return StockLedger(db, user).balances(item_id=item_id, location=location)


@router.get("/stock/movements", response_model=List[StockMovementResponse])
async def list_movements(
    request_id: Optional[int] = None,
    item_id: Optional[int] = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return StockLedger(db, user).movements(request_id=request_id, item_id=item_id)


@router.get("/stock/low-stock", response_model=List[LowStockItem])
async def low_stock(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Active items at or below their warehouse threshold"""
    return StockLedger(db, user).low_stock_items()
