from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional, List, Union


# ============ Users / technicians ============

class UserSummary(BaseModel):
    id: int
    name: str
    email: str
    role: str
    region_id: Optional[int] = None
    status: str

    class Config:
        from_attributes = True


class TechnicianWorkload(BaseModel):
    technician: UserSummary
    open_tasks: int


class TechnicianStats(BaseModel):
    assigned: int = 0
    in_progress: int = 0
    completed: int = 0
    total_work_seconds: int = 0


# ============ Audit records ============

class ApprovalRecordResponse(BaseModel):
    id: int
    approver_id: int
    approver_role: str
    stage: str
    outcome: str
    comments: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class AssignmentEventResponse(BaseModel):
    id: int
    previous_technician_id: Optional[int] = None
    new_technician_id: int
    mode: str
    reason_code: Optional[str] = None
    reason_note: Optional[str] = None
    actor_id: int
    created_at: datetime

    class Config:
        from_attributes = True


class WorkSessionResponse(BaseModel):
    id: int
    request_id: int
    technician_id: int
    start_time: datetime
    end_time: Optional[datetime] = None
    duration_seconds: Optional[int] = None
    notes: Optional[str] = None
    administratively_closed: bool = False
    closed_by: Optional[int] = None

    class Config:
        from_attributes = True


class RequestHistoryResponse(BaseModel):
    approvals: List[ApprovalRecordResponse] = []
    assignments: List[AssignmentEventResponse] = []
    sessions: List[WorkSessionResponse] = []


# ============ Service requests ============

class ServiceRequestCreate(BaseModel):
    type: str
    customer_id: int
    region_id: int
    description: Optional[str] = None
    priority: str = "NORMAL"


class ApproveRequest(BaseModel):
    comments: Optional[str] = None


class RejectRequest(BaseModel):
    comments: str


class AssignRequest(BaseModel):
    technician_id: Optional[int] = None
    auto: bool = False


class ReassignRequest(BaseModel):
    new_technician_id: int
    reason: Optional[str] = None
    note: Optional[str] = None
    allow_same: bool = False


class ReworkRequest(BaseModel):
    new_technician_id: int
    reason: Optional[str] = None
    note: Optional[str] = None


class StopWorkRequest(BaseModel):
    notes: Optional[str] = None


class AcknowledgeRequest(BaseModel):
    comments: Optional[str] = None


class ServiceRequestResponse(BaseModel):
    id: int
    request_number: str
    type: str
    status: str
    priority: Optional[str] = None
    description: Optional[str] = None
    customer_id: int
    region_id: int
    created_by: int
    created_by_role: str
    approved_by: Optional[int] = None
    assigned_technician_id: Optional[int] = None
    completion_comments: Optional[str] = None
    acknowledged_by: Optional[int] = None
    acknowledged_at: Optional[datetime] = None
    post_work_reassign_count: int = 0
    resubmitted_from_id: Optional[int] = None
    version_id: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    approvals: List[ApprovalRecordResponse] = []
    assignment_events: List[AssignmentEventResponse] = []
    work_sessions: List[WorkSessionResponse] = []

    class Config:
        from_attributes = True


class ServiceRequestListItem(BaseModel):
    id: int
    request_number: str
    type: str
    status: str
    priority: Optional[str] = None
    customer_id: int
    region_id: int
    assigned_technician_id: Optional[int] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# ============ Stock ============

class ConsumptionLine(BaseModel):
    item_id: int
    quantity: int
    # WAREHOUSE, a technician id, or TECH-<id>
    source: Union[int, str]


class ConsumeStockRequest(BaseModel):
    items: List[ConsumptionLine] = Field(default_factory=list)


class TransferRequest(BaseModel):
    item_id: int
    quantity: int
    from_location: Union[int, str] = Field(alias="from")
    to_location: Union[int, str] = Field(alias="to")
    request_id: Optional[int] = None

    class Config:
        populate_by_name = True


class AdjustmentRequest(BaseModel):
    item_id: int
    location: Union[int, str]
    quantity_change: int
    reason: str
    note: Optional[str] = None


class StockMovementResponse(BaseModel):
    id: int
    transaction_number: str
    item_id: int
    quantity: int
    source_location: Optional[str] = None
    destination_location: Optional[str] = None
    reason: str
    reason_note: Optional[str] = None
    balance_after: Optional[int] = None
    request_id: Optional[int] = None
    actor_id: int
    created_at: datetime

    class Config:
        from_attributes = True


class StockBalanceResponse(BaseModel):
    item_id: int
    location: str
    technician_id: Optional[int] = None
    quantity: int
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class StockChangeResponse(BaseModel):
    """A movement together with the balances it left behind"""
    movement: StockMovementResponse
    balances: List[StockBalanceResponse]


class StockItemResponse(BaseModel):
    id: int
    kind: str
    name: str
    sku: Optional[str] = None
    unit: Optional[str] = None
    low_stock_threshold: Optional[int] = 0

    class Config:
        from_attributes = True


class LowStockItem(BaseModel):
    item: StockItemResponse
    warehouse_quantity: int
