from sqlalchemy import (
    Column, Integer, String, DateTime, Text, Boolean, ForeignKey,
    UniqueConstraint, CheckConstraint, Index, event, text
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from fieldservice.database import Base
from fieldservice.exceptions import ImmutableRecordError


# ============ Enumerated values ============

class RequestStatus:
    DRAFT = "DRAFT"
    PENDING_APPROVAL = "PENDING_APPROVAL"
    APPROVED = "APPROVED"
    ASSIGNED = "ASSIGNED"
    IN_PROGRESS = "IN_PROGRESS"
    WORK_COMPLETED = "WORK_COMPLETED"
    COMPLETED = "COMPLETED"
    REJECTED = "REJECTED"

    ALL = (DRAFT, PENDING_APPROVAL, APPROVED, ASSIGNED, IN_PROGRESS, WORK_COMPLETED, COMPLETED, REJECTED)
    TERMINAL = (COMPLETED, REJECTED)
    OPEN_ASSIGNMENT = (ASSIGNED, IN_PROGRESS)


class RequestType:
    SERVICE = "SERVICE"
    INSTALLATION = "INSTALLATION"
    RE_INSTALLATION = "RE_INSTALLATION"
    COMPLAINT = "COMPLAINT"
    ENQUIRY = "ENQUIRY"

    ALL = (SERVICE, INSTALLATION, RE_INSTALLATION, COMPLAINT, ENQUIRY)


class ApprovalStage:
    SALES = "SALES"
    SERVICE = "SERVICE"
    COMPLETION = "COMPLETION"


class ApprovalOutcome:
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class AssignmentMode:
    AUTO = "AUTO"
    MANUAL = "MANUAL"
    REASSIGN = "REASSIGN"
    REWORK = "REWORK"


class UserStatus:
    ACTIVE = "ACTIVE"
    BLOCKED = "BLOCKED"
    SUSPENDED = "SUSPENDED"


class ItemKind:
    PRODUCT = "PRODUCT"
    SPARE_PART = "SPARE_PART"


WAREHOUSE = "WAREHOUSE"


def technician_location(technician_id: int) -> str:
    """Ledger location key for a technician's field inventory"""
    return f"TECH-{technician_id}"


def location_technician_id(location: str):
    """Inverse of technician_location; None for the warehouse"""
    if location == WAREHOUSE:
        return None
    return int(location.split("-", 1)[1])


# ============ Master data ============

class Region(Base):
    __tablename__ = "regions"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False, unique=True)
    created_at = Column(DateTime, default=func.now())


class Customer(Base):
    __tablename__ = "customers"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    phone = Column(String, nullable=True)
    address = Column(Text, nullable=True)
    region_id = Column(Integer, ForeignKey("regions.id"), nullable=True)
    created_at = Column(DateTime, default=func.now())

    region = relationship("Region")


class User(Base):
    """Console user; technicians are users holding the Technician role"""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    email = Column(String, unique=True, index=True, nullable=False)
    role = Column(String, nullable=False)  # see fieldservice.roles
    region_id = Column(Integer, ForeignKey("regions.id"), nullable=True)
    status = Column(String, default=UserStatus.ACTIVE)  # ACTIVE, BLOCKED, SUSPENDED
    created_at = Column(DateTime, default=func.now())

    region = relationship("Region")


# ============ Service requests ============

class ServiceRequest(Base):
    """
    Service request aggregate.
    status is written only by RequestLifecycle; version_id guards concurrent writers.
    """
    __tablename__ = "service_requests"

    id = Column(Integer, primary_key=True, index=True)
    request_number = Column(String, nullable=False, unique=True, index=True)  # SR-YYYY-NNNNN
    type = Column(String, nullable=False)  # SERVICE, INSTALLATION, RE_INSTALLATION, COMPLAINT, ENQUIRY
    status = Column(String, nullable=False, default=RequestStatus.DRAFT, index=True)
    priority = Column(String, default="NORMAL")  # HIGH, MEDIUM, NORMAL, LOW
    description = Column(Text, nullable=True)

    customer_id = Column(Integer, ForeignKey("customers.id"), nullable=False)
    region_id = Column(Integer, ForeignKey("regions.id"), nullable=False)

    created_by = Column(Integer, ForeignKey("users.id"), nullable=False)
    created_by_role = Column(String, nullable=False)  # role at submission time
    approved_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    assigned_technician_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)

    # Completion
    completion_comments = Column(Text, nullable=True)
    acknowledged_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    acknowledged_at = Column(DateTime, nullable=True)

    post_work_reassign_count = Column(Integer, default=0)
    resubmitted_from_id = Column(Integer, ForeignKey("service_requests.id"), nullable=True)

    version_id = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    # Relationships
    customer = relationship("Customer")
    region = relationship("Region")
    creator = relationship("User", foreign_keys=[created_by])
    approver = relationship("User", foreign_keys=[approved_by])
    assigned_technician = relationship("User", foreign_keys=[assigned_technician_id])
    acknowledger = relationship("User", foreign_keys=[acknowledged_by])
    approvals = relationship("ApprovalRecord", back_populates="request", order_by="ApprovalRecord.id")
    assignment_events = relationship("AssignmentEvent", back_populates="request", order_by="AssignmentEvent.id")
    work_sessions = relationship("WorkSession", back_populates="request", order_by="WorkSession.id")

    __mapper_args__ = {"version_id_col": version_id}


class ApprovalRecord(Base):
    """Append-only approval/rejection/completion decisions"""
    __tablename__ = "approval_records"

    id = Column(Integer, primary_key=True, index=True)
    request_id = Column(Integer, ForeignKey("service_requests.id"), nullable=False, index=True)
    approver_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    approver_role = Column(String, nullable=False)
    stage = Column(String, nullable=False)  # SALES, SERVICE, COMPLETION
    outcome = Column(String, nullable=False)  # APPROVED, REJECTED
    comments = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=func.now())

    request = relationship("ServiceRequest", back_populates="approvals")
    approver = relationship("User")


class AssignmentEvent(Base):
    """Append-only assignment history; the latest row is the current assignment"""
    __tablename__ = "assignment_events"

    id = Column(Integer, primary_key=True, index=True)
    request_id = Column(Integer, ForeignKey("service_requests.id"), nullable=False, index=True)
    previous_technician_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    new_technician_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    mode = Column(String, nullable=False)  # AUTO, MANUAL, REASSIGN, REWORK
    reason_code = Column(String, nullable=True)
    reason_note = Column(Text, nullable=True)
    actor_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    created_at = Column(DateTime, nullable=False, default=func.now())

    request = relationship("ServiceRequest", back_populates="assignment_events")
    previous_technician = relationship("User", foreign_keys=[previous_technician_id])
    new_technician = relationship("User", foreign_keys=[new_technician_id])
    actor = relationship("User", foreign_keys=[actor_id])


class WorkSession(Base):
    """Timed work interval; at most one open (end_time IS NULL) per request"""
    __tablename__ = "work_sessions"

    id = Column(Integer, primary_key=True, index=True)
    request_id = Column(Integer, ForeignKey("service_requests.id"), nullable=False, index=True)
    technician_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=True)
    duration_seconds = Column(Integer, nullable=True)
    notes = Column(Text, nullable=True)
    administratively_closed = Column(Boolean, default=False)
    closed_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, default=func.now())

    request = relationship("ServiceRequest", back_populates="work_sessions")
    technician = relationship("User", foreign_keys=[technician_id])

    __table_args__ = (
        Index(
            "uq_work_sessions_open_per_request",
            "request_id",
            unique=True,
            sqlite_where=text("end_time IS NULL"),
            postgresql_where=text("end_time IS NULL"),
        ),
    )


# ============ Stock ledger ============

class StockItem(Base):
    """Consumable catalogue entry (finished product or spare part)"""
    __tablename__ = "stock_items"

    id = Column(Integer, primary_key=True, index=True)
    kind = Column(String, nullable=False)  # PRODUCT, SPARE_PART
    name = Column(String, nullable=False)
    sku = Column(String, nullable=True, unique=True)
    unit = Column(String, default="pcs")
    low_stock_threshold = Column(Integer, default=0)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=func.now())

    balances = relationship("StockBalance", back_populates="item")


class StockBalance(Base):
    """
    Current quantity per (item, location).
    Materialized from the movement log; location is WAREHOUSE or TECH-<user id>.
    """
    __tablename__ = "stock_balances"

    id = Column(Integer, primary_key=True, index=True)
    item_id = Column(Integer, ForeignKey("stock_items.id"), nullable=False)
    location = Column(String, nullable=False)
    technician_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    quantity = Column(Integer, nullable=False, default=0)
    version_id = Column(Integer, nullable=False, default=1)
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    item = relationship("StockItem", back_populates="balances")
    technician = relationship("User")

    __table_args__ = (
        UniqueConstraint("item_id", "location", name="uq_stock_balance_item_location"),
        CheckConstraint("quantity >= 0", name="ck_stock_balance_non_negative"),
    )
    __mapper_args__ = {"version_id_col": version_id}


class StockMovement(Base):
    """
    Stock ledger entry - source of truth for balances.
    Quantity is negative for consumption and removals, positive for moves into
    destination_location.
    """
    __tablename__ = "stock_movements"

    id = Column(Integer, primary_key=True, index=True)
    transaction_number = Column(String(50), nullable=False, unique=True, index=True)
    item_id = Column(Integer, ForeignKey("stock_items.id"), nullable=False, index=True)
    quantity = Column(Integer, nullable=False)
    source_location = Column(String, nullable=True)
    destination_location = Column(String, nullable=True)  # NULL when consumed
    reason = Column(String, nullable=False)
    reason_note = Column(Text, nullable=True)
    balance_after = Column(Integer, nullable=True)
    request_id = Column(Integer, ForeignKey("service_requests.id"), nullable=True, index=True)
    actor_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    created_at = Column(DateTime, nullable=False, default=func.now())

    item = relationship("StockItem")
    request = relationship("ServiceRequest")
    actor = relationship("User")


# ============ Immutability guards ============

def _reject_change(mapper, connection, target):
    raise ImmutableRecordError(f"{type(target).__name__} {target.id} is immutable; append a new record instead")


for _model in (ApprovalRecord, AssignmentEvent, StockMovement):
    event.listen(_model, "before_update", _reject_change)
    event.listen(_model, "before_delete", _reject_change)
