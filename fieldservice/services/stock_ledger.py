"""
Stock Ledger Service
Tracks consumable stock at the central warehouse and in each technician's
field inventory:
- Transfers between locations (warehouse -> technician, technician -> warehouse)
- All-or-nothing consumption against a service request
- Manual adjustments (received stock, damage, corrections)

Every change appends a StockMovement; StockBalance rows are the running
totals. Balance rows are locked in (item, location) order before they are
read so concurrent writers serialize instead of interleaving.
"""

from sqlalchemy.orm import Session
from datetime import datetime
from typing import Optional, List, Dict, Any, Tuple, Union
import logging

from fieldservice import roles
from fieldservice.exceptions import (
    NotFound, InsufficientStock, DuplicateLineItem, InvalidQuantity, InvalidLocation,
    IneligibleTechnician
)
from fieldservice.models import (
    StockItem, StockBalance, StockMovement, ServiceRequest, User,
    WAREHOUSE, technician_location, location_technician_id
)
from fieldservice.reasons import Reason, USED_IN_SERVICE, TRANSFER

logger = logging.getLogger(__name__)


def normalize_location(source: Union[str, int]) -> str:
    """
    Accept WAREHOUSE, a technician id, or an already-built TECH-<id> key.
    """
    if isinstance(source, int):
        return technician_location(source)
    value = str(source).strip()
    if value.upper() == WAREHOUSE:
        return WAREHOUSE
    if value.isdigit():
        return technician_location(int(value))
    if value.upper().startswith("TECH-") and value[5:].isdigit():
        return technician_location(int(value[5:]))
    raise InvalidLocation(f"Unknown stock location '{source}'", field="source")


class StockLedger:
    """Service for moving stock and recording every movement"""

    def __init__(self, db: Session, actor: User):
        self.db = db
        self.actor = actor

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def _get_item(self, item_id: int) -> StockItem:
        item = self.db.query(StockItem).filter(StockItem.id == item_id).first()
        if not item:
            raise NotFound(f"Stock item {item_id} not found", field="item_id")
        return item

    def _check_location(self, location: str):
        technician_id = location_technician_id(location)
        if technician_id is None:
            return
        technician = self.db.query(User).filter(User.id == technician_id).first()
        if not technician or technician.role != roles.TECHNICIAN:
            raise IneligibleTechnician(f"User {technician_id} is not a technician", field="location")

    def _lock_balance(self, item_id: int, location: str, create: bool = False) -> Optional[StockBalance]:
        balance = self.db.query(StockBalance).filter(
            StockBalance.item_id == item_id,
            StockBalance.location == location
        ).with_for_update().first()

        if not balance and create:
            balance = StockBalance(
                item_id=item_id,
                location=location,
                technician_id=location_technician_id(location),
                quantity=0
            )
            self.db.add(balance)
            self.db.flush()
        return balance

    def _lock_all(self, keys: List[Tuple[int, str]], create: bool = False) -> Dict[Tuple[int, str], StockBalance]:
        return {key: self._lock_balance(key[0], key[1], create=create) for key in sorted(set(keys))}

    def _transaction_number(self, prefix: str) -> str:
        """Generate transaction number in format: PREFIX-YYYYMM-NNNNN"""
        now = datetime.now()
        full_prefix = f"{prefix}-{now.year}{now.month:02d}-"

        last_entry = self.db.query(StockMovement).filter(
            StockMovement.transaction_number.like(f"{full_prefix}%")
        ).order_by(StockMovement.id.desc()).first()

        if last_entry:
            try:
                new_num = int(last_entry.transaction_number.split("-")[-1]) + 1
            except (ValueError, IndexError):
                new_num = 1
        else:
            new_num = 1

        return f"{full_prefix}{new_num:05d}"

    def _record(self, prefix: str, **fields) -> StockMovement:
        movement = StockMovement(
            transaction_number=self._transaction_number(prefix),
            actor_id=self.actor.id,
            created_at=datetime.utcnow(),
            **fields
        )
        self.db.add(movement)
        # Flush so the next transaction number in this batch sees this one
        self.db.flush()
        return movement

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def balance(self, item_id: int, location: Union[str, int]) -> int:
        row = self.db.query(StockBalance).filter(
            StockBalance.item_id == item_id,
            StockBalance.location == normalize_location(location)
        ).first()
        return row.quantity if row else 0

    def total_quantity(self, item_id: int) -> int:
        rows = self.db.query(StockBalance).filter(StockBalance.item_id == item_id).all()
        return sum(r.quantity for r in rows)

    def balances(self, item_id: Optional[int] = None, location: Optional[Union[str, int]] = None) -> List[StockBalance]:
        query = self.db.query(StockBalance)
        if item_id is not None:
            query = query.filter(StockBalance.item_id == item_id)
        if location is not None:
            query = query.filter(StockBalance.location == normalize_location(location))
        return query.order_by(StockBalance.item_id, StockBalance.location).all()

    def movements(self, request_id: Optional[int] = None, item_id: Optional[int] = None) -> List[StockMovement]:
        query = self.db.query(StockMovement)
        if request_id is not None:
            query = query.filter(StockMovement.request_id == request_id)
        if item_id is not None:
            query = query.filter(StockMovement.item_id == item_id)
        return query.order_by(StockMovement.id).all()

    def low_stock_items(self) -> List[Dict[str, Any]]:
        """Active items whose warehouse balance is at or below their threshold"""
        result = []
        for item in self.db.query(StockItem).filter(StockItem.is_active == True).order_by(StockItem.id).all():
            on_hand = self.balance(item.id, WAREHOUSE)
            if on_hand <= (item.low_stock_threshold or 0):
                result.append({"item": item, "warehouse_quantity": on_hand})
        return result

    # ------------------------------------------------------------------
    # Mutations (no commit; the caller owns the transaction)
    # ------------------------------------------------------------------

    def transfer(
        self,
        item_id: int,
        quantity: int,
        from_location: Union[str, int],
        to_location: Union[str, int],
        request: Optional[ServiceRequest] = None
    ) -> StockMovement:
        """Move stock between two locations; total quantity is unchanged"""
        source = normalize_location(from_location)
        destination = normalize_location(to_location)

        if quantity is None or quantity <= 0:
            raise InvalidQuantity("Transfer quantity must be greater than zero", field="quantity")
        if source == destination:
            raise InvalidLocation("Source and destination must differ", field="to")

        item = self._get_item(item_id)
        self._check_location(source)
        self._check_location(destination)

        locked = self._lock_all([(item.id, source), (item.id, destination)], create=True)
        from_balance = locked[(item.id, source)]
        to_balance = locked[(item.id, destination)]

        if from_balance.quantity < quantity:
            raise InsufficientStock(
                f"Insufficient stock of {item.name} at {source}. Available: {from_balance.quantity} {item.unit}",
                field="quantity",
                lines=[{
                    "item_id": item.id,
                    "source": source,
                    "requested": quantity,
                    "available": from_balance.quantity,
                }]
            )

        from_balance.quantity -= quantity
        to_balance.quantity += quantity

        movement = self._record(
            "TRF",
            item_id=item.id,
            quantity=quantity,
            source_location=source,
            destination_location=destination,
            reason=TRANSFER,
            balance_after=to_balance.quantity,
            request_id=request.id if request else None
        )
        logger.info(f"Transferred {quantity} {item.unit} of {item.name} {source} -> {destination} ({movement.transaction_number})")
        return movement

    def consume(self, lines: List[Dict[str, Any]], request: ServiceRequest) -> List[StockMovement]:
        """
        Consume a batch of lines for one service event.

        Each line is ``{"item_id", "quantity", "source"}``. Either every line
        is applied or none: all balances are validated before any is written.
        """
        if not lines:
            raise InvalidQuantity("At least one line is required", field="items")

        normalized = []
        bad_quantities = []
        for index, line in enumerate(lines):
            source = normalize_location(line["source"])
            quantity = line["quantity"]
            if quantity is None or quantity <= 0:
                bad_quantities.append({"index": index, "item_id": line["item_id"], "source": source, "requested": quantity})
            normalized.append((index, line["item_id"], quantity, source))

        if bad_quantities:
            raise InvalidQuantity("Consumed quantities must be greater than zero", field="items", lines=bad_quantities)

        seen = {}
        duplicates = []
        for index, item_id, quantity, source in normalized:
            key = (item_id, source)
            if key in seen:
                duplicates.append({"index": index, "item_id": item_id, "source": source, "first_index": seen[key]})
            else:
                seen[key] = index
        if duplicates:
            raise DuplicateLineItem(
                "The same item and source appear more than once in the batch",
                field="items",
                lines=duplicates
            )

        items = {item_id: self._get_item(item_id) for _, item_id, _, _ in normalized}
        locked = self._lock_all([(item_id, source) for _, item_id, _, source in normalized])

        failing = []
        for index, item_id, quantity, source in normalized:
            balance = locked[(item_id, source)]
            available = balance.quantity if balance else 0
            if available < quantity:
                failing.append({
                    "index": index,
                    "item_id": item_id,
                    "source": source,
                    "requested": quantity,
                    "available": available,
                })
        if failing:
            names = ", ".join(items[line["item_id"]].name for line in failing)
            raise InsufficientStock(f"Insufficient stock for: {names}", field="items", lines=failing)

        movements = []
        for index, item_id, quantity, source in normalized:
            balance = locked[(item_id, source)]
            balance.quantity -= quantity
            movements.append(self._record(
                "ISS",
                item_id=item_id,
                quantity=-quantity,
                source_location=source,
                destination_location=None,
                reason=USED_IN_SERVICE,
                balance_after=balance.quantity,
                request_id=request.id
            ))

        logger.info(f"Consumed {len(movements)} line(s) for {request.request_number}")
        return movements

    def adjust(self, item_id: int, location: Union[str, int], quantity_change: int, reason: Reason) -> StockMovement:
        """Manual correction at one location; cannot take a balance below zero"""
        target = normalize_location(location)
        if not quantity_change:
            raise InvalidQuantity("Quantity change must be non-zero", field="quantity_change")

        item = self._get_item(item_id)
        self._check_location(target)
        balance = self._lock_balance(item.id, target, create=True)

        if balance.quantity + quantity_change < 0:
            raise InsufficientStock(
                f"Adjustment would make {item.name} at {target} negative. Current: {balance.quantity}",
                field="quantity_change",
                lines=[{
                    "item_id": item.id,
                    "source": target,
                    "requested": -quantity_change,
                    "available": balance.quantity,
                }]
            )

        balance.quantity += quantity_change
        movement = self._record(
            "ADJ",
            item_id=item.id,
            quantity=quantity_change,
            source_location=target if quantity_change < 0 else None,
            destination_location=target if quantity_change > 0 else None,
            reason=reason.code,
            reason_note=reason.note,
            balance_after=balance.quantity
        )
        logger.info(f"Adjusted {item.name} at {target} by {quantity_change} ({reason.code})")
        return movement
