"""
Inventory ledger: per-branch stock with atomic deduct/restock.

Stock is the one hot-contended record in the system, so every quantity change
is a single conditional UPDATE evaluated by the database rather than a
read-modify-write in Python.
"""
import uuid
from typing import List, Optional

import structlog
from sqlalchemy import update
from sqlalchemy.orm import Session

from ..auth.principal import ADMIN, WORKER, Principal, require_roles
from ..errors import InsufficientStockError, NotFoundError, ValidationError, ok, service_operation
from ..models.models import Branch, InventoryItem, utcnow
from ..schemas.inventory import InventoryItemCreate, InventoryItemResponse

logger = structlog.get_logger(__name__)


def load_item(db: Session, item_id: uuid.UUID, *, refresh: bool = False) -> InventoryItem:
    item = db.get(InventoryItem, item_id, populate_existing=refresh)
    if not item:
        raise NotFoundError("Inventory item not found", details={"item_id": str(item_id)})
    return item


def _check_amount(amount: float) -> float:
    if amount is None or amount <= 0:
        raise ValidationError("Amount must be greater than zero", details={"amount": amount})
    return float(amount)


def _maybe_flag_low_stock(item: InventoryItem, previous: float) -> None:
    if not item.low_stock_alert_enabled:
        return
    if previous > item.quantity_minimum >= item.quantity_current:
        item.low_stock_alert_sent_at = utcnow()
        logger.warning(
            "inventory_low_stock",
            item_id=str(item.id),
            item_name=item.name,
            quantity_current=item.quantity_current,
            quantity_minimum=item.quantity_minimum,
        )


def deduct_stock(db: Session, item_id: uuid.UUID, amount: float) -> InventoryItem:
    """Decrement stock only if enough is on hand; raises InsufficientStockError otherwise."""
    amount = _check_amount(amount)
    db.flush()
    result = db.execute(
        update(InventoryItem)
        .where(InventoryItem.id == item_id, InventoryItem.quantity_current >= amount)
        .values(quantity_current=InventoryItem.quantity_current - amount, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    item = load_item(db, item_id, refresh=True)
    if result.rowcount == 0:
        raise InsufficientStockError(item.name, amount, item.quantity_current, item_id=str(item.id))
    _maybe_flag_low_stock(item, item.quantity_current + amount)
    logger.info("inventory_deducted", item_id=str(item.id), amount=amount, remaining=item.quantity_current)
    return item


def restock_item(db: Session, item_id: uuid.UUID, amount: float) -> InventoryItem:
    amount = _check_amount(amount)
    db.flush()
    now = utcnow()
    result = db.execute(
        update(InventoryItem)
        .where(InventoryItem.id == item_id)
        .values(quantity_current=InventoryItem.quantity_current + amount, last_restocked=now, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise NotFoundError("Inventory item not found", details={"item_id": str(item_id)})
    item = load_item(db, item_id, refresh=True)
    if item.quantity_current > item.quantity_minimum:
        # Re-arm the alert for the next time stock runs low
        item.low_stock_alert_sent_at = None
    logger.info("inventory_restocked", item_id=str(item.id), amount=amount, quantity_current=item.quantity_current)
    return item


@service_operation("Failed to create inventory item")
def create_item(db: Session, principal: Principal, data: InventoryItemCreate):
    require_roles(principal, ADMIN)
    if not db.get(Branch, data.branch_id):
        raise NotFoundError("Branch not found", details={"branch_id": str(data.branch_id)})
    item = InventoryItem(**data.model_dump())
    db.add(item)
    db.flush()
    return ok(InventoryItemResponse.model_validate(item), "Inventory item created", status_code=201)


@service_operation("Failed to fetch inventory item")
def get_item(db: Session, principal: Principal, item_id: uuid.UUID):
    require_roles(principal, ADMIN, WORKER)
    return ok(InventoryItemResponse.model_validate(load_item(db, item_id)))


@service_operation("Failed to list inventory")
def list_items(
    db: Session,
    principal: Principal,
    branch_id: Optional[uuid.UUID] = None,
    low_stock_only: bool = False,
):
    require_roles(principal, ADMIN, WORKER)
    q = db.query(InventoryItem).filter(InventoryItem.is_active.is_(True))
    if branch_id:
        q = q.filter(InventoryItem.branch_id == branch_id)
    if low_stock_only:
        q = q.filter(InventoryItem.quantity_current <= InventoryItem.quantity_minimum)
    items: List[InventoryItem] = q.order_by(InventoryItem.name.asc()).all()
    return ok([InventoryItemResponse.model_validate(i) for i in items])


@service_operation("Failed to deduct stock")
def deduct(db: Session, principal: Principal, item_id: uuid.UUID, amount: float):
    require_roles(principal, ADMIN)
    item = deduct_stock(db, item_id, amount)
    return ok(InventoryItemResponse.model_validate(item), "Stock deducted")


@service_operation("Failed to restock item")
def restock(db: Session, principal: Principal, item_id: uuid.UUID, amount: float):
    require_roles(principal, ADMIN)
    item = restock_item(db, item_id, amount)
    return ok(InventoryItemResponse.model_validate(item), "Item restocked")
