"""
Order register: ownership and status of uploaded orders.

Status only moves forward, NEW -> PROCESSING -> INVALID | PROCESSED. Every
transition is a guarded UPDATE that matches only the allowed predecessor
states, so a terminal order is never touched again even when two workers race
on it.
"""
from typing import List, Optional
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from common.schemas import OrderStatus, TERMINAL_STATUSES
from loyalty_service.errors import DuplicateOrder
from loyalty_service.models import Order

_ALLOWED_FROM = {
    OrderStatus.PROCESSING: (OrderStatus.NEW,),
    OrderStatus.INVALID: (OrderStatus.NEW, OrderStatus.PROCESSING),
    OrderStatus.PROCESSED: (OrderStatus.NEW, OrderStatus.PROCESSING),
}

def add_order(db: Session, user_id: int, number: str) -> Order:
    order = Order(number=number, user_id=user_id, status=OrderStatus.NEW)
    db.add(order)
    try:
        db.flush()
    except IntegrityError as e:
        raise DuplicateOrder(number) from e
    return order

def get_order_owner(db: Session, number: str) -> Optional[int]:
    return db.execute(select(Order.user_id).where(Order.number == number)).scalar_one_or_none()

def list_for_user(db: Session, user_id: int) -> List[Order]:
    stmt = select(Order).where(Order.user_id == user_id).order_by(Order.uploaded_at, Order.number)
    return list(db.execute(stmt).scalars())

def list_pending(db: Session) -> List[Order]:
    return list(db.execute(select(Order).where(Order.status.not_in(TERMINAL_STATUSES))).scalars())

def _transition(db: Session, number: str, status: OrderStatus, **values) -> bool:
    stmt = (
        update(Order)
        .where(Order.number == number, Order.status.in_(_ALLOWED_FROM[status]))
        .values(status=status, **values)
        .execution_options(synchronize_session=False)
    )
    return db.execute(stmt).rowcount == 1

def apply_status(db: Session, number: str, status: OrderStatus) -> bool:
    """Status-only transition to PROCESSING or INVALID."""
    if status not in (OrderStatus.PROCESSING, OrderStatus.INVALID):
        raise ValueError(f"{status} cannot be applied without an accrual")
    return _transition(db, number, status)

def apply_accrual(db: Session, number: str, accrual: int) -> bool:
    """Mark PROCESSED with its accrual; the caller credits the ledger in the same transaction."""
    return _transition(db, number, OrderStatus.PROCESSED, accrual=accrual)
