"""
Per-user points ledger.

Each user owns an append-only chain of entries keyed by (user_id, seq). Every
entry carries the running balance and running withdrawn total, so the head of
the chain alone answers balance queries. New entries are appended as
``head.seq + 1``; the primary key turns a lost race into ``LedgerConflict``
instead of a second entry built on a stale head. No in-process locking is
involved, the store arbitrates between writers in any process.

All functions take an open session and leave commit/rollback to the caller.
"""
import logging
from typing import List, Optional, Tuple
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from common.retry import RetryConfig
from loyalty_service.errors import InsufficientFunds, LedgerConflict
from loyalty_service.models import LedgerEntry

logger = logging.getLogger(__name__)

# A conflicting append is re-run from a fresh read of the chain head
LEDGER_RETRY_CONFIG = RetryConfig(
    max_attempts=5,
    base_delay=0.01,
    max_delay=0.2,
    retryable_exceptions=[LedgerConflict],
)

def bootstrap(db: Session, user_id: int) -> None:
    db.add(LedgerEntry(user_id=user_id, seq=0, order_number=None, amount=0, balance=0, withdrawn=0))
    db.flush()

def latest_entry(db: Session, user_id: int) -> Optional[LedgerEntry]:
    stmt = (
        select(LedgerEntry)
        .where(LedgerEntry.user_id == user_id)
        .order_by(LedgerEntry.seq.desc())
        .limit(1)
    )
    return db.execute(stmt).scalar_one_or_none()

def get_balance(db: Session, user_id: int) -> Tuple[int, int]:
    """(current, withdrawn) in hundredths, read from the chain head."""
    head = latest_entry(db, user_id)
    if head is None:
        return 0, 0
    return head.balance, head.withdrawn

def _append(db: Session, head: LedgerEntry, order_number: Optional[str], amount: int, withdrawn_delta: int) -> LedgerEntry:
    entry = LedgerEntry(
        user_id=head.user_id,
        seq=head.seq + 1,
        order_number=order_number,
        amount=amount,
        balance=head.balance + amount,
        withdrawn=head.withdrawn + withdrawn_delta,
    )
    db.add(entry)
    try:
        db.flush()
    except IntegrityError as e:
        raise LedgerConflict(f"ledger head of user {head.user_id} moved past seq {head.seq}") from e
    return entry

def append_credit(db: Session, user_id: int, order_number: str, amount: int) -> LedgerEntry:
    if amount < 0:
        raise ValueError(f"credit amount must not be negative, got {amount}")
    head = latest_entry(db, user_id)
    if head is None:
        raise LookupError(f"user {user_id} has no ledger")
    return _append(db, head, order_number, amount, 0)

def append_debit(db: Session, user_id: int, order_number: str, amount: int) -> LedgerEntry:
    if amount <= 0:
        raise ValueError(f"debit amount must be positive, got {amount}")
    head = latest_entry(db, user_id)
    if head is None or head.balance < amount:
        raise InsufficientFunds("there are not enough points on the account",
                                context={"requested": amount})
    return _append(db, head, order_number, -amount, amount)

def list_withdrawals(db: Session, user_id: int) -> List[LedgerEntry]:
    stmt = (
        select(LedgerEntry)
        .where(LedgerEntry.user_id == user_id, LedgerEntry.amount < 0)
        .order_by(LedgerEntry.seq)
    )
    return list(db.execute(stmt).scalars())
