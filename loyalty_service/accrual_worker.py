"""
Background reconciliation of uploaded orders against the accrual system.

Every tick reads the orders that are not in a terminal status, asks the
accrual system about each one in turn and applies the answer:

    REGISTERED / unknown / not yet known  -> nothing, asked again next tick
    PROCESSING                            -> status PROCESSING
    INVALID                               -> status INVALID (terminal)
    PROCESSED                             -> status PROCESSED + ledger credit,
                                             one transaction (terminal)

Each order is its own transaction, so a tick abandoned halfway (shutdown,
crash) leaves nothing half-applied and the next tick resumes where it stopped.
"""
import logging
import threading
from typing import Optional
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker
from common.retry import retry_call
from common.schemas import OrderStatus, to_cents
from loyalty_service import ledger, orders
from loyalty_service.accrual_client import AccrualClient, AccrualUnavailable
from loyalty_service.errors import LedgerConflict
from loyalty_service.models import Order

logger = logging.getLogger(__name__)

POLL_INTERVAL = 1.0

# Largest single accrual accepted, in hundredths; running balances stay well inside BIGINT
MAX_ACCRUAL_CENTS = 10**15

class AccrualWorker:
    def __init__(self, client: AccrualClient, session_factory: sessionmaker, interval: float = POLL_INTERVAL):
        self.client = client
        self.session_factory = session_factory
        self.interval = interval
        self._stop = threading.Event()
        self._tick_lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None

    def start(self):
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self.run, name="accrual-worker", daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = None):
        self._stop.set()
        if self._thread:
            self._thread.join(timeout)
            if self._thread.is_alive():
                logger.warning(f"Accrual worker did not stop within {timeout}s")

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run(self):
        logger.info(f"Accrual worker started, polling every {self.interval}s")
        while not self._stop.is_set():
            try:
                self.tick()
            except Exception:
                logger.exception("Accrual tick crashed")
            self._stop.wait(self.interval)
        logger.info("Accrual worker stopped")

    def tick(self) -> int:
        """Run one reconciliation pass; returns the number of orders updated.

        A tick that starts while another is still running returns 0 at once.
        """
        if not self._tick_lock.acquire(blocking=False):
            logger.debug("Previous accrual tick still running, skipping")
            return 0
        try:
            return self._drain_pending()
        finally:
            self._tick_lock.release()

    def _drain_pending(self) -> int:
        try:
            with self.session_factory() as db:
                pending = orders.list_pending(db)
        except SQLAlchemyError as e:
            logger.error(f"Fetching pending orders failed: {e}")
            return 0

        if not pending:
            return 0
        logger.info(f"Processing {len(pending)} pending orders")

        updated = 0
        for order in pending:
            if self._stop.is_set():
                logger.info("Stop requested, leaving the rest for the next run")
                break
            try:
                if self.process_order(order):
                    updated += 1
            except AccrualUnavailable as e:
                logger.warning(f"Accrual lookup for order {order.number} failed: {e}")
            except (SQLAlchemyError, LedgerConflict) as e:
                logger.error(f"Updating order {order.number} failed: {e}")
            except Exception:
                logger.exception(f"Unexpected failure on order {order.number}, skipping it this run")
        return updated

    def process_order(self, order: Order) -> bool:
        result = self.client.get_accrual(order.number)
        if result is None:
            return False

        status = result.status.upper()
        if status == OrderStatus.PROCESSING.value:
            if order.status == OrderStatus.PROCESSING:
                return False
            return self._apply_status(order, OrderStatus.PROCESSING)
        if status == OrderStatus.INVALID.value:
            return self._apply_status(order, OrderStatus.INVALID)
        if status == OrderStatus.PROCESSED.value:
            accrual = _accrual_cents(result.accrual)
            if accrual is None:
                logger.warning(f"Order {order.number} reported PROCESSED with accrual {result.accrual!r}, ignoring")
                return False
            return self._apply_accrual(order, accrual)
        # REGISTERED and anything unrecognised
        return False

    def _apply_status(self, order: Order, status: OrderStatus) -> bool:
        with self.session_factory() as db, db.begin():
            changed = orders.apply_status(db, order.number, status)
        if changed:
            logger.info(f"Order {order.number} -> {status.value}")
        return changed

    def _apply_accrual(self, order: Order, accrual: int) -> bool:
        def settle() -> bool:
            with self.session_factory() as db, db.begin():
                if not orders.apply_accrual(db, order.number, accrual):
                    return False
                ledger.append_credit(db, order.user_id, order.number, accrual)
                return True

        changed = retry_call(settle, ledger.LEDGER_RETRY_CONFIG)
        if changed:
            logger.info(f"Order {order.number} -> PROCESSED, credited {accrual} to user {order.user_id}")
        return changed

def _accrual_cents(accrual) -> Optional[int]:
    """Accrual in hundredths, or None when it is missing or out of range."""
    if accrual is None:
        return None
    try:
        cents = to_cents(accrual)
    except ArithmeticError:
        return None
    if cents < 0 or cents > MAX_ACCRUAL_CENTS:
        return None
    return cents
