import logging
from contextlib import contextmanager
from decimal import InvalidOperation
from enum import Enum
from typing import List
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker
from common.error_handling import ErrorCodes, ServiceError
from common.retry import retry_call
from common.schemas import BalanceOut, OrderOut, WithdrawalOut, from_cents, to_cents
from common.security import TokenAuthenticator, Unauthorized, hash_password, check_password
from loyalty_service import ledger, orders, users
from loyalty_service.errors import (
    DuplicateLogin, DuplicateOrder, InsufficientFunds, InvalidOrderNumber,
    LedgerConflict, LoginTaken, OrderConflict, ValidationFailed,
)
from loyalty_service.luhn import check_luhn

logger = logging.getLogger(__name__)


class UploadResult(str, Enum):
    ACCEPTED = "ACCEPTED"
    ALREADY_UPLOADED = "ALREADY_UPLOADED"


class LoyaltyService:
    """Operations offered to the HTTP layer.

    Each call runs in its own transaction; nothing is retried implicitly except
    a ledger append that lost a race, which is re-evaluated from a fresh read.
    """

    def __init__(self, session_factory: sessionmaker, authenticator: TokenAuthenticator):
        self.session_factory = session_factory
        self.authenticator = authenticator

    @contextmanager
    def _transaction(self):
        try:
            with self.session_factory() as db, db.begin():
                yield db
        except OperationalError as e:
            raise ServiceError(ErrorCodes.DATABASE_ERROR, "store unavailable", e) from e

    # Users

    def register_user(self, login: str, password: str) -> str:
        _require_credentials(login, password)
        hashed = hash_password(password)
        try:
            with self._transaction() as db:
                user_id = users.add_user(db, login, hashed)
        except DuplicateLogin:
            raise LoginTaken(f"login {login!r} is already taken", field="login")
        logger.info(f"Registered user {user_id} ({login})")
        return self.authenticator.issue(user_id)

    def authenticate_user(self, login: str, password: str) -> str:
        _require_credentials(login, password)
        with self._transaction() as db:
            user = users.get_user(db, login)
        # unknown login and wrong password are indistinguishable to the caller
        if user is None or not check_password(password, user.password_hash):
            raise Unauthorized("wrong login or password")
        return self.authenticator.issue(user.id)

    # Orders

    def upload_order(self, user_id: int, number: str) -> UploadResult:
        if not number:
            raise ValidationFailed("order number is required", field="number")
        if not check_luhn(number):
            raise InvalidOrderNumber(number)
        try:
            with self._transaction() as db:
                orders.add_order(db, user_id, number)
        except DuplicateOrder:
            with self._transaction() as db:
                owner = orders.get_order_owner(db, number)
            if owner == user_id:
                return UploadResult.ALREADY_UPLOADED
            raise OrderConflict("order has already been uploaded by another user", field="number")
        logger.info(f"User {user_id} uploaded order {number}")
        return UploadResult.ACCEPTED

    def list_orders(self, user_id: int) -> List[OrderOut]:
        with self._transaction() as db:
            rows = orders.list_for_user(db, user_id)
        return [
            OrderOut(
                number=o.number,
                status=o.status,
                accrual=from_cents(o.accrual) if o.accrual is not None else None,
                uploaded_at=o.uploaded_at,
            )
            for o in rows
        ]

    # Balance

    def get_balance(self, user_id: int) -> BalanceOut:
        with self._transaction() as db:
            current, withdrawn = ledger.get_balance(db, user_id)
        return BalanceOut(current=from_cents(current), withdrawn=from_cents(withdrawn))

    def withdraw(self, user_id: int, order_number: str, amount) -> None:
        if not order_number:
            raise ValidationFailed("order is required", field="order")
        if not check_luhn(order_number):
            raise InvalidOrderNumber(order_number)
        try:
            cents = to_cents(amount)
        except (InvalidOperation, ValueError, TypeError):
            raise ValidationFailed(f"sum {amount!r} is not a number", field="sum")
        if cents <= 0:
            raise ValidationFailed("sum must be positive", field="sum")

        def debit():
            with self._transaction() as db:
                ledger.append_debit(db, user_id, order_number, cents)

        try:
            retry_call(debit, ledger.LEDGER_RETRY_CONFIG)
        except LedgerConflict:
            # still losing after every re-read: refuse rather than report a conflict
            raise InsufficientFunds("there are not enough points on the account")
        logger.info(f"User {user_id} withdrew {cents} against order {order_number}")

    def list_withdrawals(self, user_id: int) -> List[WithdrawalOut]:
        with self._transaction() as db:
            rows = ledger.list_withdrawals(db, user_id)
        return [
            WithdrawalOut(order=e.order_number, sum=from_cents(-e.amount), processed_at=e.processed_at)
            for e in rows
        ]


def _require_credentials(login: str, password: str):
    if not login:
        raise ValidationFailed("login is required", field="login")
    if not password:
        raise ValidationFailed("password is required", field="password")
