from decimal import Decimal

import pytest
from sqlalchemy import func, select

from common.schemas import AccrualOrder, OrderStatus
from common.security import Unauthorized
from loyalty_service.accrual_worker import AccrualWorker
from loyalty_service.errors import (
    InsufficientFunds, InvalidOrderNumber, LoginTaken, OrderConflict, ValidationFailed,
)
from loyalty_service.models import Order
from loyalty_service.service import UploadResult

ORDER = "12345678903"


class TestUsers:

    def test_register_then_login(self, service, authenticator):
        token = service.register_user("alice", "secret")
        uid = authenticator.verify(token)
        assert authenticator.verify(service.authenticate_user("alice", "secret")) == uid

    def test_duplicate_login(self, service):
        service.register_user("alice", "secret")
        with pytest.raises(LoginTaken):
            service.register_user("alice", "other")

    def test_unknown_login_and_wrong_password_look_the_same(self, service):
        service.register_user("alice", "secret")
        with pytest.raises(Unauthorized) as unknown:
            service.authenticate_user("bob", "secret")
        with pytest.raises(Unauthorized) as wrong:
            service.authenticate_user("alice", "nope")
        assert str(unknown.value) == str(wrong.value)

    @pytest.mark.parametrize("login, password", [("", "secret"), ("alice", "")])
    def test_empty_credentials(self, service, login, password):
        with pytest.raises(ValidationFailed):
            service.register_user(login, password)

    def test_new_user_balance_is_zero(self, service, register):
        uid = register("alice")
        balance = service.get_balance(uid)
        assert (balance.current, balance.withdrawn) == (0, 0)


class TestOrders:

    def test_upload_and_list(self, service, register):
        uid = register("alice")
        assert service.upload_order(uid, ORDER) == UploadResult.ACCEPTED
        orders = service.list_orders(uid)
        assert [(o.number, o.status, o.accrual) for o in orders] == [(ORDER, OrderStatus.NEW, None)]
        assert orders[0].uploaded_at.tzinfo is not None

    def test_reupload_by_owner_is_noop(self, service, register):
        uid = register("alice")
        service.upload_order(uid, ORDER)
        assert service.upload_order(uid, ORDER) == UploadResult.ALREADY_UPLOADED
        assert len(service.list_orders(uid)) == 1

    def test_upload_by_other_user_conflicts(self, service, register):
        alice, bob = register("alice"), register("bob")
        service.upload_order(alice, ORDER)
        with pytest.raises(OrderConflict):
            service.upload_order(bob, ORDER)
        assert service.list_orders(bob) == []

    def test_invalid_number_creates_nothing(self, service, register, session_factory):
        uid = register("alice")
        with pytest.raises(InvalidOrderNumber):
            service.upload_order(uid, "1234567")
        with session_factory() as db:
            assert db.execute(select(func.count()).select_from(Order)).scalar_one() == 0

    def test_empty_number(self, service, register):
        uid = register("alice")
        with pytest.raises(ValidationFailed):
            service.upload_order(uid, "")

    def test_orders_listed_by_upload_time(self, service, register):
        uid = register("alice")
        numbers = ["79927398713", ORDER, "2377225624"]
        for number in numbers:
            service.upload_order(uid, number)
        assert [o.number for o in service.list_orders(uid)] == numbers


class TestWithdraw:

    def test_invalid_order_number(self, service, register):
        uid = register("alice")
        with pytest.raises(InvalidOrderNumber):
            service.withdraw(uid, "1234567", 1)

    @pytest.mark.parametrize("amount", [0, -5, "abc", Decimal("0.001")])
    def test_bad_amount(self, service, register, amount):
        uid = register("alice")
        with pytest.raises(ValidationFailed):
            service.withdraw(uid, ORDER, amount)

    def test_empty_balance(self, service, register):
        uid = register("alice")
        with pytest.raises(InsufficientFunds):
            service.withdraw(uid, ORDER, 1)
        assert service.list_withdrawals(uid) == []


def test_alice_end_to_end(service, register, session_factory, fake_accrual):
    alice = register("alice")
    bob = register("bob")
    assert service.upload_order(alice, ORDER) == UploadResult.ACCEPTED
    assert service.upload_order(alice, ORDER) == UploadResult.ALREADY_UPLOADED
    with pytest.raises(OrderConflict):
        service.upload_order(bob, ORDER)

    fake_accrual.answers[ORDER] = AccrualOrder(order=ORDER, status="PROCESSED", accrual=Decimal("500"))
    AccrualWorker(fake_accrual, session_factory).tick()

    [order] = service.list_orders(alice)
    assert order.status == OrderStatus.PROCESSED
    assert order.accrual == 500
    balance = service.get_balance(alice)
    assert (balance.current, balance.withdrawn) == (500, 0)

    with pytest.raises(InsufficientFunds):
        service.withdraw(alice, "2377225624", 751)
    service.withdraw(alice, "2377225624", 300)

    balance = service.get_balance(alice)
    assert (balance.current, balance.withdrawn) == (200, 300)
    [withdrawal] = service.list_withdrawals(alice)
    assert (withdrawal.order, withdrawal.sum) == ("2377225624", 300)


def test_fractional_points(service, register, session_factory, fake_accrual):
    uid = register("alice")
    service.upload_order(uid, ORDER)
    fake_accrual.answers[ORDER] = AccrualOrder(order=ORDER, status="PROCESSED", accrual=Decimal("729.98"))
    AccrualWorker(fake_accrual, session_factory).tick()

    service.withdraw(uid, "2377225624", Decimal("0.98"))
    balance = service.get_balance(uid)
    assert balance.current == pytest.approx(729.0)
    assert balance.withdrawn == pytest.approx(0.98)
