import pytest
from common.security import TokenAuthenticator
from loyalty_service.db import make_engine, make_session_factory
from loyalty_service.models import Base
from loyalty_service.service import LoyaltyService


class FakeAccrualClient:
    """Stands in for the accrual system; answers are looked up by order number.

    An answer may be an AccrualOrder, None (not registered yet) or an exception
    instance to raise.
    """

    def __init__(self, answers=None):
        self.answers = dict(answers or {})
        self.calls = []

    def get_accrual(self, number):
        self.calls.append(number)
        answer = self.answers.get(number)
        if isinstance(answer, Exception):
            raise answer
        return answer

    def close(self):
        pass


@pytest.fixture
def db_engine(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path / 'loyalty.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return make_session_factory(db_engine)


@pytest.fixture
def authenticator():
    return TokenAuthenticator(b"test-secret", ttl_seconds=3600, issuer="loyalty-test")


@pytest.fixture
def service(session_factory, authenticator):
    return LoyaltyService(session_factory, authenticator)


@pytest.fixture
def fake_accrual():
    return FakeAccrualClient()


@pytest.fixture
def register(service, authenticator):
    """Register a user and return its id."""
    def _register(login, password="secret"):
        return authenticator.verify(service.register_user(login, password))
    return _register
