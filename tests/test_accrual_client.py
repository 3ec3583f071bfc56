from decimal import Decimal

import pytest
import requests

from common.circuit_breaker import CircuitBreaker, CircuitBreakerConfig, CircuitState
from loyalty_service.accrual_client import AccrualClient, AccrualUnavailable


class StubResponse:
    def __init__(self, status_code, body=None):
        self.status_code = status_code
        self._body = body

    def json(self):
        if isinstance(self._body, Exception):
            raise self._body
        return self._body


class StubSession:
    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def get(self, url, timeout=None):
        self.requests.append((url, timeout))
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    def close(self):
        pass


def make_client(*responses, failure_threshold=5):
    breaker = CircuitBreaker("accrual-test", CircuitBreakerConfig(failure_threshold=failure_threshold, reset_timeout=60),
                             tracked_exceptions=(AccrualUnavailable,))
    session = StubSession(*responses)
    return AccrualClient("http://accrual.local/", timeout=1.5, breaker=breaker, session=session), session


def test_processed_answer_is_parsed():
    client, session = make_client(StubResponse(200, {"order": "12345678903", "status": "PROCESSED", "accrual": 729.98}))
    result = client.get_accrual("12345678903")
    assert result.number == "12345678903"
    assert result.status == "PROCESSED"
    assert result.accrual == Decimal("729.98")
    assert session.requests == [("http://accrual.local/api/orders/12345678903", 1.5)]


def test_answer_without_accrual():
    client, _ = make_client(StubResponse(200, {"order": "12345678903", "status": "REGISTERED"}))
    assert client.get_accrual("12345678903").accrual is None


def test_no_content_means_not_registered_yet():
    client, _ = make_client(StubResponse(204))
    assert client.get_accrual("12345678903") is None


@pytest.mark.parametrize("response", [
    StubResponse(500),
    StubResponse(429),
    StubResponse(200, ValueError("not json")),
    StubResponse(200, {"status": "PROCESSED"}),
    requests.ConnectionError("refused"),
    requests.Timeout("slow"),
])
def test_failures_are_transient(response):
    client, _ = make_client(response)
    with pytest.raises(AccrualUnavailable):
        client.get_accrual("12345678903")


def test_open_circuit_fails_fast():
    client, session = make_client(StubResponse(503), StubResponse(503), failure_threshold=2)
    for _ in range(2):
        with pytest.raises(AccrualUnavailable):
            client.get_accrual("12345678903")
    assert client.breaker.state == CircuitState.OPEN

    with pytest.raises(AccrualUnavailable, match="open"):
        client.get_accrual("12345678903")
    assert len(session.requests) == 2
