import logging
from typing import Optional
import requests
from common.circuit_breaker import CircuitBreaker, CircuitBreakerException, ACCRUAL_CB_CONFIG
from common.schemas import AccrualOrder

logger = logging.getLogger(__name__)

ACCRUAL_PATH = "/api/orders/"

class AccrualUnavailable(Exception):
    """The accrual system could not answer; try again on a later tick."""

class AccrualClient:
    """HTTP client for the external accrual system.

    Every failure mode (connection error, timeout, non-2xx answer, unparseable
    body, open circuit) surfaces as ``AccrualUnavailable``. A 204 answer means
    the accrual system has not registered the order yet and yields ``None``.
    """

    def __init__(self, base_url: str, timeout: float = 5.0,
                 breaker: Optional[CircuitBreaker] = None,
                 session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.breaker = breaker or CircuitBreaker("accrual", ACCRUAL_CB_CONFIG, tracked_exceptions=(AccrualUnavailable,))
        self.session = session or requests.Session()

    def get_accrual(self, number: str) -> Optional[AccrualOrder]:
        try:
            return self.breaker.call(self._fetch, number)
        except CircuitBreakerException as e:
            raise AccrualUnavailable(str(e)) from e

    def _fetch(self, number: str) -> Optional[AccrualOrder]:
        url = f"{self.base_url}{ACCRUAL_PATH}{number}"
        try:
            response = self.session.get(url, timeout=self.timeout)
        except requests.RequestException as e:
            raise AccrualUnavailable(f"GET {url} failed: {e}") from e

        if response.status_code == 204:
            return None
        if response.status_code != 200:
            raise AccrualUnavailable(f"GET {url} answered {response.status_code}")
        try:
            return AccrualOrder.model_validate(response.json())
        except ValueError as e:
            raise AccrualUnavailable(f"GET {url} returned an unreadable body: {e}") from e

    def close(self):
        self.session.close()
