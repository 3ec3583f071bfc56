"""
Circuit Breaker pattern implementation for preventing cascade failures
"""
import threading
import time
from enum import Enum
from typing import Callable, Any
from dataclasses import dataclass
import logging

logger = logging.getLogger(__name__)

class CircuitState(Enum):
    CLOSED = "CLOSED"      # Normal operation
    OPEN = "OPEN"          # Circuit is open, failing fast
    HALF_OPEN = "HALF_OPEN"  # Trying to recover

@dataclass
class CircuitBreakerConfig:
    """Configuration for circuit breaker"""
    failure_threshold: int = 5  # Number of failures before opening
    reset_timeout: float = 60.0  # Seconds to wait before trying half-open
    success_threshold: int = 1   # Successes needed to close from half-open

class CircuitBreakerException(Exception):
    """Raised when circuit breaker is open"""
    pass

class CircuitBreaker:
    """Circuit breaker implementation.

    Only exceptions listed in ``tracked_exceptions`` count as failures; the
    call itself is responsible for its own timeout.
    """

    def __init__(self, name: str, config: CircuitBreakerConfig, tracked_exceptions: tuple = (Exception,)):
        self.name = name
        self.config = config
        self.tracked_exceptions = tracked_exceptions
        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.success_count = 0
        self.last_failure_time = 0.0
        self.last_state_change = time.time()
        self._lock = threading.Lock()

    def _should_attempt_reset(self) -> bool:
        """Check if we should try to reset the circuit"""
        return (self.state == CircuitState.OPEN and
                time.time() - self.last_failure_time >= self.config.reset_timeout)

    def _record_success(self):
        """Record a successful operation"""
        with self._lock:
            if self.state == CircuitState.HALF_OPEN:
                self.success_count += 1
                if self.success_count >= self.config.success_threshold:
                    self.state = CircuitState.CLOSED
                    self.failure_count = 0
                    self.success_count = 0
                    self.last_state_change = time.time()
                    logger.info(f"Circuit breaker {self.name} closed after successful recovery")
            elif self.state == CircuitState.CLOSED:
                self.failure_count = 0

    def _record_failure(self):
        """Record a failed operation"""
        with self._lock:
            self.failure_count += 1
            self.last_failure_time = time.time()

            if self.state == CircuitState.CLOSED:
                if self.failure_count >= self.config.failure_threshold:
                    self.state = CircuitState.OPEN
                    self.last_state_change = time.time()
                    logger.warning(f"Circuit breaker {self.name} opened after {self.failure_count} failures")
            elif self.state == CircuitState.HALF_OPEN:
                self.state = CircuitState.OPEN
                self.success_count = 0
                self.last_state_change = time.time()
                logger.warning(f"Circuit breaker {self.name} re-opened during half-open state")

    def call(self, func: Callable, *args, **kwargs) -> Any:
        """Execute function with circuit breaker protection"""
        with self._lock:
            if self._should_attempt_reset():
                self.state = CircuitState.HALF_OPEN
                self.success_count = 0
                self.last_state_change = time.time()
                logger.info(f"Circuit breaker {self.name} entering half-open state")

            if self.state == CircuitState.OPEN:
                raise CircuitBreakerException(f"Circuit breaker {self.name} is open")

        try:
            result = func(*args, **kwargs)
        except self.tracked_exceptions:
            self._record_failure()
            raise

        self._record_success()
        return result

ACCRUAL_CB_CONFIG = CircuitBreakerConfig(
    failure_threshold=5,
    reset_timeout=10.0,
    success_threshold=1,
)
