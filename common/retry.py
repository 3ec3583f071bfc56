"""
Retry utilities for handling transient failures
"""
import random
import time
from typing import Callable, Any, Optional, List
import logging

logger = logging.getLogger(__name__)

class RetryConfig:
    """Configuration for retry behavior"""
    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
        exponential_base: float = 2.0,
        jitter: bool = True,
        retryable_exceptions: Optional[List[type]] = None
    ):
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter
        self.retryable_exceptions = tuple(retryable_exceptions or [Exception])

def calculate_delay(attempt: int, config: RetryConfig) -> float:
    """Calculate delay for exponential backoff with jitter"""
    delay = config.base_delay * (config.exponential_base ** (attempt - 1))
    delay = min(delay, config.max_delay)

    if config.jitter:
        # Spread competing writers apart
        delay *= (0.5 + random.random() * 0.5)

    return delay

def retry_call(func: Callable, config: RetryConfig, *args, **kwargs) -> Any:
    """Call func, retrying retryable exceptions with exponential backoff.

    Non-retryable exceptions propagate immediately. When every attempt fails
    the last retryable exception is re-raised.
    """
    last_exception = None

    for attempt in range(1, config.max_attempts + 1):
        try:
            return func(*args, **kwargs)
        except config.retryable_exceptions as e:
            last_exception = e

            if attempt == config.max_attempts:
                logger.error(f"Max retry attempts ({config.max_attempts}) reached for {func.__name__}")
                break

            delay = calculate_delay(attempt, config)
            logger.warning(f"Attempt {attempt}/{config.max_attempts} failed for {func.__name__}: {e}. Retrying in {delay:.3f}s")
            time.sleep(delay)

    raise last_exception
