"""Utility modules for Polyphony."""

from polyphony.utils.logging import setup_logging
from polyphony.utils.metrics import Metrics
from polyphony.utils.retry import RetryConfig, retry_async, with_retry

__all__ = [
    "setup_logging",
    "Metrics",
    "RetryConfig",
    "retry_async",
    "with_retry",
]
