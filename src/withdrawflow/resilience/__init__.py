"""
Resilience Layer for withdrawflow.

Provides retries for transient failures of read-only calls.
"""

from .retry import execute_with_retry, is_transient_error

__all__ = [
    "execute_with_retry",
    "is_transient_error",
]
