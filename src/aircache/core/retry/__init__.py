"""
Retry framework for transient failures against the remote API and stores.
"""

from aircache.core.retry.manager import RetryManager
from aircache.core.retry.policy import (
    DEFAULT_RETRY_POLICY,
    SOURCE_RETRY_POLICY,
    STORE_CONNECT_RETRY_POLICY,
    RetryPolicy,
    RetryState,
)

__all__ = [
    "RetryPolicy",
    "RetryState",
    "RetryManager",
    "DEFAULT_RETRY_POLICY",
    "SOURCE_RETRY_POLICY",
    "STORE_CONNECT_RETRY_POLICY",
]
