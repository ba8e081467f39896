"""
Synchronization engine: delta resolution, retry policy, orchestration
and pagination.
"""

from .delta import resolve_delta
from .retry import RetryConfig, RetryResult, calculate_delay, retry_with_backoff
from .orchestrator import SyncConfig, SyncOrchestrator
from .pagination import Page, paginate, sort_newest_first

__all__ = [
    "resolve_delta",
    "RetryConfig",
    "RetryResult",
    "calculate_delay",
    "retry_with_backoff",
    "SyncConfig",
    "SyncOrchestrator",
    "Page",
    "paginate",
    "sort_newest_first",
]
