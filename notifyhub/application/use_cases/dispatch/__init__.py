"""Dispatch engine use cases."""

from .backoff import compute_backoff
from .engine import DispatchEngine, RunSummary
from .outcome import RequestStatus, aggregate_outcome

__all__ = [
    "DispatchEngine",
    "RequestStatus",
    "RunSummary",
    "aggregate_outcome",
    "compute_backoff",
]
