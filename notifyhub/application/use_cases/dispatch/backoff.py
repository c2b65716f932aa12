"""Retry backoff for delivery attempts."""

from __future__ import annotations

from datetime import timedelta


def compute_backoff(
    attempt_count: int, *, base_seconds: int = 30, max_seconds: int = 1800
) -> timedelta:
    """Delay before retrying after ``attempt_count`` failed sends.

    Doubles from ``base_seconds`` on every failure and never exceeds
    ``max_seconds``: 30s, 60s, 120s, 240s ... capped at 30 minutes.
    """

    if attempt_count < 1:
        raise ValueError("attempt_count must be at least 1")
    exponent = min(attempt_count - 1, 32)
    return timedelta(seconds=min(base_seconds * 2**exponent, max_seconds))


__all__ = ["compute_backoff"]
