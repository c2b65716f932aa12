"""Rolling-window statistics over received webhooks."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy.orm import Session

from notifyhub.infrastructure.repositories import WebhookEventRepository


def success_rate(processed: int, total: int) -> float:
    """Percentage of processed events; an empty window counts as 100%."""

    if total <= 0:
        return 100.0
    return round(processed / total * 100, 2)


@dataclass
class WindowStats:
    """Counters for one gateway (or all of them) over a window."""

    total: int = 0
    processed: int = 0
    failed: int = 0
    pending: int = 0
    success_rate: float = 100.0
    avg_processing_seconds: float | None = None
    stuck_pending: int = 0
    last_received_at: datetime | None = None
    seconds_since_last_event: float | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        if self.last_received_at is not None:
            data["last_received_at"] = self.last_received_at.isoformat()
        return data


@dataclass
class StatsReport:
    window_seconds: int
    generated_at: datetime
    overall: WindowStats
    gateways: dict[str, WindowStats] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "window_seconds": self.window_seconds,
            "generated_at": self.generated_at.isoformat(),
            "overall": self.overall.to_dict(),
            "gateways": {name: stats.to_dict() for name, stats in sorted(self.gateways.items())},
        }


def _average(values: list[float]) -> float | None:
    if not values:
        return None
    return round(sum(values) / len(values), 3)


def compute_stats(
    session: Session,
    window: timedelta,
    *,
    now: datetime,
    stuck_after: timedelta = timedelta(minutes=5),
) -> StatsReport:
    """Aggregate webhook outcomes received within ``window`` before ``now``.

    Stuck-pending counts and the last-received time look at every event,
    not only the window, since an old stuck event is still stuck.
    """

    repository = WebhookEventRepository(session)
    since = now - window
    counts = repository.counts_by_gateway(since)
    latencies = repository.processing_seconds_by_gateway(since)
    stuck = repository.stuck_pending_by_gateway(now - stuck_after)
    last_received = repository.last_received_by_gateway()

    gateways: dict[str, WindowStats] = {}
    for name in sorted(set(counts) | set(latencies) | set(stuck) | set(last_received)):
        entry = counts.get(name)
        total = entry.total if entry else 0
        processed = entry.processed if entry else 0
        last = last_received.get(name)
        gateways[name] = WindowStats(
            total=total,
            processed=processed,
            failed=entry.failed if entry else 0,
            pending=entry.pending if entry else 0,
            success_rate=success_rate(processed, total),
            avg_processing_seconds=_average(latencies.get(name, [])),
            stuck_pending=stuck.get(name, 0),
            last_received_at=last,
            seconds_since_last_event=max((now - last).total_seconds(), 0.0) if last else None,
        )

    total = sum(stats.total for stats in gateways.values())
    processed = sum(stats.processed for stats in gateways.values())
    last = max(last_received.values(), default=None)
    overall = WindowStats(
        total=total,
        processed=processed,
        failed=sum(stats.failed for stats in gateways.values()),
        pending=sum(stats.pending for stats in gateways.values()),
        success_rate=success_rate(processed, total),
        avg_processing_seconds=_average(
            [value for values in latencies.values() for value in values]
        ),
        stuck_pending=sum(stuck.values()),
        last_received_at=last,
        seconds_since_last_event=max((now - last).total_seconds(), 0.0) if last else None,
    )
    return StatsReport(
        window_seconds=int(window.total_seconds()),
        generated_at=now,
        overall=overall,
        gateways=gateways,
    )


__all__ = ["StatsReport", "WindowStats", "compute_stats", "success_rate"]
