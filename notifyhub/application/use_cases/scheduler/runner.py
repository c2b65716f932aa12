"""Scheduler ticks: release due requests, run deliveries, sweep monitoring."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta

import schedule
from sqlalchemy.orm import Session

from notifyhub.config import Settings, get_settings
from notifyhub.domain.entities import REQUEST_STATUS_SCHEDULED, NotificationRequest
from notifyhub.infrastructure.repositories import (
    DeliveryAttemptRepository,
    NotificationRequestRepository,
)
from notifyhub.utils import Clock, SystemClock, ensure_app_timezone

from ..dispatch import DispatchEngine, RunSummary
from ..monitoring import SweepResult, sweep
from .recurrence import next_occurrence

logger = logging.getLogger(__name__)

# In-flight attempts older than this were orphaned by a crashed pass.
STALE_IN_FLIGHT_AFTER = timedelta(minutes=10)


@dataclass
class TickReport:
    now: datetime
    released: list[int] = field(default_factory=list)
    spawned: list[int] = field(default_factory=list)
    requeued: int = 0
    dispatch: RunSummary | None = None
    sweep: SweepResult | None = None
    errors: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


class Scheduler:
    """Drive the engine from explicit ticks.

    Each step of a tick is isolated: a failing step is logged and the
    remaining steps, and the next tick, still run. Overdue work is simply
    picked up by the next tick that succeeds.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        engine: DispatchEngine,
        *,
        clock: Clock | None = None,
        settings: Settings | None = None,
        sweep_fn: Callable[..., SweepResult] = sweep,
    ) -> None:
        self._session_factory = session_factory
        self.engine = engine
        self.clock = clock or SystemClock()
        self.settings = settings or get_settings()
        self._sweep = sweep_fn
        self._last_sweep: datetime | None = None
        self._lock = threading.Lock()

    def tick(self) -> TickReport:
        with self._lock:
            now = self.clock.now()
            report = TickReport(now=now)
            self._run_step("release", report, self._release_due, now, report)
            self._run_step("requeue", report, self._requeue_stale, now, report)
            self._run_step("dispatch", report, self._dispatch, now, report)
            if self._sweep_due(now):
                self._run_step("sweep", report, self._run_sweep, now, report)
            return report

    def _run_step(self, name: str, report: TickReport, step: Callable, *args) -> None:
        try:
            step(*args)
        except Exception:
            logger.exception("Scheduler step %s failed at %s", name, report.now)
            report.errors.append(name)

    def _release_due(self, now: datetime, report: TickReport) -> None:
        session = self._session_factory()
        try:
            critical_only = self.engine.is_backpressured(session)
            if critical_only:
                logger.warning("Delivery backlog high; releasing critical notifications only")
            due = NotificationRequestRepository(session).list_due_scheduled(
                now, critical_only=critical_only
            )
            for request in due:
                try:
                    if self.engine.release(session, request, now=now):
                        report.released.append(request.id)
                    if request.is_recurring:
                        spawned = self._spawn_next(session, request, now)
                        if spawned is not None:
                            report.spawned.append(spawned)
                except Exception:
                    session.rollback()
                    logger.exception("Could not release notification request %s", request.id)
                    report.errors.append(f"release:{request.id}")
        finally:
            session.close()

    def _spawn_next(
        self, session: Session, request: NotificationRequest, now: datetime
    ) -> int | None:
        metadata = request.metadata or {}
        anchor = metadata.get("recurrence_anchor")
        anchor_at = (
            ensure_app_timezone(datetime.fromisoformat(anchor)) if anchor else request.scheduled_at
        )
        next_at = next_occurrence(
            request.scheduled_at, request.frequency, after=now, anchor=anchor_at
        )
        if next_at is None:
            return None
        root_id = metadata.get("recurrence_of", request.id)
        follow_up = replace(
            request,
            id=None,
            scheduled_at=next_at,
            status=REQUEST_STATUS_SCHEDULED,
            idempotency_key=f"recurrence:{root_id}:{next_at.isoformat()}",
            metadata={
                **metadata,
                "recurrence_of": root_id,
                "recurrence_anchor": anchor_at.isoformat(),
            },
        )
        return self.engine.submit(session, follow_up, now=now)

    def _requeue_stale(self, now: datetime, report: TickReport) -> None:
        session = self._session_factory()
        try:
            report.requeued = DeliveryAttemptRepository(session).requeue_stale_in_flight(
                now - STALE_IN_FLIGHT_AFTER
            )
            if report.requeued:
                logger.warning("Requeued %s stale in-flight attempt(s)", report.requeued)
        finally:
            session.close()

    def _dispatch(self, now: datetime, report: TickReport) -> None:
        report.dispatch = self.engine.run_pending(now)

    def _sweep_due(self, now: datetime) -> bool:
        if self._last_sweep is None:
            return True
        return now - self._last_sweep >= timedelta(seconds=self.settings.monitor_interval_seconds)

    def _run_sweep(self, now: datetime, report: TickReport) -> None:
        session = self._session_factory()
        try:
            report.sweep = self._sweep(
                session, now=now, engine=self.engine, settings=self.settings
            )
        finally:
            session.close()
        self._last_sweep = now

    def run_forever(self, interval: int | None = None, *, poll_seconds: float = 1.0) -> threading.Event:
        """Tick every ``interval`` seconds on a background thread.

        Returns an event; setting it stops the loop. Missed runs are not
        replayed: a slow tick just delays the next one.
        """

        interval = interval or self.settings.scheduler_interval_seconds
        jobs = schedule.Scheduler()
        jobs.every(interval).seconds.do(self.tick)
        stop = threading.Event()

        def _loop() -> None:
            logger.info("Scheduler started; ticking every %ss", interval)
            self.tick()
            while not stop.is_set():
                jobs.run_pending()
                time.sleep(poll_seconds)
            jobs.clear()
            logger.info("Scheduler stopped")

        threading.Thread(target=_loop, name="notifyhub-scheduler", daemon=True).start()
        return stop


__all__ = ["STALE_IN_FLIGHT_AFTER", "Scheduler", "TickReport"]
