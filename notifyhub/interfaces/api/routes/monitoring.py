"""Monitoring statistics and alert endpoints."""

from __future__ import annotations

from datetime import timedelta

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from notifyhub.application.use_cases import DispatchEngine
from notifyhub.application.use_cases.monitoring import compute_stats, list_alerts, sweep
from notifyhub.config import Settings
from notifyhub.infrastructure.database import get_db
from notifyhub.interfaces.api.dependencies import get_app_settings, get_dispatch_engine
from notifyhub.interfaces.api.schemas import AlertRead, StatsReportRead, SweepRead

router = APIRouter(prefix="/monitoring", tags=["monitoring"])


@router.get("/stats", response_model=StatsReportRead)
def get_stats(
    window_hours: int = Query(default=24, ge=1, le=24 * 30),
    db: Session = Depends(get_db),
    engine: DispatchEngine = Depends(get_dispatch_engine),
    settings: Settings = Depends(get_app_settings),
) -> StatsReportRead:
    """Return global and per-gateway webhook statistics for the window."""

    report = compute_stats(
        db,
        timedelta(hours=window_hours),
        now=engine.clock.now(),
        stuck_after=timedelta(minutes=settings.stuck_pending_minutes),
    )
    return StatsReportRead.model_validate(report)


@router.get("/alerts", response_model=list[AlertRead])
def get_alerts(
    status_filter: str | None = Query(default="open", alias="status", pattern="^(open|resolved)$"),
    limit: int = Query(default=100, ge=1, le=500),
    db: Session = Depends(get_db),
) -> list[AlertRead]:
    return [AlertRead.model_validate(alert) for alert in list_alerts(db, status=status_filter, limit=limit)]


@router.post("/sweep", response_model=SweepRead)
def run_sweep(
    db: Session = Depends(get_db),
    engine: DispatchEngine = Depends(get_dispatch_engine),
    settings: Settings = Depends(get_app_settings),
) -> SweepRead:
    """Evaluate the alert rules now instead of waiting for the scheduler."""

    result = sweep(db, now=engine.clock.now(), engine=engine, settings=settings)
    return SweepRead(
        candidates=len(result.candidates),
        opened=[AlertRead.model_validate(alert) for alert in result.changes.opened],
        refreshed=[AlertRead.model_validate(alert) for alert in result.changes.refreshed],
        resolved=[AlertRead.model_validate(alert) for alert in result.changes.resolved],
    )
