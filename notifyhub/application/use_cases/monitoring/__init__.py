"""Monitoring and alerting use cases."""

from .alerts import (
    AlertChanges,
    SweepResult,
    collect_reports,
    list_alerts,
    raise_alerts,
    sweep,
)
from .dashboard import DashboardData, dashboard_data
from .rules import (
    AlertCandidate,
    default_rules,
    evaluate,
    override_threshold,
    seed_default_rules,
)
from .stats import StatsReport, WindowStats, compute_stats, success_rate

__all__ = [
    "AlertCandidate",
    "AlertChanges",
    "DashboardData",
    "StatsReport",
    "SweepResult",
    "WindowStats",
    "collect_reports",
    "compute_stats",
    "dashboard_data",
    "default_rules",
    "evaluate",
    "list_alerts",
    "override_threshold",
    "raise_alerts",
    "seed_default_rules",
    "success_rate",
    "sweep",
]
