"""Aggregate application use cases."""

from .dispatch import DispatchEngine, RequestStatus, RunSummary
from .events import dispatch_domain_event, from_alert, from_domain_event
from .inbox import list_inbox, mark_read, unread_count
from .monitoring import compute_stats, dashboard_data, evaluate, raise_alerts, sweep
from .scheduler import Scheduler, TickReport
from .templates import create_template, render_template
from .webhooks import AckResult, WebhookIngestService, build_default_handlers

__all__ = [
    "AckResult",
    "DispatchEngine",
    "RequestStatus",
    "RunSummary",
    "Scheduler",
    "TickReport",
    "WebhookIngestService",
    "build_default_handlers",
    "compute_stats",
    "create_template",
    "dashboard_data",
    "dispatch_domain_event",
    "evaluate",
    "from_alert",
    "from_domain_event",
    "list_inbox",
    "mark_read",
    "raise_alerts",
    "render_template",
    "sweep",
    "unread_count",
]
