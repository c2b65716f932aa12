"""Operator command line: monitoring report, text dashboard and scheduler loop."""

from __future__ import annotations

import argparse
import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from notifyhub.application.use_cases import DispatchEngine, Scheduler
from notifyhub.application.use_cases.monitoring import (
    AlertCandidate,
    DashboardData,
    StatsReport,
    collect_reports,
    dashboard_data,
    default_rules,
    evaluate,
    override_threshold,
    raise_alerts,
    seed_default_rules,
)
from notifyhub.config import Settings, get_settings
from notifyhub.domain.entities import ALERT_KIND_LOW_SUCCESS_RATE, AlertRule, User
from notifyhub.infrastructure.channels import build_default_registry
from notifyhub.infrastructure.repositories import AlertRuleRepository, UserRepository
from notifyhub.utils import Clock, SystemClock, configure_logging

logger = logging.getLogger(__name__)

_CLEAR_SCREEN = "\033[2J\033[H"


@dataclass
class CliContext:
    session_factory: Callable[[], Session]
    settings: Settings
    clock: Clock

    def build_engine(self) -> DispatchEngine:
        registry = build_default_registry(self.session_factory, self.settings)
        return DispatchEngine(self.session_factory, registry, self.settings, clock=self.clock)


def _default_context() -> CliContext:
    from notifyhub.infrastructure.database import SessionLocal, initialize_database

    initialize_database()
    return CliContext(session_factory=SessionLocal, settings=get_settings(), clock=SystemClock())


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="notifyhub",
        description="Operate the notifyhub dispatch engine and webhook monitoring.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    monitor = subparsers.add_parser(
        "monitor", help="Print webhook statistics and the issues detected."
    )
    monitor.add_argument(
        "--alert",
        action="store_true",
        help="Persist the detected issues as alerts and notify administrators.",
    )
    monitor.add_argument(
        "--threshold",
        type=float,
        default=None,
        help="Success rate (percent) below which an issue is reported.",
    )

    dashboard = subparsers.add_parser("dashboard", help="Show a refreshing text dashboard.")
    dashboard.add_argument(
        "--refresh", type=float, default=5.0, help="Seconds between refreshes (default: 5)."
    )
    dashboard.add_argument("--once", action="store_true", help="Render once and exit.")

    scheduler = subparsers.add_parser("scheduler", help="Run the scheduler tick loop.")
    scheduler.add_argument(
        "--interval", type=int, default=None, help="Seconds between ticks."
    )
    scheduler.add_argument("--once", action="store_true", help="Run a single tick and exit.")

    subparsers.add_parser("seed-rules", help="Insert the default alert rules.")

    create_user = subparsers.add_parser(
        "create-user", help="Register a notification recipient (for example an administrator)."
    )
    create_user.add_argument("--name", default="Administrator", help="Full name (default: Administrator).")
    create_user.add_argument("--email", default=None, help="Email address used by the email channel.")
    create_user.add_argument(
        "--role", default="admin", help="Role used for role-based targeting (default: admin)."
    )
    create_user.add_argument("--phone", default=None, help="Phone number used by the sms channel.")
    create_user.add_argument("--push-token", default=None, help="Device token used by the push channel.")
    return parser


def _active_rules(session: Session, settings: Settings) -> list[AlertRule]:
    rules = list(AlertRuleRepository(session).list(active_only=True))
    return rules or default_rules(settings)


def _format_rate(value: float) -> str:
    return f"{value:.2f}%"


def _print_stats(report: StatsReport) -> None:
    hours = report.window_seconds // 3600
    print(f"Webhook statistics (last {hours}h, generated {report.generated_at.isoformat()})")
    print(f"{'GATEWAY':<12}{'TOTAL':>8}{'OK':>8}{'FAILED':>8}{'PENDING':>9}{'SUCCESS':>10}")
    rows = list(report.gateways.items()) + [("all", report.overall)]
    for gateway, stats in rows:
        print(
            f"{gateway:<12}{stats.total:>8}{stats.processed:>8}{stats.failed:>8}"
            f"{stats.pending:>9}{_format_rate(stats.success_rate):>10}"
        )


def _print_issues(candidates: Sequence[AlertCandidate]) -> None:
    if not candidates:
        print("No issues detected.")
        return
    print(f"{len(candidates)} issue(s) detected:")
    for candidate in candidates:
        print(f"  [{candidate.severity.upper()}] {candidate.message}")


def command_monitor(args: argparse.Namespace, context: CliContext) -> int:
    now = context.clock.now()
    session = context.session_factory()
    try:
        rules = _active_rules(session, context.settings)
        if args.threshold is not None:
            rules = override_threshold(rules, ALERT_KIND_LOW_SUCCESS_RATE, args.threshold)
        reports = collect_reports(session, rules, now=now, settings=context.settings)
        candidates = evaluate(reports, rules, now=now)

        summary = reports.get(max(reports)) if reports else None
        if summary is not None:
            _print_stats(summary)
        _print_issues(candidates)

        if args.alert:
            engine = context.build_engine()
            try:
                changes = raise_alerts(
                    session, candidates, now=now, engine=engine, settings=context.settings
                )
            finally:
                engine.shutdown()
            print(
                f"Alerts: {len(changes.opened)} opened, {len(changes.refreshed)} refreshed,"
                f" {len(changes.resolved)} resolved"
            )
    finally:
        session.close()
    return 1 if candidates else 0


def _render_dashboard(data: DashboardData) -> str:
    stats = data.stats.overall
    lines = [
        "notifyhub webhook dashboard",
        "=" * 40,
        f"Last 24h: {stats.total} received, {stats.processed} processed, "
        f"{stats.failed} failed, {stats.pending} pending",
        f"Success rate: {_format_rate(stats.success_rate)}",
        f"Failures in the last hour: {data.failures_last_hour}",
        f"Peak hour (24h): {data.peak_hour_count} event(s)",
        "",
        "Volume:",
    ]
    lines.extend(f"  {name:<10} {count}" for name, count in data.volume.items())
    lines.append("")
    lines.append("Recent events:")
    if not data.recent_events:
        lines.append("  (none)")
    for event in data.recent_events:
        received = event.received_at.strftime("%Y-%m-%d %H:%M:%S") if event.received_at else "-"
        lines.append(
            f"  {received} {event.gateway:<10} {event.event_type:<28} {event.status}"
        )
    lines.append("")
    if data.health:
        lines.append("Health:")
        lines.extend(f"  [{severity.upper()}] {message}" for severity, message in data.health)
    else:
        lines.append("Health: OK")
    return "\n".join(lines)


def command_dashboard(args: argparse.Namespace, context: CliContext) -> int:
    try:
        while True:
            session = context.session_factory()
            try:
                data = dashboard_data(
                    session, now=context.clock.now(), settings=context.settings
                )
            finally:
                session.close()
            if args.once:
                print(_render_dashboard(data))
                return 0
            print(_CLEAR_SCREEN + _render_dashboard(data), flush=True)
            time.sleep(args.refresh)
    except KeyboardInterrupt:
        return 0


def command_scheduler(args: argparse.Namespace, context: CliContext) -> int:
    engine = context.build_engine()
    scheduler = Scheduler(
        context.session_factory, engine, clock=context.clock, settings=context.settings
    )
    try:
        if args.once:
            report = scheduler.tick()
            dispatched = report.dispatch.claimed if report.dispatch else 0
            print(
                f"Released {len(report.released)}, spawned {len(report.spawned)}, "
                f"dispatched {dispatched}, requeued {report.requeued}"
            )
            return 0 if report.ok else 1

        stop = scheduler.run_forever(args.interval)
        try:
            while not stop.wait(1.0):
                pass
        except KeyboardInterrupt:
            logger.info("Stopping scheduler")
            stop.set()
        return 0
    finally:
        engine.shutdown()


def command_seed_rules(args: argparse.Namespace, context: CliContext) -> int:
    session = context.session_factory()
    try:
        created = seed_default_rules(session, context.settings)
    finally:
        session.close()
    print(f"Created {len(created)} alert rule(s).")
    return 0


def command_create_user(args: argparse.Namespace, context: CliContext) -> int:
    if not (args.email or args.phone or args.push_token):
        print("At least one of --email, --phone or --push-token is required.")
        return 2

    session = context.session_factory()
    try:
        user = UserRepository(session).create(
            User(
                id=None,
                name=args.name,
                email=args.email,
                role=args.role,
                phone=args.phone,
                push_token=args.push_token,
            )
        )
    except SQLAlchemyError as exc:
        session.rollback()
        print(f"Could not store the user: {exc}")
        return 1
    finally:
        session.close()

    print(
        "User created:\n"
        f"  ID: {user.id}\n"
        f"  Name: {user.name}\n"
        f"  Role: {user.role}\n"
        f"  Email: {user.email or '-'}"
    )
    return 0


COMMANDS = {
    "monitor": command_monitor,
    "dashboard": command_dashboard,
    "scheduler": command_scheduler,
    "seed-rules": command_seed_rules,
    "create-user": command_create_user,
}


def main(argv: Sequence[str] | None = None, *, context: CliContext | None = None) -> int:
    """Entry point of the ``notifyhub`` console script."""

    args = build_parser().parse_args(argv)
    context = context or _default_context()
    configure_logging(context.settings.log_level)
    return COMMANDS[args.command](args, context)


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
