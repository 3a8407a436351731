"""hudwatch diagnostics CLI."""

from __future__ import annotations

import argparse
import asyncio
import json
import time
from datetime import datetime, timezone
from pathlib import Path

from hudwatch.app import configure_logging, create_app
from hudwatch.config import HudSettings
from hudwatch.daemon import DaemonSupervisor, HealthProbe, ProbeError
from hudwatch.monitor import SessionMonitor
from hudwatch.sessions import (
    ProjectLoadError,
    ProjectLoader,
    ProjectOrderStore,
    RecordStoreError,
    SessionRecordStore,
    SessionStateReconciler,
)
from hudwatch.telemetry import LoggingTelemetry


def load_settings() -> HudSettings:
    settings = HudSettings()
    settings.state_dir = settings.state_dir.expanduser()
    settings.launch_agents_dir = settings.launch_agents_dir.expanduser()
    return settings


def build_supervisor(settings: HudSettings) -> DaemonSupervisor:
    return DaemonSupervisor(settings, telemetry=LoggingTelemetry())


def cmd_health(args: argparse.Namespace) -> None:
    settings = load_settings()
    probe = HealthProbe(settings.socket_path, timeout=args.timeout or settings.probe_timeout)
    try:
        health = asyncio.run(probe.fetch_health())
    except ProbeError as exc:
        print(json.dumps({"healthy": False, "socket": str(probe.socket_path), "error": str(exc)}, indent=2))
        raise SystemExit(1)
    print(
        json.dumps(
            {
                "healthy": health.ok,
                "socket": str(probe.socket_path),
                "status": health.status,
                "pid": health.pid,
                "version": health.version,
            },
            indent=2,
        )
    )
    if not health.ok:
        raise SystemExit(1)


def cmd_status(args: argparse.Namespace) -> None:
    settings = load_settings()
    supervisor = build_supervisor(settings)
    status = asyncio.run(supervisor.check_status())
    print(
        json.dumps(
            {
                "enabled": status.enabled,
                "healthy": status.healthy,
                "message": status.message,
                "pid": status.pid,
                "version": status.version,
            },
            indent=2,
        )
    )


def cmd_ensure(args: argparse.Namespace) -> None:
    settings = load_settings()
    supervisor = build_supervisor(settings)
    error = asyncio.run(supervisor.ensure_running())
    if error:
        print(f"Agent not running: {error}")
        raise SystemExit(1)
    print("Agent running")


def cmd_disable(args: argparse.Namespace) -> None:
    settings = load_settings()
    supervisor = build_supervisor(settings)
    error = asyncio.run(supervisor.disable())
    if error:
        print(f"Agent not disabled: {error}")
        raise SystemExit(1)
    print("Agent disabled")


def cmd_descriptor(args: argparse.Namespace) -> None:
    settings = load_settings()
    supervisor = build_supervisor(settings)
    binary = args.binary
    if binary is None:
        try:
            binary = supervisor.resolve_binary()
        except RuntimeError as exc:
            print(str(exc))
            raise SystemExit(1)
    print(supervisor.writer.render(binary).decode("utf-8"), end="")


def cmd_sessions(args: argparse.Namespace) -> None:
    settings = load_settings()
    try:
        projects = ProjectLoader(settings.resolved_projects_file).load_all()
        records = SessionRecordStore(settings.sessions_file, settings.lock_dir).load()
    except (ProjectLoadError, RecordStoreError) as exc:
        print(f"Session data unavailable: {exc}")
        raise SystemExit(1)

    # A one-shot dump reconciles whatever is on disk, daemon flag or not.
    monitor = SessionMonitor(
        reconciler=SessionStateReconciler(
            thinking_stale_after=settings.thinking_stale_after,
            ready_stale_after=settings.ready_stale_after,
        ),
        order=ProjectOrderStore(settings.order_file).load(),
        cooling_grace=settings.cooling_grace,
        is_enabled=lambda: True,
    )
    snapshot = monitor.tick(records, projects)
    print(json.dumps(snapshot.to_dict(), indent=2))


def cmd_watch(args: argparse.Namespace) -> None:
    settings = load_settings()
    configure_logging(settings.log_level)
    app = create_app(settings)
    app.reload_projects()
    try:
        for _ in range(args.ticks):
            snapshot = app.monitor.poll(app.projects)
            payload = snapshot.to_dict()
            payload["printed_at"] = datetime.now(timezone.utc).isoformat()
            print(json.dumps(payload))
            if args.ticks > 1:
                time.sleep(settings.tick_interval)
    finally:
        app.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="hudwatch diagnostics")
    sub = parser.add_subparsers(dest="cmd")

    p_health = sub.add_parser("health", help="Probe the agent socket")
    p_health.add_argument("--timeout", type=float, default=None)
    p_health.set_defaults(func=cmd_health)

    p_status = sub.add_parser("status", help="Show daemon status for this process")
    p_status.set_defaults(func=cmd_status)

    p_ensure = sub.add_parser("ensure", help="Install, register and start the agent")
    p_ensure.set_defaults(func=cmd_ensure)

    p_disable = sub.add_parser("disable", help="Unregister the agent and remove its job")
    p_disable.set_defaults(func=cmd_disable)

    p_descriptor = sub.add_parser("descriptor", help="Print the service descriptor that would be written")
    p_descriptor.add_argument("--binary", type=Path, default=None)
    p_descriptor.set_defaults(func=cmd_descriptor)

    p_sessions = sub.add_parser("sessions", help="Reconcile session records once and print JSON")
    p_sessions.set_defaults(func=cmd_sessions)

    p_watch = sub.add_parser("watch", help="Print reconciled snapshots on the tick interval")
    p_watch.add_argument("--ticks", type=int, default=10)
    p_watch.set_defaults(func=cmd_watch)

    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return
    args.func(args)


if __name__ == "__main__":
    main()
