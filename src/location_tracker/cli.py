"""CLI 入口。"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import Sequence

from location_tracker.config import AppConfig, ConfigError, load_app_config
from location_tracker.domain.tracking_types import PermissionStatus
from location_tracker.formatters.visit_pretty import render_status, render_visits_pretty
from location_tracker.repositories.visit_repository import PersistenceError
from location_tracker.sensors.replay import (
    CommandEvent,
    ErrorEvent,
    FixesEvent,
    PermissionEvent,
    ReplaySensor,
    SensorEvent,
    VisitEvent,
    load_event_log,
)
from location_tracker.services.location_service import (
    LocationTrackingService,
    build_location_service,
)

PERMISSION_CHOICES = [status.value for status in PermissionStatus]


def build_parser() -> argparse.ArgumentParser:
    """构建命令行参数解析器。"""

    parser = argparse.ArgumentParser(prog="location-tracker", description="Location tracker CLI")
    parser.add_argument("--db-path", help="Path to the visit history sqlite file.")
    parser.add_argument(
        "--no-emoji",
        action="store_true",
        help="Disable emoji in pretty output.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    replay_parser = subparsers.add_parser(
        "replay",
        help="Feed a JSON-lines sensor event log through the tracker.",
    )
    replay_parser.add_argument("events", help="Path to the event log.")
    replay_parser.add_argument(
        "--permission",
        choices=PERMISSION_CHOICES,
        default=PermissionStatus.NOT_DETERMINED.value,
        help="Location permission at startup.",
    )
    replay_parser.add_argument(
        "--auto-off-hours",
        type=float,
        help="Continuous tracking auto-off duration (0 = never).",
    )

    subparsers.add_parser("visits", help="List recorded visits.")

    status_parser = subparsers.add_parser("status", help="Show tracking status.")
    status_parser.add_argument(
        "--permission",
        choices=PERMISSION_CHOICES,
        default=PermissionStatus.ALWAYS.value,
        help="Location permission to assume.",
    )

    retry_parser = subparsers.add_parser("retry-geocoding", help="Resolve a visit's place again.")
    retry_parser.add_argument("visit_id")

    notes_parser = subparsers.add_parser("notes", help="Set notes on a visit.")
    notes_parser.add_argument("visit_id")
    notes_parser.add_argument("text", help="Notes text; empty string clears notes.")

    delete_parser = subparsers.add_parser("delete", help="Delete a visit.")
    delete_parser.add_argument("visit_id")

    clear_parser = subparsers.add_parser("clear", help="Delete all visits and location points.")
    clear_parser.add_argument("--yes", action="store_true", help="Confirm deletion.")

    auto_off_parser = subparsers.add_parser(
        "set-auto-off",
        help="Persist the continuous tracking auto-off duration.",
    )
    auto_off_parser.add_argument("hours", type=float)

    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """CLI 主入口。"""

    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = load_app_config(db_path=args.db_path)
        _configure_logging(config)
        return asyncio.run(_dispatch(args, config))
    except (ConfigError, PersistenceError, ValueError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1


async def _dispatch(args: argparse.Namespace, config: AppConfig) -> int:
    permission = PermissionStatus(getattr(args, "permission", PermissionStatus.ALWAYS.value))
    service = build_location_service(config, ReplaySensor(), permission=permission)
    service.start()
    try:
        return await _run_command(args, service)
    finally:
        await service.stop()


async def _run_command(args: argparse.Namespace, service: LocationTrackingService) -> int:
    emoji = not args.no_emoji

    if args.command == "replay":
        events = load_event_log(args.events)
        if args.auto_off_hours is not None:
            service.set_auto_off_hours(args.auto_off_hours)
        await replay_events(service, events)
        print(render_visits_pretty(service.list_visits(), emoji=emoji))
        if service.last_error is not None:
            print(f"Last error: {service.last_error}", file=sys.stderr)
        return 0

    if args.command == "visits":
        print(render_visits_pretty(service.list_visits(), emoji=emoji))
        return 0

    if args.command == "status":
        print(render_status(service.mode, service.remaining_time(), service.current_visit))
        return 0

    if args.command == "retry-geocoding":
        visit = await service.retry_geocoding(args.visit_id)
        if visit is None:
            print(f"Error: visit not found: {args.visit_id}", file=sys.stderr)
            return 1
        print(render_visits_pretty([visit], emoji=emoji))
        return _report_last_error(service)

    if args.command == "notes":
        visit = service.update_visit_notes(args.visit_id, args.text)
        if visit is None:
            print(f"Error: visit not found: {args.visit_id}", file=sys.stderr)
            return 1
        return _report_last_error(service)

    if args.command == "delete":
        if not service.delete_visit(args.visit_id):
            print(f"Error: visit not found: {args.visit_id}", file=sys.stderr)
            return 1
        return 0

    if args.command == "clear":
        if not args.yes:
            print("Error: pass --yes to delete all visits and location points.", file=sys.stderr)
            return 1
        service.clear_all_data()
        return 0

    if args.command == "set-auto-off":
        service.set_auto_off_hours(args.hours)
        return _report_last_error(service)

    return 1


async def replay_events(service: LocationTrackingService, events: Sequence[SensorEvent]) -> None:
    """按顺序把事件交给服务处理，每个事件后让出一次事件循环。"""

    for event in events:
        if isinstance(event, PermissionEvent):
            service.handle_permission_change(event.status)
        elif isinstance(event, VisitEvent):
            service.handle_visit(event.visit)
        elif isinstance(event, FixesEvent):
            service.handle_fixes(event.fixes)
        elif isinstance(event, ErrorEvent):
            service.handle_sensor_error(event.kind, event.message)
        elif isinstance(event, CommandEvent):
            _apply_command(service, event)
        await asyncio.sleep(0)

    await service.tracker.drain()


def _apply_command(service: LocationTrackingService, event: CommandEvent) -> None:
    if event.name == "enable_tracking":
        service.enable_tracking()
    elif event.name == "disable_tracking":
        service.disable_tracking()
    elif event.name == "enable_continuous":
        service.enable_continuous_tracking()
    elif event.name == "disable_continuous":
        service.disable_continuous_tracking()


def _report_last_error(service: LocationTrackingService) -> int:
    if service.last_error is None:
        return 0
    print(f"Error: {service.last_error}", file=sys.stderr)
    return 1


def _configure_logging(config: AppConfig) -> None:
    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
        handlers=[logging.StreamHandler()],
    )


if __name__ == "__main__":
    raise SystemExit(main())
