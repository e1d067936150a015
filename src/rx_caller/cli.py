#!/usr/bin/env python3
"""Operator CLI for rx-caller.

Usage:
    python -m rx_caller.cli init-db                      # Create tables
    python -m rx_caller.cli add-patient NAME PHONE       # Register a patient
    python -m rx_caller.cli call PATIENT_ID              # Ad hoc call
    python -m rx_caller.cli schedule PATIENT_ID START    # Retry campaign
    python -m rx_caller.cli tick                         # Run one scheduler tick
    python -m rx_caller.cli serve                        # Run the API server
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from datetime import datetime

from rx_caller.config import get_settings
from rx_caller.core.exceptions import RxCallerError
from rx_caller.core.logging import get_logger, setup_logging

log = get_logger(__name__)


async def _init_db() -> None:
    from rx_caller.db.session import close_db, init_db

    await init_db()
    await close_db()


def init_db_command(args: argparse.Namespace) -> int:
    """Create all database tables."""
    asyncio.run(_init_db())
    print("[OK] Database initialized")
    return 0


async def _add_patient(args: argparse.Namespace) -> dict:
    from rx_caller.db.models.core import PatientModel
    from rx_caller.db.repositories.patients import PatientRepository
    from rx_caller.db.session import close_db, get_db_context, init_db

    await init_db()
    try:
        async with get_db_context() as db:
            preferences = {}
            if args.allowed_start is not None and args.allowed_end is not None:
                preferences["allowed_hours"] = {
                    "start": args.allowed_start,
                    "end": args.allowed_end,
                }
            patient = await PatientRepository(db).create(
                PatientModel(
                    name=args.name,
                    phone=args.phone,
                    address=args.address,
                    call_preferences=preferences,
                )
            )
            return patient.to_dict()
    finally:
        await close_db()


def add_patient_command(args: argparse.Namespace) -> int:
    """Register a patient."""
    patient = asyncio.run(_add_patient(args))
    print(json.dumps(patient, indent=2, default=str))
    return 0


async def _call(patient_id: str) -> dict:
    from rx_caller.db.session import close_db, get_db_context, init_db
    from rx_caller.integrations.voice.factory import get_dispatch_gateway
    from rx_caller.services.call_lifecycle import CallLifecycleService

    settings = get_settings()
    gateway = get_dispatch_gateway()
    await init_db()
    try:
        async with get_db_context() as db:
            service = CallLifecycleService(
                db, gateway, dispatch_timeout=settings.voice.timeout_seconds
            )
            call = await service.create_and_dispatch(patient_id)
            return call.to_dict()
    finally:
        await gateway.close()
        await close_db()


def call_command(args: argparse.Namespace) -> int:
    """Create and dispatch an ad hoc call."""
    call = asyncio.run(_call(args.patient_id))
    print(json.dumps(call, indent=2, default=str))
    return 0 if call["status"] != "FAILED" else 1


async def _schedule(args: argparse.Namespace) -> dict:
    from rx_caller.db.session import close_db, get_db_context, init_db
    from rx_caller.services.campaigns import CampaignService

    settings = get_settings()
    await init_db()
    try:
        async with get_db_context() as db:
            service = CampaignService(db, timezone_name=settings.scheduler.timezone)
            schedule = await service.create_schedule(
                args.patient_id,
                datetime.fromisoformat(args.start_at),
                retry_interval_minutes=args.retry_interval,
                max_attempts=args.max_attempts,
            )
            return schedule.to_dict()
    finally:
        await close_db()


def schedule_command(args: argparse.Namespace) -> int:
    """Create a retry campaign."""
    schedule = asyncio.run(_schedule(args))
    print(json.dumps(schedule, indent=2, default=str))
    return 0


async def _tick() -> dict:
    from rx_caller.db.session import close_db, get_session_factory, init_db
    from rx_caller.integrations.voice.factory import get_dispatch_gateway
    from rx_caller.services.campaign_scheduler import CampaignScheduler, SchedulerConfig

    settings = get_settings()
    gateway = get_dispatch_gateway()
    await init_db()
    scheduler = CampaignScheduler(
        session_factory=get_session_factory(),
        gateway=gateway,
        config=SchedulerConfig(
            batch_size=settings.scheduler.batch_size,
            timezone=settings.scheduler.timezone,
            dispatch_timeout_seconds=settings.voice.timeout_seconds,
        ),
    )
    try:
        result = await scheduler.tick()
        return result.to_dict()
    finally:
        await gateway.close()
        await close_db()


def tick_command(args: argparse.Namespace) -> int:
    """Advance all due campaigns once."""
    result = asyncio.run(_tick())
    print(json.dumps(result, indent=2))
    return 1 if result["failures"] else 0


def serve_command(args: argparse.Namespace) -> int:
    """Run the API server."""
    from rx_caller.main import run

    run()
    return 0


def build_parser() -> argparse.ArgumentParser:
    """Argument parser for all subcommands."""
    parser = argparse.ArgumentParser(
        description="rx-caller CLI Tools",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # init-db
    subparsers.add_parser("init-db", help="Create database tables")

    # add-patient
    patient_parser = subparsers.add_parser("add-patient", help="Register a patient")
    patient_parser.add_argument("name", type=str)
    patient_parser.add_argument("phone", type=str, help="Phone number, E.164 recommended")
    patient_parser.add_argument("--address", type=str, default=None)
    patient_parser.add_argument(
        "--allowed-start",
        type=int,
        choices=range(24),
        default=None,
        metavar="HOUR",
        help="First allowed contact hour (0-23)",
    )
    patient_parser.add_argument(
        "--allowed-end",
        type=int,
        choices=range(24),
        default=None,
        metavar="HOUR",
        help="Hour contact stops being allowed (0-23)",
    )

    # call
    call_parser = subparsers.add_parser("call", help="Create and dispatch a call")
    call_parser.add_argument("patient_id", type=str)

    # schedule
    schedule_parser = subparsers.add_parser("schedule", help="Create a retry campaign")
    schedule_parser.add_argument("patient_id", type=str)
    schedule_parser.add_argument("start_at", type=str, help="ISO datetime, naive means UTC")
    schedule_parser.add_argument("--retry-interval", type=int, default=60, help="Minutes")
    schedule_parser.add_argument("--max-attempts", type=int, default=3)

    # tick
    subparsers.add_parser("tick", help="Run one scheduler tick")

    # serve
    subparsers.add_parser("serve", help="Run the API server")

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    settings = get_settings()
    setup_logging(level=settings.log_level, json_output=settings.log_json)

    commands = {
        "init-db": init_db_command,
        "add-patient": add_patient_command,
        "call": call_command,
        "schedule": schedule_command,
        "tick": tick_command,
        "serve": serve_command,
    }

    try:
        return commands[args.command](args)
    except RxCallerError as e:
        log.error("Command failed", error=e.error_code, message=e.message)
        print(json.dumps(e.to_dict(), indent=2, default=str), file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
