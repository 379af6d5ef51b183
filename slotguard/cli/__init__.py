"""Slotguard CLI - Command-line interface for the reservation core.

This package provides the CLI entry point and command implementations.

Usage:
    slotguard init-db
    slotguard seed roster.yaml
    slotguard slots dr-lee --date 2026-03-02
    slotguard reserve dr-lee --date 2026-03-02 --start 09:00 --end 09:30 \\
        --mode online --requester patient-1 --show-code
    slotguard confirm lock_ab12cd34ef56 --code 123456 --requester patient-1
    slotguard sweep --every 60
    slotguard serve
"""

import argparse
import logging
import sys

from pydantic import ValidationError

# Import submodules for package access
from slotguard.cli import commands, helpers
from slotguard.cli.commands import (
    cmd_appointments,
    cmd_cancel,
    cmd_confirm,
    cmd_init_db,
    cmd_reschedule,
    cmd_reserve,
    cmd_seed,
    cmd_serve,
    cmd_slots,
    cmd_sweep,
)
from slotguard.cli.helpers import RosterLoadError, parse_date
from slotguard.config import DATABASE_PATH, HOST, PORT
from slotguard.constants import ActorRole, AppointmentStatus, ConsultationMode
from slotguard.errors import ReservationError

__all__ = [
    # Submodules
    "commands",
    "helpers",
    # Entry points
    "main",
    "create_parser",
]

_MODES = [m.value for m in ConsultationMode]
_ROLES = [r.value for r in ActorRole]


def _add_slot_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--date", "-d", type=parse_date, required=True, help="YYYY-MM-DD")
    parser.add_argument("--start", "-s", required=True, help="Start time, HH:MM")
    parser.add_argument("--end", "-e", required=True, help="End time, HH:MM")
    parser.add_argument("--mode", "-m", choices=_MODES, required=True)


def create_parser() -> argparse.ArgumentParser:
    """Create and configure the CLI argument parser.

    Returns:
        Configured ArgumentParser for testing and main().
    """
    parser = argparse.ArgumentParser(
        description="Slotguard - practitioner slot reservation",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--db", default=str(DATABASE_PATH), help="SQLite database path"
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true", help="Enable debug logging"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # init-db
    init_parser = subparsers.add_parser("init-db", help="Create the database schema")
    init_parser.set_defaults(func=cmd_init_db)

    # seed
    seed_parser = subparsers.add_parser("seed", help="Load practitioners from YAML")
    seed_parser.add_argument("roster", help="Path to roster YAML file")
    seed_parser.set_defaults(func=cmd_seed)

    # slots
    slots_parser = subparsers.add_parser("slots", help="Show slots for a date")
    slots_parser.add_argument("practitioner", help="Practitioner ID")
    slots_parser.add_argument("--date", "-d", type=parse_date, required=True, help="YYYY-MM-DD")
    slots_parser.add_argument("--mode", "-m", choices=_MODES, default=None)
    slots_parser.set_defaults(func=cmd_slots)

    # reserve
    reserve_parser = subparsers.add_parser("reserve", help="Lock a slot")
    reserve_parser.add_argument("practitioner", help="Practitioner ID")
    _add_slot_arguments(reserve_parser)
    reserve_parser.add_argument("--requester", "-r", required=True, help="Patient ID")
    reserve_parser.add_argument(
        "--show-code",
        action="store_true",
        help="Print the verification code (development only)",
    )
    reserve_parser.set_defaults(func=cmd_reserve)

    # confirm
    confirm_parser = subparsers.add_parser("confirm", help="Confirm a lock")
    confirm_parser.add_argument("lock_id", help="Lock ID from reserve")
    confirm_parser.add_argument("--code", "-c", required=True, help="Verification code")
    confirm_parser.add_argument("--requester", "-r", required=True, help="Patient ID")
    confirm_parser.set_defaults(func=cmd_confirm)

    # cancel
    cancel_parser = subparsers.add_parser("cancel", help="Cancel an appointment")
    cancel_parser.add_argument("appointment_id", help="Appointment ID")
    cancel_parser.add_argument("--by", choices=_ROLES, default=ActorRole.PATIENT.value)
    cancel_parser.add_argument("--reason", default=None)
    cancel_parser.set_defaults(func=cmd_cancel)

    # reschedule
    reschedule_parser = subparsers.add_parser("reschedule", help="Move an appointment")
    reschedule_parser.add_argument("appointment_id", help="Appointment ID")
    _add_slot_arguments(reschedule_parser)
    reschedule_parser.add_argument("--by", choices=_ROLES, default=ActorRole.PATIENT.value)
    reschedule_parser.add_argument("--reason", default=None)
    reschedule_parser.set_defaults(func=cmd_reschedule)

    # appointments
    list_parser = subparsers.add_parser("appointments", help="List appointments")
    list_parser.add_argument("--patient", default=None)
    list_parser.add_argument("--practitioner", default=None)
    list_parser.add_argument(
        "--status", choices=[s.value for s in AppointmentStatus], default=None
    )
    list_parser.add_argument(
        "--limit", "-l", type=int, default=20, help="Maximum appointments to show"
    )
    list_parser.set_defaults(func=cmd_appointments)

    # sweep
    sweep_parser = subparsers.add_parser("sweep", help="Expire stale locks")
    sweep_parser.add_argument(
        "--every", type=int, default=None, help="Keep sweeping every N seconds"
    )
    sweep_parser.set_defaults(func=cmd_sweep)

    # serve
    serve_parser = subparsers.add_parser("serve", help="Run the HTTP API")
    serve_parser.add_argument("--host", default=HOST)
    serve_parser.add_argument("--port", type=int, default=PORT)
    serve_parser.set_defaults(func=cmd_serve)

    return parser


def main():
    """Main CLI entry point."""
    parser = create_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    try:
        args.func(args)
    except ReservationError as e:
        print(f"❌ {e.kind.value}: {e.message}")
        sys.exit(1)
    except RosterLoadError as e:
        print(f"❌ {e}")
        sys.exit(1)
    except ValidationError as e:
        print(f"❌ Invalid input: {e.errors()[0]['msg']}")
        sys.exit(1)


if __name__ == "__main__":
    main()
