"""CLI command implementations.

Contains all cmd_* functions for CLI subcommands. Each builds a
ReservationService on the database given by ``--db``.
"""

import time
from argparse import Namespace

from slotguard.cli.helpers import load_roster
from slotguard.models import Appointment, SlotRange
from slotguard.protocol import ReservationService
from slotguard.storage import SlotGuardDB


def _service(args: Namespace, expose_codes: bool = False) -> ReservationService:
    return ReservationService(SlotGuardDB(args.db), expose_codes=expose_codes)


def _print_appointment(appt: Appointment) -> None:
    print(f"   ID:       {appt.id}")
    print(f"   Patient:  {appt.patient_id}")
    print(f"   Slot:     {appt.slot}")
    print(f"   Fee:      {appt.consultation_fee:.2f}")
    print(f"   Status:   {appt.status.value}")
    if appt.original_appointment_id:
        print(f"   Moved from: {appt.original_appointment_id}")


def cmd_init_db(args: Namespace) -> None:
    """Create the database schema."""
    db = SlotGuardDB(args.db)
    print(f"✅ Database ready: {db.db_path}")


def cmd_seed(args: Namespace) -> None:
    """Load practitioners from a roster YAML file."""
    service = _service(args)
    practitioners = load_roster(args.roster)

    for practitioner in practitioners:
        service.register_practitioner(practitioner)
        slots = sum(len(r) for r in practitioner.availability.values())
        print(f"   {practitioner.id:<16} {practitioner.name:<24} {slots} weekly slot(s)")

    print(f"\n✅ Seeded {len(practitioners)} practitioner(s)")


def cmd_slots(args: Namespace) -> None:
    """Show slots for a practitioner on a date."""
    service = _service(args)
    slots = service.list_available_slots(args.practitioner, args.date, args.mode)

    if not slots:
        print(f"No slots for {args.practitioner} on {args.date.isoformat()}.")
        return

    print(f"\n📅 {args.practitioner} on {args.date.isoformat()} ({args.date:%A}):\n")
    print(f"{'Start':<8} {'End':<8} {'Mode':<10} {'Status':<10}")
    print("-" * 40)
    for slot in slots:
        status = "free" if slot.available else "taken"
        print(f"{slot.start:<8} {slot.end:<8} {slot.mode.value:<10} {status:<10}")
    print()


def cmd_reserve(args: Namespace) -> None:
    """Lock a slot for a requester."""
    service = _service(args, expose_codes=args.show_code)
    receipt = service.reserve_slot(
        args.practitioner,
        args.date,
        args.start,
        args.end,
        args.mode,
        args.requester,
    )

    print(f"\n🔒 Slot locked: {receipt.lock_id}")
    print(f"   Fee:          {receipt.consultation_fee:.2f}")
    print(f"   Lock expires: {receipt.expires_at.isoformat()}")
    print(f"   Code expires: {receipt.code_expires_at.isoformat()}")
    if receipt.verification_code:
        print(f"   Code:         {receipt.verification_code}")
    else:
        print("   Code delivered out of band")


def cmd_confirm(args: Namespace) -> None:
    """Confirm a lock with its verification code."""
    service = _service(args)
    appointment = service.confirm_reservation(args.lock_id, args.code, args.requester)

    print("\n✅ Appointment confirmed")
    _print_appointment(appointment)


def cmd_cancel(args: Namespace) -> None:
    """Cancel an appointment."""
    service = _service(args)
    appointment = service.cancel_appointment(args.appointment_id, args.by, args.reason)

    print(f"\n✅ Appointment {appointment.id} cancelled")
    if appointment.cancellation:
        print(f"   Refund: {appointment.cancellation.refund_amount:.2f} (pending)")


def cmd_reschedule(args: Namespace) -> None:
    """Move an appointment to another slot."""
    service = _service(args)
    appointment = service.reschedule_appointment(
        args.appointment_id,
        args.date,
        SlotRange(start=args.start, end=args.end, mode=args.mode),
        args.by,
        args.reason,
    )

    print(f"\n✅ Appointment {args.appointment_id} rescheduled")
    _print_appointment(appointment)


def cmd_appointments(args: Namespace) -> None:
    """List appointments."""
    service = _service(args)
    appointments = service.list_appointments(
        patient_id=args.patient,
        practitioner_id=args.practitioner,
        status=args.status,
        limit=args.limit,
    )

    if not appointments:
        print("No appointments found.")
        return

    print(f"\n📋 Appointments ({len(appointments)}):\n")
    print(f"{'ID':<18} {'Patient':<14} {'Date':<11} {'Time':<12} {'Status':<12}")
    print("-" * 70)
    for appt in appointments:
        times = f"{appt.start}-{appt.end}"
        print(
            f"{appt.id:<18} {appt.patient_id:<14} {appt.appointment_date.isoformat():<11} "
            f"{times:<12} {appt.status.value:<12}"
        )
    print()


def cmd_sweep(args: Namespace) -> None:
    """Expire stale locks once, or repeatedly with --every."""
    service = _service(args)

    if not args.every:
        released = service.sweep_expired_locks()
        print(f"✅ Released {released} expired lock(s)")
        return

    from slotguard.sweeper import ExpirySweeper

    sweeper = ExpirySweeper(service, args.every)
    sweeper.run_once()
    sweeper.start()
    print(f"🧹 Sweeping every {args.every}s (Ctrl+C to stop)")
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        sweeper.stop()
        print(f"\n✅ Released {sweeper.total_released} expired lock(s)")


def cmd_serve(args: Namespace) -> None:
    """Run the HTTP API with the background sweeper."""
    import uvicorn

    from slotguard.api.app import create_app, lifespan

    app = create_app(_service(args))
    app.router.lifespan_context = lifespan
    uvicorn.run(app, host=args.host, port=args.port)
