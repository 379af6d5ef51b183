"""FastAPI application factory for the reservation API."""

import logging
from contextlib import asynccontextmanager
from datetime import date

from fastapi import FastAPI, Query, Request
from fastapi.responses import JSONResponse

from slotguard.api.models import (
    BookRequest,
    CancelRequest,
    ConfirmRequest,
    LockView,
    RescheduleRequest,
    ReserveRequest,
    SweepResult,
)
from slotguard.config import SWEEP_INTERVAL_SECONDS
from slotguard.constants import AppointmentStatus, ConsultationMode
from slotguard.errors import ReservationError
from slotguard.models import (
    Appointment,
    AppointmentView,
    ErrorKind,
    LockReceipt,
    Practitioner,
    SlotAvailability,
)
from slotguard.protocol import ReservationService
from slotguard.sweeper import ExpirySweeper

logger = logging.getLogger(__name__)

# HTTP status for each error kind
STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.LOCK_NOT_FOUND: 404,
    ErrorKind.APPOINTMENT_NOT_FOUND: 404,
    ErrorKind.PRACTITIONER_NOT_FOUND: 404,
    ErrorKind.UNAUTHORIZED: 403,
    ErrorKind.SLOT_UNAVAILABLE: 409,
    ErrorKind.INVALID_STATE: 409,
    ErrorKind.LOCK_EXPIRED: 410,
    ErrorKind.CODE_EXPIRED: 410,
    ErrorKind.CANNOT_CANCEL: 422,
    ErrorKind.CANNOT_RESCHEDULE: 422,
    ErrorKind.SLOT_NOT_OFFERED: 422,
    ErrorKind.INVALID_TEMPLATE: 422,
    ErrorKind.INVALID_CODE: 400,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Run the lock sweeper while the app serves; close the DB on shutdown."""
    service: ReservationService = app.state.service
    sweeper = ExpirySweeper(service, SWEEP_INTERVAL_SECONDS)
    sweeper.start()
    app.state.sweeper = sweeper
    logger.info(f"Database ready: {service.db.db_path}")

    yield

    sweeper.stop()
    service.db.close()
    logger.info("Database closed")


def create_app(service: ReservationService | None = None) -> FastAPI:
    """Create FastAPI app with optional service injection.

    Args:
        service: Reservation service. If None, one is built on the
            configured SQLite database.

    Returns:
        Configured FastAPI application.
    """
    if service is None:
        service = ReservationService()

    app = FastAPI(title="Slotguard API", version="0.1.0")

    # Store service in app state for access in routes
    app.state.service = service

    @app.exception_handler(ReservationError)
    async def reservation_error_handler(
        request: Request, exc: ReservationError
    ) -> JSONResponse:
        status_code = STATUS_BY_KIND.get(exc.kind, 400)
        logger.info(f"{request.method} {request.url.path} -> {status_code} {exc.kind.value}")
        return JSONResponse(
            status_code=status_code,
            content=exc.to_error().model_dump(
                include={"kind", "message", "retryable"}, mode="json"
            ),
        )

    # --- Practitioner Routes ---

    @app.post("/practitioners", response_model=Practitioner, status_code=201)
    def register_practitioner(data: Practitioner) -> Practitioner:
        """Create or replace a practitioner with fees and weekly template."""
        return app.state.service.register_practitioner(data)

    @app.get("/practitioners", response_model=list[Practitioner])
    def list_practitioners() -> list[Practitioner]:
        """List all practitioners."""
        return app.state.service.list_practitioners()

    @app.get(
        "/practitioners/{practitioner_id}/slots",
        response_model=list[SlotAvailability],
    )
    def list_slots(
        practitioner_id: str,
        slot_date: date = Query(alias="date"),
        mode: ConsultationMode | None = None,
    ) -> list[SlotAvailability]:
        """List template slots for a date, marked free or taken."""
        return app.state.service.list_available_slots(practitioner_id, slot_date, mode)

    # --- Reservation Routes ---

    @app.post("/reservations", response_model=LockReceipt, status_code=201)
    def reserve(data: ReserveRequest) -> LockReceipt:
        """Lock a slot; the verification code is delivered out of band."""
        return app.state.service.reserve_slot(
            data.practitioner_id,
            data.slot_date,
            data.start,
            data.end,
            data.mode,
            data.requester_id,
        )

    @app.get("/reservations/{lock_id}", response_model=LockView)
    def get_reservation(lock_id: str) -> LockView:
        """Get a lock by ID (the code is never returned)."""
        return app.state.service.get_lock(lock_id)

    @app.post(
        "/reservations/{lock_id}/confirm",
        response_model=Appointment,
        status_code=201,
    )
    def confirm(lock_id: str, data: ConfirmRequest) -> Appointment:
        """Confirm a lock with its code, creating the appointment."""
        return app.state.service.confirm_reservation(
            lock_id, data.code, data.requester_id
        )

    # --- Appointment Routes ---

    @app.post("/appointments", response_model=Appointment, status_code=201)
    def book(data: BookRequest) -> Appointment:
        """Book a slot directly at the practitioner's current fee."""
        return app.state.service.book_directly(
            data.patient_id,
            data.practitioner_id,
            data.slot_date,
            data.start,
            data.end,
            data.mode,
        )

    @app.get("/appointments", response_model=list[AppointmentView])
    def list_appointments(
        patient_id: str | None = None,
        practitioner_id: str | None = None,
        status: AppointmentStatus | None = None,
    ) -> list[AppointmentView]:
        """List appointments, optionally filtered."""
        return app.state.service.list_appointments(patient_id, practitioner_id, status)

    @app.get("/appointments/{appointment_id}", response_model=AppointmentView)
    def get_appointment(appointment_id: str) -> AppointmentView:
        """Get an appointment by ID."""
        return app.state.service.get_appointment(appointment_id)

    @app.post("/appointments/{appointment_id}/cancel", response_model=Appointment)
    def cancel_appointment(appointment_id: str, data: CancelRequest) -> Appointment:
        """Cancel an appointment (releases the slot)."""
        return app.state.service.cancel_appointment(
            appointment_id, data.actor_role, data.reason
        )

    @app.post(
        "/appointments/{appointment_id}/reschedule",
        response_model=Appointment,
        status_code=201,
    )
    def reschedule_appointment(
        appointment_id: str, data: RescheduleRequest
    ) -> Appointment:
        """Move an appointment; returns the new linked appointment."""
        return app.state.service.reschedule_appointment(
            appointment_id,
            data.new_date,
            data.new_slot,
            data.actor_role,
            data.reason,
        )

    @app.post("/appointments/{appointment_id}/complete", response_model=Appointment)
    def complete_appointment(appointment_id: str) -> Appointment:
        """Mark a confirmed appointment as completed."""
        return app.state.service.complete_appointment(appointment_id)

    # --- Maintenance ---

    @app.post("/maintenance/sweep", response_model=SweepResult)
    def sweep() -> SweepResult:
        """Expire stale locks now."""
        return SweepResult(released=app.state.service.sweep_expired_locks())

    @app.get("/health")
    def health() -> dict:
        """Health check endpoint."""
        return {"status": "ok"}

    return app
