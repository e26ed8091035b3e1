from datetime import date
from typing import List, Optional
from fastapi import APIRouter, Depends, Query, Request, status
from slowapi import Limiter
from slowapi.util import get_remote_address
from models import AppointmentStatus
from permissions import ActorContext
from schemas import (
    AppointmentCreate,
    AppointmentReschedule,
    AppointmentResponse,
    AppointmentUpdate,
    ConflictCheckRequest,
    ConflictCheckResponse,
    StatusChange,
    TransitionOption,
)
from dependencies import get_booking_service, get_current_actor
from services.appointment_state import TransitionContext, get_available_transitions, get_status_label
from services.booking_service import BookingService
from validators.appointment_validator import require_clinic_access, require_doctor
import os

router = APIRouter(prefix="/api/appointments", tags=["Appointments"])

# Rate limiter for booking writes
limiter = Limiter(
    key_func=get_remote_address,
    enabled=os.getenv("RATE_LIMIT_ENABLED", "true").lower() == "true",
)

@router.post("", response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit("30/minute")
def book_appointment(
    request: Request,
    appointment_data: AppointmentCreate,
    actor: ActorContext = Depends(get_current_actor),
    service: BookingService = Depends(get_booking_service),
):
    """Book a new appointment (starts as pending)"""
    return service.book(appointment_data, actor)

@router.get("", response_model=List[AppointmentResponse])
def list_appointments(
    appointment_date: Optional[date] = Query(None, alias="date"),
    doctor_id: Optional[int] = None,
    patient_id: Optional[int] = None,
    actor: ActorContext = Depends(get_current_actor),
    service: BookingService = Depends(get_booking_service),
):
    """List active appointments visible to the current user"""
    return service.list_appointments(actor, appointment_date, doctor_id, patient_id)

@router.post("/check-conflicts", response_model=ConflictCheckResponse)
def check_conflicts(
    check_data: ConflictCheckRequest,
    actor: ActorContext = Depends(get_current_actor),
    service: BookingService = Depends(get_booking_service),
):
    """Report collisions for a prospective booking without writing anything"""
    doctor = require_doctor(service.stores.directory, check_data.doctor_id)
    require_clinic_access(actor, doctor.clinic_id)
    conflicts = service.check_conflicts(
        check_data.doctor_id,
        check_data.patient_id,
        check_data.room_id,
        check_data.appointment_date,
        check_data.start_time,
        check_data.end_time,
        exclude_appointment_id=check_data.exclude_appointment_id,
    )
    return ConflictCheckResponse(conflicts=conflicts, has_conflicts=bool(conflicts))

@router.get("/{appointment_id}", response_model=AppointmentResponse)
def get_appointment(
    appointment_id: int,
    actor: ActorContext = Depends(get_current_actor),
    service: BookingService = Depends(get_booking_service),
):
    return service.get_appointment(appointment_id, actor)

@router.put("/{appointment_id}", response_model=AppointmentResponse)
@limiter.limit("30/minute")
def update_appointment(
    request: Request,
    appointment_id: int,
    appointment_data: AppointmentUpdate,
    actor: ActorContext = Depends(get_current_actor),
    service: BookingService = Depends(get_booking_service),
):
    """Edit an appointment; scheduling changes are re-checked for conflicts"""
    return service.update_appointment(appointment_id, appointment_data, actor)

@router.post("/{appointment_id}/reschedule", response_model=AppointmentResponse)
@limiter.limit("30/minute")
def reschedule_appointment(
    request: Request,
    appointment_id: int,
    reschedule_data: AppointmentReschedule,
    actor: ActorContext = Depends(get_current_actor),
    service: BookingService = Depends(get_booking_service),
):
    return service.reschedule(appointment_id, reschedule_data, actor)

@router.patch("/{appointment_id}/status", response_model=AppointmentResponse)
@limiter.limit("60/minute")
def change_status(
    request: Request,
    appointment_id: int,
    status_data: StatusChange,
    actor: ActorContext = Depends(get_current_actor),
    service: BookingService = Depends(get_booking_service),
):
    """Move an appointment through its lifecycle"""
    context = TransitionContext(
        actor=actor,
        cancel_reason=status_data.cancel_reason,
        notes=status_data.notes,
        payment_method=status_data.payment_method,
        payment_confirmed=status_data.payment_confirmed,
        payment_amount=status_data.payment_amount,
    )
    return service.transition_status(appointment_id, status_data.status, context)

@router.get("/{appointment_id}/transitions", response_model=List[TransitionOption])
def get_transitions(
    appointment_id: int,
    actor: ActorContext = Depends(get_current_actor),
    service: BookingService = Depends(get_booking_service),
):
    """Statuses reachable from the appointment's current status"""
    appointment = service.get_appointment(appointment_id, actor)
    return [
        TransitionOption(status=s, label=get_status_label(s))
        for s in get_available_transitions(AppointmentStatus(appointment.status))
    ]

@router.delete("/{appointment_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_appointment(
    appointment_id: int,
    actor: ActorContext = Depends(get_current_actor),
    service: BookingService = Depends(get_booking_service),
):
    """Soft delete: hides the appointment and frees its slot"""
    service.soft_delete(appointment_id, actor)

@router.delete("/{appointment_id}/purge", status_code=status.HTTP_204_NO_CONTENT)
def purge_appointment(
    appointment_id: int,
    actor: ActorContext = Depends(get_current_actor),
    service: BookingService = Depends(get_booking_service),
):
    """Permanently delete an appointment (admins only); audit entries are kept"""
    service.hard_delete(appointment_id, actor)
