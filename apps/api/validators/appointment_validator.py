"""Appointment validation logic"""
import math
from datetime import date
from typing import Optional

from errors import PermissionDeniedError, ReferentialError, ValidationError
from models import AppointmentType, Doctor, Patient, Room
from permissions import ActorContext, Permissions
from schemas import AppointmentCreate
from stores.base import AppointmentTypeCatalog, Directory
from validators.business_rules import get_business_rules
from validators.time_validator import get_duration_minutes, validate_time_range


def validate_duration_bounds(duration_min: int) -> None:
    """Validate a requested duration is within limits"""
    rules = get_business_rules()

    if duration_min is None or duration_min < rules.MIN_APPOINTMENT_DURATION_MINUTES:
        raise ValidationError(
            f"Appointment must be at least {rules.MIN_APPOINTMENT_DURATION_MINUTES} minutes"
        )

    if duration_min > rules.MAX_APPOINTMENT_DURATION_MINUTES:
        raise ValidationError(
            f"Appointment cannot exceed {rules.MAX_APPOINTMENT_DURATION_MINUTES} minutes"
        )


def validate_appointment_window(start_time: str, end_time: str) -> int:
    """Validate the time range and its length; returns the length in minutes"""
    validate_time_range(start_time, end_time)
    duration = get_duration_minutes(start_time, end_time)
    validate_duration_bounds(duration)
    return duration


def validate_booking_payload(data: AppointmentCreate) -> None:
    """Structural validation: required fields, reason, time window, amounts"""
    for field_name in ("patient_id", "doctor_id", "appointment_date", "start_time", "end_time"):
        if getattr(data, field_name, None) in (None, ""):
            raise ValidationError(f"{field_name} is required")

    custom_reason = (data.custom_reason or "").strip()
    if data.appointment_type_id is None and not custom_reason:
        raise ValidationError("Either an appointment type or a custom reason is required")
    if data.appointment_type_id is not None and custom_reason:
        raise ValidationError("Use an appointment type or a custom reason, not both")

    validate_appointment_window(data.start_time, data.end_time)

    if data.duration_min is not None:
        validate_duration_bounds(data.duration_min)

    if data.custom_price is not None:
        validate_payment_amount(data.custom_price)


def validate_payment_amount(amount: Optional[float]) -> None:
    if amount is None:
        return
    if not isinstance(amount, (int, float)) or not math.isfinite(amount) or amount < 0:
        raise ValidationError("Invalid payment amount")


def validate_not_in_past(appointment_date: date, local_today: date, actor: ActorContext) -> None:
    """Past dates are only bookable by roles allowed to backfill"""
    if appointment_date < local_today and not Permissions.can_backfill_appointments(actor):
        raise ValidationError("Cannot schedule appointments in the past")


def _is_live(record) -> bool:
    return record is not None and record.is_active and getattr(record, "deleted_at", None) is None


def require_doctor(directory: Directory, doctor_id: int, clinic_id: Optional[int] = None) -> Doctor:
    doctor = directory.get_doctor(doctor_id)
    if not _is_live(doctor):
        raise ReferentialError("Doctor not found")
    if clinic_id is not None and doctor.clinic_id != clinic_id:
        raise ReferentialError("Doctor does not belong to this clinic")
    return doctor


def require_patient(directory: Directory, patient_id: int, clinic_id: int) -> Patient:
    patient = directory.get_patient(patient_id)
    if not _is_live(patient):
        raise ReferentialError("Patient not found")
    if patient.clinic_id != clinic_id:
        raise ReferentialError("Patient does not belong to the doctor's clinic")
    return patient


def require_room(directory: Directory, room_id: int, clinic_id: int) -> Room:
    room = directory.get_room(room_id)
    if not _is_live(room):
        raise ReferentialError("Room not found")
    if room.clinic_id != clinic_id:
        raise ReferentialError("Room does not belong to the doctor's clinic")
    return room


def require_appointment_type(catalog: AppointmentTypeCatalog, appointment_type_id: int, clinic_id: int) -> AppointmentType:
    appointment_type = catalog.get(appointment_type_id)
    if not appointment_type or not appointment_type.is_active:
        raise ReferentialError("Appointment type not found")
    if appointment_type.clinic_id != clinic_id:
        raise ReferentialError("Appointment type does not belong to the doctor's clinic")
    return appointment_type


def require_clinic_access(actor: ActorContext, clinic_id: int) -> None:
    if not Permissions.can_access_clinic(actor, clinic_id):
        raise PermissionDeniedError("You don't have access to this clinic")


def has_complete_mandatory_data(patient: Patient) -> bool:
    """Fields required before a consultation can start"""
    return bool(
        patient.first_name
        and patient.last_name
        and (patient.second_last_name or patient.no_second_last_name)
        and patient.phone
        and patient.birth_date
        and patient.gender
    )
