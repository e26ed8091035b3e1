from typing import Optional
from datetime import datetime, date, timezone
from sqlmodel import Field, SQLModel
from enum import Enum

from validators.business_rules import get_business_rules


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class UserRole(str, Enum):
    ADMIN = "admin"
    CLINIC_ADMIN = "clinic_admin"
    RECEPTION = "reception"
    DOCTOR = "doctor"
    NURSE = "nurse"

class AppointmentStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    IN_CONSULTATION = "in_consultation"
    TRANSFER_PENDING = "transfer_pending"
    PAID = "paid"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"
    REQUIRES_RESCHEDULE = "requires_reschedule"

class PaymentMethod(str, Enum):
    CASH = "cash"
    CREDIT_CARD = "credit_card"
    DEBIT_CARD = "debit_card"
    TRANSFER = "transfer"

class RecordState(str, Enum):
    """Row lifecycle: ACTIVE -> SOFT_DELETED -> PURGED, or ACTIVE -> PURGED"""
    ACTIVE = "active"
    SOFT_DELETED = "soft_deleted"
    PURGED = "purged"

class Gender(str, Enum):
    FEMALE = "female"
    MALE = "male"
    OTHER = "other"


class Clinic(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    timezone: str = Field(default_factory=lambda: get_business_rules().DEFAULT_CLINIC_TIMEZONE)
    default_slot_minutes: int = Field(
        default_factory=lambda: get_business_rules().DEFAULT_SLOT_DURATION_MINUTES, ge=5, le=480
    )
    is_active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=utc_now)

class Doctor(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    clinic_id: int = Field(foreign_key="clinic.id", index=True)
    user_id: Optional[int] = Field(default=None, index=True)
    first_name: str
    last_name: str
    second_last_name: Optional[str] = None
    is_active: bool = Field(default=True)
    deleted_at: Optional[datetime] = None

    @property
    def display_name(self) -> str:
        return " ".join(p for p in [self.first_name, self.last_name, self.second_last_name] if p)

class Patient(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    clinic_id: int = Field(foreign_key="clinic.id", index=True)
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    second_last_name: Optional[str] = None
    no_second_last_name: bool = Field(default=False)
    phone: Optional[str] = None
    birth_date: Optional[date] = None
    gender: Optional[Gender] = None
    is_active: bool = Field(default=True)
    deleted_at: Optional[datetime] = None

    @property
    def display_name(self) -> str:
        return " ".join(p for p in [self.first_name, self.last_name] if p)

class Room(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    clinic_id: int = Field(foreign_key="clinic.id", index=True)
    name: str
    is_active: bool = Field(default=True)
    deleted_at: Optional[datetime] = None

class AppointmentType(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    clinic_id: int = Field(foreign_key="clinic.id", index=True)
    name: str
    price: float = Field(default=0, ge=0)
    duration_min: int = Field(default=30, ge=5, le=480)
    is_active: bool = Field(default=True)

class ClinicSchedule(SQLModel, table=True):
    """Recurring weekly block owned by a clinic (fallback for its doctors)"""
    id: Optional[int] = Field(default=None, primary_key=True)
    clinic_id: int = Field(foreign_key="clinic.id", index=True)
    weekday: int = Field(ge=0, le=6)  # 0=Sunday, 6=Saturday
    start_time: str  # Format: "HH:MM"
    end_time: str    # Format: "HH:MM"
    is_active: bool = Field(default=True)
    deleted_at: Optional[datetime] = None

class DoctorSchedule(SQLModel, table=True):
    """Recurring weekly block owned by a doctor"""
    id: Optional[int] = Field(default=None, primary_key=True)
    doctor_id: int = Field(foreign_key="doctor.id", index=True)
    weekday: int = Field(ge=0, le=6)  # 0=Sunday, 6=Saturday
    start_time: str  # Format: "HH:MM"
    end_time: str    # Format: "HH:MM"
    is_active: bool = Field(default=True)
    deleted_at: Optional[datetime] = None

class DoctorException(SQLModel, table=True):
    """Date-specific block; no start/end means the whole day"""
    id: Optional[int] = Field(default=None, primary_key=True)
    doctor_id: int = Field(foreign_key="doctor.id", index=True)
    exception_date: date = Field(index=True)
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    reason: Optional[str] = None
    is_active: bool = Field(default=True)
    deleted_at: Optional[datetime] = None

    @property
    def is_full_day(self) -> bool:
        return not self.start_time and not self.end_time

class Appointment(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    patient_id: int = Field(foreign_key="patient.id", index=True)
    doctor_id: int = Field(foreign_key="doctor.id", index=True)
    clinic_id: int = Field(foreign_key="clinic.id", index=True)
    room_id: Optional[int] = Field(default=None, foreign_key="room.id", index=True)
    appointment_type_id: Optional[int] = Field(default=None, foreign_key="appointmenttype.id")
    appointment_date: date = Field(index=True)
    start_time: str  # Format: "HH:MM", clinic-local
    end_time: str    # Format: "HH:MM", clinic-local
    status: AppointmentStatus = Field(default=AppointmentStatus.PENDING, index=True)

    # Effective values, copied from the appointment type unless overridden
    custom_reason: Optional[str] = None
    custom_price: Optional[float] = None
    duration_min: Optional[int] = None
    notes: Optional[str] = None

    # Payment
    payment_method: Optional[PaymentMethod] = None
    payment_confirmed: bool = Field(default=False)

    # Cancellation
    cancel_reason: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    cancelled_by: Optional[int] = None  # user_id who cancelled

    # Row lifecycle
    record_state: RecordState = Field(default=RecordState.ACTIVE, index=True)
    deleted_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @property
    def is_active(self) -> bool:
        return self.record_state == RecordState.ACTIVE

class AuditLog(SQLModel, table=True):
    """Write-once record of an appointment status transition"""
    id: Optional[int] = Field(default=None, primary_key=True)
    # No foreign key: entries outlive a purged appointment
    appointment_id: Optional[int] = Field(default=None, index=True)
    clinic_id: Optional[int] = Field(default=None, index=True)
    user_id: Optional[int] = None
    transition_type: str  # status_change, reschedule, schedule_change, exception
    previous_status: Optional[AppointmentStatus] = None
    requested_status: Optional[AppointmentStatus] = None
    applied_status: Optional[AppointmentStatus] = None
    timestamp: datetime = Field(default_factory=utc_now, index=True)
    extra_data: Optional[str] = None  # JSON string for additional context
