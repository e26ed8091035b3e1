from typing import Optional, List
from pydantic import BaseModel, ConfigDict
from models import AppointmentStatus, PaymentMethod, RecordState
from datetime import date, datetime

# Appointment request schemas
class AppointmentCreate(BaseModel):
    patient_id: int
    doctor_id: int
    room_id: Optional[int] = None
    appointment_type_id: Optional[int] = None
    custom_reason: Optional[str] = None
    custom_price: Optional[float] = None
    duration_min: Optional[int] = None
    appointment_date: date
    start_time: str  # Format: "HH:MM"
    end_time: str    # Format: "HH:MM"
    notes: Optional[str] = None

class AppointmentUpdate(AppointmentCreate):
    """Full replacement of the editable fields, as sent by the edit dialog"""

class AppointmentReschedule(BaseModel):
    appointment_date: date
    start_time: str
    end_time: str
    doctor_id: Optional[int] = None
    room_id: Optional[int] = None

class StatusChange(BaseModel):
    status: AppointmentStatus
    cancel_reason: Optional[str] = None
    notes: Optional[str] = None
    payment_method: Optional[PaymentMethod] = None
    payment_confirmed: Optional[bool] = None
    payment_amount: Optional[float] = None

class ConflictCheckRequest(BaseModel):
    doctor_id: int
    patient_id: int
    room_id: Optional[int] = None
    appointment_date: date
    start_time: str
    end_time: str
    exclude_appointment_id: Optional[int] = None

# Appointment response schemas
class AppointmentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    patient_id: int
    doctor_id: int
    clinic_id: int
    room_id: Optional[int] = None
    appointment_type_id: Optional[int] = None
    appointment_date: date
    start_time: str
    end_time: str
    status: AppointmentStatus
    custom_reason: Optional[str] = None
    custom_price: Optional[float] = None
    duration_min: Optional[int] = None
    notes: Optional[str] = None
    payment_method: Optional[PaymentMethod] = None
    payment_confirmed: bool
    cancel_reason: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    cancelled_by: Optional[int] = None
    record_state: RecordState

class ConflictCheckResponse(BaseModel):
    conflicts: List[str]
    has_conflicts: bool

class TransitionOption(BaseModel):
    status: AppointmentStatus
    label: str

# Availability schemas
class SlotResponse(BaseModel):
    start_time: str
    end_time: str

class DayAvailabilityResponse(BaseModel):
    date: date
    available: bool

# Schedule schemas
class ScheduleBlockCreate(BaseModel):
    weekday: int  # 0=Sunday, 6=Saturday
    start_time: str   # Format: "HH:MM"
    end_time: str     # Format: "HH:MM"

class ScheduleBlockResponse(BaseModel):
    id: int
    weekday: int
    start_time: str
    end_time: str
    inherited: bool = False

class DoctorExceptionCreate(BaseModel):
    exception_date: date
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    reason: Optional[str] = None

class DoctorExceptionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    doctor_id: int
    exception_date: date
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    reason: Optional[str] = None
