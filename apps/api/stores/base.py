"""Store interfaces consumed by the scheduling services

Services depend on these protocols only, so they run against the SQLModel
stores in production and against in-memory fakes in tests.
"""
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import ContextManager, FrozenSet, List, Optional, Protocol

from models import (
    Appointment,
    AppointmentStatus,
    AppointmentType,
    AuditLog,
    ClinicSchedule,
    Doctor,
    DoctorException,
    DoctorSchedule,
    Patient,
    Room,
)


@dataclass(frozen=True)
class ClinicSettings:
    clinic_id: int
    timezone: str
    slot_minutes: int


@dataclass(frozen=True)
class AppointmentQuery:
    """Filter for active appointments.

    Only ACTIVE rows are ever returned. ``overlapping`` restricts to rows whose
    [start_time, end_time) overlaps the given HH:MM range.
    """
    appointment_date: Optional[date] = None
    date_from: Optional[date] = None
    doctor_id: Optional[int] = None
    room_id: Optional[int] = None
    patient_id: Optional[int] = None
    clinic_id: Optional[int] = None
    overlapping: Optional[tuple] = None
    exclude_id: Optional[int] = None
    exclude_statuses: FrozenSet[AppointmentStatus] = field(
        default_factory=lambda: frozenset({AppointmentStatus.CANCELLED})
    )
    statuses: Optional[FrozenSet[AppointmentStatus]] = None
    limit: Optional[int] = None


class ClinicSettingsProvider(Protocol):
    def get_settings(self, clinic_id: int) -> ClinicSettings: ...

    def local_now(self, settings: ClinicSettings) -> datetime: ...


class ScheduleStore(Protocol):
    def doctor_blocks(self, doctor_id: int, weekday: Optional[int] = None) -> List[DoctorSchedule]: ...

    def clinic_blocks(self, clinic_id: int, weekday: Optional[int] = None) -> List[ClinicSchedule]: ...

    def exceptions_on(self, doctor_id: int, on_date: date) -> List[DoctorException]: ...

    def exceptions_from(self, doctor_id: int, from_date: Optional[date] = None) -> List[DoctorException]: ...

    def get_doctor_block(self, block_id: int) -> Optional[DoctorSchedule]: ...

    def get_clinic_block(self, block_id: int) -> Optional[ClinicSchedule]: ...

    def get_exception(self, exception_id: int) -> Optional[DoctorException]: ...

    def save(self, record): ...


class AppointmentStore(Protocol):
    def get(self, appointment_id: int, for_update: bool = False) -> Optional[Appointment]: ...

    def find(self, query: AppointmentQuery) -> List[Appointment]: ...

    def add(self, appointment: Appointment) -> Appointment: ...

    def save(self, appointment: Appointment) -> Appointment: ...

    def purge(self, appointment: Appointment) -> None: ...

    def lock_booking_scope(self, doctor_id: int, room_id: Optional[int], patient_id: int) -> None: ...


class AppointmentTypeCatalog(Protocol):
    def get(self, appointment_type_id: int) -> Optional[AppointmentType]: ...


class Directory(Protocol):
    def get_patient(self, patient_id: int) -> Optional[Patient]: ...

    def get_doctor(self, doctor_id: int) -> Optional[Doctor]: ...

    def get_room(self, room_id: int) -> Optional[Room]: ...


class AuditSink(Protocol):
    def append(self, entry: AuditLog) -> None: ...


class TransactionManager(Protocol):
    def atomic(self) -> ContextManager[None]: ...


@dataclass
class SchedulingStores:
    settings: ClinicSettingsProvider
    schedules: ScheduleStore
    appointments: AppointmentStore
    catalog: AppointmentTypeCatalog
    directory: Directory
    audit: AuditSink
    transactions: TransactionManager
