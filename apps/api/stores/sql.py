"""SQLModel-backed store implementations"""
from contextlib import contextmanager
from datetime import date, datetime, timezone
from typing import Callable, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError
import logging

from sqlalchemy.exc import DBAPIError
from sqlmodel import Session, select

from errors import ReferentialError, SchedulingError, StorageError, ValidationError
from models import (
    Appointment,
    AppointmentType,
    AuditLog,
    Clinic,
    ClinicSchedule,
    Doctor,
    DoctorException,
    DoctorSchedule,
    Patient,
    RecordState,
    Room,
)
from stores.base import AppointmentQuery, ClinicSettings, SchedulingStores

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def system_clock() -> datetime:
    return datetime.now(timezone.utc)


class SqlTransactionManager:
    def __init__(self, session: Session):
        self.session = session

    @contextmanager
    def atomic(self):
        """Commit on success; roll back and map database aborts to StorageError"""
        try:
            yield
            self.session.commit()
        except SchedulingError:
            self.session.rollback()
            raise
        except DBAPIError as e:
            self.session.rollback()
            logger.warning(f"Transaction aborted by the database: {e}")
            raise StorageError("The operation could not be completed, please retry") from e
        except Exception:
            self.session.rollback()
            raise


class SqlClinicSettingsProvider:
    def __init__(self, session: Session, clock: Optional[Clock] = None):
        self.session = session
        self.clock = clock or system_clock

    def get_settings(self, clinic_id: int) -> ClinicSettings:
        clinic = self.session.get(Clinic, clinic_id)
        if not clinic or not clinic.is_active:
            raise ReferentialError("Clinic not found")
        return ClinicSettings(
            clinic_id=clinic.id,
            timezone=clinic.timezone,
            slot_minutes=clinic.default_slot_minutes,
        )

    def local_now(self, settings: ClinicSettings) -> datetime:
        try:
            tz = ZoneInfo(settings.timezone)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValidationError(f"Unknown clinic timezone: {settings.timezone}") from e
        return self.clock().astimezone(tz)


class SqlScheduleStore:
    def __init__(self, session: Session):
        self.session = session

    def doctor_blocks(self, doctor_id: int, weekday: Optional[int] = None) -> List[DoctorSchedule]:
        query = select(DoctorSchedule).where(
            DoctorSchedule.doctor_id == doctor_id,
            DoctorSchedule.is_active == True,
        )
        if weekday is not None:
            query = query.where(DoctorSchedule.weekday == weekday)
        return list(self.session.exec(query.order_by(DoctorSchedule.weekday, DoctorSchedule.start_time)).all())

    def clinic_blocks(self, clinic_id: int, weekday: Optional[int] = None) -> List[ClinicSchedule]:
        query = select(ClinicSchedule).where(
            ClinicSchedule.clinic_id == clinic_id,
            ClinicSchedule.is_active == True,
        )
        if weekday is not None:
            query = query.where(ClinicSchedule.weekday == weekday)
        return list(self.session.exec(query.order_by(ClinicSchedule.weekday, ClinicSchedule.start_time)).all())

    def exceptions_on(self, doctor_id: int, on_date: date) -> List[DoctorException]:
        return list(self.session.exec(
            select(DoctorException).where(
                DoctorException.doctor_id == doctor_id,
                DoctorException.exception_date == on_date,
                DoctorException.is_active == True,
            )
        ).all())

    def exceptions_from(self, doctor_id: int, from_date: Optional[date] = None) -> List[DoctorException]:
        query = select(DoctorException).where(
            DoctorException.doctor_id == doctor_id,
            DoctorException.is_active == True,
        )
        if from_date is not None:
            query = query.where(DoctorException.exception_date >= from_date)
        return list(self.session.exec(query.order_by(DoctorException.exception_date)).all())

    def get_doctor_block(self, block_id: int) -> Optional[DoctorSchedule]:
        return self.session.get(DoctorSchedule, block_id)

    def get_clinic_block(self, block_id: int) -> Optional[ClinicSchedule]:
        return self.session.get(ClinicSchedule, block_id)

    def get_exception(self, exception_id: int) -> Optional[DoctorException]:
        return self.session.get(DoctorException, exception_id)

    def save(self, record):
        self.session.add(record)
        self.session.flush()
        return record


class SqlAppointmentStore:
    def __init__(self, session: Session):
        self.session = session

    def get(self, appointment_id: int, for_update: bool = False) -> Optional[Appointment]:
        query = select(Appointment).where(Appointment.id == appointment_id)
        if for_update:
            query = query.with_for_update()
        return self.session.exec(query).first()

    def find(self, query: AppointmentQuery) -> List[Appointment]:
        statement = select(Appointment).where(Appointment.record_state == RecordState.ACTIVE)
        if query.appointment_date is not None:
            statement = statement.where(Appointment.appointment_date == query.appointment_date)
        if query.date_from is not None:
            statement = statement.where(Appointment.appointment_date >= query.date_from)
        if query.doctor_id is not None:
            statement = statement.where(Appointment.doctor_id == query.doctor_id)
        if query.room_id is not None:
            statement = statement.where(Appointment.room_id == query.room_id)
        if query.patient_id is not None:
            statement = statement.where(Appointment.patient_id == query.patient_id)
        if query.clinic_id is not None:
            statement = statement.where(Appointment.clinic_id == query.clinic_id)
        if query.overlapping is not None:
            # Zero-padded HH:MM strings order the same way as minute offsets
            start, end = query.overlapping
            statement = statement.where(Appointment.start_time < end, Appointment.end_time > start)
        if query.exclude_id is not None:
            statement = statement.where(Appointment.id != query.exclude_id)
        if query.exclude_statuses:
            statement = statement.where(Appointment.status.not_in(list(query.exclude_statuses)))
        if query.statuses is not None:
            statement = statement.where(Appointment.status.in_(list(query.statuses)))
        statement = statement.order_by(Appointment.appointment_date, Appointment.start_time)
        if query.limit is not None:
            statement = statement.limit(query.limit)
        return list(self.session.exec(statement).all())

    def add(self, appointment: Appointment) -> Appointment:
        self.session.add(appointment)
        self.session.flush()
        return appointment

    def save(self, appointment: Appointment) -> Appointment:
        self.session.add(appointment)
        self.session.flush()
        return appointment

    def purge(self, appointment: Appointment) -> None:
        self.session.delete(appointment)
        self.session.flush()

    def lock_booking_scope(self, doctor_id: int, room_id: Optional[int], patient_id: int) -> None:
        """Row-lock doctor, room and patient (fixed order) so concurrent bookings serialize"""
        self.session.exec(select(Doctor).where(Doctor.id == doctor_id).with_for_update()).first()
        if room_id is not None:
            self.session.exec(select(Room).where(Room.id == room_id).with_for_update()).first()
        self.session.exec(select(Patient).where(Patient.id == patient_id).with_for_update()).first()


class SqlAppointmentTypeCatalog:
    def __init__(self, session: Session):
        self.session = session

    def get(self, appointment_type_id: int) -> Optional[AppointmentType]:
        return self.session.get(AppointmentType, appointment_type_id)


class SqlDirectory:
    def __init__(self, session: Session):
        self.session = session

    def get_patient(self, patient_id: int) -> Optional[Patient]:
        return self.session.get(Patient, patient_id)

    def get_doctor(self, doctor_id: int) -> Optional[Doctor]:
        return self.session.get(Doctor, doctor_id)

    def get_room(self, room_id: int) -> Optional[Room]:
        return self.session.get(Room, room_id)


class SqlAuditSink:
    def __init__(self, session: Session):
        self.session = session

    def append(self, entry: AuditLog) -> None:
        self.session.add(entry)
        self.session.flush()


def build_sql_stores(session: Session, clock: Optional[Clock] = None) -> SchedulingStores:
    return SchedulingStores(
        settings=SqlClinicSettingsProvider(session, clock=clock),
        schedules=SqlScheduleStore(session),
        appointments=SqlAppointmentStore(session),
        catalog=SqlAppointmentTypeCatalog(session),
        directory=SqlDirectory(session),
        audit=SqlAuditSink(session),
        transactions=SqlTransactionManager(session),
    )
