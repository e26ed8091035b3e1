"""Schedule blocks, doctor exceptions and their impact on booked appointments"""
from datetime import date
from typing import Iterable, List, Optional
import logging

from errors import ConflictError, PermissionDeniedError, ReferentialError, SchedulingError, ValidationError
from models import Appointment, AppointmentStatus, ClinicSchedule, DoctorException, DoctorSchedule, UserRole
from permissions import ActorContext, Permissions
from schemas import DoctorExceptionCreate, ScheduleBlockCreate
from services.appointment_state import (
    RESCHEDULABLE_STATUSES,
    TransitionContext,
    apply_transition,
    build_audit_entry,
    check_transition_guards,
    resolve_effective_transition,
)
from services.availability_service import AvailabilityService, EffectiveBlock
from stores.base import AppointmentQuery, SchedulingStores
from stores.sql import Clock, system_clock
from validators.appointment_validator import require_clinic_access, require_doctor
from validators.time_validator import overlaps, validate_time_range, weekday_sunday_first

logger = logging.getLogger(__name__)


def validate_block(data: ScheduleBlockCreate) -> None:
    if data.weekday is None or not 0 <= data.weekday <= 6:
        raise ValidationError("Weekday must be between 0 (Sunday) and 6 (Saturday)")
    validate_time_range(data.start_time, data.end_time)


def validate_exception(data: DoctorExceptionCreate) -> None:
    if bool(data.start_time) != bool(data.end_time):
        raise ValidationError("Provide both start and end time for a partial block, or neither for a full day")
    if data.start_time and data.end_time:
        validate_time_range(data.start_time, data.end_time)


def ensure_no_block_overlap(existing: Iterable, data: ScheduleBlockCreate, exclude_id: Optional[int] = None) -> None:
    for block in existing:
        if block.id == exclude_id:
            continue
        if overlaps(data.start_time, data.end_time, block.start_time, block.end_time):
            raise ConflictError(
                [f"Schedule conflicts with existing schedule: {block.start_time} - {block.end_time}"]
            )


class ScheduleService:
    def __init__(
        self,
        stores: SchedulingStores,
        availability: Optional[AvailabilityService] = None,
        clock: Optional[Clock] = None,
    ):
        self.stores = stores
        self.availability = availability or AvailabilityService(stores)
        self.clock = clock or system_clock

    # Doctor schedule blocks

    def list_doctor_schedules(self, doctor_id: int, actor: ActorContext) -> List[EffectiveBlock]:
        """Doctor's own blocks; weekdays without any fall back to the clinic's"""
        doctor = self._require_doctor_view(doctor_id, actor)
        return self.availability.effective_blocks(doctor.id, doctor.clinic_id)

    def create_doctor_schedule(self, doctor_id: int, data: ScheduleBlockCreate, actor: ActorContext) -> DoctorSchedule:
        doctor = self._require_doctor_manage(doctor_id, actor)
        validate_block(data)

        with self.stores.transactions.atomic():
            ensure_no_block_overlap(self.stores.schedules.doctor_blocks(doctor_id, data.weekday), data)
            block = DoctorSchedule(
                doctor_id=doctor_id,
                weekday=data.weekday,
                start_time=data.start_time,
                end_time=data.end_time,
            )
            self.stores.schedules.save(block)

        logger.info(f"Schedule block {block.id} created for doctor {doctor_id}")
        self._after_schedule_change([doctor.id], doctor.clinic_id, {data.weekday}, actor, "schedule_change")
        return block

    def update_doctor_schedule(self, block_id: int, data: ScheduleBlockCreate, actor: ActorContext) -> DoctorSchedule:
        block = self.stores.schedules.get_doctor_block(block_id)
        if block is None or not block.is_active:
            raise ReferentialError("Schedule not found")
        doctor = self._require_doctor_manage(block.doctor_id, actor)
        validate_block(data)

        previous_weekday = block.weekday
        with self.stores.transactions.atomic():
            ensure_no_block_overlap(
                self.stores.schedules.doctor_blocks(block.doctor_id, data.weekday), data, exclude_id=block.id
            )
            block.weekday = data.weekday
            block.start_time = data.start_time
            block.end_time = data.end_time
            self.stores.schedules.save(block)

        logger.info(f"Schedule block {block.id} updated for doctor {doctor.id}")
        self._after_schedule_change(
            [doctor.id], doctor.clinic_id, {previous_weekday, data.weekday}, actor, "schedule_change"
        )
        return block

    def delete_doctor_schedule(self, block_id: int, actor: ActorContext) -> None:
        block = self.stores.schedules.get_doctor_block(block_id)
        if block is None or not block.is_active:
            raise ReferentialError("Schedule not found")
        doctor = self._require_doctor_manage(block.doctor_id, actor)

        with self.stores.transactions.atomic():
            block.is_active = False
            block.deleted_at = self.clock()
            self.stores.schedules.save(block)

        logger.info(f"Schedule block {block_id} deleted for doctor {doctor.id}")
        self._after_schedule_change([doctor.id], doctor.clinic_id, {block.weekday}, actor, "schedule_change")

    # Clinic schedule blocks

    def list_clinic_schedules(self, clinic_id: int, actor: ActorContext) -> List[ClinicSchedule]:
        require_clinic_access(actor, clinic_id)
        self.stores.settings.get_settings(clinic_id)
        return self.stores.schedules.clinic_blocks(clinic_id)

    def create_clinic_schedule(self, clinic_id: int, data: ScheduleBlockCreate, actor: ActorContext) -> ClinicSchedule:
        self._require_clinic_manage(clinic_id, actor)
        validate_block(data)

        with self.stores.transactions.atomic():
            ensure_no_block_overlap(self.stores.schedules.clinic_blocks(clinic_id, data.weekday), data)
            block = ClinicSchedule(
                clinic_id=clinic_id,
                weekday=data.weekday,
                start_time=data.start_time,
                end_time=data.end_time,
            )
            self.stores.schedules.save(block)

        logger.info(f"Clinic schedule block {block.id} created for clinic {clinic_id}")
        self._after_schedule_change(None, clinic_id, {data.weekday}, actor, "schedule_change")
        return block

    def update_clinic_schedule(self, block_id: int, data: ScheduleBlockCreate, actor: ActorContext) -> ClinicSchedule:
        block = self.stores.schedules.get_clinic_block(block_id)
        if block is None or not block.is_active:
            raise ReferentialError("Schedule not found")
        self._require_clinic_manage(block.clinic_id, actor)
        validate_block(data)

        previous_weekday = block.weekday
        with self.stores.transactions.atomic():
            ensure_no_block_overlap(
                self.stores.schedules.clinic_blocks(block.clinic_id, data.weekday), data, exclude_id=block.id
            )
            block.weekday = data.weekday
            block.start_time = data.start_time
            block.end_time = data.end_time
            self.stores.schedules.save(block)

        logger.info(f"Clinic schedule block {block.id} updated for clinic {block.clinic_id}")
        self._after_schedule_change(
            None, block.clinic_id, {previous_weekday, data.weekday}, actor, "schedule_change"
        )
        return block

    def delete_clinic_schedule(self, block_id: int, actor: ActorContext) -> None:
        block = self.stores.schedules.get_clinic_block(block_id)
        if block is None or not block.is_active:
            raise ReferentialError("Schedule not found")
        self._require_clinic_manage(block.clinic_id, actor)

        with self.stores.transactions.atomic():
            block.is_active = False
            block.deleted_at = self.clock()
            self.stores.schedules.save(block)

        logger.info(f"Clinic schedule block {block_id} deleted")
        self._after_schedule_change(None, block.clinic_id, {block.weekday}, actor, "schedule_change")

    # Doctor exceptions

    def list_doctor_exceptions(
        self, doctor_id: int, actor: ActorContext, from_date: Optional[date] = None
    ) -> List[DoctorException]:
        self._require_doctor_view(doctor_id, actor)
        return self.stores.schedules.exceptions_from(doctor_id, from_date)

    def create_doctor_exception(
        self, doctor_id: int, data: DoctorExceptionCreate, actor: ActorContext
    ) -> DoctorException:
        doctor = self._require_doctor_manage(doctor_id, actor)
        validate_exception(data)

        with self.stores.transactions.atomic():
            exception = DoctorException(
                doctor_id=doctor_id,
                exception_date=data.exception_date,
                start_time=data.start_time or None,
                end_time=data.end_time or None,
                reason=(data.reason or "").strip() or None,
            )
            self.stores.schedules.save(exception)

        logger.info(
            f"Exception {exception.id} created for doctor {doctor_id} on {data.exception_date} "
            f"({'full day' if exception.is_full_day else f'{exception.start_time}-{exception.end_time}'})"
        )
        self.availability.invalidate(doctor_id)

        candidates = self.stores.appointments.find(AppointmentQuery(
            appointment_date=data.exception_date,
            doctor_id=doctor_id,
            statuses=RESCHEDULABLE_STATUSES,
        ))
        affected = [
            a for a in candidates
            if exception.is_full_day or overlaps(a.start_time, a.end_time, exception.start_time, exception.end_time)
        ]
        self._mark_requires_reschedule(
            affected,
            actor,
            "exception",
            exception_id=exception.id,
            exception_date=data.exception_date,
            exception_start=exception.start_time,
            exception_end=exception.end_time,
            reason=exception.reason,
        )
        return exception

    def delete_doctor_exception(self, exception_id: int, actor: ActorContext) -> None:
        exception = self.stores.schedules.get_exception(exception_id)
        if exception is None or not exception.is_active:
            raise ReferentialError("Exception not found")
        self._require_doctor_manage(exception.doctor_id, actor)

        with self.stores.transactions.atomic():
            exception.is_active = False
            exception.deleted_at = self.clock()
            self.stores.schedules.save(exception)

        self.availability.invalidate(exception.doctor_id)
        logger.info(f"Exception {exception_id} deleted for doctor {exception.doctor_id}")

    # Impact on booked appointments

    def _after_schedule_change(
        self,
        doctor_ids: Optional[List[int]],
        clinic_id: int,
        weekdays: set,
        actor: ActorContext,
        transition_type: str,
    ) -> int:
        """Move future pending/confirmed appointments that no longer fit to REQUIRES_RESCHEDULE"""
        if doctor_ids is None:
            self.availability.invalidate_all()
        else:
            for doctor_id in doctor_ids:
                self.availability.invalidate(doctor_id)

        settings = self.stores.settings.get_settings(clinic_id)
        today = self.stores.settings.local_now(settings).date()
        if doctor_ids is None:
            candidates = self.stores.appointments.find(AppointmentQuery(
                clinic_id=clinic_id, date_from=today, statuses=RESCHEDULABLE_STATUSES,
            ))
        else:
            candidates = []
            for doctor_id in doctor_ids:
                candidates.extend(self.stores.appointments.find(AppointmentQuery(
                    doctor_id=doctor_id, date_from=today, statuses=RESCHEDULABLE_STATUSES,
                )))

        try:
            affected = [
                a for a in candidates
                if weekday_sunday_first(a.appointment_date) in weekdays
                and not self.availability.is_doctor_available(
                    a.doctor_id, clinic_id, a.appointment_date, a.start_time, a.end_time
                )
            ]
        except SchedulingError as e:
            logger.error(f"Error checking appointments affected by {transition_type}: {e}")
            return 0
        return self._mark_requires_reschedule(affected, actor, transition_type)

    def _mark_requires_reschedule(
        self, appointments: List[Appointment], actor: ActorContext, transition_type: str, **metadata
    ) -> int:
        """Best effort: failures are logged and never undo the schedule change"""
        if not appointments:
            return 0
        context = TransitionContext(actor=actor)
        try:
            with self.stores.transactions.atomic():
                for appointment in appointments:
                    plan = resolve_effective_transition(
                        appointment, AppointmentStatus.REQUIRES_RESCHEDULE, context
                    )
                    check_transition_guards(plan, context, None)
                    apply_transition(appointment, plan, context, self.clock())
                    self.stores.appointments.save(appointment)
                    self.stores.audit.append(build_audit_entry(
                        appointment,
                        previous=plan.previous,
                        requested=plan.requested,
                        applied=plan.applied,
                        actor=actor,
                        transition_type=transition_type,
                        patient=self.stores.directory.get_patient(appointment.patient_id),
                        doctor=self.stores.directory.get_doctor(appointment.doctor_id),
                        **metadata,
                    ))
        except SchedulingError as e:
            logger.error(f"Error marking affected appointments ({transition_type}): {e}")
            return 0

        for doctor_id in {a.doctor_id for a in appointments}:
            self.availability.invalidate(doctor_id)
        logger.info(f"{len(appointments)} appointment(s) marked as requiring reschedule ({transition_type})")
        return len(appointments)

    # Permission helpers

    def _require_doctor_view(self, doctor_id: int, actor: ActorContext):
        doctor = require_doctor(self.stores.directory, doctor_id)
        require_clinic_access(actor, doctor.clinic_id)
        if actor.role == UserRole.DOCTOR and actor.doctor_id != doctor_id:
            raise PermissionDeniedError("Doctors can only view their own schedule")
        return doctor

    def _require_doctor_manage(self, doctor_id: int, actor: ActorContext):
        doctor = require_doctor(self.stores.directory, doctor_id)
        if not Permissions.can_manage_doctor_schedules(actor, doctor_id):
            raise PermissionDeniedError("You don't have permission to manage this doctor's schedule")
        require_clinic_access(actor, doctor.clinic_id)
        return doctor

    def _require_clinic_manage(self, clinic_id: int, actor: ActorContext) -> None:
        if not Permissions.can_manage_clinic_schedules(actor):
            raise PermissionDeniedError("You don't have permission to manage clinic schedules")
        require_clinic_access(actor, clinic_id)
        self.stores.settings.get_settings(clinic_id)
