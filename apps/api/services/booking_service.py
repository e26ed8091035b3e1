"""Booking and update orchestration

Every write validates in a fixed order, first failure wins:
structural -> temporal -> referential -> conflict. The conflict check and the
write share one transaction with the doctor/room/patient rows locked, so two
receptionists booking the same slot cannot both succeed.
"""
from datetime import date
from typing import List, Optional, Tuple
import logging

from errors import ConflictError, PermissionDeniedError, ReferentialError, TransitionError
from models import Appointment, AppointmentStatus, AppointmentType, RecordState, UserRole
from permissions import ActorContext, Permissions
from schemas import AppointmentCreate, AppointmentReschedule, AppointmentUpdate
from services.appointment_state import (
    TransitionContext,
    apply_transition,
    build_audit_entry,
    check_transition_guards,
    is_terminal_status,
    resolve_effective_transition,
)
from services.availability_service import AvailabilityService
from services.conflict_service import find_conflicts
from stores.base import AppointmentQuery, SchedulingStores
from stores.sql import Clock, system_clock
from validators.appointment_validator import (
    require_appointment_type,
    require_clinic_access,
    require_doctor,
    require_patient,
    require_room,
    validate_booking_payload,
    validate_not_in_past,
    validate_payment_amount,
)
from validators.business_rules import get_business_rules
from validators.time_validator import get_duration_minutes

logger = logging.getLogger(__name__)

# Row lifecycle: soft delete is reversible only by an operator, purge is final
RECORD_STATE_TRANSITIONS = {
    RecordState.ACTIVE: {RecordState.SOFT_DELETED, RecordState.PURGED},
    RecordState.SOFT_DELETED: {RecordState.PURGED},
    RecordState.PURGED: set(),
}

SCHEDULING_FIELDS = ("appointment_date", "start_time", "end_time", "doctor_id", "room_id", "patient_id")
RESCHEDULE_FIELDS = ("appointment_date", "start_time", "end_time", "doctor_id")
INFORMATIONAL_FIELDS = ("notes", "custom_reason")


class BookingService:
    def __init__(
        self,
        stores: SchedulingStores,
        availability: Optional[AvailabilityService] = None,
        clock: Optional[Clock] = None,
    ):
        self.stores = stores
        self.availability = availability or AvailabilityService(stores)
        self.clock = clock or system_clock

    # Queries

    def check_conflicts(
        self,
        doctor_id: int,
        patient_id: int,
        room_id: Optional[int],
        appointment_date: date,
        start_time: str,
        end_time: str,
        exclude_appointment_id: Optional[int] = None,
    ) -> List[str]:
        return find_conflicts(
            self.stores.appointments,
            doctor_id,
            patient_id,
            room_id,
            appointment_date,
            start_time,
            end_time,
            exclude_appointment_id,
        )

    def get_appointment(self, appointment_id: int, actor: ActorContext) -> Appointment:
        if not Permissions.can_view_appointments(actor):
            raise PermissionDeniedError("You don't have permission to view appointments")
        appointment = self._require_live(appointment_id)
        require_clinic_access(actor, appointment.clinic_id)
        return appointment

    def list_appointments(
        self,
        actor: ActorContext,
        appointment_date: Optional[date] = None,
        doctor_id: Optional[int] = None,
        patient_id: Optional[int] = None,
    ) -> List[Appointment]:
        if not Permissions.can_view_appointments(actor):
            raise PermissionDeniedError("You don't have permission to view appointments")

        clinic_id = None
        if actor.role == UserRole.DOCTOR:
            if actor.doctor_id is None:
                raise ReferentialError("No doctor record found for this user")
            doctor_id = actor.doctor_id
        elif actor.role != UserRole.ADMIN:
            clinic_id = actor.clinic_id

        return self.stores.appointments.find(AppointmentQuery(
            appointment_date=appointment_date,
            doctor_id=doctor_id,
            patient_id=patient_id,
            clinic_id=clinic_id,
            exclude_statuses=frozenset(),
            limit=get_business_rules().MAX_APPOINTMENTS_PER_LISTING,
        ))

    # Writes

    def book(self, data: AppointmentCreate, actor: ActorContext) -> Appointment:
        if not Permissions.can_create_appointments(actor):
            raise PermissionDeniedError("You don't have permission to book appointments")

        validate_booking_payload(data)

        clinic_id = self._clinic_of_doctor(data.doctor_id)
        require_clinic_access(actor, clinic_id)
        validate_not_in_past(data.appointment_date, self._local_today(clinic_id), actor)

        appointment_type = self._validate_references(data, clinic_id)

        with self.stores.transactions.atomic():
            self.stores.appointments.lock_booking_scope(data.doctor_id, data.room_id, data.patient_id)
            conflicts = self.check_conflicts(
                data.doctor_id,
                data.patient_id,
                data.room_id,
                data.appointment_date,
                data.start_time,
                data.end_time,
            )
            if conflicts:
                raise ConflictError(conflicts)

            price, duration = _effective_price_and_duration(data, appointment_type)
            now = self.clock()
            appointment = Appointment(
                patient_id=data.patient_id,
                doctor_id=data.doctor_id,
                clinic_id=clinic_id,
                room_id=data.room_id,
                appointment_type_id=data.appointment_type_id,
                appointment_date=data.appointment_date,
                start_time=data.start_time,
                end_time=data.end_time,
                status=AppointmentStatus.PENDING,
                custom_reason=(data.custom_reason or "").strip() or None,
                custom_price=price,
                duration_min=duration,
                notes=data.notes,
                created_at=now,
                updated_at=now,
            )
            self.stores.appointments.add(appointment)

        self.availability.invalidate(data.doctor_id)
        logger.info(
            f"Appointment {appointment.id} booked for doctor {data.doctor_id} on "
            f"{data.appointment_date} {data.start_time}-{data.end_time} by user {actor.user_id}"
        )
        return appointment

    def update_appointment(self, appointment_id: int, data: AppointmentUpdate, actor: ActorContext) -> Appointment:
        if not Permissions.can_manage_appointments(actor):
            raise PermissionDeniedError("You don't have permission to update appointments")

        validate_booking_payload(data)

        current = self._require_live(appointment_id)
        require_clinic_access(actor, current.clinic_id)

        if is_terminal_status(current.status):
            _ensure_only_informational_changes(current, data)
            scheduling_changed = False
        else:
            scheduling_changed = _changed(current, data, SCHEDULING_FIELDS)

        clinic_id = self._clinic_of_doctor(data.doctor_id)
        require_clinic_access(actor, clinic_id)
        if scheduling_changed:
            validate_not_in_past(data.appointment_date, self._local_today(clinic_id), actor)

        appointment_type = self._validate_references(data, clinic_id)

        previous_doctor_id = current.doctor_id
        with self.stores.transactions.atomic():
            appointment = self.stores.appointments.get(appointment_id, for_update=True)
            if appointment is None or appointment.record_state != RecordState.ACTIVE:
                raise ReferentialError("Appointment not found")

            if scheduling_changed:
                self.stores.appointments.lock_booking_scope(data.doctor_id, data.room_id, data.patient_id)
                conflicts = self.check_conflicts(
                    data.doctor_id,
                    data.patient_id,
                    data.room_id,
                    data.appointment_date,
                    data.start_time,
                    data.end_time,
                    exclude_appointment_id=appointment_id,
                )
                if conflicts:
                    raise ConflictError(conflicts)

            rescheduled = (
                appointment.status == AppointmentStatus.REQUIRES_RESCHEDULE
                and _changed(appointment, data, RESCHEDULE_FIELDS)
            )
            now = self.clock()

            if is_terminal_status(appointment.status):
                appointment.notes = data.notes
                appointment.custom_reason = (data.custom_reason or "").strip() or None
            else:
                price, duration = _effective_price_and_duration(data, appointment_type)
                appointment.patient_id = data.patient_id
                appointment.doctor_id = data.doctor_id
                appointment.clinic_id = clinic_id
                appointment.room_id = data.room_id
                appointment.appointment_type_id = data.appointment_type_id
                appointment.appointment_date = data.appointment_date
                appointment.start_time = data.start_time
                appointment.end_time = data.end_time
                appointment.custom_reason = (data.custom_reason or "").strip() or None
                appointment.custom_price = price
                appointment.duration_min = duration
                appointment.notes = data.notes
            appointment.updated_at = now

            if rescheduled:
                appointment.status = AppointmentStatus.PENDING
            self.stores.appointments.save(appointment)

            if rescheduled:
                self.stores.audit.append(build_audit_entry(
                    appointment,
                    previous=AppointmentStatus.REQUIRES_RESCHEDULE,
                    requested=AppointmentStatus.PENDING,
                    applied=AppointmentStatus.PENDING,
                    actor=actor,
                    transition_type="reschedule",
                    patient=self.stores.directory.get_patient(appointment.patient_id),
                    doctor=self.stores.directory.get_doctor(appointment.doctor_id),
                ))

        self.availability.invalidate(previous_doctor_id)
        if data.doctor_id != previous_doctor_id:
            self.availability.invalidate(data.doctor_id)
        if rescheduled:
            logger.info(f"Appointment {appointment_id} rescheduled, status moved back to pending")
        return appointment

    def reschedule(self, appointment_id: int, data: AppointmentReschedule, actor: ActorContext) -> Appointment:
        """Move an appointment to a new date/time (and optionally doctor/room)"""
        current = self._require_live(appointment_id)
        update = AppointmentUpdate(
            patient_id=current.patient_id,
            doctor_id=data.doctor_id if data.doctor_id is not None else current.doctor_id,
            room_id=data.room_id if data.room_id is not None else current.room_id,
            appointment_type_id=current.appointment_type_id,
            custom_reason=current.custom_reason,
            custom_price=current.custom_price,
            appointment_date=data.appointment_date,
            start_time=data.start_time,
            end_time=data.end_time,
            notes=current.notes,
        )
        return self.update_appointment(appointment_id, update, actor)

    def transition_status(
        self,
        appointment_id: int,
        new_status: AppointmentStatus,
        context: TransitionContext,
    ) -> Appointment:
        actor = context.actor
        if not Permissions.can_manage_appointments(actor):
            raise PermissionDeniedError("You don't have permission to update appointments")

        validate_payment_amount(context.payment_amount)

        with self.stores.transactions.atomic():
            appointment = self.stores.appointments.get(appointment_id, for_update=True)
            if appointment is None or appointment.record_state != RecordState.ACTIVE:
                raise ReferentialError("Appointment not found")
            require_clinic_access(actor, appointment.clinic_id)

            plan = resolve_effective_transition(appointment, new_status, context)
            patient = self.stores.directory.get_patient(appointment.patient_id)
            check_transition_guards(plan, context, patient)

            if plan.is_noop:
                logger.info(f"Appointment {appointment_id} already {plan.applied.value}, nothing to do")
                return appointment

            apply_transition(appointment, plan, context, self.clock())
            self.stores.appointments.save(appointment)
            self.stores.audit.append(build_audit_entry(
                appointment,
                previous=plan.previous,
                requested=plan.requested,
                applied=plan.applied,
                actor=actor,
                transition_type="status_change",
                patient=patient,
                doctor=self.stores.directory.get_doctor(appointment.doctor_id),
            ))

        self.availability.invalidate(appointment.doctor_id)
        if plan.applied != plan.requested:
            logger.info(
                f"Appointment {appointment_id}: requested {plan.requested.value}, "
                f"applied {plan.applied.value}"
            )
        else:
            logger.info(f"Appointment {appointment_id}: {plan.previous.value} -> {plan.applied.value}")
        return appointment

    def soft_delete(self, appointment_id: int, actor: ActorContext) -> Appointment:
        if not Permissions.can_manage_appointments(actor):
            raise PermissionDeniedError("You don't have permission to delete appointments")

        with self.stores.transactions.atomic():
            appointment = self.stores.appointments.get(appointment_id, for_update=True)
            if appointment is None:
                raise ReferentialError("Appointment not found")
            require_clinic_access(actor, appointment.clinic_id)
            _change_record_state(appointment, RecordState.SOFT_DELETED)
            appointment.deleted_at = self.clock()
            self.stores.appointments.save(appointment)

        self.availability.invalidate(appointment.doctor_id)
        logger.info(f"Appointment {appointment_id} soft-deleted by user {actor.user_id}")
        return appointment

    def hard_delete(self, appointment_id: int, actor: ActorContext) -> None:
        if not Permissions.can_hard_delete_appointments(actor):
            raise PermissionDeniedError("Only administrators can permanently delete appointments")

        with self.stores.transactions.atomic():
            appointment = self.stores.appointments.get(appointment_id, for_update=True)
            if appointment is None:
                raise ReferentialError("Appointment not found")
            doctor_id = appointment.doctor_id
            _change_record_state(appointment, RecordState.PURGED)
            self.stores.appointments.purge(appointment)

        self.availability.invalidate(doctor_id)
        logger.warning(f"Appointment {appointment_id} permanently deleted by user {actor.user_id}")

    # Helpers

    def _require_live(self, appointment_id: int) -> Appointment:
        appointment = self.stores.appointments.get(appointment_id)
        if appointment is None or appointment.record_state != RecordState.ACTIVE:
            raise ReferentialError("Appointment not found")
        return appointment

    def _clinic_of_doctor(self, doctor_id: int) -> int:
        doctor = self.stores.directory.get_doctor(doctor_id)
        if doctor is None:
            raise ReferentialError("Doctor not found")
        return doctor.clinic_id

    def _local_today(self, clinic_id: int) -> date:
        settings = self.stores.settings.get_settings(clinic_id)
        return self.stores.settings.local_now(settings).date()

    def _validate_references(self, data: AppointmentCreate, clinic_id: int) -> Optional[AppointmentType]:
        require_doctor(self.stores.directory, data.doctor_id)
        require_patient(self.stores.directory, data.patient_id, clinic_id)
        if data.room_id is not None:
            require_room(self.stores.directory, data.room_id, clinic_id)
        if data.appointment_type_id is not None:
            return require_appointment_type(self.stores.catalog, data.appointment_type_id, clinic_id)
        return None


def _effective_price_and_duration(
    data: AppointmentCreate,
    appointment_type: Optional[AppointmentType],
) -> Tuple[Optional[float], int]:
    """Explicit value, else the appointment type default"""
    if data.custom_price is not None:
        price = data.custom_price
    elif appointment_type is not None:
        price = appointment_type.price
    else:
        price = None

    if data.duration_min is not None:
        duration = data.duration_min
    elif appointment_type is not None:
        duration = appointment_type.duration_min
    else:
        duration = get_duration_minutes(data.start_time, data.end_time)
    return price, duration


def _changed(appointment: Appointment, data, fields) -> bool:
    return any(getattr(appointment, f) != getattr(data, f) for f in fields)


def _ensure_only_informational_changes(appointment: Appointment, data: AppointmentCreate) -> None:
    governed = [
        f for f in SCHEDULING_FIELDS + ("appointment_type_id", "custom_price", "duration_min")
        if getattr(data, f) is not None and getattr(appointment, f) != getattr(data, f)
    ]
    if governed:
        raise TransitionError(
            "terminal_state",
            f"Appointment is {AppointmentStatus(appointment.status).value}; "
            f"only {', '.join(INFORMATIONAL_FIELDS)} can be edited",
        )


def _change_record_state(appointment: Appointment, new_state: RecordState) -> None:
    current = RecordState(appointment.record_state)
    if new_state not in RECORD_STATE_TRANSITIONS[current]:
        raise TransitionError(
            "record_state",
            f"Appointment record cannot go from {current.value} to {new_state.value}",
        )
    appointment.record_state = new_state
