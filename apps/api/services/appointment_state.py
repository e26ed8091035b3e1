"""Appointment lifecycle state machine

Flow of appointment statuses:

    PENDING -> CONFIRMED, REQUIRES_RESCHEDULE or CANCELLED
    CONFIRMED -> IN_CONSULTATION, CANCELLED, NO_SHOW or REQUIRES_RESCHEDULE
    IN_CONSULTATION -> PAID or TRANSFER_PENDING
    TRANSFER_PENDING -> PAID (once the transfer is confirmed)
    REQUIRES_RESCHEDULE -> PENDING or CANCELLED

Terminal statuses: COMPLETED, PAID, CANCELLED, NO_SHOW.

A status change runs in two stages. ``resolve_effective_transition`` decides
which status is actually applied (a PAID request paid by an unconfirmed
transfer becomes TRANSFER_PENDING), then ``check_transition_guards`` and
``apply_transition`` enforce the table and business guards and mutate the
appointment. Persistence and audit writes happen in the booking service.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, FrozenSet, List, Optional
import json

from errors import TransitionError
from models import Appointment, AppointmentStatus, AuditLog, Doctor, Patient, PaymentMethod
from permissions import ActorContext
from validators.appointment_validator import has_complete_mandatory_data
from validators.business_rules import get_business_rules

S = AppointmentStatus

TRANSITIONS: Dict[AppointmentStatus, FrozenSet[AppointmentStatus]] = {
    S.PENDING: frozenset({S.CONFIRMED, S.REQUIRES_RESCHEDULE, S.CANCELLED}),
    S.CONFIRMED: frozenset({S.IN_CONSULTATION, S.CANCELLED, S.NO_SHOW, S.REQUIRES_RESCHEDULE}),
    S.IN_CONSULTATION: frozenset({S.PAID, S.TRANSFER_PENDING}),
    S.TRANSFER_PENDING: frozenset({S.PAID}),
    S.REQUIRES_RESCHEDULE: frozenset({S.PENDING, S.CANCELLED}),
    S.PAID: frozenset(),
    S.COMPLETED: frozenset(),
    S.CANCELLED: frozenset(),
    S.NO_SHOW: frozenset(),
}

TERMINAL_STATUSES = frozenset({S.COMPLETED, S.PAID, S.CANCELLED, S.NO_SHOW})

# Statuses whose appointments are moved to REQUIRES_RESCHEDULE when the schedule changes
RESCHEDULABLE_STATUSES = frozenset({S.PENDING, S.CONFIRMED})

STATUS_LABELS = {
    S.PENDING: "Pending",
    S.CONFIRMED: "Confirmed",
    S.IN_CONSULTATION: "In consultation",
    S.TRANSFER_PENDING: "Awaiting transfer confirmation",
    S.PAID: "Paid",
    S.COMPLETED: "Completed",
    S.CANCELLED: "Cancelled",
    S.NO_SHOW: "No show",
    S.REQUIRES_RESCHEDULE: "Requires reschedule",
}


@dataclass
class TransitionContext:
    actor: ActorContext
    cancel_reason: Optional[str] = None
    notes: Optional[str] = None
    payment_method: Optional[PaymentMethod] = None
    payment_confirmed: Optional[bool] = None
    payment_amount: Optional[float] = None


@dataclass(frozen=True)
class TransitionPlan:
    previous: AppointmentStatus
    requested: AppointmentStatus
    applied: AppointmentStatus
    payment_method: Optional[PaymentMethod]
    payment_confirmed: bool

    @property
    def is_noop(self) -> bool:
        return self.previous == self.applied


def is_valid_transition(current: AppointmentStatus, new: AppointmentStatus) -> bool:
    return AppointmentStatus(new) in TRANSITIONS.get(AppointmentStatus(current), frozenset())


def get_available_transitions(current: AppointmentStatus) -> List[AppointmentStatus]:
    allowed = TRANSITIONS.get(AppointmentStatus(current), frozenset())
    return [status for status in AppointmentStatus if status in allowed]


def is_terminal_status(status: AppointmentStatus) -> bool:
    return AppointmentStatus(status) in TERMINAL_STATUSES


def get_status_label(status: AppointmentStatus) -> str:
    return STATUS_LABELS.get(AppointmentStatus(status), str(status))


def is_deferred_payment(method: Optional[PaymentMethod]) -> bool:
    if method is None:
        return False
    return PaymentMethod(method).value in get_business_rules().DEFERRED_PAYMENT_METHODS


def resolve_effective_transition(
    appointment: Appointment,
    requested: AppointmentStatus,
    context: TransitionContext,
) -> TransitionPlan:
    """Decide the status actually applied for a requested status"""
    requested = AppointmentStatus(requested)
    method = context.payment_method or appointment.payment_method

    if context.payment_confirmed is not None:
        confirmed = context.payment_confirmed
    elif context.payment_method is not None and not is_deferred_payment(context.payment_method):
        # Switching to an instant method counts as confirmation
        confirmed = True
    else:
        confirmed = appointment.payment_confirmed

    applied = requested
    if requested == S.PAID and is_deferred_payment(method) and not confirmed:
        applied = S.TRANSFER_PENDING

    return TransitionPlan(
        previous=AppointmentStatus(appointment.status),
        requested=requested,
        applied=applied,
        payment_method=method,
        payment_confirmed=confirmed,
    )


def check_transition_guards(plan: TransitionPlan, context: TransitionContext, patient: Optional[Patient]) -> None:
    """Raise TransitionError naming the first guard that fails.

    A plan that keeps the current status passes once the request-level
    guards (cancellation reason) are satisfied.
    """
    if plan.requested == S.CANCELLED and not (context.cancel_reason or "").strip():
        raise TransitionError("cancellation_reason", "Cancel reason is required")

    if plan.is_noop:
        return

    if is_terminal_status(plan.previous):
        raise TransitionError(
            "terminal_state",
            f"Appointment is {plan.previous.value} and can no longer change status",
        )

    if not is_valid_transition(plan.previous, plan.applied):
        raise TransitionError(
            "transition_table",
            f"Invalid state transition from {plan.previous.value} to {plan.applied.value}",
        )

    if plan.previous == S.TRANSFER_PENDING and plan.applied == S.PAID and not plan.payment_confirmed:
        raise TransitionError("transfer_confirmation", "The transfer has not been confirmed yet")

    if plan.previous == S.CONFIRMED and plan.applied == S.IN_CONSULTATION:
        if patient is None or not has_complete_mandatory_data(patient):
            raise TransitionError(
                "patient_mandatory_data",
                "The patient's mandatory data is incomplete. Complete the patient "
                "record before starting the consultation.",
            )


def apply_transition(appointment: Appointment, plan: TransitionPlan, context: TransitionContext, now: datetime) -> None:
    appointment.status = plan.applied
    if context.notes:
        appointment.notes = context.notes

    if plan.requested == S.PAID:
        if context.payment_method is not None:
            appointment.payment_method = context.payment_method
        appointment.payment_confirmed = plan.payment_confirmed or plan.applied == S.PAID

    if plan.applied == S.PAID and context.payment_amount is not None:
        appointment.custom_price = context.payment_amount

    if plan.applied == S.CANCELLED:
        appointment.cancel_reason = context.cancel_reason.strip()
        appointment.cancelled_at = now
        appointment.cancelled_by = context.actor.user_id

    appointment.updated_at = now


def build_audit_entry(
    appointment: Appointment,
    previous: AppointmentStatus,
    requested: AppointmentStatus,
    applied: AppointmentStatus,
    actor: Optional[ActorContext],
    transition_type: str,
    patient: Optional[Patient] = None,
    doctor: Optional[Doctor] = None,
    **metadata,
) -> AuditLog:
    extra = {
        "patient_name": patient.display_name if patient else None,
        "doctor_name": doctor.display_name if doctor else None,
        "appointment_date": appointment.appointment_date,
        "appointment_time": f"{appointment.start_time}-{appointment.end_time}",
        "payment_method": appointment.payment_method,
        "payment_confirmed": appointment.payment_confirmed,
    }
    extra.update(metadata)
    return AuditLog(
        appointment_id=appointment.id,
        clinic_id=appointment.clinic_id,
        user_id=actor.user_id if actor else None,
        transition_type=transition_type,
        previous_status=previous,
        requested_status=requested,
        applied_status=applied,
        extra_data=json.dumps(extra, default=_json_default),
    )


def _json_default(value):
    if hasattr(value, "value"):
        return value.value
    return str(value)
