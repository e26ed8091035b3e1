"""Actor context and role gates for the scheduling core"""
from dataclasses import dataclass
from typing import Optional

from models import UserRole


@dataclass(frozen=True)
class ActorContext:
    """Who is performing an operation; passed explicitly to every service call"""
    user_id: int
    role: UserRole
    clinic_id: Optional[int] = None
    doctor_id: Optional[int] = None  # set when the actor is a doctor


class Permissions:
    """Boolean role gates"""

    @staticmethod
    def can_create_appointments(actor: ActorContext) -> bool:
        return actor.role in (UserRole.ADMIN, UserRole.CLINIC_ADMIN, UserRole.RECEPTION)

    @staticmethod
    def can_manage_appointments(actor: ActorContext) -> bool:
        return actor.role in (
            UserRole.ADMIN,
            UserRole.CLINIC_ADMIN,
            UserRole.RECEPTION,
            UserRole.DOCTOR,
        )

    @staticmethod
    def can_view_appointments(actor: ActorContext) -> bool:
        return actor.role in (
            UserRole.ADMIN,
            UserRole.CLINIC_ADMIN,
            UserRole.RECEPTION,
            UserRole.NURSE,
            UserRole.DOCTOR,
        )

    @staticmethod
    def can_backfill_appointments(actor: ActorContext) -> bool:
        """Booking on dates already past in the clinic calendar"""
        return actor.role in (UserRole.ADMIN, UserRole.CLINIC_ADMIN)

    @staticmethod
    def can_hard_delete_appointments(actor: ActorContext) -> bool:
        return actor.role == UserRole.ADMIN

    @staticmethod
    def can_manage_clinic_schedules(actor: ActorContext) -> bool:
        return actor.role in (UserRole.ADMIN, UserRole.CLINIC_ADMIN)

    @staticmethod
    def can_manage_doctor_schedules(actor: ActorContext, doctor_id: Optional[int] = None) -> bool:
        if actor.role in (UserRole.ADMIN, UserRole.CLINIC_ADMIN, UserRole.RECEPTION):
            return True
        # Doctors manage their own schedule and exceptions
        return actor.role == UserRole.DOCTOR and doctor_id is not None and actor.doctor_id == doctor_id

    @staticmethod
    def can_access_clinic(actor: ActorContext, clinic_id: int) -> bool:
        if actor.role == UserRole.ADMIN:
            return True
        return actor.clinic_id == clinic_id
