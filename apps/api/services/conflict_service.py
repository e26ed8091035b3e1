"""Conflict detection across the doctor, room and patient scopes"""
from datetime import date
from typing import List, Optional
import logging

from stores.base import AppointmentQuery, AppointmentStore
from validators.time_validator import validate_time_range

logger = logging.getLogger(__name__)

DOCTOR_CONFLICT = "Doctor is not available at this time"
ROOM_CONFLICT = "Room is not available at this time"
PATIENT_CONFLICT = "Patient has another appointment at this time"


def find_conflicts(
    appointments: AppointmentStore,
    doctor_id: int,
    patient_id: int,
    room_id: Optional[int],
    appointment_date: date,
    start_time: str,
    end_time: str,
    exclude_appointment_id: Optional[int] = None,
) -> List[str]:
    """One reason per colliding scope; an empty list means the booking is free.

    Only active, non-cancelled appointments on the same date count. Callers
    booking or editing must run this inside the write transaction.
    """
    validate_time_range(start_time, end_time)

    def scope_query(**scope) -> AppointmentQuery:
        return AppointmentQuery(
            appointment_date=appointment_date,
            overlapping=(start_time, end_time),
            exclude_id=exclude_appointment_id,
            limit=1,
            **scope,
        )

    conflicts = []
    if appointments.find(scope_query(doctor_id=doctor_id)):
        conflicts.append(DOCTOR_CONFLICT)
    if room_id is not None and appointments.find(scope_query(room_id=room_id)):
        conflicts.append(ROOM_CONFLICT)
    if appointments.find(scope_query(patient_id=patient_id)):
        conflicts.append(PATIENT_CONFLICT)

    if conflicts:
        logger.info(
            f"Conflicts for doctor {doctor_id}, patient {patient_id}, room {room_id} "
            f"on {appointment_date} {start_time}-{end_time}: {conflicts}"
        )
    return conflicts
