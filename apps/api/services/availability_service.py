"""Availability resolution: bookable slots for a doctor on a clinic-local day"""
from dataclasses import dataclass, asdict
from datetime import date, timedelta
from typing import Iterable, List, Optional, Sequence, Tuple
import logging

from errors import ValidationError
from stores.base import AppointmentQuery, ClinicSettings, SchedulingStores
from utils.cache import SlotCache
from validators.appointment_validator import require_doctor, validate_duration_bounds
from validators.business_rules import get_business_rules
from validators.time_validator import overlaps, to_minutes, to_time_string, weekday_sunday_first

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Slot:
    start_time: str
    end_time: str

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class EffectiveBlock:
    """A schedule block as seen by a doctor; inherited blocks come from the clinic"""
    id: int
    weekday: int
    start_time: str
    end_time: str
    inherited: bool = False


@dataclass(frozen=True)
class DayAvailability:
    day: date
    available: bool


def generate_block_slots(
    block_start: int,
    block_end: int,
    step_minutes: int,
    duration_min: int,
    busy: Sequence[Tuple[int, int]],
) -> List[Slot]:
    """Grid-aligned slots inside one block.

    Starts advance by ``step_minutes`` regardless of ``duration_min``; a
    candidate is kept when it ends by ``block_end`` and overlaps no busy range.
    """
    slots = []
    current = block_start
    while current + duration_min <= block_end:
        end = current + duration_min
        if not any(overlaps(current, end, busy_start, busy_end) for busy_start, busy_end in busy):
            slots.append(Slot(to_time_string(current), to_time_string(end)))
        current += step_minutes
    return slots


class AvailabilityService:
    def __init__(self, stores: SchedulingStores, cache: Optional[SlotCache] = None):
        self.stores = stores
        self.cache = cache

    def effective_blocks(self, doctor_id: int, clinic_id: int, weekday: Optional[int] = None) -> List[EffectiveBlock]:
        """Doctor blocks, or the clinic's blocks when the doctor has none for the weekday"""
        doctor_blocks = self.stores.schedules.doctor_blocks(doctor_id, weekday)
        if weekday is None:
            own_days = {b.weekday for b in doctor_blocks}
            inherited = [
                b for b in self.stores.schedules.clinic_blocks(clinic_id)
                if b.weekday not in own_days
            ]
        elif doctor_blocks:
            inherited = []
        else:
            inherited = self.stores.schedules.clinic_blocks(clinic_id, weekday)

        blocks = [
            EffectiveBlock(b.id, b.weekday, b.start_time, b.end_time, inherited=False)
            for b in doctor_blocks
        ] + [
            EffectiveBlock(b.id, b.weekday, b.start_time, b.end_time, inherited=True)
            for b in inherited
        ]
        return sorted(blocks, key=lambda b: (b.weekday, to_minutes(b.start_time)))

    def compute_slots(
        self, doctor_id: int, day: date, clinic_id: int, duration_min: Optional[int] = None
    ) -> List[Slot]:
        """Slots of ``duration_min`` (the clinic grid step when omitted) on ``day``"""
        settings = self.stores.settings.get_settings(clinic_id)
        require_doctor(self.stores.directory, doctor_id, clinic_id)
        if duration_min is None:
            duration_min = settings.slot_minutes
        validate_duration_bounds(duration_min)

        slots = self._cached_day_slots(doctor_id, day, settings, duration_min)

        local_now = self.stores.settings.local_now(settings)
        if day == local_now.date():
            now_seconds = local_now.hour * 3600 + local_now.minute * 60 + local_now.second
            slots = [s for s in slots if to_minutes(s.start_time) * 60 > now_seconds]
        return slots

    def get_availability_range(
        self,
        doctor_id: int,
        clinic_id: int,
        start_date: date,
        end_date: date,
        duration_min: Optional[int] = None,
    ) -> List[DayAvailability]:
        rules = get_business_rules()
        if end_date < start_date:
            raise ValidationError("End date must not be before start date")
        span = (end_date - start_date).days + 1
        if span > rules.MAX_AVAILABILITY_RANGE_DAYS:
            raise ValidationError(
                f"Availability range cannot exceed {rules.MAX_AVAILABILITY_RANGE_DAYS} days"
            )
        results = []
        for offset in range(span):
            day = start_date + timedelta(days=offset)
            slots = self.compute_slots(doctor_id, day, clinic_id, duration_min)
            results.append(DayAvailability(day=day, available=len(slots) > 0))
        return results

    def is_doctor_available(self, doctor_id: int, clinic_id: int, day: date, start_time: str, end_time: str) -> bool:
        """True when [start, end) fits one effective block and no exception blocks it"""
        require_doctor(self.stores.directory, doctor_id, clinic_id)
        exceptions = self.stores.schedules.exceptions_on(doctor_id, day)
        if any(e.is_full_day for e in exceptions):
            return False
        if any(overlaps(start_time, end_time, e.start_time, e.end_time) for e in exceptions):
            return False

        start, end = to_minutes(start_time), to_minutes(end_time)
        for block in self.effective_blocks(doctor_id, clinic_id, weekday_sunday_first(day)):
            if to_minutes(block.start_time) <= start and end <= to_minutes(block.end_time):
                return True
        return False

    def invalidate(self, doctor_id: int) -> None:
        if self.cache is not None:
            self.cache.invalidate_doctor(doctor_id)

    def invalidate_all(self) -> None:
        if self.cache is not None:
            self.cache.invalidate_all()

    def _cached_day_slots(self, doctor_id: int, day: date, settings: ClinicSettings, duration_min: int) -> List[Slot]:
        if self.cache is not None:
            cached = self.cache.get_slots(doctor_id, settings.clinic_id, settings.slot_minutes, day, duration_min)
            if cached is not None:
                return [Slot(**s) for s in cached]

        slots = self._day_slots(doctor_id, day, settings, duration_min)

        if self.cache is not None:
            self.cache.set_slots(
                doctor_id, settings.clinic_id, settings.slot_minutes, day, duration_min,
                [s.to_dict() for s in slots],
            )
        return slots

    def _day_slots(self, doctor_id: int, day: date, settings: ClinicSettings, duration_min: int) -> List[Slot]:
        exceptions = self.stores.schedules.exceptions_on(doctor_id, day)
        if any(e.is_full_day for e in exceptions):
            logger.info(f"Doctor {doctor_id} blocked for the whole day {day}")
            return []

        blocks = self.effective_blocks(doctor_id, settings.clinic_id, weekday_sunday_first(day))
        if not blocks:
            return []

        appointments = self.stores.appointments.find(
            AppointmentQuery(appointment_date=day, doctor_id=doctor_id)
        )
        busy = _busy_ranges(
            [(a.start_time, a.end_time) for a in appointments]
            + [(e.start_time, e.end_time) for e in exceptions if e.start_time and e.end_time]
        )

        slots: List[Slot] = []
        for block in blocks:
            slots.extend(generate_block_slots(
                to_minutes(block.start_time),
                to_minutes(block.end_time),
                settings.slot_minutes,
                duration_min,
                busy,
            ))
        return slots


def _busy_ranges(ranges: Iterable[Tuple[str, str]]) -> List[Tuple[int, int]]:
    return [(to_minutes(start), to_minutes(end)) for start, end in ranges]
