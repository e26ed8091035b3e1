"""
Services package for the scheduling API
Contains the availability, conflict, state machine, booking and schedule logic
"""

from .availability_service import AvailabilityService, Slot, DayAvailability
from .booking_service import BookingService
from .schedule_service import ScheduleService

__all__ = [
    'AvailabilityService',
    'Slot',
    'DayAvailability',
    'BookingService',
    'ScheduleService',
]
