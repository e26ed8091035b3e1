from datetime import date
from typing import List, Optional
from fastapi import APIRouter, Depends, Query
from permissions import ActorContext
from schemas import DayAvailabilityResponse, SlotResponse
from dependencies import get_availability_service, get_current_actor
from services.availability_service import AvailabilityService
from validators.appointment_validator import require_clinic_access

router = APIRouter(prefix="/api/availability", tags=["Availability"])

@router.get("/slots", response_model=List[SlotResponse])
def get_slots(
    doctor_id: int,
    clinic_id: int,
    day: date = Query(..., alias="date"),
    duration_min: Optional[int] = None,
    actor: ActorContext = Depends(get_current_actor),
    service: AvailabilityService = Depends(get_availability_service),
):
    """Bookable slots for a doctor on a clinic-local date; duration defaults to the clinic grid"""
    require_clinic_access(actor, clinic_id)
    slots = service.compute_slots(doctor_id, day, clinic_id, duration_min)
    return [SlotResponse(**s.to_dict()) for s in slots]

@router.get("/range", response_model=List[DayAvailabilityResponse])
def get_availability_range(
    doctor_id: int,
    clinic_id: int,
    start_date: date,
    end_date: date,
    duration_min: Optional[int] = None,
    actor: ActorContext = Depends(get_current_actor),
    service: AvailabilityService = Depends(get_availability_service),
):
    """Per-day availability flags for a calendar view"""
    require_clinic_access(actor, clinic_id)
    days = service.get_availability_range(doctor_id, clinic_id, start_date, end_date, duration_min)
    return [DayAvailabilityResponse(date=d.day, available=d.available) for d in days]
