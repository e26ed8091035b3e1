from datetime import date
from typing import List, Optional
from fastapi import APIRouter, Depends, Request, status
from slowapi import Limiter
from slowapi.util import get_remote_address
from permissions import ActorContext
from schemas import DoctorExceptionCreate, DoctorExceptionResponse, ScheduleBlockCreate, ScheduleBlockResponse
from dependencies import get_current_actor, get_schedule_service
from services.schedule_service import ScheduleService
import os

router = APIRouter(prefix="/api/schedules", tags=["Schedules"])

limiter = Limiter(
    key_func=get_remote_address,
    enabled=os.getenv("RATE_LIMIT_ENABLED", "true").lower() == "true",
)

def _block_response(block, inherited: bool = False) -> ScheduleBlockResponse:
    return ScheduleBlockResponse(
        id=block.id,
        weekday=block.weekday,
        start_time=block.start_time,
        end_time=block.end_time,
        inherited=inherited,
    )

# Doctor schedule blocks

@router.get("/doctors/{doctor_id}", response_model=List[ScheduleBlockResponse])
def list_doctor_schedules(
    doctor_id: int,
    actor: ActorContext = Depends(get_current_actor),
    service: ScheduleService = Depends(get_schedule_service),
):
    """Effective weekly schedule; blocks flagged inherited come from the clinic"""
    return [_block_response(b, b.inherited) for b in service.list_doctor_schedules(doctor_id, actor)]

@router.post("/doctors/{doctor_id}", response_model=ScheduleBlockResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit("30/minute")
def create_doctor_schedule(
    request: Request,
    doctor_id: int,
    block_data: ScheduleBlockCreate,
    actor: ActorContext = Depends(get_current_actor),
    service: ScheduleService = Depends(get_schedule_service),
):
    return _block_response(service.create_doctor_schedule(doctor_id, block_data, actor))

@router.put("/doctors/blocks/{block_id}", response_model=ScheduleBlockResponse)
@limiter.limit("30/minute")
def update_doctor_schedule(
    request: Request,
    block_id: int,
    block_data: ScheduleBlockCreate,
    actor: ActorContext = Depends(get_current_actor),
    service: ScheduleService = Depends(get_schedule_service),
):
    return _block_response(service.update_doctor_schedule(block_id, block_data, actor))

@router.delete("/doctors/blocks/{block_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_doctor_schedule(
    block_id: int,
    actor: ActorContext = Depends(get_current_actor),
    service: ScheduleService = Depends(get_schedule_service),
):
    service.delete_doctor_schedule(block_id, actor)

# Clinic schedule blocks

@router.get("/clinics/{clinic_id}", response_model=List[ScheduleBlockResponse])
def list_clinic_schedules(
    clinic_id: int,
    actor: ActorContext = Depends(get_current_actor),
    service: ScheduleService = Depends(get_schedule_service),
):
    return [_block_response(b) for b in service.list_clinic_schedules(clinic_id, actor)]

@router.post("/clinics/{clinic_id}", response_model=ScheduleBlockResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit("30/minute")
def create_clinic_schedule(
    request: Request,
    clinic_id: int,
    block_data: ScheduleBlockCreate,
    actor: ActorContext = Depends(get_current_actor),
    service: ScheduleService = Depends(get_schedule_service),
):
    return _block_response(service.create_clinic_schedule(clinic_id, block_data, actor))

@router.put("/clinics/blocks/{block_id}", response_model=ScheduleBlockResponse)
@limiter.limit("30/minute")
def update_clinic_schedule(
    request: Request,
    block_id: int,
    block_data: ScheduleBlockCreate,
    actor: ActorContext = Depends(get_current_actor),
    service: ScheduleService = Depends(get_schedule_service),
):
    return _block_response(service.update_clinic_schedule(block_id, block_data, actor))

@router.delete("/clinics/blocks/{block_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_clinic_schedule(
    block_id: int,
    actor: ActorContext = Depends(get_current_actor),
    service: ScheduleService = Depends(get_schedule_service),
):
    service.delete_clinic_schedule(block_id, actor)

# Doctor exceptions

@router.get("/doctors/{doctor_id}/exceptions", response_model=List[DoctorExceptionResponse])
def list_doctor_exceptions(
    doctor_id: int,
    from_date: Optional[date] = None,
    actor: ActorContext = Depends(get_current_actor),
    service: ScheduleService = Depends(get_schedule_service),
):
    return service.list_doctor_exceptions(doctor_id, actor, from_date)

@router.post(
    "/doctors/{doctor_id}/exceptions",
    response_model=DoctorExceptionResponse,
    status_code=status.HTTP_201_CREATED,
)
@limiter.limit("30/minute")
def create_doctor_exception(
    request: Request,
    doctor_id: int,
    exception_data: DoctorExceptionCreate,
    actor: ActorContext = Depends(get_current_actor),
    service: ScheduleService = Depends(get_schedule_service),
):
    """Block a whole day (no times) or part of one; affected bookings need rescheduling"""
    return service.create_doctor_exception(doctor_id, exception_data, actor)

@router.delete("/exceptions/{exception_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_doctor_exception(
    exception_id: int,
    actor: ActorContext = Depends(get_current_actor),
    service: ScheduleService = Depends(get_schedule_service),
):
    service.delete_doctor_exception(exception_id, actor)
