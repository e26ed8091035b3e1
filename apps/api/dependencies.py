from fastapi import Depends, HTTPException, status, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlmodel import Session
from database import get_session
from models import UserRole
from auth import decode_token
from permissions import ActorContext
from services.availability_service import AvailabilityService
from services.booking_service import BookingService
from services.schedule_service import ScheduleService
from stores import SchedulingStores, build_sql_stores
from utils.cache import SlotCache

security = HTTPBearer()

def get_current_actor(
    request: Request,
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> ActorContext:
    """Get the authenticated actor from the bearer token claims"""
    token = credentials.credentials
    payload = decode_token(token)

    if not payload or payload.get("type") != "access":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication credentials"
        )

    try:
        actor = ActorContext(
            user_id=int(payload["sub"]),
            role=UserRole(payload["role"]),
            clinic_id=int(payload["clinic_id"]) if payload.get("clinic_id") is not None else None,
            doctor_id=int(payload["doctor_id"]) if payload.get("doctor_id") is not None else None,
        )
    except (KeyError, ValueError, TypeError):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication credentials"
        )

    request.state.actor = actor
    return actor

def get_slot_cache() -> SlotCache:
    return SlotCache()

def get_stores(session: Session = Depends(get_session)) -> SchedulingStores:
    return build_sql_stores(session)

def get_availability_service(
    stores: SchedulingStores = Depends(get_stores),
    cache: SlotCache = Depends(get_slot_cache),
) -> AvailabilityService:
    return AvailabilityService(stores, cache=cache)

def get_booking_service(
    stores: SchedulingStores = Depends(get_stores),
    availability: AvailabilityService = Depends(get_availability_service),
) -> BookingService:
    return BookingService(stores, availability=availability)

def get_schedule_service(
    stores: SchedulingStores = Depends(get_stores),
    availability: AvailabilityService = Depends(get_availability_service),
) -> ScheduleService:
    return ScheduleService(stores, availability=availability)
