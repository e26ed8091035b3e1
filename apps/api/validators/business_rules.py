"""Business rule configuration and validation"""
from typing import List
from pydantic import BaseModel


class BusinessRules(BaseModel):
    """Business rules configuration"""
    # Appointment rules
    MIN_APPOINTMENT_DURATION_MINUTES: int = 5
    MAX_APPOINTMENT_DURATION_MINUTES: int = 480

    # Availability rules
    DEFAULT_SLOT_DURATION_MINUTES: int = 30
    MAX_AVAILABILITY_RANGE_DAYS: int = 90
    DEFAULT_CLINIC_TIMEZONE: str = "America/Mexico_City"
    SLOT_CACHE_TTL_SECONDS: int = 60

    # Payment rules
    DEFERRED_PAYMENT_METHODS: List[str] = ["transfer"]

    # Listing rules
    MAX_APPOINTMENTS_PER_LISTING: int = 200


# Global instance - can be loaded from database
business_rules = BusinessRules()


def get_business_rules() -> BusinessRules:
    """Get current business rules"""
    return business_rules

