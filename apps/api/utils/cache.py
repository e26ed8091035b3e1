"""
Redis Caching Utility for the scheduling API
Provides short-lived caching of computed availability slots.
Slot results are advisory: bookings always re-check conflicts at commit time.
"""

import redis
import json
import os
from datetime import date
from typing import Optional, Any, List
import logging

from validators.business_rules import get_business_rules

logger = logging.getLogger(__name__)

# Redis connection settings
REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
CACHE_ENABLED = os.getenv("CACHE_ENABLED", "true").lower() == "true"


# Cache key prefixes
class CacheKeys:
    DOCTOR_SLOTS = "slots:doctor:{doctor_id}:clinic:{clinic_id}:step:{step}:{day}:{duration}"
    DOCTOR_SLOTS_PATTERN = "slots:doctor:{doctor_id}:*"
    ALL_SLOTS_PATTERN = "slots:doctor:*"


class RedisCache:
    """Redis cache manager with connection pooling and error handling"""

    _instance: Optional['RedisCache'] = None
    _redis_client: Optional[redis.Redis] = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self):
        if self._redis_client is None and CACHE_ENABLED:
            try:
                self._redis_client = redis.from_url(
                    REDIS_URL,
                    decode_responses=True,
                    socket_connect_timeout=5,
                    socket_timeout=5,
                    retry_on_timeout=True
                )
                # Test connection
                self._redis_client.ping()
                logger.info("Redis cache connected successfully")
            except redis.RedisError as e:
                logger.warning(f"Redis connection failed: {e}. Caching disabled.")
                self._redis_client = None

    @property
    def is_available(self) -> bool:
        return CACHE_ENABLED and self._redis_client is not None

    def get(self, key: str) -> Optional[Any]:
        """Get value from cache"""
        if not self.is_available:
            return None
        try:
            value = self._redis_client.get(key)
            if value:
                return json.loads(value)
            return None
        except redis.RedisError as e:
            logger.error(f"Cache get error for key {key}: {e}")
            return None

    def set(self, key: str, value: Any, ttl: int = 60) -> bool:
        """Set value in cache with TTL"""
        if not self.is_available:
            return False
        try:
            serialized = json.dumps(value, default=str)
            self._redis_client.setex(key, ttl, serialized)
            return True
        except redis.RedisError as e:
            logger.error(f"Cache set error for key {key}: {e}")
            return False

    def delete_pattern(self, pattern: str) -> int:
        """Delete all keys matching pattern"""
        if not self.is_available:
            return 0
        try:
            keys = list(self._redis_client.scan_iter(match=pattern))
            if keys:
                return self._redis_client.delete(*keys)
            return 0
        except redis.RedisError as e:
            logger.error(f"Cache delete pattern error for {pattern}: {e}")
            return 0


class SlotCache:
    """Slot-specific caching operations"""

    def __init__(self, backend: Optional[RedisCache] = None):
        self.backend = backend or RedisCache()

    @staticmethod
    def _slots_key(doctor_id: int, clinic_id: int, step_minutes: int, day: date, duration_min: int) -> str:
        return CacheKeys.DOCTOR_SLOTS.format(
            doctor_id=doctor_id,
            clinic_id=clinic_id,
            step=step_minutes,
            day=day.isoformat(),
            duration=duration_min,
        )

    def get_slots(
        self, doctor_id: int, clinic_id: int, step_minutes: int, day: date, duration_min: int
    ) -> Optional[List[dict]]:
        return self.backend.get(self._slots_key(doctor_id, clinic_id, step_minutes, day, duration_min))

    def set_slots(
        self, doctor_id: int, clinic_id: int, step_minutes: int, day: date, duration_min: int, slots: List[dict]
    ) -> bool:
        key = self._slots_key(doctor_id, clinic_id, step_minutes, day, duration_min)
        return self.backend.set(key, slots, ttl=get_business_rules().SLOT_CACHE_TTL_SECONDS)

    def invalidate_doctor(self, doctor_id: int) -> None:
        deleted = self.backend.delete_pattern(CacheKeys.DOCTOR_SLOTS_PATTERN.format(doctor_id=doctor_id))
        if deleted:
            logger.info(f"Slot cache invalidated for doctor {doctor_id} ({deleted} keys)")

    def invalidate_all(self) -> None:
        """Clinic-wide schedule changes affect every inheriting doctor"""
        deleted = self.backend.delete_pattern(CacheKeys.ALL_SLOTS_PATTERN)
        if deleted:
            logger.info(f"Slot cache cleared ({deleted} keys)")
