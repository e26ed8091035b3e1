"""
Stores package for the scheduling core
Narrow persistence interfaces and their SQLModel implementations
"""

from .base import AppointmentQuery, ClinicSettings, SchedulingStores
from .sql import build_sql_stores

__all__ = [
    'AppointmentQuery',
    'ClinicSettings',
    'SchedulingStores',
    'build_sql_stores',
]
