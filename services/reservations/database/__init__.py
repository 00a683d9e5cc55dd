"""
Reservation persistence
"""

from .models import Base, ReservationRecord
from .connection import DatabaseManager
from .repository import ReservationRepository, InMemoryReservationRepository

__all__ = [
    "Base",
    "ReservationRecord",
    "DatabaseManager",
    "ReservationRepository",
    "InMemoryReservationRepository",
]
