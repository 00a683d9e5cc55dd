"""
SQLAlchemy models for confirmed reservations
"""

from datetime import datetime, timezone

from sqlalchemy import Column, String, Integer, Date, DateTime, JSON, CheckConstraint, Index
from sqlalchemy.orm import declarative_base

from ..models import Reservation, ReservationStatus

Base = declarative_base()


class ReservationRecord(Base):
    """Durable record of a seat allocation against one (date, time) bucket"""

    __tablename__ = 'reservations'

    reservation_id = Column(String(32), primary_key=True)
    session_id = Column(String(200), index=True)

    customer_name = Column(String(200), nullable=False)
    guest_count = Column(Integer, nullable=False)
    slot_date = Column(Date, nullable=False)
    slot_time = Column(String(5), nullable=False)
    cuisine = Column(String(100), nullable=False)
    special_requests = Column(JSON, default=list, nullable=False)
    seating = Column(String(10))

    status = Column(String(20), default=ReservationStatus.CONFIRMED.value, nullable=False)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    cancelled_at = Column(DateTime(timezone=True))

    __table_args__ = (
        CheckConstraint('guest_count >= 1', name='check_guest_count_positive'),
        CheckConstraint("status IN ('confirmed', 'cancelled')", name='check_reservation_status'),
        Index('idx_reservations_bucket', 'slot_date', 'slot_time'),
    )

    @classmethod
    def from_reservation(cls, reservation: Reservation) -> "ReservationRecord":
        return cls(
            reservation_id=reservation.reservation_id,
            session_id=reservation.session_id,
            customer_name=reservation.customer_name,
            guest_count=reservation.guest_count,
            slot_date=reservation.slot_date,
            slot_time=reservation.slot_time,
            cuisine=reservation.cuisine,
            special_requests=list(reservation.special_requests),
            seating=reservation.seating,
            status=reservation.status.value,
            created_at=reservation.created_at,
            cancelled_at=reservation.cancelled_at,
        )

    def to_reservation(self) -> Reservation:
        return Reservation(
            reservation_id=self.reservation_id,
            session_id=self.session_id,
            customer_name=self.customer_name,
            guest_count=self.guest_count,
            slot_date=self.slot_date,
            slot_time=self.slot_time,
            cuisine=self.cuisine,
            special_requests=list(self.special_requests or []),
            seating=self.seating,
            status=ReservationStatus(self.status),
            created_at=self.created_at,
            cancelled_at=self.cancelled_at,
        )

    def __repr__(self):
        return f"<ReservationRecord(id={self.reservation_id}, {self.slot_date} {self.slot_time}, guests={self.guest_count})>"
