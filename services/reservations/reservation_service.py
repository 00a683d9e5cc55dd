"""
Reservation service.
Keeps bucket accounting and the persisted reservation in lockstep: seats are
reserved first, then the reservation is stored; if storing fails the seats are
released again before the error propagates.
"""

import uuid
from typing import Optional

from pydantic import BaseModel

from .logging_adapter import get_safe_logger
from .metrics import reservations_cancelled_total
from .models import BookingFields, Reservation, ReservationStatus, ReserveReason
from .time_slot_manager import TimeSlotManager

logger = get_safe_logger("reservations.reservation_service")


def generate_reservation_id() -> str:
    return f"RSV-{uuid.uuid4().hex[:8].upper()}"


class BookingResult(BaseModel):
    """Outcome of a booking attempt"""
    success: bool
    reason: ReserveReason
    reservation: Optional[Reservation] = None


class ReservationService:
    """Books and cancels reservations against the allocation engine"""

    def __init__(self, allocator: TimeSlotManager, repository):
        self.allocator = allocator
        self.repository = repository

    async def book(
        self,
        session_id: Optional[str],
        fields: BookingFields,
        seating: Optional[str] = None,
        reservation_id: Optional[str] = None
    ) -> BookingResult:
        """Reserve seats for a complete field set and persist the reservation"""
        missing = fields.missing_fields()
        if missing:
            raise ValueError(f"Cannot book with missing fields: {[f.value for f in missing]}")

        reservation_id = reservation_id or generate_reservation_id()
        outcome = await self.allocator.reserve(
            fields.booking_date, fields.booking_time, fields.guest_count, reservation_id
        )
        if not outcome.success:
            return BookingResult(success=False, reason=outcome.reason)

        if outcome.reason == ReserveReason.DUPLICATE:
            existing = await self.repository.get(reservation_id)
            if existing is not None:
                return BookingResult(success=True, reason=outcome.reason, reservation=existing)

        reservation = Reservation(
            reservation_id=reservation_id,
            session_id=session_id,
            customer_name=fields.customer_name,
            guest_count=fields.guest_count,
            slot_date=fields.booking_date,
            slot_time=fields.booking_time,
            cuisine=fields.cuisine,
            special_requests=list(fields.special_requests),
            seating=seating,
        )

        try:
            await self.repository.create(reservation)
        except Exception as e:
            logger.error(
                "reservation_persist_failed_releasing",
                reservation_id=reservation_id,
                error=str(e),
            )
            await self.allocator.release(
                reservation.slot_date, reservation.slot_time, reservation.guest_count, reservation_id
            )
            raise

        logger.info(
            "reservation_booked",
            reservation_id=reservation_id,
            session_id=session_id,
            date=reservation.slot_date.isoformat(),
            time=reservation.slot_time,
            guest_count=reservation.guest_count,
        )
        return BookingResult(success=True, reason=outcome.reason, reservation=reservation)

    async def cancel(self, reservation_id: str) -> Optional[Reservation]:
        """
        Cancel a reservation and give back exactly the persisted guest count.
        Cancelling an already-cancelled reservation changes nothing.
        """
        existing = await self.repository.get(reservation_id)
        if existing is None:
            logger.warning("cancel_unknown_reservation", reservation_id=reservation_id)
            return None
        if existing.status == ReservationStatus.CANCELLED:
            return existing

        cancelled = await self.repository.cancel(reservation_id)
        await self.allocator.release(
            existing.slot_date, existing.slot_time, existing.guest_count, reservation_id
        )
        reservations_cancelled_total.inc()
        logger.info("reservation_cancelled", reservation_id=reservation_id)
        return cancelled
