"""
Reservation repositories.
ReservationRepository persists through SQLAlchemy; InMemoryReservationRepository
keeps the same contract in process memory.
"""

import asyncio
import datetime as dt
from typing import Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..error_models import PersistenceError
from ..logging_adapter import get_safe_logger
from ..models import Reservation, ReservationStatus, utcnow
from .connection import DatabaseManager
from .models import ReservationRecord

logger = get_safe_logger("reservations.database.repository")


class ReservationRepository:
    """Repository for reservation database operations"""

    def __init__(self, db: DatabaseManager):
        self.db = db

    async def create(self, reservation: Reservation) -> Reservation:
        """Insert a confirmed reservation"""
        async with self.db.session() as session:
            try:
                session.add(ReservationRecord.from_reservation(reservation))
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                logger.error("reservation_create_conflict", reservation_id=reservation.reservation_id)
                raise PersistenceError(
                    f"Reservation {reservation.reservation_id} already exists",
                    details={"reservation_id": reservation.reservation_id}
                ) from e
            except SQLAlchemyError as e:
                await session.rollback()
                logger.error("reservation_create_failed", reservation_id=reservation.reservation_id, error=str(e))
                raise PersistenceError(
                    "Reservation could not be stored",
                    details={"reservation_id": reservation.reservation_id}
                ) from e

        logger.info("reservation_persisted", reservation_id=reservation.reservation_id)
        return reservation

    async def get(self, reservation_id: str) -> Optional[Reservation]:
        try:
            async with self.db.session() as session:
                record = await session.get(ReservationRecord, reservation_id)
                return record.to_reservation() if record else None
        except SQLAlchemyError as e:
            logger.error("reservation_get_failed", reservation_id=reservation_id, error=str(e))
            raise PersistenceError("Reservation lookup failed", details={"reservation_id": reservation_id}) from e

    async def find_by_bucket(
        self,
        slot_date: dt.date,
        slot_time: str,
        include_cancelled: bool = False
    ) -> List[Reservation]:
        """Reservations held against one (date, time) bucket"""
        stmt = (
            select(ReservationRecord)
            .where(ReservationRecord.slot_date == slot_date, ReservationRecord.slot_time == slot_time)
            .order_by(ReservationRecord.created_at)
        )
        if not include_cancelled:
            stmt = stmt.where(ReservationRecord.status == ReservationStatus.CONFIRMED.value)

        try:
            async with self.db.session() as session:
                result = await session.execute(stmt)
                return [record.to_reservation() for record in result.scalars().all()]
        except SQLAlchemyError as e:
            logger.error("reservation_find_failed", date=slot_date.isoformat(), time=slot_time, error=str(e))
            raise PersistenceError("Reservation lookup failed") from e

    async def cancel(self, reservation_id: str) -> Optional[Reservation]:
        """Mark a reservation cancelled; already-cancelled records are returned unchanged"""
        async with self.db.session() as session:
            try:
                record = await session.get(ReservationRecord, reservation_id)
                if record is None:
                    return None
                if record.status != ReservationStatus.CANCELLED.value:
                    record.status = ReservationStatus.CANCELLED.value
                    record.cancelled_at = utcnow()
                    await session.commit()
                return record.to_reservation()
            except SQLAlchemyError as e:
                await session.rollback()
                logger.error("reservation_cancel_failed", reservation_id=reservation_id, error=str(e))
                raise PersistenceError("Reservation could not be cancelled", details={"reservation_id": reservation_id}) from e


class InMemoryReservationRepository:
    """Process-local reservation repository with the ReservationRepository contract"""

    def __init__(self):
        self._reservations: Dict[str, Reservation] = {}
        self._lock = asyncio.Lock()

    async def create(self, reservation: Reservation) -> Reservation:
        async with self._lock:
            if reservation.reservation_id in self._reservations:
                raise PersistenceError(
                    f"Reservation {reservation.reservation_id} already exists",
                    details={"reservation_id": reservation.reservation_id}
                )
            self._reservations[reservation.reservation_id] = reservation.model_copy(deep=True)
        return reservation

    async def get(self, reservation_id: str) -> Optional[Reservation]:
        reservation = self._reservations.get(reservation_id)
        return reservation.model_copy(deep=True) if reservation else None

    async def find_by_bucket(
        self,
        slot_date: dt.date,
        slot_time: str,
        include_cancelled: bool = False
    ) -> List[Reservation]:
        found = [
            r.model_copy(deep=True)
            for r in self._reservations.values()
            if r.slot_date == slot_date and r.slot_time == slot_time
            and (include_cancelled or r.status == ReservationStatus.CONFIRMED)
        ]
        return sorted(found, key=lambda r: r.created_at)

    async def cancel(self, reservation_id: str) -> Optional[Reservation]:
        async with self._lock:
            reservation = self._reservations.get(reservation_id)
            if reservation is None:
                return None
            if reservation.status != ReservationStatus.CANCELLED:
                reservation = reservation.model_copy(
                    update={"status": ReservationStatus.CANCELLED, "cancelled_at": utcnow()}
                )
                self._reservations[reservation_id] = reservation
            return reservation.model_copy(deep=True)
