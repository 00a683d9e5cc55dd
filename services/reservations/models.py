"""
Pydantic models for the reservation service
"""

import datetime as dt
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Set, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .error_models import InvariantViolationError

TIME_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


class BookingField(str, Enum):
    """Booking information the dialogue collects"""
    CUSTOMER_NAME = "customerName"
    GUEST_COUNT = "guestCount"
    DATE = "date"
    TIME = "time"
    CUISINE = "cuisine"
    SPECIAL_REQUESTS = "specialRequests"


REQUIRED_FIELDS: List[BookingField] = [
    BookingField.CUSTOMER_NAME,
    BookingField.GUEST_COUNT,
    BookingField.DATE,
    BookingField.TIME,
    BookingField.CUISINE,
]

_FIELD_ATTRS = {
    BookingField.CUSTOMER_NAME: "customer_name",
    BookingField.GUEST_COUNT: "guest_count",
    BookingField.DATE: "booking_date",
    BookingField.TIME: "booking_time",
    BookingField.CUISINE: "cuisine",
    BookingField.SPECIAL_REQUESTS: "special_requests",
}


class DialogueState(str, Enum):
    """Dialogue states in their fixed linear order"""
    GREETING = "greeting"
    COLLECTING_NAME = "collecting_name"
    COLLECTING_GUESTS = "collecting_guests"
    COLLECTING_DATE = "collecting_date"
    COLLECTING_TIME = "collecting_time"
    COLLECTING_CUISINE = "collecting_cuisine"
    FETCHING_WEATHER = "fetching_weather"
    SUGGESTING_SEATING = "suggesting_seating"
    CONFIRMING = "confirming"
    COMPLETED = "completed"


STATE_ORDER: List[DialogueState] = list(DialogueState)

STATE_FIELDS: Dict[DialogueState, BookingField] = {
    DialogueState.COLLECTING_NAME: BookingField.CUSTOMER_NAME,
    DialogueState.COLLECTING_GUESTS: BookingField.GUEST_COUNT,
    DialogueState.COLLECTING_DATE: BookingField.DATE,
    DialogueState.COLLECTING_TIME: BookingField.TIME,
    DialogueState.COLLECTING_CUISINE: BookingField.CUISINE,
}


class BookingFields(BaseModel):
    """
    Immutable snapshot of the booking fields.
    Every turn derives a new snapshot from the previous one plus the extraction delta.
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    customer_name: Optional[str] = Field(None, alias="customerName")
    guest_count: Optional[int] = Field(None, alias="guestCount")
    booking_date: Optional[dt.date] = Field(None, alias="date")
    booking_time: Optional[str] = Field(None, alias="time", pattern=TIME_PATTERN)
    cuisine: Optional[str] = None
    special_requests: Tuple[str, ...] = Field(default=(), alias="specialRequests")

    def get(self, field: BookingField) -> Any:
        return getattr(self, _FIELD_ATTRS[field])

    def is_filled(self, field: BookingField) -> bool:
        value = self.get(field)
        if field == BookingField.SPECIAL_REQUESTS:
            return bool(value)
        return value is not None and value != ""

    def with_value(self, field: BookingField, value: Any) -> "BookingFields":
        """Return a new snapshot with one field replaced"""
        if field == BookingField.SPECIAL_REQUESTS:
            value = tuple(value or ())
        return self.model_copy(update={_FIELD_ATTRS[field]: value})

    def without(self, field: BookingField) -> "BookingFields":
        """Return a new snapshot with one field cleared"""
        empty = () if field == BookingField.SPECIAL_REQUESTS else None
        return self.model_copy(update={_FIELD_ATTRS[field]: empty})

    def with_special_requests(self, tags: List[str]) -> "BookingFields":
        """Merge tags into the existing ones, de-duplicated, order preserved"""
        merged = list(self.special_requests)
        for tag in tags:
            if tag not in merged:
                merged.append(tag)
        if tuple(merged) == self.special_requests:
            return self
        return self.model_copy(update={"special_requests": tuple(merged)})

    def missing_fields(self) -> List[BookingField]:
        return [f for f in REQUIRED_FIELDS if not self.is_filled(f)]

    def is_complete(self) -> bool:
        return not self.missing_fields()

    def to_public(self) -> Dict[str, Any]:
        """Client-facing representation keyed by the contract field names"""
        data = self.model_dump(by_alias=True, mode="json")
        data["specialRequests"] = list(self.special_requests)
        return data


class SeatingAdvisory(BaseModel):
    """Indoor/outdoor seating hint from the weather collaborator"""
    model_config = ConfigDict(populate_by_name=True)

    condition: str
    temperature_c: Optional[float] = Field(None, alias="temperatureC")
    description: str = ""
    recommendation: Literal["indoor", "outdoor"]
    reason: str
    source: Literal["weather", "default"] = "weather"


class Session(BaseModel):
    """One in-progress booking attempt"""
    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(..., min_length=1)
    state: DialogueState = DialogueState.GREETING
    fields: BookingFields = Field(default_factory=BookingFields)
    location: Optional[str] = None
    created_at: dt.datetime = Field(default_factory=utcnow)
    last_updated: dt.datetime = Field(default_factory=utcnow)
    advisory: Optional[SeatingAdvisory] = None
    advisory_date: Optional[dt.date] = None
    reservation_id: Optional[str] = None
    alternatives: List[str] = Field(default_factory=list)
    turn_count: int = 0

    def touch(self) -> None:
        self.last_updated = utcnow()


class ReserveReason(str, Enum):
    RESERVED = "reserved"
    DUPLICATE = "duplicate"
    CAPACITY = "capacity"
    BLOCKED = "blocked"
    INVALID_SLOT = "invalid_slot"


class TimeSlotBucket(BaseModel):
    """Capacity unit identified by (date, time)"""
    model_config = ConfigDict(populate_by_name=True)

    slot_date: dt.date = Field(..., alias="date")
    slot_time: str = Field(..., alias="time", pattern=TIME_PATTERN)
    capacity: int
    booked: int = 0
    blocked: bool = False
    blocked_reason: Optional[str] = Field(None, alias="blockedReason")
    blocked_by: Optional[str] = Field(None, alias="blockedBy")
    reservations: Dict[str, int] = Field(default_factory=dict)

    @property
    def key(self) -> Tuple[dt.date, str]:
        return (self.slot_date, self.slot_time)

    @property
    def remaining(self) -> int:
        return self.capacity - self.booked

    @property
    def reservation_ids(self) -> Set[str]:
        return set(self.reservations)

    def has_availability(self, guest_count: int) -> bool:
        return not self.blocked and (self.capacity - self.booked) >= guest_count

    def check_invariants(self) -> None:
        """Raise InvariantViolationError if accounting is broken"""
        if self.booked < 0 or self.booked > self.capacity:
            raise InvariantViolationError(
                f"Bucket {self.slot_date} {self.slot_time} has booked={self.booked} capacity={self.capacity}",
                details={
                    "date": self.slot_date.isoformat(),
                    "time": self.slot_time,
                    "booked": self.booked,
                    "capacity": self.capacity,
                }
            )


class ReserveOutcome(BaseModel):
    """Result of a reserve call; a conflict is a normal outcome, not an error"""
    success: bool
    reason: ReserveReason
    bucket: Optional[TimeSlotBucket] = None

    @property
    def conflict(self) -> bool:
        return not self.success


class ReleaseOutcome(BaseModel):
    """Result of a release call; releasing an unknown id is a no-op"""
    released: bool
    guest_count: int = 0
    bucket: Optional[TimeSlotBucket] = None


class ReservationStatus(str, Enum):
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


class Reservation(BaseModel):
    """Confirmed seat allocation against exactly one bucket"""
    model_config = ConfigDict(populate_by_name=True)

    reservation_id: str = Field(..., alias="reservationId")
    session_id: Optional[str] = Field(None, alias="sessionId")
    customer_name: str = Field(..., alias="customerName")
    guest_count: int = Field(..., alias="guestCount", ge=1)
    slot_date: dt.date = Field(..., alias="date")
    slot_time: str = Field(..., alias="time", pattern=TIME_PATTERN)
    cuisine: str
    special_requests: List[str] = Field(default_factory=list, alias="specialRequests")
    seating: Optional[Literal["indoor", "outdoor"]] = None
    status: ReservationStatus = ReservationStatus.CONFIRMED
    created_at: dt.datetime = Field(default_factory=utcnow, alias="createdAt")
    cancelled_at: Optional[dt.datetime] = Field(None, alias="cancelledAt")


class SlotStatus(str, Enum):
    AVAILABLE = "available"
    FULLY_BOOKED = "fully_booked"
    BLOCKED = "blocked"


class SlotAvailability(BaseModel):
    time: str
    status: SlotStatus
    capacity: int
    booked: int


class AvailabilitySummary(BaseModel):
    """Per-day availability for the admin surface"""
    date: dt.date
    total_slots: int
    available_slots: int
    fully_booked_slots: int
    blocked_slots: int
    total_capacity: int
    total_booked: int
    capacity_utilization: float = Field(..., description="totalBooked / totalCapacity in percent")
    slots: List[SlotAvailability] = Field(default_factory=list)


class MessageTurnRequest(BaseModel):
    """Input of one dialogue turn"""
    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(..., alias="sessionId", min_length=1, max_length=200)
    utterance: str = Field(..., max_length=2000)
    known_fields: Optional[Dict[str, Any]] = Field(None, alias="knownFields")
    location: Optional[str] = None

    @field_validator('utterance')
    @classmethod
    def strip_utterance(cls, v):
        return v.strip()


class MessageTurnResponse(BaseModel):
    """Output of one dialogue turn"""
    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(..., alias="sessionId")
    prompt_text: str = Field(..., alias="promptText")
    fields: Dict[str, Any]
    missing_fields: List[str] = Field(default_factory=list, alias="missingFields")
    ready_to_reserve: bool = Field(False, alias="readyToReserve")
    seating_advisory: Optional[SeatingAdvisory] = Field(None, alias="seatingAdvisory")
    state: DialogueState
    reservation_id: Optional[str] = Field(None, alias="reservationId")
    alternatives: List[str] = Field(default_factory=list)
