"""
Dialogue state machine for restaurant bookings.

States run in a fixed linear order, one collecting state per required field:
greeting -> collecting_name -> collecting_guests -> collecting_date ->
collecting_time -> collecting_cuisine -> fetching_weather ->
suggesting_seating -> confirming -> completed

After every turn the state is recomputed as the first state whose field is
still empty, so input that extracts nothing leaves the session where it was.
The only backwards move is the conflict path, which clears the time.
"""

import asyncio
import datetime as dt
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .config import SlotPolicyConfig
from .error_models import AdvisoryUnavailableError
from .lexicon import Lexicon
from .logging_adapter import get_safe_logger
from .metrics import advisory_fallbacks_total
from .models import (
    STATE_FIELDS,
    BookingField,
    BookingFields,
    DialogueState,
    Reservation,
    ReserveReason,
    SeatingAdvisory,
    Session,
)
from . import prompts
from .reservation_service import ReservationService
from .slot_extraction import ExtractionContext, extract
from .time_slot_manager import TimeSlotManager
from .weather_client import neutral_advisory

logger = get_safe_logger("reservations.conversation_flow_manager")


@dataclass
class TurnOutcome:
    """Everything one processed turn produced"""
    session: Session
    prompt_text: str
    extracted: Dict[BookingField, Any] = field(default_factory=dict)
    transitions: List[DialogueState] = field(default_factory=list)
    conflict: Optional[ReserveReason] = None
    alternatives: List[str] = field(default_factory=list)
    reservation: Optional[Reservation] = None


def next_state(fields: BookingFields) -> DialogueState:
    """First collecting state whose field is empty, else fetching_weather"""
    for state, booking_field in STATE_FIELDS.items():
        if not fields.is_filled(booking_field):
            return state
    return DialogueState.FETCHING_WEATHER


class DialogueStateMachine:
    """Drives one session per call; holds no per-session state itself"""

    def __init__(
        self,
        lexicon: Lexicon,
        allocator: TimeSlotManager,
        reservations: ReservationService,
        advisor=None,
        policy: Optional[SlotPolicyConfig] = None,
        advisory_timeout: float = 5.0,
        require_explicit_confirmation: bool = False,
        default_location: str = "New York"
    ):
        self.lexicon = lexicon
        self.allocator = allocator
        self.reservations = reservations
        self.advisor = advisor
        self.policy = policy or allocator.policy
        self.advisory_timeout = advisory_timeout
        self.require_explicit_confirmation = require_explicit_confirmation
        self.default_location = default_location

    async def process_turn(self, session: Session, utterance: str, now: dt.datetime) -> TurnOutcome:
        """
        Apply one utterance to a session.

        Args:
            session: Session as loaded from the store (not modified)
            utterance: Raw guest text
            now: Current restaurant-local time; relative dates resolve against it

        Returns:
            TurnOutcome carrying the updated session and the reply
        """
        session = session.model_copy(deep=True)
        session.turn_count += 1
        session.touch()
        previous_state = session.state

        if previous_state == DialogueState.COMPLETED:
            prompt = prompts.completed_prompt(
                session.fields, session.reservation_id, session.advisory, show_reason=False
            )
            return TurnOutcome(session=session, prompt_text=prompt)

        current = previous_state
        if current == DialogueState.GREETING:
            current = next_state(session.fields)

        fields, extracted = self._extract(session, current, utterance, now.date())
        session.fields = fields
        session.alternatives = []
        outcome = TurnOutcome(session=session, prompt_text="", extracted=extracted)

        target = next_state(fields)
        if target != DialogueState.FETCHING_WEATHER:
            self._move(outcome, target)
            owned = STATE_FIELDS.get(current)
            greeted = previous_state == DialogueState.GREETING
            if greeted and target == DialogueState.COLLECTING_NAME and not extracted:
                outcome.prompt_text = prompts.STATE_PROMPTS[DialogueState.GREETING]
            elif owned is not None and owned not in extracted and target == current:
                outcome.prompt_text = prompts.reprompt(target, fields)
            else:
                outcome.prompt_text = prompts.prompt_for_state(target, fields)
            return outcome

        if previous_state == DialogueState.CONFIRMING and self.require_explicit_confirmation:
            return await self._handle_confirmation(outcome, utterance)

        if not self.allocator.is_valid_time(fields.booking_time):
            return await self._revert_to_time(outcome, ReserveReason.INVALID_SLOT)

        self._move(outcome, DialogueState.FETCHING_WEATHER)
        advisory = await self._advisory(session, fields.booking_date)
        if advisory.source == "weather":
            self._move(outcome, DialogueState.SUGGESTING_SEATING)
        self._move(outcome, DialogueState.CONFIRMING)

        if self.require_explicit_confirmation:
            outcome.prompt_text = prompts.confirmation_prompt(fields, advisory)
            return outcome
        return await self._book(outcome, advisory, show_reason=True)

    def _extract(self, session: Session, state: DialogueState, utterance: str, today: dt.date):
        fields = session.fields
        extracted: Dict[BookingField, Any] = {}
        context = ExtractionContext(
            lexicon=self.lexicon,
            today=today,
            state=state,
            max_party_size=self.policy.max_party_size,
        )

        owned = STATE_FIELDS.get(state)
        if owned is not None and not fields.is_filled(owned):
            value = extract(owned, utterance, context)
            if value is not None:
                fields = fields.with_value(owned, value)
                extracted[owned] = value

        # Optional and non-blocking, so collected in any state
        tags = extract(BookingField.SPECIAL_REQUESTS, utterance, context)
        if tags:
            merged = fields.with_special_requests(tags)
            if merged is not fields:
                fields = merged
                extracted[BookingField.SPECIAL_REQUESTS] = tags

        return fields, extracted

    @staticmethod
    def _move(outcome: TurnOutcome, state: DialogueState) -> None:
        if outcome.session.state != state:
            logger.debug(
                "dialogue_transition",
                session_id=outcome.session.session_id,
                from_state=outcome.session.state.value,
                to_state=state.value,
            )
        outcome.session.state = state
        outcome.transitions.append(state)

    async def _handle_confirmation(self, outcome: TurnOutcome, utterance: str) -> TurnOutcome:
        session = outcome.session
        if self.lexicon.is_negative(utterance):
            session.fields = session.fields.without(BookingField.TIME)
            self._move(outcome, DialogueState.COLLECTING_TIME)
            outcome.prompt_text = prompts.revert_prompt()
            return outcome

        if self.lexicon.is_affirmative(utterance):
            self._move(outcome, DialogueState.CONFIRMING)
            return await self._book(outcome, session.advisory, show_reason=False)

        self._move(outcome, DialogueState.CONFIRMING)
        outcome.prompt_text = prompts.confirmation_prompt(session.fields)
        return outcome

    async def _advisory(self, session: Session, booking_date: dt.date) -> SeatingAdvisory:
        """At most one advisory lookup per session per date; failures give the neutral advisory"""
        if session.advisory is not None and session.advisory_date == booking_date:
            return session.advisory

        location = session.location or self.default_location
        cause = None
        if self.advisor is None:
            cause = "not_configured"
        else:
            try:
                advisory = await asyncio.wait_for(
                    self.advisor.recommend(location, booking_date),
                    timeout=self.advisory_timeout
                )
            except asyncio.TimeoutError:
                cause = "timeout"
            except AdvisoryUnavailableError as e:
                cause = e.message
            except Exception as e:
                # Advisory is non-authoritative; no collaborator failure may block a booking
                cause = f"{type(e).__name__}: {e}"

        if cause is not None:
            logger.warning(
                "weather_advisory_fallback",
                session_id=session.session_id,
                date=booking_date.isoformat(),
                cause=cause,
            )
            advisory_fallbacks_total.labels(cause="timeout" if cause == "timeout" else "unavailable").inc()
            advisory = neutral_advisory()

        session.advisory = advisory
        session.advisory_date = booking_date
        return advisory

    async def _book(self, outcome: TurnOutcome, advisory: Optional[SeatingAdvisory], show_reason: bool) -> TurnOutcome:
        session = outcome.session
        fields = session.fields
        result = await self.reservations.book(
            session.session_id,
            fields,
            seating=advisory.recommendation if advisory else None,
        )
        if not result.success:
            return await self._revert_to_time(outcome, result.reason)

        session.reservation_id = result.reservation.reservation_id
        outcome.reservation = result.reservation
        self._move(outcome, DialogueState.COMPLETED)
        outcome.prompt_text = prompts.completed_prompt(
            fields,
            session.reservation_id,
            advisory,
            show_reason=show_reason,
        )
        return outcome

    async def _revert_to_time(self, outcome: TurnOutcome, reason: ReserveReason) -> TurnOutcome:
        """Conflict path: clear the time, offer the nearest bookable alternatives"""
        session = outcome.session
        fields = session.fields
        requested_time = fields.booking_time
        alternatives = await self.allocator.find_nearest(
            fields.booking_date, requested_time, fields.guest_count
        )

        session.fields = fields.without(BookingField.TIME)
        session.alternatives = alternatives
        outcome.conflict = reason
        outcome.alternatives = alternatives
        self._move(outcome, DialogueState.COLLECTING_TIME)
        outcome.prompt_text = prompts.conflict_prompt(
            reason,
            requested_time,
            fields.booking_date,
            alternatives,
            self.policy.opening_time,
            self.policy.closing_time,
        )
        logger.info(
            "dialogue_reverted_to_time",
            session_id=session.session_id,
            reason=reason.value,
            requested_time=requested_time,
            alternatives=alternatives,
        )
        return outcome
