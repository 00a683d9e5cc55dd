"""
Message-turn entry point.
One call per guest utterance: serialise on the session, load or create it,
run the dialogue state machine, persist the result and build the reply.
"""

import datetime as dt
import time
from typing import Callable, Optional
from zoneinfo import ZoneInfo

from .config import ReservationSettings, get_config
from .conversation_flow_manager import DialogueStateMachine, TurnOutcome
from .logging_adapter import get_safe_logger
from .metrics import turn_duration, turns_processed_total
from .models import (
    BookingField,
    DialogueState,
    MessageTurnRequest,
    MessageTurnResponse,
    Session,
)
from .session_store import SessionStore
from .slot_extraction import validate_known_fields

logger = get_safe_logger("reservations.booking_agent")

READY_STATES = (DialogueState.CONFIRMING, DialogueState.COMPLETED)


class BookingAgent:
    """Implements the message-turn contract on top of the state machine and session store"""

    def __init__(
        self,
        state_machine: DialogueStateMachine,
        session_store: SessionStore,
        config: Optional[ReservationSettings] = None,
        clock: Optional[Callable[[], dt.datetime]] = None
    ):
        self.state_machine = state_machine
        self.session_store = session_store
        self.config = config or get_config()
        self.timezone = ZoneInfo(self.config.timezone)
        self._clock = clock or (lambda: dt.datetime.now(self.timezone))

    async def handle_message(self, request: MessageTurnRequest) -> MessageTurnResponse:
        started = time.perf_counter()

        async with self.session_store.lock(request.session_id):
            session = await self.session_store.get(request.session_id)
            if session is None:
                session = Session(session_id=request.session_id)
                logger.info("session_created", session_id=request.session_id)

            if request.location:
                session.location = request.location
            self._merge_known_fields(session, request)

            outcome = await self.state_machine.process_turn(session, request.utterance, self._clock())
            await self.session_store.save(outcome.session)

        elapsed = time.perf_counter() - started
        turn_duration.observe(elapsed)
        turns_processed_total.labels(state=outcome.session.state.value).inc()
        logger.info(
            "turn_processed",
            session_id=request.session_id,
            state=outcome.session.state.value,
            extracted=[f.value for f in outcome.extracted],
            conflict=outcome.conflict.value if outcome.conflict else None,
            turn=outcome.session.turn_count,
            duration_ms=round(elapsed * 1000, 2),
        )
        return self._build_response(outcome)

    def _merge_known_fields(self, session: Session, request: MessageTurnRequest) -> None:
        """Apply validated client-supplied fields; a completed booking is never rewritten"""
        if not request.known_fields or session.state == DialogueState.COMPLETED:
            return

        known = validate_known_fields(request.known_fields, self.config.slots.max_party_size)
        fields = session.fields
        for booking_field, value in known.items():
            if booking_field == BookingField.SPECIAL_REQUESTS:
                fields = fields.with_special_requests(value)
            else:
                fields = fields.with_value(booking_field, value)
        session.fields = fields

    @staticmethod
    def _build_response(outcome: TurnOutcome) -> MessageTurnResponse:
        session = outcome.session
        missing = [f.value for f in session.fields.missing_fields()]
        advisory = None
        if session.advisory is not None and session.advisory_date == session.fields.booking_date:
            advisory = session.advisory

        return MessageTurnResponse(
            session_id=session.session_id,
            prompt_text=outcome.prompt_text,
            fields=session.fields.to_public(),
            missing_fields=missing,
            ready_to_reserve=not missing and session.state in READY_STATES,
            seating_advisory=advisory,
            state=session.state,
            reservation_id=session.reservation_id,
            alternatives=outcome.alternatives,
        )

    async def get_session(self, session_id: str) -> Optional[Session]:
        return await self.session_store.get(session_id)

    async def reset_session(self, session_id: str) -> bool:
        """Forget a session; a booked reservation is left in place"""
        async with self.session_store.lock(session_id):
            existed = await self.session_store.delete(session_id)
        logger.info("session_reset", session_id=session_id, existed=existed)
        return existed
