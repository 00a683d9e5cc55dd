"""
Prompt templates for the reservation dialogue.
Guests may write Hindi, English or a mix; replies are always English.
"""

import datetime as dt
from typing import List, Optional

from .models import BookingField, BookingFields, DialogueState, ReserveReason, SeatingAdvisory

STATE_PROMPTS = {
    DialogueState.GREETING: "Hello! I'd be happy to help you book a table. May I have your name, please?",
    DialogueState.COLLECTING_NAME: "May I have your name, please?",
    DialogueState.COLLECTING_GUESTS: "How many guests will be joining you?",
    DialogueState.COLLECTING_DATE: (
        "What date would you like to book for? You can say today, tomorrow, or any specific day."
    ),
    DialogueState.COLLECTING_TIME: (
        "What time would you prefer? You can say times like 7 PM, 8 o'clock, or evening."
    ),
    DialogueState.COLLECTING_CUISINE: (
        "What type of cuisine would you like? We offer Italian, Chinese, Japanese, Indian, and more."
    ),
}

FIELD_LABELS = {
    BookingField.CUSTOMER_NAME: "your name",
    BookingField.GUEST_COUNT: "number of guests",
    BookingField.DATE: "booking date",
    BookingField.TIME: "preferred time",
    BookingField.CUISINE: "cuisine preference",
}

NOT_UNDERSTOOD = "Sorry, I didn't catch that."


def format_date(value: dt.date) -> str:
    return f"{value:%A}, {value.day} {value:%B}"


def join_words(items: List[str]) -> str:
    """"a", "a and b", "a, b, and c\""""
    if not items:
        return ""
    if len(items) == 1:
        return items[0]
    if len(items) == 2:
        return f"{items[0]} and {items[1]}"
    return f"{', '.join(items[:-1])}, and {items[-1]}"


def missing_fields_summary(missing: List[BookingField]) -> str:
    return join_words([FIELD_LABELS.get(f, f.value) for f in missing])


def prompt_for_state(state: DialogueState, fields: BookingFields) -> str:
    if state == DialogueState.COLLECTING_GUESTS and fields.customer_name:
        return f"Thank you, {fields.customer_name}! {STATE_PROMPTS[state]}"
    if state in STATE_PROMPTS:
        return STATE_PROMPTS[state]

    missing = fields.missing_fields()
    if missing:
        return f"I still need to know: {missing_fields_summary(missing)}."
    return "Let me process your booking."


def reprompt(state: DialogueState, fields: BookingFields) -> str:
    return f"{NOT_UNDERSTOOD} {prompt_for_state(state, fields)}"


def booking_summary(fields: BookingFields) -> str:
    guests = "1 guest" if fields.guest_count == 1 else f"{fields.guest_count} guests"
    summary = (
        f"a table for {guests} on {format_date(fields.booking_date)} at {fields.booking_time}, "
        f"{fields.cuisine} cuisine"
    )
    if fields.special_requests:
        summary += f" ({join_words(list(fields.special_requests))})"
    return summary


def advisory_text(advisory: Optional[SeatingAdvisory]) -> str:
    if advisory is None or advisory.source != "weather":
        return ""
    return advisory.reason


def confirmation_prompt(fields: BookingFields, advisory: Optional[SeatingAdvisory] = None) -> str:
    parts = [advisory_text(advisory), f"Shall I book {booking_summary(fields)}? Please say yes or no."]
    return " ".join(p for p in parts if p)


def completed_prompt(
    fields: BookingFields,
    reservation_id: Optional[str],
    advisory: Optional[SeatingAdvisory] = None,
    show_reason: bool = True
) -> str:
    parts = [
        advisory_text(advisory) if show_reason else "",
        f"Great! Your booking has been confirmed: {booking_summary(fields)}.",
    ]
    if advisory is not None:
        parts.append(f"We have noted {advisory.recommendation} seating.")
    if reservation_id:
        parts.append(f"Your reservation ID is {reservation_id}.")
    parts.append("We look forward to seeing you!")
    return " ".join(p for p in parts if p)


def conflict_prompt(
    reason: ReserveReason,
    requested_time: str,
    booking_date: dt.date,
    alternatives: List[str],
    opening_time: str,
    closing_time: str
) -> str:
    """Explain why the requested time cannot be booked and offer alternatives"""
    if reason == ReserveReason.INVALID_SLOT:
        opening = (
            f"Sorry, we take bookings between {opening_time} and {closing_time} "
            f"on the hour and half hour, so {requested_time} is not available."
        )
    elif reason == ReserveReason.BLOCKED:
        opening = f"Sorry, we are not taking bookings at {requested_time} on {format_date(booking_date)}."
    else:
        opening = f"Sorry, {requested_time} on {format_date(booking_date)} is fully booked."

    if alternatives:
        return f"{opening} The nearest available times are {join_words(alternatives)}. Which would you prefer?"
    return f"{opening} There are no other tables left for your party that day. Please tell me another time."


def revert_prompt() -> str:
    return "No problem. What time would you prefer instead?"
