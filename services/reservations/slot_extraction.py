"""
Extraction engine for the reservation dialogue.

Pure, deterministic pattern matching over mixed Hindi/English utterances.
Every function takes the lexicon explicitly and returns a value or None;
a miss is never an exception.
"""

import datetime as dt
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .lexicon import Lexicon, WEEKDAY_NAMES, alternation
from .logging_adapter import get_safe_logger
from .models import TIME_PATTERN, BookingField, DialogueState

logger = get_safe_logger("reservations.slot_extraction")

DEFAULT_MAX_PARTY_SIZE = 20

_DIGITS = re.compile(r"\d+")
_NUMERIC_DATE = re.compile(r"\b(\d{1,2})/(\d{1,2})/(\d{4})\b")
_CLOCK_TIME = re.compile(r"\b(\d{1,2}):(\d{2})\s*(am|pm)?\b")
_MERIDIEM_HOUR = re.compile(r"\b(\d{1,2})\s*(am|pm)\b")
_BARE_HOUR = re.compile(r"\b(\d{1,2})\b")
_NAME_WORDS = r"([a-z]+(?:\s+[a-z]+)?)"
_BARE_NAME = re.compile(r"^" + _NAME_WORDS + r"$")


@dataclass(frozen=True)
class ExtractionContext:
    """What an extraction call may look at besides the utterance"""
    lexicon: Lexicon
    today: dt.date
    state: DialogueState = DialogueState.GREETING
    max_party_size: int = DEFAULT_MAX_PARTY_SIZE


def normalize(text: str) -> str:
    return text.replace("’", "'").lower().strip()


def _in_party_range(value: int, max_party_size: int) -> bool:
    return 1 <= value <= max_party_size


def _word_to_number(token: str, lexicon: Lexicon) -> Optional[int]:
    if token.isdigit():
        return int(token)
    return lexicon.numbers.get(token)


def extract_bilingual_number(
    text: str,
    lexicon: Lexicon,
    max_party_size: int = DEFAULT_MAX_PARTY_SIZE
) -> Optional[int]:
    """
    Guest count from text such as "5 log", "paanch people", "me and 3 more".

    Rules in order: companion construction (N + 1), first digit run,
    number words in lexicon order. Values outside [1, max_party_size] are rejected.
    """
    normalized = normalize(text)
    companion = lexicon.companion
    count_token = r"(\d+|" + alternation(list(lexicon.numbers)) + r")"
    self_words = alternation(companion.self_words)
    conjunctions = alternation(companion.conjunctions)

    companion_patterns = [
        re.compile(r"\b(?:" + self_words + r")\s+(?:" + conjunctions + r")\s+" + count_token + r"\b"),
        re.compile(r"\b" + count_token + r"\s+(?:" + conjunctions + r")\s+(?:" + self_words + r")\b"),
    ]
    for pattern in companion_patterns:
        match = pattern.search(normalized)
        if match:
            others = _word_to_number(match.group(1), lexicon)
            if others is not None and _in_party_range(others + 1, max_party_size):
                return others + 1

    digit_match = _DIGITS.search(normalized)
    if digit_match:
        value = int(digit_match.group(0))
        if _in_party_range(value, max_party_size):
            return value

    for pattern, value in lexicon.number_patterns:
        if pattern.search(normalized):
            if _in_party_range(value, max_party_size):
                return value
            return None

    return None


def next_weekday(today: dt.date, weekday_name: str, next_week: bool = False) -> dt.date:
    """
    Next future occurrence of a weekday; never today.
    With the next-week qualifier seven more days are added unless the
    plain rule already skipped to the following week.
    """
    target = WEEKDAY_NAMES.index(weekday_name)
    days_until = target - today.weekday()
    if days_until <= 0 or next_week:
        days_until += 7
    return today + dt.timedelta(days=days_until)


def _safe_date(year: int, month: int, day: int) -> Optional[dt.date]:
    try:
        return dt.date(year, month, day)
    except ValueError:
        return None


def extract_bilingual_date(text: str, lexicon: Lexicon, today: dt.date) -> Optional[dt.date]:
    """Date from "kal", "parso", "next friday", "somvar", "12/03/2026", "12 march" or "march 12\""""
    normalized = normalize(text)

    for pattern, offset in lexicon.relative_day_patterns:
        if pattern.search(normalized):
            return today + dt.timedelta(days=offset)

    for pattern, weekday_name in lexicon.weekday_patterns:
        if pattern.search(normalized):
            return next_weekday(today, weekday_name, lexicon.has_next_week_marker(normalized))

    match = _NUMERIC_DATE.search(normalized)
    if match:
        day, month, year = (int(g) for g in match.groups())
        return _safe_date(year, month, day)

    months = alternation(lexicon.months)
    match = re.search(r"\b(\d{1,2})(?:st|nd|rd|th)?\s+(" + months + r")\b", normalized)
    if match:
        return _safe_date(today.year, lexicon.month_number(match.group(2)), int(match.group(1)))

    match = re.search(r"\b(" + months + r")\s+(\d{1,2})(?:st|nd|rd|th)?\b", normalized)
    if match:
        return _safe_date(today.year, lexicon.month_number(match.group(1)), int(match.group(2)))

    return None


def to_24_hour(hour: int, meridiem: str) -> int:
    if meridiem.upper() == "PM" and hour < 12:
        return hour + 12
    if meridiem.upper() == "AM" and hour == 12:
        return 0
    return hour


def _format_time(hours: int, minutes: int = 0) -> Optional[str]:
    if 0 <= hours < 24 and 0 <= minutes < 60:
        return f"{hours:02d}:{minutes:02d}"
    return None


def _dinner_default(hour: int) -> int:
    """Hours 5-11 without a qualifier are evening hours"""
    if 5 <= hour <= 11:
        return hour + 12
    return hour


def _qualifier_in(normalized: str, lexicon: Lexicon) -> Optional[str]:
    for _, pattern, meridiem in lexicon.time_of_day_patterns:
        if pattern.search(normalized):
            return meridiem
    return None


def extract_bilingual_time(text: str, lexicon: Lexicon) -> Optional[str]:
    """
    Time as "HH:MM" from "shaam 7 baje", "raat 9", "evening 7", "7:30pm", "7pm" or "8".

    Rule order:
    1. "<hour> baje" with a time-of-day qualifier anywhere in the text, else the dinner default
    2. a qualifier directly before or after an hour
    3. "H:MM" with optional am/pm, then "H am|pm"
    4. a bare hour from 5 to 11 is taken as PM
    """
    normalized = normalize(text)

    markers = alternation(lexicon.locale_hour_markers)
    match = re.search(r"\b(\d{1,2})\s*(?:" + markers + r")\b", normalized)
    if match:
        hour = int(match.group(1))
        meridiem = _qualifier_in(normalized, lexicon)
        if meridiem:
            return _format_time(to_24_hour(hour, meridiem))
        return _format_time(_dinner_default(hour))

    for word, _, meridiem in lexicon.time_of_day_patterns:
        escaped = re.escape(word)
        match = (
            re.search(r"\b" + escaped + r"\s*(\d{1,2})\b", normalized)
            or re.search(r"\b(\d{1,2})\s*" + escaped + r"\b", normalized)
        )
        if match:
            return _format_time(to_24_hour(int(match.group(1)), meridiem))

    match = _CLOCK_TIME.search(normalized)
    if match:
        hours, minutes = int(match.group(1)), int(match.group(2))
        if match.group(3):
            hours = to_24_hour(hours, match.group(3))
        return _format_time(hours, minutes)

    match = _MERIDIEM_HOUR.search(normalized)
    if match and 1 <= int(match.group(1)) <= 12:
        return _format_time(to_24_hour(int(match.group(1)), match.group(2)))

    match = _BARE_HOUR.search(normalized)
    if match:
        hour = int(match.group(1))
        meridiem = _qualifier_in(normalized, lexicon)
        if meridiem:
            return _format_time(to_24_hour(hour, meridiem))
        if 5 <= hour <= 11:
            return _format_time(hour + 12)

    return None


def extract_bilingual_cuisine(text: str, lexicon: Lexicon) -> Optional[str]:
    """
    Cuisine from the closed vocabulary.
    A word beside a food marker ("burgers khana", "food noodle") is also looked up
    in singular and plural form; words outside the vocabulary never become a cuisine.
    """
    normalized = normalize(text)

    for pattern, cuisine in lexicon.cuisine_patterns:
        if pattern.search(normalized):
            return cuisine

    markers = alternation(lexicon.food_markers)
    for pattern in (
        r"\b([a-z]+)\s+(?:" + markers + r")\b",
        r"\b(?:" + markers + r")\s+([a-z]+)\b",
    ):
        match = re.search(pattern, normalized)
        if match:
            word = match.group(1)
            for candidate in (word, word.removesuffix("s"), word + "s"):
                cuisine = lexicon.cuisines.get(candidate)
                if cuisine:
                    return cuisine

    return None


def extract_bilingual_special_requests(text: str, lexicon: Lexicon) -> List[str]:
    """Canonical tags found in the text, de-duplicated, in lexicon order"""
    normalized = normalize(text)
    detected: List[str] = []
    for pattern, tag in lexicon.special_request_patterns:
        if tag not in detected and pattern.search(normalized):
            detected.append(tag)
    return detected


def _clean_name(candidate: str, lexicon: Lexicon) -> Optional[str]:
    words = []
    for word in candidate.split():
        if word in lexicon.name_stop_words:
            break
        words.append(word)
    while words and words[-1] in lexicon.name_trailing_fillers:
        words.pop()
    if not words:
        return None
    return " ".join(word[0].upper() + word[1:] for word in words)


def extract_name(text: str, lexicon: Lexicon) -> Optional[str]:
    """Customer name from "my name is X", "I'm X", "mera naam X hai" or a bare name"""
    normalized = re.sub(r"[.,!?]", " ", normalize(text))
    normalized = re.sub(r"\s+", " ", normalized).strip()

    intro = re.compile(r"(?:^|\s)(?:" + alternation(lexicon.name_intro_phrases) + r")\s+" + _NAME_WORDS)
    match = intro.search(normalized)
    if match:
        name = _clean_name(match.group(1), lexicon)
        if name:
            return name

    match = _BARE_NAME.match(normalized)
    if match:
        return _clean_name(match.group(1), lexicon)

    return None


def extract(field: BookingField, utterance: str, context: ExtractionContext) -> Any:
    """
    Extract one field from an utterance.
    Returns the value or None; special requests return a (possibly empty) list.
    """
    lexicon = context.lexicon
    if field == BookingField.CUSTOMER_NAME:
        if context.state not in (DialogueState.GREETING, DialogueState.COLLECTING_NAME):
            return None
        return extract_name(utterance, lexicon)
    if field == BookingField.GUEST_COUNT:
        return extract_bilingual_number(utterance, lexicon, context.max_party_size)
    if field == BookingField.DATE:
        return extract_bilingual_date(utterance, lexicon, context.today)
    if field == BookingField.TIME:
        return extract_bilingual_time(utterance, lexicon)
    if field == BookingField.CUISINE:
        return extract_bilingual_cuisine(utterance, lexicon)
    if field == BookingField.SPECIAL_REQUESTS:
        return extract_bilingual_special_requests(utterance, lexicon)
    raise ValueError(f"Unknown booking field: {field}")


def validate_known_fields(
    known_fields: Optional[Dict[str, Any]],
    max_party_size: int = DEFAULT_MAX_PARTY_SIZE
) -> Dict[BookingField, Any]:
    """
    Validate client-supplied knownFields.
    Invalid or unknown entries are dropped and logged; the rest are returned typed.
    """
    accepted: Dict[BookingField, Any] = {}
    for key, raw in (known_fields or {}).items():
        try:
            booking_field = BookingField(key)
        except ValueError:
            logger.warning("known_field_unknown", field=key)
            continue

        value = _coerce_known_value(booking_field, raw, max_party_size)
        if value is None:
            logger.warning("known_field_rejected", field=key)
            continue
        accepted[booking_field] = value
    return accepted


def _coerce_known_value(booking_field: BookingField, raw: Any, max_party_size: int) -> Any:
    if raw is None:
        return None

    if booking_field == BookingField.GUEST_COUNT:
        if isinstance(raw, bool):
            return None
        try:
            value = int(raw)
        except (TypeError, ValueError):
            return None
        return value if _in_party_range(value, max_party_size) else None

    if booking_field == BookingField.DATE:
        if isinstance(raw, dt.date):
            return raw
        try:
            return dt.date.fromisoformat(str(raw))
        except ValueError:
            return None

    if booking_field == BookingField.TIME:
        value = str(raw).strip()
        return value if re.match(TIME_PATTERN, value) else None

    if booking_field == BookingField.SPECIAL_REQUESTS:
        if isinstance(raw, str):
            raw = [raw]
        if not isinstance(raw, (list, tuple)):
            return None
        tags = [str(tag).strip() for tag in raw if str(tag).strip()]
        return tags or None

    value = str(raw).strip()
    return value or None
