"""
Tests for the bilingual extraction engine
"""

import datetime as dt

import pytest

from services.reservations.models import BookingField, DialogueState
from services.reservations.slot_extraction import (
    ExtractionContext,
    extract,
    extract_bilingual_cuisine,
    extract_bilingual_date,
    extract_bilingual_number,
    extract_bilingual_special_requests,
    extract_bilingual_time,
    extract_name,
    next_weekday,
    to_24_hour,
    validate_known_fields,
)

from conftest import TODAY


class TestGuestCount:
    """Test guest count extraction"""

    @pytest.mark.parametrize("text,expected", [
        ("paanch log", 5),
        ("5 people", 5),
        ("hum char log hain", 4),
        ("table for two", 2),
        ("we are 12", 12),
        ("bees", 20),
    ])
    def test_plain_counts(self, lexicon, text, expected):
        assert extract_bilingual_number(text, lexicon) == expected

    @pytest.mark.parametrize("text,expected", [
        ("me and 3 more", 4),
        ("main aur teen log", 4),
        ("myself plus two", 3),
        ("2 and me", 3),
    ])
    def test_companion_adds_the_speaker(self, lexicon, text, expected):
        assert extract_bilingual_number(text, lexicon) == expected

    def test_companion_rule_wins_over_digits(self, lexicon):
        # The digit rule alone would answer 3
        assert extract_bilingual_number("me and 3 friends", lexicon) == 4

    @pytest.mark.parametrize("text", ["25 people", "0", "hmm", "not sure yet", ""])
    def test_no_count(self, lexicon, text):
        assert extract_bilingual_number(text, lexicon) is None

    def test_max_party_size_is_configurable(self, lexicon):
        assert extract_bilingual_number("8 people", lexicon, max_party_size=6) is None
        assert extract_bilingual_number("6 people", lexicon, max_party_size=6) == 6


class TestDate:
    """Test date extraction against a fixed Wednesday"""

    @pytest.mark.parametrize("text,offset", [
        ("aaj", 0),
        ("today please", 0),
        ("kal", 1),
        ("tomorrow", 1),
        ("parso", 2),
        ("day after tomorrow", 2),
    ])
    def test_relative_days(self, lexicon, text, offset):
        assert extract_bilingual_date(text, lexicon, TODAY) == TODAY + dt.timedelta(days=offset)

    def test_weekday_is_next_occurrence(self, lexicon):
        assert extract_bilingual_date("friday", lexicon, TODAY) == dt.date(2026, 10, 16)
        assert extract_bilingual_date("shukravar", lexicon, TODAY) == dt.date(2026, 10, 16)

    def test_same_weekday_means_next_week(self, lexicon):
        assert extract_bilingual_date("wednesday", lexicon, TODAY) == dt.date(2026, 10, 21)

    def test_next_weekday_is_at_least_a_week_out(self, lexicon):
        result = extract_bilingual_date("next friday", lexicon, TODAY)
        assert result == dt.date(2026, 10, 23)
        assert (result - TODAY).days >= 7

    def test_next_weekday_on_that_weekday(self, lexicon):
        friday = dt.date(2026, 10, 16)
        assert extract_bilingual_date("next friday", lexicon, friday) == dt.date(2026, 10, 23)
        assert extract_bilingual_date("agle shukravar", lexicon, friday) == dt.date(2026, 10, 23)

    def test_agle_marker(self, lexicon):
        # Monday already lies in the following week, so no extra week is added
        assert extract_bilingual_date("agle somvar", lexicon, TODAY) == dt.date(2026, 10, 19)

    def test_next_weekday_helper_never_returns_today(self):
        for name in ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]:
            assert next_weekday(TODAY, name) > TODAY

    def test_numeric_date(self, lexicon):
        assert extract_bilingual_date("15/11/2026", lexicon, TODAY) == dt.date(2026, 11, 15)

    def test_impossible_numeric_date(self, lexicon):
        assert extract_bilingual_date("31/02/2026", lexicon, TODAY) is None

    def test_day_and_month_names(self, lexicon):
        assert extract_bilingual_date("20 october", lexicon, TODAY) == dt.date(2026, 10, 20)
        assert extract_bilingual_date("on october 20th", lexicon, TODAY) == dt.date(2026, 10, 20)

    def test_no_date(self, lexicon):
        assert extract_bilingual_date("whenever works", lexicon, TODAY) is None


class TestTime:
    """Test time extraction"""

    @pytest.mark.parametrize("text,expected", [
        ("shaam 7 baje", "19:00"),
        ("subah 9 baje", "09:00"),
        ("8 baje", "20:00"),
        ("raat 9", "21:00"),
        ("evening 7", "19:00"),
        ("7 evening", "19:00"),
        ("7:30pm", "19:30"),
        ("7pm", "19:00"),
        ("7.30pm", "19:00"),
        ("7 pm", "19:00"),
        ("12 pm", "12:00"),
        ("12 am", "00:00"),
        ("18:30", "18:30"),
        ("8", "20:00"),
    ])
    def test_times(self, lexicon, text, expected):
        assert extract_bilingual_time(text, lexicon) == expected

    def test_clock_time_without_meridiem_is_literal(self, lexicon):
        assert extract_bilingual_time("7:30", lexicon) == "07:30"

    @pytest.mark.parametrize("text", ["3", "13pm", "whenever", "25:00"])
    def test_no_time(self, lexicon, text):
        assert extract_bilingual_time(text, lexicon) is None

    def test_to_24_hour(self):
        assert to_24_hour(7, "PM") == 19
        assert to_24_hour(12, "PM") == 12
        assert to_24_hour(12, "AM") == 0
        assert to_24_hour(9, "am") == 9


class TestCuisine:
    """Test cuisine extraction"""

    @pytest.mark.parametrize("text,expected", [
        ("italian", "Italian"),
        ("kuch chinese khana", "Chinese"),
        ("pasta please", "Italian"),
        ("desi khana", "Indian"),
        ("burgers food", "American"),
        ("khana noodle please", "Chinese"),
    ])
    def test_cuisines(self, lexicon, text, expected):
        assert extract_bilingual_cuisine(text, lexicon) == expected

    @pytest.mark.parametrize("text", [
        "good food", "some khana", "food please", "anything is fine",
        "i want food", "just food", "we love food", "bengali food",
    ])
    def test_no_cuisine(self, lexicon, text):
        assert extract_bilingual_cuisine(text, lexicon) is None


class TestSpecialRequests:
    """Test special request tagging"""

    def test_tags_in_lexicon_order(self, lexicon):
        tags = extract_bilingual_special_requests("it's my birthday and we have kids", lexicon)
        assert tags == ["birthday celebration", "kids present"]

    def test_synonyms_deduplicated(self, lexicon):
        tags = extract_bilingual_special_requests("veg, vegetarian only, shakahari", lexicon)
        assert tags == ["vegetarian"]

    def test_nothing_found(self, lexicon):
        assert extract_bilingual_special_requests("just a table", lexicon) == []


class TestName:
    """Test customer name extraction"""

    @pytest.mark.parametrize("text,expected", [
        ("I'm Alex", "Alex"),
        ("I’m Alex", "Alex"),
        ("hi, I'm Alex", "Alex"),
        ("my name is priya sharma", "Priya Sharma"),
        ("mera naam Rahul hai", "Rahul"),
        ("this is Alex and I want a table", "Alex"),
        ("Alex", "Alex"),
        ("ravi kumar", "Ravi Kumar"),
    ])
    def test_names(self, lexicon, text, expected):
        assert extract_name(text, lexicon) == expected

    @pytest.mark.parametrize("text", ["hello", "I want a table for 4", "yes", ""])
    def test_no_name(self, lexicon, text):
        assert extract_name(text, lexicon) is None


class TestExtractDispatch:
    """Test the per-field dispatcher"""

    def test_name_only_while_collecting_it(self, lexicon):
        collecting = ExtractionContext(lexicon=lexicon, today=TODAY, state=DialogueState.COLLECTING_NAME)
        later = ExtractionContext(lexicon=lexicon, today=TODAY, state=DialogueState.COLLECTING_CUISINE)

        assert extract(BookingField.CUSTOMER_NAME, "Alex", collecting) == "Alex"
        assert extract(BookingField.CUSTOMER_NAME, "Alex", later) is None

    def test_dispatch_by_field(self, lexicon):
        context = ExtractionContext(lexicon=lexicon, today=TODAY)

        assert extract(BookingField.GUEST_COUNT, "paanch log", context) == 5
        assert extract(BookingField.DATE, "kal", context) == TODAY + dt.timedelta(days=1)
        assert extract(BookingField.TIME, "shaam 7 baje", context) == "19:00"
        assert extract(BookingField.CUISINE, "sushi", context) == "Japanese"
        assert extract(BookingField.SPECIAL_REQUESTS, "anniversary", context) == ["anniversary celebration"]

    def test_context_party_size(self, lexicon):
        context = ExtractionContext(lexicon=lexicon, today=TODAY, max_party_size=4)
        assert extract(BookingField.GUEST_COUNT, "5 people", context) is None


class TestKnownFields:
    """Test validation of client-supplied fields"""

    def test_valid_fields_are_typed(self):
        accepted = validate_known_fields({
            "customerName": " Alex ",
            "guestCount": "4",
            "date": "2026-10-20",
            "time": "19:00",
            "specialRequests": "birthday celebration",
        })

        assert accepted == {
            BookingField.CUSTOMER_NAME: "Alex",
            BookingField.GUEST_COUNT: 4,
            BookingField.DATE: dt.date(2026, 10, 20),
            BookingField.TIME: "19:00",
            BookingField.SPECIAL_REQUESTS: ["birthday celebration"],
        }

    @pytest.mark.parametrize("known", [
        {"guestCount": 50},
        {"guestCount": 0},
        {"guestCount": True},
        {"guestCount": "many"},
        {"date": "next week"},
        {"time": "7pm"},
        {"cuisine": "  "},
        {"bogus": "value"},
    ])
    def test_invalid_fields_are_dropped(self, known):
        assert validate_known_fields(known) == {}

    def test_none_is_empty(self):
        assert validate_known_fields(None) == {}
