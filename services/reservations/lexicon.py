"""
Lexicon loading for the extraction engine.
Vocabulary is data: it is read from YAML once and compiled into word-boundary patterns.
"""

import re
from functools import lru_cache
from pathlib import Path
from re import Pattern
from typing import Dict, List, Literal, Optional, Tuple

import yaml
from pydantic import BaseModel, Field, PrivateAttr, ValidationError, field_validator

from .error_models import ConfigurationError
from .logging_adapter import get_safe_logger

logger = get_safe_logger("reservations.lexicon")

DEFAULT_LEXICON_PATH = Path(__file__).resolve().parent / "data" / "lexicon.yaml"

WEEKDAY_NAMES = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]


def word_pattern(phrase: str) -> Pattern[str]:
    """Case-insensitive whole-word pattern for a lexicon phrase"""
    return re.compile(r"\b" + re.escape(phrase) + r"\b", re.IGNORECASE)


def alternation(words: List[str]) -> str:
    """Regex alternation of escaped words, longest first"""
    return "|".join(re.escape(w) for w in sorted(words, key=len, reverse=True))


class CompanionWords(BaseModel):
    self_words: List[str] = Field(..., min_length=1)
    conjunctions: List[str] = Field(..., min_length=1)


class Lexicon(BaseModel):
    """Validated vocabulary tables; mapping order is match priority"""

    numbers: Dict[str, int]
    companion: CompanionWords
    relative_days: Dict[str, int]
    weekdays: Dict[str, str]
    next_week_markers: List[str]
    months: List[str] = Field(..., min_length=12, max_length=12)
    time_of_day: Dict[str, Literal["AM", "PM"]]
    locale_hour_markers: List[str] = Field(..., min_length=1)
    cuisines: Dict[str, str]
    food_markers: List[str] = Field(..., min_length=1)
    special_requests: Dict[str, str]
    name_intro_phrases: List[str] = Field(..., min_length=1)
    name_trailing_fillers: List[str] = Field(default_factory=list)
    name_stop_words: List[str] = Field(default_factory=list)
    affirmatives: List[str] = Field(default_factory=list)
    negatives: List[str] = Field(default_factory=list)

    _number_patterns: List[Tuple[Pattern[str], int]] = PrivateAttr(default_factory=list)
    _relative_day_patterns: List[Tuple[Pattern[str], int]] = PrivateAttr(default_factory=list)
    _weekday_patterns: List[Tuple[Pattern[str], str]] = PrivateAttr(default_factory=list)
    _time_of_day_patterns: List[Tuple[str, Pattern[str], str]] = PrivateAttr(default_factory=list)
    _cuisine_patterns: List[Tuple[Pattern[str], str]] = PrivateAttr(default_factory=list)
    _special_request_patterns: List[Tuple[Pattern[str], str]] = PrivateAttr(default_factory=list)
    _next_week_pattern: Optional[Pattern[str]] = PrivateAttr(default=None)
    _affirmative_pattern: Optional[Pattern[str]] = PrivateAttr(default=None)
    _negative_pattern: Optional[Pattern[str]] = PrivateAttr(default=None)

    @field_validator('weekdays')
    @classmethod
    def validate_weekdays(cls, v):
        unknown = sorted({day for day in v.values() if day not in WEEKDAY_NAMES})
        if unknown:
            raise ValueError(f'Unknown weekday names: {unknown}')
        return v

    @field_validator('numbers')
    @classmethod
    def validate_numbers(cls, v):
        if any(n < 0 for n in v.values()):
            raise ValueError('Number words must map to non-negative integers')
        return v

    def model_post_init(self, __context) -> None:
        self._number_patterns = [(word_pattern(w), n) for w, n in self.numbers.items()]
        # Longest phrase first so "day after tomorrow" wins over "tomorrow"
        relative = sorted(self.relative_days.items(), key=lambda item: len(item[0]), reverse=True)
        self._relative_day_patterns = [(word_pattern(w), offset) for w, offset in relative]
        self._weekday_patterns = [(word_pattern(w), day) for w, day in self.weekdays.items()]
        self._time_of_day_patterns = [
            (w, word_pattern(w), meridiem) for w, meridiem in self.time_of_day.items()
        ]
        self._cuisine_patterns = [(word_pattern(w), c) for w, c in self.cuisines.items()]
        self._special_request_patterns = [
            (word_pattern(w), tag) for w, tag in self.special_requests.items()
        ]
        self._next_week_pattern = self._any_word(self.next_week_markers)
        self._affirmative_pattern = self._any_word(self.affirmatives)
        self._negative_pattern = self._any_word(self.negatives)

    @staticmethod
    def _any_word(words: List[str]) -> Optional[Pattern[str]]:
        if not words:
            return None
        return re.compile(r"\b(?:" + alternation(words) + r")\b", re.IGNORECASE)

    @property
    def number_patterns(self) -> List[Tuple[Pattern[str], int]]:
        return self._number_patterns

    @property
    def relative_day_patterns(self) -> List[Tuple[Pattern[str], int]]:
        return self._relative_day_patterns

    @property
    def weekday_patterns(self) -> List[Tuple[Pattern[str], str]]:
        return self._weekday_patterns

    @property
    def time_of_day_patterns(self) -> List[Tuple[str, Pattern[str], str]]:
        return self._time_of_day_patterns

    @property
    def cuisine_patterns(self) -> List[Tuple[Pattern[str], str]]:
        return self._cuisine_patterns

    @property
    def special_request_patterns(self) -> List[Tuple[Pattern[str], str]]:
        return self._special_request_patterns

    def has_next_week_marker(self, text: str) -> bool:
        return bool(self._next_week_pattern and self._next_week_pattern.search(text))

    def is_affirmative(self, text: str) -> bool:
        return bool(self._affirmative_pattern and self._affirmative_pattern.search(text))

    def is_negative(self, text: str) -> bool:
        return bool(self._negative_pattern and self._negative_pattern.search(text))

    def month_number(self, name: str) -> Optional[int]:
        try:
            return self.months.index(name.lower()) + 1
        except ValueError:
            return None


@lru_cache(maxsize=8)
def _load_lexicon_file(path: str) -> Lexicon:
    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.error("lexicon_load_failed", path=path, error=str(e))
        raise ConfigurationError(f"Cannot read lexicon file {path}", details={"error": str(e)}) from e

    try:
        lexicon = Lexicon.model_validate(raw)
    except ValidationError as e:
        logger.error("lexicon_invalid", path=path, errors=[err["msg"] for err in e.errors()])
        raise ConfigurationError(f"Invalid lexicon file {path}") from e

    logger.info(
        "lexicon_loaded",
        path=path,
        numbers=len(lexicon.numbers),
        cuisines=len(lexicon.cuisines),
        special_requests=len(lexicon.special_requests),
    )
    return lexicon


def load_lexicon(path: Optional[str] = None) -> Lexicon:
    """Load (once per path) and validate a lexicon file; defaults to the bundled one"""
    resolved = Path(path) if path else DEFAULT_LEXICON_PATH
    return _load_lexicon_file(str(resolved.resolve()))
