"""
Validity annotations on fact strings.

Registry bullets and session-log entries carry an optional trailing validity
annotation, e.g.::

    "20 (2025-01:)"            -> "20", from 2025-01-01, open ended
    "Gildia (2025-01:2025-06)" -> "Gildia", from 2025-01-01 to 2025-06-01
    "Tarcza (2025-03-15)"      -> "Tarcza", from 2025-03-15, open ended

Annotations are optional. Anything that does not match the grammar is kept as
plain text and treated as an undated baseline fact.
"""
import re
from dataclasses import dataclass
from datetime import date
from enum import StrEnum
from typing import Iterable, List, Optional

import pendulum

from chronicle.logger import get_logger

logger = get_logger(__name__)


# ===| DATES |===

class TimeGranularity(StrEnum):
    """Granularity of a written date token."""
    MONTH = "month"
    DAY = "day"


DATE_TOKEN_PATTERN = r"\d{4}-\d{2}(?:-\d{2})?"

_DATE_TOKEN_RE = re.compile(
    r"^(?P<year>\d{4})-(?P<month>\d{2})(?:-(?P<day>\d{2}))?$"
)


class DateUtils:
    """Parse and format the date tokens used in validity annotations."""

    @staticmethod
    def parse_date_token(token: str) -> Optional[pendulum.Date]:
        """Parse 'YYYY-MM' (start of month) or 'YYYY-MM-DD'. Returns None if invalid."""
        match = _DATE_TOKEN_RE.match(token.strip())
        if not match:
            return None
        try:
            return pendulum.date(
                int(match.group("year")),
                int(match.group("month")),
                int(match.group("day") or 1),
            )
        except ValueError:
            return None

    @staticmethod
    def granularity(d: date) -> TimeGranularity:
        """Dates on the first of a month are written at month granularity."""
        return TimeGranularity.MONTH if d.day == 1 else TimeGranularity.DAY

    @staticmethod
    def format_date(d: date) -> str:
        """Format a date the way annotations write it."""
        if DateUtils.granularity(d) == TimeGranularity.MONTH:
            return f"{d.year:04d}-{d.month:02d}"
        return f"{d.year:04d}-{d.month:02d}-{d.day:02d}"


def parse_as_of(value: Optional[str]) -> Optional[pendulum.Date]:
    """
    Parse a query date.

    Unlike fact annotations, a malformed query date is a caller error and raises.
    """
    if value is None or not value.strip():
        return None
    parsed = DateUtils.parse_date_token(value)
    if parsed is None:
        raise ValueError(f"Invalid as-of date {value!r}, expected YYYY-MM or YYYY-MM-DD")
    return parsed


# ===| FACTS |===

@dataclass(frozen=True)
class Fact:
    """A value with an optional validity interval [valid_from, valid_to)."""
    value: str
    valid_from: Optional[date] = None
    valid_to: Optional[date] = None

    def __post_init__(self):
        if self.valid_from is not None and self.valid_to is not None and self.valid_from > self.valid_to:
            raise ValueError(
                f"Fact {self.value!r}: valid_from {self.valid_from} is after valid_to {self.valid_to}"
            )

    @property
    def is_dated(self) -> bool:
        return self.valid_from is not None

    def __str__(self) -> str:
        return ValidityParser.format(self)


# ===| PARSER |===

class ValidityParser:
    """
    Split a raw fact string into value and validity interval.

    Grammar of the trailing annotation, in parentheses:
      DATE          open ended, from DATE
      DATE:         open ended, from DATE
      DATE:DATE     closed range
    where DATE is YYYY-MM or YYYY-MM-DD. Parsing never raises.
    """

    ANNOTATION_RE = re.compile(r"^(?P<text>.*?)\s*\((?P<token>[^()]*)\)\s*$", re.DOTALL)
    TOKEN_RE = re.compile(
        rf"^\s*(?P<start>{DATE_TOKEN_PATTERN})\s*(?:(?P<colon>:)\s*(?P<end>{DATE_TOKEN_PATTERN})?)?\s*$"
    )

    @classmethod
    def parse(cls, raw: str) -> Fact:
        """Parse one raw fact string."""
        text = raw.strip()

        match = cls.ANNOTATION_RE.match(text)
        if not match:
            return Fact(value=text)

        token_match = cls.TOKEN_RE.match(match.group("token"))
        if not token_match:
            # Parenthesised text that is not a date ("Miecz (magiczny)")
            return Fact(value=text)

        value = match.group("text").strip()
        if not value:
            logger.debug(f"Annotation without a value, keeping as text: {raw!r}")
            return Fact(value=text)

        valid_from = DateUtils.parse_date_token(token_match.group("start"))
        end_token = token_match.group("end")
        valid_to = DateUtils.parse_date_token(end_token) if end_token else None

        if valid_from is None or (end_token and valid_to is None):
            logger.debug(f"Invalid date in annotation, keeping as text: {raw!r}")
            return Fact(value=text)

        if valid_to is not None and valid_from > valid_to:
            logger.debug(f"Reversed date range, keeping as text: {raw!r}")
            return Fact(value=text)

        return Fact(value=value, valid_from=valid_from, valid_to=valid_to)

    @classmethod
    def parse_many(cls, raws: Iterable[str]) -> List[Fact]:
        """Parse a sequence of raw strings, preserving order."""
        return [cls.parse(raw) for raw in raws]

    @staticmethod
    def format(fact: Fact) -> str:
        """Write a fact back in annotation form."""
        if fact.valid_from is None:
            return fact.value
        start = DateUtils.format_date(fact.valid_from)
        end = DateUtils.format_date(fact.valid_to) if fact.valid_to is not None else ""
        return f"{fact.value} ({start}:{end})"


# ===| QUANTITIES |===

_QUANTITY_RE = re.compile(
    r"^(?P<number>[+-]?\d{1,3}(?:[ _,]\d{3})+|[+-]?\d+)(?:\s+(?P<unit>[^\d\s].*))?$"
)


@dataclass(frozen=True)
class Quantity:
    """A numeric fact that may fail to parse. parsed_value is None on failure."""
    raw_text: str
    parsed_value: Optional[int] = None

    @property
    def is_parsed(self) -> bool:
        return self.parsed_value is not None

    @classmethod
    def from_text(cls, text: Optional[str]) -> "Quantity":
        """Parse a leading integer, optionally followed by a unit ('120 gp')."""
        if text is None:
            return cls(raw_text="")
        value = ValidityParser.parse(text).value
        match = _QUANTITY_RE.match(value)
        if not match:
            logger.debug(f"Not a quantity: {text!r}")
            return cls(raw_text=text)
        number = re.sub(r"[ _,]", "", match.group("number"))
        return cls(raw_text=text, parsed_value=int(number))
