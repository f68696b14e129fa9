"""Rule-based intent classification and entity extraction."""

import calendar
import logging
import re
from datetime import date, datetime, time, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional, Pattern, Sequence, Tuple
from dataclasses import dataclass

from ..models.query import AmountRange, DateRange, EntityMap, IntentLabel, Query, SearchOptions
from ..utils.validators import validate_query_text

logger = logging.getLogger(__name__)


def _group(*patterns: str) -> Pattern:
    return re.compile(r"\b(?:" + "|".join(patterns) + r")\b")


# Evaluated top to bottom; the first group that matches decides the intent.
INTENT_RULES: Tuple[Tuple[IntentLabel, Pattern], ...] = (
    (IntentLabel.DUPLICATE_CHECK, _group(
        r"duplicates?", r"same receipt", r"already (?:added|uploaded|scanned)",
        r"double[- ]charged", r"charged twice", r"similar purchases?",
    )),
    (IntentLabel.WARRANTY_LOOKUP, _group(
        r"warrant(?:y|ies)", r"guarantees?", r"return policy", r"coverage",
        r"still covered", r"expir(?:e|es|ed|ing|y)",
    )),
    (IntentLabel.ANALYTICS, _group(
        r"trends?", r"patterns?", r"over time", r"compar(?:e|ed|ing|ison)",
        r"increas(?:e|ed|ing)", r"decreas(?:e|ed|ing)", r"analy(?:ze|se|sis|tics)",
        r"anomal(?:y|ies)", r"unusual", r"breakdown", r"average",
    )),
    (IntentLabel.SPENDING_SUMMARY, _group(
        r"spending", r"spent", r"spend", r"total", r"how much", r"budget",
        r"expenses", r"cost me",
    )),
    (IntentLabel.SEARCH, _group(
        r"find", r"search", r"show", r"look(?:ing)? for", r"where", r"receipts?",
        r"purchases?", r"bought", r"transactions?", r"payments?", r"list",
    )),
)

SUGGESTIONS: Tuple[str, ...] = (
    "receipts from last month",
    "grocery store purchases",
    "warranty expiring soon",
    "duplicate receipts",
    "spending by category",
    "business expenses",
    "restaurant receipts",
    "gas station purchases",
    "online shopping",
    "healthcare expenses",
)

_NUMBER = r"(\d{1,3}(?:,\d{3})+(?:\.\d+)?|\d+(?:\.\d+)?)"
# A number followed by a time unit is a duration, not an amount.
_NOT_DURATION = r"(?!\d|[.,]\d|\s*(?:hours?|days?|weeks?|months?|years?)\b)"
_MONEY = r"\$?\s?" + _NUMBER + _NOT_DURATION

AMOUNT_BETWEEN = re.compile(r"\bbetween\s+" + _MONEY + r"\s+(?:and|to|-)\s+" + _MONEY)
AMOUNT_SPAN = re.compile(r"\$" + _NUMBER + r"\s*(?:-|to)\s*" + _MONEY)
AMOUNT_MIN = re.compile(
    r"\b(?:over|above|more than|greater than|at least|exceeding|minimum of)\s+" + _MONEY
)
AMOUNT_MAX = re.compile(
    r"\b(?:under|below|less than|at most|up to|cheaper than|maximum of)\s+" + _MONEY
)
AMOUNT_EXACT = re.compile(r"\$" + _NUMBER)

_ISO_DATE = r"(\d{4})-(\d{1,2})-(\d{1,2})"
_US_DATE = r"(\d{1,2})/(\d{1,2})/(\d{4})"
_ANY_DATE = r"(\d{4}-\d{1,2}-\d{1,2}|\d{1,2}/\d{1,2}/\d{4})"

DATE_SPAN = re.compile(r"\b(?:from|between)\s+" + _ANY_DATE + r"\s+(?:to|and|until|-)\s+" + _ANY_DATE)
DATE_SINCE = re.compile(r"\b(?:since|after)\s+" + _ANY_DATE)
DATE_BEFORE = re.compile(r"\bbefore\s+" + _ANY_DATE)
DATE_SINGLE = re.compile(_ANY_DATE)
MONTH_NAMES = {name.lower(): index for index, name in enumerate(calendar.month_name) if name}
MONTH_YEAR = re.compile(r"\b(" + "|".join(MONTH_NAMES) + r")(?:\s+(\d{4}))?\b")
LAST_N = re.compile(r"\b(?:last|past|previous|in the last|in the past)\s+(\d+)\s+(day|week|month|year)s?\b")
PAST_UNIT = re.compile(r"\b(?:past|previous)\s+(day|week|month|year)\b")
RELATIVE_PERIOD = re.compile(r"\b(today|yesterday|this week|last week|this month|last month|this year|last year)\b")


@dataclass(frozen=True)
class QueryVocabulary:
    """Known category, merchant and product names supplied by the caller."""
    categories: Tuple[str, ...] = ()
    merchants: Tuple[str, ...] = ()
    products: Tuple[str, ...] = ()

    @classmethod
    def from_lists(
        cls,
        categories: Iterable[str] = (),
        merchants: Iterable[str] = (),
        products: Iterable[str] = ()
    ) -> "QueryVocabulary":
        return cls(tuple(categories), tuple(merchants), tuple(products))


def normalize_query(text: str) -> str:
    """Lower-case and collapse whitespace."""
    return re.sub(r"\s+", " ", text.lower()).strip()


def _start_of_day(day: date) -> datetime:
    return datetime.combine(day, time.min)


def _end_of_day(day: date) -> datetime:
    return datetime.combine(day, time.max)


def _month_bounds(year: int, month: int) -> DateRange:
    last_day = calendar.monthrange(year, month)[1]
    return DateRange(
        start=_start_of_day(date(year, month, 1)),
        end=_end_of_day(date(year, month, last_day))
    )


def _shift_months(day: date, months: int) -> date:
    month_index = day.month - 1 + months
    year = day.year + month_index // 12
    month = month_index % 12 + 1
    return date(year, month, min(day.day, calendar.monthrange(year, month)[1]))


def _parse_date(token: str) -> Optional[date]:
    """Parse YYYY-MM-DD or MM/DD/YYYY; None for impossible dates."""
    iso = re.fullmatch(_ISO_DATE, token)
    us = re.fullmatch(_US_DATE, token)
    try:
        if iso:
            return date(int(iso.group(1)), int(iso.group(2)), int(iso.group(3)))
        if us:
            return date(int(us.group(3)), int(us.group(1)), int(us.group(2)))
    except ValueError:
        return None
    return None


def _to_amount(token: str) -> float:
    return float(token.replace(",", ""))


class QueryUnderstanding:
    """
    Classifies query intent and extracts structured entities.

    Both operations are pure functions of the input text, the evaluation
    time and the caller-supplied vocabulary.
    """

    def __init__(
        self,
        vocabulary: Optional[QueryVocabulary] = None,
        max_query_length: int = 1000,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.vocabulary = vocabulary or QueryVocabulary()
        self.max_query_length = max_query_length
        self._clock = clock or datetime.now

    def classify_intent(self, text: str) -> IntentLabel:
        """Return the label of the first rule group matching the text."""
        normalized = normalize_query(text)
        for label, pattern in INTENT_RULES:
            if pattern.search(normalized):
                return label
        return IntentLabel.UNKNOWN

    def extract_entities(
        self,
        text: str,
        now: Optional[datetime] = None,
        vocabulary: Optional[QueryVocabulary] = None
    ) -> EntityMap:
        """
        Extract date range, amount range and vocabulary hints.

        Args:
            text: Query text
            now: Evaluation time for relative dates
            vocabulary: Overrides the configured vocabulary

        Returns:
            EntityMap with only the recognized slots set
        """
        normalized = normalize_query(text)
        now = now or self._clock()
        vocabulary = vocabulary or self.vocabulary

        return EntityMap(
            date_range=self.extract_date_range(normalized, now),
            amount_range=self.extract_amount_range(normalized),
            category=self._match_vocabulary(normalized, vocabulary.categories),
            merchant=self._match_vocabulary(normalized, vocabulary.merchants),
            product=self._match_vocabulary(normalized, vocabulary.products),
        )

    def parse(self, text: str, options: Optional[SearchOptions] = None) -> Query:
        """Validate, classify and extract in one step."""
        raw_text = validate_query_text(text, self.max_query_length)
        now = options.now if options and options.now else None
        return Query(
            raw_text=text,
            normalized_text=normalize_query(raw_text),
            intent=self.classify_intent(raw_text),
            entities=self.extract_entities(raw_text, now=now),
            options=options
        )

    def extract_date_range(self, normalized: str, now: datetime) -> Optional[DateRange]:
        """Resolve the first recognized date expression to absolute bounds."""
        extractors = (
            self._explicit_dates,
            self._last_n_units,
            self._relative_period,
            self._month_name,
        )
        for extractor in extractors:
            date_range = extractor(normalized, now)
            if date_range is not None:
                return date_range
        return None

    def _explicit_dates(self, normalized: str, now: datetime) -> Optional[DateRange]:
        match = DATE_SPAN.search(normalized)
        if match:
            first, second = _parse_date(match.group(1)), _parse_date(match.group(2))
            if first and second:
                first, second = min(first, second), max(first, second)
                return DateRange(start=_start_of_day(first), end=_end_of_day(second))

        match = DATE_SINCE.search(normalized)
        if match:
            start = _parse_date(match.group(1))
            if start and _start_of_day(start) <= now:
                return DateRange(start=_start_of_day(start), end=now)

        match = DATE_BEFORE.search(normalized)
        if match:
            end = _parse_date(match.group(1))
            if end:
                return DateRange(start=None, end=_start_of_day(end) - timedelta(microseconds=1))

        match = DATE_SINGLE.search(normalized)
        if match:
            day = _parse_date(match.group(1))
            if day:
                return DateRange(start=_start_of_day(day), end=_end_of_day(day))

        return None

    def _last_n_units(self, normalized: str, now: datetime) -> Optional[DateRange]:
        match = LAST_N.search(normalized)
        if match:
            count, unit = int(match.group(1)), match.group(2)
        else:
            match = PAST_UNIT.search(normalized)
            if not match:
                return None
            count, unit = 1, match.group(1)

        if count <= 0:
            return None
        if unit == "day":
            start = now - timedelta(days=count)
        elif unit == "week":
            start = now - timedelta(weeks=count)
        elif unit == "month":
            shifted = _shift_months(now.date(), -count)
            start = datetime.combine(shifted, now.time())
        else:
            shifted = _shift_months(now.date(), -12 * count)
            start = datetime.combine(shifted, now.time())
        return DateRange(start=start, end=now)

    def _relative_period(self, normalized: str, now: datetime) -> Optional[DateRange]:
        match = RELATIVE_PERIOD.search(normalized)
        if not match:
            return None

        today = now.date()
        phrase = match.group(1)

        if phrase == "today":
            return DateRange(start=_start_of_day(today), end=now)
        if phrase == "yesterday":
            yesterday = today - timedelta(days=1)
            return DateRange(start=_start_of_day(yesterday), end=_end_of_day(yesterday))

        week_start = today - timedelta(days=today.weekday())
        if phrase == "this week":
            return DateRange(start=_start_of_day(week_start), end=now)
        if phrase == "last week":
            previous_start = week_start - timedelta(days=7)
            return DateRange(
                start=_start_of_day(previous_start),
                end=_end_of_day(previous_start + timedelta(days=6))
            )

        if phrase == "this month":
            return DateRange(start=_start_of_day(today.replace(day=1)), end=now)
        if phrase == "last month":
            previous = _shift_months(today.replace(day=1), -1)
            return _month_bounds(previous.year, previous.month)

        if phrase == "this year":
            return DateRange(start=_start_of_day(date(today.year, 1, 1)), end=now)
        return DateRange(
            start=_start_of_day(date(today.year - 1, 1, 1)),
            end=_end_of_day(date(today.year - 1, 12, 31))
        )

    def _month_name(self, normalized: str, now: datetime) -> Optional[DateRange]:
        match = MONTH_YEAR.search(normalized)
        if not match:
            return None

        month = MONTH_NAMES[match.group(1)]
        if match.group(2):
            year = int(match.group(2))
        else:
            # A bare month name refers to its most recent occurrence.
            year = now.year if month <= now.month else now.year - 1
        return _month_bounds(year, month)

    def extract_amount_range(self, normalized: str) -> Optional[AmountRange]:
        """Resolve amount bounds from comparison phrases."""
        match = AMOUNT_BETWEEN.search(normalized) or AMOUNT_SPAN.search(normalized)
        if match:
            first, second = _to_amount(match.group(1)), _to_amount(match.group(2))
            return AmountRange(min=min(first, second), max=max(first, second))

        minimum = AMOUNT_MIN.search(normalized)
        maximum = AMOUNT_MAX.search(normalized)
        low = _to_amount(minimum.group(1)) if minimum else None
        high = _to_amount(maximum.group(1)) if maximum else None

        if low is not None and high is not None and low > high:
            low, high = high, low
        if low is not None or high is not None:
            return AmountRange(min=low, max=high)

        match = AMOUNT_EXACT.search(normalized)
        if match:
            amount = _to_amount(match.group(1))
            return AmountRange(min=amount, max=amount)
        return None

    @staticmethod
    def _match_vocabulary(normalized: str, terms: Sequence[str]) -> Optional[str]:
        """Longest vocabulary term found in the text; earliest wins ties."""
        best: Optional[Tuple[int, int, str]] = None
        for term in terms:
            term_lower = normalize_query(term)
            if not term_lower:
                continue
            pattern = r"(?<!\w)" + re.escape(term_lower) + r"(?:s|es)?(?!\w)"
            match = re.search(pattern, normalized)
            if match is None:
                continue
            candidate = (-len(term_lower), match.start(), term)
            if best is None or candidate < best:
                best = candidate
        return best[2] if best else None

    def suggest(self, prefix: str = "", limit: int = 5) -> List[Dict[str, Any]]:
        """Static suggestions containing `prefix`, labelled with their intent."""
        prefix_lower = normalize_query(prefix or "")
        matches = [
            suggestion for suggestion in SUGGESTIONS
            if not prefix_lower or prefix_lower in suggestion
        ]
        return [
            {"text": suggestion, "intent": self.classify_intent(suggestion).value}
            for suggestion in matches[:max(limit, 0)]
        ]

    def describe(self) -> Dict[str, Any]:
        return {
            "intent_rules": len(INTENT_RULES),
            "categories": len(self.vocabulary.categories),
            "merchants": len(self.vocabulary.merchants),
            "products": len(self.vocabulary.products),
        }
