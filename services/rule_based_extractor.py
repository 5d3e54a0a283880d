"""
Rule-Based Extractor
Deterministic extraction with regex + dateparser - no LLM involved.

Three jobs:
- flight selection index ("book flight 2", "the second one", "3")
- user preferences (budget, time of day, stops, priorities, airlines)
- travel parameters, used when the language oracle is unavailable

Usage:
    from services.rule_based_extractor import rule_extractor

    index = rule_extractor.extract_selection("I'll take option 2")   # -> 2
    prefs = rule_extractor.extract_preferences("cheap morning flights")
    params = rule_extractor.extract_travel_params("NYC to London tomorrow")
"""

import logging
import re
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional

import dateparser

from app.conversation.models import ExtractedTravelParams, UserPreferences

logger = logging.getLogger(__name__)


class RuleBasedExtractor:

    # ========================================
    # SELECTION PATTERNS (checked in order)
    # ========================================

    SELECTION_PATTERNS = [
        (re.compile(r'(?:select|choose|pick|book|take)\s+(?:flight\s+)?(?:number\s+)?(\d+)', re.IGNORECASE), None),
        (re.compile(r'(?:option|choice)\s+(\d+)', re.IGNORECASE), None),
        (re.compile(r'^\s*(\d+)\s*$'), None),
        (re.compile(r'\b(?:first|1st)\b', re.IGNORECASE), 1),
        (re.compile(r'\b(?:second|2nd)\b', re.IGNORECASE), 2),
        (re.compile(r'\b(?:third|3rd)\b', re.IGNORECASE), 3),
    ]

    # ========================================
    # PREFERENCE KEYWORDS
    # ========================================

    BUDGET_RULES = [
        (re.compile(r'\b(?:budget|cheap\w*)\b', re.IGNORECASE), "budget"),
        (re.compile(r'\b(?:premium|expensive|luxury)\b', re.IGNORECASE), "premium"),
        (re.compile(r'\b(?:mid[\s-]?range|moderate)\b', re.IGNORECASE), "mid-range"),
    ]

    TIME_RULES = [
        (re.compile(r'\bmorning\b', re.IGNORECASE), "morning"),
        (re.compile(r'\bafternoon\b', re.IGNORECASE), "afternoon"),
        (re.compile(r'\bevening\b', re.IGNORECASE), "evening"),
        (re.compile(r'\bflexible\b', re.IGNORECASE), "flexible"),
    ]

    STOP_RULES = [
        (re.compile(r'\b(?:direct|non[\s-]?stop)\b', re.IGNORECASE), "direct"),
        (re.compile(r'\bone[\s-]stop\b', re.IGNORECASE), "one-stop"),
        (re.compile(r'\b(?:any|flexible)\b', re.IGNORECASE), "flexible"),
    ]

    PRIORITY_RULES = [
        (re.compile(r'\b(?:price|cost)\b', re.IGNORECASE), "price"),
        (re.compile(r'\b(?:time|duration)\b', re.IGNORECASE), "duration"),
        (re.compile(r'\b(?:convenience|convenient)\b', re.IGNORECASE), "convenience"),
    ]

    KNOWN_AIRLINES = [
        "American Airlines", "Delta", "United", "JetBlue", "Southwest",
        "Alaska Airlines", "British Airways", "Lufthansa", "Air France",
        "KLM", "Emirates", "Qatar Airways", "Turkish Airlines", "Virgin Atlantic",
    ]

    # ========================================
    # TRAVEL PARAMETER PATTERNS
    # ========================================

    AIRPORT_PATTERN = re.compile(r'\b[A-Z]{3}\b')

    _PLACE_END = r'(?=\s+(?:on|at|in|for|next|this|tomorrow|today|with|departing|leaving|from|to)\b|[,.;!?]|$)'

    FROM_TO_PATTERN = re.compile(
        r'\bfrom\s+([A-Za-z][A-Za-z\s]*?)\s+(?:to|→)\s+([A-Za-z][A-Za-z\s]*?)' + _PLACE_END,
        re.IGNORECASE
    )
    TO_FROM_PATTERN = re.compile(
        r'\bto\s+([A-Za-z][A-Za-z\s]*?)\s+from\s+([A-Za-z][A-Za-z\s]*?)' + _PLACE_END,
        re.IGNORECASE
    )
    # "NYC to London", "new york to paris": only trusted when both sides resolve
    PAIR_PATTERN = re.compile(
        r'\b([A-Za-z]+(?:\s[A-Za-z]+)?)\s+(?:to|→)\s+([A-Za-z]+(?:\s[A-Za-z]+)?)\b',
        re.IGNORECASE
    )
    DIRECTION_PATTERNS = {
        "origin": re.compile(
            r'\b(?:from|leaving|departing)\s+([A-Za-z][A-Za-z\s]*?)(?=\s+(?:to|on|at|in|for)\b|[,.;!?]|$)',
            re.IGNORECASE
        ),
        "destination": re.compile(
            r'\b(?:to|going to|arriving in)\s+([A-Za-z][A-Za-z\s]*?)(?=\s+(?:from|on|at|in|for)\b|[,.;!?]|$)',
            re.IGNORECASE
        ),
    }

    PASSENGER_PATTERN = re.compile(
        r'(\d+)\s*(?:passengers?|persons?|people|adults?|travell?ers?)',
        re.IGNORECASE
    )
    WRITTEN_PASSENGER_PATTERN = re.compile(
        r'\b(one|two|three|four|five|six|seven|eight|nine)\s+(?:passengers?|persons?|people|adults?|travell?ers?|of us)\b',
        re.IGNORECASE
    )
    FRIENDS_PATTERN = re.compile(r'with\s+(\d+)\s+friends?', re.IGNORECASE)
    WRITTEN_NUMBERS = {
        "one": 1, "two": 2, "three": 3, "four": 4, "five": 5,
        "six": 6, "seven": 7, "eight": 8, "nine": 9,
    }

    FLEXIBLE_PATTERN = re.compile(
        r'\b(?:flexible|around|approximately|roughly|give or take)\b|±\s*\d+',
        re.IGNORECASE
    )

    ISO_DATE_PATTERN = re.compile(r'\b\d{4}-\d{2}-\d{2}\b')
    MONTH_DATE_PATTERN = re.compile(
        r'\b(?:\d{1,2}(?:st|nd|rd|th)?\s+(?:of\s+)?'
        r'(?:jan|feb|mar|apr|may|jun|jul|aug|sep|sept|oct|nov|dec)[a-z]*'
        r'|(?:jan|feb|mar|apr|may|jun|jul|aug|sep|sept|oct|nov|dec)[a-z]*\s+\d{1,2}(?:st|nd|rd|th)?)\b',
        re.IGNORECASE
    )
    WEEKDAYS = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]

    TRAVEL_CLASS_KEYWORDS = {
        "premium economy": "premium_economy",
        "business class": "business",
        "first class": "first",
        "economy": "economy",
        "business": "business",
        "coach": "economy",
    }

    # ========================================
    # CITY → AIRPORT MAPPING
    # ========================================

    CITY_TO_AIRPORT = {
        # North America
        "new york": "JFK",
        "nyc": "JFK",
        "los angeles": "LAX",
        "la": "LAX",
        "chicago": "ORD",
        "miami": "MIA",
        "san francisco": "SFO",
        "boston": "BOS",
        "seattle": "SEA",
        "denver": "DEN",
        "atlanta": "ATL",
        "las vegas": "LAS",
        "vegas": "LAS",
        "phoenix": "PHX",
        "houston": "IAH",
        "washington": "DCA",
        "dc": "DCA",
        "toronto": "YYZ",
        # Europe
        "london": "LHR",
        "paris": "CDG",
        "amsterdam": "AMS",
        "frankfurt": "FRA",
        "madrid": "MAD",
        "rome": "FCO",
        "istanbul": "IST",
        # Middle East & Asia
        "dubai": "DXB",
        "doha": "DOH",
        "tokyo": "NRT",
        "singapore": "SIN",
        "tashkent": "TAS",
    }

    # ========================================
    # HELPERS
    # ========================================

    @staticmethod
    def _first_match(rules, message: str) -> Optional[str]:
        for pattern, value in rules:
            if pattern.search(message):
                return value
        return None

    @classmethod
    def normalize_place(cls, place: Optional[str]) -> Optional[str]:
        """Map a city name or airport code to an IATA code when possible."""
        if not place:
            return None
        s = re.sub(r'\s+', ' ', place.strip().lower())
        if s in cls.CITY_TO_AIRPORT:
            return cls.CITY_TO_AIRPORT[s]
        # Longest known city contained in the phrase ("downtown chicago")
        for city in sorted(cls.CITY_TO_AIRPORT, key=len, reverse=True):
            if len(city) > 2 and re.search(rf'\b{re.escape(city)}\b', s):
                return cls.CITY_TO_AIRPORT[city]
        # Explicit airport code typed in capitals ("JFK")
        if re.fullmatch(r'[A-Z]{3}', place.strip()):
            return place.strip()
        return None

    @classmethod
    def parse_date(cls, message: str, today: Optional[date] = None) -> Optional[date]:
        """
        Relative words first (today, tomorrow, next week, weekday names),
        then explicit dates through dateparser. Past dates roll forward a year.
        """
        today = today or date.today()
        lower = message.lower()

        if re.search(r'\btoday\b', lower):
            return today
        if re.search(r'\btomorrow\b', lower):
            return today + timedelta(days=1)
        if re.search(r'\bnext week\b', lower):
            return today + timedelta(days=7)

        for index, day in enumerate(cls.WEEKDAYS):
            if re.search(rf'\b{day}\b', lower):
                ahead = (index - today.weekday()) % 7
                return today + timedelta(days=ahead or 7)

        phrase = None
        m = cls.ISO_DATE_PATTERN.search(message) or cls.MONTH_DATE_PATTERN.search(message)
        if m:
            phrase = m.group(0)
        if not phrase:
            return None

        parsed = dateparser.parse(
            phrase,
            settings={
                'PREFER_DATES_FROM': 'future',
                'RELATIVE_BASE': datetime.combine(today, datetime.min.time()),
                'RETURN_AS_TIMEZONE_AWARE': False,
            }
        )
        if not parsed:
            return None

        d = parsed.date()
        if d < today:
            try:
                d = d.replace(year=d.year + 1)
            except ValueError:
                return None
        return d

    # ========================================
    # SELECTION
    # ========================================

    @classmethod
    def extract_selection(cls, message: str) -> Optional[int]:
        """
        1-based flight index referenced by the message, or None.

        "select flight 2" -> 2, "option 3" -> 3, "2" -> 2, "the first one" -> 1
        """
        for pattern, fixed in cls.SELECTION_PATTERNS:
            m = pattern.search(message)
            if not m:
                continue
            value = fixed if fixed is not None else int(m.group(1))
            return value if value >= 1 else None
        return None

    # ========================================
    # PREFERENCES
    # ========================================

    @classmethod
    def extract_preferences(cls, message: str) -> UserPreferences:
        """
        Keyword rules over the message. Only fields actually mentioned are set,
        so the result can be merged over earlier preferences.
        """
        fields: Dict[str, Any] = {}

        budget = cls._first_match(cls.BUDGET_RULES, message)
        if budget:
            fields["budget_range"] = budget

        time_pref = cls._first_match(cls.TIME_RULES, message)
        if time_pref:
            fields["time_preference"] = time_pref

        stops = cls._first_match(cls.STOP_RULES, message)
        if stops:
            fields["stop_preference"] = stops

        # Priorities keep the order in which the user mentioned them
        found = []
        for pattern, factor in cls.PRIORITY_RULES:
            m = pattern.search(message)
            if m:
                found.append((m.start(), factor))
        if found:
            fields["priority_factors"] = [factor for _, factor in sorted(found)]

        airlines = cls._mentioned_airlines(message)
        if airlines and re.search(r'\b(?:prefer|like|love|only|fly with)\b', message, re.IGNORECASE):
            fields["airline_preferences"] = airlines

        return UserPreferences(**fields)

    @classmethod
    def _mentioned_airlines(cls, message: str) -> List[str]:
        lower = message.lower()
        return [name for name in cls.KNOWN_AIRLINES if re.search(rf'\b{re.escape(name.lower())}\b', lower)]

    # ========================================
    # TRAVEL PARAMETERS (fallback NLP)
    # ========================================

    @classmethod
    def extract_travel_params(cls, message: str, today: Optional[date] = None) -> ExtractedTravelParams:
        fields: Dict[str, Any] = {}

        origin, destination = cls._extract_route(message)
        if origin:
            fields["origin"] = origin
        if destination:
            fields["destination"] = destination

        departure = cls.parse_date(message, today)
        if departure:
            fields["departure_date"] = departure

        passengers = cls._extract_passengers(message)
        if passengers:
            fields["passengers"] = passengers

        lower = message.lower()
        for keyword, travel_class in cls.TRAVEL_CLASS_KEYWORDS.items():
            if keyword in lower:
                fields["travel_class"] = travel_class
                break

        if cls.FLEXIBLE_PATTERN.search(message):
            fields["flexibility"] = "flexible"

        logger.debug(f"[RuleExtractor] Extracted {fields} from message")
        return ExtractedTravelParams(**fields)

    @classmethod
    def _extract_route(cls, message: str):
        origin = destination = None

        m = cls.FROM_TO_PATTERN.search(message)
        if m:
            origin = cls.normalize_place(m.group(1))
            destination = cls.normalize_place(m.group(2))
        else:
            m = cls.TO_FROM_PATTERN.search(message)
            if m:
                destination = cls.normalize_place(m.group(1))
                origin = cls.normalize_place(m.group(2))

        if not (origin and destination):
            for m in cls.PAIR_PATTERN.finditer(message):
                left, right = cls.normalize_place(m.group(1)), cls.normalize_place(m.group(2))
                if left and right:
                    origin, destination = left, right
                    break

        if not origin:
            m = cls.DIRECTION_PATTERNS["origin"].search(message)
            if m:
                origin = cls.normalize_place(m.group(1))
        if not destination:
            m = cls.DIRECTION_PATTERNS["destination"].search(message)
            if m:
                destination = cls.normalize_place(m.group(1))

        # Bare airport codes fill whatever is still missing, in order
        codes = [cls.normalize_place(c) for c in cls.AIRPORT_PATTERN.findall(message)]
        codes = [c for c in codes if c and c not in (origin, destination)]
        if not origin and codes:
            origin = codes.pop(0)
        if not destination and codes:
            destination = codes.pop(0)

        return origin, destination

    @classmethod
    def _extract_passengers(cls, message: str) -> Optional[int]:
        m = cls.FRIENDS_PATTERN.search(message)
        if m:
            count = int(m.group(1)) + 1
        else:
            m = cls.PASSENGER_PATTERN.search(message)
            if m:
                count = int(m.group(1))
            else:
                m = cls.WRITTEN_PASSENGER_PATTERN.search(message)
                if not m:
                    return None
                count = cls.WRITTEN_NUMBERS[m.group(1).lower()]
        return count if 1 <= count <= 9 else None


# ============================================================
# SINGLETON INSTANCE
# ============================================================

rule_extractor = RuleBasedExtractor()
