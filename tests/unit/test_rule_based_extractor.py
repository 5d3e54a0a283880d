"""
Rule-Based Extractor Tests
==========================
Selection indices, preference keywords and the travel-parameter fallback.
"""

from datetime import date

import pytest

from fakes import TODAY
from services.rule_based_extractor import RuleBasedExtractor, rule_extractor


# ============================================================
# SELECTION
# ============================================================

@pytest.mark.parametrize("message, expected", [
    ("select flight 2", 2),
    ("I'll book number 3", 3),
    ("book flight number 3", 3),
    ("option 4 please", 4),
    ("  1 ", 1),
    ("the first one", 1),
    ("I'd like the 2nd flight", 2),
    ("third", 3),
    ("select flight 0", None),
    ("show me something else", None),
])
def test_extract_selection(message, expected):
    assert rule_extractor.extract_selection(message) == expected


# ============================================================
# PREFERENCES
# ============================================================

def test_direct_preference_only_sets_stops():
    prefs = rule_extractor.extract_preferences("I prefer direct flights")

    assert prefs.stop_preference == "direct"
    assert prefs.budget_range is None
    assert prefs.model_dump(exclude_unset=True) == {"stop_preference": "direct"}


def test_budget_and_time_keywords():
    prefs = rule_extractor.extract_preferences("Something cheap in the evening, non-stop")

    assert prefs.budget_range == "budget"
    assert prefs.time_preference == "evening"
    assert prefs.stop_preference == "direct"


def test_flexible_sets_time_and_stops():
    prefs = rule_extractor.extract_preferences("I'm flexible")

    assert prefs.time_preference == "flexible"
    assert prefs.stop_preference == "flexible"


def test_priorities_follow_mention_order():
    prefs = rule_extractor.extract_preferences("Duration matters more to me than price")

    assert prefs.priority_factors == ["duration", "price"]


def test_airlines_need_a_preference_verb():
    assert rule_extractor.extract_preferences("I prefer Delta or United").airline_preferences == ["Delta", "United"]
    assert rule_extractor.extract_preferences("Delta was late last time").airline_preferences == []


# ============================================================
# PLACES & DATES
# ============================================================

@pytest.mark.parametrize("place, expected", [
    ("New York", "JFK"),
    ("nyc", "JFK"),
    ("downtown Chicago", "ORD"),
    ("CDG", "CDG"),
    ("the beach", None),
    ("", None),
])
def test_normalize_place(place, expected):
    assert RuleBasedExtractor.normalize_place(place) == expected


@pytest.mark.parametrize("message, expected", [
    ("leaving today", TODAY),
    ("flying tomorrow", date(2026, 11, 3)),
    ("sometime next week", date(2026, 11, 9)),
    ("on friday", date(2026, 11, 6)),
    ("on monday", date(2026, 11, 9)),
    ("on 2026-12-24", date(2026, 12, 24)),
    ("on December 25th", date(2026, 12, 25)),
    ("on March 15", date(2027, 3, 15)),
    ("whenever", None),
])
def test_parse_date(message, expected):
    assert RuleBasedExtractor.parse_date(message, today=TODAY) == expected


# ============================================================
# TRAVEL PARAMETERS
# ============================================================

def test_full_sentence_extraction():
    params = rule_extractor.extract_travel_params(
        "I want to fly from New York to London tomorrow, 2 passengers, business class",
        today=TODAY,
    )

    assert params.origin == "JFK"
    assert params.destination == "LHR"
    assert params.departure_date == date(2026, 11, 3)
    assert params.passengers == 2
    assert params.travel_class == "business"
    assert params.is_complete()


def test_city_pair_without_from():
    params = rule_extractor.extract_travel_params("NYC to Paris on friday", today=TODAY)

    assert (params.origin, params.destination) == ("JFK", "CDG")
    assert params.departure_date == date(2026, 11, 6)


def test_destination_before_origin():
    params = rule_extractor.extract_travel_params("Going to Miami from Boston", today=TODAY)

    assert (params.origin, params.destination) == ("BOS", "MIA")


def test_bare_airport_codes():
    params = rule_extractor.extract_travel_params("JFK LAX 2026-12-01", today=TODAY)

    assert (params.origin, params.destination) == ("JFK", "LAX")


def test_partial_query_reports_missing_fields():
    params = rule_extractor.extract_travel_params("I need to get to London", today=TODAY)

    assert params.destination == "LHR"
    assert params.missing_fields() == ["departure city", "travel date"]
    assert params.model_dump(exclude_unset=True) == {"destination": "LHR"}


@pytest.mark.parametrize("message, expected", [
    ("two people", 2),
    ("me with 2 friends", 3),
    ("4 adults", 4),
    ("15 passengers", None),
])
def test_passenger_counts(message, expected):
    params = rule_extractor.extract_travel_params(message, today=TODAY)
    assert params.model_dump(exclude_unset=True).get("passengers") == expected


def test_flexibility_keyword():
    params = rule_extractor.extract_travel_params("around the 5th of December", today=TODAY)

    assert params.flexibility == "flexible"
    assert params.departure_date == date(2026, 12, 5)
