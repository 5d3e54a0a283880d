from datetime import date

from app.conversation.models import ExtractedTravelParams, UserPreferences
from fakes import build_flight
from services.flight_ranker import flight_ranker
from services.template_engine import TemplateEngine, template_engine


def test_clarification_lists_missing_fields():
    message, actions = template_engine.clarification(ExtractedTravelParams(destination="LHR"))

    assert message == "Got it, a flight to LHR. To search for flights I still need your departure city and travel date."
    assert actions == ["Provide departure city", "Provide travel date"]


def test_search_results_lead_with_primary_recommendation():
    flights = [build_flight("A", price=300), build_flight("B", price=250, stops=1, duration=600)]
    params = ExtractedTravelParams(origin="JFK", destination="LHR", departure_date=date(2026, 11, 3))

    message, actions = template_engine.search_results(flights, params, flight_ranker.recommend(flights))

    assert message.startswith("Great! I found 2 flights for JFK to LHR on Tue Nov 03 2026.")
    assert "My top recommendation" in message
    assert "Select a flight" in actions


def test_search_results_number_options_by_result_position():
    flights = [
        build_flight("A", price=300, flight_number="DL100"),
        build_flight("B", price=250, stops=1, duration=600, airline="United", flight_number="UA200"),
    ]
    params = ExtractedTravelParams(origin="JFK", destination="LHR", departure_date=date(2026, 11, 3))

    message, _ = template_engine.search_results(flights, params, flight_ranker.recommend(flights))

    assert "**My top recommendation** (option 2): United UA200 for $250" in message
    assert "\n1. Delta DL100 - $300 (fastest)" in message


def test_invalid_selection_names_range():
    message, actions = template_engine.invalid_selection(3)

    assert message.endswith("Please choose from flights 1-3.")
    assert actions == ["Select flight 1", "Select flight 2", "Select flight 3"]


def test_flight_details_shows_duration_and_stops():
    message, _ = template_engine.flight_details(build_flight(duration=425, stops=1, price=412.5))

    assert "7h 5m" in message
    assert "1 stop" in message
    assert "$412.5" in message


def test_format_preferences():
    prefs = UserPreferences(budget_range="budget", stop_preference="direct", priority_factors=["price"])

    assert template_engine.format_preferences(prefs) == "budget budget, direct flights, prioritizing price"
    assert template_engine.format_preferences(UserPreferences()) == "no specific preferences"


def test_canned_answers_match_keywords():
    assert "carry-on" in template_engine.canned_answer("How much luggage can I bring?")[0]
    assert template_engine.canned_answer("hello there")[0] == TemplateEngine.DEFAULT_ANSWER


def test_generic_error_actions():
    message, actions = template_engine.generic_error()

    assert "technical difficulties" in message
    assert actions == ["Try again", "Contact support", "Start over"]
