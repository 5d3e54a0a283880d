"""
Dialogue Orchestrator Tests
===========================
Full turns through the orchestrator with scripted collaborators: intent
dispatch, query accumulation, search fallback, selection, comparison,
preferences, recommendations and error handling.
"""

import asyncio
from datetime import date

import pytest

from app.conversation.models import (
    BookingStep,
    ExtractedTravelParams,
    IntentType,
    MessageRole,
    SearchFilters,
)
from app.conversation.orchestrator import DialogueOrchestrator
from fakes import TODAY, FailingSearchIndex, FakeOracle, FakeSearchIndex, ManualClock, comparison_pair
from services.exceptions import RateLimitError, ValidationError
from services.intent_classifier import IntentClassifier
from services.local_flights import LocalFlightIndex
from services.resilience import CircuitBreaker
from services.template_engine import TemplateEngine

SEARCH = "Find flights from New York to London tomorrow"

SEARCH_INTENT = {"type": "flight_search", "confidence": 0.95, "entities": {}}
LONDON_QUERY = ExtractedTravelParams(origin="JFK", destination="LHR", departure_date=date(2026, 11, 3))


def build_orchestrator(session_store, oracle=None, search_index=None, fallback_index=None):
    clock = ManualClock()
    llm_breaker = CircuitBreaker("llm", failure_threshold=3, clock=clock)
    return DialogueOrchestrator(
        sessions=session_store,
        classifier=IntentClassifier(oracle, breaker=llm_breaker),
        oracle=oracle,
        search_index=search_index,
        fallback_index=fallback_index or LocalFlightIndex(),
        llm_breaker=llm_breaker,
        search_breaker=CircuitBreaker("search", failure_threshold=3, clock=clock),
        today=lambda: TODAY,
    )


@pytest.fixture
def index():
    return FakeSearchIndex(comparison_pair())


@pytest.fixture
def orchestrator(session_store, index):
    return build_orchestrator(session_store, search_index=index)


# ============================================================
# SEARCH
# ============================================================

@pytest.mark.asyncio
async def test_search_returns_options_in_search_order(orchestrator, index):
    response = await orchestrator.handle_message("s1", SEARCH)

    assert response.intent == IntentType.FLIGHT_SEARCH
    assert response.booking_step == BookingStep.FLIGHT_SELECTION
    assert [f.id for f in response.flight_options] == ["DIRECT", "ONESTOP"]
    assert response.message.startswith("Great! I found 2 flights for JFK to LHR")
    assert index.calls == [("JFK", "LHR", date(2026, 11, 3), 1, None)]
    # No oracle configured: keyword classification and rule extraction
    assert response.degraded


@pytest.mark.asyncio
async def test_incomplete_query_asks_for_missing_fields(orchestrator, session_store, index):
    response = await orchestrator.handle_message("s1", "Find a flight to London")

    assert response.intent == IntentType.FLIGHT_SEARCH
    assert "departure city and travel date" in response.message
    assert response.flight_options is None
    assert index.calls == []
    assert session_store.get("s1").current_query.destination == "LHR"


@pytest.mark.asyncio
async def test_follow_up_completes_earlier_query(orchestrator, session_store, index):
    await orchestrator.handle_message("s1", "Find a flight to London")

    response = await orchestrator.handle_message("s1", "I want to fly from New York tomorrow")

    assert response.booking_step == BookingStep.FLIGHT_SELECTION
    assert index.calls == [("JFK", "LHR", date(2026, 11, 3), 1, None)]
    assert session_store.get("s1").current_query.is_complete()


@pytest.mark.asyncio
async def test_oracle_path_is_not_degraded(session_store, index):
    oracle = FakeOracle(classify={"find": SEARCH_INTENT}, params=LONDON_QUERY)
    orchestrator = build_orchestrator(session_store, oracle=oracle, search_index=index)

    response = await orchestrator.handle_message("s1", SEARCH)

    assert not response.degraded
    assert oracle.extract_calls == [SEARCH]
    assert len(response.flight_options) == 2


@pytest.mark.asyncio
async def test_failing_search_index_falls_back_to_local_inventory(session_store):
    oracle = FakeOracle(classify={"find": SEARCH_INTENT}, params=LONDON_QUERY)
    failing = FailingSearchIndex()
    orchestrator = build_orchestrator(session_store, oracle=oracle, search_index=failing)

    response = await orchestrator.handle_message("s1", SEARCH)

    assert failing.calls == 1
    assert response.degraded
    assert response.booking_step == BookingStep.FLIGHT_SELECTION
    assert len(response.flight_options) == 5
    assert all(f.origin.code == "JFK" for f in response.flight_options)


@pytest.mark.asyncio
async def test_rate_limited_search_index_falls_back_to_local_inventory(session_store):
    class ThrottledSearchIndex(FakeSearchIndex):
        async def search(self, *args, **kwargs):
            raise RateLimitError("search index rate limit exceeded")

    search_breaker = CircuitBreaker("search", failure_threshold=1, clock=ManualClock())
    orchestrator = build_orchestrator(session_store, search_index=ThrottledSearchIndex())
    orchestrator.search_breaker = search_breaker

    response = await orchestrator.handle_message("s1", SEARCH)

    assert response.degraded
    assert response.booking_step == BookingStep.FLIGHT_SELECTION
    assert len(response.flight_options) == 5
    assert search_breaker.failure_count == 0


@pytest.mark.asyncio
async def test_out_of_range_oracle_entities_fall_back_to_keywords(session_store, index):
    oversized = {"type": "flight_search", "confidence": 0.9, "entities": {"passengers": 12}}
    oracle = FakeOracle(classify={"find": oversized}, params=LONDON_QUERY)
    orchestrator = build_orchestrator(session_store, oracle=oracle, search_index=index)

    response = await orchestrator.handle_message("s1", SEARCH)

    assert response.intent == IntentType.FLIGHT_SEARCH
    assert response.message != TemplateEngine.GENERIC_ERROR
    assert response.degraded
    assert index.calls == [("JFK", "LHR", date(2026, 11, 3), 1, None)]


@pytest.mark.asyncio
async def test_no_results(session_store):
    orchestrator = build_orchestrator(session_store, search_index=FakeSearchIndex([]))

    response = await orchestrator.handle_message("s1", SEARCH)

    assert response.message.startswith("I couldn't find any flights from JFK to LHR")
    assert response.booking_step is None


@pytest.mark.asyncio
async def test_every_index_failing_gives_generic_error(session_store):
    orchestrator = build_orchestrator(
        session_store, search_index=FailingSearchIndex(), fallback_index=FailingSearchIndex(),
    )

    response = await orchestrator.handle_message("s1", SEARCH)

    assert response.message == TemplateEngine.GENERIC_ERROR
    assert response.suggested_actions == TemplateEngine.GENERIC_ERROR_ACTIONS


# ============================================================
# SELECTION
# ============================================================

@pytest.mark.asyncio
async def test_select_flight_by_option_number(orchestrator, session_store):
    await orchestrator.handle_message("s1", SEARCH)

    response = await orchestrator.handle_message("s1", "book option 2")

    assert response.intent == IntentType.FLIGHT_SELECTION
    assert response.booking_step == BookingStep.PASSENGER_INFO
    assert [f.id for f in response.flight_options] == ["ONESTOP"]
    assert session_store.get("s1").selected_flight.id == "ONESTOP"
    assert "United UA200" in response.message


@pytest.mark.asyncio
async def test_out_of_range_selection(orchestrator, session_store):
    await orchestrator.handle_message("s1", SEARCH)

    response = await orchestrator.handle_message("s1", "choose number 7")

    assert response.message.endswith("Please choose from flights 1-2.")
    assert session_store.get("s1").selected_flight is None


@pytest.mark.asyncio
async def test_selection_without_results(orchestrator):
    response = await orchestrator.handle_message("s1", "book option 1")

    assert response.message.startswith("I don't see any flight options to select from")


@pytest.mark.asyncio
async def test_oracle_flight_number_selects_matching_result(session_store, index):
    oracle = FakeOracle(
        classify={
            "find": SEARCH_INTENT,
            "united": {"type": "flight_selection", "confidence": 0.9, "entities": {"flight_number": "ua 200"}},
        },
        params=LONDON_QUERY,
    )
    orchestrator = build_orchestrator(session_store, oracle=oracle, search_index=index)
    await orchestrator.handle_message("s1", SEARCH)

    response = await orchestrator.handle_message("s1", "I'll go with the United one")

    assert session_store.get("s1").selected_flight.id == "ONESTOP"
    assert response.booking_step == BookingStep.PASSENGER_INFO


# ============================================================
# COMPARISON, PREFERENCES, RECOMMENDATIONS
# ============================================================

@pytest.mark.asyncio
async def test_compare_needs_two_results(orchestrator):
    response = await orchestrator.handle_message("s1", "compare them")

    assert response.intent == IntentType.FLIGHT_COMPARISON
    assert response.message.startswith("I need at least 2 flights to compare")


@pytest.mark.asyncio
async def test_compare_stored_results(orchestrator):
    await orchestrator.handle_message("s1", SEARCH)

    response = await orchestrator.handle_message("s1", "compare them")

    assert "Comparing 2 flights: Price range $280-$350, Duration 7h-10h" in response.message
    assert [f.id for f in response.flight_options] == ["DIRECT", "ONESTOP"]


@pytest.mark.asyncio
async def test_preference_update_reranks_and_filters_next_search(orchestrator, session_store, index):
    await orchestrator.handle_message("s1", SEARCH)

    response = await orchestrator.handle_message("s1", "I prefer direct ones")

    assert response.intent == IntentType.PREFERENCE_UPDATE
    assert "direct flights" in response.message
    assert [f.id for f in response.flight_options] == ["ONESTOP", "DIRECT"]
    assert session_store.get("s1").preferences.stop_preference == "direct"

    again = await orchestrator.handle_message("s1", SEARCH)

    assert index.calls[-1][4] == SearchFilters(max_stops=0)
    assert [f.id for f in again.flight_options] == ["DIRECT"]


@pytest.mark.asyncio
async def test_preference_update_without_results(orchestrator):
    response = await orchestrator.handle_message("s1", "I prefer morning departures")

    assert "morning departures" in response.message
    assert response.message.endswith("Would you like to search for flights with these preferences?")
    assert response.flight_options is None


@pytest.mark.asyncio
async def test_recommendations_include_oracle_tips(session_store, index):
    oracle = FakeOracle(
        classify={
            "find": SEARCH_INTENT,
            "recommend": {"type": "recommendation_request", "confidence": 0.9, "entities": {}},
        },
        params=LONDON_QUERY,
        text="1. Arrive early\n2. Pack light\n- Check visa rules\nBring snacks",
    )
    orchestrator = build_orchestrator(session_store, oracle=oracle, search_index=index)
    await orchestrator.handle_message("s1", SEARCH)

    response = await orchestrator.handle_message("s1", "what do you recommend?")

    assert response.intent == IntentType.RECOMMENDATION_REQUEST
    assert "• Arrive early" in response.message
    assert "• Check visa rules" in response.message
    assert "Bring snacks" not in response.message
    assert response.flight_options[0].id == "ONESTOP"


@pytest.mark.asyncio
async def test_recommendations_without_oracle_use_default_tips(orchestrator):
    await orchestrator.handle_message("s1", SEARCH)

    response = await orchestrator.handle_message("s1", "what do you recommend?")

    assert response.degraded
    assert "💡 **Travel Tips**" in response.message


@pytest.mark.asyncio
async def test_recommendation_before_search_gives_general_advice(orchestrator):
    response = await orchestrator.handle_message("s1", "any advice?")

    assert response.message.startswith("I'd be happy to help with recommendations!")
    assert TemplateEngine.DEFAULT_ADVICE in response.message


# ============================================================
# GENERAL INQUIRY & ERRORS
# ============================================================

@pytest.mark.asyncio
async def test_general_inquiry_uses_canned_answer_without_oracle(orchestrator):
    response = await orchestrator.handle_message("s1", "what's the baggage allowance?")

    assert response.intent == IntentType.GENERAL_INQUIRY
    assert response.message.startswith("Baggage allowances depend on the airline")
    assert response.degraded


@pytest.mark.asyncio
async def test_general_inquiry_uses_oracle_answer(session_store, index):
    oracle = FakeOracle(text="Most airlines allow one carry-on bag.")
    orchestrator = build_orchestrator(session_store, oracle=oracle, search_index=index)

    response = await orchestrator.handle_message("s1", "what's the baggage allowance?")

    assert response.message == "Most airlines allow one carry-on bag."
    assert response.suggested_actions == TemplateEngine.GENERAL_ACTIONS


@pytest.mark.asyncio
@pytest.mark.parametrize("session_id, message", [("s1", ""), ("s1", "   "), ("", "hello")])
async def test_blank_input_is_rejected(orchestrator, session_store, session_id, message):
    with pytest.raises(ValidationError):
        await orchestrator.handle_message(session_id, message)

    assert len(session_store) == 0


@pytest.mark.asyncio
async def test_each_turn_appends_user_and_assistant_messages(orchestrator, session_store):
    response = await orchestrator.handle_message("s1", SEARCH, user_id="u1")

    session = session_store.get("s1")
    assert [m.role for m in session.conversation_history] == [MessageRole.USER, MessageRole.ASSISTANT]
    assert session.conversation_history[0].content == SEARCH
    assert session.conversation_history[1].content == response.message
    assert session.conversation_history[1].booking_step == BookingStep.FLIGHT_SELECTION
    assert session.user_id == "u1"


@pytest.mark.asyncio
async def test_handler_crash_becomes_generic_error(orchestrator, session_store):
    await orchestrator.handle_message("s1", SEARCH)

    def boom(flights):
        raise RuntimeError("ranker exploded")

    orchestrator.ranker.compare = boom
    response = await orchestrator.handle_message("s1", "compare them")

    assert response.message == TemplateEngine.GENERIC_ERROR
    assert response.intent == IntentType.FLIGHT_COMPARISON
    assert len(session_store.get("s1").conversation_history) == 4


@pytest.mark.asyncio
async def test_turns_on_one_session_are_serialised(orchestrator, session_store):
    await asyncio.gather(
        orchestrator.handle_message("s1", SEARCH),
        orchestrator.handle_message("s1", "compare them"),
        orchestrator.handle_message("s2", SEARCH),
    )

    roles = [m.role for m in session_store.get("s1").conversation_history]
    assert roles == [MessageRole.USER, MessageRole.ASSISTANT] * 2
    assert len(session_store.get("s2").conversation_history) == 2
