"""
Intent Classifier Tests
=======================
Oracle output validation and the ordered keyword fallback.
"""

import pytest

from app.conversation.models import ConversationMessage, FlightSelectionIntent, MessageRole
from fakes import FakeOracle
from services.intent_classifier import IntentClassifier, _clean_json_response
from services.resilience import CircuitBreaker, CircuitState


@pytest.mark.parametrize("message, expected, confidence", [
    ("Find me a flight to Paris", "flight_search", 0.7),
    ("I'll choose the second one", "flight_selection", 0.8),
    ("2", "flight_selection", 0.8),
    ("compare them please", "flight_comparison", 0.8),
    ("I prefer cheaper options", "preference_update", 0.7),
    ("what do you recommend?", "recommendation_request", 0.7),
    ("what's the baggage allowance?", "general_inquiry", 0.5),
])
def test_keyword_fallback(message, expected, confidence):
    result = IntentClassifier.classify_by_keywords(message)

    assert result.type == expected
    assert result.confidence == confidence
    assert result.source == "keyword"


def test_keyword_rules_apply_in_fixed_order():
    # "flights" hits the search rule before "compare" is considered
    assert IntentClassifier.classify_by_keywords("compare these flights").type == "flight_search"
    # "best" alone is a recommendation, but "book" wins first
    assert IntentClassifier.classify_by_keywords("book the best one").type == "flight_selection"


def test_parse_oracle_output_accepts_fenced_json():
    raw = '```json\n{"type": "flight_selection", "confidence": 0.92, "entities": {"selection_index": 2}}\n```'

    result = IntentClassifier.parse_oracle_output(raw)

    assert isinstance(result, FlightSelectionIntent)
    assert result.entities.selection_index == 2
    assert result.source == "oracle"


def test_parse_oracle_output_accepts_intent_key_and_null_entities():
    result = IntentClassifier.parse_oracle_output('{"intent": "general_inquiry", "confidence": 0.6, "entities": null}')

    assert result.type == "general_inquiry"


@pytest.mark.parametrize("raw", [
    None,
    "",
    "I think this is a flight search",
    '{"type": "book_hotel", "confidence": 0.9}',
    '{"type": "flight_search", "confidence": 1.7}',
    '{"type": "flight_selection", "confidence": 0.9, "entities": {"selection_index": 0}}',
    '{"type": "flight_search", "confidence": 0.9, "entities": {"passengers": 12}}',
    "[1, 2, 3]",
])
def test_parse_oracle_output_rejects_malformed(raw):
    assert IntentClassifier.parse_oracle_output(raw) is None


def test_clean_json_response_extracts_object():
    assert _clean_json_response('Sure! {"type": "x"} hope that helps') == '{"type": "x"}'


@pytest.mark.asyncio
async def test_classify_uses_oracle_when_valid():
    oracle = FakeOracle(classify={
        "cheapest": {"type": "recommendation_request", "confidence": 0.88, "entities": {"focus": "price"}},
    })
    classifier = IntentClassifier(oracle)

    result = await classifier.classify("which is the cheapest?")

    assert result.type == "recommendation_request"
    assert result.confidence == 0.88
    assert result.entities.focus == "price"


@pytest.mark.asyncio
async def test_classify_falls_back_on_unparseable_output():
    classifier = IntentClassifier(FakeOracle())

    result = await classifier.classify("find flights to Rome")

    assert result.type == "flight_search"
    assert result.source == "keyword"


@pytest.mark.asyncio
async def test_classify_falls_back_when_oracle_fails(clock):
    breaker = CircuitBreaker("llm", failure_threshold=2, clock=clock)
    oracle = FakeOracle(fail=True)
    classifier = IntentClassifier(oracle, breaker=breaker)

    for _ in range(3):
        result = await classifier.classify("I prefer morning flights")
        assert result.source == "keyword"

    assert breaker.state == CircuitState.OPEN
    # Third call short-circuited without reaching the oracle
    assert len(oracle.prompts) == 2


@pytest.mark.asyncio
async def test_classify_without_oracle_uses_keywords():
    result = await IntentClassifier(None).classify("select flight 1")

    assert result.type == "flight_selection"


@pytest.mark.asyncio
async def test_prompt_includes_only_recent_history():
    oracle = FakeOracle()
    classifier = IntentClassifier(oracle, context_window=2)
    history = [
        ConversationMessage(role=MessageRole.USER, content=f"turn {i}")
        for i in range(5)
    ]

    await classifier.classify("hello", history)

    prompt = oracle.prompts[0]
    assert "turn 3" in prompt and "turn 4" in prompt
    assert "turn 2" not in prompt
