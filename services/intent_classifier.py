"""
Intent Classifier
Language-oracle classification with a deterministic keyword fallback.

The oracle is asked for a JSON object {"type", "confidence", "entities"}.
Its answer is validated strictly against the intent union in
app.conversation.models; anything that does not validate is discarded and
the keyword rules decide instead. Oracle failures and an open circuit take
the same path, so classification never fails.

Usage:
    classifier = IntentClassifier(oracle, breaker)
    intent = await classifier.classify(message, session.conversation_history)
    intent.type, intent.confidence, intent.entities, intent.source
"""

import json
import logging
import re
from typing import List, Optional

from pydantic import ValidationError as PydanticValidationError

from app.conversation.models import (
    INTENT_ADAPTER,
    ConversationMessage,
    IntentResult,
    IntentType,
)
from services.collaborators import LanguageOracle
from services.resilience import CircuitBreaker

logger = logging.getLogger(__name__)


CLASSIFICATION_PROMPT = """You are the intent classifier of a flight booking assistant.

Classify the user's latest message into exactly one of:
- flight_search: the user wants to find flights (origin, destination, dates)
- flight_selection: the user picks one of the flights already shown
- flight_comparison: the user wants flights compared side by side
- preference_update: the user states budget, time, stop or airline preferences
- recommendation_request: the user asks which flight is best or for advice
- general_inquiry: anything else (baggage, policies, small talk)

Recent conversation:
{history}

Latest message: "{message}"

Respond ONLY with valid JSON of this shape:
{{"type": "<intent>", "confidence": <0.0-1.0>, "entities": {{...}}}}

Entities per intent:
- flight_search: origin, destination, departure_date (YYYY-MM-DD), passengers
- flight_selection: selection_index (1-based), flight_number
- flight_comparison: flight_indices (list of 1-based indices)
- preference_update: budget_range (budget|mid-range|premium), time_preference (morning|afternoon|evening|flexible), stop_preference (direct|one-stop|flexible)
- recommendation_request: focus
- general_inquiry: topic"""


def _clean_json_response(raw_text: str) -> str:
    """Strip markdown code fences and pull out the first {...} block."""
    raw_text = raw_text.strip()
    if raw_text.startswith("```"):
        lines = raw_text.split("\n")[1:]
        if lines and lines[-1].strip() == "```":
            lines = lines[:-1]
        raw_text = "\n".join(lines).strip()

    match = re.search(r"\{.*\}", raw_text, re.DOTALL)
    return match.group(0) if match else raw_text


class IntentClassifier:

    # ========================================
    # KEYWORD FALLBACK (first match wins, in this order)
    # ========================================

    KEYWORD_RULES = [
        (IntentType.FLIGHT_SEARCH, re.compile(r'\b(?:search\w*|find\w*|flights?|fly\w*)\b'), 0.7),
        (IntentType.FLIGHT_SELECTION, re.compile(r'\b(?:select\w*|choose|chose|book\w*|first|second|third|\d+)\b'), 0.8),
        (IntentType.FLIGHT_COMPARISON, re.compile(r'\b(?:compare\w*|comparison|difference\w*|versus|vs)\b'), 0.8),
        (IntentType.PREFERENCE_UPDATE, re.compile(r'\b(?:prefer\w*|budget|cheaper|faster)\b'), 0.7),
        (IntentType.RECOMMENDATION_REQUEST, re.compile(r'\b(?:recommend\w*|suggest\w*|best|advice|advise)\b'), 0.7),
    ]
    DEFAULT_CONFIDENCE = 0.5

    def __init__(
        self,
        oracle: Optional[LanguageOracle],
        breaker: Optional[CircuitBreaker] = None,
        context_window: int = 3,
    ):
        self.oracle = oracle
        self.breaker = breaker or CircuitBreaker("llm", failure_threshold=3, recovery_timeout=60.0)
        self.context_window = context_window

    @classmethod
    def classify_by_keywords(cls, message: str) -> IntentResult:
        msg_lower = message.lower()
        for intent, pattern, confidence in cls.KEYWORD_RULES:
            if pattern.search(msg_lower):
                return INTENT_ADAPTER.validate_python(
                    {"type": intent.value, "confidence": confidence, "source": "keyword"}
                )
        return INTENT_ADAPTER.validate_python(
            {"type": IntentType.GENERAL_INQUIRY.value, "confidence": cls.DEFAULT_CONFIDENCE, "source": "keyword"}
        )

    @staticmethod
    def parse_oracle_output(raw_text: Optional[str]) -> Optional[IntentResult]:
        """Validated intent, or None if the text is not a well-formed classification."""
        if not raw_text:
            return None
        try:
            data = json.loads(_clean_json_response(raw_text))
        except ValueError:
            return None
        if not isinstance(data, dict):
            return None

        if "type" not in data and "intent" in data:
            data["type"] = data.pop("intent")
        if data.get("entities") is None:
            data["entities"] = {}
        data["source"] = "oracle"

        try:
            return INTENT_ADAPTER.validate_python(data)
        except PydanticValidationError as e:
            logger.warning(f"[IntentClassifier] Discarding malformed oracle output: {e.error_count()} errors")
            return None

    def _build_prompt(self, message: str, history: List[ConversationMessage]) -> str:
        recent = history[-self.context_window:] if self.context_window else []
        lines = [f"{m.role.value}: {m.content}" for m in recent] or ["(none)"]
        return CLASSIFICATION_PROMPT.format(history="\n".join(lines), message=message.replace('"', "'"))

    async def classify(self, message: str, history: Optional[List[ConversationMessage]] = None) -> IntentResult:
        if self.oracle is None:
            return self.classify_by_keywords(message)

        prompt = self._build_prompt(message, history or [])
        raw = await self.breaker.call(
            lambda: self.oracle.generate_text(prompt),
            fallback=lambda: None,
        )

        result = self.parse_oracle_output(raw)
        if result is None:
            result = self.classify_by_keywords(message)
            logger.info(
                f"[IntentClassifier] Keyword fallback -> {result.type} ({result.confidence})"
            )
        return result
