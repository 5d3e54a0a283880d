# app/conversation/orchestrator.py
"""
Dialogue Orchestrator
=====================
Top-level coordinator for one conversational turn:

    message -> session -> intent -> handler -> session update -> response

The booking state machine is implicit: the state of a turn is inferred from
the classified intent plus what the session already holds (stored results,
selected flight, ...). Each intent has exactly one handler in the dispatch
table; handlers return a HandlerOutcome instead of raising, and perform all
fallible collaborator calls before they write to the session.

Every collaborator call goes through a circuit breaker with a deterministic
fallback (keyword intent, rule-based extraction, local flight index, canned
text), so a turn only fails when a fallback itself fails. Unrecovered
failures become the generic technical-difficulty reply.
"""

import asyncio
import logging
import re
import weakref
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Optional

from app.conversation.models import (
    BookingStep,
    ConversationMessage,
    ConversationResponse,
    ExtractedTravelParams,
    FlightResult,
    FlightSearchIntent,
    FlightSelectionIntent,
    IntentResult,
    IntentType,
    MessageRole,
    PreferenceUpdateIntent,
    RecommendationSet,
    SearchFilters,
    Session,
    UserPreferences,
)
from app.conversation.session_store import SessionStore
from services.collaborators import LanguageOracle, SearchIndex
from services.exceptions import AppError, ValidationError
from services.flight_ranker import FlightRanker
from services.intent_classifier import IntentClassifier
from services.resilience import CircuitBreaker
from services.rule_based_extractor import RuleBasedExtractor
from services.template_engine import TemplateEngine

logger = logging.getLogger(__name__)


class ErrorKind(str, Enum):
    COLLABORATOR = "collaborator"
    INTERNAL = "internal"


@dataclass
class HandlerOutcome:
    """Result of one intent handler."""
    message: str = ""
    suggested_actions: List[str] = field(default_factory=list)
    flight_options: Optional[List[FlightResult]] = None
    booking_step: Optional[BookingStep] = None
    error_kind: Optional[ErrorKind] = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error_kind is None

    @classmethod
    def success(cls, reply, flight_options=None, booking_step=None) -> "HandlerOutcome":
        message, actions = reply
        return cls(message=message, suggested_actions=actions, flight_options=flight_options, booking_step=booking_step)

    @classmethod
    def failure(cls, kind: ErrorKind, error: BaseException) -> "HandlerOutcome":
        return cls(error_kind=kind, error=error)


@dataclass
class _Turn:
    session_id: str
    message: str
    intent: IntentResult
    degraded: bool = False


Handler = Callable[[Session, _Turn], Awaitable[HandlerOutcome]]


TIPS_PROMPT = """Give 3 short, practical travel tips for someone flying {route} on {when}.
Cover booking practices, airport advice and anything seasonal. One tip per line, no preamble."""

ADVICE_PROMPT = """The user asked for flight recommendations before searching: "{message}".
Give brief general advice on choosing flights."""


class DialogueOrchestrator:

    MAX_OPTIONS = 5
    MAX_COMPARE = 3

    def __init__(
        self,
        sessions: SessionStore,
        classifier: IntentClassifier,
        oracle: Optional[LanguageOracle],
        search_index: Optional[SearchIndex],
        fallback_index: SearchIndex,
        llm_breaker: CircuitBreaker,
        search_breaker: CircuitBreaker,
        ranker: Optional[FlightRanker] = None,
        extractor: Optional[RuleBasedExtractor] = None,
        templates: Optional[TemplateEngine] = None,
        today: Callable[[], date] = date.today,
    ):
        self.sessions = sessions
        self.classifier = classifier
        self.oracle = oracle
        self.search_index = search_index
        self.fallback_index = fallback_index
        self.llm_breaker = llm_breaker
        self.search_breaker = search_breaker
        self.ranker = ranker or FlightRanker()
        self.extractor = extractor or RuleBasedExtractor()
        self.templates = templates or TemplateEngine()
        self._today = today
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

        self._handlers: Dict[IntentType, Handler] = {
            IntentType.FLIGHT_SEARCH: self._handle_flight_search,
            IntentType.FLIGHT_SELECTION: self._handle_flight_selection,
            IntentType.FLIGHT_COMPARISON: self._handle_flight_comparison,
            IntentType.PREFERENCE_UPDATE: self._handle_preference_update,
            IntentType.RECOMMENDATION_REQUEST: self._handle_recommendation_request,
            IntentType.GENERAL_INQUIRY: self._handle_general_inquiry,
        }

    # ============================================================
    # ENTRY POINT
    # ============================================================

    def _lock_for(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[session_id] = lock
        return lock

    async def handle_message(
        self, session_id: str, message: str, user_id: Optional[str] = None
    ) -> ConversationResponse:
        """
        Process one user message and return the assistant's reply.

        Turns on the same session are serialised; different sessions run
        concurrently.

        Raises:
            ValidationError: empty message or session id
        """
        if not session_id or not session_id.strip():
            raise ValidationError("Session ID is required")
        if not message or not message.strip():
            raise ValidationError("Message cannot be empty")
        message = message.strip()

        lock = self._lock_for(session_id)
        async with lock:
            await self.sessions.load(session_id)
            session = self.sessions.get_or_create(session_id, user_id)
            history = list(session.conversation_history)

            intent = await self.classifier.classify(message, history)
            intent_type = IntentType(intent.type)
            turn = _Turn(session_id=session_id, message=message, intent=intent,
                         degraded=intent.source == "keyword")
            logger.info(
                f"[Orchestrator] {session_id}: intent={intent_type.value} "
                f"confidence={intent.confidence} source={intent.source}"
            )

            try:
                outcome = await self._handlers[intent_type](session, turn)
            except Exception as e:
                logger.exception(f"[Orchestrator] Handler {intent_type.value} crashed")
                outcome = HandlerOutcome.failure(ErrorKind.INTERNAL, e)

            if not outcome.ok:
                logger.error(
                    f"[Orchestrator] {intent_type.value} failed ({outcome.error_kind.value}): {outcome.error}"
                )
                outcome = HandlerOutcome.success(self.templates.generic_error())

            response = ConversationResponse(
                session_id=session_id,
                message=outcome.message,
                flight_options=outcome.flight_options,
                suggested_actions=outcome.suggested_actions,
                booking_step=outcome.booking_step,
                intent=intent_type,
                degraded=turn.degraded,
            )

            self.sessions.append(session_id, ConversationMessage(role=MessageRole.USER, content=message))
            self.sessions.append(session_id, ConversationMessage(
                role=MessageRole.ASSISTANT,
                content=response.message,
                flight_options=response.flight_options,
                suggested_actions=response.suggested_actions,
                booking_step=response.booking_step,
            ))
            await self.sessions.save(session_id)
            return response

    # ============================================================
    # COLLABORATOR CALLS (breaker + fallback)
    # ============================================================

    async def _extract_params(self, turn: _Turn) -> ExtractedTravelParams:
        def fallback():
            turn.degraded = True
            return self.extractor.extract_travel_params(turn.message, today=self._today())

        if self.oracle is None:
            return fallback()

        context = self.sessions.context(turn.session_id)
        return await self.llm_breaker.call(
            lambda: self.oracle.extract_params(turn.message, context),
            fallback=fallback,
        )

    async def _search(
        self, query: ExtractedTravelParams, filters: Optional[SearchFilters], turn: _Turn
    ) -> List[FlightResult]:
        def local_search():
            return self.fallback_index.search(
                query.origin, query.destination, query.departure_date, query.passengers, filters
            )

        if self.search_index is None:
            return await local_search()

        def fallback():
            turn.degraded = True
            return local_search()

        return await self.search_breaker.call(
            lambda: self.search_index.search(
                query.origin, query.destination, query.departure_date, query.passengers, filters
            ),
            fallback=fallback,
        )

    async def _generate_text(self, prompt: str, turn: _Turn) -> Optional[str]:
        """Oracle text, or None when the oracle is unavailable."""
        def fallback():
            turn.degraded = True
            return None

        if self.oracle is None:
            return fallback()

        context = self.sessions.context(turn.session_id)
        return await self.llm_breaker.call(
            lambda: self.oracle.generate_text(prompt, context),
            fallback=fallback,
        )

    async def _travel_tips(self, query: Optional[ExtractedTravelParams], turn: _Turn) -> Optional[List[str]]:
        route = f"{query.origin} to {query.destination}" if query and query.origin else "your route"
        when = query.departure_date.isoformat() if query and query.departure_date else "your travel date"
        text = await self._generate_text(TIPS_PROMPT.format(route=route, when=when), turn)
        if not text:
            return None
        tips = [re.sub(r'^\s*(?:\d+[.)]|[-•*])\s*', '', line).strip() for line in text.splitlines()]
        tips = [tip for tip in tips if tip]
        return tips[:3] or None

    # ============================================================
    # HELPERS
    # ============================================================

    @staticmethod
    def _filters_for(preferences: UserPreferences) -> Optional[SearchFilters]:
        if preferences.stop_preference == "direct":
            return SearchFilters(max_stops=0)
        if preferences.stop_preference == "one-stop":
            return SearchFilters(max_stops=1)
        return None

    @staticmethod
    def _entity_params(intent: IntentResult) -> ExtractedTravelParams:
        """Search entities the classifier already pulled out, as a partial query."""
        if not isinstance(intent, FlightSearchIntent):
            return ExtractedTravelParams()
        entities = intent.entities
        fields = {}
        if entities.origin:
            fields["origin"] = entities.origin
        if entities.destination:
            fields["destination"] = entities.destination
        if entities.passengers:
            fields["passengers"] = entities.passengers
        if entities.departure_date:
            try:
                fields["departure_date"] = date.fromisoformat(entities.departure_date)
            except ValueError:
                pass
        return ExtractedTravelParams(**fields)

    @staticmethod
    def _recommended_flights(recommendations: RecommendationSet) -> List[FlightResult]:
        flights = [recommendations.primary.flight] if recommendations.primary else []
        flights.extend(alt.flight for alt in recommendations.alternatives)
        return flights

    # ============================================================
    # HANDLERS
    # ============================================================

    async def _handle_flight_search(self, session: Session, turn: _Turn) -> HandlerOutcome:
        try:
            extracted = await self._extract_params(turn)
        except AppError as e:
            return HandlerOutcome.failure(ErrorKind.COLLABORATOR, e)

        # Entities only fill what extraction missed; a follow-up answer completes the earlier query
        extracted = self._entity_params(turn.intent).merged_with(extracted)
        query = session.current_query.merged_with(extracted) if session.current_query else extracted

        if not query.is_complete():
            self.sessions.set_query(session.session_id, query)
            return HandlerOutcome.success(self.templates.clarification(query))

        try:
            flights = await self._search(query, self._filters_for(session.preferences), turn)
        except AppError as e:
            return HandlerOutcome.failure(ErrorKind.COLLABORATOR, e)

        if not flights:
            self.sessions.set_query(session.session_id, query)
            self.sessions.set_results(session.session_id, [])
            return HandlerOutcome.success(self.templates.no_results(query))

        recommendations = self.ranker.recommend(flights, session.preferences)

        self.sessions.set_query(session.session_id, query)
        self.sessions.set_results(session.session_id, flights)
        return HandlerOutcome.success(
            self.templates.search_results(flights, query, recommendations),
            flight_options=flights[:self.MAX_OPTIONS],
            booking_step=BookingStep.FLIGHT_SELECTION,
        )

    async def _handle_flight_selection(self, session: Session, turn: _Turn) -> HandlerOutcome:
        results = session.search_results
        if not results:
            return HandlerOutcome.success(self.templates.no_flights_to_select())

        index = self.extractor.extract_selection(turn.message)
        if index is None and isinstance(turn.intent, FlightSelectionIntent):
            entities = turn.intent.entities
            index = entities.selection_index
            if index is None and entities.flight_number:
                wanted = entities.flight_number.replace(" ", "").upper()
                for position, flight in enumerate(results, start=1):
                    if flight.flight_number.upper() == wanted:
                        index = position
                        break

        if index is None or not 1 <= index <= len(results):
            return HandlerOutcome.success(self.templates.invalid_selection(len(results)))

        flight = results[index - 1]
        self.sessions.set_selected_flight(session.session_id, flight)
        logger.info(f"[Orchestrator] {session.session_id}: selected flight {flight.id}")
        return HandlerOutcome.success(
            self.templates.flight_details(flight),
            flight_options=[flight],
            booking_step=BookingStep.PASSENGER_INFO,
        )

    async def _handle_flight_comparison(self, session: Session, turn: _Turn) -> HandlerOutcome:
        results = session.search_results
        if len(results) < 2:
            return HandlerOutcome.success(self.templates.not_enough_to_compare())

        flights = results[:self.MAX_COMPARE]
        comparison = self.ranker.compare(flights)
        return HandlerOutcome.success(self.templates.comparison(comparison), flight_options=flights)

    async def _handle_preference_update(self, session: Session, turn: _Turn) -> HandlerOutcome:
        update = self.extractor.extract_preferences(turn.message)
        if isinstance(turn.intent, PreferenceUpdateIntent):
            entity_fields = turn.intent.entities.model_dump(exclude_none=True)
            mentioned = update.model_dump(exclude_unset=True)
            extra = {k: v for k, v in entity_fields.items() if k not in mentioned}
            if extra:
                update = UserPreferences(**mentioned, **extra)

        preferences = session.preferences.merged_with(update)
        reranked = self.ranker.recommend(session.search_results, preferences) if session.search_results else None

        self.sessions.set_preferences(session.session_id, preferences)
        return HandlerOutcome.success(
            self.templates.preferences_updated(preferences, reranked),
            flight_options=self._recommended_flights(reranked) if reranked else None,
        )

    async def _handle_recommendation_request(self, session: Session, turn: _Turn) -> HandlerOutcome:
        if not session.search_results:
            advice = await self._generate_text(ADVICE_PROMPT.format(message=turn.message), turn)
            return HandlerOutcome.success(self.templates.general_advice(advice))

        tips = await self._travel_tips(session.current_query, turn)
        recommendations = self.ranker.recommend(session.search_results, session.preferences, tips=tips)
        return HandlerOutcome.success(
            self.templates.recommendations(recommendations),
            flight_options=self._recommended_flights(recommendations),
        )

    async def _handle_general_inquiry(self, session: Session, turn: _Turn) -> HandlerOutcome:
        answer = await self._generate_text(turn.message, turn)
        if answer is None:
            return HandlerOutcome.success(self.templates.canned_answer(turn.message))
        return HandlerOutcome.success((answer, list(self.templates.GENERAL_ACTIONS)))
