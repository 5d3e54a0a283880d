# app/api/v1/dependencies.py
"""
Service wiring and FastAPI dependencies.

build_container() creates every collaborator once per process: the circuit
breakers, session store, conversation orchestrator, booking flow, travel
update jobs and the maintenance scheduler. Endpoints receive the container
through `Depends(get_container)`.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Request

from app.conversation.booking_flow import BookingFlow
from app.conversation.orchestrator import DialogueOrchestrator
from app.conversation.session_store import RedisSessionStore, SessionStore
from app.core.config import Settings
from app.tasks.scheduler import MaintenanceScheduler
from services.booking_store import InMemoryBookingStore, RedisBookingStore
from services.collaborators import BookingStore, LanguageOracle, SearchIndex
from services.flight_search import HttpSearchIndex
from services.intent_classifier import IntentClassifier
from services.llm_service import OpenAILanguageOracle
from services.local_flights import LocalFlightIndex
from services.notification_service import LoggingNotificationDispatcher
from services.payment_service import MockPaymentGateway
from services.resilience import CircuitBreakerRegistry, RetryPolicy
from services.travel_updates import TravelUpdateService

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    settings: Settings
    breakers: CircuitBreakerRegistry
    sessions: SessionStore
    orchestrator: DialogueOrchestrator
    booking_flow: BookingFlow
    travel_updates: TravelUpdateService
    scheduler: MaintenanceScheduler
    booking_store: BookingStore
    search_index: Optional[SearchIndex] = None

    async def close(self) -> None:
        await self.scheduler.stop()
        await self.sessions.close()
        if isinstance(self.search_index, HttpSearchIndex):
            await self.search_index.close()
        if isinstance(self.booking_store, RedisBookingStore):
            await self.booking_store.close()


def build_breakers(settings: Settings) -> CircuitBreakerRegistry:
    retry = RetryPolicy(
        max_retries=settings.RETRY_MAX_RETRIES,
        base_delay=settings.RETRY_BASE_DELAY,
        max_delay=settings.RETRY_MAX_DELAY,
        jitter=settings.RETRY_JITTER,
    )
    timeout = settings.EXTERNAL_CALL_TIMEOUT_SECONDS

    registry = CircuitBreakerRegistry()
    registry.create(
        "search",
        failure_threshold=settings.SEARCH_BREAKER_FAILURE_THRESHOLD,
        recovery_timeout=settings.SEARCH_BREAKER_RECOVERY_SECONDS,
        call_timeout=timeout,
        retry_policy=retry,
    )
    registry.create(
        "llm",
        failure_threshold=settings.LLM_BREAKER_FAILURE_THRESHOLD,
        recovery_timeout=settings.LLM_BREAKER_RECOVERY_SECONDS,
        call_timeout=timeout,
    )
    registry.create(
        "booking_store",
        failure_threshold=settings.BOOKING_BREAKER_FAILURE_THRESHOLD,
        recovery_timeout=settings.BOOKING_BREAKER_RECOVERY_SECONDS,
        call_timeout=timeout,
        retry_policy=retry,
    )
    # No retries: a retried charge could bill twice
    registry.create(
        "payment",
        failure_threshold=settings.PAYMENT_BREAKER_FAILURE_THRESHOLD,
        recovery_timeout=settings.PAYMENT_BREAKER_RECOVERY_SECONDS,
        call_timeout=timeout,
    )
    return registry


def build_container(settings: Settings) -> ServiceContainer:
    breakers = build_breakers(settings)

    session_options = dict(
        ttl_minutes=settings.SESSION_TTL_MINUTES,
        max_history=settings.MAX_CONVERSATION_HISTORY,
        context_window=settings.CONVERSATION_CONTEXT_WINDOW,
    )
    if settings.SESSION_STORE_BACKEND == "redis":
        sessions: SessionStore = RedisSessionStore(
            settings.get_redis_url, key_prefix=settings.SESSION_KEY_PREFIX, **session_options
        )
    else:
        sessions = SessionStore(**session_options)

    search_index: Optional[SearchIndex] = None
    if settings.SEARCH_INDEX_URL:
        search_index = HttpSearchIndex(
            settings.SEARCH_INDEX_URL,
            api_key=settings.SEARCH_INDEX_API_KEY,
            timeout_s=settings.SEARCH_INDEX_TIMEOUT,
        )
        logger.info(f"✅ Search index: {settings.SEARCH_INDEX_URL}")
    else:
        logger.warning("⚠️ SEARCH_INDEX_URL not set, serving flights from the local index")
    fallback_index = LocalFlightIndex()

    oracle: Optional[LanguageOracle] = None
    if settings.OPENAI_API_KEY:
        oracle = OpenAILanguageOracle(
            settings.OPENAI_API_KEY,
            model=settings.OPENAI_MODEL,
            max_output_tokens=settings.OPENAI_MAX_TOKENS,
            timeout_s=settings.OPENAI_TIMEOUT,
        )
    else:
        logger.warning("⚠️ OPENAI_API_KEY not set, running on keyword and template fallbacks")

    if settings.BOOKING_STORE_BACKEND == "redis":
        booking_store: BookingStore = RedisBookingStore(settings.get_redis_url, key_prefix=settings.BOOKING_KEY_PREFIX)
    else:
        booking_store = InMemoryBookingStore()

    notifier = LoggingNotificationDispatcher()

    classifier = IntentClassifier(
        oracle,
        breaker=breakers.get("llm"),
        context_window=settings.INTENT_CONTEXT_WINDOW,
    )
    orchestrator = DialogueOrchestrator(
        sessions=sessions,
        classifier=classifier,
        oracle=oracle,
        search_index=search_index,
        fallback_index=fallback_index,
        llm_breaker=breakers.get("llm"),
        search_breaker=breakers.get("search"),
    )
    booking_flow = BookingFlow(
        sessions=sessions,
        booking_store=booking_store,
        payments=MockPaymentGateway(),
        notifier=notifier,
        payment_breaker=breakers.get("payment"),
        booking_breaker=breakers.get("booking_store"),
        currency=settings.DEFAULT_CURRENCY,
    )
    travel_updates = TravelUpdateService(
        booking_store=booking_store,
        search_index=search_index or fallback_index,
        notifier=notifier,
        breaker=breakers.get("search") if search_index else None,
        fallback_index=fallback_index,
    )

    scheduler = MaintenanceScheduler()

    async def sweep_sessions():
        return {"removed": sessions.sweep_expired()}

    scheduler.add_job("session_sweep", settings.SESSION_CLEANUP_INTERVAL_MINUTES * 60, sweep_sessions)
    scheduler.add_job("flight_monitoring", settings.FLIGHT_MONITORING_INTERVAL_SECONDS, travel_updates.monitor_flight_changes)
    scheduler.add_job("reminder_scheduling", settings.REMINDER_SCHEDULING_INTERVAL_SECONDS, travel_updates.schedule_travel_reminders)
    scheduler.add_job("reminder_processing", settings.REMINDER_PROCESSING_INTERVAL_SECONDS, travel_updates.process_due_reminders)

    return ServiceContainer(
        settings=settings,
        breakers=breakers,
        sessions=sessions,
        orchestrator=orchestrator,
        booking_flow=booking_flow,
        travel_updates=travel_updates,
        scheduler=scheduler,
        booking_store=booking_store,
        search_index=search_index,
    )


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container
