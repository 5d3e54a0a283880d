# app/conversation/session_store.py
"""
Conversation session stores.

- SessionStore: sessions live in process memory keyed by an opaque id. Every
  read or write refreshes `last_activity`; a periodic sweep removes sessions
  idle for longer than the TTL. History is capped, oldest messages evicted
  first.
- RedisSessionStore: same working set, persisted to Redis as one JSON
  document per session under `session:{id}`. The key TTL does the expiry.

Callers bracket a unit of work with `await load(id)` and `await save(id)`;
the in-process store only touches its working copy.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional

from redis import asyncio as aioredis

from app.conversation.models import (
    BookingInProgress,
    ConversationMessage,
    ExtractedTravelParams,
    FlightResult,
    Session,
    SessionContext,
    UserPreferences,
)
from services.exceptions import NotFoundError

logger = logging.getLogger(__name__)


class SessionStore:

    def __init__(
        self,
        ttl_minutes: int = 60,
        max_history: int = 20,
        context_window: int = 5,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.ttl = timedelta(minutes=ttl_minutes)
        self.max_history = max_history
        self.context_window = context_window
        self._clock = clock
        self._sessions: Dict[str, Session] = {}

    # -----------------------------------------
    # LOOKUP
    # -----------------------------------------

    def get_or_create(self, session_id: str, user_id: Optional[str] = None) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            now = self._clock()
            session = Session(session_id=session_id, user_id=user_id, created_at=now, last_activity=now)
            self._sessions[session_id] = session
            logger.info(f"[SessionStore] Created session {session_id}")
            return session

        if user_id and not session.user_id:
            session.user_id = user_id
        session.last_activity = self._clock()
        return session

    def get(self, session_id: str) -> Optional[Session]:
        session = self._sessions.get(session_id)
        if session is not None:
            session.last_activity = self._clock()
        return session

    def require(self, session_id: str) -> Session:
        session = self.get(session_id)
        if session is None:
            raise NotFoundError("Session")
        return session

    def touch(self, session_id: str) -> None:
        self.require(session_id)

    def clear(self, session_id: str) -> bool:
        removed = self._sessions.pop(session_id, None) is not None
        if removed:
            logger.info(f"[SessionStore] Cleared session {session_id}")
        return removed

    # -----------------------------------------
    # PERSISTENCE
    # -----------------------------------------

    async def load(self, session_id: str) -> Optional[Session]:
        return self.get(session_id)

    async def save(self, session_id: str) -> bool:
        return session_id in self._sessions

    async def delete(self, session_id: str) -> bool:
        return self.clear(session_id)

    async def close(self) -> None:
        return None

    # -----------------------------------------
    # MUTATIONS
    # -----------------------------------------

    def append(self, session_id: str, message: ConversationMessage) -> None:
        session = self.require(session_id)
        history = session.conversation_history
        history.append(message)
        overflow = len(history) - self.max_history
        if overflow > 0:
            del history[:overflow]

    def set_query(self, session_id: str, query: Optional[ExtractedTravelParams]) -> None:
        self.require(session_id).current_query = query

    def set_results(self, session_id: str, results: List[FlightResult]) -> None:
        session = self.require(session_id)
        session.search_results = list(results)

    def set_selected_flight(self, session_id: str, flight: Optional[FlightResult]) -> None:
        self.require(session_id).selected_flight = flight

    def set_preferences(self, session_id: str, preferences: UserPreferences) -> None:
        self.require(session_id).preferences = preferences

    def update_booking(self, session_id: str, **fields) -> BookingInProgress:
        session = self.require(session_id)
        session.booking = session.booking.model_copy(update=fields)
        return session.booking

    # -----------------------------------------
    # CONTEXT & MAINTENANCE
    # -----------------------------------------

    def context(self, session_id: str) -> SessionContext:
        """Previous query, results, selection and the last few messages."""
        session = self.require(session_id)
        recent = session.conversation_history[-self.context_window:] if self.context_window else []
        return SessionContext(
            current_query=session.current_query,
            search_results=session.search_results,
            selected_flight=session.selected_flight,
            preferences=session.preferences,
            recent_messages=[{"role": m.role.value, "content": m.content} for m in recent],
        )

    def sweep_expired(self, now: Optional[datetime] = None) -> int:
        now = now or self._clock()
        expired = [
            sid for sid, session in self._sessions.items()
            if now - session.last_activity > self.ttl
        ]
        for sid in expired:
            del self._sessions[sid]
        if expired:
            logger.info(f"[SessionStore] Swept {len(expired)} expired sessions")
        return len(expired)

    def stats(self) -> Dict[str, object]:
        now = self._clock()
        active_cutoff = now - timedelta(minutes=5)
        oldest = min((s.created_at for s in self._sessions.values()), default=None)
        return {
            "total_sessions": len(self._sessions),
            "active_sessions": sum(1 for s in self._sessions.values() if s.last_activity >= active_cutoff),
            "oldest_session": oldest.isoformat() if oldest else None,
        }

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions


class RedisSessionStore(SessionStore):
    """
    Sessions persisted in Redis with a TTL.

    The process keeps a working copy of the sessions it is serving. `load()`
    pulls a session this process does not hold yet (after a restart, or one
    served by another worker); `save()` writes it back and re-arms the key
    TTL. The sweep only drops idle working copies; Redis expires the keys.
    """

    def __init__(
        self,
        redis_url: str,
        key_prefix: str = "session",
        client: Optional[aioredis.Redis] = None,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.redis_url = redis_url
        self.key_prefix = key_prefix
        self._client = client

    @property
    def ttl_seconds(self) -> int:
        return int(self.ttl.total_seconds())

    def _key(self, session_id: str) -> str:
        return f"{self.key_prefix}:{session_id}"

    async def _get_client(self) -> aioredis.Redis:
        if self._client is None:
            logger.info(f"[Redis] Connecting to: {self.redis_url.split('@')[-1]}")
            self._client = aioredis.Redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=5,
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def load(self, session_id: str) -> Optional[Session]:
        session = self.get(session_id)
        if session is not None:
            return session

        client = await self._get_client()
        try:
            data = await client.get(self._key(session_id))
        except aioredis.RedisError as e:
            # Serve from the working set only while Redis is down
            logger.warning(f"[Redis] Read failed for {session_id}: {e}")
            return None
        if not data:
            return None

        session = Session.model_validate_json(data)
        session.last_activity = self._clock()
        self._sessions[session_id] = session
        logger.info(f"[SessionStore] Loaded session {session_id} from Redis")
        return session

    async def save(self, session_id: str) -> bool:
        session = self._sessions.get(session_id)
        if session is None:
            return False
        client = await self._get_client()
        try:
            await client.set(self._key(session_id), session.model_dump_json(), ex=self.ttl_seconds)
        except aioredis.RedisError as e:
            logger.error(f"[Redis] Write failed for {session_id}: {e}")
            return False
        return True

    async def delete(self, session_id: str) -> bool:
        removed = self.clear(session_id)
        client = await self._get_client()
        try:
            removed = bool(await client.delete(self._key(session_id))) or removed
        except aioredis.RedisError as e:
            logger.error(f"[Redis] Delete failed for {session_id}: {e}")
        return removed
