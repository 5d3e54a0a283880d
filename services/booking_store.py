"""
Booking Record Stores
=====================
Persist confirmed bookings keyed by an opaque booking reference.

- InMemoryBookingStore: process-local, used in development and tests.
- RedisBookingStore: redis.asyncio backed, one JSON document per booking
  under `booking:{reference}` plus a `booking:index` set of references.
"""

import asyncio
import json
import logging
import secrets
import string
import time
from datetime import date, datetime
from typing import Dict, List, Optional

from redis import asyncio as aioredis

from app.conversation.models import BookingRecord, BookingStatus
from services.exceptions import ConflictError, ExternalServiceError, NotFoundError

logger = logging.getLogger(__name__)

_BASE36 = string.digits + string.ascii_uppercase


def _base36(number: int) -> str:
    if number == 0:
        return "0"
    digits = []
    while number:
        number, rem = divmod(number, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def generate_booking_reference() -> str:
    """FB + base36 millisecond timestamp + 4 random characters."""
    suffix = "".join(secrets.choice(_BASE36) for _ in range(4))
    return f"FB{_base36(int(time.time() * 1000))}{suffix}"


class DateTimeEncoder(json.JSONEncoder):
    """
    Custom JSON encoder for datetime and date objects.
    """
    def default(self, obj):
        if isinstance(obj, (datetime, date)):
            return obj.isoformat()
        return super().default(obj)


class InMemoryBookingStore:

    def __init__(self):
        self._records: Dict[str, BookingRecord] = {}
        self._lock = asyncio.Lock()

    async def create(self, record: BookingRecord) -> str:
        async with self._lock:
            reference = record.booking_reference or generate_booking_reference()
            while reference in self._records:
                reference = generate_booking_reference()
            self._records[reference] = record.model_copy(update={"booking_reference": reference})
        logger.info(f"[BookingStore] Created booking {reference}")
        return reference

    async def get(self, reference: str) -> Optional[BookingRecord]:
        return self._records.get(reference)

    async def update(self, record: BookingRecord) -> None:
        if record.booking_reference not in self._records:
            raise NotFoundError("Booking")
        self._records[record.booking_reference] = record

    async def list(self, status: Optional[BookingStatus] = None) -> List[BookingRecord]:
        records = list(self._records.values())
        if status is not None:
            records = [r for r in records if r.status == status]
        return records


class RedisBookingStore:

    INDEX_SUFFIX = "index"

    def __init__(self, redis_url: str, key_prefix: str = "booking", client: Optional[aioredis.Redis] = None):
        self.redis_url = redis_url
        self.key_prefix = key_prefix
        self._client = client

    def _key(self, reference: str) -> str:
        return f"{self.key_prefix}:{reference}"

    @property
    def _index_key(self) -> str:
        return f"{self.key_prefix}:{self.INDEX_SUFFIX}"

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

    @staticmethod
    def _dumps(record: BookingRecord) -> str:
        return json.dumps(record.model_dump(mode="python"), cls=DateTimeEncoder)

    async def create(self, record: BookingRecord) -> str:
        client = await self._get_client()
        reference = record.booking_reference or generate_booking_reference()
        stored = record.model_copy(update={"booking_reference": reference})
        try:
            created = await client.set(self._key(reference), self._dumps(stored), nx=True)
            if not created:
                raise ConflictError(f"Booking reference {reference} already exists")
            await client.sadd(self._index_key, reference)
        except aioredis.RedisError as e:
            logger.error(f"[Redis] Failed to create booking {reference}: {e}")
            raise ExternalServiceError("booking_store", str(e)) from e
        logger.info(f"[BookingStore] Created booking {reference}")
        return reference

    async def get(self, reference: str) -> Optional[BookingRecord]:
        client = await self._get_client()
        try:
            data = await client.get(self._key(reference))
        except aioredis.RedisError as e:
            raise ExternalServiceError("booking_store", str(e)) from e
        if not data:
            return None
        return BookingRecord.model_validate_json(data)

    async def update(self, record: BookingRecord) -> None:
        client = await self._get_client()
        try:
            updated = await client.set(self._key(record.booking_reference), self._dumps(record), xx=True)
        except aioredis.RedisError as e:
            raise ExternalServiceError("booking_store", str(e)) from e
        if not updated:
            raise NotFoundError("Booking")

    async def list(self, status: Optional[BookingStatus] = None) -> List[BookingRecord]:
        client = await self._get_client()
        try:
            references = await client.smembers(self._index_key)
            if not references:
                return []
            payloads = await client.mget([self._key(r) for r in sorted(references)])
        except aioredis.RedisError as e:
            raise ExternalServiceError("booking_store", str(e)) from e

        records = [BookingRecord.model_validate_json(p) for p in payloads if p]
        if status is not None:
            records = [r for r in records if r.status == status]
        return records
