"""
Adapter Tests
=============
Search index clients, payment gateway, booking stores and the OpenAI oracle,
each exercised without network access.
"""

import json
from datetime import date
from unittest.mock import AsyncMock

import httpx
import pytest

from app.conversation.models import (
    BookingRecord,
    BookingStatus,
    ContactInfo,
    ExtractedTravelParams,
    PassengerInfo,
    SearchFilters,
    SessionContext,
)
from fakes import build_flight
from services.booking_store import InMemoryBookingStore, RedisBookingStore, generate_booking_reference
from services.exceptions import (
    ExternalServiceError,
    NotFoundError,
    PaymentDeclinedError,
    RateLimitError,
    ValidationError,
)
from services.flight_search import HttpSearchIndex
from services.llm_service import OpenAILanguageOracle
from services.local_flights import LocalFlightIndex
from services.payment_service import MockPaymentGateway


def _record(reference=None, status=BookingStatus.CONFIRMED) -> BookingRecord:
    return BookingRecord(
        booking_reference=reference,
        session_id="s1",
        flight=build_flight(),
        passengers=[PassengerInfo(first_name="Ali", last_name="Saidov")],
        contact_info=ContactInfo(email="ali@example.com", phone="+998901234567"),
        total_price=300.0,
        status=status,
    )


# ============================================================
# HTTP SEARCH INDEX
# ============================================================

def _index(handler) -> HttpSearchIndex:
    return HttpSearchIndex("https://search.test", api_key="key", transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_http_search_parses_and_skips_malformed():
    good = build_flight("F1", stops=1).model_dump(mode="json")
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["params"] = dict(request.url.params)
        seen["auth"] = request.headers.get("Authorization")
        return httpx.Response(200, json={"flights": [good, {"id": "broken"}]})

    index = _index(handler)
    flights = await index.search("JFK", "LHR", date(2026, 11, 3), 2, SearchFilters(max_stops=1))
    await index.close()

    assert [f.id for f in flights] == ["F1"]
    assert seen["params"] == {
        "origin": "JFK", "destination": "LHR", "date": "2026-11-03", "passengers": "2", "max_stops": "1",
    }
    assert seen["auth"] == "Bearer key"


@pytest.mark.asyncio
@pytest.mark.parametrize("status, error", [
    (422, ValidationError),
    (429, RateLimitError),
    (502, ExternalServiceError),
])
async def test_http_search_maps_status_codes(status, error):
    index = _index(lambda request: httpx.Response(status))

    with pytest.raises(error):
        await index.search("JFK", "LHR", date(2026, 11, 3))


@pytest.mark.asyncio
async def test_http_search_transport_error_is_external():
    def handler(request):
        raise httpx.ConnectError("refused")

    with pytest.raises(ExternalServiceError):
        await _index(handler).search("JFK", "LHR", date(2026, 11, 3))


@pytest.mark.asyncio
async def test_http_get_by_id_missing_returns_none():
    index = _index(lambda request: httpx.Response(404))

    assert await index.get_by_id("nope") is None


# ============================================================
# LOCAL FLIGHT INDEX
# ============================================================

@pytest.mark.asyncio
async def test_local_index_is_deterministic_and_filterable():
    index = LocalFlightIndex()
    first = await index.search("JFK", "LHR", date(2026, 11, 3))
    second = await index.search("jfk", "lhr", date(2026, 11, 3))
    direct = await index.search("JFK", "LHR", date(2026, 11, 3), filters=SearchFilters(max_stops=0))

    assert first == second
    assert len(first) == 5
    assert direct and all(f.stops == 0 for f in direct)
    assert await index.search("JFK", "JFK", date(2026, 11, 3)) == []


@pytest.mark.asyncio
async def test_local_index_get_by_id_round_trips():
    index = LocalFlightIndex()
    flight = (await index.search("BOS", "MIA", date(2026, 12, 1)))[2]

    assert await index.get_by_id(flight.id) == flight
    assert await index.get_by_id("garbage") is None


# ============================================================
# PAYMENTS
# ============================================================

@pytest.mark.asyncio
async def test_payment_charge_and_refund():
    gateway = MockPaymentGateway()

    payment = await gateway.charge(560.0, "USD", "tok_visa")
    refund = await gateway.refund(payment.payment_id)

    assert payment.succeeded
    assert payment.payment_id.startswith("PAY-")
    assert refund.status == "refunded"
    assert refund.amount == 560.0


@pytest.mark.asyncio
async def test_payment_declined_and_invalid_amounts():
    gateway = MockPaymentGateway()

    with pytest.raises(PaymentDeclinedError):
        await gateway.charge(100.0, "USD", "tok_chargeDeclined")
    with pytest.raises(ValidationError):
        await gateway.charge(0, "USD", "tok_visa")
    with pytest.raises(NotFoundError):
        await gateway.refund("PAY-unknown")

    payment = await gateway.charge(100.0, "USD", "tok_visa")
    with pytest.raises(ValidationError):
        await gateway.refund(payment.payment_id, amount=150.0)


# ============================================================
# BOOKING STORES
# ============================================================

def test_booking_reference_format():
    reference = generate_booking_reference()

    assert reference.startswith("FB")
    assert reference.isalnum() and reference.isupper()
    assert generate_booking_reference() != reference


@pytest.mark.asyncio
async def test_in_memory_store_lifecycle():
    store = InMemoryBookingStore()

    reference = await store.create(_record())
    stored = await store.get(reference)
    await store.update(stored.model_copy(update={"status": BookingStatus.CANCELLED}))

    assert stored.booking_reference == reference
    assert await store.list(BookingStatus.CONFIRMED) == []
    assert len(await store.list()) == 1
    assert await store.get("FBNOPE") is None
    with pytest.raises(NotFoundError):
        await store.update(_record("FBNOPE"))


@pytest.mark.asyncio
async def test_redis_store_writes_document_and_index():
    client = AsyncMock()
    client.set.return_value = True
    store = RedisBookingStore("redis://localhost", client=client)

    reference = await store.create(_record("FBTEST1"))

    assert reference == "FBTEST1"
    key, payload = client.set.call_args.args
    assert key == "booking:FBTEST1"
    assert json.loads(payload)["booking_reference"] == "FBTEST1"
    assert client.set.call_args.kwargs == {"nx": True}
    client.sadd.assert_awaited_once_with("booking:index", "FBTEST1")


@pytest.mark.asyncio
async def test_redis_store_reads_and_lists():
    record = _record("FBTEST2")
    client = AsyncMock()
    client.get.return_value = record.model_dump_json()
    client.smembers.return_value = {"FBTEST2"}
    client.mget.return_value = [record.model_dump_json(), None]
    store = RedisBookingStore("redis://localhost", client=client)

    assert (await store.get("FBTEST2")).booking_reference == "FBTEST2"
    assert [r.booking_reference for r in await store.list(BookingStatus.CONFIRMED)] == ["FBTEST2"]


@pytest.mark.asyncio
async def test_redis_store_update_missing_raises_not_found():
    client = AsyncMock()
    client.set.return_value = None
    store = RedisBookingStore("redis://localhost", client=client)

    with pytest.raises(NotFoundError):
        await store.update(_record("FBGONE"))


# ============================================================
# OPENAI ORACLE
# ============================================================

@pytest.mark.asyncio
async def test_oracle_extract_params_drops_nulls(monkeypatch):
    oracle = OpenAILanguageOracle(api_key="sk-test")
    reply = '```json\n{"origin": "JFK", "destination": "LHR", "departure_date": "2026-11-03", "passengers": null}\n```'
    monkeypatch.setattr(oracle, "_call_openai", AsyncMock(return_value=reply))

    params = await oracle.extract_params("NYC to London tomorrow", SessionContext())

    assert params == ExtractedTravelParams(origin="JFK", destination="LHR", departure_date=date(2026, 11, 3))
    assert "passengers" not in params.model_dump(exclude_unset=True)


@pytest.mark.asyncio
async def test_oracle_invalid_json_is_external_error(monkeypatch):
    oracle = OpenAILanguageOracle(api_key="sk-test")
    monkeypatch.setattr(oracle, "_call_openai", AsyncMock(return_value="I can't help with that"))

    with pytest.raises(ExternalServiceError):
        await oracle.extract_params("hello")


@pytest.mark.asyncio
async def test_oracle_generate_text_sends_recent_context(monkeypatch):
    oracle = OpenAILanguageOracle(api_key="sk-test")
    call = AsyncMock(return_value="  Pack light.  ")
    monkeypatch.setattr(oracle, "_call_openai", call)
    context = SessionContext(recent_messages=[{"role": "user", "content": "hi"}])

    assert await oracle.generate_text("Any tips?", context) == "Pack light."
    messages = call.call_args.args[0]
    assert messages[1] == {"role": "user", "content": "hi"}
    assert messages[-1] == {"role": "user", "content": "Any tips?"}


def test_oracle_without_key_is_unavailable():
    with pytest.raises(ExternalServiceError):
        OpenAILanguageOracle(api_key="").client


def test_oracle_client_uses_configured_timeout():
    oracle = OpenAILanguageOracle(api_key="sk-test", timeout_s=7.5)

    assert oracle.client.timeout == 7.5
