"""
Contracts for the external collaborators the assistant talks to.

The orchestrator, booking flow and background jobs only ever see these
protocols; concrete adapters live in their own modules and are wired up in
app/api/v1/dependencies.py.
"""

from datetime import date
from typing import List, Optional, Protocol, runtime_checkable

from pydantic import BaseModel

from app.conversation.models import (
    BookingRecord,
    BookingStatus,
    ExtractedTravelParams,
    FlightResult,
    SearchFilters,
    SessionContext,
)


class PaymentResult(BaseModel):
    payment_id: str
    status: str
    amount: float
    currency: str = "USD"
    message: str = ""

    @property
    def succeeded(self) -> bool:
        return self.status == "succeeded"


@runtime_checkable
class SearchIndex(Protocol):
    async def search(
        self,
        origin: str,
        destination: str,
        departure_date: date,
        passengers: int = 1,
        filters: Optional[SearchFilters] = None,
    ) -> List[FlightResult]: ...

    async def get_by_id(self, flight_id: str) -> Optional[FlightResult]: ...


@runtime_checkable
class LanguageOracle(Protocol):
    async def extract_params(self, message: str, context: Optional[SessionContext] = None) -> ExtractedTravelParams: ...

    async def generate_text(self, prompt: str, context: Optional[SessionContext] = None) -> str: ...


@runtime_checkable
class BookingStore(Protocol):
    async def create(self, record: BookingRecord) -> str: ...

    async def get(self, reference: str) -> Optional[BookingRecord]: ...

    async def update(self, record: BookingRecord) -> None: ...

    async def list(self, status: Optional[BookingStatus] = None) -> List[BookingRecord]: ...


@runtime_checkable
class PaymentGateway(Protocol):
    async def charge(self, amount: float, currency: str, payment_token: str, description: str = "") -> PaymentResult: ...

    async def refund(self, payment_id: str, amount: Optional[float] = None) -> PaymentResult: ...


@runtime_checkable
class NotificationDispatcher(Protocol):
    async def send(self, recipient: str, subject: str, body: str) -> None: ...
