# app/conversation/models.py
"""
Centralized data models for the conversational booking assistant.
All Pydantic v2 models and enums live here to prevent circular imports.
"""

import uuid
from datetime import date, datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================
# ENUMS
# ============================================================

class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class IntentType(str, Enum):
    """Purpose of a user message."""
    FLIGHT_SEARCH = "flight_search"
    FLIGHT_SELECTION = "flight_selection"
    FLIGHT_COMPARISON = "flight_comparison"
    PREFERENCE_UPDATE = "preference_update"
    RECOMMENDATION_REQUEST = "recommendation_request"
    GENERAL_INQUIRY = "general_inquiry"


class BookingStep(str, Enum):
    """Ordered booking milestones. Derived from session contents, never stored."""
    FLIGHT_SELECTION = "flight_selection"
    PASSENGER_INFO = "passenger_info"
    CONTACT_INFO = "contact_info"
    PAYMENT = "payment"
    CONFIRMATION = "confirmation"


class RecommendationCategory(str, Enum):
    CHEAPEST = "cheapest"
    FASTEST = "fastest"
    MOST_CONVENIENT = "most-convenient"
    BEST_VALUE = "best-value"


class BookingStatus(str, Enum):
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class PaymentStatus(str, Enum):
    PAID = "paid"
    PENDING = "pending"
    REFUNDED = "refunded"


BudgetRange = Literal["budget", "mid-range", "premium"]
TimePreference = Literal["morning", "afternoon", "evening", "flexible"]
StopPreference = Literal["direct", "one-stop", "flexible"]
PriorityFactor = Literal["price", "duration", "convenience", "airline"]


# ============================================================
# FLIGHTS
# ============================================================

class Airport(BaseModel):
    code: str
    name: str = ""
    city: str = ""
    country: str = ""
    timezone: str = "UTC"


class FlightResult(BaseModel):
    """A bookable flight as returned by the search index. Read-only to the core."""
    model_config = ConfigDict(frozen=True)

    id: str
    airline: str
    flight_number: str
    origin: Airport
    destination: Airport
    departure_time: datetime
    arrival_time: datetime
    duration: int = Field(ge=0, description="Total travel time in minutes")
    stops: int = Field(default=0, ge=0)
    price: float = Field(ge=0)
    currency: str = "USD"
    available_seats: int = Field(default=9, ge=0)


class SearchFilters(BaseModel):
    max_stops: Optional[int] = None
    max_price: Optional[float] = None
    airlines: List[str] = Field(default_factory=list)


# ============================================================
# QUERY & PREFERENCES
# ============================================================

class ExtractedTravelParams(BaseModel):
    """
    Travel parameters pulled out of free text. Any subset may be present.
    """
    origin: Optional[str] = None
    destination: Optional[str] = None
    departure_date: Optional[date] = None
    return_date: Optional[date] = None
    passengers: int = Field(default=1, ge=1, le=9)
    travel_class: Optional[str] = None
    flexibility: Literal["exact", "flexible"] = "exact"

    @field_validator("origin", "destination", mode="before")
    @classmethod
    def blank_to_none(cls, value):
        if isinstance(value, str):
            value = value.strip()
            return value or None
        return value

    def missing_fields(self) -> List[str]:
        missing = []
        if not self.origin:
            missing.append("departure city")
        if not self.destination:
            missing.append("destination city")
        if not self.departure_date:
            missing.append("travel date")
        return missing

    def is_complete(self) -> bool:
        return not self.missing_fields()

    def merged_with(self, newer: "ExtractedTravelParams") -> "ExtractedTravelParams":
        """Overlay the fields the newer extraction actually set."""
        update = newer.model_dump(exclude_unset=True, exclude_none=True)
        return self.model_copy(update=update)


class UserPreferences(BaseModel):
    budget_range: Optional[BudgetRange] = None
    time_preference: Optional[TimePreference] = None
    stop_preference: Optional[StopPreference] = None
    airline_preferences: List[str] = Field(default_factory=list)
    priority_factors: List[PriorityFactor] = Field(default_factory=list)

    def merged_with(self, update: "UserPreferences") -> "UserPreferences":
        data = update.model_dump(exclude_unset=True, exclude_none=True)
        # Empty lists from an extraction that found nothing don't erase earlier answers
        data = {k: v for k, v in data.items() if v != []}
        return self.model_copy(update=data)

    def is_empty(self) -> bool:
        return self == UserPreferences()


# ============================================================
# CONVERSATION
# ============================================================

class ConversationMessage(BaseModel):
    """Single entry of the conversation history. Immutable once created."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    role: MessageRole
    content: str
    timestamp: datetime = Field(default_factory=utcnow)
    flight_options: Optional[List[FlightResult]] = None
    suggested_actions: Optional[List[str]] = None
    booking_step: Optional[BookingStep] = None


class PassengerInfo(BaseModel):
    first_name: str = Field(min_length=1)
    last_name: str = Field(min_length=1)
    date_of_birth: Optional[date] = None
    passport_number: Optional[str] = None
    passenger_type: Literal["adult", "child", "infant"] = "adult"


class ContactInfo(BaseModel):
    email: str
    phone: str = Field(min_length=5)

    @field_validator("email")
    @classmethod
    def check_email(cls, value: str) -> str:
        value = value.strip()
        local, _, domain = value.partition("@")
        if not local or "." not in domain:
            raise ValueError("invalid email address")
        return value.lower()


class PaymentInfo(BaseModel):
    """Tokenised payment method. Card numbers never reach this service."""
    payment_token: str = Field(min_length=1)
    method: Literal["card", "wallet"] = "card"
    cardholder_name: Optional[str] = None


class BookingInProgress(BaseModel):
    passengers: List[PassengerInfo] = Field(default_factory=list)
    contact_info: Optional[ContactInfo] = None
    payment_info: Optional[PaymentInfo] = None
    booking_reference: Optional[str] = None


class Session(BaseModel):
    session_id: str
    user_id: Optional[str] = None
    conversation_history: List[ConversationMessage] = Field(default_factory=list)
    current_query: Optional[ExtractedTravelParams] = None
    search_results: List[FlightResult] = Field(default_factory=list)
    selected_flight: Optional[FlightResult] = None
    preferences: UserPreferences = Field(default_factory=UserPreferences)
    booking: BookingInProgress = Field(default_factory=BookingInProgress)
    created_at: datetime = Field(default_factory=utcnow)
    last_activity: datetime = Field(default_factory=utcnow)


class BookingStepStatus(BaseModel):
    step: BookingStep
    completed: bool
    data: Optional[Any] = None


# ============================================================
# INTENTS
# ============================================================

class SearchEntities(BaseModel):
    origin: Optional[str] = None
    destination: Optional[str] = None
    departure_date: Optional[str] = None
    passengers: Optional[int] = Field(default=None, ge=1, le=9)


class SelectionEntities(BaseModel):
    selection_index: Optional[int] = Field(default=None, ge=1)
    flight_number: Optional[str] = None


class ComparisonEntities(BaseModel):
    flight_indices: List[int] = Field(default_factory=list)


class PreferenceEntities(BaseModel):
    budget_range: Optional[BudgetRange] = None
    time_preference: Optional[TimePreference] = None
    stop_preference: Optional[StopPreference] = None


class RecommendationEntities(BaseModel):
    focus: Optional[str] = None


class InquiryEntities(BaseModel):
    topic: Optional[str] = None


class _IntentBase(BaseModel):
    confidence: float = Field(ge=0.0, le=1.0)
    source: Literal["oracle", "keyword"] = "oracle"


class FlightSearchIntent(_IntentBase):
    type: Literal["flight_search"] = "flight_search"
    entities: SearchEntities = Field(default_factory=SearchEntities)


class FlightSelectionIntent(_IntentBase):
    type: Literal["flight_selection"] = "flight_selection"
    entities: SelectionEntities = Field(default_factory=SelectionEntities)


class FlightComparisonIntent(_IntentBase):
    type: Literal["flight_comparison"] = "flight_comparison"
    entities: ComparisonEntities = Field(default_factory=ComparisonEntities)


class PreferenceUpdateIntent(_IntentBase):
    type: Literal["preference_update"] = "preference_update"
    entities: PreferenceEntities = Field(default_factory=PreferenceEntities)


class RecommendationRequestIntent(_IntentBase):
    type: Literal["recommendation_request"] = "recommendation_request"
    entities: RecommendationEntities = Field(default_factory=RecommendationEntities)


class GeneralInquiryIntent(_IntentBase):
    type: Literal["general_inquiry"] = "general_inquiry"
    entities: InquiryEntities = Field(default_factory=InquiryEntities)


IntentResult = Annotated[
    Union[
        FlightSearchIntent,
        FlightSelectionIntent,
        FlightComparisonIntent,
        PreferenceUpdateIntent,
        RecommendationRequestIntent,
        GeneralInquiryIntent,
    ],
    Field(discriminator="type"),
]

INTENT_ADAPTER: TypeAdapter = TypeAdapter(IntentResult)


# ============================================================
# RECOMMENDATIONS
# ============================================================

class FlightRecommendation(BaseModel):
    flight: FlightResult
    score: float
    reasons: List[str] = Field(default_factory=list)
    category: RecommendationCategory


class RecommendationSet(BaseModel):
    primary: Optional[FlightRecommendation] = None
    alternatives: List[FlightRecommendation] = Field(default_factory=list)
    insights: List[str] = Field(default_factory=list)
    tips: List[str] = Field(default_factory=list)


class ComparisonEntry(BaseModel):
    flight: FlightResult
    advantages: List[str] = Field(default_factory=list)
    disadvantages: List[str] = Field(default_factory=list)


class FlightComparison(BaseModel):
    entries: List[ComparisonEntry]
    summary: str


# ============================================================
# TURN RESULT
# ============================================================

class ConversationResponse(BaseModel):
    session_id: str
    message: str
    flight_options: Optional[List[FlightResult]] = None
    suggested_actions: List[str] = Field(default_factory=list)
    booking_step: Optional[BookingStep] = None
    intent: Optional[IntentType] = None
    degraded: bool = False


# ============================================================
# BOOKINGS & TRAVEL UPDATES
# ============================================================

class BookingRecord(BaseModel):
    booking_reference: Optional[str] = None
    session_id: str
    user_id: Optional[str] = None
    flight: FlightResult
    passengers: List[PassengerInfo]
    contact_info: ContactInfo
    total_price: float
    currency: str = "USD"
    status: BookingStatus = BookingStatus.CONFIRMED
    payment_status: PaymentStatus = PaymentStatus.PENDING
    payment_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


class FlightChange(BaseModel):
    booking_reference: str
    change_type: Literal["delay", "cancellation", "gate_change", "schedule_change"]
    description: str
    new_departure_time: Optional[datetime] = None
    rebooking_options: List[FlightResult] = Field(default_factory=list)
    detected_at: datetime = Field(default_factory=utcnow)
    notified: bool = False

    @property
    def key(self) -> str:
        return f"{self.booking_reference}:{self.change_type}:{self.new_departure_time}"


class TravelReminder(BaseModel):
    booking_reference: str
    reminder_type: Literal["check_in", "departure"]
    recipient: str
    send_at: datetime
    status: Literal["pending", "sending", "sent"] = "pending"

    @property
    def key(self) -> str:
        return f"{self.booking_reference}:{self.reminder_type}"


# Slim view of a session handed to the language oracle
class SessionContext(BaseModel):
    current_query: Optional[ExtractedTravelParams] = None
    search_results: List[FlightResult] = Field(default_factory=list)
    selected_flight: Optional[FlightResult] = None
    preferences: UserPreferences = Field(default_factory=UserPreferences)
    recent_messages: List[Dict[str, str]] = Field(default_factory=list)
