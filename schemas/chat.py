from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from app.conversation.models import (
    BookingStep,
    ConversationMessage,
    ExtractedTravelParams,
    FlightResult,
    UserPreferences,
)


class ChatMessageRequest(BaseModel):
    """Request body for a chat turn."""
    message: str = Field(
        ...,
        min_length=1,
        max_length=1000,
        description="User's natural language message",
        examples=["I want to fly from New York to London tomorrow"],
    )
    session_id: Optional[str] = Field(None, description="Session ID, generated when omitted")
    user_id: Optional[str] = Field(None, description="Authenticated user ID")


class SessionStateResponse(BaseModel):
    """Snapshot of a conversation session."""
    session_id: str
    user_id: Optional[str] = None
    current_query: Optional[ExtractedTravelParams] = None
    search_results: List[FlightResult] = Field(default_factory=list)
    selected_flight: Optional[FlightResult] = None
    preferences: UserPreferences
    conversation_history: List[ConversationMessage] = Field(default_factory=list)
    booking_step: Optional[BookingStep] = None
    created_at: datetime
    last_activity: datetime
