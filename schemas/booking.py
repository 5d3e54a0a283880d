from typing import Any, List, Optional

from pydantic import BaseModel, Field

from app.conversation.models import BookingStatus, BookingStepStatus, PaymentStatus


class StepUpdateRequest(BaseModel):
    """Payload of one booking step; its shape depends on the step."""
    data: Any = Field(..., description="Step data, e.g. {'flight_id': ...} or a list of passengers")

    class Config:
        json_schema_extra = {
            "example": {
                "data": {"email": "ali@example.com", "phone": "+998901234567"}
            }
        }


class BookingStepsResponse(BaseModel):
    session_id: str
    steps: List[BookingStepStatus]
    completed_steps: int


class BookingConfirmationResponse(BaseModel):
    """Booking as returned to the client after completion or cancellation."""
    booking_reference: str
    status: BookingStatus
    payment_status: PaymentStatus
    total_price: float
    currency: str
    flight_number: str
    airline: str
    passengers: int
    message: Optional[str] = None
