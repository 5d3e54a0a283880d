"""
Booking Endpoints
=================
Step-by-step booking of a flight selected in a chat session.

Routes:
- GET /api/v1/booking/{session_id}/steps - Booking progress
- PUT /api/v1/booking/{session_id}/steps/{step} - Record one step
- POST /api/v1/booking/{session_id}/complete - Pay and confirm
- POST /api/v1/booking/reference/{reference}/cancel - Cancel and refund
"""

import logging

from fastapi import APIRouter, Depends, status

from app.api.v1.dependencies import ServiceContainer, get_container
from app.conversation.models import BookingRecord
from schemas.booking import BookingConfirmationResponse, BookingStepsResponse, StepUpdateRequest

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/booking", tags=["booking"])


def _confirmation(record: BookingRecord, message: str) -> BookingConfirmationResponse:
    return BookingConfirmationResponse(
        booking_reference=record.booking_reference,
        status=record.status,
        payment_status=record.payment_status,
        total_price=record.total_price,
        currency=record.currency,
        flight_number=record.flight.flight_number,
        airline=record.flight.airline,
        passengers=len(record.passengers),
        message=message,
    )


@router.get("/{session_id}/steps", response_model=BookingStepsResponse)
async def get_booking_steps(
    session_id: str,
    container: ServiceContainer = Depends(get_container),
) -> BookingStepsResponse:
    await container.sessions.load(session_id)
    return BookingStepsResponse(**container.booking_flow.summary(session_id))


@router.put("/{session_id}/steps/{step}", response_model=BookingStepsResponse)
async def update_booking_step(
    session_id: str,
    step: str,
    request: StepUpdateRequest,
    container: ServiceContainer = Depends(get_container),
) -> BookingStepsResponse:
    await container.sessions.load(session_id)
    container.booking_flow.update_step(session_id, step, request.data)
    await container.sessions.save(session_id)
    return BookingStepsResponse(**container.booking_flow.summary(session_id))


@router.post(
    "/{session_id}/complete",
    response_model=BookingConfirmationResponse,
    status_code=status.HTTP_201_CREATED,
)
async def complete_booking(
    session_id: str,
    container: ServiceContainer = Depends(get_container),
) -> BookingConfirmationResponse:
    record = await container.booking_flow.complete(session_id)
    logger.info(f"[Booking] Session {session_id} confirmed {record.booking_reference}")
    return _confirmation(record, f"Booking confirmed. Your reference is {record.booking_reference}.")


@router.post("/reference/{reference}/cancel", response_model=BookingConfirmationResponse)
async def cancel_booking(
    reference: str,
    container: ServiceContainer = Depends(get_container),
) -> BookingConfirmationResponse:
    record = await container.booking_flow.cancel(reference)
    return _confirmation(record, f"Booking {reference} has been cancelled.")
