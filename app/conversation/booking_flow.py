# app/conversation/booking_flow.py
"""
Booking flow on top of a conversation session.

Booking steps are never stored: `steps()` derives them from what the
session holds. `update_step()` writes exactly one session field per step.
`complete()` charges the payment gateway and records the booking;
`cancel()` refunds and marks the record cancelled.
"""

import asyncio
import logging
import weakref
from typing import Any, Dict, List, Optional

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from app.conversation.models import (
    BookingRecord,
    BookingStatus,
    BookingStep,
    BookingStepStatus,
    ContactInfo,
    PassengerInfo,
    PaymentInfo,
    PaymentStatus,
)
from app.conversation.session_store import SessionStore
from services.collaborators import BookingStore, NotificationDispatcher, PaymentGateway
from services.exceptions import (
    ConflictError,
    NotFoundError,
    UnknownBookingStepError,
    ValidationError,
)
from services.resilience import CircuitBreaker

logger = logging.getLogger(__name__)

_PASSENGERS = TypeAdapter(List[PassengerInfo])


class BookingFlow:

    def __init__(
        self,
        sessions: SessionStore,
        booking_store: BookingStore,
        payments: PaymentGateway,
        notifier: Optional[NotificationDispatcher] = None,
        payment_breaker: Optional[CircuitBreaker] = None,
        booking_breaker: Optional[CircuitBreaker] = None,
        currency: str = "USD",
    ):
        self.sessions = sessions
        self.booking_store = booking_store
        self.payments = payments
        self.notifier = notifier
        self.payment_breaker = payment_breaker or CircuitBreaker("payment", failure_threshold=5, recovery_timeout=30.0)
        self.booking_breaker = booking_breaker or CircuitBreaker("booking_store", failure_threshold=5, recovery_timeout=30.0)
        self.currency = currency
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    # ========================================
    # STEP PROJECTION
    # ========================================

    def steps(self, session_id: str) -> List[BookingStepStatus]:
        session = self.sessions.require(session_id)
        booking = session.booking
        selected = session.selected_flight

        return [
            BookingStepStatus(
                step=BookingStep.FLIGHT_SELECTION,
                completed=selected is not None,
                data=selected.model_dump(mode="json") if selected else None,
            ),
            BookingStepStatus(
                step=BookingStep.PASSENGER_INFO,
                completed=bool(booking.passengers),
                data=[p.model_dump(mode="json") for p in booking.passengers] or None,
            ),
            BookingStepStatus(
                step=BookingStep.CONTACT_INFO,
                completed=booking.contact_info is not None,
                data=booking.contact_info.model_dump(mode="json") if booking.contact_info else None,
            ),
            BookingStepStatus(
                step=BookingStep.PAYMENT,
                completed=booking.payment_info is not None,
                # Never echo the payment token back
                data={"method": booking.payment_info.method} if booking.payment_info else None,
            ),
            BookingStepStatus(
                step=BookingStep.CONFIRMATION,
                completed=booking.booking_reference is not None,
                data={"booking_reference": booking.booking_reference} if booking.booking_reference else None,
            ),
        ]

    # ========================================
    # STEP UPDATE
    # ========================================

    def update_step(self, session_id: str, step: str, data: Any) -> List[BookingStepStatus]:
        """
        Record the data of a single booking step.

        Raises:
            NotFoundError: unknown session
            UnknownBookingStepError: step is not one of the five booking steps
            ValidationError: data does not fit the step
        """
        session = self.sessions.require(session_id)
        try:
            booking_step = BookingStep(step)
        except ValueError:
            raise UnknownBookingStepError(step) from None

        if session.booking.booking_reference and booking_step != BookingStep.CONFIRMATION:
            raise ConflictError("Booking is already confirmed")

        try:
            if booking_step == BookingStep.FLIGHT_SELECTION:
                self._select_flight(session_id, data)
            elif booking_step == BookingStep.PASSENGER_INFO:
                passengers = _PASSENGERS.validate_python(data if isinstance(data, list) else [data])
                if not passengers:
                    raise ValidationError("At least one passenger is required")
                self.sessions.update_booking(session_id, passengers=passengers)
            elif booking_step == BookingStep.CONTACT_INFO:
                self.sessions.update_booking(session_id, contact_info=ContactInfo.model_validate(data))
            elif booking_step == BookingStep.PAYMENT:
                self.sessions.update_booking(session_id, payment_info=PaymentInfo.model_validate(data))
            else:
                reference = data.get("booking_reference") if isinstance(data, dict) else data
                if not isinstance(reference, str) or not reference:
                    raise ValidationError("booking_reference is required")
                self.sessions.update_booking(session_id, booking_reference=reference)
        except PydanticValidationError as e:
            errors = [f"{'.'.join(map(str, err['loc']))}: {err['msg']}" for err in e.errors()]
            raise ValidationError(f"Invalid {booking_step.value} data", {"errors": errors}) from e

        logger.info(f"[BookingFlow] {session_id}: recorded {booking_step.value}")
        return self.steps(session_id)

    def _select_flight(self, session_id: str, data: Any) -> None:
        session = self.sessions.require(session_id)
        flight_id = data.get("flight_id") if isinstance(data, dict) else data
        for flight in session.search_results:
            if flight.id == flight_id:
                self.sessions.set_selected_flight(session_id, flight)
                return
        raise ValidationError(f"Flight {flight_id} is not among the current search results")

    # ========================================
    # COMPLETION & CANCELLATION
    # ========================================

    def _lock_for(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[session_id] = lock
        return lock

    async def complete(self, session_id: str) -> BookingRecord:
        """
        Charge the payment and create the booking record.

        Completions on the same session are serialised, so a second call
        sees the first one's booking and is rejected.

        Raises:
            NotFoundError: unknown session
            ConflictError: the session already has a confirmed booking
            ValidationError: a required step is missing
            PaymentDeclinedError: the gateway declined the charge
            ExternalServiceError / CircuitOpenError: gateway or store unavailable
        """
        async with self._lock_for(session_id):
            await self.sessions.load(session_id)
            record = await self._complete(session_id)
            await self.sessions.save(session_id)
        return record

    async def _complete(self, session_id: str) -> BookingRecord:
        session = self.sessions.require(session_id)
        booking = session.booking
        if booking.booking_reference:
            raise ConflictError(f"Booking already confirmed as {booking.booking_reference}")

        missing = [
            step.value for step, done in [
                (BookingStep.FLIGHT_SELECTION, session.selected_flight is not None),
                (BookingStep.PASSENGER_INFO, bool(booking.passengers)),
                (BookingStep.CONTACT_INFO, booking.contact_info is not None),
                (BookingStep.PAYMENT, booking.payment_info is not None),
            ] if not done
        ]
        if missing:
            raise ValidationError(f"Booking is incomplete, missing: {', '.join(missing)}", {"missing": missing})

        flight = session.selected_flight
        total = round(flight.price * len(booking.passengers), 2)
        currency = flight.currency or self.currency

        payment = await self.payment_breaker.call(
            lambda: self.payments.charge(
                total, currency, booking.payment_info.payment_token,
                description=f"{flight.airline} {flight.flight_number}",
            )
        )

        record = BookingRecord(
            session_id=session_id,
            user_id=session.user_id,
            flight=flight,
            passengers=booking.passengers,
            contact_info=booking.contact_info,
            total_price=total,
            currency=currency,
            status=BookingStatus.CONFIRMED,
            payment_status=PaymentStatus.PAID,
            payment_id=payment.payment_id,
        )
        try:
            reference = await self.booking_breaker.call(lambda: self.booking_store.create(record))
        except Exception:
            logger.error(f"[BookingFlow] {session_id}: store failed after charge, refunding {payment.payment_id}")
            await self.payments.refund(payment.payment_id)
            raise
        record = record.model_copy(update={"booking_reference": reference})

        self.sessions.update_booking(session_id, booking_reference=reference)
        logger.info(f"[BookingFlow] {session_id}: booking {reference} confirmed")

        await self._notify(
            record.contact_info.email,
            f"Booking confirmed: {reference}",
            f"Your {flight.airline} {flight.flight_number} flight from {flight.origin.code} to "
            f"{flight.destination.code} on {flight.departure_time:%Y-%m-%d %H:%M} is confirmed. "
            f"Total paid: {total:.2f} {currency}.",
        )
        return record

    async def cancel(self, reference: str) -> BookingRecord:
        """
        Raises:
            NotFoundError: unknown reference
            ConflictError: booking already cancelled
        """
        record = await self.booking_breaker.call(lambda: self.booking_store.get(reference))
        if record is None:
            raise NotFoundError("Booking")
        if record.status == BookingStatus.CANCELLED:
            raise ConflictError(f"Booking {reference} is already cancelled")

        payment_status = record.payment_status
        if record.payment_id and record.payment_status == PaymentStatus.PAID:
            await self.payment_breaker.call(lambda: self.payments.refund(record.payment_id))
            payment_status = PaymentStatus.REFUNDED

        cancelled = record.model_copy(update={"status": BookingStatus.CANCELLED, "payment_status": payment_status})
        await self.booking_breaker.call(lambda: self.booking_store.update(cancelled))
        logger.info(f"[BookingFlow] Booking {reference} cancelled")

        await self._notify(
            record.contact_info.email,
            f"Booking cancelled: {reference}",
            f"Your booking {reference} has been cancelled"
            + (" and refunded." if payment_status == PaymentStatus.REFUNDED else "."),
        )
        return cancelled

    async def _notify(self, recipient: str, subject: str, body: str) -> None:
        if self.notifier is None:
            return
        try:
            await self.notifier.send(recipient, subject, body)
        except Exception as e:
            # Best effort: the booking itself already succeeded
            logger.warning(f"[BookingFlow] Notification to {recipient} failed: {e}")

    def summary(self, session_id: str) -> Dict[str, Any]:
        steps = self.steps(session_id)
        return {
            "session_id": session_id,
            "steps": [s.model_dump(mode="json") for s in steps],
            "completed_steps": sum(1 for s in steps if s.completed),
        }
