"""
Travel Updates
==============
Post-booking jobs run by the maintenance scheduler.

- monitor_flight_changes(): re-read every upcoming confirmed booking's flight
  from the search index and record delays, cancellations and schedule changes.
  A cancellation notice lists up to three rebooking options on the same route.
- schedule_travel_reminders(): queue a check-in reminder 24h before departure
  and a departure reminder 2h before, for bookings departing within 7 days.
- process_due_reminders(): claim, send and mark due reminders. Reminders of
  bookings that are no longer confirmed are dropped unsent.

Every job is safe to re-run: changes and reminders are deduplicated by key
and a reminder is claimed before it is sent. A change is only recorded once
its notification went out, so a failed send is retried on the next run.
Entries of bookings whose flight has departed are evicted at the start of
each job.

Usage:
    updates = TravelUpdateService(booking_store, search_index, notifier)
    await updates.monitor_flight_changes()
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional

from app.conversation.models import (
    BookingRecord,
    BookingStatus,
    FlightChange,
    FlightResult,
    TravelReminder,
    utcnow,
)
from services.collaborators import BookingStore, NotificationDispatcher, SearchIndex
from services.local_flights import ID_PREFIX as LOCAL_ID_PREFIX
from services.resilience import CircuitBreaker

logger = logging.getLogger(__name__)

SIGNIFICANT_DELAY_MINUTES = 30
UPCOMING_WINDOW = timedelta(days=7)
MAX_REBOOKING_OPTIONS = 3

REMINDER_OFFSETS = {
    "check_in": timedelta(hours=24),
    "departure": timedelta(hours=2),
}

REMINDER_TEXT = {
    "check_in": "Check-in is now available for your flight. Complete online check-in to save time at the airport.",
    "departure": "Your flight departs in 2 hours. Please arrive at the airport with sufficient time for security screening.",
}


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


class TravelUpdateService:

    def __init__(
        self,
        booking_store: BookingStore,
        search_index: SearchIndex,
        notifier: NotificationDispatcher,
        breaker: Optional[CircuitBreaker] = None,
        clock: Callable[[], datetime] = utcnow,
        fallback_index: Optional[SearchIndex] = None,
    ):
        self.booking_store = booking_store
        self.search_index = search_index
        self.notifier = notifier
        self.breaker = breaker
        self.clock = clock
        self.fallback_index = fallback_index
        self._changes: Dict[str, FlightChange] = {}
        self._reminders: Dict[str, TravelReminder] = {}
        # booking reference -> departure time, for eviction
        self._departures: Dict[str, datetime] = {}

    # ========================================
    # BOOKING SELECTION
    # ========================================

    async def _active_bookings(self, horizon: Optional[timedelta] = None) -> List[BookingRecord]:
        """Confirmed bookings whose flight has not departed yet."""
        now = self.clock()
        bookings = await self.booking_store.list(BookingStatus.CONFIRMED)
        active = []
        for booking in bookings:
            departure = _aware(booking.flight.departure_time)
            if departure <= now:
                continue
            if horizon is not None and departure - now > horizon:
                continue
            active.append(booking)
        return active

    def _track(self, booking_reference: str, departure: datetime) -> None:
        self._departures[booking_reference] = _aware(departure)

    def _evict_departed(self) -> int:
        now = self.clock()
        departed = {ref for ref, departure in self._departures.items() if departure <= now}
        if not departed:
            return 0
        self._changes = {k: c for k, c in self._changes.items() if c.booking_reference not in departed}
        self._reminders = {k: r for k, r in self._reminders.items() if r.booking_reference not in departed}
        for ref in departed:
            del self._departures[ref]
        logger.info(f"🧹 Evicted updates for {len(departed)} departed booking(s)")
        return len(departed)

    def _index_for(self, flight_id: str) -> SearchIndex:
        # Local inventory ids never exist in the remote index
        if self.fallback_index is not None and flight_id.startswith(LOCAL_ID_PREFIX):
            return self.fallback_index
        return self.search_index

    async def _lookup(self, flight_id: str) -> Optional[FlightResult]:
        index = self._index_for(flight_id)
        if self.breaker is None or index is not self.search_index:
            return await index.get_by_id(flight_id)
        # No fallback: a remote outage must not read as a cancellation
        return await self.breaker.call(lambda: index.get_by_id(flight_id))

    async def _rebooking_options(self, booking: BookingRecord) -> List[FlightResult]:
        booked = booking.flight

        def search(index: SearchIndex):
            return index.search(
                booked.origin.code,
                booked.destination.code,
                _aware(booked.departure_time).date(),
                passengers=len(booking.passengers),
            )

        fallback = None
        if self.fallback_index is not None:
            fallback = lambda: search(self.fallback_index)
        try:
            if self.breaker is None:
                flights = await search(self.search_index)
            else:
                flights = await self.breaker.call(lambda: search(self.search_index), fallback=fallback)
        except Exception as e:
            logger.warning(f"⚠️ Rebooking search failed for {booking.booking_reference}: {e}")
            return []
        return [f for f in flights if f.id != booked.id][:MAX_REBOOKING_OPTIONS]

    # ========================================
    # FLIGHT CHANGE MONITORING
    # ========================================

    async def monitor_flight_changes(self) -> Dict[str, int]:
        logger.info("🔍 Monitoring booked flights for changes...")
        self._evict_departed()
        bookings = await self._active_bookings()

        detected = 0
        failed = 0
        for booking in bookings:
            try:
                change = await self._check_booking(booking)
            except Exception as e:
                logger.error(f"❌ Flight check failed for {booking.booking_reference}: {e}")
                failed += 1
                continue
            if change is not None:
                detected += 1

        result = {"checked": len(bookings), "changes": detected, "failed": failed}
        logger.info(f"✅ Flight monitoring completed: {result}")
        return result

    async def _check_booking(self, booking: BookingRecord) -> Optional[FlightChange]:
        booked = booking.flight
        current = await self._lookup(booked.id)

        if current is None:
            change = FlightChange(
                booking_reference=booking.booking_reference,
                change_type="cancellation",
                description=f"Flight {booked.flight_number} was cancelled by the airline",
            )
            if change.key in self._changes:
                return None
            change = change.model_copy(update={"rebooking_options": await self._rebooking_options(booking)})
            return await self._record_change(booking, change, None)

        shift = (_aware(current.departure_time) - _aware(booked.departure_time)).total_seconds() / 60
        if abs(shift) >= SIGNIFICANT_DELAY_MINUTES:
            change = FlightChange(
                booking_reference=booking.booking_reference,
                change_type="delay",
                description=f"Flight {booked.flight_number} delayed by {int(abs(shift))} minutes",
                new_departure_time=current.departure_time,
            )
            return await self._record_change(booking, change, current)

        if current.departure_time != booked.departure_time or current.arrival_time != booked.arrival_time:
            change = FlightChange(
                booking_reference=booking.booking_reference,
                change_type="schedule_change",
                description=(
                    f"Flight {booked.flight_number} now departs {current.departure_time:%Y-%m-%d %H:%M} "
                    f"and arrives {current.arrival_time:%Y-%m-%d %H:%M}"
                ),
                new_departure_time=current.departure_time,
            )
            return await self._record_change(booking, change, current)

        return None

    @staticmethod
    def _notice(change: FlightChange) -> str:
        if change.change_type != "cancellation":
            return change.description
        if not change.rebooking_options:
            return f"{change.description}. Reply to this message and we will help you find another flight."
        lines = [f"{change.description}. Available flights on the same route:"]
        for flight in change.rebooking_options:
            lines.append(
                f"• {flight.airline} {flight.flight_number} departing "
                f"{flight.departure_time:%Y-%m-%d %H:%M} for ${flight.price:.0f}"
            )
        return "\n".join(lines)

    async def _record_change(
        self, booking: BookingRecord, change: FlightChange, current: Optional[FlightResult]
    ) -> Optional[FlightChange]:
        if change.key in self._changes:
            return None

        # Notify first: a failed send leaves the change undetected for the next run
        await self.notifier.send(
            booking.contact_info.email,
            f"Flight update for booking {booking.booking_reference}",
            self._notice(change),
        )
        if current is not None:
            await self.booking_store.update(booking.model_copy(update={"flight": current}))

        change = change.model_copy(update={"notified": True})
        self._changes[change.key] = change
        self._track(booking.booking_reference, (current or booking.flight).departure_time)
        logger.info(f"✅ {change.change_type} recorded for booking {booking.booking_reference}")
        return change

    # ========================================
    # REMINDERS
    # ========================================

    async def schedule_travel_reminders(self) -> Dict[str, int]:
        now = self.clock()
        self._evict_departed()
        bookings = await self._active_bookings(UPCOMING_WINDOW)

        scheduled = 0
        for booking in bookings:
            departure = _aware(booking.flight.departure_time)
            for reminder_type, offset in REMINDER_OFFSETS.items():
                send_at = departure - offset
                if send_at <= now:
                    continue
                reminder = TravelReminder(
                    booking_reference=booking.booking_reference,
                    reminder_type=reminder_type,
                    recipient=booking.contact_info.email,
                    send_at=send_at,
                )
                if reminder.key in self._reminders:
                    continue
                self._reminders[reminder.key] = reminder
                scheduled += 1
            self._track(booking.booking_reference, departure)

        result = {"bookings": len(bookings), "scheduled": scheduled}
        logger.info(f"⏰ Reminder scheduling completed: {result}")
        return result

    async def process_due_reminders(self) -> Dict[str, int]:
        now = self.clock()
        self._evict_departed()
        due = [
            key for key, reminder in self._reminders.items()
            if reminder.status == "pending" and _aware(reminder.send_at) <= now
        ]
        if due:
            due = await self._drop_inactive(due)

        sent = 0
        failed = 0
        for key in due:
            reminder = self._reminders[key].model_copy(update={"status": "sending"})
            self._reminders[key] = reminder
            try:
                await self.notifier.send(
                    reminder.recipient,
                    f"Travel reminder for booking {reminder.booking_reference}",
                    REMINDER_TEXT[reminder.reminder_type],
                )
            except Exception as e:
                logger.error(f"❌ Failed to send {reminder.reminder_type} reminder for {reminder.booking_reference}: {e}")
                self._reminders[key] = reminder.model_copy(update={"status": "pending"})
                failed += 1
                continue
            self._reminders[key] = reminder.model_copy(update={"status": "sent"})
            sent += 1

        result = {"due": len(due), "sent": sent, "failed": failed}
        logger.info(f"✅ Processed due reminders: {result}")
        return result

    async def _drop_inactive(self, due: List[str]) -> List[str]:
        """Discard due reminders whose booking was cancelled or removed since scheduling."""
        confirmed = {b.booking_reference for b in await self.booking_store.list(BookingStatus.CONFIRMED)}
        kept = []
        for key in due:
            reference = self._reminders[key].booking_reference
            if reference in confirmed:
                kept.append(key)
                continue
            logger.info(f"🚫 Dropping {self._reminders[key].reminder_type} reminder for inactive booking {reference}")
            del self._reminders[key]
        return kept

    # ========================================
    # INSPECTION
    # ========================================

    def changes(self, booking_reference: Optional[str] = None) -> List[FlightChange]:
        changes = list(self._changes.values())
        if booking_reference:
            changes = [c for c in changes if c.booking_reference == booking_reference]
        return changes

    def reminders(self, booking_reference: Optional[str] = None) -> List[TravelReminder]:
        reminders = list(self._reminders.values())
        if booking_reference:
            reminders = [r for r in reminders if r.booking_reference == booking_reference]
        return reminders
