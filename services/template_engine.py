"""
Template Engine
===============
All deterministic assistant text: search results, flight details,
comparisons, recommendations, clarifications and canned answers used when
the language oracle is unavailable.

Every builder returns (message, suggested_actions).
"""

import re
from typing import List, Optional, Tuple

from app.conversation.models import (
    ExtractedTravelParams,
    FlightComparison,
    FlightResult,
    RecommendationSet,
    UserPreferences,
)

Reply = Tuple[str, List[str]]


def _price(value: float) -> str:
    return "$" + f"{value:.2f}".rstrip("0").rstrip(".")


def _stops(stops: int) -> str:
    if stops == 0:
        return "Direct flight"
    return f"{stops} stop{'s' if stops > 1 else ''}"


class TemplateEngine:
    """
    Generate all deterministic text without LLM.
    """

    GENERIC_ERROR = "I'm sorry, I'm having some technical difficulties right now. Please try again in a moment."
    GENERIC_ERROR_ACTIONS = ["Try again", "Contact support", "Start over"]

    GENERAL_ACTIONS = ["Search for flights", "Get recommendations", "Ask another question"]

    # Canned answers for common questions, matched by keyword
    CANNED_ANSWERS = [
        (re.compile(r'\b(?:bag|bags|baggage|luggage|carry[\s-]?on)\b', re.I),
         "Baggage allowances depend on the airline and fare. Most economy fares include one carry-on; "
         "checked bags are often extra. I'll show the airline's policy before you book."),
        (re.compile(r'\b(?:cancel\w*|refund\w*)\b', re.I),
         "You can cancel a confirmed booking with its booking reference. Refunds go back to the original "
         "payment method."),
        (re.compile(r'\b(?:check[\s-]?in)\b', re.I),
         "Online check-in usually opens 24 hours before departure. I'll send you a reminder when it opens."),
    ]
    DEFAULT_ANSWER = "I'm here to help you find and book flights! What would you like to do?"

    DEFAULT_ADVICE = (
        "Booking a few weeks ahead and staying flexible by a day or two usually gets the best fares, "
        "and direct flights are worth a small premium on short trips."
    )

    # ========================================
    # SEARCH
    # ========================================

    @staticmethod
    def clarification(params: ExtractedTravelParams) -> Reply:
        missing = params.missing_fields()
        if len(missing) == 1:
            needed = missing[0]
        else:
            needed = ", ".join(missing[:-1]) + " and " + missing[-1]
        known = []
        if params.origin:
            known.append(f"from {params.origin}")
        if params.destination:
            known.append(f"to {params.destination}")
        if params.departure_date:
            known.append(f"on {params.departure_date.isoformat()}")
        prefix = f"Got it, a flight {' '.join(known)}. " if known else ""
        return (
            f"{prefix}To search for flights I still need your {needed}.",
            ["Provide " + field for field in missing],
        )

    @staticmethod
    def no_results(params: ExtractedTravelParams) -> Reply:
        return (
            f"I couldn't find any flights from {params.origin} to {params.destination} on "
            f"{params.departure_date.isoformat() if params.departure_date else 'that date'}. "
            "Would you like to try different dates or nearby airports?",
            ["Try different dates", "Search nearby airports", "Adjust preferences"],
        )

    @staticmethod
    def search_results(
        flights: List[FlightResult],
        params: ExtractedTravelParams,
        recommendations: RecommendationSet,
    ) -> Reply:
        route = f"{params.origin} to {params.destination}"
        when = params.departure_date.strftime("%a %b %d %Y") if params.departure_date else "your date"
        lines = [f"Great! I found {len(flights)} flights for {route} on {when}.", ""]
        # Option numbers match the stored result order used by selection
        options = {flight.id: position for position, flight in enumerate(flights, start=1)}

        primary = recommendations.primary
        if primary:
            lines.append(
                f"🌟 **My top recommendation** (option {options[primary.flight.id]}): "
                f"{primary.flight.airline} {primary.flight.flight_number} for {_price(primary.flight.price)}"
            )
            lines.append(f"   {', '.join(primary.reasons)}")
            lines.append("")

        if recommendations.alternatives:
            lines.append("**Other great options**:")
            for alt in recommendations.alternatives[:2]:
                lines.append(
                    f"{options[alt.flight.id]}. {alt.flight.airline} {alt.flight.flight_number} - "
                    f"{_price(alt.flight.price)} ({alt.category.value})"
                )

        if recommendations.insights:
            lines.append("")
            lines.append(f"💡 **Insights**: {recommendations.insights[0]}")

        return (
            "\n".join(lines).strip(),
            ["Select a flight", "Compare options", "See more flights", "Modify search"],
        )

    # ========================================
    # SELECTION
    # ========================================

    @staticmethod
    def no_flights_to_select() -> Reply:
        return (
            "I don't see any flight options to select from. Would you like to search for flights first?",
            ["Search for flights", "Start over"],
        )

    @staticmethod
    def invalid_selection(count: int) -> Reply:
        return (
            f"I couldn't understand which flight you'd like to select. Please choose from flights 1-{count}.",
            [f"Select flight {i + 1}" for i in range(count)],
        )

    @staticmethod
    def flight_details(flight: FlightResult) -> Reply:
        hours, minutes = divmod(flight.duration, 60)
        lines = [
            f"✈️ **{flight.airline} {flight.flight_number}**",
            "",
            f"🛫 **Departure**: {flight.origin.city or flight.origin.code} ({flight.origin.code}) "
            f"at {flight.departure_time.strftime('%H:%M on %b %d')}",
            f"🛬 **Arrival**: {flight.destination.city or flight.destination.code} ({flight.destination.code}) "
            f"at {flight.arrival_time.strftime('%H:%M on %b %d')}",
            f"⏱️ **Duration**: {hours}h {minutes}m",
            f"🔄 **Stops**: {_stops(flight.stops)}",
            f"💰 **Price**: {_price(flight.price)}",
            f"💺 **Available seats**: {flight.available_seats}",
            "",
            "Ready to book this flight?",
        ]
        return (
            "\n".join(lines),
            ["Book this flight", "Get more details", "Compare with others", "Choose different flight"],
        )

    # ========================================
    # COMPARISON & RECOMMENDATIONS
    # ========================================

    @staticmethod
    def not_enough_to_compare() -> Reply:
        return (
            "I need at least 2 flights to compare. Would you like to search for flights first?",
            ["Search for flights", "See available options"],
        )

    @staticmethod
    def comparison(comparison: FlightComparison) -> Reply:
        lines = ["📊 **Flight Comparison**", "", comparison.summary, ""]
        for index, entry in enumerate(comparison.entries):
            flight = entry.flight
            lines.append(f"**{index + 1}. {flight.airline} {flight.flight_number}** - {_price(flight.price)}")
            if entry.advantages:
                lines.append(f"   ✅ {', '.join(entry.advantages)}")
            if entry.disadvantages:
                lines.append(f"   ❌ {', '.join(entry.disadvantages)}")
            lines.append("")
        lines.append("Which option looks best to you?")
        return (
            "\n".join(lines),
            ["Select best option", "See more details", "Get recommendations", "Search different dates"],
        )

    @staticmethod
    def recommendations(recommendations: RecommendationSet) -> Reply:
        lines = ["🎯 **My Recommendations**", ""]
        primary = recommendations.primary
        if primary:
            lines.append(
                f"**🌟 Best Choice**: {primary.flight.airline} {primary.flight.flight_number} - "
                f"{_price(primary.flight.price)}"
            )
            lines.append(f"   {', '.join(primary.reasons)}")
            lines.append("")
        if recommendations.alternatives:
            lines.append("**Alternative Options**:")
            for alt in recommendations.alternatives:
                lines.append(
                    f"• {alt.flight.airline} {alt.flight.flight_number} - "
                    f"{_price(alt.flight.price)} ({alt.category.value})"
                )
            lines.append("")
        if recommendations.tips:
            lines.append("💡 **Travel Tips**:")
            lines.extend(f"• {tip}" for tip in recommendations.tips)
        return (
            "\n".join(lines).strip(),
            ["Select recommended flight", "Compare all options", "See more details", "Update preferences"],
        )

    @classmethod
    def general_advice(cls, advice: Optional[str]) -> Reply:
        return (
            f"I'd be happy to help with recommendations! {advice or cls.DEFAULT_ADVICE}\n\n"
            "Would you like to search for specific flights so I can give you personalized recommendations?",
            ["Search for flights", "Get travel tips", "Ask specific question"],
        )

    # ========================================
    # PREFERENCES
    # ========================================

    @staticmethod
    def format_preferences(preferences: UserPreferences) -> str:
        parts = []
        if preferences.budget_range:
            parts.append(f"{preferences.budget_range} budget")
        if preferences.time_preference:
            parts.append(f"{preferences.time_preference} departures")
        if preferences.stop_preference:
            parts.append(f"{preferences.stop_preference} flights")
        if preferences.airline_preferences:
            parts.append(f"preferred airlines: {', '.join(preferences.airline_preferences)}")
        if preferences.priority_factors:
            parts.append(f"prioritizing {', '.join(preferences.priority_factors)}")
        return ", ".join(parts) if parts else "no specific preferences"

    @classmethod
    def preferences_updated(cls, preferences: UserPreferences, reranked: Optional[RecommendationSet]) -> Reply:
        message = f"Got it! I've updated your preferences: {cls.format_preferences(preferences)}."
        if reranked is None:
            return (
                message + " Would you like to search for flights with these preferences?",
                ["Search flights", "Update more preferences", "Get recommendations"],
            )

        lines = [message + " Based on your preferences, here are my updated recommendations:", ""]
        primary = reranked.primary
        lines.append(
            f"🌟 {primary.flight.airline} {primary.flight.flight_number} - {_price(primary.flight.price)} "
            f"({', '.join(primary.reasons)})"
        )
        for alt in reranked.alternatives:
            lines.append(
                f"• {alt.flight.airline} {alt.flight.flight_number} - {_price(alt.flight.price)} ({alt.category.value})"
            )
        return (
            "\n".join(lines),
            ["Select recommended flight", "See all options", "Update preferences", "Search new dates"],
        )

    # ========================================
    # GENERAL
    # ========================================

    @classmethod
    def canned_answer(cls, message: str) -> Reply:
        for pattern, answer in cls.CANNED_ANSWERS:
            if pattern.search(message):
                return answer, cls.GENERAL_ACTIONS
        return cls.DEFAULT_ANSWER, ["Search for flights", "Get recommendations", "Compare flight options", "Ask about travel tips"]

    @classmethod
    def generic_error(cls) -> Reply:
        return cls.GENERIC_ERROR, list(cls.GENERIC_ERROR_ACTIONS)


template_engine = TemplateEngine()
