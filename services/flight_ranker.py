"""
Flight Ranker
Fully deterministic multi-factor flight scoring - ZERO LLM calls.

Scores every flight on five factors, tags it with a recommendation category,
picks a primary recommendation according to the user's priorities and
explains the choice with short human-readable reasons.

Weights:
    price       0.50 / 0.30 / 0.15 (budget / mid-range or unset / premium)
    duration    0.25
    stops       0.20
    time of day 0.15
    airline     0.10

Usage:
    from services.flight_ranker import flight_ranker

    recommendations = flight_ranker.recommend(flights, preferences)
    comparison = flight_ranker.compare(flights[:3])
"""

import logging
from typing import Dict, List, Optional

from app.conversation.models import (
    ComparisonEntry,
    FlightComparison,
    FlightRecommendation,
    FlightResult,
    RecommendationCategory,
    RecommendationSet,
    UserPreferences,
)
from services.exceptions import ValidationError

logger = logging.getLogger(__name__)


def _money(value: float) -> str:
    return f"{value:.2f}".rstrip("0").rstrip(".")


def _hours(minutes: float) -> int:
    return int(minutes / 60 + 0.5)


class FlightRanker:

    PRICE_WEIGHTS = {"budget": 0.50, "mid-range": 0.30, "premium": 0.15}
    DEFAULT_PRICE_WEIGHT = 0.30
    DURATION_WEIGHT = 0.25
    STOPS_WEIGHT = 0.20
    TIME_WEIGHT = 0.15
    AIRLINE_WEIGHT = 0.10

    # Same stop scores are used for ranking and for comparisons
    STOP_SCORES = {0: 1.0, 1: 0.6}
    MULTI_STOP_SCORE = 0.3

    TIME_WINDOWS = {
        "morning": (6, 12),
        "afternoon": (12, 18),
        "evening": (18, 24),
    }

    DEFAULT_PRIORITIES = ["price", "duration", "convenience"]
    PRIORITY_TO_CATEGORY = {
        "price": RecommendationCategory.CHEAPEST,
        "duration": RecommendationCategory.FASTEST,
        "convenience": RecommendationCategory.MOST_CONVENIENT,
    }
    # Category iteration order when picking alternatives
    CATEGORY_ORDER = [
        RecommendationCategory.BEST_VALUE,
        RecommendationCategory.FASTEST,
        RecommendationCategory.CHEAPEST,
        RecommendationCategory.MOST_CONVENIENT,
    ]
    MAX_ALTERNATIVES = 3
    MAX_INSIGHTS = 3

    DEFAULT_TIPS = [
        "Book flights on Tuesday or Wednesday for better prices",
        "Arrive at the airport 2 hours early for domestic flights",
        "Check airline baggage policies before packing",
    ]

    # ========================================
    # SCORING FUNCTIONS
    # ========================================

    @staticmethod
    def _normalize(value: float, min_v: float, max_v: float) -> float:
        """Lower value = higher score. Identical values all score 1."""
        if max_v == min_v:
            return 1.0
        return (max_v - value) / (max_v - min_v)

    @classmethod
    def stops_score(cls, stops: int) -> float:
        return cls.STOP_SCORES.get(stops, cls.MULTI_STOP_SCORE)

    @classmethod
    def time_score(cls, flight: FlightResult, time_preference: Optional[str]) -> float:
        hour = flight.departure_time.hour
        window = cls.TIME_WINDOWS.get(time_preference or "")
        if window:
            start, end = window
            return 1.0 if start <= hour < end else 0.3
        # No preference: anything between 06:00 and 22:59 is reasonable
        return 0.8 if 6 <= hour <= 22 else 0.4

    @staticmethod
    def airline_score(flight: FlightResult, preferred: List[str]) -> float:
        if not preferred:
            return 0.5
        return 1.0 if flight.airline in preferred else 0.2

    @staticmethod
    def categorize(flight: FlightResult, flights: List[FlightResult]) -> RecommendationCategory:
        min_price = min(f.price for f in flights)
        min_duration = min(f.duration for f in flights)
        has_direct = any(f.stops == 0 for f in flights)

        if flight.price == min_price:
            return RecommendationCategory.CHEAPEST
        if flight.duration == min_duration:
            return RecommendationCategory.FASTEST
        if has_direct and flight.stops == 0:
            return RecommendationCategory.MOST_CONVENIENT
        return RecommendationCategory.BEST_VALUE

    def score_flights(
        self,
        flights: List[FlightResult],
        preferences: Optional[UserPreferences] = None,
    ) -> List[FlightRecommendation]:
        """Score every flight. Output order matches input order."""
        if not flights:
            return []
        prefs = preferences or UserPreferences()

        prices = [f.price for f in flights]
        durations = [f.duration for f in flights]
        min_price, max_price = min(prices), max(prices)
        min_dur, max_dur = min(durations), max(durations)
        price_weight = self.PRICE_WEIGHTS.get(prefs.budget_range or "", self.DEFAULT_PRICE_WEIGHT)

        scored = []
        for flight in flights:
            reasons = []

            price_score = self._normalize(flight.price, min_price, max_price)
            if flight.price == min_price:
                reasons.append("Lowest price available")
            elif price_score > 0.8:
                reasons.append("Great value for money")

            duration_score = self._normalize(flight.duration, min_dur, max_dur)
            if flight.duration == min_dur:
                reasons.append("Shortest flight time")
            elif duration_score > 0.8:
                reasons.append("Quick flight duration")

            stops_score = self.stops_score(flight.stops)
            if flight.stops == 0:
                reasons.append("Direct flight - no layovers")
            elif flight.stops == 1:
                reasons.append("Only one stop")

            time_score = self.time_score(flight, prefs.time_preference)
            if time_score > 0.8:
                reasons.append("Convenient departure time")

            airline_score = self.airline_score(flight, prefs.airline_preferences)
            if airline_score > 0.8:
                reasons.append("Preferred airline")

            score = (
                price_score * price_weight
                + duration_score * self.DURATION_WEIGHT
                + stops_score * self.STOPS_WEIGHT
                + time_score * self.TIME_WEIGHT
                + airline_score * self.AIRLINE_WEIGHT
            )

            scored.append(FlightRecommendation(
                flight=flight,
                score=round(score, 4),
                reasons=reasons,
                category=self.categorize(flight, flights),
            ))
        return scored

    # ========================================
    # RECOMMENDATIONS
    # ========================================

    @classmethod
    def group_by_category(
        cls, scored: List[FlightRecommendation]
    ) -> Dict[RecommendationCategory, List[FlightRecommendation]]:
        groups: Dict[RecommendationCategory, List[FlightRecommendation]] = {c: [] for c in cls.CATEGORY_ORDER}
        for rec in scored:
            groups[rec.category].append(rec)
        # Stable sort: equal scores keep search order
        for category in groups:
            groups[category].sort(key=lambda r: r.score, reverse=True)
        return groups

    @classmethod
    def select_primary(
        cls,
        groups: Dict[RecommendationCategory, List[FlightRecommendation]],
        preferences: Optional[UserPreferences] = None,
    ) -> Optional[FlightRecommendation]:
        priorities = (preferences.priority_factors if preferences else None) or cls.DEFAULT_PRIORITIES
        for factor in priorities:
            category = cls.PRIORITY_TO_CATEGORY.get(factor, RecommendationCategory.BEST_VALUE)
            if groups.get(category):
                return groups[category][0]

        everything = [rec for category in cls.CATEGORY_ORDER for rec in groups[category]]
        if not everything:
            return None
        return max(everything, key=lambda r: r.score)

    @classmethod
    def select_alternatives(
        cls,
        groups: Dict[RecommendationCategory, List[FlightRecommendation]],
        primary: FlightRecommendation,
    ) -> List[FlightRecommendation]:
        alternatives: List[FlightRecommendation] = []
        seen = {primary.flight.id}
        for category in cls.CATEGORY_ORDER:
            candidate = next((r for r in groups[category] if r.flight.id != primary.flight.id), None)
            if candidate and candidate.flight.id not in seen:
                alternatives.append(candidate)
                seen.add(candidate.flight.id)
        return alternatives[:cls.MAX_ALTERNATIVES]

    def recommend(
        self,
        flights: List[FlightResult],
        preferences: Optional[UserPreferences] = None,
        tips: Optional[List[str]] = None,
    ) -> RecommendationSet:
        """
        Full recommendation set: primary, up to 3 alternatives, insights, tips.

        Raises:
            ValidationError: if there are no flights to recommend from
        """
        if not flights:
            raise ValidationError("No flights available for recommendations")

        try:
            scored = self.score_flights(flights, preferences)
            groups = self.group_by_category(scored)
            primary = self.select_primary(groups, preferences)
            alternatives = self.select_alternatives(groups, primary)
            insights = self.insights(flights)
        except Exception as e:
            logger.error(f"[FlightRanker] Scoring failed, using fallback recommendations: {e}")
            return self.fallback_recommendations(flights)

        logger.debug(
            f"[FlightRanker] Primary {primary.flight.id} ({primary.category.value}), "
            f"{len(alternatives)} alternatives"
        )

        return RecommendationSet(
            primary=primary,
            alternatives=alternatives,
            insights=insights,
            tips=list(tips) if tips else list(self.DEFAULT_TIPS),
        )

    def fallback_recommendations(self, flights: List[FlightResult]) -> RecommendationSet:
        """Cheapest first, then fastest and best direct flight. Used when scoring itself fails."""
        if not flights:
            raise ValidationError("No flights available for recommendations")

        by_price = sorted(flights, key=lambda f: f.price)
        by_duration = sorted(flights, key=lambda f: f.duration)
        direct = [f for f in flights if f.stops == 0]

        primary = FlightRecommendation(
            flight=by_price[0], score=0.8, reasons=["Lowest price available"],
            category=RecommendationCategory.CHEAPEST,
        )
        alternatives = []
        if by_duration[0].id != primary.flight.id:
            alternatives.append(FlightRecommendation(
                flight=by_duration[0], score=0.7, reasons=["Shortest flight time"],
                category=RecommendationCategory.FASTEST,
            ))
        if direct and direct[0].id not in {primary.flight.id, *(a.flight.id for a in alternatives)}:
            alternatives.append(FlightRecommendation(
                flight=direct[0], score=0.6, reasons=["Direct flight - no layovers"],
                category=RecommendationCategory.MOST_CONVENIENT,
            ))

        return RecommendationSet(
            primary=primary,
            alternatives=alternatives[:2],
            insights=["Compare prices and flight times to find your best option"],
            tips=["Book in advance for better prices", "Check airline policies before booking"],
        )

    # ========================================
    # INSIGHTS
    # ========================================

    def insights(self, flights: List[FlightResult]) -> List[str]:
        if not flights:
            return []
        insights = []

        prices = [f.price for f in flights]
        min_price, max_price = min(prices), max(prices)
        if max_price > min_price * 1.5:
            insights.append(
                f"Prices vary significantly (${_money(min_price)} - ${_money(max_price)}). "
                "Consider flights with stops for savings."
            )

        direct = [f for f in flights if f.stops == 0]
        connecting = [f for f in flights if f.stops > 0]
        if direct and connecting:
            avg_direct = sum(f.duration for f in direct) / len(direct)
            avg_connecting = sum(f.duration for f in connecting) / len(connecting)
            if avg_connecting > avg_direct * 1.3:
                saved = _hours(avg_connecting - avg_direct)
                insights.append(f"Direct flights save significant time ({saved} hours on average).")

        airlines = {f.airline for f in flights}
        if len(airlines) > 3:
            insights.append(
                f"Multiple airlines available ({len(airlines)} options) - compare services and policies."
            )

        morning = sum(1 for f in flights if f.departure_time.hour < 12)
        afternoon = sum(1 for f in flights if 12 <= f.departure_time.hour < 18)
        if morning > afternoon * 2:
            insights.append(
                "More morning departure options available - consider early flights for better selection."
            )

        return insights[:self.MAX_INSIGHTS]

    # ========================================
    # COMPARISON
    # ========================================

    def compare(self, flights: List[FlightResult]) -> FlightComparison:
        """
        Side-by-side advantages and disadvantages.

        Raises:
            ValidationError: with fewer than 2 flights
        """
        if len(flights) < 2:
            raise ValidationError("Need at least 2 flights to compare")

        prices = [f.price for f in flights]
        durations = [f.duration for f in flights]
        min_price, max_price = min(prices), max(prices)
        min_dur, max_dur = min(durations), max(durations)
        min_stops = min(f.stops for f in flights)

        entries = []
        for flight in flights:
            advantages, disadvantages = [], []

            if flight.price == min_price:
                advantages.append("Lowest price")
            elif flight.price > min_price * 1.2:
                disadvantages.append("Higher price")

            if flight.duration == min_dur:
                advantages.append("Shortest flight time")
            elif flight.duration > min_dur * 1.3:
                disadvantages.append("Longer flight time")

            if flight.stops == min_stops:
                advantages.append("Direct flight" if flight.stops == 0 else "Fewest stops")
            else:
                disadvantages.append(f"{flight.stops} stop{'s' if flight.stops > 1 else ''}")

            hour = flight.departure_time.hour
            if 8 <= hour <= 18:
                advantages.append("Convenient departure time")
            elif hour < 6 or hour > 22:
                disadvantages.append("Early/late departure")

            entries.append(ComparisonEntry(flight=flight, advantages=advantages, disadvantages=disadvantages))

        summary = (
            f"Comparing {len(flights)} flights: "
            f"Price range ${_money(min_price)}-${_money(max_price)}, "
            f"Duration {_hours(min_dur)}h-{_hours(max_dur)}h"
        )
        return FlightComparison(entries=entries, summary=summary)


# ============================================================
# SINGLETON INSTANCE
# ============================================================

flight_ranker = FlightRanker()
