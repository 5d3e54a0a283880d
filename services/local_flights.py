# services/local_flights.py
"""
Local flight index.

Deterministic flight inventory generated on demand for any route and date.
Serves as the search fallback whenever the remote index is failing (and as
the primary index when no remote index is configured). The same route and
date always produce the same flights, so ids stay resolvable across turns.
"""

import logging
import random
from datetime import date, datetime, timedelta, timezone
from typing import Dict, List, Optional

from app.conversation.models import Airport, FlightResult, SearchFilters
from services.flight_search import apply_filters

logger = logging.getLogger(__name__)

ID_PREFIX = "LF-"


AIRPORTS: Dict[str, Airport] = {
    a.code: a for a in [
        Airport(code="JFK", name="John F. Kennedy International Airport", city="New York", country="USA", timezone="America/New_York"),
        Airport(code="LAX", name="Los Angeles International Airport", city="Los Angeles", country="USA", timezone="America/Los_Angeles"),
        Airport(code="SFO", name="San Francisco International Airport", city="San Francisco", country="USA", timezone="America/Los_Angeles"),
        Airport(code="ORD", name="O'Hare International Airport", city="Chicago", country="USA", timezone="America/Chicago"),
        Airport(code="MIA", name="Miami International Airport", city="Miami", country="USA", timezone="America/New_York"),
        Airport(code="BOS", name="Logan International Airport", city="Boston", country="USA", timezone="America/New_York"),
        Airport(code="SEA", name="Seattle-Tacoma International Airport", city="Seattle", country="USA", timezone="America/Los_Angeles"),
        Airport(code="LHR", name="London Heathrow Airport", city="London", country="UK", timezone="Europe/London"),
        Airport(code="CDG", name="Charles de Gaulle Airport", city="Paris", country="France", timezone="Europe/Paris"),
        Airport(code="FRA", name="Frankfurt Airport", city="Frankfurt", country="Germany", timezone="Europe/Berlin"),
        Airport(code="IST", name="Istanbul Airport", city="Istanbul", country="Turkey", timezone="Europe/Istanbul"),
        Airport(code="DXB", name="Dubai International Airport", city="Dubai", country="UAE", timezone="Asia/Dubai"),
        Airport(code="NRT", name="Narita International Airport", city="Tokyo", country="Japan", timezone="Asia/Tokyo"),
        Airport(code="SIN", name="Singapore Changi Airport", city="Singapore", country="Singapore", timezone="Asia/Singapore"),
    ]
}

REGIONS = {
    "JFK": "na", "LAX": "na", "SFO": "na", "ORD": "na", "MIA": "na", "BOS": "na", "SEA": "na",
    "LHR": "eu", "CDG": "eu", "FRA": "eu", "IST": "eu",
    "DXB": "me",
    "NRT": "asia", "SIN": "asia",
}

# Direct flight time in minutes and base fare, by region pair
ROUTE_PROFILES = {
    frozenset(["na"]): (300, 320.0),
    frozenset(["eu"]): (150, 180.0),
    frozenset(["asia"]): (420, 450.0),
    frozenset(["na", "eu"]): (420, 650.0),
    frozenset(["na", "asia"]): (720, 1100.0),
    frozenset(["na", "me"]): (780, 950.0),
    frozenset(["eu", "me"]): (400, 480.0),
    frozenset(["eu", "asia"]): (720, 850.0),
    frozenset(["me", "asia"]): (450, 500.0),
}
DEFAULT_PROFILE = (480, 600.0)

AIRLINES = [
    ("American Airlines", "AA"),
    ("Delta", "DL"),
    ("United", "UA"),
    ("British Airways", "BA"),
    ("Air France", "AF"),
    ("Lufthansa", "LH"),
    ("Emirates", "EK"),
    ("Turkish Airlines", "TK"),
]

DEPARTURE_HOURS = [6, 9, 13, 17, 21]


def _airport(code: str) -> Airport:
    return AIRPORTS.get(code) or Airport(code=code, name=f"{code} Airport", city=code)


class LocalFlightIndex:

    def __init__(self, flights_per_route: int = 5):
        self.flights_per_route = min(flights_per_route, len(DEPARTURE_HOURS))

    @staticmethod
    def _profile(origin: str, destination: str):
        regions = frozenset([REGIONS.get(origin, "other"), REGIONS.get(destination, "other")])
        return ROUTE_PROFILES.get(regions, DEFAULT_PROFILE)

    def _generate(self, origin: str, destination: str, departure_date: date) -> List[FlightResult]:
        rng = random.Random(f"{origin}-{destination}-{departure_date.isoformat()}")
        base_minutes, base_price = self._profile(origin, destination)

        flights = []
        for i in range(self.flights_per_route):
            airline, code = AIRLINES[rng.randrange(len(AIRLINES))]
            stops = 0 if i % 2 == 0 else rng.choice([1, 1, 2])
            duration = base_minutes + stops * rng.randint(70, 150)
            # Connections are usually cheaper
            price = round(base_price * rng.uniform(0.8, 1.2) * (1.0 - 0.12 * stops))
            departure = datetime(
                departure_date.year, departure_date.month, departure_date.day,
                DEPARTURE_HOURS[i], rng.choice([0, 15, 30, 45]), tzinfo=timezone.utc,
            )
            flights.append(FlightResult(
                id=f"{ID_PREFIX}{origin}{destination}-{departure_date.strftime('%Y%m%d')}-{i}",
                airline=airline,
                flight_number=f"{code}{rng.randint(100, 9999)}",
                origin=_airport(origin),
                destination=_airport(destination),
                departure_time=departure,
                arrival_time=departure + timedelta(minutes=duration),
                duration=duration,
                stops=stops,
                price=float(price),
                available_seats=rng.randint(1, 40),
            ))
        return flights

    async def search(
        self,
        origin: str,
        destination: str,
        departure_date: date,
        passengers: int = 1,
        filters: Optional[SearchFilters] = None,
    ) -> List[FlightResult]:
        origin, destination = origin.upper(), destination.upper()
        if origin == destination:
            return []
        flights = [f for f in self._generate(origin, destination, departure_date) if f.available_seats >= passengers]
        logger.info(f"[LocalFlightIndex] {len(flights)} flights for {origin}→{destination} on {departure_date}")
        return apply_filters(flights, filters)

    async def get_by_id(self, flight_id: str) -> Optional[FlightResult]:
        # LF-<ORIGIN><DEST>-<YYYYMMDD>-<n>
        try:
            _, route, day, _ = flight_id.split("-")
            departure_date = datetime.strptime(day, "%Y%m%d").date()
        except ValueError:
            return None
        if len(route) != 6:
            return None
        for flight in self._generate(route[:3], route[3:], departure_date):
            if flight.id == flight_id:
                return flight
        return None
