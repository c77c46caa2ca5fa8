"""
Transit Reference Data & Fleet Simulation
=========================================

Static routes/schedules for the Tshwane BRT network and a random-walk
simulation of bus positions. Nothing here is persisted; every session
starts from the initial fleet.
"""

import copy
import random
from dataclasses import replace
from typing import List, Optional

from .models import Bus, BusStatus, Route, ScheduleItem

# Pretoria / Tshwane city centre
CENTER_LAT = -25.7479
CENTER_LNG = 28.2293

# Max movement per tick in degrees (each axis)
STEP_DEGREES = 0.002

ROUTES: List[Route] = [
    Route("T1", "CBD to Hatfield"),
    Route("T2", "Wonderboom Junction to CBD"),
    Route("C1", "Menlyn Maine to CBD"),
]

INITIAL_BUSES: List[Bus] = [
    Bus("B-101", "T1", "T1 (CBD to Hatfield)", -25.7461, 28.2315, BusStatus.ON_TIME, 45, "Hatfield Station"),
    Bus("B-102", "T2", "T2 (Wonderboom)", -25.7313, 28.1950, BusStatus.DELAYED, 80, "Bloed Street"),
    Bus("B-103", "C1", "C1 (Menlyn)", -25.7830, 28.2750, BusStatus.ON_TIME, 20, "Menlyn Maine"),
]

SCHEDULES: List[ScheduleItem] = [
    ScheduleItem("S1", "T1", "Hatfield Station", "08:00", "08:05"),
    ScheduleItem("S2", "T1", "Loftus Versfeld", "08:15", "08:18"),
    ScheduleItem("S3", "T1", "CBD - General Hospital", "08:30", "08:35"),
    ScheduleItem("S4", "T2", "Wonderboom Junction", "08:10", "08:15"),
    ScheduleItem("S5", "T2", "Moses Mabhida", "08:40", "08:45"),
    ScheduleItem("S6", "C1", "Menlyn Maine", "07:30", "07:35"),
    ScheduleItem("S7", "C1", "Brooklyn", "07:50", "07:55"),
]


def route_label(route_id: str) -> str:
    """Human label for a route id, or the id itself when unknown."""
    for route in ROUTES:
        if route.id == route_id:
            return route.label
    return route_id


def schedules_for_route(route_id: str) -> List[ScheduleItem]:
    return [item for item in SCHEDULES if item.route_id == route_id]


def get_schedule_item(schedule_id: str) -> Optional[ScheduleItem]:
    for item in SCHEDULES:
        if item.id == schedule_id:
            return item
    return None


def update_bus_position(bus: Bus, rng: Optional[random.Random] = None) -> Bus:
    """One step of the random walk. Returns a new Bus."""
    rng = rng or random
    lat_move = (rng.random() - 0.5) * STEP_DEGREES
    lng_move = (rng.random() - 0.5) * STEP_DEGREES
    return replace(bus, latitude=bus.latitude + lat_move, longitude=bus.longitude + lng_move)


class FleetSimulator:
    """
    Per-session fleet state.

    Usage:
        fleet = FleetSimulator()
        fleet.tick()
        bus = fleet.get("B-102")
    """

    def __init__(self, rng: Optional[random.Random] = None):
        self._rng = rng or random.Random()
        self.reset()

    def reset(self) -> None:
        self._buses = [copy.copy(bus) for bus in INITIAL_BUSES]

    @property
    def buses(self) -> List[Bus]:
        return list(self._buses)

    def tick(self) -> List[Bus]:
        """Advance every bus one step and return the new positions."""
        self._buses = [update_bus_position(bus, self._rng) for bus in self._buses]
        return self.buses

    def get(self, bus_id: str) -> Optional[Bus]:
        for bus in self._buses:
            if bus.id == bus_id:
                return bus
        return None
