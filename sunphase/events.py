#!/usr/bin/env python3
"""Solar event catalogue and sensor modes.

The fourteen solar events are fixed at import time. Their declaration order
matters: it is the tie-break order whenever two events share an instant.
"""

import logging
from enum import Enum
from typing import Any, Dict, FrozenSet, Tuple

logger = logging.getLogger(__name__)


class SunEvent(Enum):
    """Named solar event, in declaration (tie-break) order."""
    NIGHT_END = "nightEnd"
    NAUTICAL_DAWN = "nauticalDawn"
    DAWN = "dawn"
    SUNRISE = "sunrise"
    SUNRISE_END = "sunriseEnd"
    GOLDEN_HOUR_END = "goldenHourEnd"
    SOLAR_NOON = "solarNoon"
    GOLDEN_HOUR = "goldenHour"
    SUNSET_START = "sunsetStart"
    SUNSET = "sunset"
    DUSK = "dusk"
    NAUTICAL_DUSK = "nauticalDusk"
    NIGHT = "night"
    NADIR = "nadir"

    @property
    def display_name(self) -> str:
        return SUN_EVENT_META[self][0]

    @property
    def description(self) -> str:
        return SUN_EVENT_META[self][1]


# Display name and description shown for each sensor
SUN_EVENT_META: Dict[SunEvent, Tuple[str, str]] = {
    SunEvent.NIGHT_END: ("Morning Twilight", "Astronomical twilight starts"),
    SunEvent.NAUTICAL_DAWN: ("Nautical Dawn", "Nautical twilight starts"),
    SunEvent.DAWN: ("Civil Dawn", "Civil twilight starts"),
    SunEvent.SUNRISE: ("First Light", "Sun starts appearing"),
    SunEvent.SUNRISE_END: ("Morning Golden Hour", "Sun is up, golden hour starts"),
    SunEvent.GOLDEN_HOUR_END: ("Daytime", "Golden hour ends, full day starts"),
    SunEvent.SOLAR_NOON: ("Solar Noon", "Sun at highest point"),
    SunEvent.GOLDEN_HOUR: ("Evening Golden Hour", "Evening golden hour starts"),
    SunEvent.SUNSET_START: ("Sunset", "Sun starts setting"),
    SunEvent.SUNSET: ("Evening Twilight", "Sun below horizon"),
    SunEvent.DUSK: ("Civil Dusk", "Civil twilight ends"),
    SunEvent.NAUTICAL_DUSK: ("Nautical Dusk", "Nautical twilight ends"),
    SunEvent.NIGHT: ("Nightfall", "Astronomical twilight ends"),
    SunEvent.NADIR: ("Deepest Night", "Darkest part of the night"),
}

# Only these two events accept a minute offset
OFFSETTABLE_EVENTS: Tuple[SunEvent, ...] = (SunEvent.SUNRISE_END, SunEvent.SUNSET_START)


class SensorMode(Enum):
    """Which subset of solar events a location publishes."""
    BASIC = "basic"
    EXTENDED = "extended"
    FULL = "full"

    @property
    def events(self) -> FrozenSet[SunEvent]:
        return MODE_EVENTS[self]

    @classmethod
    def parse(cls, value: Any) -> "SensorMode":
        """Parse a mode value, falling back to FULL for anything unknown."""
        if isinstance(value, cls):
            return value
        if value is None:
            return cls.FULL
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            logger.warning(f"Unknown sensor mode '{value}', defaulting to {cls.FULL.value}")
            return cls.FULL


MODE_EVENTS: Dict[SensorMode, FrozenSet[SunEvent]] = {
    SensorMode.BASIC: frozenset({SunEvent.SUNRISE, SunEvent.SUNSET}),
    SensorMode.EXTENDED: frozenset({
        SunEvent.DAWN,
        SunEvent.SUNRISE,
        SunEvent.SUNSET,
        SunEvent.DUSK,
    }),
    SensorMode.FULL: frozenset(SunEvent),
}


def ordered_events(events) -> Tuple[SunEvent, ...]:
    """Return the given events in declaration order."""
    wanted = set(events)
    return tuple(event for event in SunEvent if event in wanted)
