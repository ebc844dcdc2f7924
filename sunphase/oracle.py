#!/usr/bin/env python3
"""Astronomical oracle: solar event instants for one solar day.

Given an instant and a pair of coordinates, returns one UTC datetime per
SunEvent for the solar day containing that instant. An event the sun never
reaches at that location (polar day/night, white nights) maps to None.

Event elevations follow the classic twilight definitions. The horizon
angles already include standard refraction, so astral is asked for plain
geometric elevations:

* sunrise / sunset            -0.833 deg (upper limb touches horizon)
* sunriseEnd / sunsetStart    -0.3 deg   (lower limb touches horizon)
* dawn / dusk                 -6 deg     (civil twilight)
* nauticalDawn / nauticalDusk -12 deg
* nightEnd / night            -18 deg    (astronomical twilight)
* goldenHourEnd / goldenHour  +6 deg
"""

import logging
from datetime import date, datetime, timedelta, timezone
from typing import Callable, Dict, Optional

from astral import LocationInfo, SunDirection
from astral.sun import noon, time_at_elevation

from sunphase.events import SunEvent

logger = logging.getLogger(__name__)

SunTimes = Dict[SunEvent, Optional[datetime]]
Oracle = Callable[[datetime, float, float], SunTimes]

# (event, elevation in degrees, direction) for every horizon crossing
ELEVATION_EVENTS = (
    (SunEvent.NIGHT_END, -18.0, SunDirection.RISING),
    (SunEvent.NAUTICAL_DAWN, -12.0, SunDirection.RISING),
    (SunEvent.DAWN, -6.0, SunDirection.RISING),
    (SunEvent.SUNRISE, -0.833, SunDirection.RISING),
    (SunEvent.SUNRISE_END, -0.3, SunDirection.RISING),
    (SunEvent.GOLDEN_HOUR_END, 6.0, SunDirection.RISING),
    (SunEvent.GOLDEN_HOUR, 6.0, SunDirection.SETTING),
    (SunEvent.SUNSET_START, -0.3, SunDirection.SETTING),
    (SunEvent.SUNSET, -0.833, SunDirection.SETTING),
    (SunEvent.DUSK, -6.0, SunDirection.SETTING),
    (SunEvent.NAUTICAL_DUSK, -12.0, SunDirection.SETTING),
    (SunEvent.NIGHT, -18.0, SunDirection.SETTING),
)

HALF_DAY = timedelta(hours=12)


def solar_date(instant: datetime, longitude: float) -> date:
    """Return the local mean solar date containing ``instant``.

    The solar day runs from one nadir to the next, so its noon is the
    transit closest to the instant.
    """
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=timezone.utc)
    local_mean = instant.astimezone(timezone.utc) + timedelta(hours=longitude / 15.0)
    return local_mean.date()


def _crossing(observer, elevation: float, direction, day: date, solar_noon: datetime) -> Optional[datetime]:
    """Find the crossing that belongs to the solar day around ``solar_noon``.

    astral answers per UTC calendar date, which far from Greenwich can be the
    neighbouring solar day. Rising crossings must fall in the twelve hours
    before noon, setting crossings in the twelve hours after it.
    """
    if direction == SunDirection.RISING:
        earliest, latest = solar_noon - HALF_DAY, solar_noon
    else:
        earliest, latest = solar_noon, solar_noon + HALF_DAY

    for candidate_day in (day, day - timedelta(days=1), day + timedelta(days=1)):
        try:
            crossing = time_at_elevation(
                observer,
                elevation,
                date=candidate_day,
                direction=direction,
                tzinfo=timezone.utc,
                with_refraction=False,
            )
        except ValueError:
            # Sun never reaches this elevation on that date
            continue
        if earliest <= crossing <= latest:
            return crossing
    return None


def sun_times(instant: datetime, latitude: float, longitude: float) -> SunTimes:
    """Compute all fourteen solar event instants for the day of ``instant``.

    Every rising event lies between nadir and solar noon and every setting
    event within twelve hours after noon, whatever the longitude.
    """
    day = solar_date(instant, longitude)
    observer = LocationInfo(
        name="Observer",
        region="",
        timezone="UTC",
        latitude=latitude,
        longitude=longitude,
    ).observer

    times: SunTimes = {event: None for event in SunEvent}

    solar_noon = noon(observer, date=day, tzinfo=timezone.utc)
    times[SunEvent.SOLAR_NOON] = solar_noon
    times[SunEvent.NADIR] = solar_noon - HALF_DAY

    for event, elevation, direction in ELEVATION_EVENTS:
        times[event] = _crossing(observer, elevation, direction, day, solar_noon)
        if times[event] is None:
            logger.debug(f"No {event.value} on {day} at ({latitude}, {longitude})")

    return times
