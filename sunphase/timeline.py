#!/usr/bin/env python3
"""Solar timeline math: offsets, ordering, active window, next wakeup.

Everything here is pure: no clocks, no timers, no I/O. The phase monitor
feeds in the oracle output and "now" and gets back a PhaseState plus the
instant it should wake up again.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, Iterable, Mapping, Optional, Tuple

from sunphase.events import OFFSETTABLE_EVENTS, SunEvent, ordered_events

# Shown instead of a time when the oracle has no instant for an event
NOT_AVAILABLE = "N/A"

# Wake just past a boundary so a slightly early timer never lands before it
WAKEUP_BUFFER = timedelta(seconds=1)

# Re-check interval when no boundary remains in today's timeline
FALLBACK_INTERVAL = timedelta(hours=1)

Timeline = Tuple[Tuple[SunEvent, datetime], ...]


@dataclass(frozen=True)
class SensorReading:
    """Value published for one solar event sensor."""
    occupied: bool
    display_time: str

    def to_dict(self) -> Dict[str, object]:
        return {"occupied": self.occupied, "display_time": self.display_time}


@dataclass(frozen=True)
class PhaseState:
    """Derived state of one location at one instant.

    Attributes:
        active_event: The event whose window contains ``computed_at``, or
            None when the timeline is empty.
        sensors: Reading for every enabled event, in declaration order.
        computed_at: The "now" this state was resolved for.
        timeline: The ordered, offset-adjusted timeline it was resolved from.
    """
    active_event: Optional[SunEvent]
    sensors: Dict[SunEvent, SensorReading] = field(default_factory=dict)
    computed_at: Optional[datetime] = None
    timeline: Timeline = ()

    def to_dict(self) -> Dict[str, object]:
        return {
            "active_event": self.active_event.value if self.active_event else None,
            "computed_at": self.computed_at.isoformat() if self.computed_at else None,
            "sensors": {event.value: reading.to_dict() for event, reading in self.sensors.items()},
            "timeline": [[event.value, instant.isoformat()] for event, instant in self.timeline],
        }


def apply_offsets(
    sun_times: Mapping[SunEvent, Optional[datetime]],
    offsets: Mapping[SunEvent, int],
) -> Dict[SunEvent, Optional[datetime]]:
    """Shift the offsettable events by their configured minutes.

    Returns a new mapping; the input is left untouched. Events other than
    sunriseEnd/sunsetStart, missing instants, and zero offsets pass through.
    """
    adjusted = dict(sun_times)
    for event in OFFSETTABLE_EVENTS:
        minutes = offsets.get(event) or 0
        instant = adjusted.get(event)
        if minutes and isinstance(instant, datetime):
            adjusted[event] = instant + timedelta(minutes=minutes)
    return adjusted


def build_timeline(
    sun_times: Mapping[SunEvent, Optional[datetime]],
    enabled: Iterable[SunEvent],
) -> Timeline:
    """Order the enabled events that have a valid instant.

    Candidates are collected in declaration order and sorted stably, so
    events sharing an instant keep their declaration order.
    """
    candidates = [
        (event, sun_times.get(event))
        for event in ordered_events(enabled)
        if isinstance(sun_times.get(event), datetime)
    ]
    return tuple(sorted(candidates, key=lambda item: item[1]))


def resolve_active_event(timeline: Timeline, now: datetime) -> Optional[SunEvent]:
    """Find the event whose half-open window contains ``now``.

    Before the first event of the day, the last event of today's timeline
    stands in for yesterday's terminal phase. This is an approximation:
    yesterday's real timeline is never computed.
    """
    if not timeline:
        return None

    for index, (event, start) in enumerate(timeline):
        end = timeline[index + 1][1] if index + 1 < len(timeline) else None
        if now >= start and (end is None or now < end):
            return event

    # now precedes the first event
    return timeline[-1][0]


def format_event_time(instant: Optional[datetime]) -> str:
    """Locale wall-clock time of an instant in the host timezone."""
    if not isinstance(instant, datetime):
        return NOT_AVAILABLE
    return instant.astimezone().strftime("%X")


def resolve_phase_state(
    sun_times: Mapping[SunEvent, Optional[datetime]],
    enabled: Iterable[SunEvent],
    now: datetime,
) -> PhaseState:
    """Build the full PhaseState for offset-adjusted ``sun_times``."""
    enabled = ordered_events(enabled)
    timeline = build_timeline(sun_times, enabled)
    active = resolve_active_event(timeline, now)

    sensors = {
        event: SensorReading(
            occupied=event == active,
            display_time=format_event_time(sun_times.get(event)),
        )
        for event in enabled
    }
    return PhaseState(active_event=active, sensors=sensors, computed_at=now, timeline=timeline)


def compute_next_wakeup(timeline: Timeline, now: datetime) -> datetime:
    """Instant of the next recomputation.

    One second past the earliest boundary still ahead of ``now``, or one
    hour from now when today's timeline is exhausted or empty.
    """
    upcoming = [instant for _, instant in timeline if instant > now]
    if upcoming:
        return min(upcoming) + WAKEUP_BUFFER
    return now + FALLBACK_INTERVAL
