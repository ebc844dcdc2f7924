#!/usr/bin/env python3
"""Per-location phase monitor.

A PhaseMonitor owns one location's configuration, its latest PhaseState and
exactly one pending timer. Every wakeup recomputes the timeline from
scratch, publishes one reading per enabled event and arms the next wakeup
just past the following phase boundary.

Lifecycle::

    Idle --start()--> Armed --timer/refresh()--> Armed ... --stop()--> Idle

A stopped monitor is not reusable; a changed configuration means a new
monitor.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable, Optional, Tuple

from sunphase.config import LocationConfig
from sunphase.events import SunEvent, ordered_events
from sunphase.exceptions import ConfigError, MonitorStoppedError
from sunphase.oracle import Oracle, sun_times
from sunphase.publisher import SensorPublisher
from sunphase.timeline import (
    FALLBACK_INTERVAL,
    PhaseState,
    apply_offsets,
    compute_next_wakeup,
    resolve_phase_state,
)

logger = logging.getLogger(__name__)

# Never arm a timer sooner than this, whatever the computed wait
MIN_DELAY_SECONDS = 1.0


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(instant: datetime) -> datetime:
    if instant.tzinfo is None:
        return instant.replace(tzinfo=timezone.utc)
    return instant


class PhaseMonitor:
    """Track the active solar phase of one location and keep it current."""

    def __init__(
        self,
        config: LocationConfig,
        publisher: SensorPublisher,
        *,
        oracle: Oracle = sun_times,
        clock: Callable[[], datetime] = utcnow,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ) -> None:
        """Initialize the monitor.

        Args:
            config: Validated location configuration.
            publisher: Receives one reading per enabled event every cycle.
            oracle: ``(instant, lat, lon) -> {SunEvent: datetime | None}``.
            clock: Returns the current instant.
            loop: Event loop used for timers; defaults to the running loop.
        """
        if not isinstance(config, LocationConfig):
            raise ConfigError(f"expected LocationConfig, got {type(config).__name__}")

        self.config = config
        self.publisher = publisher
        self._oracle = oracle
        self._clock = clock
        self._loop = loop

        self._enabled: Tuple[SunEvent, ...] = ordered_events(config.enabled_events)
        self._state: Optional[PhaseState] = None
        self._timer: Optional[asyncio.TimerHandle] = None
        self._next_wakeup: Optional[datetime] = None
        self._started = False
        self._stopped = False

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def enabled_events(self) -> Tuple[SunEvent, ...]:
        """Authoritative sensor set for this monitor, in declaration order."""
        return self._enabled

    @property
    def state(self) -> Optional[PhaseState]:
        return self._state

    @property
    def next_wakeup(self) -> Optional[datetime]:
        return self._next_wakeup

    @property
    def is_armed(self) -> bool:
        return self._timer is not None

    @property
    def is_stopped(self) -> bool:
        return self._stopped

    def start(self) -> PhaseState:
        """Publish the initial state and arm the first wakeup."""
        if self._stopped:
            raise MonitorStoppedError(f"monitor '{self.name}' has been stopped")
        if self._started:
            return self._state

        self._started = True
        logger.info(
            f"[{self.name}] Starting phase monitor: mode={self.config.mode.value}, "
            f"sensors={len(self._enabled)}, lat={self.config.latitude}, lon={self.config.longitude}"
        )
        self.publisher.sync_sensors(self.name, self._enabled)
        return self.refresh()

    def stop(self) -> None:
        """Cancel the pending wakeup. Safe to call more than once."""
        if not self._stopped:
            logger.debug(f"[{self.name}] Stopping phase monitor")
        self._stopped = True
        self._cancel_timer()
        self._next_wakeup = None

    def compute_state(self, now: datetime) -> PhaseState:
        """Resolve the PhaseState for ``now`` without side effects."""
        now = _as_utc(now)
        raw = self._oracle(now, self.config.latitude, self.config.longitude)
        adjusted = apply_offsets(raw, self.config.offsets)
        return resolve_phase_state(adjusted, self._enabled, now)

    def refresh(self, now: Optional[datetime] = None) -> PhaseState:
        """Recompute, publish and re-arm.

        If the recomputation fails the previous state is kept, a retry is
        armed one hour out, and the error is raised to the caller.

        Args:
            now: Instant to evaluate; defaults to the clock.

        Returns:
            The freshly computed PhaseState.
        """
        if self._stopped:
            raise MonitorStoppedError(f"monitor '{self.name}' has been stopped")

        self._cancel_timer()
        try:
            now = _as_utc(now or self._clock())
            state = self.compute_state(now)
            for event, reading in state.sensors.items():
                self.publisher.publish(self.name, event, reading)
        except Exception:
            self._schedule(FALLBACK_INTERVAL.total_seconds(), None)
            raise
        self._state = state

        if state.active_event:
            logger.info(f"[{self.name}] Current Solar Period: {state.active_event.display_name}")
        else:
            logger.warning(f"[{self.name}] No solar events available today")

        wakeup = compute_next_wakeup(state.timeline, now)
        self._schedule((wakeup - now).total_seconds(), wakeup)
        return state

    def _schedule(self, delay: float, wakeup: Optional[datetime]) -> None:
        if delay < MIN_DELAY_SECONDS:
            logger.debug(f"[{self.name}] Clamping wakeup delay {delay:.3f}s to {MIN_DELAY_SECONDS}s")
            delay = MIN_DELAY_SECONDS
        loop = self._loop or asyncio.get_running_loop()
        self._cancel_timer()
        self._timer = loop.call_later(delay, self._on_timer)
        self._next_wakeup = wakeup
        logger.debug(f"[{self.name}] Next update in {delay:.0f}s ({wakeup.isoformat() if wakeup else 'retry'})")

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_timer(self) -> None:
        self._timer = None
        if self._stopped:
            return
        try:
            self.refresh()
        except Exception as e:
            logger.error(f"[{self.name}] Error updating solar phase: {e}")
