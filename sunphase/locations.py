#!/usr/bin/env python3
"""Location platform: one PhaseMonitor per configured location.

Reconciles the configured locations against the running monitors: new
locations get a monitor, changed ones (including a mode change) are torn
down and rebuilt, and locations no longer configured are stopped and their
sensors retracted.
"""

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional

from sunphase.config import (
    LocationConfig,
    check_unique_names,
    normalize_instances,
    parse_location,
)
from sunphase.exceptions import ConfigError
from sunphase.monitor import PhaseMonitor, utcnow
from sunphase.oracle import Oracle, sun_times
from sunphase.publisher import SensorPublisher
from sunphase.timeline import PhaseState

logger = logging.getLogger(__name__)


class SunPhasePlatform:
    """Owns the phase monitors of every configured location."""

    def __init__(
        self,
        publisher: SensorPublisher,
        *,
        oracle: Oracle = sun_times,
        clock: Callable[[], Any] = utcnow,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ):
        self.publisher = publisher
        self._oracle = oracle
        self._clock = clock
        self._loop = loop
        self.monitors: Dict[str, PhaseMonitor] = {}

    def load(self, raw_config: Any) -> List[LocationConfig]:
        """Validate raw configuration and reconcile monitors against it.

        Duplicate names raise ConfigError before any monitor is touched.
        Individually invalid records are logged and skipped.

        Returns:
            The location configs that were accepted.
        """
        records = normalize_instances(raw_config)
        check_unique_names(records)

        configs = []
        for index, record in enumerate(records):
            try:
                configs.append(parse_location(record))
            except ConfigError as e:
                logger.error(f"Skipping location #{index + 1}: {e}")

        self.reconcile(configs)
        return configs

    def reconcile(self, configs: List[LocationConfig]) -> None:
        """Create, rebuild, or remove monitors to match ``configs``."""
        names = [config.name for config in configs]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ConfigError(f"duplicate location names: {', '.join(duplicates)}")

        keep = set(names)

        for config in configs:
            existing = self.monitors.get(config.name)
            if existing is not None and existing.config == config:
                logger.info(f"Using existing monitor: {config.name}")
                continue

            if existing is not None:
                logger.info(f"Configuration changed for '{config.name}', rebuilding monitor")
                existing.stop()
                del self.monitors[config.name]
            else:
                logger.info(f"Creating new monitor: {config.name}")

            monitor = PhaseMonitor(
                config,
                self.publisher,
                oracle=self._oracle,
                clock=self._clock,
                loop=self._loop,
            )
            try:
                monitor.start()
            except Exception as e:
                logger.error(f"Error starting monitor for '{config.name}': {e}")
                monitor.stop()
                self.publisher.remove_location(config.name)
                continue
            self.monitors[config.name] = monitor

        for name in list(self.monitors):
            if name not in keep:
                logger.info(f"Removing obsolete location: {name}")
                self.monitors.pop(name).stop()
                self.publisher.remove_location(name)

    def get_monitor(self, name: str) -> Optional[PhaseMonitor]:
        return self.monitors.get(name)

    def refresh(self, name: str) -> PhaseState:
        """Force an immediate recomputation of one location."""
        monitor = self.monitors.get(name)
        if monitor is None:
            raise KeyError(name)
        return monitor.refresh()

    def states(self) -> Dict[str, Optional[PhaseState]]:
        return {name: monitor.state for name, monitor in self.monitors.items()}

    def shutdown(self) -> None:
        """Stop every monitor."""
        for monitor in self.monitors.values():
            monitor.stop()
        if self.monitors:
            logger.info(f"Stopped {len(self.monitors)} phase monitor(s)")
        self.monitors.clear()
