#!/usr/bin/env python3
"""Sensor publishers: where phase monitors send their readings.

The monitor only knows the SensorPublisher interface. ``SensorRegistry``
keeps the latest reading per sensor in memory; ``HomeAssistantPublisher``
additionally mirrors every change into Home Assistant as an occupancy
binary sensor through the REST API.
"""

import asyncio
import logging
import re
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, Optional, Set, Tuple

from aiohttp import ClientError, ClientSession, ClientTimeout

from sunphase.events import SunEvent
from sunphase.timeline import SensorReading

logger = logging.getLogger(__name__)


def sensor_name(location: str, event: SunEvent) -> str:
    """Human-readable sensor name, e.g. ``"Home Solar Noon"``."""
    return f"{location} {event.display_name}"


def slugify(value: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "_", value.lower()).strip("_")
    return slug or "sunphase"


def entity_id_for(location: str, event: SunEvent) -> str:
    """Home Assistant entity id, e.g. ``binary_sensor.home_sunrise_end``."""
    event_slug = re.sub(r"(?<!^)(?=[A-Z])", "_", event.value).lower()
    return f"binary_sensor.{slugify(location)}_{event_slug}"


class SensorPublisher(ABC):
    """Abstract sink for solar event sensor readings."""

    @abstractmethod
    def publish(self, location: str, event: SunEvent, reading: SensorReading) -> None:
        """Set the value of one sensor. Must be idempotent."""
        pass

    @abstractmethod
    def sync_sensors(self, location: str, enabled: Iterable[SunEvent]) -> None:
        """Declare the authoritative sensor set; retract anything else."""
        pass

    @abstractmethod
    def remove_location(self, location: str) -> None:
        """Retract every sensor of a location that is no longer configured."""
        pass


class SensorRegistry(SensorPublisher):
    """In-memory store of the latest reading for every sensor."""

    def __init__(self):
        self._sensors: Dict[str, Dict[SunEvent, SensorReading]] = {}
        self._undelivered: Set[Tuple[str, SunEvent]] = set()

    def publish(self, location: str, event: SunEvent, reading: SensorReading) -> None:
        sensors = self._sensors.setdefault(location, {})
        key = (location, event)
        if sensors.get(event) == reading and key not in self._undelivered:
            return
        sensors[event] = reading
        self._undelivered.discard(key)
        self._sensor_changed(location, event, reading)

    def sync_sensors(self, location: str, enabled: Iterable[SunEvent]) -> None:
        enabled = set(enabled)
        sensors = self._sensors.setdefault(location, {})
        stale = [event for event in sensors if event not in enabled]
        for event in stale:
            del sensors[event]
            self._undelivered.discard((location, event))
            logger.info(f"Removing obsolete sensor: {sensor_name(location, event)}")
            self._sensor_retracted(location, event)

    def remove_location(self, location: str) -> None:
        sensors = self._sensors.pop(location, {})
        for event in sensors:
            self._undelivered.discard((location, event))
            self._sensor_retracted(location, event)
        if sensors:
            logger.info(f"Removed {len(sensors)} sensor(s) for location '{location}'")

    def mark_undelivered(self, location: str, event: SunEvent, reading: SensorReading) -> None:
        """Force the next publish of ``reading`` through even though it is unchanged."""
        if self._sensors.get(location, {}).get(event) == reading:
            self._undelivered.add((location, event))

    def get_reading(self, location: str, event: SunEvent) -> Optional[SensorReading]:
        return self._sensors.get(location, {}).get(event)

    def get_sensors(self, location: str) -> Dict[SunEvent, SensorReading]:
        return dict(self._sensors.get(location, {}))

    def get_locations(self) -> Tuple[str, ...]:
        return tuple(self._sensors)

    def _sensor_changed(self, location: str, event: SunEvent, reading: SensorReading) -> None:
        """Hook for subclasses; called only when a reading actually changes."""

    def _sensor_retracted(self, location: str, event: SunEvent) -> None:
        """Hook for subclasses; called once per retracted sensor."""


class HomeAssistantPublisher(SensorRegistry):
    """Mirror sensor changes into Home Assistant via ``/api/states``.

    ``publish`` stays synchronous: changes are queued and a worker task
    started by ``start()`` delivers them in order.
    """

    def __init__(
        self,
        base_url: str,
        access_token: str,
        session: Optional[ClientSession] = None,
        request_timeout: float = 10.0,
    ):
        super().__init__()
        self.base_url = base_url.rstrip("/")
        self.access_token = access_token
        self.request_timeout = request_timeout
        self._session = session
        self._owns_session = session is None
        self._queue: "asyncio.Queue[Tuple[str, str, SunEvent, Optional[SensorReading]]]" = asyncio.Queue()
        self._worker: Optional[asyncio.Task] = None

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def build_state_payload(self, location: str, event: SunEvent, reading: SensorReading) -> Dict[str, Any]:
        return {
            "state": "on" if reading.occupied else "off",
            "attributes": {
                "device_class": "occupancy",
                "friendly_name": sensor_name(location, event),
                "event_time": reading.display_time,
                "description": event.description,
                "solar_event": event.value,
                "location": location,
            },
        }

    def _sensor_changed(self, location: str, event: SunEvent, reading: SensorReading) -> None:
        self._queue.put_nowait(("POST", location, event, reading))

    def _sensor_retracted(self, location: str, event: SunEvent) -> None:
        self._queue.put_nowait(("DELETE", location, event, None))

    async def start(self) -> None:
        """Open the HTTP session and start delivering queued changes."""
        if self._worker and not self._worker.done():
            return
        if self._session is None:
            self._session = ClientSession(timeout=ClientTimeout(total=self.request_timeout))
            self._owns_session = True
        self._worker = asyncio.create_task(self._deliver_forever())
        logger.info(f"Home Assistant publisher started for {self.base_url}")

    async def stop(self) -> None:
        """Stop the worker and close the session if we opened it."""
        if self._worker and not self._worker.done():
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
        self._worker = None
        if self._session is not None and self._owns_session:
            await self._session.close()
            self._session = None

    async def flush(self) -> None:
        """Deliver everything queued so far (used at startup and in tests)."""
        while not self._queue.empty():
            item = self._queue.get_nowait()
            try:
                await self._deliver(*item)
            finally:
                self._queue.task_done()

    async def _deliver_forever(self) -> None:
        while True:
            method, location, event, reading = await self._queue.get()
            try:
                await self._deliver(method, location, event, reading)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Error delivering {entity_id_for(location, event)} to Home Assistant: {e}")
            finally:
                self._queue.task_done()

    async def _deliver(self, method: str, location: str, event: SunEvent, reading: Optional[SensorReading]) -> None:
        payload = self.build_state_payload(location, event, reading) if reading is not None else None
        delivered = False
        try:
            delivered = await self._send(method, entity_id_for(location, event), payload)
        finally:
            if not delivered and reading is not None:
                self.mark_undelivered(location, event, reading)

    async def _send(self, method: str, entity_id: str, payload: Optional[Dict[str, Any]]) -> bool:
        if self._session is None:
            logger.error("Home Assistant publisher not started, cannot send")
            return False

        url = f"{self.base_url}/api/states/{entity_id}"
        headers = {"Authorization": f"Bearer {self.access_token}"}
        try:
            async with self._session.request(method, url, json=payload, headers=headers) as resp:
                if resp.status >= 400 and not (method == "DELETE" and resp.status == 404):
                    body = await resp.text()
                    logger.warning(f"Home Assistant rejected {method} {entity_id}: {resp.status} {body}")
                    return False
        except (ClientError, asyncio.TimeoutError) as e:
            logger.error(f"Failed to {method} {entity_id}: {e}")
            return False

        logger.debug(f"{method} {entity_id} ok")
        return True
