#!/usr/bin/env python3
"""Tests for the sensor registry and the Home Assistant publisher."""

import asyncio

import pytest
from aiohttp import ClientError

from sunphase.events import SunEvent
from sunphase.publisher import (
    HomeAssistantPublisher,
    SensorRegistry,
    entity_id_for,
    sensor_name,
    slugify,
)
from sunphase.timeline import SensorReading

ON = SensorReading(occupied=True, display_time="12:07:00")
OFF = SensorReading(occupied=False, display_time="12:07:00")


class RecordingRegistry(SensorRegistry):
    def __init__(self):
        super().__init__()
        self.changed = []
        self.retracted = []

    def _sensor_changed(self, location, event, reading):
        self.changed.append((location, event, reading))

    def _sensor_retracted(self, location, event):
        self.retracted.append((location, event))


class FakeResponse:
    def __init__(self, status, body=""):
        self.status = status
        self._body = body

    async def text(self):
        return self._body

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False


class FakeSession:
    """Stands in for aiohttp.ClientSession.request()."""

    def __init__(self, status=200, error=None):
        self.status = status
        self.error = error
        self.requests = []
        self.closed = False

    def request(self, method, url, json=None, headers=None):
        self.requests.append((method, url, json, headers))
        if self.error:
            raise self.error
        return FakeResponse(self.status, "nope")

    async def close(self):
        self.closed = True


class TestNaming:

    def test_sensor_name(self):
        assert sensor_name("Home", SunEvent.GOLDEN_HOUR_END) == "Home Daytime"

    def test_entity_id(self):
        assert entity_id_for("Front Yard", SunEvent.SUNRISE_END) == "binary_sensor.front_yard_sunrise_end"
        assert entity_id_for("Home", SunEvent.NADIR) == "binary_sensor.home_nadir"
        assert entity_id_for("Home", SunEvent.NAUTICAL_DUSK) == "binary_sensor.home_nautical_dusk"

    def test_slugify_never_empty(self):
        assert slugify("Zürich!") == "z_rich"
        assert slugify("***") == "sunphase"


class TestSensorRegistry:

    def setup_method(self):
        self.registry = RecordingRegistry()

    def test_publish_stores_reading(self):
        self.registry.publish("Home", SunEvent.SOLAR_NOON, ON)
        assert self.registry.get_reading("Home", SunEvent.SOLAR_NOON) == ON
        assert self.registry.get_reading("Home", SunEvent.NADIR) is None
        assert self.registry.get_reading("Elsewhere", SunEvent.NADIR) is None

    def test_publish_is_idempotent(self):
        for _ in range(3):
            self.registry.publish("Home", SunEvent.SOLAR_NOON, ON)
        self.registry.publish("Home", SunEvent.SOLAR_NOON, OFF)

        assert self.registry.changed == [
            ("Home", SunEvent.SOLAR_NOON, ON),
            ("Home", SunEvent.SOLAR_NOON, OFF),
        ]

    def test_sync_retracts_stale_sensors(self):
        for event in SunEvent:
            self.registry.publish("Home", event, OFF)

        self.registry.sync_sensors("Home", [SunEvent.SUNRISE, SunEvent.SUNSET])

        assert set(self.registry.get_sensors("Home")) == {SunEvent.SUNRISE, SunEvent.SUNSET}
        assert len(self.registry.retracted) == 12

    def test_sync_on_unknown_location(self):
        self.registry.sync_sensors("Home", [SunEvent.SUNRISE])
        assert self.registry.retracted == []
        assert self.registry.get_locations() == ("Home",)

    def test_remove_location(self):
        self.registry.publish("Home", SunEvent.SUNRISE, ON)
        self.registry.publish("Cabin", SunEvent.SUNRISE, ON)

        self.registry.remove_location("Home")
        self.registry.remove_location("Home")

        assert self.registry.get_locations() == ("Cabin",)
        assert self.registry.retracted == [("Home", SunEvent.SUNRISE)]

    def test_undelivered_reading_is_published_again(self):
        self.registry.publish("Home", SunEvent.SUNRISE, ON)
        self.registry.mark_undelivered("Home", SunEvent.SUNRISE, ON)

        self.registry.publish("Home", SunEvent.SUNRISE, ON)
        self.registry.publish("Home", SunEvent.SUNRISE, ON)

        assert self.registry.changed == [("Home", SunEvent.SUNRISE, ON)] * 2

    def test_mark_undelivered_ignores_superseded_reading(self):
        self.registry.publish("Home", SunEvent.SUNRISE, OFF)
        self.registry.mark_undelivered("Home", SunEvent.SUNRISE, ON)

        self.registry.publish("Home", SunEvent.SUNRISE, OFF)

        assert len(self.registry.changed) == 1

    def test_get_sensors_is_a_copy(self):
        self.registry.publish("Home", SunEvent.SUNRISE, ON)
        self.registry.get_sensors("Home").clear()
        assert self.registry.get_reading("Home", SunEvent.SUNRISE) == ON


class TestHomeAssistantPublisher:

    def test_payload(self):
        publisher = HomeAssistantPublisher("http://ha:8123/", "token")
        payload = publisher.build_state_payload("Home", SunEvent.SUNSET, ON)

        assert payload["state"] == "on"
        assert payload["attributes"]["device_class"] == "occupancy"
        assert payload["attributes"]["friendly_name"] == "Home Evening Twilight"
        assert payload["attributes"]["event_time"] == "12:07:00"
        assert payload["attributes"]["solar_event"] == "sunset"
        assert payload["attributes"]["description"] == SunEvent.SUNSET.description

    def test_only_changes_are_queued(self):
        publisher = HomeAssistantPublisher("http://ha:8123", "token")
        publisher.publish("Home", SunEvent.SUNSET, OFF)
        publisher.publish("Home", SunEvent.SUNSET, OFF)
        publisher.publish("Home", SunEvent.SUNSET, ON)
        assert publisher.pending == 2

    @pytest.mark.asyncio
    async def test_flush_posts_and_deletes(self):
        session = FakeSession()
        publisher = HomeAssistantPublisher("http://ha:8123/", "secret", session=session)
        publisher.publish("Home", SunEvent.SUNRISE, ON)
        publisher.publish("Home", SunEvent.DUSK, OFF)
        publisher.sync_sensors("Home", [SunEvent.SUNRISE])

        await publisher.flush()

        assert publisher.pending == 0
        methods = [(method, url) for method, url, _, _ in session.requests]
        assert methods == [
            ("POST", "http://ha:8123/api/states/binary_sensor.home_sunrise"),
            ("POST", "http://ha:8123/api/states/binary_sensor.home_dusk"),
            ("DELETE", "http://ha:8123/api/states/binary_sensor.home_dusk"),
        ]
        assert session.requests[0][3] == {"Authorization": "Bearer secret"}
        assert session.requests[0][2]["state"] == "on"
        assert session.requests[2][2] is None

    @pytest.mark.asyncio
    async def test_send_reports_rejection(self):
        publisher = HomeAssistantPublisher("http://ha", "t", session=FakeSession(status=401))
        assert await publisher._send("POST", "binary_sensor.home_sunset", {}) is False

    @pytest.mark.asyncio
    async def test_delete_of_missing_entity_is_ok(self):
        publisher = HomeAssistantPublisher("http://ha", "t", session=FakeSession(status=404))
        assert await publisher._send("DELETE", "binary_sensor.home_sunset", None) is True
        assert await publisher._send("POST", "binary_sensor.home_sunset", {}) is False

    @pytest.mark.asyncio
    async def test_connection_errors_are_logged(self, caplog):
        session = FakeSession(error=ClientError("connection refused"))
        publisher = HomeAssistantPublisher("http://ha", "t", session=session)
        assert await publisher._send("POST", "binary_sensor.home_sunset", {}) is False
        assert "connection refused" in caplog.text

    @pytest.mark.asyncio
    async def test_send_without_session(self):
        publisher = HomeAssistantPublisher("http://ha", "t")
        assert await publisher._send("POST", "binary_sensor.home_sunset", {}) is False

    @pytest.mark.asyncio
    async def test_worker_delivers_in_background(self):
        session = FakeSession()
        publisher = HomeAssistantPublisher("http://ha", "t", session=session)
        await publisher.start()
        publisher.publish("Home", SunEvent.NIGHT, ON)

        await asyncio.wait_for(publisher._queue.join(), timeout=1)
        await publisher.stop()

        assert len(session.requests) == 1
        assert not session.closed

    @pytest.mark.asyncio
    async def test_failed_post_is_sent_again_next_cycle(self):
        session = FakeSession(error=ClientError("connection refused"))
        publisher = HomeAssistantPublisher("http://ha", "t", session=session)
        publisher.publish("Home", SunEvent.SUNSET, ON)
        await publisher.flush()

        publisher.publish("Home", SunEvent.SUNSET, ON)
        assert publisher.pending == 1

        session.error = None
        await publisher.flush()
        publisher.publish("Home", SunEvent.SUNSET, ON)

        assert publisher.pending == 0
        assert len(session.requests) == 2

    @pytest.mark.asyncio
    async def test_rejected_post_is_sent_again_next_cycle(self):
        session = FakeSession(status=503)
        publisher = HomeAssistantPublisher("http://ha", "t", session=session)
        publisher.publish("Home", SunEvent.DUSK, OFF)
        await publisher.flush()

        publisher.publish("Home", SunEvent.DUSK, OFF)
        assert publisher.pending == 1

    @pytest.mark.asyncio
    async def test_only_latest_failed_reading_is_resent(self):
        session = FakeSession(status=500)
        publisher = HomeAssistantPublisher("http://ha", "t", session=session)
        publisher.publish("Home", SunEvent.DUSK, ON)
        publisher.publish("Home", SunEvent.DUSK, OFF)
        await publisher.flush()

        publisher.publish("Home", SunEvent.DUSK, OFF)
        assert publisher.pending == 1
        assert publisher.get_reading("Home", SunEvent.DUSK) == OFF
