"""Shared fixtures for the sunphase unit tests."""

import logging

import pytest

from fakes import FakeClock, FakeLoop, FakeOracle, at
from sunphase.publisher import SensorRegistry

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)8s] %(name)s: %(message)s",
    datefmt="%H:%M:%S",
)


@pytest.fixture
def fake_loop():
    return FakeLoop()


@pytest.fixture
def oracle():
    return FakeOracle()


@pytest.fixture
def clock():
    return FakeClock(at(12, 15))


@pytest.fixture
def registry():
    return SensorRegistry()
