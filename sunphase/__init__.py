"""Sun phase occupancy sensors.

Tracks the day's solar phases for configured locations and exposes the
active phase as an occupancy signal per phase.
"""

from sunphase.config import LocationConfig, load_config_from_files, parse_location, parse_locations
from sunphase.events import SensorMode, SunEvent
from sunphase.exceptions import ConfigError, MonitorStoppedError, SunPhaseError
from sunphase.locations import SunPhasePlatform
from sunphase.monitor import PhaseMonitor
from sunphase.oracle import sun_times
from sunphase.publisher import HomeAssistantPublisher, SensorPublisher, SensorRegistry
from sunphase.timeline import PhaseState, SensorReading

__version__ = "1.0.0"

__all__ = [
    "ConfigError",
    "HomeAssistantPublisher",
    "LocationConfig",
    "MonitorStoppedError",
    "PhaseMonitor",
    "PhaseState",
    "SensorMode",
    "SensorPublisher",
    "SensorReading",
    "SensorRegistry",
    "SunEvent",
    "SunPhaseError",
    "SunPhasePlatform",
    "load_config_from_files",
    "parse_location",
    "parse_locations",
    "sun_times",
]
