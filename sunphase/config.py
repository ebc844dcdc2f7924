#!/usr/bin/env python3
"""Location configuration: schema validation and file loading.

A location record looks like::

    {
        "name": "Home",
        "latitude": 51.5,
        "longitude": -0.1,
        "mode": "full",                       # basic | extended | full
        "offset": {"sunriseEnd": 0, "sunsetStart": -30}
    }

The legacy shape ``"location": {"lat": ..., "lon": ...}`` is still accepted.
Configuration may hold a list of records, an ``instances`` wrapper, or a
single unwrapped record.
"""

import json
import logging
import math
import os
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, List, Mapping, Optional

import voluptuous as vol

from sunphase.events import OFFSETTABLE_EVENTS, SensorMode, SunEvent
from sunphase.exceptions import ConfigError

logger = logging.getLogger(__name__)

CONF_NAME = "name"
CONF_LATITUDE = "latitude"
CONF_LONGITUDE = "longitude"
CONF_LOCATION = "location"
CONF_MODE = "mode"
CONF_OFFSET = "offset"
CONF_INSTANCES = "instances"
CONF_LOCATIONS = "locations"

CONFIG_FILES = ("options.json", "locations.json")


def _finite(value: float) -> float:
    if not math.isfinite(value):
        raise vol.Invalid("must be a finite number")
    return value


def _whole_minutes(value: float) -> int:
    if not math.isfinite(value) or not float(value).is_integer():
        raise vol.Invalid("offset must be a whole number of minutes")
    return int(value)


def _mode(value: Any) -> SensorMode:
    return SensorMode.parse(value)


OFFSET_SCHEMA = vol.Schema({
    vol.Optional(event.value, default=0): vol.All(vol.Coerce(float), _whole_minutes)
    for event in OFFSETTABLE_EVENTS
})

LOCATION_SCHEMA = vol.Schema(
    {
        vol.Required(CONF_NAME): vol.All(str, vol.Strip, vol.Length(min=1)),
        vol.Required(CONF_LATITUDE): vol.All(vol.Coerce(float), _finite, vol.Range(min=-90.0, max=90.0)),
        vol.Required(CONF_LONGITUDE): vol.All(vol.Coerce(float), _finite, vol.Range(min=-180.0, max=180.0)),
        vol.Optional(CONF_MODE, default=SensorMode.FULL.value): _mode,
        vol.Optional(CONF_OFFSET, default=dict): vol.Any(None, OFFSET_SCHEMA),
    },
    extra=vol.ALLOW_EXTRA,
)


@dataclass(frozen=True)
class LocationConfig:
    """Immutable configuration for one monitored location.

    Attributes:
        name: Unique location name, also the sensor name prefix.
        latitude: Degrees north, -90..90.
        longitude: Degrees east, -180..180.
        mode: Which subset of solar events gets a sensor.
        offsets: Minutes added to sunriseEnd / sunsetStart (may be negative).
    """
    name: str
    latitude: float
    longitude: float
    mode: SensorMode = SensorMode.FULL
    offsets: Mapping[SunEvent, int] = field(default_factory=dict)

    def __post_init__(self):
        if not isinstance(self.name, str) or not self.name.strip():
            raise ConfigError("name is required")
        for label, value, limit in (
            (CONF_LATITUDE, self.latitude, 90.0),
            (CONF_LONGITUDE, self.longitude, 180.0),
        ):
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ConfigError(f"{label} is required and must be a number", self.name)
            if not math.isfinite(value) or not -limit <= value <= limit:
                raise ConfigError(f"{label} {value} out of range [-{limit:g}, {limit:g}]", self.name)
        unknown = [event for event in self.offsets if event not in OFFSETTABLE_EVENTS]
        if unknown:
            raise ConfigError(
                f"offsets only apply to {[e.value for e in OFFSETTABLE_EVENTS]}, got {[getattr(e, 'value', e) for e in unknown]}",
                self.name,
            )
        for event, minutes in self.offsets.items():
            if isinstance(minutes, bool) or not isinstance(minutes, int):
                raise ConfigError(f"offset for {event.value} must be whole minutes, got {minutes!r}", self.name)
        object.__setattr__(self, "offsets", MappingProxyType(dict(self.offsets)))

    def __hash__(self):
        return hash((
            self.name,
            self.latitude,
            self.longitude,
            self.mode,
            tuple(sorted((event.value, minutes) for event, minutes in self.offsets.items())),
        ))

    @property
    def enabled_events(self) -> FrozenSet[SunEvent]:
        return self.mode.events

    def offset_for(self, event: SunEvent) -> int:
        return self.offsets.get(event, 0)

    def to_dict(self) -> Dict[str, Any]:
        return {
            CONF_NAME: self.name,
            CONF_LATITUDE: self.latitude,
            CONF_LONGITUDE: self.longitude,
            CONF_MODE: self.mode.value,
            CONF_OFFSET: {event.value: minutes for event, minutes in self.offsets.items()},
        }


def _normalize_record(raw: Mapping[str, Any]) -> Dict[str, Any]:
    """Lift legacy ``location: {lat, lon}`` into top-level coordinates."""
    record = dict(raw)
    location = record.get(CONF_LOCATION)
    if isinstance(location, Mapping):
        if CONF_LATITUDE not in record:
            for key in ("lat", CONF_LATITUDE):
                if key in location:
                    record[CONF_LATITUDE] = location[key]
                    break
        if CONF_LONGITUDE not in record:
            for key in ("lon", "lng", CONF_LONGITUDE):
                if key in location:
                    record[CONF_LONGITUDE] = location[key]
                    break
    return record


def parse_location(raw: Any) -> LocationConfig:
    """Validate one raw record and build its LocationConfig."""
    if not isinstance(raw, Mapping):
        raise ConfigError(f"location entry must be an object, got {type(raw).__name__}")

    name = raw.get(CONF_NAME) if isinstance(raw.get(CONF_NAME), str) else None
    try:
        data = LOCATION_SCHEMA(_normalize_record(raw))
    except vol.Invalid as err:
        raise ConfigError(f"invalid configuration: {err}", name) from err

    offsets = {
        SunEvent(key): minutes
        for key, minutes in (data[CONF_OFFSET] or {}).items()
        if minutes
    }
    return LocationConfig(
        name=data[CONF_NAME],
        latitude=data[CONF_LATITUDE],
        longitude=data[CONF_LONGITUDE],
        mode=SensorMode.parse(data[CONF_MODE]),
        offsets=offsets,
    )


def normalize_instances(raw: Any) -> List[Any]:
    """Return the list of raw location records in any accepted shape."""
    if raw is None:
        return []
    if isinstance(raw, list):
        return list(raw)
    if isinstance(raw, Mapping):
        for key in (CONF_INSTANCES, CONF_LOCATIONS):
            if isinstance(raw.get(key), list):
                return list(raw[key])
        # Backward compatibility: a single top-level record
        if any(key in raw for key in (CONF_NAME, CONF_LATITUDE, CONF_LONGITUDE, CONF_LOCATION)):
            return [raw]
        return []
    raise ConfigError(f"configuration must be a list or an object, got {type(raw).__name__}")


def check_unique_names(records: List[Any]) -> None:
    """Raise ConfigError if two records share a name."""
    seen = set()
    duplicates = []
    for record in records:
        if not isinstance(record, Mapping):
            continue
        name = record.get(CONF_NAME)
        if not isinstance(name, str):
            continue
        name = name.strip()
        if name in seen and name not in duplicates:
            duplicates.append(name)
        seen.add(name)
    if duplicates:
        raise ConfigError(f"duplicate location names: {', '.join(duplicates)}")


def parse_locations(raw: Any) -> List[LocationConfig]:
    """Strictly parse every record; any invalid record raises ConfigError."""
    records = normalize_instances(raw)
    check_unique_names(records)
    return [parse_location(record) for record in records]


def get_data_directory() -> str:
    """Get the appropriate data directory based on environment."""
    override = os.getenv("SUNPHASE_DATA_DIR")
    if override:
        os.makedirs(override, exist_ok=True)
        return override
    if os.path.exists("/config"):
        data_dir = "/config/sunphase"
        os.makedirs(data_dir, exist_ok=True)
        return data_dir
    elif os.path.exists("/data"):
        return "/data"
    else:
        # Development mode - use local .data directory
        data_dir = os.path.join(os.path.dirname(__file__), ".data")
        os.makedirs(data_dir, exist_ok=True)
        return data_dir


def load_config_from_files(data_dir: Optional[str] = None) -> Dict[str, Any]:
    """Load and merge options.json and locations.json from the data directory.

    A file holding a bare list is treated as the ``instances`` list.
    Unreadable files are logged and skipped.
    """
    if data_dir is None:
        data_dir = get_data_directory()

    config: Dict[str, Any] = {}
    for filename in CONFIG_FILES:
        path = os.path.join(data_dir, filename)
        if not os.path.exists(path):
            continue
        try:
            with open(path, "r", encoding="utf-8") as f:
                part = json.load(f)
        except json.JSONDecodeError as e:
            logger.warning(f"JSON error reading {path}: {e}")
            continue
        except OSError as e:
            logger.warning(f"Could not load config from {path}: {e}")
            continue

        if isinstance(part, list):
            config[CONF_INSTANCES] = part
        elif isinstance(part, dict):
            config.update(part)
        else:
            logger.warning(f"Ignoring {path}: expected an object or a list")
            continue
        logger.debug(f"Loaded config from {path}")

    return config
