"""Location sensor interface and replay helpers."""

from location_tracker.sensors.base import LocationSensor
from location_tracker.sensors.replay import ReplaySensor, SensorEvent, load_event_log, parse_event_line

__all__ = ["LocationSensor", "ReplaySensor", "SensorEvent", "load_event_log", "parse_event_line"]
