from __future__ import annotations

import json
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import MalformedSensorPayload

SENSOR_MARKER = b"sensorName"


class SensorRecord(BaseModel):
    """
    One reading from a phone sensor (accelerometer, gyroscope, ...).

    Field names follow what the mobile client sends.
    """
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    sensor_name: str = Field(..., alias="sensorName", min_length=1)
    values: List[float] = Field(default_factory=list)
    accuracy: Optional[int] = None
    timestamp: Optional[int] = None


def is_sensor_payload(data: bytes) -> bool:
    """
    Cheap pre-filter: only text mentioning sensorName is worth parsing.

    Everything else the client sends as text (location, debug) is ignored.
    """
    return SENSOR_MARKER in data


def parse_sensor_payload(data: bytes) -> SensorRecord:
    """
    Parse one text message into a SensorRecord.

    This function is PURE (no sockets, no logging) so it's easy to unit test.
    Raises MalformedSensorPayload on malformed/unexpected input.
    """
    try:
        raw = json.loads(data)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise MalformedSensorPayload(f"Invalid sensor JSON: {e}") from e

    if not isinstance(raw, dict):
        raise MalformedSensorPayload(f"Sensor payload must be a JSON object, got {type(raw).__name__}")

    try:
        return SensorRecord.model_validate(raw)
    except ValidationError as e:
        raise MalformedSensorPayload(f"Invalid sensor record: {e}") from e


class SensorTracker:
    """
    Remembers the last reading of each sensor for one connection and tells
    whether a new reading moved noticeably.
    """

    def __init__(self, threshold: float = 1.0):
        self.threshold = threshold
        self._last: Dict[str, SensorRecord] = {}

    def changed(self, record: SensorRecord) -> bool:
        """
        Compare a reading with the previous one of the same sensor.

        The first reading of a sensor never counts as a change. A reading
        with a different number of axes than the last one always does.
        """
        previous = self._last.get(record.sensor_name)
        self._last[record.sensor_name] = record

        if previous is None:
            return False
        if len(previous.values) != len(record.values):
            return True
        return any(
            abs(curr - prev) > self.threshold
            for prev, curr in zip(previous.values, record.values)
        )

    def clear(self) -> None:
        self._last.clear()
