"""
Wire codec for weather records on the bus.

Messages are single-line JSON objects with the fields
timestamp, city, temperature, humidity, rainfall, windSpeed, pressure.
Numbers are written with a fixed number of fractional digits so that the
payload is stable regardless of float representation.
"""

import json
import math
import re
from datetime import datetime
from typing import Any

from pydantic import ValidationError

from weather_pipeline.core.models import DecodeResult, WeatherRecord

WIRE_TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S"

REQUIRED_FIELDS = (
    "timestamp",
    "city",
    "temperature",
    "humidity",
    "rainfall",
    "windSpeed",
    "pressure",
)

NUMERIC_FIELDS = ("temperature", "humidity", "rainfall", "windSpeed", "pressure")

# ISO local date-time, optional 3/6/9 digit fraction, no zone
_TIMESTAMP_RE = re.compile(
    r"^(\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2})(?:\.(\d{3}|\d{6}|\d{9}))?$"
)


def encode(record: WeatherRecord) -> str:
    """
    Serialize a record to its one-line JSON wire form.

    temperature, humidity, windSpeed and pressure carry one fractional
    digit; rainfall carries two.

    Example:
        >>> encode(record)  # doctest: +SKIP
        '{"timestamp":"2024-03-15T08:00:00","city":"Mbeya","temperature":18.5,...}'
    """
    return (
        "{"
        f"\"timestamp\":\"{record.timestamp.strftime(WIRE_TIMESTAMP_FORMAT)}\","
        f"\"city\":{json.dumps(record.city, ensure_ascii=False)},"
        f"\"temperature\":{record.temperature:.1f},"
        f"\"humidity\":{record.humidity:.1f},"
        f"\"rainfall\":{record.rainfall:.2f},"
        f"\"windSpeed\":{record.wind_speed:.1f},"
        f"\"pressure\":{record.pressure:.1f}"
        "}"
    )


def encode_bytes(record: WeatherRecord) -> bytes:
    return encode(record).encode("utf-8")


def parse_wire_timestamp(value: str) -> datetime | None:
    """
    Parse a wire timestamp, tolerating fractional seconds.

    Accepted, in order: no fraction, then 3, 6 or 9 fractional digits.
    Fractions are dropped (records have second resolution).

    Returns:
        Parsed datetime or None when no pattern matches
    """
    match = _TIMESTAMP_RE.match(value.strip())
    if not match:
        return None
    try:
        return datetime.strptime(match.group(1), WIRE_TIMESTAMP_FORMAT)
    except ValueError:
        return None


def _parse_number(value: Any) -> float | None:
    # bool is an int subclass; "true" is not a temperature
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def decode(payload: bytes | str | None) -> DecodeResult:
    """
    Decode a bus message into a record.

    Never raises. Unknown fields are ignored. The message is rejected when
    it is not a JSON object, a required field is missing or empty, the
    timestamp matches no accepted pattern, or a numeric field does not
    parse to a finite number.

    Args:
        payload: Raw message value

    Returns:
        DecodeResult.accepted(record) or DecodeResult.rejected(reason)
    """
    if payload is None:
        return DecodeResult.rejected("empty payload")

    if isinstance(payload, bytes):
        try:
            payload = payload.decode("utf-8")
        except UnicodeDecodeError as e:
            return DecodeResult.rejected(f"payload is not UTF-8: {e}")

    try:
        data = json.loads(payload)
    except json.JSONDecodeError as e:
        return DecodeResult.rejected(f"invalid JSON: {e.msg}")

    if not isinstance(data, dict):
        return DecodeResult.rejected("payload is not a JSON object")

    missing = [
        name for name in REQUIRED_FIELDS
        if data.get(name) is None or (isinstance(data.get(name), str) and not data[name].strip())
    ]
    if missing:
        return DecodeResult.rejected(f"missing or empty fields: {', '.join(missing)}")

    if not isinstance(data["timestamp"], str):
        return DecodeResult.rejected("timestamp must be a string")
    timestamp = parse_wire_timestamp(data["timestamp"])
    if timestamp is None:
        return DecodeResult.rejected(f"unrecognised timestamp: {data['timestamp']!r}")

    if not isinstance(data["city"], str):
        return DecodeResult.rejected("city must be a string")

    numbers = {}
    for name in NUMERIC_FIELDS:
        number = _parse_number(data[name])
        if number is None:
            return DecodeResult.rejected(f"{name} is not a finite number: {data[name]!r}")
        numbers[name] = number

    try:
        record = WeatherRecord(timestamp=timestamp, city=data["city"], **numbers)
    except ValidationError as e:
        return DecodeResult.rejected(f"invalid record: {e.errors()[0]['msg']}")

    return DecodeResult.accepted(record)
