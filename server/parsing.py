"""Parsing of raw tracker payload fields into typed values."""

import datetime
import math
import re

from errors import ValidationError

EXTENSION_PREFIX = "X-"

# NMEA style coordinate, e.g. "6012.3456,N" (degrees + decimal minutes, hemisphere)
_NMEA_COORDINATE = re.compile(r"^(\d{1,3})(\d{2}\.\d+),([NSEW])$")
# "+0200" style offsets are not accepted by fromisoformat on older interpreters
_COMPACT_OFFSET = re.compile(r"([+-]\d{2})(\d{2})$")


def is_extension_key(key: str) -> bool:
    return isinstance(key, str) and key.startswith(EXTENSION_PREFIX) and len(key) > len(EXTENSION_PREFIX)


def parse_timestamp(value) -> datetime.datetime:
    """Parse an ISO-8601 timestamp into a naive UTC datetime."""
    if isinstance(value, datetime.datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        text = _COMPACT_OFFSET.sub(r"\1:\2", text)
        try:
            parsed = datetime.datetime.fromisoformat(text)
        except ValueError as e:
            raise ValidationError(f"Invalid timestamp: {value!r}", details={"value": value}) from e
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(datetime.timezone.utc).replace(tzinfo=None)
    return parsed


def parse_coordinate(value) -> float:
    """Parse decimal degrees ("60.2055") or NMEA degrees-minutes ("6012.33,N")."""
    if isinstance(value, (int, float)):
        return parse_decimal(value)
    text = str(value).strip()
    match = _NMEA_COORDINATE.match(text)
    if match:
        degrees, minutes, hemisphere = match.groups()
        result = int(degrees) + float(minutes) / 60.0
        return -result if hemisphere in "SW" else result
    return parse_decimal(text)


def parse_decimal(value) -> float:
    if isinstance(value, bool):
        raise ValidationError(f"Invalid decimal: {value!r}", details={"value": value})
    try:
        number = float(value)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"Invalid decimal: {value!r}", details={"value": value}) from e
    if not math.isfinite(number):
        raise ValidationError(f"Invalid decimal: {value!r}", details={"value": value})
    return number


def parse_integer(value) -> int:
    number = parse_decimal(value)
    if not number.is_integer():
        raise ValidationError(f"Invalid integer: {value!r}", details={"value": value})
    return int(number)
