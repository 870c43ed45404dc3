"""
Field coercion helpers shared by the HTTP protocol decoders.

Speed is normalised to knots. Timestamps come back as aware datetimes.
Open attributes are typed by guessing (float, then boolean, then string).
"""

from datetime import datetime, timedelta, timezone as dt_timezone

from django.utils import timezone
from django.utils.dateparse import parse_datetime

KNOTS_PER_KPH = 0.539957
KNOTS_PER_MPH = 0.868976
KNOTS_PER_MPS = 1.94384

INT32_MAX = 2147483647
DATE_TIME_FORMAT = '%Y-%m-%d %H:%M:%S'

_EPOCH = datetime(1970, 1, 1, tzinfo=dt_timezone.utc)


def knots_from_kph(value: float) -> float:
    return value * KNOTS_PER_KPH


def knots_from_mph(value: float) -> float:
    return value * KNOTS_PER_MPH


def knots_from_mps(value: float) -> float:
    return value * KNOTS_PER_MPS


SPEED_CONVERTERS = {
    'kn': lambda value: value,
    'kmh': knots_from_kph,
    'mph': knots_from_mph,
    'mps': knots_from_mps,
}


def convert_speed(value: float, unit: str) -> float:
    """Convert a speed expressed in `unit` to knots."""
    try:
        converter = SPEED_CONVERTERS[unit]
    except KeyError:
        raise ValueError(f'Unknown speed unit: {unit}') from None
    return converter(value)


def parse_boolean(value: str) -> bool:
    """Case-insensitive match of the literal 'true'; anything else is False."""
    return value.lower() == 'true'


def _make_aware(value: datetime) -> datetime:
    if timezone.is_naive(value):
        return timezone.make_aware(value, timezone.get_default_timezone())
    return value


def parse_iso_datetime(value: str) -> datetime:
    parsed = parse_datetime(value)
    if parsed is None:
        raise ValueError(f'Not an ISO-8601 date: {value!r}')
    return _make_aware(parsed)


def datetime_from_millis(millis: int) -> datetime:
    try:
        return _EPOCH + timedelta(milliseconds=millis)
    except OverflowError as exc:
        raise ValueError(f'Timestamp out of range: {millis}') from exc


def parse_timestamp(value: str) -> datetime:
    """
    Parse a report timestamp, trying in order:
      1. an integer: Unix seconds when below INT32_MAX, otherwise milliseconds
      2. ISO-8601, when the text contains a 'T'
      3. the fixed 'yyyy-MM-dd HH:mm:ss' pattern in the default time zone
    Raises ValueError when no variant applies.
    """
    try:
        timestamp = int(value)
    except ValueError:
        if 'T' in value:
            return parse_iso_datetime(value)
        return _make_aware(datetime.strptime(value, DATE_TIME_FORMAT))
    if timestamp < INT32_MAX:
        timestamp *= 1000
    return datetime_from_millis(timestamp)


def guess_attribute_value(value: str):
    try:
        return float(value)
    except ValueError:
        pass
    if value == 'true':
        return True
    if value == 'false':
        return False
    return value
