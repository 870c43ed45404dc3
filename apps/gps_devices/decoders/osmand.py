"""
OsmAnd protocol decoder.

Trackers report either as flat key/value pairs (URL query string, or a
form-encoded body when the query string is empty) or, from background
geolocation SDKs, as a nested JSON document. The content type picks the
wire format.
"""

import json
import logging
import math

from django.http import QueryDict
from django.utils import timezone

from ..position import (
    KEY_ACTIVITY,
    KEY_ALARM,
    KEY_BATTERY_LEVEL,
    KEY_CHARGE,
    KEY_DRIVER_UNIQUE_ID,
    KEY_EVENT,
    KEY_HDOP,
    KEY_MOCK,
    KEY_MOTION,
    KEY_ODOMETER,
    CellTower,
    Network,
    Position,
    WifiAccessPoint,
)
from .base import BaseHttpProtocolDecoder, DecodeError, DecodeResult
from .utils import guess_attribute_value, knots_from_mps, parse_boolean, parse_iso_datetime, parse_timestamp

logger = logging.getLogger(__name__)

JSON_CONTENT_TYPE = 'application/json'


def _json_object(container, key, required=True):
    value = container.get(key)
    if value is None:
        if required:
            raise DecodeError(f"Missing '{key}' object")
        return None
    if not isinstance(value, dict):
        raise DecodeError(f"'{key}' must be an object")
    return value


def _json_number(container, key, default=None):
    value = container.get(key)
    if value is None:
        if default is None:
            raise DecodeError(f"Missing '{key}' number")
        return default
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise DecodeError(f"'{key}' must be a number, got {value!r}")
    try:
        number = float(value)
    except OverflowError:
        raise DecodeError(f"'{key}' is out of range") from None
    if not math.isfinite(number):
        raise DecodeError(f"'{key}' must be finite, got {value!r}")
    return number


def _finite_int(value, key):
    if not math.isfinite(value):
        raise DecodeError(f"'{key}' is out of range")
    return int(value)


def _reject_constant(name):
    raise ValueError(f"{name} is not a valid JSON number")


def _json_string(container, key):
    value = container.get(key)
    if not isinstance(value, str):
        raise DecodeError(f"'{key}' must be a string, got {value!r}")
    return value


def _json_boolean(container, key):
    value = container.get(key)
    if not isinstance(value, bool):
        raise DecodeError(f"'{key}' must be a boolean, got {value!r}")
    return value


class OsmAndProtocolDecoder(BaseHttpProtocolDecoder):

    def decode(self, request) -> DecodeResult:
        content_type = request.META.get('CONTENT_TYPE') or ''
        if content_type.startswith(JSON_CONTENT_TYPE):
            return self.decode_json(request)
        return self.decode_query(request)

    @staticmethod
    def query_parameters(request) -> QueryDict:
        params = request.GET
        if not params:
            params = QueryDict(request.body.decode('ascii', errors='replace'))
        return params

    def decode_query(self, request) -> DecodeResult:
        remote_address = self.remote_address(request)
        position = Position(self.protocol_name, valid=True)
        network = Network()
        latitude = None
        longitude = None

        # Keys are handled in order of first appearance, so a notificationToken
        # sent before the id is skipped and lat/lon vs location is last-write-wins.
        for key, values in self.query_parameters(request).lists():
            for value in values:
                try:
                    if key in ('id', 'deviceid'):
                        session = self.get_device_session(remote_address, value)
                        if session is None:
                            return DecodeResult(None, self.send_response(400))
                        position.device_id = session.device_id
                    elif key == 'notificationToken':
                        if position.device_id:
                            self.commands_manager.update_notification_token(position.device_id, value)
                    elif key == 'valid':
                        position.valid = parse_boolean(value) or value == '1'
                    elif key == 'timestamp':
                        position.set_time(parse_timestamp(value))
                    elif key == 'lat':
                        latitude = float(value)
                    elif key == 'lon':
                        longitude = float(value)
                    elif key == 'location':
                        parts = value.split(',')
                        latitude = float(parts[0])
                        longitude = float(parts[1])
                    elif key == 'cell':
                        parts = [int(part) for part in value.split(',')]
                        if len(parts) > 4:
                            network.add_cell_tower(CellTower(*parts[:5]))
                        else:
                            network.add_cell_tower(CellTower(parts[0], parts[1], parts[2], parts[3]))
                    elif key == 'wifi':
                        parts = value.split(',')
                        network.add_wifi_access_point(WifiAccessPoint(parts[0].replace('-', ':'), int(parts[1])))
                    elif key == 'speed':
                        position.speed = self.convert_speed(float(value))
                    elif key in ('bearing', 'heading'):
                        position.course = float(value)
                    elif key == 'altitude':
                        position.altitude = float(value)
                    elif key == 'accuracy':
                        position.accuracy = float(value)
                    elif key == 'hdop':
                        position.set(KEY_HDOP, float(value))
                    elif key == 'batt':
                        position.set(KEY_BATTERY_LEVEL, float(value))
                    elif key == 'driverUniqueId':
                        position.set(KEY_DRIVER_UNIQUE_ID, value)
                    elif key == 'charge':
                        position.set(KEY_CHARGE, parse_boolean(value))
                    else:
                        position.set(key, guess_attribute_value(value))
                except (ValueError, IndexError) as exc:
                    raise DecodeError(f"Malformed '{key}' value {value!r}: {exc}") from exc

        if position.fix_time is None:
            position.set_time(timezone.now())

        if network.has_entries():
            position.network = network

        if latitude is not None and longitude is not None:
            position.latitude = latitude
            position.longitude = longitude
        else:
            self.get_last_location(position, position.device_time)

        if not position.device_id:
            logger.warning(f'{self.protocol_name} report from {remote_address} carries no device id')
            return DecodeResult(None, self.send_response(400))

        return DecodeResult(position, self._command_response(position.device_id))

    def _command_response(self, device_id):
        response = None
        for command in self.commands_manager.read_queued_commands(device_id, 1):
            response = command.data
        if response is not None:
            logger.info(f'Piggybacking queued command on response to device {device_id}')
            return self.send_response(200, response)
        return self.send_response(200)

    def decode_json(self, request) -> DecodeResult:
        try:
            root = json.loads(request.body.decode('utf-8'), parse_constant=_reject_constant)
        except ValueError as exc:
            raise DecodeError(f'Malformed JSON report: {exc}') from exc
        if not isinstance(root, dict):
            raise DecodeError('JSON report must be an object')

        unique_id = root.get('device_id')
        if isinstance(unique_id, int) and not isinstance(unique_id, bool):
            unique_id = str(unique_id)
        elif not isinstance(unique_id, str):
            raise DecodeError(f"'device_id' must be a string, got {unique_id!r}")

        session = self.get_device_session(self.remote_address(request), unique_id)
        if session is None:
            return DecodeResult(None, self.send_response(404))

        position = Position(self.protocol_name, device_id=session.device_id)

        location = _json_object(root, 'location')
        timestamp = _json_string(location, 'timestamp')
        try:
            position.set_time(parse_iso_datetime(timestamp))
        except ValueError as exc:
            raise DecodeError(f"Malformed 'timestamp': {exc}") from exc

        coordinates = _json_object(location, 'coords', required=False)
        if coordinates is not None:
            position.valid = True
            position.latitude = _json_number(coordinates, 'latitude')
            position.longitude = _json_number(coordinates, 'longitude')
            speed = _json_number(coordinates, 'speed', default=-1.0)
            if speed >= 0:
                position.speed = knots_from_mps(speed)
            heading = _json_number(coordinates, 'heading', default=-1.0)
            if heading >= 0:
                position.course = heading
            if (speed >= 0 or heading >= 0) and coordinates.get('accuracy') is not None:
                position.accuracy = _json_number(coordinates, 'accuracy')
            if coordinates.get('altitude') is not None:
                position.altitude = _json_number(coordinates, 'altitude')
        else:
            self.get_last_location(position, None)

        if 'event' in location:
            position.set(KEY_EVENT, _json_string(location, 'event'))
        if 'is_moving' in location:
            position.set(KEY_MOTION, _json_boolean(location, 'is_moving'))
        if 'odometer' in location:
            position.set(KEY_ODOMETER, _finite_int(_json_number(location, 'odometer'), 'odometer'))
        if 'mock' in location:
            position.set(KEY_MOCK, _json_boolean(location, 'mock'))
        if 'activity' in location:
            position.set(KEY_ACTIVITY, _json_string(_json_object(location, 'activity'), 'type'))
        if 'battery' in location:
            battery = _json_object(location, 'battery')
            level = _json_number(battery, 'level', default=-1.0)
            if level >= 0:
                position.set(KEY_BATTERY_LEVEL, _finite_int(level * 100, 'level'))
            if battery.get('is_charging') is True:
                position.set(KEY_CHARGE, True)

        if 'alarm' in location:
            position.set(KEY_ALARM, _json_string(location, 'alarm'))
        elif 'extras' in location:
            extras = _json_object(location, 'extras')
            if 'alarm' in extras:
                position.set(KEY_ALARM, _json_string(extras, 'alarm'))

        return DecodeResult(position, self.send_response(200))
