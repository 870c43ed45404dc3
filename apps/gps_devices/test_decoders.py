import json
from collections import defaultdict
from datetime import datetime, timezone as dt_timezone
from types import SimpleNamespace

from django.core.exceptions import ImproperlyConfigured
from django.test import RequestFactory, SimpleTestCase, override_settings

from apps.gps_devices.decoders import DecodeError, OsmAndProtocolDecoder
from apps.gps_devices.decoders.base import GPS_EPOCH
from apps.gps_devices.decoders.utils import (
    convert_speed,
    guess_attribute_value,
    knots_from_mps,
    parse_boolean,
    parse_timestamp,
)
from apps.gps_devices.position import CellTower, Position, WifiAccessPoint


class FakeSessionManager:
    def __init__(self, devices):
        self.devices = devices

    def get_device_session(self, protocol, remote_address, *unique_ids):
        for unique_id in unique_ids:
            if unique_id in self.devices:
                return SimpleNamespace(device_id=self.devices[unique_id], unique_id=unique_id)
        return None


class FakeCommandsManager:
    def __init__(self):
        self.queues = defaultdict(list)
        self.tokens = []

    def read_queued_commands(self, device_id, count=1):
        queue = self.queues[device_id]
        taken = queue[:count]
        del queue[:count]
        return taken

    def update_notification_token(self, device_id, token):
        self.tokens.append((device_id, token))


class FakeLocationProvider:
    def __init__(self, positions=None):
        self.positions = positions or {}
        self.calls = []

    def get_last_position(self, device_id):
        self.calls.append(device_id)
        return self.positions.get(device_id)


@override_settings(TIME_ZONE='UTC')
class OsmAndDecoderTestCase(SimpleTestCase):

    def setUp(self):
        self.factory = RequestFactory()
        self.sessions = FakeSessionManager({'123': 123, 'abc': 7})
        self.commands = FakeCommandsManager()
        self.locations = FakeLocationProvider()
        self.decoder = self.build_decoder()

    def build_decoder(self, speed_unit='kn'):
        return OsmAndProtocolDecoder('osmand', self.sessions, self.commands, self.locations, speed_unit=speed_unit)

    def decode_query(self, query):
        return self.decoder.decode(self.factory.get(f'/?{query}'))

    def decode_json(self, payload):
        body = payload if isinstance(payload, str) else json.dumps(payload)
        return self.decoder.decode(self.factory.post('/', data=body, content_type='application/json'))


class QueryDecoderTest(OsmAndDecoderTestCase):

    def test_end_to_end_report(self):
        result = self.decode_query('id=123&lat=10.5&lon=20.5&speed=5&timestamp=1700000000')
        position = result.position

        self.assertEqual(result.response.status_code, 200)
        self.assertEqual(result.response.content, b'')
        self.assertEqual(position.protocol, 'osmand')
        self.assertEqual(position.device_id, 123)
        self.assertTrue(position.valid)
        self.assertEqual(position.latitude, 10.5)
        self.assertEqual(position.longitude, 20.5)
        self.assertEqual(position.speed, 5.0)
        self.assertEqual(position.fix_time, datetime(2023, 11, 14, 22, 13, 20, tzinfo=dt_timezone.utc))
        self.assertEqual(position.device_time, position.fix_time)
        self.assertIsNone(position.network)
        self.assertFalse(position.outdated)

    def test_deviceid_alias(self):
        result = self.decode_query('deviceid=abc&lat=1&lon=2')
        self.assertEqual(result.position.device_id, 7)

    def test_unknown_device_is_bad_request(self):
        result = self.decode_query('id=999&lat=10.5&lon=20.5&timestamp=1700000000')
        self.assertIsNone(result.position)
        self.assertEqual(result.response.status_code, 400)
        self.assertEqual(result.response.content, b'')

    def test_unknown_device_rejected_before_malformed_fields(self):
        result = self.decode_query('id=999&lat=bad')
        self.assertIsNone(result.position)
        self.assertEqual(result.response.status_code, 400)

    def test_missing_device_id_is_bad_request(self):
        result = self.decode_query('lat=10.5&lon=20.5&speed=3&batt=80')
        self.assertIsNone(result.position)
        self.assertEqual(result.response.status_code, 400)

    def test_queued_command_is_returned_once(self):
        self.commands.queues[123] = [SimpleNamespace(data='reboot'), SimpleNamespace(data='ping')]

        first = self.decode_query('id=123&lat=1&lon=2')
        second = self.decode_query('id=123&lat=1&lon=2')

        self.assertEqual(first.response.status_code, 200)
        self.assertEqual(first.response.content, b'reboot')
        self.assertEqual(second.response.content, b'ping')
        self.assertEqual(self.commands.queues[123], [])

    def test_command_without_payload_gives_empty_response(self):
        self.commands.queues[123] = [SimpleNamespace(data=None)]
        result = self.decode_query('id=123&lat=1&lon=2')
        self.assertEqual(result.response.status_code, 200)
        self.assertEqual(result.response.content, b'')

    def test_notification_token_after_id_is_registered(self):
        self.decode_query('id=123&notificationToken=tok-1&lat=1&lon=2')
        self.assertEqual(self.commands.tokens, [(123, 'tok-1')])

    def test_notification_token_before_id_is_skipped(self):
        result = self.decode_query('notificationToken=tok-1&id=123&lat=1&lon=2')
        self.assertEqual(result.position.device_id, 123)
        self.assertEqual(self.commands.tokens, [])

    def test_valid_flag(self):
        cases = {'true': True, 'TRUE': True, '1': True, 'false': False, '0': False, 'yes': False}
        for value, expected in cases.items():
            with self.subTest(value=value):
                result = self.decode_query(f'id=123&lat=1&lon=2&valid={value}')
                self.assertIs(result.position.valid, expected)

    def test_timestamp_in_milliseconds(self):
        result = self.decode_query('id=123&lat=1&lon=2&timestamp=1700000000123')
        self.assertEqual(
            result.position.fix_time,
            datetime(2023, 11, 14, 22, 13, 20, 123000, tzinfo=dt_timezone.utc),
        )

    def test_timestamp_iso(self):
        result = self.decode_query('id=123&lat=1&lon=2&timestamp=2023-11-14T22:13:20Z')
        self.assertEqual(result.position.fix_time, datetime(2023, 11, 14, 22, 13, 20, tzinfo=dt_timezone.utc))

    def test_timestamp_fixed_pattern(self):
        result = self.decode_query('id=123&lat=1&lon=2&timestamp=2023-11-14%2022:13:20')
        self.assertEqual(result.position.fix_time, datetime(2023, 11, 14, 22, 13, 20, tzinfo=dt_timezone.utc))

    def test_unparseable_timestamp_fails(self):
        with self.assertRaises(DecodeError):
            self.decode_query('id=123&lat=1&lon=2&timestamp=yesterday')

    def test_missing_timestamp_uses_current_time(self):
        before = datetime.now(dt_timezone.utc)
        result = self.decode_query('id=123&lat=1&lon=2')
        self.assertGreaterEqual(result.position.fix_time, before)

    def test_location_pair(self):
        result = self.decode_query('id=123&location=52.1,-0.25')
        self.assertEqual(result.position.latitude, 52.1)
        self.assertEqual(result.position.longitude, -0.25)

    def test_location_and_lat_lon_last_write_wins(self):
        result = self.decode_query('id=123&lat=1&lon=2&location=3,4')
        self.assertEqual((result.position.latitude, result.position.longitude), (3.0, 4.0))

        result = self.decode_query('id=123&location=3,4&lat=1&lon=2')
        self.assertEqual((result.position.latitude, result.position.longitude), (1.0, 2.0))

    def test_malformed_latitude_is_decode_error(self):
        with self.assertRaises(DecodeError):
            self.decode_query('id=123&lat=north&lon=2')
        self.assertEqual(self.locations.calls, [])

    def test_malformed_location_pair_is_decode_error(self):
        with self.assertRaises(DecodeError):
            self.decode_query('id=123&location=52.1')

    def test_cell_towers(self):
        result = self.decode_query('id=123&lat=1&lon=2&cell=250,1,1234,5678&cell=250,2,4321,8765,-70')
        towers = result.position.network.cell_towers

        self.assertEqual(towers[0], CellTower(250, 1, 1234, 5678))
        self.assertIsNone(towers[0].signal_strength)
        self.assertEqual(towers[1], CellTower(250, 2, 4321, 8765, -70))
        self.assertIsNone(result.position.network.wifi_access_points)

    def test_cell_extra_fields_ignored(self):
        result = self.decode_query('id=123&lat=1&lon=2&cell=250,2,4321,8765,-70,99')
        self.assertEqual(result.position.network.cell_towers, [CellTower(250, 2, 4321, 8765, -70)])

    def test_malformed_cell_is_decode_error(self):
        for value in ('250,1,1234', '250,1,x,5678'):
            with self.subTest(value=value):
                with self.assertRaises(DecodeError):
                    self.decode_query(f'id=123&lat=1&lon=2&cell={value}')

    def test_wifi_mac_normalised(self):
        result = self.decode_query('id=123&lat=1&lon=2&wifi=aa-bb-cc-dd-ee-ff,-60&wifi=11:22:33:44:55:66,-75')
        access_points = result.position.network.wifi_access_points

        self.assertEqual(access_points[0], WifiAccessPoint('aa:bb:cc:dd:ee:ff', -60))
        self.assertEqual(access_points[1], WifiAccessPoint('11:22:33:44:55:66', -75))
        self.assertIsNone(result.position.network.cell_towers)

    def test_motion_fields(self):
        result = self.decode_query('id=123&lat=1&lon=2&bearing=90.5&altitude=120&accuracy=8')
        self.assertEqual(result.position.course, 90.5)
        self.assertEqual(result.position.altitude, 120.0)
        self.assertEqual(result.position.accuracy, 8.0)

        result = self.decode_query('id=123&lat=1&lon=2&heading=45')
        self.assertEqual(result.position.course, 45.0)

    def test_configured_speed_unit(self):
        self.decoder = self.build_decoder(speed_unit='kmh')
        result = self.decode_query('id=123&lat=1&lon=2&speed=100')
        self.assertAlmostEqual(result.position.speed, 53.9957)

    def test_invalid_speed_unit_rejected(self):
        with self.assertRaises(ImproperlyConfigured):
            self.build_decoder(speed_unit='furlongs')

    def test_known_attributes(self):
        result = self.decode_query('id=123&lat=1&lon=2&hdop=1.5&batt=87&driverUniqueId=0042&charge=True')
        attributes = result.position.attributes

        self.assertEqual(attributes['hdop'], 1.5)
        self.assertEqual(attributes['batteryLevel'], 87.0)
        self.assertEqual(attributes['driverUniqueId'], '0042')
        self.assertIs(attributes['charge'], True)

    def test_generic_attributes_are_typed_by_guessing(self):
        result = self.decode_query('id=123&lat=1&lon=2&fuel=42&ignition=true&door=false&mode=eco&flag=True')
        attributes = result.position.attributes

        self.assertEqual(attributes['fuel'], 42.0)
        self.assertIs(attributes['ignition'], True)
        self.assertIs(attributes['door'], False)
        self.assertEqual(attributes['mode'], 'eco')
        self.assertEqual(attributes['flag'], 'True')

    def test_repeated_attribute_keeps_last_value(self):
        result = self.decode_query('id=123&lat=1&lon=2&temp=20&temp=21')
        self.assertEqual(result.position.attributes['temp'], 21.0)

    def test_missing_coordinates_use_last_location(self):
        last_fix = datetime(2023, 1, 1, 12, 0, tzinfo=dt_timezone.utc)
        self.locations.positions[123] = Position(
            'osmand', device_id=123, fix_time=last_fix, valid=False,
            latitude=48.85, longitude=2.35, altitude=35.0, speed=1.5, course=270.0, accuracy=12.0,
        )

        result = self.decode_query('id=123&timestamp=1700000000&batt=50')
        position = result.position

        self.assertEqual(self.locations.calls, [123])
        self.assertEqual((position.latitude, position.longitude), (48.85, 2.35))
        self.assertFalse(position.valid)
        self.assertTrue(position.outdated)
        self.assertEqual(position.fix_time, last_fix)
        self.assertEqual(position.device_time, datetime(2023, 11, 14, 22, 13, 20, tzinfo=dt_timezone.utc))
        self.assertEqual(position.speed, 1.5)
        self.assertIsNone(position.network)

    def test_only_latitude_falls_back_to_last_location(self):
        self.locations.positions[123] = Position('osmand', device_id=123, latitude=5.0, longitude=6.0)
        result = self.decode_query('id=123&lat=1')
        self.assertEqual((result.position.latitude, result.position.longitude), (5.0, 6.0))

    def test_no_history_leaves_coordinates_unset(self):
        result = self.decode_query('id=123&timestamp=1700000000')
        self.assertIsNone(result.position.latitude)
        self.assertIsNone(result.position.longitude)
        self.assertEqual(result.position.fix_time, GPS_EPOCH)
        self.assertTrue(result.position.outdated)

    def test_form_body_used_when_query_empty(self):
        request = self.factory.post(
            '/', data='id=123&lat=10.5&lon=20.5&timestamp=1700000000',
            content_type='application/x-www-form-urlencoded',
        )
        result = self.decoder.decode(request)
        self.assertEqual(result.position.device_id, 123)
        self.assertEqual(result.position.latitude, 10.5)

    def test_query_string_takes_precedence_over_body(self):
        request = self.factory.post(
            '/?id=123&lat=1&lon=2', data='id=abc&lat=3&lon=4',
            content_type='application/x-www-form-urlencoded',
        )
        result = self.decoder.decode(request)
        self.assertEqual(result.position.device_id, 123)
        self.assertEqual(result.position.latitude, 1.0)


class JsonDecoderTest(OsmAndDecoderTestCase):

    def report(self, **location):
        payload = {'device_id': 'abc', 'location': {'timestamp': '2023-11-14T22:13:20.000Z'}}
        payload['location'].update(location)
        return payload

    def test_dispatches_on_content_type(self):
        result = self.decode_json(self.report(coords={'latitude': 1, 'longitude': 2}))
        self.assertEqual(result.position.device_id, 7)

        request = self.factory.post('/?id=123&lat=1&lon=2', data='{}', content_type='text/plain')
        self.assertEqual(self.decoder.decode(request).position.device_id, 123)

    def test_full_report(self):
        result = self.decode_json(self.report(
            coords={'latitude': 52.5, 'longitude': 13.4, 'speed': 10, 'heading': 180,
                    'accuracy': 5, 'altitude': 34},
            event='motionchange',
            is_moving=True,
            odometer=1234.9,
            mock=False,
            activity={'type': 'in_vehicle'},
            battery={'level': 0.75, 'is_charging': True},
        ))
        position = result.position

        self.assertEqual(result.response.status_code, 200)
        self.assertEqual(result.response.content, b'')
        self.assertTrue(position.valid)
        self.assertEqual(position.fix_time, datetime(2023, 11, 14, 22, 13, 20, tzinfo=dt_timezone.utc))
        self.assertEqual((position.latitude, position.longitude), (52.5, 13.4))
        self.assertAlmostEqual(position.speed, knots_from_mps(10))
        self.assertEqual(position.course, 180.0)
        self.assertEqual(position.accuracy, 5.0)
        self.assertEqual(position.altitude, 34.0)
        self.assertEqual(position.attributes, {
            'event': 'motionchange',
            'motion': True,
            'odometer': 1234,
            'mock': False,
            'activity': 'in_vehicle',
            'batteryLevel': 75,
            'charge': True,
        })

    def test_negative_speed_and_heading_are_not_stored(self):
        result = self.decode_json(self.report(
            coords={'latitude': 1, 'longitude': 2, 'speed': -1, 'heading': -1, 'accuracy': 30, 'altitude': 0},
        ))
        position = result.position

        self.assertIsNone(position.speed)
        self.assertIsNone(position.course)
        self.assertIsNone(position.accuracy)
        self.assertEqual(position.altitude, 0.0)

    def test_accuracy_kept_when_heading_known(self):
        result = self.decode_json(self.report(
            coords={'latitude': 1, 'longitude': 2, 'speed': -1, 'heading': 90, 'accuracy': 30, 'altitude': 0},
        ))
        self.assertIsNone(result.position.speed)
        self.assertEqual(result.position.course, 90.0)
        self.assertEqual(result.position.accuracy, 30.0)

    def test_battery_not_charging_sets_nothing(self):
        result = self.decode_json(self.report(
            coords={'latitude': 1, 'longitude': 2},
            battery={'level': -1, 'is_charging': False},
        ))
        self.assertNotIn('charge', result.position.attributes)
        self.assertNotIn('batteryLevel', result.position.attributes)

    def test_top_level_alarm_wins_over_extras(self):
        result = self.decode_json(self.report(
            coords={'latitude': 1, 'longitude': 2}, alarm='sos', extras={'alarm': 'tamper'},
        ))
        self.assertEqual(result.position.attributes['alarm'], 'sos')

    def test_extras_alarm(self):
        result = self.decode_json(self.report(coords={'latitude': 1, 'longitude': 2}, extras={'alarm': 'tamper'}))
        self.assertEqual(result.position.attributes['alarm'], 'tamper')

    def test_missing_coords_use_last_location(self):
        self.locations.positions[7] = Position('osmand', device_id=7, valid=True, latitude=9.0, longitude=8.0)
        result = self.decode_json(self.report())

        self.assertEqual((result.position.latitude, result.position.longitude), (9.0, 8.0))
        self.assertTrue(result.position.outdated)
        self.assertTrue(result.position.valid)

    def test_unknown_device_is_not_found(self):
        payload = self.report(coords={'latitude': 1, 'longitude': 2})
        payload['device_id'] = 'nobody'
        result = self.decode_json(payload)

        self.assertIsNone(result.position)
        self.assertEqual(result.response.status_code, 404)

    def test_numeric_device_id(self):
        payload = self.report(coords={'latitude': 1, 'longitude': 2})
        payload['device_id'] = 123
        self.assertEqual(self.decode_json(payload).position.device_id, 123)

    def test_no_command_piggybacking(self):
        self.commands.queues[7] = [SimpleNamespace(data='reboot')]
        result = self.decode_json(self.report(coords={'latitude': 1, 'longitude': 2}))

        self.assertEqual(result.response.content, b'')
        self.assertEqual(len(self.commands.queues[7]), 1)

    def test_unknown_fields_ignored(self):
        result = self.decode_json(self.report(coords={'latitude': 1, 'longitude': 2}, uuid='x-1', sample=True))
        self.assertEqual(result.position.attributes, {})

    def test_malformed_reports(self):
        bad_payloads = [
            'not json',
            '[1, 2]',
            {'location': {'timestamp': '2023-11-14T22:13:20Z'}},
            {'device_id': 'abc'},
            self.report(coords={'latitude': 'north', 'longitude': 2}),
            {'device_id': 'abc', 'location': {'timestamp': 1700000000}},
            {'device_id': 'abc', 'location': {'timestamp': 'yesterday'}},
        ]
        for payload in bad_payloads:
            with self.subTest(payload=payload):
                with self.assertRaises(DecodeError):
                    self.decode_json(payload)

    def test_out_of_range_numbers(self):
        reports = {
            'odometer': '{"device_id": "abc", "location": {"timestamp": "2024-01-01T00:00:00Z", "odometer": 1e400}}',
            'huge integer': '{"device_id": "abc", "location": {"timestamp": "2024-01-01T00:00:00Z", "odometer": 1%s}}'
                            % ('0' * 400),
            'battery level': '{"device_id": "abc", "location": {"timestamp": "2024-01-01T00:00:00Z",'
                             ' "battery": {"level": 1e308}}}',
        }
        for name, body in reports.items():
            with self.subTest(name):
                with self.assertRaises(DecodeError):
                    self.decode_json(body)

    def test_non_standard_constants_rejected(self):
        bodies = [
            '{"device_id": "abc", "location": {"timestamp": "2024-01-01T00:00:00Z",'
            ' "coords": {"latitude": NaN, "longitude": 2}}}',
            '{"device_id": "abc", "location": {"timestamp": "2024-01-01T00:00:00Z", "odometer": NaN}}',
            '{"device_id": "abc", "location": {"timestamp": "2024-01-01T00:00:00Z", "odometer": -Infinity}}',
        ]
        for body in bodies:
            with self.subTest(body=body):
                with self.assertRaises(DecodeError):
                    self.decode_json(body)


@override_settings(TIME_ZONE='UTC')
class CoercionUtilsTest(SimpleTestCase):

    def test_convert_speed(self):
        self.assertEqual(convert_speed(12.0, 'kn'), 12.0)
        self.assertAlmostEqual(convert_speed(1.852, 'kmh'), 1.0, places=4)
        self.assertAlmostEqual(convert_speed(1.0, 'mps'), 1.94384)
        self.assertAlmostEqual(convert_speed(1.15078, 'mph'), 1.0, places=4)
        with self.assertRaises(ValueError):
            convert_speed(1.0, 'fps')

    def test_parse_boolean(self):
        self.assertTrue(parse_boolean('True'))
        self.assertFalse(parse_boolean('1'))
        self.assertFalse(parse_boolean(''))

    def test_parse_timestamp_seconds_boundary(self):
        self.assertEqual(parse_timestamp('0'), datetime(1970, 1, 1, tzinfo=dt_timezone.utc))
        self.assertEqual(
            parse_timestamp('2147483647'),
            datetime(1970, 1, 25, 20, 31, 23, 647000, tzinfo=dt_timezone.utc),
        )
        self.assertEqual(parse_timestamp('2147483646'), datetime(2038, 1, 19, 3, 14, 6, tzinfo=dt_timezone.utc))

    def test_parse_timestamp_iso_only_when_t_present(self):
        with self.assertRaises(ValueError):
            parse_timestamp('2023-11-14T25:00:00')
        with self.assertRaises(ValueError):
            parse_timestamp('14/11/2023 22:13:20')

    def test_parse_timestamp_naive_iso_uses_default_zone(self):
        with self.settings(TIME_ZONE='Europe/Berlin'):
            self.assertEqual(
                parse_timestamp('2023-11-14T23:13:20'),
                datetime(2023, 11, 14, 22, 13, 20, tzinfo=dt_timezone.utc),
            )

    def test_guess_attribute_value(self):
        self.assertEqual(guess_attribute_value('3.25'), 3.25)
        self.assertIs(guess_attribute_value('true'), True)
        self.assertIs(guess_attribute_value('false'), False)
        self.assertEqual(guess_attribute_value('TRUE'), 'TRUE')
        self.assertEqual(guess_attribute_value(''), '')
