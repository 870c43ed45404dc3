from datetime import datetime, timedelta, timezone as dt_timezone
from io import StringIO
from unittest import mock

from django.core.management import call_command
from django.core.management.base import CommandError
from django.db import DatabaseError
from django.test import TestCase, override_settings

from apps.gps_devices.models import Device, LocationData, QueuedCommand
from apps.gps_devices.position import CellTower, Network, Position
from apps.gps_devices.services import (
    CommandsManager,
    DeviceSessionManager,
    LastLocationProvider,
    PositionStore,
    position_store,
    session_manager,
)
from apps.gps_devices.services.commands import NOTIFICATION_TOKENS_KEY
from apps.gps_devices.views import get_decoder


class RecordingChannelLayer:
    def __init__(self):
        self.sent = []

    async def group_send(self, group, message):
        self.sent.append((group, message))


class DeviceModelTest(TestCase):
    """Test cases for Device model"""

    def test_device_creation(self):
        """Test creating a device"""
        device = Device.objects.create(name='Van 1', unique_id='123456')
        self.assertEqual(str(device), 'Van 1 (123456)')
        self.assertEqual(device.status, 'active')
        self.assertEqual(device.attributes, {})
        self.assertTrue(device.is_enabled)

    def test_inactive_device_is_disabled(self):
        device = Device.objects.create(name='Van 2', unique_id='654321', status='inactive')
        self.assertFalse(device.is_enabled)

        device.status = 'maintenance'
        self.assertTrue(device.is_enabled)


class LocationDataModelTest(TestCase):
    """Test cases for LocationData model"""

    def setUp(self):
        self.device = Device.objects.create(name='Van 1', unique_id='123456')

    def test_position_conversion_keeps_network(self):
        """Test that a stored position converts back to the same record"""
        fix_time = datetime(2023, 11, 14, 22, 13, 20, tzinfo=dt_timezone.utc)
        network = Network()
        network.add_cell_tower(CellTower(250, 1, 1234, 5678, -70))
        position = Position(
            'osmand', device_id=self.device.id, fix_time=fix_time, device_time=fix_time,
            valid=True, latitude=52.5, longitude=13.4, speed=12.0, network=network,
            attributes={'batteryLevel': 80.0, 'ignition': True},
        )

        location = LocationData.from_position(position)
        location.save()
        restored = LocationData.objects.get(id=location.id).to_position()

        self.assertEqual(restored.device_id, self.device.id)
        self.assertEqual(restored.fix_time, fix_time)
        self.assertEqual(restored.network.cell_towers, [CellTower(250, 1, 1234, 5678, -70)])
        self.assertIsNone(restored.network.wifi_access_points)
        self.assertEqual(restored.attributes, {'batteryLevel': 80.0, 'ignition': True})
        self.assertEqual(restored.speed, 12.0)

    def test_position_without_network(self):
        location = LocationData.from_position(Position('osmand', device_id=self.device.id))
        self.assertIsNone(location.network)


class DeviceSessionManagerTest(TestCase):
    """Test cases for device session resolution"""

    def setUp(self):
        self.manager = DeviceSessionManager()
        self.device = Device.objects.create(name='Van 1', unique_id='123456')

    def test_known_device_resolves(self):
        session = self.manager.get_device_session('osmand', '10.0.0.1', '123456')
        self.assertEqual(session.device_id, self.device.id)
        self.assertEqual(session.unique_id, '123456')
        self.assertEqual(session.protocol, 'osmand')
        self.assertEqual(session.remote_address, '10.0.0.1')

    def test_first_matching_identifier_wins(self):
        session = self.manager.get_device_session('osmand', None, 'missing', '123456')
        self.assertEqual(session.device_id, self.device.id)

    def test_unknown_device_returns_none(self):
        self.assertIsNone(self.manager.get_device_session('osmand', None, '999'))
        self.assertFalse(Device.objects.filter(unique_id='999').exists())

    @override_settings(GPS_REGISTER_UNKNOWN_DEVICES=True)
    def test_unknown_device_registered_when_enabled(self):
        session = self.manager.get_device_session('osmand', '10.0.0.1', '999')
        device = Device.objects.get(unique_id='999')
        self.assertEqual(session.device_id, device.id)
        self.assertEqual(device.protocol, 'osmand')

    def test_explicit_flag_overrides_settings(self):
        manager = DeviceSessionManager(register_unknown=True)
        self.assertIsNotNone(manager.get_device_session('osmand', None, '777'))

    def test_inactive_device_is_refused(self):
        Device.objects.create(name='Old', unique_id='old-1', status='inactive')
        self.assertIsNone(self.manager.get_device_session('osmand', None, 'old-1'))

    def test_sessions_are_cached(self):
        self.manager.get_device_session('osmand', None, '123456')
        with self.assertNumQueries(0):
            session = self.manager.get_device_session('osmand', None, '123456')
        self.assertEqual(session.device_id, self.device.id)

    def test_device_save_evicts_cached_session(self):
        """Test that disabling a device takes effect on the shared manager"""
        session_manager.clear()
        self.assertIsNotNone(session_manager.get_device_session('osmand', None, '123456'))

        self.device.status = 'inactive'
        self.device.save()

        self.assertIsNone(session_manager.get_device_session('osmand', None, '123456'))


class CommandsManagerTest(TestCase):
    """Test cases for the per-device command queue"""

    def setUp(self):
        self.manager = CommandsManager()
        self.device = Device.objects.create(name='Van 1', unique_id='123456')
        self.other = Device.objects.create(name='Van 2', unique_id='654321')

    def test_queue_command(self):
        command = self.manager.queue_command(self.device.id, 'reboot')
        self.assertEqual(command.type, QueuedCommand.TYPE_CUSTOM)
        self.assertEqual(command.data, 'reboot')
        self.assertEqual(str(command), 'custom -> 123456')

    def test_read_is_fifo_and_destructive(self):
        self.manager.queue_command(self.device.id, 'first')
        self.manager.queue_command(self.device.id, 'second')
        self.manager.queue_command(self.other.id, 'other')

        commands = self.manager.read_queued_commands(self.device.id, 1)
        self.assertEqual([c.data for c in commands], ['first'])

        commands = self.manager.read_queued_commands(self.device.id, 5)
        self.assertEqual([c.data for c in commands], ['second'])

        self.assertEqual(self.manager.read_queued_commands(self.device.id, 1), [])
        self.assertEqual(QueuedCommand.objects.filter(device=self.other).count(), 1)

    def test_notification_token_appended_once(self):
        self.manager.update_notification_token(self.device.id, 'tok-1')
        self.manager.update_notification_token(self.device.id, 'tok-2')
        self.manager.update_notification_token(self.device.id, 'tok-1')

        self.device.refresh_from_db()
        self.assertEqual(self.device.attributes[NOTIFICATION_TOKENS_KEY], ['tok-1', 'tok-2'])

    def test_notification_token_for_missing_device(self):
        self.manager.update_notification_token(999999, 'tok-1')
        self.assertFalse(Device.objects.filter(id=999999).exists())


class LocationServicesTest(TestCase):
    """Test cases for last-location lookup and position storage"""

    def setUp(self):
        self.provider = LastLocationProvider()
        self.store = PositionStore()
        self.device = Device.objects.create(name='Van 1', unique_id='123456')

    def test_no_history(self):
        self.assertIsNone(self.provider.get_last_position(self.device.id))

    @override_settings(GPS_BROADCAST_POSITIONS=False)
    def test_latest_fix_is_returned(self):
        now = datetime(2023, 11, 14, 22, 0, tzinfo=dt_timezone.utc)
        for offset, latitude in ((0, 1.0), (10, 2.0), (5, 3.0)):
            self.store.store(Position(
                'osmand', device_id=self.device.id, fix_time=now + timedelta(minutes=offset),
                latitude=latitude, longitude=0.0,
            ))

        last = self.provider.get_last_position(self.device.id)
        self.assertEqual(last.latitude, 2.0)
        self.assertEqual(last.fix_time, now + timedelta(minutes=10))


class BroadcastSignalTest(TestCase):
    """Test cases for publishing stored positions to channel groups"""

    def setUp(self):
        self.device = Device.objects.create(name='Van 1', unique_id='123456')
        self.layer = RecordingChannelLayer()
        patcher = mock.patch('apps.gps_devices.signals.get_channel_layer', return_value=self.layer)
        patcher.start()
        self.addCleanup(patcher.stop)

    def test_new_position_is_broadcast(self):
        location = PositionStore().store(Position('osmand', device_id=self.device.id, latitude=1.0, longitude=2.0))

        groups = [group for group, _ in self.layer.sent]
        self.assertEqual(groups, [f'device_{self.device.id}', 'positions'])

        message = self.layer.sent[0][1]
        self.assertEqual(message['type'], 'position_update')
        self.assertEqual(message['device_id'], self.device.id)
        self.assertEqual(message['data']['latitude'], 1.0)
        self.assertEqual(message['data']['server_time'], location.server_time.isoformat())

    def test_updates_are_not_broadcast(self):
        location = PositionStore().store(Position('osmand', device_id=self.device.id))
        self.layer.sent.clear()

        location.valid = True
        location.save()
        self.assertEqual(self.layer.sent, [])

    @override_settings(GPS_BROADCAST_POSITIONS=False)
    def test_broadcast_disabled(self):
        PositionStore().store(Position('osmand', device_id=self.device.id))
        self.assertEqual(self.layer.sent, [])


@override_settings(GPS_BROADCAST_POSITIONS=False, TIME_ZONE='UTC')
class OsmAndReportViewTest(TestCase):
    """Test cases for the OsmAnd ingest endpoint"""

    def setUp(self):
        session_manager.clear()
        get_decoder.cache_clear()
        self.addCleanup(get_decoder.cache_clear)
        self.device = Device.objects.create(name='Van 1', unique_id='123')

    def test_report_is_stored(self):
        response = self.client.get('/', {'id': '123', 'lat': '10.5', 'lon': '20.5', 'speed': '5',
                                         'timestamp': '1700000000'})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.content, b'')
        location = LocationData.objects.get(device=self.device)
        self.assertEqual(location.latitude, 10.5)
        self.assertEqual(location.speed, 5.0)
        self.assertTrue(location.valid)
        self.assertEqual(location.fix_time, datetime(2023, 11, 14, 22, 13, 20, tzinfo=dt_timezone.utc))

    def test_unknown_device(self):
        response = self.client.get('/', {'id': '999', 'lat': '1', 'lon': '2'})
        self.assertEqual(response.status_code, 400)
        self.assertFalse(LocationData.objects.exists())

    def test_malformed_report(self):
        response = self.client.get('/', {'id': '123', 'lat': 'north', 'lon': '2'})
        self.assertEqual(response.status_code, 400)
        self.assertFalse(LocationData.objects.exists())

    def test_method_not_allowed(self):
        self.assertEqual(self.client.put('/').status_code, 405)

    def test_queued_command_piggybacked_once(self):
        CommandsManager().queue_command(self.device.id, 'reboot')

        first = self.client.get('/', {'id': '123', 'lat': '1', 'lon': '2'})
        second = self.client.get('/', {'id': '123', 'lat': '1', 'lon': '2'})

        self.assertEqual(first.content, b'reboot')
        self.assertEqual(second.content, b'')
        self.assertFalse(QueuedCommand.objects.exists())

    def test_failed_store_keeps_queued_command(self):
        """Test that a command is not lost when the position cannot be stored"""
        CommandsManager().queue_command(self.device.id, 'reboot')

        with mock.patch.object(position_store, 'store', side_effect=DatabaseError('disk full')):
            with self.assertRaises(DatabaseError):
                self.client.get('/', {'id': '123', 'lat': '1', 'lon': '2'})

        self.assertEqual(QueuedCommand.objects.get().data, 'reboot')
        response = self.client.get('/', {'id': '123', 'lat': '1', 'lon': '2'})
        self.assertEqual(response.content, b'reboot')

    def test_json_out_of_range_number(self):
        body = '{"device_id": "123", "location": {"timestamp": "2024-01-01T00:00:00Z", "odometer": 1e400}}'
        response = self.client.post('/', body, content_type='application/json')
        self.assertEqual(response.status_code, 400)
        self.assertFalse(LocationData.objects.exists())

    def test_form_post_without_csrf(self):
        client = self.client_class(enforce_csrf_checks=True)
        response = client.post('/', 'id=123&lat=1&lon=2', content_type='application/x-www-form-urlencoded')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(LocationData.objects.count(), 1)

    def test_report_without_coordinates_uses_last_location(self):
        self.client.get('/', {'id': '123', 'lat': '48.85', 'lon': '2.35', 'timestamp': '1700000000'})
        response = self.client.get('/', {'id': '123', 'batt': '40', 'timestamp': '1700000600'})

        self.assertEqual(response.status_code, 200)
        latest = LocationData.objects.filter(device=self.device).order_by('-id').first()
        self.assertTrue(latest.outdated)
        self.assertEqual((latest.latitude, latest.longitude), (48.85, 2.35))
        self.assertEqual(latest.fix_time, datetime(2023, 11, 14, 22, 13, 20, tzinfo=dt_timezone.utc))
        self.assertEqual(latest.device_time, datetime(2023, 11, 14, 22, 23, 20, tzinfo=dt_timezone.utc))
        self.assertEqual(latest.attributes, {'batteryLevel': 40.0})

    def test_notification_token_registered(self):
        self.client.get('/?id=123&notificationToken=tok-1&lat=1&lon=2')
        self.device.refresh_from_db()
        self.assertEqual(self.device.attributes[NOTIFICATION_TOKENS_KEY], ['tok-1'])

    def test_json_report(self):
        payload = {
            'device_id': '123',
            'location': {
                'timestamp': '2023-11-14T22:13:20.000Z',
                'coords': {'latitude': 1.5, 'longitude': 2.5, 'speed': 1, 'heading': 90},
                'battery': {'level': 0.5, 'is_charging': False},
            },
        }
        response = self.client.post('/', payload, content_type='application/json')

        self.assertEqual(response.status_code, 200)
        location = LocationData.objects.get(device=self.device)
        self.assertAlmostEqual(location.speed, 1.94384)
        self.assertEqual(location.attributes, {'batteryLevel': 50})

    def test_json_unknown_device(self):
        payload = {'device_id': 'nobody', 'location': {'timestamp': '2023-11-14T22:13:20Z'}}
        response = self.client.post('/', payload, content_type='application/json')
        self.assertEqual(response.status_code, 404)

    @override_settings(OSMAND_SPEED_UNIT='kmh')
    def test_speed_unit_setting(self):
        get_decoder.cache_clear()
        self.client.get('/', {'id': '123', 'lat': '1', 'lon': '2', 'speed': '100'})
        self.assertAlmostEqual(LocationData.objects.get().speed, 53.9957)


class QueueCommandManagementCommandTest(TestCase):
    """Test cases for the queue_command management command"""

    def setUp(self):
        self.device = Device.objects.create(name='Van 1', unique_id='123456')

    def test_queue_command(self):
        out = StringIO()
        call_command('queue_command', '123456', 'reboot', '--type', 'engineStop', stdout=out)

        command = QueuedCommand.objects.get(device=self.device)
        self.assertEqual(command.type, 'engineStop')
        self.assertEqual(command.data, 'reboot')
        self.assertIn(f'Queued command {command.id}', out.getvalue())

    def test_unknown_device(self):
        with self.assertRaises(CommandError):
            call_command('queue_command', 'nobody', 'reboot', stdout=StringIO())
