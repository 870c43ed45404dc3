from django.contrib.auth.models import User
from django.test import TestCase
from django.urls import reverse

from apps.gps_devices.models import Device, QueuedCommand
from apps.gps_devices.services import commands_manager


class HealthCheckViewTest(TestCase):
    """Test cases for the health endpoint"""

    def test_health_is_public(self):
        response = self.client.get(reverse('api_v1_health'))
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {'ok': True, 'service': 'Fleet Gateway API', 'version': 'v1'})


class DeviceCommandsViewTest(TestCase):
    """Test cases for queueing commands through the API"""

    def setUp(self):
        self.user = User.objects.create_user(
            username='operator',
            email='operator@example.com',
            password='testpass123'
        )
        self.device = Device.objects.create(name='Van 1', unique_id='123456')
        self.url = reverse('api_v1_device_commands', kwargs={'unique_id': '123456'})
        self.client.force_login(self.user)

    def test_requires_authentication(self):
        """Test that anonymous users cannot see or queue commands"""
        self.client.logout()
        self.assertIn(self.client.get(self.url).status_code, (401, 403))
        self.assertIn(self.client.post(self.url, {'data': 'reboot'}, content_type='application/json').status_code,
                      (401, 403))
        self.assertFalse(QueuedCommand.objects.exists())

    def test_queue_command(self):
        """Test queueing a command for a device"""
        response = self.client.post(self.url, {'data': 'reboot'}, content_type='application/json')

        self.assertEqual(response.status_code, 201)
        body = response.json()
        self.assertTrue(body['ok'])
        self.assertEqual(body['command']['device'], '123456')
        self.assertEqual(body['command']['type'], QueuedCommand.TYPE_CUSTOM)
        self.assertEqual(body['command']['payload'], 'reboot')
        self.assertNotIn('data', body['command'])

        command = QueuedCommand.objects.get(device=self.device)
        self.assertEqual(command.data, 'reboot')

    def test_queue_command_with_type(self):
        response = self.client.post(self.url, {'data': 'stop', 'type': 'engineStop'},
                                    content_type='application/json')
        self.assertEqual(response.status_code, 201)
        self.assertEqual(QueuedCommand.objects.get().type, 'engineStop')

    def test_missing_payload(self):
        response = self.client.post(self.url, {}, content_type='application/json')
        self.assertEqual(response.status_code, 400)
        self.assertFalse(response.json()['ok'])
        self.assertIn('data', response.json()['error'])

    def test_list_pending_commands(self):
        """Test that pending commands are listed oldest first"""
        commands_manager.queue_command(self.device.id, 'first')
        commands_manager.queue_command(self.device.id, 'second')

        response = self.client.get(self.url)

        self.assertEqual(response.status_code, 200)
        payloads = [c['payload'] for c in response.json()['commands']]
        self.assertEqual(payloads, ['first', 'second'])

    def test_delivered_commands_are_not_listed(self):
        commands_manager.queue_command(self.device.id, 'first')
        commands_manager.read_queued_commands(self.device.id, 1)

        response = self.client.get(self.url)
        self.assertEqual(response.json()['commands'], [])

    def test_unknown_device(self):
        url = reverse('api_v1_device_commands', kwargs={'unique_id': 'nobody'})

        response = self.client.get(url)
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json(), {'ok': False, 'error': 'device_not_found'})

        response = self.client.post(url, {'data': 'reboot'}, content_type='application/json')
        self.assertEqual(response.status_code, 404)
