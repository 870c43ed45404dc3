from django.core.management.base import BaseCommand, CommandError

from apps.gps_devices.models import Device, QueuedCommand
from apps.gps_devices.services import commands_manager


class Command(BaseCommand):
    help = 'Queue a command to be piggybacked on the next report of a device'

    def add_arguments(self, parser):
        parser.add_argument('unique_id', help='Identifier the device reports as id/deviceid')
        parser.add_argument('data', help='Payload returned to the device in the HTTP response body')
        parser.add_argument('--type', default=QueuedCommand.TYPE_CUSTOM, help='Command type')

    def handle(self, *args, **options):
        device = Device.objects.filter(unique_id=options['unique_id']).first()
        if device is None:
            raise CommandError(f"Unknown device: {options['unique_id']}")

        command = commands_manager.queue_command(device.id, options['data'], type=options['type'])
        self.stdout.write(f'Queued command {command.id} for {device}')
