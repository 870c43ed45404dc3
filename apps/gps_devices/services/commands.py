import logging
from typing import List

from django.db import transaction

from ..models import Device, QueuedCommand

logger = logging.getLogger(__name__)

NOTIFICATION_TOKENS_KEY = 'notificationTokens'


class CommandsManager:
    """
    Per-device outbound command queue drained by the protocol decoders.
    """

    def queue_command(self, device_id, data, type=QueuedCommand.TYPE_CUSTOM) -> QueuedCommand:
        command = QueuedCommand.objects.create(device_id=device_id, type=type, attributes={'data': data})
        logger.info(f'Queued {type} command {command.id} for device {device_id}')
        return command

    def read_queued_commands(self, device_id, count=1) -> List[QueuedCommand]:
        """Dequeue up to `count` commands, oldest first. Returned commands are removed."""
        with transaction.atomic():
            commands = list(
                QueuedCommand.objects.select_for_update()
                .filter(device_id=device_id)
                .order_by('id')[:count]
            )
            if commands:
                QueuedCommand.objects.filter(id__in=[c.id for c in commands]).delete()
        return commands

    def update_notification_token(self, device_id, token):
        with transaction.atomic():
            device = Device.objects.select_for_update().filter(id=device_id).first()
            if device is None:
                return
            tokens = list(device.attributes.get(NOTIFICATION_TOKENS_KEY) or [])
            if token in tokens:
                return
            tokens.append(token)
            device.attributes[NOTIFICATION_TOKENS_KEY] = tokens
            device.save(update_fields=['attributes', 'updated_at'])
        logger.info(f'Registered notification token for device {device_id}')


commands_manager = CommandsManager()
