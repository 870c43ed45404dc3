from django.conf import settings
from django.db.models.signals import post_delete, post_save
from django.dispatch import receiver
from channels.layers import get_channel_layer
from asgiref.sync import async_to_sync
from .models import Device, LocationData
from .services.sessions import session_manager
import logging

logger = logging.getLogger(__name__)

POSITIONS_GROUP = 'positions'


def device_group(device_id):
    return f'device_{device_id}'


@receiver(post_save, sender=LocationData)
def broadcast_position(sender, instance, created, **kwargs):
    """
    Publishes a stored position to Channels groups:
    - device_{device.id} for per-device listeners
    - positions for fleet-wide listeners
    """
    if not created or not settings.GPS_BROADCAST_POSITIONS:
        return

    try:
        channel_layer = get_channel_layer()
        if channel_layer is None:
            return

        message = {
            'type': 'position_update',
            'device_id': instance.device_id,
            'data': instance.to_position().to_dict(),
        }
        async_to_sync(channel_layer.group_send)(device_group(instance.device_id), message)
        async_to_sync(channel_layer.group_send)(POSITIONS_GROUP, message)
    except Exception as e:
        logger.error(f"Error broadcasting position {instance.id}: {e}")


@receiver(post_save, sender=Device)
@receiver(post_delete, sender=Device)
def evict_device_session(sender, instance, **kwargs):
    session_manager.invalidate_device(instance.id)
