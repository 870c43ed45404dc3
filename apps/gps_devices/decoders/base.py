import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone as dt_timezone
from typing import Optional

from django.core.exceptions import ImproperlyConfigured
from django.http import HttpResponse
from django.utils import timezone

from ..position import Position
from .utils import SPEED_CONVERTERS, convert_speed

logger = logging.getLogger(__name__)

# Fix time reported when a device has no stored location yet
GPS_EPOCH = datetime(1980, 1, 6, 0, 0, 19, tzinfo=dt_timezone.utc)


class DecodeError(ValueError):
    """A report that cannot be turned into a Position."""


@dataclass
class DecodeResult:
    position: Optional[Position]
    response: HttpResponse


class BaseHttpProtocolDecoder(ABC):
    """
    Common plumbing for decoders fed by HTTP requests.

    Collaborators are injected so decoding stays free of global state:
      session_manager.get_device_session(protocol, remote_address, *unique_ids)
          -> session with a `device_id`, or None
      commands_manager.read_queued_commands(device_id, count) -> commands with `.data`
      commands_manager.update_notification_token(device_id, token)
      location_provider.get_last_position(device_id) -> Position or None
    """

    def __init__(self, protocol_name, session_manager, commands_manager, location_provider, speed_unit='kn'):
        if speed_unit not in SPEED_CONVERTERS:
            raise ImproperlyConfigured(f'Unsupported speed unit for {protocol_name}: {speed_unit}')
        self.protocol_name = protocol_name
        self.session_manager = session_manager
        self.commands_manager = commands_manager
        self.location_provider = location_provider
        self.speed_unit = speed_unit

    @abstractmethod
    def decode(self, request) -> DecodeResult:
        pass

    @staticmethod
    def remote_address(request):
        return request.META.get('REMOTE_ADDR')

    def get_device_session(self, remote_address, *unique_ids):
        session = self.session_manager.get_device_session(self.protocol_name, remote_address, *unique_ids)
        if session is None:
            logger.warning(f'Unknown {self.protocol_name} device {", ".join(unique_ids)} from {remote_address}')
        return session

    def convert_speed(self, value: float) -> float:
        return convert_speed(value, self.speed_unit)

    def get_last_location(self, position: Position, device_time: Optional[datetime]):
        """Fill a position lacking coordinates from the device's last stored one."""
        if not position.device_id:
            return
        position.outdated = True
        last = self.location_provider.get_last_position(position.device_id)
        if last is not None:
            position.fix_time = last.fix_time
            position.valid = last.valid
            position.latitude = last.latitude
            position.longitude = last.longitude
            position.altitude = last.altitude
            position.speed = last.speed
            position.course = last.course
            position.accuracy = last.accuracy
        else:
            position.fix_time = GPS_EPOCH
        position.device_time = device_time if device_time is not None else timezone.now()

    @staticmethod
    def send_response(status=200, content=''):
        return HttpResponse(content, status=status, content_type='text/plain; charset=utf-8')
