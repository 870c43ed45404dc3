import logging
import threading
from dataclasses import dataclass
from typing import Dict, Optional

from django.conf import settings

from ..models import Device

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeviceSession:
    device_id: int
    unique_id: str
    protocol: str
    remote_address: Optional[str] = None


class DeviceSessionManager:
    """
    Resolves wire-level identifiers to devices and caches the resulting sessions.

    An unknown or disabled device yields None rather than raising. Cached
    sessions are evicted by the Device save/delete signals.
    """

    def __init__(self, register_unknown=None):
        self.register_unknown = register_unknown
        self._sessions: Dict[str, DeviceSession] = {}
        self._lock = threading.RLock()

    def registers_unknown(self):
        if self.register_unknown is not None:
            return self.register_unknown
        return settings.GPS_REGISTER_UNKNOWN_DEVICES

    def get_device_session(self, protocol, remote_address, *unique_ids) -> Optional[DeviceSession]:
        with self._lock:
            for unique_id in unique_ids:
                session = self._sessions.get(unique_id)
                if session is not None:
                    return session

        device = None
        for unique_id in unique_ids:
            device = Device.objects.filter(unique_id=unique_id).first()
            if device is not None:
                break

        if device is None and self.registers_unknown() and unique_ids:
            device, created = Device.objects.get_or_create(
                unique_id=unique_ids[0],
                defaults={'name': unique_ids[0], 'protocol': protocol},
            )
            if created:
                logger.info(f'Registered unknown device {device.unique_id} ({protocol}, {remote_address})')

        if device is None:
            return None

        if not device.is_enabled:
            logger.warning(f'Device {device.unique_id} is disabled, rejecting report from {remote_address}')
            return None

        session = DeviceSession(device.id, device.unique_id, protocol, remote_address)
        with self._lock:
            self._sessions[device.unique_id] = session
        return session

    def invalidate_device(self, device_id):
        with self._lock:
            for unique_id in [k for k, s in self._sessions.items() if s.device_id == device_id]:
                del self._sessions[unique_id]

    def clear(self):
        with self._lock:
            self._sessions.clear()


session_manager = DeviceSessionManager()
