from typing import Optional

from ..models import LocationData
from ..position import Position


class LastLocationProvider:
    """Most recent stored position of a device, used when a report has no coordinates."""

    def get_last_position(self, device_id) -> Optional[Position]:
        last_location = LocationData.objects.filter(device_id=device_id).order_by('-fix_time', '-id').first()
        if last_location is None:
            return None
        return last_location.to_position()


class PositionStore:
    """Hands decoded positions off to storage; saving fires the broadcast signal."""

    def store(self, position: Position) -> LocationData:
        location = LocationData.from_position(position)
        location.save()
        return location


location_provider = LastLocationProvider()
position_store = PositionStore()
