"""
Canonical, protocol-agnostic telemetry records produced by the decoders.

A Position is built fresh for every inbound report and handed off once the
decoder returns; nothing mutates it afterwards.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from django.utils import timezone

# Values allowed in the open attribute bag
AttributeValue = Union[float, int, bool, str]

KEY_HDOP = 'hdop'
KEY_BATTERY_LEVEL = 'batteryLevel'
KEY_DRIVER_UNIQUE_ID = 'driverUniqueId'
KEY_CHARGE = 'charge'
KEY_EVENT = 'event'
KEY_MOTION = 'motion'
KEY_ODOMETER = 'odometer'
KEY_ALARM = 'alarm'
KEY_MOCK = 'mock'
KEY_ACTIVITY = 'activity'


@dataclass
class CellTower:
    mobile_country_code: int
    mobile_network_code: int
    location_area_code: int
    cell_id: int
    signal_strength: Optional[int] = None


@dataclass
class WifiAccessPoint:
    mac_address: str
    signal_strength: int


@dataclass
class Network:
    """Radio positioning aid; each list stays None until its first entry."""
    cell_towers: Optional[List[CellTower]] = None
    wifi_access_points: Optional[List[WifiAccessPoint]] = None

    def add_cell_tower(self, cell_tower: CellTower):
        if self.cell_towers is None:
            self.cell_towers = []
        self.cell_towers.append(cell_tower)

    def add_wifi_access_point(self, access_point: WifiAccessPoint):
        if self.wifi_access_points is None:
            self.wifi_access_points = []
        self.wifi_access_points.append(access_point)

    def has_entries(self) -> bool:
        return self.cell_towers is not None or self.wifi_access_points is not None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Network':
        network = cls()
        for tower in data.get('cell_towers') or []:
            network.add_cell_tower(CellTower(**tower))
        for access_point in data.get('wifi_access_points') or []:
            network.add_wifi_access_point(WifiAccessPoint(**access_point))
        return network


@dataclass
class Position:
    protocol: str
    device_id: int = 0
    server_time: datetime = field(default_factory=timezone.now)
    device_time: Optional[datetime] = None
    fix_time: Optional[datetime] = None
    outdated: bool = False
    valid: bool = False
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    altitude: Optional[float] = None
    speed: Optional[float] = None  # knots
    course: Optional[float] = None
    accuracy: Optional[float] = None
    network: Optional[Network] = None
    attributes: Dict[str, AttributeValue] = field(default_factory=dict)

    def set_time(self, time: datetime):
        self.device_time = time
        self.fix_time = time

    def set(self, key: str, value: Optional[AttributeValue]):
        if value is not None:
            self.attributes[key] = value

    def get(self, key: str, default=None):
        return self.attributes.get(key, default)

    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        for key in ('server_time', 'device_time', 'fix_time'):
            if data[key] is not None:
                data[key] = data[key].isoformat()
        return data
