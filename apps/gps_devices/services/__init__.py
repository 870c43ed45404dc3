from .commands import CommandsManager, commands_manager
from .locations import LastLocationProvider, PositionStore, location_provider, position_store
from .sessions import DeviceSession, DeviceSessionManager, session_manager

__all__ = [
    'CommandsManager',
    'commands_manager',
    'LastLocationProvider',
    'PositionStore',
    'location_provider',
    'position_store',
    'DeviceSession',
    'DeviceSessionManager',
    'session_manager',
]
