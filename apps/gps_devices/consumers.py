import json
import logging
from urllib.parse import parse_qs

from channels.generic.websocket import AsyncWebsocketConsumer

from .signals import POSITIONS_GROUP, device_group

logger = logging.getLogger(__name__)


class PositionConsumer(AsyncWebsocketConsumer):
    """
    WebSocket consumer:
    - Accepts only authenticated users (closes if anonymous).
    - Joins one group:
        * device_{id}  --> when connected with ?device=<id>
        * positions    --> otherwise, every stored position
    - Receives "position_update" events from channel layer and forwards to client.
    """
    group_name = None

    async def connect(self):
        user = self.scope.get("user")
        if not user or not user.is_authenticated:
            logger.info(f"Rejecting anonymous websocket connection: {self.scope.get('client')}")
            await self.close()
            return

        params = parse_qs(self.scope.get("query_string", b"").decode())
        device = params.get("device", [None])[0]
        if device is None:
            self.group_name = POSITIONS_GROUP
        elif device.isdigit():
            self.group_name = device_group(int(device))
        else:
            logger.info(f"Rejecting websocket connection with bad device filter {device!r}")
            await self.close()
            return

        await self.channel_layer.group_add(self.group_name, self.channel_name)
        logger.debug(f"WS {self.channel_name} joined {self.group_name}")
        await self.accept()

    async def disconnect(self, close_code):
        if self.group_name:
            await self.channel_layer.group_discard(self.group_name, self.channel_name)

    async def position_update(self, event):
        """
        Event shape expected:
        {
            "type": "position_update",
            "device_id": 42,
            "data": { ... }  # Position.to_dict()
        }
        """
        await self.send(text_data=json.dumps({
            "type": "position_update",
            "device_id": event.get("device_id"),
            "position": event.get("data") or {},
        }))
