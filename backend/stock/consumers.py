"""
WebSocket consumer for real-time stock updates.

Broadcast-only: clients connect to ws://host/ws/stock/ and receive one
message per committed stock operation:

{
    "type": "stock.changed",
    "event": {
        "action": "OUT" | "IN" | "RETURN" | "REPAIR_OUT" | "REPAIR_IN" | "SCRAP" | "LOST",
        "product": {"id": 1, "sku": "...", "quantity": 4, "status": "Stock Low"},
        "unit": {"code": "...", "status": "ACQUIRED"} | null,
        "movement_id": 12
    }
}
"""
import json
import logging

from channels.generic.websocket import AsyncWebsocketConsumer

from utils.constants import STOCK_EVENTS_GROUP

logger = logging.getLogger(__name__)


class StockConsumer(AsyncWebsocketConsumer):

    async def connect(self):
        self.group_name = STOCK_EVENTS_GROUP

        if self.channel_layer:
            await self.channel_layer.group_add(
                self.group_name,
                self.channel_name
            )
        else:
            logger.warning("Channel layer is not configured; stock socket will not receive broadcasts")

        await self.accept()

    async def disconnect(self, close_code):
        if self.channel_layer and hasattr(self, 'group_name'):
            await self.channel_layer.group_discard(
                self.group_name,
                self.channel_name
            )

    async def stock_changed(self, event):
        """Forward a 'stock.changed' group message to the client."""
        await self.send(text_data=json.dumps({
            'type': 'stock.changed',
            'event': event['event']
        }))
