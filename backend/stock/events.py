"""
Realtime stock change broadcasts.

Every committed coordinator operation pushes a ``stock.changed`` event to the
``stock`` channel group so connected dashboards can refresh counters and unit
states without polling.
"""

import logging

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer
from django.conf import settings
from django.db import transaction

from utils.constants import STOCK_EVENTS_GROUP

logger = logging.getLogger(__name__)


def broadcasts_enabled():
    return getattr(settings, 'STOCK_ENGINE', {}).get('BROADCAST_STOCK_EVENTS', True)


def build_stock_event(action, product, unit=None, movement=None):
    """
    Build the JSON-safe payload sent to WebSocket clients.

    Args:
        action: What happened (OUT, IN, RETURN, SCRAP, ...)
        product: Product after the operation
        unit: Unit touched by the operation, if any
        movement: Movement appended by the operation

    Returns:
        dict with product counters and the affected unit/movement ids
    """
    return {
        'action': str(action),
        'product': {
            'id': product.id,
            'sku': product.sku,
            'quantity': product.quantity,
            'status': product.status,
        },
        'unit': {
            'code': str(unit.code),
            'status': str(unit.status),
        } if unit is not None else None,
        'movement_id': movement.id if movement is not None else None,
    }


def _send(payload):
    try:
        channel_layer = get_channel_layer()
        if channel_layer:
            async_to_sync(channel_layer.group_send)(
                STOCK_EVENTS_GROUP,
                {
                    'type': 'stock.changed',
                    'event': payload,
                }
            )
            logger.info(f"Broadcasted {payload['action']} for product {payload['product']['sku']}")
    except Exception as e:
        logger.error(f"Failed to broadcast stock change for product {payload['product']['sku']}: {e}")


def broadcast_stock_change(action, product, unit=None, movement=None):
    """Queue a broadcast that is sent only if the surrounding transaction commits."""
    if not broadcasts_enabled():
        return
    payload = build_stock_event(action, product, unit=unit, movement=movement)
    transaction.on_commit(lambda: _send(payload))
