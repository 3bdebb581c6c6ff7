"""
Tests for realtime stock broadcasts and the WebSocket consumer.
"""

from unittest import mock

from channels.layers import get_channel_layer
from channels.testing import WebsocketCommunicator
from django.test import TestCase, TransactionTestCase, override_settings

from stock.consumers import StockConsumer
from stock.services import AllocationService
from stock.tests.helpers import make_product, make_tracked_product, make_user
from utils.constants import STOCK_EVENTS_GROUP


class BroadcastTest(TestCase):

    def setUp(self):
        self.consumer = make_user('consumer')
        self.channel_layer = mock.MagicMock()
        self.channel_layer.group_send = mock.AsyncMock()

    def test_broadcast_after_commit(self):
        product, units = make_tracked_product('EVT-1', units=1)

        with mock.patch('stock.events.get_channel_layer', return_value=self.channel_layer):
            with self.captureOnCommitCallbacks(execute=True):
                AllocationService.allocate_for_consumption(product.id, 1, self.consumer.id, '')

        self.channel_layer.group_send.assert_awaited_once()
        group, message = self.channel_layer.group_send.await_args.args
        self.assertEqual(group, STOCK_EVENTS_GROUP)
        self.assertEqual(message['type'], 'stock.changed')
        self.assertEqual(message['event']['action'], 'OUT')
        self.assertEqual(message['event']['product']['quantity'], 0)
        self.assertEqual(message['event']['unit']['code'], str(units[0].code))
        self.assertEqual(message['event']['unit']['status'], 'ACQUIRED')

    def test_no_broadcast_on_failure(self):
        product = make_product('EVT-2', quantity=1)

        with mock.patch('stock.events.get_channel_layer', return_value=self.channel_layer):
            with self.captureOnCommitCallbacks(execute=True) as callbacks:
                with self.assertRaises(Exception):
                    AllocationService.allocate_for_consumption(product.id, 2, self.consumer.id, '')

        self.assertEqual(callbacks, [])
        self.channel_layer.group_send.assert_not_awaited()

    @override_settings(STOCK_ENGINE={'BROADCAST_STOCK_EVENTS': False})
    def test_broadcast_disabled(self):
        product = make_product('EVT-3', quantity=1)
        with self.captureOnCommitCallbacks(execute=True) as callbacks:
            AllocationService.allocate_for_consumption(product.id, 1, self.consumer.id, '')
        self.assertEqual(callbacks, [])

    def test_layer_failure_is_logged(self):
        self.channel_layer.group_send.side_effect = ConnectionError('layer down')
        product = make_product('EVT-4', quantity=3)

        with mock.patch('stock.events.get_channel_layer', return_value=self.channel_layer):
            with self.assertLogs('stock.events', level='ERROR'):
                with self.captureOnCommitCallbacks(execute=True):
                    AllocationService.allocate_for_consumption(product.id, 1, self.consumer.id, '')

        product.refresh_from_db()
        self.assertEqual(product.quantity, 2)


class StockConsumerTest(TransactionTestCase):

    async def test_receives_group_messages(self):
        communicator = WebsocketCommunicator(StockConsumer.as_asgi(), '/ws/stock/')
        connected, _ = await communicator.connect()
        self.assertTrue(connected)

        await get_channel_layer().group_send(STOCK_EVENTS_GROUP, {
            'type': 'stock.changed',
            'event': {'action': 'IN', 'product': {'id': 1}},
        })
        message = await communicator.receive_json_from()
        self.assertEqual(message['type'], 'stock.changed')
        self.assertEqual(message['event']['action'], 'IN')

        await communicator.disconnect()
