"""
Unit tests for FulfillmentService.

Tests request fulfillment:
- Mixed bulk and unit-tracked lines
- Validation before any allocation
- All-or-nothing when a line cannot be covered
- Retrying a request that lost a unit race
"""

from unittest import mock

from django.core.exceptions import ValidationError
from django.test import TestCase

from stock.models import Movement, Unit
from stock.repository import StockRepository
from stock.services import FulfillmentService
from stock.tests.helpers import make_product, make_tracked_product, make_user
from utils.exceptions import InsufficientStock, NoUnitInStock, UnitQuantityMustBeOne, UnitRaceCondition


class FulfillmentServiceTest(TestCase):
    """Test cases for FulfillmentService."""

    def setUp(self):
        """Set up test data."""
        self.consumer = make_user('consumer')
        self.clerk = make_user('clerk')
        self.laptop, self.laptops = make_tracked_product('LAPTOP', units=2)
        self.paper = make_product('PAPER', quantity=30)

    def test_fulfill_mixed_request(self):
        """Test a request with one unit line and one bulk line"""
        result = FulfillmentService.fulfill_request(
            'REQ-42',
            [
                {'product_id': self.laptop.id, 'quantity': 1},
                {'product_id': self.paper.id, 'quantity': 12, 'cost_center': 'ADM'},
            ],
            self.consumer.id,
            performed_by_id=self.clerk.id,
        )

        self.assertTrue(result['success'])
        self.assertEqual(len(result['allocations']), 2)
        self.assertEqual(result['allocations'][0]['unit_code'], str(self.laptops[0].code))
        self.assertIsNone(result['allocations'][1]['unit_code'])
        self.assertEqual(result['allocations'][1]['quantity'], 18)

        movements = Movement.objects.filter(request_id='REQ-42', movement_type='OUT')
        self.assertEqual(movements.count(), 2)
        self.assertTrue(all(m.reason == 'Requisição REQ-42' for m in movements))
        self.assertTrue(all(m.performed_by == self.clerk for m in movements))
        self.assertEqual(movements.get(product=self.paper).cost_center, 'ADM')

    def test_unit_line_quantity_validated_first(self):
        """Test a multi-unit line is rejected before anything is allocated"""
        with self.assertRaises(UnitQuantityMustBeOne) as ctx:
            FulfillmentService.fulfill_request(
                'REQ-1',
                [
                    {'product_id': self.paper.id, 'quantity': 1},
                    {'product_id': self.laptop.id, 'quantity': 2},
                ],
                self.consumer.id,
            )
        self.assertEqual(ctx.exception.context['line'], 2)
        self.assertFalse(Movement.objects.filter(movement_type='OUT').exists())

    def test_invalid_lines(self):
        with self.assertRaises(ValidationError):
            FulfillmentService.fulfill_request('REQ-2', [], self.consumer.id)
        with self.assertRaises(ValidationError):
            FulfillmentService.fulfill_request('REQ-2', [{'product_id': 999999, 'quantity': 1}], self.consumer.id)
        with self.assertRaises(ValidationError):
            FulfillmentService.fulfill_request('REQ-2', [{'product_id': self.paper.id, 'quantity': 0}], self.consumer.id)

    def test_all_or_nothing(self):
        """Test a short line rolls back the lines before it"""
        with self.assertRaises(InsufficientStock):
            FulfillmentService.fulfill_request(
                'REQ-3',
                [
                    {'product_id': self.laptop.id, 'quantity': 1},
                    {'product_id': self.paper.id, 'quantity': 31},
                ],
                self.consumer.id,
            )

        self.assertFalse(Movement.objects.filter(movement_type='OUT').exists())
        self.assertEqual(Unit.objects.filter(status=Unit.Status.IN_STOCK).count(), 2)
        self.paper.refresh_from_db()
        self.assertEqual(self.paper.quantity, 30)

    def test_unit_shortage_rolls_back(self):
        with self.assertRaises(NoUnitInStock):
            FulfillmentService.fulfill_request(
                'REQ-4',
                [{'product_id': self.laptop.id, 'quantity': 1}] * 3,
                self.consumer.id,
            )
        self.assertEqual(Unit.objects.filter(status=Unit.Status.IN_STOCK).count(), 2)

    def test_race_retries_whole_request(self):
        original = StockRepository.try_set_unit_status
        calls = []

        def lose_first(*args, **kwargs):
            calls.append(args[0])
            if len(calls) == 1:
                return False
            return original(*args, **kwargs)

        with mock.patch.object(StockRepository, 'try_set_unit_status', side_effect=lose_first):
            result = FulfillmentService.fulfill_request(
                'REQ-5',
                [{'product_id': self.paper.id, 'quantity': 2}, {'product_id': self.laptop.id, 'quantity': 1}],
                self.consumer.id,
            )

        self.assertEqual(len(calls), 2)
        self.assertEqual(len(result['allocations']), 2)
        # The bulk line from the lost attempt was rolled back
        self.assertEqual(Movement.objects.filter(product=self.paper, movement_type='OUT').count(), 1)
        self.paper.refresh_from_db()
        self.assertEqual(self.paper.quantity, 28)

    def test_race_retries_exhausted(self):
        with mock.patch.object(StockRepository, 'try_set_unit_status', return_value=False):
            with self.assertRaises(UnitRaceCondition):
                FulfillmentService.fulfill_request(
                    'REQ-6', [{'product_id': self.laptop.id, 'quantity': 1}], self.consumer.id
                )
        self.assertFalse(Movement.objects.filter(movement_type='OUT').exists())
