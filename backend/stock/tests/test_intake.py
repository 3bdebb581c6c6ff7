"""
Tests for AllocationService.receive_stock.
"""

from django.core.exceptions import ValidationError
from django.test import TestCase

from stock.models import Invoice, Movement, Unit
from stock.services import AllocationService
from stock.tests.helpers import make_product, make_tracked_product, make_user
from utils.exceptions import ProductNotFound


class IntakeTest(TestCase):

    def setUp(self):
        self.clerk = make_user('clerk')

    def test_receive_units(self):
        product = make_product('IN-1')
        result = AllocationService.receive_stock(
            product.id, 3,
            track_units=True,
            invoice_number=' NF-100 ',
            request_id='PO-7',
            notes='first batch',
            performed_by_id=self.clerk.id,
        )

        self.assertEqual(result.received, 3)
        self.assertEqual(result.quantity, 3)
        self.assertEqual(result.status, 'Stock Low')
        self.assertEqual(len(result.units), 3)
        self.assertEqual(len({u.code for u in result.units}), 3)

        invoice = Invoice.objects.get(pk=result.invoice_id)
        self.assertEqual(invoice.invoice_number, 'NF-100')
        self.assertEqual(invoice.quantity, 3)
        self.assertEqual(invoice.request_id, 'PO-7')

        units = Unit.objects.filter(product=product)
        self.assertEqual(units.count(), 3)
        self.assertTrue(all(u.status == Unit.Status.IN_STOCK for u in units))
        self.assertTrue(all(u.invoice_id == invoice.id for u in units))

        movement = Movement.objects.get(pk=result.movement_id)
        self.assertEqual(movement.movement_type, 'IN')
        self.assertEqual(movement.quantity, 3)
        self.assertEqual(movement.quantity_before, 0)
        self.assertEqual(movement.quantity_after, 3)
        self.assertEqual(movement.reason, 'Intake')
        self.assertEqual(movement.invoice, invoice)
        self.assertEqual(movement.performed_by, self.clerk)

        product.refresh_from_db()
        self.assertTrue(product.is_unit_tracked)

    def test_receive_bulk(self):
        product = make_product('IN-2', quantity=15)
        result = AllocationService.receive_stock(product.id, 10, invoice_number='NF-200')

        self.assertEqual(result.quantity, 25)
        self.assertEqual(result.status, 'Available')
        self.assertEqual(result.units, [])
        self.assertFalse(Unit.objects.filter(product=product).exists())

        movement = Movement.objects.get(pk=result.movement_id)
        self.assertEqual(movement.quantity_change, 10)
        self.assertIsNone(movement.unit)

    def test_tracked_product_must_receive_units(self):
        product, units = make_tracked_product('IN-3', units=1)
        with self.assertRaises(ValidationError) as ctx:
            AllocationService.receive_stock(product.id, 5, invoice_number='NF-300')
        self.assertIn('track_units', ctx.exception.message_dict)

        product.refresh_from_db()
        self.assertEqual(product.quantity, 1)
        self.assertEqual(Invoice.objects.filter(product=product).count(), 1)

    def test_bulk_stock_cannot_switch_to_units(self):
        product = make_product('IN-4', quantity=4)
        with self.assertRaises(ValidationError):
            AllocationService.receive_stock(product.id, 2, track_units=True, invoice_number='NF-400')
        self.assertFalse(Unit.objects.filter(product=product).exists())

    def test_empty_bulk_product_can_switch_to_units(self):
        product = make_product('IN-5')
        result = AllocationService.receive_stock(product.id, 1, track_units=True, invoice_number='NF-500')
        self.assertEqual(len(result.units), 1)

    def test_validation(self):
        product = make_product('IN-6')
        with self.assertRaises(ValidationError):
            AllocationService.receive_stock(product.id, 0, invoice_number='NF-600')
        with self.assertRaises(ValidationError):
            AllocationService.receive_stock(product.id, 1, invoice_number='  ')
        with self.assertRaises(ProductNotFound):
            AllocationService.receive_stock(999999, 1, invoice_number='NF-601')
        self.assertFalse(Movement.objects.exists())
