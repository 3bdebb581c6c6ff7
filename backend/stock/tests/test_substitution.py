"""
Tests for acquiring a scanned unit and for unit substitution.
"""

import uuid
from unittest import mock

from django.core.exceptions import ValidationError
from django.test import TestCase
from django.urls import reverse
from rest_framework import status
from rest_framework.test import APIClient

from stock.models import Movement, Unit
from stock.repository import StockRepository
from stock.services import AllocationService, LedgerService, TransitionMetadata
from stock.tests.helpers import grant_write_off, make_tracked_product, make_user
from stock.transitions import Capability, UnitAction
from utils.exceptions import (
    Forbidden, InactiveConsumer, InvalidTransition, UnitNotFound, UnitRaceCondition
)


class AcquireUnitTest(TestCase):

    def setUp(self):
        self.consumer = make_user('consumer')
        self.clerk = make_user('clerk')
        self.product, self.units = make_tracked_product('SCAN-1', units=3)

    def test_acquire_specific_unit(self):
        """The scanned unit is taken even though older units are in stock"""
        target = self.units[2]
        result = AllocationService.acquire_unit(
            target.code, self.consumer.id, 'scan',
            performed_by_id=self.clerk.id, cost_center='OPS'
        )

        self.assertEqual(result.unit.id, target.id)
        self.assertEqual(result.quantity, 2)

        unit = Unit.objects.get(pk=target.pk)
        self.assertEqual(unit.status, Unit.Status.ACQUIRED)
        self.assertEqual(unit.assigned_to, self.consumer)
        self.assertEqual(unit.acquired_by, self.clerk)
        self.assertEqual(unit.cost_center, 'OPS')

        movement = Movement.objects.get(pk=result.movement_id)
        self.assertEqual(movement.movement_type, 'OUT')
        self.assertEqual(movement.unit, unit)
        self.assertEqual(movement.quantity_change, -1)

        # FIFO allocation still starts from the oldest remaining unit
        fifo = AllocationService.allocate_for_consumption(self.product.id, 1, self.consumer.id, '')
        self.assertEqual(fifo.unit.id, self.units[0].id)

    def test_request_id_defaults_to_intake(self):
        product, units = make_tracked_product('SCAN-2', units=1)
        invoice = units[0].invoice
        # Intake without a request reference
        self.assertEqual(invoice.request_id, '')

        result = AllocationService.receive_stock(
            product.id, 1, track_units=True, invoice_number='NF-9', request_id='REQ-77'
        )
        acquired = AllocationService.acquire_unit(result.units[0].code, self.consumer.id)
        self.assertEqual(Movement.objects.get(pk=acquired.movement_id).request_id, 'REQ-77')

    def test_already_acquired(self):
        AllocationService.acquire_unit(self.units[0].code, self.consumer.id)
        with self.assertRaises(InvalidTransition) as ctx:
            AllocationService.acquire_unit(self.units[0].code, self.consumer.id)
        self.assertEqual(ctx.exception.context['status'], 'ACQUIRED')
        self.assertEqual(Movement.objects.filter(movement_type='OUT').count(), 1)

    def test_unknown_unit_and_inactive_consumer(self):
        with self.assertRaises(UnitNotFound):
            AllocationService.acquire_unit(uuid.uuid4(), self.consumer.id)
        inactive = make_user('gone', is_active=False)
        with self.assertRaises(InactiveConsumer):
            AllocationService.acquire_unit(self.units[0].code, inactive.id)

    def test_lost_race_changes_nothing(self):
        with mock.patch.object(StockRepository, 'try_set_unit_status', return_value=False):
            with self.assertRaises(UnitRaceCondition):
                AllocationService.acquire_unit(self.units[0].code, self.consumer.id)
        self.product.refresh_from_db()
        self.assertEqual(self.product.quantity, 3)
        self.assertFalse(Movement.objects.filter(movement_type='OUT').exists())


class SubstituteUnitTest(TestCase):

    def setUp(self):
        self.consumer = make_user('consumer')
        self.clerk = make_user('clerk')
        self.product, self.units = make_tracked_product('SUB-1', units=3)
        self.held = AllocationService.allocate_for_consumption(
            self.product.id, 1, self.consumer.id, 'Requisição 1'
        ).unit
        self.replacement = self.units[2]

    def substitute(self, disposition=UnitAction.RETURN, **kwargs):
        kwargs.setdefault('metadata', TransitionMetadata(reason='Troca', performed_by_id=self.clerk.id))
        return AllocationService.substitute_unit(
            self.held.code, self.replacement.code, disposition, **kwargs
        )

    def test_return_and_replace(self):
        result = self.substitute()

        old = Unit.objects.get(pk=self.held.pk)
        new = Unit.objects.get(pk=self.replacement.pk)
        self.assertEqual(old.status, Unit.Status.IN_STOCK)
        self.assertIsNone(old.assigned_to)
        self.assertEqual(new.status, Unit.Status.ACQUIRED)
        self.assertEqual(new.assigned_to, self.consumer)
        self.assertEqual(new.acquired_by, self.clerk)

        # One unit back, one unit out
        self.assertEqual(result.acquired.quantity, 2)
        self.product.refresh_from_db()
        self.assertEqual(self.product.quantity, 2)

        movements = Movement.objects.filter(request_id=result.request_id).order_by('id')
        self.assertEqual([m.movement_type for m in movements], ['RETURN', 'OUT'])
        self.assertEqual(result.request_id, result.substitution_id)
        for movement in movements:
            self.assertIn(f'SUB:{result.substitution_id}', movement.notes)
            self.assertIn(f'NEW:{self.replacement.code}', movement.notes)
            self.assertEqual(movement.reason, 'Troca')

        self.assertTrue(LedgerService.check_product(self.product)['balanced'])

    def test_repair_out_keeps_counter(self):
        result = self.substitute(UnitAction.REPAIR_OUT)
        self.assertEqual(result.released.to_status, Unit.Status.IN_REPAIR)
        self.product.refresh_from_db()
        self.assertEqual(self.product.quantity, 1)

    def test_scrap_needs_elevated(self):
        with self.assertRaises(Forbidden):
            self.substitute(UnitAction.SCRAP)
        self.assertEqual(Unit.objects.get(pk=self.replacement.pk).status, Unit.Status.IN_STOCK)

        result = self.substitute(UnitAction.SCRAP, capability=Capability.ELEVATED)
        self.assertEqual(result.released.to_status, Unit.Status.SCRAPPED)

    def test_replacement_must_be_in_stock(self):
        other = AllocationService.allocate_for_consumption(self.product.id, 1, self.clerk.id, '').unit
        with self.assertRaises(InvalidTransition):
            AllocationService.substitute_unit(self.held.code, other.code)
        self.assertEqual(Unit.objects.get(pk=self.held.pk).status, Unit.Status.ACQUIRED)

    def test_old_unit_must_be_held(self):
        with self.assertRaises(InvalidTransition):
            AllocationService.substitute_unit(self.units[1].code, self.replacement.code)

    def test_in_repair_unit_can_only_be_written_off(self):
        AllocationService.transition_unit(self.held.code, UnitAction.REPAIR_OUT)
        with self.assertRaises(InvalidTransition):
            self.substitute(UnitAction.RETURN, consumer_id=self.consumer.id)

        result = self.substitute(UnitAction.LOST, consumer_id=self.consumer.id, capability=Capability.ELEVATED)
        self.assertEqual(result.released.from_status, Unit.Status.IN_REPAIR)
        self.assertEqual(result.acquired.unit.assigned_to, self.consumer)

    def test_consumer_required_without_holder(self):
        AllocationService.transition_unit(self.held.code, UnitAction.REPAIR_OUT)
        with self.assertRaises(ValidationError):
            self.substitute(UnitAction.SCRAP, capability=Capability.ELEVATED)

    def test_invalid_dispositions(self):
        for disposition in (UnitAction.REPAIR_IN, 'TELEPORT'):
            with self.assertRaises(ValidationError):
                self.substitute(disposition)
        with self.assertRaises(ValidationError):
            AllocationService.substitute_unit(self.held.code, self.held.code)

    def test_cross_product_needs_reason(self):
        other_product, other_units = make_tracked_product('SUB-2', units=1, invoice_number='NF-2')
        with self.assertRaises(ValidationError):
            AllocationService.substitute_unit(self.held.code, other_units[0].code)

        result = AllocationService.substitute_unit(
            self.held.code, other_units[0].code, compatibility_reason='same form factor'
        )
        self.assertEqual(result.acquired.product_id, other_product.id)
        movement = Movement.objects.get(pk=result.acquired.movement_id)
        self.assertIn('OVERRIDE:same form factor', movement.notes)

    def test_failure_rolls_back_old_unit(self):
        """Losing the replacement to a concurrent allocation undoes the return"""
        original = StockRepository.try_set_unit_status

        def lose_replacement(unit_id, *args, **kwargs):
            if unit_id == self.replacement.id:
                return False
            return original(unit_id, *args, **kwargs)

        with mock.patch.object(StockRepository, 'try_set_unit_status', side_effect=lose_replacement):
            with self.assertRaises(UnitRaceCondition):
                self.substitute()

        self.assertEqual(Unit.objects.get(pk=self.held.pk).status, Unit.Status.ACQUIRED)
        self.assertEqual(Unit.objects.get(pk=self.held.pk).assigned_to, self.consumer)
        self.product.refresh_from_db()
        self.assertEqual(self.product.quantity, 2)
        self.assertFalse(Movement.objects.filter(movement_type='RETURN').exists())


class SubstitutionAPITest(TestCase):

    def setUp(self):
        self.clerk = make_user('clerk')
        self.consumer = make_user('consumer')
        self.client = APIClient()
        self.client.force_authenticate(user=self.clerk)
        self.product, self.units = make_tracked_product('SUB-API', units=2)

    def test_acquire_endpoint(self):
        response = self.client.post(
            reverse('unit-acquire', args=[self.units[1].code]),
            {'consumer_id': self.consumer.id, 'reason': 'scan'},
            format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['unit_code'], str(self.units[1].code))

        response = self.client.post(
            reverse('unit-acquire', args=[self.units[1].code]),
            {'consumer_id': self.consumer.id},
            format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['code'], 'INVALID_TRANSITION')

    def test_substitute_endpoint(self):
        held = AllocationService.acquire_unit(self.units[0].code, self.consumer.id).unit
        url = reverse('unit-substitute')
        payload = {'old_code': str(held.code), 'new_code': str(self.units[1].code), 'disposition': 'LOST'}

        response = self.client.post(url, payload, format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

        self.client.force_authenticate(user=grant_write_off(self.clerk))
        response = self.client.post(url, payload, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['old_unit']['to_status'], 'LOST')
        self.assertEqual(response.data['new_unit']['unit_code'], str(self.units[1].code))

    def test_substitute_same_code_rejected(self):
        code = str(self.units[0].code)
        response = self.client.post(
            reverse('unit-substitute'), {'old_code': code, 'new_code': code}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
