"""
Stock Allocation Service

The allocation coordinator: the single entry point that changes stock.
Every operation here keeps three records in lockstep inside one database
transaction:

1. Unit.status (per-unit state machine)
2. Product.quantity / Product.status (aggregate counter)
3. Movement (append-only ledger, one row per unit or bulk change)

Business Rules:
- A product is unit-tracked once any unit has been created for it
- Unit-tracked allocations take exactly one unit, oldest IN_STOCK first,
  unless a specific unit is scanned
- Bulk allocations only succeed if the counter covers the whole quantity
- A unit is claimed with a conditional update; losing the race raises
  UnitRaceCondition and rolls everything back
- SCRAP and LOST need elevated capability, also inside a substitution

Usage:
    from stock.services import AllocationService

    result = AllocationService.allocate_for_consumption(
        product_id=product.id, quantity=1, consumer_id=user.id, reason='Requisição 42'
    )
"""

import logging
import uuid
from dataclasses import dataclass, field
from typing import List, Optional

from django.conf import settings
from django.contrib.auth import get_user_model
from django.core.exceptions import ValidationError
from django.utils import timezone

from stock.events import broadcast_stock_change
from stock.guards import stock_write_scope
from stock.models import Movement, Product, Unit
from stock.repository import StockRepository
from stock.transitions import (
    Capability, UnitAction, fields_to_reset, get_transition, stock_delta
)
from utils.constants import RACE_RETRY_ATTEMPTS
from utils.exceptions import (
    Forbidden,
    InactiveConsumer,
    InsufficientStock,
    InvalidTransition,
    NoUnitInStock,
    ProductNotFound,
    UnitNotFound,
    UnitQuantityMustBeOne,
    UnitRaceCondition,
)

logger = logging.getLogger(__name__)

# What can happen to the old unit of a substitution
SUBSTITUTION_DISPOSITIONS = (
    UnitAction.RETURN,
    UnitAction.REPAIR_OUT,
    UnitAction.SCRAP,
    UnitAction.LOST,
)


def race_retry_attempts(attempts=None) -> int:
    """Resolve the retry budget for lost unit races (argument, then settings)."""
    if attempts is None:
        attempts = getattr(settings, 'STOCK_ENGINE', {}).get('RACE_RETRY_ATTEMPTS', RACE_RETRY_ATTEMPTS)
    if isinstance(attempts, bool) or not isinstance(attempts, int) or attempts < 1:
        raise ValueError(f'Race retry attempts must be a positive integer, got {attempts!r}')
    return attempts


@dataclass
class AllocationResult:
    product_id: int
    quantity: int
    status: str
    movement_id: int
    unit: Optional[Unit] = None

    def as_dict(self):
        return {
            'product_id': self.product_id,
            'quantity': self.quantity,
            'status': self.status,
            'movement_id': self.movement_id,
            'unit_code': str(self.unit.code) if self.unit else None,
        }


@dataclass
class TransitionMetadata:
    """Caller-supplied context recorded on the movement of a unit action."""
    reason: str = ''
    notes: str = ''
    cost_center: str = ''
    request_id: str = ''
    performed_by_id: Optional[int] = None


@dataclass
class TransitionResult:
    unit: Unit
    from_status: str
    to_status: str
    product_id: int
    quantity: int
    status: str
    movement_id: int

    def as_dict(self):
        return {
            'unit_code': str(self.unit.code),
            'from_status': self.from_status,
            'to_status': self.to_status,
            'product_id': self.product_id,
            'quantity': self.quantity,
            'status': self.status,
            'movement_id': self.movement_id,
        }


@dataclass
class SubstitutionResult:
    substitution_id: str
    request_id: str
    released: TransitionResult
    acquired: AllocationResult

    def as_dict(self):
        return {
            'substitution_id': self.substitution_id,
            'request_id': self.request_id,
            'old_unit': self.released.as_dict(),
            'new_unit': self.acquired.as_dict(),
        }


@dataclass
class IntakeResult:
    product_id: int
    invoice_id: int
    received: int
    quantity: int
    status: str
    movement_id: int
    units: List[Unit] = field(default_factory=list)

    def as_dict(self):
        return {
            'product_id': self.product_id,
            'invoice_id': self.invoice_id,
            'received': self.received,
            'quantity': self.quantity,
            'status': self.status,
            'movement_id': self.movement_id,
            'unit_codes': [str(u.code) for u in self.units],
        }


class AllocationService:
    """Coordinator for every stock-changing operation."""

    @staticmethod
    def _require_positive(quantity, field_name='quantity') -> int:
        try:
            quantity = int(quantity)
        except (TypeError, ValueError):
            raise ValidationError({field_name: 'Quantity must be a whole number'})
        if quantity < 1:
            raise ValidationError({field_name: 'Quantity must be at least 1'})
        return quantity

    @staticmethod
    def _active_consumer(consumer_id):
        User = get_user_model()
        consumer = User.objects.filter(pk=consumer_id).first() if consumer_id is not None else None
        if consumer is None or not consumer.is_active:
            raise InactiveConsumer(
                f'Consumer {consumer_id} does not exist or is inactive',
                consumer_id=consumer_id
            )
        return consumer

    @staticmethod
    def _get_product(product_id) -> Product:
        try:
            return StockRepository.get_product(product_id)
        except (Product.DoesNotExist, ValueError, TypeError):
            raise ProductNotFound(f'Product {product_id} not found', product_id=product_id)

    @staticmethod
    def _get_unit(unit_code) -> Unit:
        try:
            return StockRepository.get_unit_by_code(unit_code)
        except (Unit.DoesNotExist, ValidationError, ValueError):
            raise UnitNotFound(f'Unit {unit_code} not found', unit_code=str(unit_code))

    @staticmethod
    def _take_stock(product, quantity, consumer, performed_by_id, unit=None, *,
                    reason='', request_id='', cost_center='', notes='') -> AllocationResult:
        """
        Claim ``unit`` (when given), take ``quantity`` off the counter and
        append the OUT movement. Runs inside an open write scope.
        """
        if unit is not None:
            claimed = StockRepository.try_set_unit_status(
                unit.id,
                Unit.Status.IN_STOCK,
                Unit.Status.ACQUIRED,
                acquired_at=timezone.now(),
                acquired_by_id=performed_by_id,
                assigned_to_id=consumer.pk,
                acquired_reason=reason,
                cost_center=cost_center,
                acquired_notes=notes,
            )
            if not claimed:
                logger.warning(f"Unit {unit.code} of {product.sku} was claimed concurrently")
                raise UnitRaceCondition(
                    f'Unit {unit.code} was allocated by another request',
                    product_id=product.id,
                    unit_code=str(unit.code)
                )

        if not StockRepository.try_decrement_quantity(product.id, quantity):
            available = StockRepository.read_quantity(product.id)
            raise InsufficientStock(
                f'Requested {quantity} of {product.sku}, only {available} available',
                product_id=product.id,
                requested=quantity,
                available=available
            )

        quantity_after = StockRepository.read_quantity(product.id)
        movement = StockRepository.append_movement(
            movement_type=Movement.MovementType.OUT,
            product_id=product.id,
            quantity=quantity,
            quantity_before=quantity_after + quantity,
            quantity_after=quantity_after,
            unit_id=unit.id if unit else None,
            invoice_id=unit.invoice_id if unit else None,
            request_id=request_id,
            reason=reason,
            cost_center=cost_center,
            notes=notes,
            performed_by_id=performed_by_id,
            assigned_to_id=consumer.pk,
        )
        product = StockRepository.refresh_status(product.id)
        if unit is not None:
            unit.refresh_from_db()

        broadcast_stock_change(Movement.MovementType.OUT, product, unit=unit, movement=movement)
        logger.info(
            f"Allocated {quantity}x {product.sku}"
            f"{' (unit ' + str(unit.code) + ')' if unit else ''} to user {consumer.pk}; "
            f"quantity now {product.quantity}"
        )
        return AllocationResult(
            product_id=product.id,
            quantity=product.quantity,
            status=product.status,
            movement_id=movement.id,
            unit=unit,
        )

    @staticmethod
    def _apply_transition(unit, transition, metadata) -> TransitionResult:
        """Move ``unit`` along ``transition``. Runs inside an open write scope."""
        from_status = unit.status
        if not transition.allows(from_status):
            raise InvalidTransition(
                f'Cannot {transition.action} a unit that is {from_status}',
                unit_code=str(unit.code),
                action=str(transition.action),
                status=from_status
            )

        holder_id = unit.assigned_to_id
        changed = StockRepository.try_set_unit_status(
            unit.id, from_status, transition.to_state, **fields_to_reset(transition)
        )
        if not changed:
            logger.warning(f"Unit {unit.code} changed status concurrently during {transition.action}")
            raise UnitRaceCondition(
                f'Unit {unit.code} changed status concurrently',
                unit_code=str(unit.code)
            )

        delta = stock_delta(from_status, transition.to_state)
        if delta > 0:
            StockRepository.increment_quantity(unit.product_id, delta)
        elif delta < 0 and not StockRepository.try_decrement_quantity(unit.product_id, -delta):
            raise InsufficientStock(
                f'Counter of {unit.product.sku} is out of step with its units',
                product_id=unit.product_id
            )

        quantity_after = StockRepository.read_quantity(unit.product_id)
        movement = StockRepository.append_movement(
            movement_type=transition.movement_type,
            product_id=unit.product_id,
            quantity=1,
            quantity_before=quantity_after - delta,
            quantity_after=quantity_after,
            unit_id=unit.id,
            invoice_id=unit.invoice_id,
            request_id=metadata.request_id or '',
            reason=metadata.reason or '',
            cost_center=metadata.cost_center or '',
            notes=metadata.notes or '',
            performed_by_id=metadata.performed_by_id,
            assigned_to_id=holder_id,
        )
        if delta:
            product = StockRepository.refresh_status(unit.product_id)
        else:
            product = StockRepository.get_product(unit.product_id)
        unit.refresh_from_db()

        broadcast_stock_change(transition.action, product, unit=unit, movement=movement)
        logger.info(f"Unit {unit.code} {from_status} -> {unit.status} via {transition.action}")
        return TransitionResult(
            unit=unit,
            from_status=from_status,
            to_status=unit.status,
            product_id=product.id,
            quantity=product.quantity,
            status=product.status,
            movement_id=movement.id,
        )

    @staticmethod
    def allocate_for_consumption(
        product_id,
        quantity,
        consumer_id,
        reason,
        *,
        performed_by_id=None,
        request_id=None,
        cost_center=None,
        notes=None
    ) -> AllocationResult:
        """
        Consume stock of a product on behalf of a consumer.

        Unit-tracked products hand out the oldest IN_STOCK unit (FIFO by
        created_at, then id). Bulk products decrement the counter.

        Args:
            product_id: Product to consume
            quantity: Items requested (must be 1 for unit-tracked products)
            consumer_id: Active user who receives the stock
            reason: Free text stored on the movement, e.g. 'Requisição 42'
            performed_by_id: User performing the allocation (defaults to consumer)
            request_id: External request reference
            cost_center: Cost center charged
            notes: Free text

        Returns:
            AllocationResult with the allocated unit (if any), new counter and movement id

        Raises:
            ValidationError: quantity below 1
            InactiveConsumer: consumer missing or inactive
            ProductNotFound: unknown product
            UnitQuantityMustBeOne: unit-tracked product with quantity != 1
            NoUnitInStock: unit-tracked product without IN_STOCK units
            UnitRaceCondition: selected unit claimed by a concurrent allocation
            InsufficientStock: bulk counter below quantity
        """
        quantity = AllocationService._require_positive(quantity)
        consumer = AllocationService._active_consumer(consumer_id)
        performed_by_id = performed_by_id or consumer.pk

        with stock_write_scope():
            product = AllocationService._get_product(product_id)
            unit = None

            if StockRepository.is_unit_tracked(product.id):
                if quantity != 1:
                    raise UnitQuantityMustBeOne(
                        f'{product.sku} is unit-tracked; allocate one unit at a time',
                        product_id=product.id,
                        quantity=quantity
                    )

                unit = StockRepository.oldest_in_stock_unit(product.id)
                if unit is None:
                    raise NoUnitInStock(
                        f'No unit of {product.sku} is in stock',
                        product_id=product.id
                    )

            return AllocationService._take_stock(
                product, quantity, consumer, performed_by_id, unit,
                reason=reason or '',
                request_id=request_id or '',
                cost_center=cost_center or '',
                notes=notes or '',
            )

    @staticmethod
    def allocate_with_retry(product_id, quantity, consumer_id, reason, attempts=None, **kwargs) -> AllocationResult:
        """
        Run allocate_for_consumption, retrying when a unit is lost to a concurrent
        allocation. Each attempt re-selects the oldest IN_STOCK unit.

        Raises the last UnitRaceCondition once attempts are exhausted.
        """
        attempts = race_retry_attempts(attempts)
        for attempt in range(1, attempts + 1):
            try:
                return AllocationService.allocate_for_consumption(
                    product_id, quantity, consumer_id, reason, **kwargs
                )
            except UnitRaceCondition:
                logger.warning(f"Allocation race on product {product_id}, attempt {attempt}/{attempts}")
                if attempt == attempts:
                    raise

    @staticmethod
    def acquire_unit(
        unit_code,
        consumer_id,
        reason='',
        *,
        performed_by_id=None,
        request_id=None,
        cost_center=None,
        notes=None
    ) -> AllocationResult:
        """
        Allocate one specific unit, identified by the code scanned from its label.

        The FIFO order is bypassed; everything else matches
        allocate_for_consumption. The request reference defaults to the one
        recorded on the unit's intake invoice.

        Raises:
            InactiveConsumer: consumer missing or inactive
            UnitNotFound: no unit with this code
            InvalidTransition: the unit is not IN_STOCK
            UnitRaceCondition: the unit was claimed concurrently
        """
        consumer = AllocationService._active_consumer(consumer_id)
        performed_by_id = performed_by_id or consumer.pk

        with stock_write_scope():
            unit = AllocationService._get_unit(unit_code)
            if unit.status != Unit.Status.IN_STOCK:
                raise InvalidTransition(
                    f'Unit {unit.code} is {unit.status}, only IN_STOCK units can be acquired',
                    unit_code=str(unit.code),
                    action='ACQUIRE',
                    status=unit.status
                )

            if not request_id and unit.invoice is not None:
                request_id = unit.invoice.request_id

            return AllocationService._take_stock(
                unit.product, 1, consumer, performed_by_id, unit,
                reason=reason or '',
                request_id=request_id or '',
                cost_center=cost_center or '',
                notes=notes or '',
            )

    @staticmethod
    def transition_unit(unit_code, action, metadata=None, capability=Capability.STANDARD) -> TransitionResult:
        """
        Apply a lifecycle action (RETURN, REPAIR_OUT, REPAIR_IN, SCRAP, LOST) to a unit.

        Args:
            unit_code: Code printed on the unit's QR label
            action: UnitAction or its name
            metadata: TransitionMetadata recorded on the movement
            capability: Capability of the caller; SCRAP and LOST need ELEVATED

        Returns:
            TransitionResult

        Raises:
            ValidationError: unknown action name
            Forbidden: action needs elevated capability
            UnitNotFound: no unit with this code
            InvalidTransition: action not allowed from the unit's current status
            UnitRaceCondition: the unit changed status concurrently
        """
        metadata = metadata or TransitionMetadata()
        try:
            transition = get_transition(action)
        except ValueError:
            raise ValidationError({'action': f'Unknown unit action: {action}'})

        if transition.requires_elevated and capability != Capability.ELEVATED:
            raise Forbidden(
                f'{transition.action} requires elevated permission',
                action=str(transition.action)
            )

        with stock_write_scope():
            unit = AllocationService._get_unit(unit_code)
            return AllocationService._apply_transition(unit, transition, metadata)

    @staticmethod
    def substitute_unit(
        old_code,
        new_code,
        disposition=UnitAction.RETURN,
        *,
        consumer_id=None,
        metadata=None,
        capability=Capability.STANDARD,
        compatibility_reason=None
    ) -> SubstitutionResult:
        """
        Swap a consumer's unit for a specific IN_STOCK replacement in one transaction.

        The old unit leaves the consumer through ``disposition`` (RETURN,
        REPAIR_OUT, SCRAP or LOST, following the transition table) and the
        new unit is acquired for ``consumer_id``, defaulting to the old
        unit's holder. Both movements share one request reference: the
        caller's, or the generated substitution id.

        Raises:
            ValidationError: same code twice, bad disposition, missing consumer,
                or a product mismatch without ``compatibility_reason``
            Forbidden: SCRAP or LOST without elevated capability
            UnitNotFound: either code is unknown
            InvalidTransition: old unit not held or in repair, disposition not
                allowed from its state, or new unit not IN_STOCK
            UnitRaceCondition: either unit changed status concurrently
        """
        metadata = metadata or TransitionMetadata()
        if str(old_code) == str(new_code):
            raise ValidationError({'new_code': 'Old and new units must be different'})

        try:
            transition = get_transition(disposition)
        except ValueError:
            transition = None
        if transition is None or transition.action not in SUBSTITUTION_DISPOSITIONS:
            raise ValidationError({
                'disposition': f'Disposition must be one of {", ".join(SUBSTITUTION_DISPOSITIONS)}'
            })

        if transition.requires_elevated and capability != Capability.ELEVATED:
            raise Forbidden(
                f'Substitution with {transition.action} requires elevated permission',
                action=str(transition.action)
            )

        with stock_write_scope():
            old_unit = AllocationService._get_unit(old_code)
            new_unit = AllocationService._get_unit(new_code)

            if old_unit.status not in (Unit.Status.ACQUIRED, Unit.Status.IN_REPAIR):
                raise InvalidTransition(
                    f'Unit {old_unit.code} is {old_unit.status}; only held or repaired units can be substituted',
                    unit_code=str(old_unit.code),
                    action='SUBSTITUTE',
                    status=old_unit.status
                )
            if new_unit.status != Unit.Status.IN_STOCK:
                raise InvalidTransition(
                    f'Replacement {new_unit.code} is {new_unit.status}, it must be IN_STOCK',
                    unit_code=str(new_unit.code),
                    action='SUBSTITUTE',
                    status=new_unit.status
                )

            cross_product = old_unit.product_id != new_unit.product_id
            if cross_product and not (compatibility_reason or '').strip():
                raise ValidationError({
                    'compatibility_reason': 'Replacing a unit with another product needs a reason'
                })

            consumer_id = consumer_id or old_unit.assigned_to_id
            if consumer_id is None:
                raise ValidationError({'consumer_id': 'The old unit has no holder; name the consumer'})
            consumer = AllocationService._active_consumer(consumer_id)

            substitution_id = str(uuid.uuid4())
            request_id = metadata.request_id or substitution_id
            notes = ' | '.join(filter(None, [
                (metadata.notes or '').strip(),
                f'SUB:{substitution_id}',
                f'OLD:{old_unit.code}',
                f'NEW:{new_unit.code}',
                f'OVERRIDE:{compatibility_reason.strip()}' if cross_product else '',
            ]))
            shared = TransitionMetadata(
                reason=metadata.reason,
                notes=notes,
                cost_center=metadata.cost_center,
                request_id=request_id,
                performed_by_id=metadata.performed_by_id,
            )

            released = AllocationService._apply_transition(old_unit, transition, shared)
            acquired = AllocationService._take_stock(
                AllocationService._get_product(new_unit.product_id),
                1,
                consumer,
                metadata.performed_by_id or consumer.pk,
                new_unit,
                reason=shared.reason or '',
                request_id=request_id,
                cost_center=shared.cost_center or '',
                notes=notes,
            )

        logger.info(
            f"Substitution {substitution_id}: {old_unit.code} ({transition.action}) -> {new_unit.code} "
            f"for user {consumer.pk}"
        )
        return SubstitutionResult(
            substitution_id=substitution_id,
            request_id=request_id,
            released=released,
            acquired=acquired,
        )

    @staticmethod
    def receive_stock(
        product_id,
        quantity,
        *,
        track_units=False,
        invoice_number,
        request_id=None,
        issued_at=None,
        notes=None,
        performed_by_id=None
    ) -> IntakeResult:
        """
        Receive stock against an invoice.

        Unit-tracked intake creates ``quantity`` IN_STOCK units with fresh codes.
        Bulk intake only raises the counter. Both write one IN movement.

        Raises:
            ValidationError: bad quantity, missing invoice number, or a product
                switching between bulk and unit tracking
            ProductNotFound: unknown product
        """
        quantity = AllocationService._require_positive(quantity)
        if not (invoice_number or '').strip():
            raise ValidationError({'invoice_number': 'Invoice number is required'})

        with stock_write_scope():
            product = AllocationService._get_product(product_id)
            tracked = StockRepository.is_unit_tracked(product.id)

            if tracked and not track_units:
                raise ValidationError({
                    'track_units': f'{product.sku} is unit-tracked; receive it as units'
                })
            if track_units and not tracked and product.quantity > 0:
                raise ValidationError({
                    'track_units': f'{product.sku} holds {product.quantity} untracked items; '
                                   f'it cannot switch to unit tracking'
                })

            invoice = StockRepository.create_invoice(
                product.id,
                quantity,
                invoice_number.strip(),
                request_id=request_id,
                issued_at=issued_at,
                notes=notes,
            )
            units = StockRepository.create_units(product.id, invoice.id, quantity) if track_units else []

            StockRepository.increment_quantity(product.id, quantity)
            quantity_after = StockRepository.read_quantity(product.id)
            movement = StockRepository.append_movement(
                movement_type=Movement.MovementType.IN,
                product_id=product.id,
                quantity=quantity,
                quantity_before=quantity_after - quantity,
                quantity_after=quantity_after,
                invoice_id=invoice.id,
                request_id=request_id or '',
                reason='Intake',
                notes=notes or '',
                performed_by_id=performed_by_id,
            )
            product = StockRepository.refresh_status(product.id)

            broadcast_stock_change(Movement.MovementType.IN, product, movement=movement)

        logger.info(
            f"Received {quantity}x {product.sku} on invoice {invoice.invoice_number}"
            f"{' as units' if track_units else ''}; quantity now {product.quantity}"
        )
        return IntakeResult(
            product_id=product.id,
            invoice_id=invoice.id,
            received=quantity,
            quantity=product.quantity,
            status=product.status,
            movement_id=movement.id,
            units=units,
        )

    @staticmethod
    def recompute_product_status(product_id) -> str:
        """Re-derive and persist a product's status from its current quantity."""
        with stock_write_scope():
            AllocationService._get_product(product_id)
            product = StockRepository.refresh_status(product_id)
        return product.status
