"""
Stock Repository

The only code path that writes Unit.status, Product.quantity/status and
the Movement ledger. Every method must run inside stock_write_scope();
the guarded managers in stock.models reject the writes otherwise.

Contended writes are conditional updates (compare-and-swap): the UPDATE
carries the expected prior value in its WHERE clause and the affected-row
count tells the caller whether it won.
"""

import uuid

from django.db.models import F
from django.utils import timezone

from .models import Invoice, Movement, Product, Unit, product_status_expression


class StockRepository:
    """Persistence primitives for the allocation coordinator."""

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @staticmethod
    def get_product(product_id) -> Product:
        return Product.objects.get(pk=product_id)

    @staticmethod
    def get_unit_by_code(code) -> Unit:
        return Unit.objects.select_related('product', 'invoice').get(code=code)

    @staticmethod
    def is_unit_tracked(product_id) -> bool:
        return Unit.objects.filter(product_id=product_id).exists()

    @staticmethod
    def oldest_in_stock_unit(product_id, exclude_ids=()):
        """FIFO candidate: the IN_STOCK unit created first, or None."""
        qs = Unit.objects.in_stock().filter(product_id=product_id)
        if exclude_ids:
            qs = qs.exclude(id__in=exclude_ids)
        return qs.fifo().select_related('invoice').first()

    @staticmethod
    def read_quantity(product_id) -> int:
        return Product.objects.filter(pk=product_id).values_list('quantity', flat=True).get()

    # ------------------------------------------------------------------
    # Conditional writes
    # ------------------------------------------------------------------

    @staticmethod
    def try_set_unit_status(unit_id, expected_status, new_status, **fields) -> bool:
        """
        Move a unit from expected_status to new_status, setting any extra fields.

        Returns False when the unit is no longer in expected_status, i.e. a
        concurrent caller changed it first.
        """
        updated = Unit.objects.filter(id=unit_id, status=expected_status).update(
            status=new_status,
            updated_at=timezone.now(),
            **fields
        )
        return updated == 1

    @staticmethod
    def try_decrement_quantity(product_id, amount: int) -> bool:
        """Decrement the counter only if at least ``amount`` is available."""
        updated = Product.objects.filter(pk=product_id, quantity__gte=amount).update(
            quantity=F('quantity') - amount,
            updated_at=timezone.now(),
        )
        return updated == 1

    @staticmethod
    def increment_quantity(product_id, amount: int) -> None:
        Product.objects.filter(pk=product_id).update(
            quantity=F('quantity') + amount,
            updated_at=timezone.now(),
        )

    @staticmethod
    def refresh_status(product_id) -> Product:
        """
        Persist the status derived from the row's current quantity and
        return the product as it now stands.
        """
        Product.objects.filter(pk=product_id).update(status=product_status_expression())
        return Product.objects.get(pk=product_id)

    # ------------------------------------------------------------------
    # Inserts
    # ------------------------------------------------------------------

    @staticmethod
    def create_invoice(product_id, quantity, invoice_number, request_id='', issued_at=None, notes='') -> Invoice:
        return Invoice.objects.create(
            product_id=product_id,
            quantity=quantity,
            invoice_number=invoice_number,
            request_id=request_id or '',
            issued_at=issued_at or timezone.now(),
            notes=notes or '',
        )

    @staticmethod
    def create_units(product_id, invoice_id, count: int) -> list:
        """Create ``count`` IN_STOCK units with fresh QR codes, oldest first."""
        now = timezone.now()
        units = [
            Unit(
                product_id=product_id,
                invoice_id=invoice_id,
                code=uuid.uuid4(),
                status=Unit.Status.IN_STOCK,
                created_at=now,
            )
            for _ in range(count)
        ]
        Unit.objects.bulk_create(units)
        return list(
            Unit.objects.filter(invoice_id=invoice_id, product_id=product_id).fifo()
        )

    @staticmethod
    def append_movement(*, movement_type, product_id, quantity, quantity_before, quantity_after, **fields) -> Movement:
        movement = Movement(
            movement_type=movement_type,
            product_id=product_id,
            quantity=quantity,
            quantity_before=quantity_before,
            quantity_after=quantity_after,
            quantity_change=quantity_after - quantity_before,
            **fields
        )
        movement.full_clean(exclude=['product', 'unit', 'invoice', 'performed_by', 'assigned_to'])
        movement.save()
        return movement
