"""
Ledger Service

Read-side queries over the movement ledger: unit history, filtered movement
listings and the conservation check used by reconciliation.
"""

import logging
from typing import Dict

from django.db.models import Count, Q, Sum

from stock.models import Movement, Product, Unit

logger = logging.getLogger(__name__)


class LedgerService:

    @staticmethod
    def movements():
        return Movement.objects.select_related(
            'product', 'unit', 'invoice', 'performed_by', 'assigned_to'
        )

    @staticmethod
    def unit_history(unit: Unit):
        """Every movement of one unit, oldest first."""
        return LedgerService.movements().filter(unit=unit).order_by('created_at', 'id')

    @staticmethod
    def product_movements(product: Product):
        return LedgerService.movements().filter(product=product)

    @staticmethod
    def check_product(product: Product) -> Dict:
        """
        Check a product's counter against its ledger.

        The counter must equal the opening quantity plus the sum of every
        movement's quantity_change. For unit-tracked products it must also
        equal the number of IN_STOCK units.

        Returns:
            Dict with the expected values and a ``balanced`` flag
        """
        ledger_total = product.movements.aggregate(total=Sum('quantity_change'))['total'] or 0
        expected = product.opening_quantity + ledger_total

        unit_counts = product.units.aggregate(
            total=Count('id'),
            in_stock=Count('id', filter=Q(status=Unit.Status.IN_STOCK)),
        )
        tracked = unit_counts['total'] > 0
        in_stock = unit_counts['in_stock'] if tracked else None

        balanced = product.quantity == expected and (not tracked or product.quantity == in_stock)
        result = {
            'product_id': product.id,
            'sku': product.sku,
            'quantity': product.quantity,
            'ledger_quantity': expected,
            'unit_tracked': tracked,
            'units_in_stock': in_stock,
            'balanced': balanced,
        }
        if not balanced:
            logger.warning(
                f"Stock drift on {product.sku}: counter {product.quantity}, "
                f"ledger {expected}, units in stock {in_stock}"
            )
        return result
