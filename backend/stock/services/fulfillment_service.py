"""
Request Fulfillment Service

Fulfills an approved stock request (requisition) line by line through the
allocation coordinator.

Business Rules:
- Every line is validated before anything is allocated
- Unit-tracked lines must ask for exactly one unit
- The whole request is allocated in one transaction: if any line is short
  of stock, nothing is allocated
- Losing a unit to a concurrent allocation retries the whole request a
  bounded number of times
"""

import logging
from typing import Dict, List

from django.core.exceptions import ValidationError

from stock.guards import stock_write_scope
from stock.models import Product
from stock.services.allocation_service import AllocationService, race_retry_attempts
from utils.exceptions import UnitQuantityMustBeOne, UnitRaceCondition

logger = logging.getLogger(__name__)


class FulfillmentService:
    """Service for fulfilling stock requests."""

    @staticmethod
    def request_reason(request_ref) -> str:
        return f'Requisição {request_ref}'

    @staticmethod
    def validate_lines(lines: List[Dict]) -> List[Dict]:
        """
        Normalize and validate request lines.

        Args:
            lines: [{'product_id': 1, 'quantity': 2, 'cost_center': '...', 'notes': '...'}, ...]

        Returns:
            List of normalized line dicts

        Raises:
            ValidationError: empty request, unknown product or bad quantity
            UnitQuantityMustBeOne: a unit-tracked line asks for more than one unit
        """
        if not lines:
            raise ValidationError({'lines': 'Request has no lines'})

        normalized = []
        for index, line in enumerate(lines, start=1):
            product_id = line.get('product_id')
            product = Product.objects.filter(pk=product_id).first() if product_id else None
            if product is None:
                raise ValidationError({'lines': f'Line {index}: product {product_id} not found'})

            try:
                quantity = int(line.get('quantity', 1))
            except (TypeError, ValueError):
                raise ValidationError({'lines': f'Line {index}: quantity must be a whole number'})
            if quantity < 1:
                raise ValidationError({'lines': f'Line {index}: quantity must be at least 1'})

            if product.is_unit_tracked and quantity != 1:
                raise UnitQuantityMustBeOne(
                    f'Line {index}: {product.sku} is unit-tracked; request one unit per line',
                    line=index,
                    product_id=product.id,
                    quantity=quantity
                )

            normalized.append({
                'product_id': product.id,
                'quantity': quantity,
                'cost_center': line.get('cost_center') or '',
                'notes': line.get('notes') or '',
            })
        return normalized

    @staticmethod
    def fulfill_request(request_ref, lines: List[Dict], consumer_id, performed_by_id=None) -> Dict:
        """
        Allocate every line of a request to the consumer, all or nothing.

        Args:
            request_ref: Request number, stored on each movement and in its reason
            lines: Request lines, see validate_lines
            consumer_id: User receiving the stock
            performed_by_id: User fulfilling the request

        Returns:
            Dict with the request reference and one allocation per line

        Raises:
            ValidationError, UnitQuantityMustBeOne: invalid lines (nothing allocated)
            NoUnitInStock, InsufficientStock: a line cannot be covered (nothing allocated)
            UnitRaceCondition: still losing races after the retry budget
        """
        normalized = FulfillmentService.validate_lines(lines)
        reason = FulfillmentService.request_reason(request_ref)
        attempts = race_retry_attempts()

        for attempt in range(1, attempts + 1):
            try:
                with stock_write_scope():
                    allocations = [
                        AllocationService.allocate_for_consumption(
                            line['product_id'],
                            line['quantity'],
                            consumer_id,
                            reason,
                            performed_by_id=performed_by_id,
                            request_id=str(request_ref),
                            cost_center=line['cost_center'],
                            notes=line['notes'],
                        )
                        for line in normalized
                    ]
            except UnitRaceCondition:
                logger.warning(f"Request {request_ref} lost a unit race, attempt {attempt}/{attempts}")
                if attempt == attempts:
                    raise
                continue

            logger.info(f"Fulfilled request {request_ref}: {len(allocations)} line(s)")
            return {
                'success': True,
                'request_ref': str(request_ref),
                'allocations': [a.as_dict() for a in allocations],
                'message': f'Request {request_ref} fulfilled'
            }
