"""
Custom exceptions for the Stock Allocation Engine.

Every error raised by the allocation coordinator is an APIException so the
REST layer can render it directly. Each carries a stable ``default_code`` and
an optional ``context`` dict (product id, unit code, quantities...).
"""

from rest_framework.exceptions import APIException
from rest_framework import status


class StockEngineError(APIException):
    """
    Base class for allocation and unit lifecycle failures.
    Raising one of these inside the coordinator rolls the whole
    transaction back.
    """
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'Stock operation failed.'
    default_code = 'stock_error'

    def __init__(self, detail=None, code=None, **context):
        super().__init__(detail=detail, code=code)
        self.context = context

    @property
    def code(self):
        return self.default_code


class UnitQuantityMustBeOne(StockEngineError):
    """
    Exception raised when more than one unit is requested in a single
    allocation of a unit-tracked product. Callers split the line item.
    """
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'Unit-tracked products must be allocated one unit per line.'
    default_code = 'UNIT_QTY_MUST_BE_1'


class NoUnitInStock(StockEngineError):
    """
    Exception raised when a unit-tracked product has no unit IN_STOCK.
    """
    status_code = status.HTTP_409_CONFLICT
    default_detail = 'No unit in stock for the selected product.'
    default_code = 'NO_UNIT_IN_STOCK'


class InsufficientStock(StockEngineError):
    """
    Exception raised when a bulk allocation exceeds the available quantity.
    """
    status_code = status.HTTP_409_CONFLICT
    default_detail = 'Insufficient stock for the selected product.'
    default_code = 'INSUFFICIENT_STOCK'


class UnitRaceCondition(StockEngineError):
    """
    Exception raised when the conditional status update matched no row
    because another caller changed the unit first. Retry the whole intent.
    """
    status_code = status.HTTP_409_CONFLICT
    default_detail = 'The unit was allocated by another user. Try again.'
    default_code = 'UNIT_RACE_CONDITION'


class InvalidTransition(StockEngineError):
    """
    Exception raised when an action is not valid from the unit's current state.
    """
    status_code = status.HTTP_409_CONFLICT
    default_detail = 'Action not allowed from the current unit state.'
    default_code = 'INVALID_TRANSITION'


class Forbidden(StockEngineError):
    """
    Exception raised when a privileged action is attempted without the
    elevated capability.
    """
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = 'This action requires elevated privileges.'
    default_code = 'FORBIDDEN'


class UnitNotFound(StockEngineError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = 'Unit not found.'
    default_code = 'UNIT_NOT_FOUND'


class ProductNotFound(StockEngineError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = 'Product not found.'
    default_code = 'PRODUCT_NOT_FOUND'


class InactiveConsumer(StockEngineError):
    """
    Exception raised when the consumer does not reference an active user.
    """
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'Consumer must be an existing active user.'
    default_code = 'INACTIVE_CONSUMER'


def stock_exception_handler(exc, context):
    """
    DRF exception handler that adds the stable error code and context of
    StockEngineError responses, and renders Django ValidationError as 400.
    """
    from django.core.exceptions import ValidationError as DjangoValidationError
    from rest_framework.response import Response
    from rest_framework.views import exception_handler

    if isinstance(exc, DjangoValidationError):
        errors = exc.message_dict if hasattr(exc, 'error_dict') else {'non_field_errors': exc.messages}
        return Response({'error': errors}, status=status.HTTP_400_BAD_REQUEST)

    response = exception_handler(exc, context)
    if response is not None and isinstance(exc, StockEngineError):
        response.data = {
            'detail': str(exc.detail),
            'code': exc.code,
            'context': exc.context,
        }
    return response
