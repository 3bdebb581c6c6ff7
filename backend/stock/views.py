import logging

from django.core.exceptions import ValidationError
from django.db import IntegrityError, transaction
from django.shortcuts import get_object_or_404
from django_filters.rest_framework import DjangoFilterBackend
from rest_framework import filters, generics, status
from rest_framework.decorators import api_view
from rest_framework.response import Response

from utils.exceptions import StockEngineError
from .filters import MovementFilter, ProductFilter, UnitFilter
from .models import Product, Unit
from .permissions import capability_for
from .serializers import (
    AllocationSerializer, FulfillmentSerializer, IntakeSerializer, MovementSerializer,
    ProductSerializer, SubstitutionSerializer, UnitAcquireSerializer, UnitActionSerializer,
    UnitSerializer, UnitUpdateSerializer
)
from .services import (
    AllocationService, FulfillmentService, LedgerService, TransitionMetadata
)

logger = logging.getLogger(__name__)


def _validation_error_response(e):
    errors = e.message_dict if hasattr(e, 'error_dict') else e.messages
    return Response({'error': errors}, status=status.HTTP_400_BAD_REQUEST)


# ============================================================================
# Catalog & Registry Views
# ============================================================================

class ProductListView(generics.ListCreateAPIView):
    """
    List and create products.

    GET: List products with search and filtering
    POST: Create a product; ``quantity`` is its opening stock

    Search fields: name, sku
    Filters: status, min_quantity, max_quantity
    """
    queryset = Product.objects.all()
    serializer_class = ProductSerializer
    filter_backends = [DjangoFilterBackend, filters.SearchFilter, filters.OrderingFilter]
    filterset_class = ProductFilter
    search_fields = ['name', 'sku']
    ordering_fields = ['name', 'sku', 'quantity', 'created_at']
    ordering = ['name']


class ProductDetailView(generics.RetrieveUpdateAPIView):
    """
    Retrieve or update a product.

    PUT/PATCH only change catalog fields; the counter is read-only here.
    """
    queryset = Product.objects.all()
    serializer_class = ProductSerializer


class UnitListView(generics.ListAPIView):
    """List units with filtering by product, status, holder and identifiers."""
    queryset = Unit.objects.all().select_related('product', 'invoice', 'acquired_by', 'assigned_to')
    serializer_class = UnitSerializer
    filter_backends = [DjangoFilterBackend, filters.OrderingFilter]
    filterset_class = UnitFilter
    ordering_fields = ['created_at', 'status', 'acquired_at']
    ordering = ['created_at', 'id']


class UnitDetailView(generics.RetrieveUpdateAPIView):
    """
    Look up a unit by the code printed on its label.

    PATCH edits serial number, part number, asset tag and notes. A duplicate
    identifier returns 409.
    """
    queryset = Unit.objects.all().select_related('product', 'invoice', 'acquired_by', 'assigned_to')
    lookup_field = 'code'
    http_method_names = ['get', 'patch', 'head', 'options']

    def get_serializer_class(self):
        if self.request.method == 'PATCH':
            return UnitUpdateSerializer
        return UnitSerializer

    def update(self, request, *args, **kwargs):
        unit = self.get_object()
        serializer = UnitUpdateSerializer(unit, data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        try:
            with transaction.atomic():
                serializer.save()
        except IntegrityError:
            logger.info(f"Duplicate identifier rejected for unit {unit.code}")
            return Response(
                {'error': 'Serial number, part number or asset tag already used by another unit'},
                status=status.HTTP_409_CONFLICT
            )
        unit.refresh_from_db()
        return Response(UnitSerializer(unit).data)


@api_view(['GET'])
def available_units(request, product_id):
    """
    FIFO preview of allocatable units for a product.

    Query params:
    - limit: number of units to return (default 10, max 100)
    - exclude: comma separated unit codes already picked by the caller

    Returns the IN_STOCK count and the next units in allocation order.
    """
    product = get_object_or_404(Product, pk=product_id)
    try:
        limit = min(max(int(request.query_params.get('limit', 10)), 1), 100)
    except ValueError:
        return Response({'error': {'limit': 'Must be a whole number'}}, status=status.HTTP_400_BAD_REQUEST)

    queryset = Unit.objects.in_stock().filter(product=product)
    exclude = [c.strip() for c in request.query_params.get('exclude', '').split(',') if c.strip()]
    if exclude:
        try:
            queryset = queryset.exclude(code__in=exclude)
        except ValidationError as e:
            return _validation_error_response(e)

    items = queryset.fifo().select_related('product', 'invoice')
    return Response({
        'product_id': product.id,
        'available_count': queryset.count(),
        'items': UnitSerializer(items[:limit], many=True).data,
    })


@api_view(['GET'])
def unit_history(request, code):
    """Every movement of one unit, oldest first."""
    unit = get_object_or_404(Unit, code=code)
    movements = LedgerService.unit_history(unit)
    return Response({
        'unit': UnitSerializer(unit).data,
        'movements': MovementSerializer(movements, many=True).data,
    })


class MovementListView(generics.ListAPIView):
    """
    List ledger movements (read-only).

    Filters: product, unit, movement_type, performed_by, assigned_to,
    request_id, created_after, created_before, q
    """
    serializer_class = MovementSerializer
    filter_backends = [DjangoFilterBackend, filters.OrderingFilter]
    filterset_class = MovementFilter
    ordering_fields = ['created_at', 'movement_type', 'product']
    ordering = ['-created_at', '-id']

    def get_queryset(self):
        return LedgerService.movements()


class MovementDetailView(generics.RetrieveAPIView):
    serializer_class = MovementSerializer

    def get_queryset(self):
        return LedgerService.movements()


# ============================================================================
# Coordinator Views
# ============================================================================

@api_view(['POST'])
def allocate(request):
    """
    Consume stock for a consumer.

    Request body:
    {
        "product_id": 1,
        "quantity": 1,           // must be 1 for unit-tracked products
        "consumer_id": 7,
        "reason": "Requisição 42",
        "request_id": "42",      // optional
        "cost_center": "IT",     // optional
        "notes": ""              // optional
    }
    """
    serializer = AllocationSerializer(data=request.data)
    if not serializer.is_valid():
        return Response({'error': serializer.errors}, status=status.HTTP_400_BAD_REQUEST)
    data = serializer.validated_data

    try:
        result = AllocationService.allocate_with_retry(
            data['product_id'],
            data['quantity'],
            data['consumer_id'],
            data['reason'],
            performed_by_id=request.user.pk,
            request_id=data['request_id'],
            cost_center=data['cost_center'],
            notes=data['notes'],
        )
        return Response(result.as_dict(), status=status.HTTP_201_CREATED)
    except ValidationError as e:
        return _validation_error_response(e)
    except StockEngineError:
        raise
    except Exception as e:
        logger.error(f"Error allocating product {data['product_id']}: {e}")
        return Response({'error': str(e)}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)


@api_view(['POST'])
def unit_action(request, code, action):
    """
    Apply a lifecycle action to a unit.

    URL: units/<code>/actions/<return|repair_out|repair_in|scrap|lost>/

    SCRAP and LOST need a superuser or the stock.write_off_unit permission.
    """
    serializer = UnitActionSerializer(data=request.data)
    if not serializer.is_valid():
        return Response({'error': serializer.errors}, status=status.HTTP_400_BAD_REQUEST)

    metadata = TransitionMetadata(performed_by_id=request.user.pk, **serializer.validated_data)
    try:
        result = AllocationService.transition_unit(
            code,
            action.upper(),
            metadata,
            capability_for(request.user),
        )
        return Response(result.as_dict(), status=status.HTTP_200_OK)
    except ValidationError as e:
        return _validation_error_response(e)
    except StockEngineError:
        raise
    except Exception as e:
        logger.error(f"Error applying {action} to unit {code}: {e}")
        return Response({'error': str(e)}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)


@api_view(['POST'])
def acquire_unit(request, code):
    """
    Acquire the unit whose label was scanned, bypassing FIFO order.

    Request body:
    {
        "consumer_id": 7,
        "reason": "Requisição 42",  // optional
        "request_id": "",           // optional, defaults to the intake's request
        "cost_center": "IT",        // optional
        "notes": ""                 // optional
    }
    """
    serializer = UnitAcquireSerializer(data=request.data)
    if not serializer.is_valid():
        return Response({'error': serializer.errors}, status=status.HTTP_400_BAD_REQUEST)
    data = serializer.validated_data

    try:
        result = AllocationService.acquire_unit(
            code,
            data['consumer_id'],
            data['reason'],
            performed_by_id=request.user.pk,
            request_id=data['request_id'],
            cost_center=data['cost_center'],
            notes=data['notes'],
        )
        return Response(result.as_dict(), status=status.HTTP_201_CREATED)
    except ValidationError as e:
        return _validation_error_response(e)
    except StockEngineError:
        raise
    except Exception as e:
        logger.error(f"Error acquiring unit {code}: {e}")
        return Response({'error': str(e)}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)


@api_view(['POST'])
def substitute_unit(request):
    """
    Swap a held unit for a specific IN_STOCK replacement.

    Request body:
    {
        "old_code": "...",
        "new_code": "...",
        "disposition": "RETURN",         // RETURN | REPAIR_OUT | SCRAP | LOST
        "consumer_id": null,             // optional, defaults to the old unit's holder
        "compatibility_reason": "",      // required when the products differ
        "reason": "", "notes": "", "cost_center": "", "request_id": ""
    }

    SCRAP and LOST need a superuser or the stock.write_off_unit permission.
    """
    serializer = SubstitutionSerializer(data=request.data)
    if not serializer.is_valid():
        return Response({'error': serializer.errors}, status=status.HTTP_400_BAD_REQUEST)
    data = serializer.validated_data

    metadata = TransitionMetadata(
        reason=data['reason'],
        notes=data['notes'],
        cost_center=data['cost_center'],
        request_id=data['request_id'],
        performed_by_id=request.user.pk,
    )
    try:
        result = AllocationService.substitute_unit(
            data['old_code'],
            data['new_code'],
            data['disposition'],
            consumer_id=data['consumer_id'],
            metadata=metadata,
            capability=capability_for(request.user),
            compatibility_reason=data['compatibility_reason'],
        )
        return Response(result.as_dict(), status=status.HTTP_201_CREATED)
    except ValidationError as e:
        return _validation_error_response(e)
    except StockEngineError:
        raise
    except Exception as e:
        logger.error(f"Error substituting unit {data['old_code']}: {e}")
        return Response({'error': str(e)}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)


@api_view(['POST'])
def intake(request):
    """
    Receive stock against an invoice.

    Request body:
    {
        "product_id": 1,
        "quantity": 3,
        "track_units": true,        // create one unit per item
        "invoice_number": "NF-1001",
        "request_id": "",           // optional
        "issued_at": null,          // optional
        "notes": ""                 // optional
    }
    """
    serializer = IntakeSerializer(data=request.data)
    if not serializer.is_valid():
        return Response({'error': serializer.errors}, status=status.HTTP_400_BAD_REQUEST)
    data = serializer.validated_data

    try:
        result = AllocationService.receive_stock(
            data['product_id'],
            data['quantity'],
            track_units=data['track_units'],
            invoice_number=data['invoice_number'],
            request_id=data['request_id'],
            issued_at=data['issued_at'],
            notes=data['notes'],
            performed_by_id=request.user.pk,
        )
        return Response(result.as_dict(), status=status.HTTP_201_CREATED)
    except ValidationError as e:
        return _validation_error_response(e)
    except StockEngineError:
        raise
    except Exception as e:
        logger.error(f"Error receiving stock for product {data['product_id']}: {e}")
        return Response({'error': str(e)}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)


@api_view(['POST'])
def fulfill_request(request):
    """
    Fulfill every line of a stock request, all or nothing.

    Request body:
    {
        "request_ref": "42",
        "consumer_id": 7,
        "lines": [{"product_id": 1, "quantity": 1}, {"product_id": 2, "quantity": 5}]
    }
    """
    serializer = FulfillmentSerializer(data=request.data)
    if not serializer.is_valid():
        return Response({'error': serializer.errors}, status=status.HTTP_400_BAD_REQUEST)
    data = serializer.validated_data

    try:
        result = FulfillmentService.fulfill_request(
            data['request_ref'],
            data['lines'],
            data['consumer_id'],
            performed_by_id=request.user.pk,
        )
        return Response(result, status=status.HTTP_201_CREATED)
    except ValidationError as e:
        return _validation_error_response(e)
    except StockEngineError:
        raise
    except Exception as e:
        logger.error(f"Error fulfilling request {data['request_ref']}: {e}")
        return Response({'error': str(e)}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)


@api_view(['GET'])
def product_ledger_check(request, pk):
    """Compare a product's counter with its ledger and units."""
    product = get_object_or_404(Product, pk=pk)
    return Response(LedgerService.check_product(product))
