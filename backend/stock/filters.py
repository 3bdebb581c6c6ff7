from django_filters import rest_framework as filters
from django.db.models import Q
from .models import Movement, Product, Unit


class CharInFilter(filters.BaseInFilter, filters.CharFilter):
    """Comma separated list of values"""


class MovementFilter(filters.FilterSet):
    """
    Ledger filtering.

    Available filters:
    - Ownership: product, unit (unit code), performed_by, assigned_to
    - Kind: movement_type (comma separated allowed), request_id
    - Date range: created_after, created_before
    - Text search: q (reason, notes, cost center, request id, product sku/name)
    """
    product = filters.NumberFilter(field_name='product_id')
    unit = filters.UUIDFilter(
        field_name='unit__code',
        help_text="Unit code printed on the QR label"
    )
    movement_type = CharInFilter(
        field_name='movement_type',
        lookup_expr='in',
        help_text="One or more movement types, e.g. OUT,RETURN"
    )
    performed_by = filters.NumberFilter(field_name='performed_by_id')
    assigned_to = filters.NumberFilter(field_name='assigned_to_id')
    request_id = filters.CharFilter(field_name='request_id', lookup_expr='exact')

    created_after = filters.DateTimeFilter(
        field_name="created_at",
        lookup_expr='gte',
        help_text="Created at or after this date"
    )
    created_before = filters.DateTimeFilter(
        field_name="created_at",
        lookup_expr='lte',
        help_text="Created at or before this date"
    )

    q = filters.CharFilter(method='filter_search', help_text="Free text search")

    class Meta:
        model = Movement
        fields = [
            'product', 'unit', 'movement_type', 'performed_by', 'assigned_to',
            'request_id', 'created_after', 'created_before', 'q'
        ]

    def filter_search(self, queryset, name, value):
        value = value.strip()
        if not value:
            return queryset
        return queryset.filter(
            Q(reason__icontains=value) |
            Q(notes__icontains=value) |
            Q(cost_center__icontains=value) |
            Q(request_id__icontains=value) |
            Q(product__sku__icontains=value) |
            Q(product__name__icontains=value)
        )


class UnitFilter(filters.FilterSet):
    """
    Unit registry filtering: product, status (comma separated allowed),
    holder and identifier search.
    """
    product = filters.NumberFilter(field_name='product_id')
    status = CharInFilter(field_name='status', lookup_expr='in')
    assigned_to = filters.NumberFilter(field_name='assigned_to_id')
    invoice = filters.NumberFilter(field_name='invoice_id')
    q = filters.CharFilter(method='filter_search', help_text="Serial number, part number or asset tag")

    class Meta:
        model = Unit
        fields = ['product', 'status', 'assigned_to', 'invoice', 'q']

    def filter_search(self, queryset, name, value):
        value = value.strip()
        if not value:
            return queryset
        return queryset.filter(
            Q(serial_number__icontains=value) |
            Q(part_number__icontains=value) |
            Q(asset_tag__icontains=value)
        )


class ProductFilter(filters.FilterSet):
    status = filters.ChoiceFilter(choices=Product._meta.get_field('status').choices)
    min_quantity = filters.NumberFilter(field_name='quantity', lookup_expr='gte')
    max_quantity = filters.NumberFilter(field_name='quantity', lookup_expr='lte')

    class Meta:
        model = Product
        fields = ['status', 'min_quantity', 'max_quantity']
