from rest_framework import serializers
from .models import Invoice, Movement, Product, Unit


# ============================================================================
# Catalog & Registry Serializers
# ============================================================================

class ProductSerializer(serializers.ModelSerializer):
    """
    Serializer for products with their stock counter.

    ``quantity`` is only accepted on create (opening stock). Afterwards the
    counter moves through intake and allocation only.
    """
    status_color = serializers.ReadOnlyField()
    is_unit_tracked = serializers.BooleanField(read_only=True)

    class Meta:
        model = Product
        fields = [
            'id', 'name', 'sku', 'description',
            'quantity', 'opening_quantity', 'status', 'status_color', 'is_unit_tracked',
            'created_at', 'updated_at'
        ]
        read_only_fields = ['id', 'opening_quantity', 'status', 'created_at', 'updated_at']

    def validate_quantity(self, value):
        """Ensure opening quantity is not negative"""
        if value < 0:
            raise serializers.ValidationError("Quantity cannot be negative")
        return value

    def update(self, instance, validated_data):
        validated_data.pop('quantity', None)
        instance = super().update(instance, validated_data)
        # Report the counter as committed, not as loaded
        instance.refresh_from_db()
        return instance


class UnitSerializer(serializers.ModelSerializer):
    """Serializer for serialized units, including acquisition stamps."""
    product_sku = serializers.CharField(source='product.sku', read_only=True)
    product_name = serializers.CharField(source='product.name', read_only=True)
    invoice_number = serializers.CharField(source='invoice.invoice_number', read_only=True, allow_null=True)
    status_display = serializers.ReadOnlyField()
    acquired_by_username = serializers.CharField(source='acquired_by.username', read_only=True, allow_null=True)
    assigned_to_username = serializers.CharField(source='assigned_to.username', read_only=True, allow_null=True)

    class Meta:
        model = Unit
        fields = [
            'id', 'code', 'product', 'product_sku', 'product_name',
            'invoice', 'invoice_number', 'status', 'status_display',
            'serial_number', 'part_number', 'asset_tag', 'notes',
            'acquired_at', 'acquired_by', 'acquired_by_username',
            'assigned_to', 'assigned_to_username',
            'acquired_reason', 'cost_center', 'acquired_notes',
            'created_at', 'updated_at'
        ]
        read_only_fields = fields


class UnitUpdateSerializer(serializers.ModelSerializer):
    """
    Editable identifiers of a unit. Uniqueness is enforced by the database so
    duplicates surface as a conflict, not a field error.
    """

    class Meta:
        model = Unit
        fields = ['serial_number', 'part_number', 'asset_tag', 'notes']
        extra_kwargs = {
            'serial_number': {'validators': []},
            'part_number': {'validators': []},
            'asset_tag': {'validators': []},
        }

    def validate(self, data):
        """Blank identifiers are stored as NULL so they never collide"""
        for field in ('serial_number', 'part_number', 'asset_tag'):
            if field in data and data[field] is not None:
                data[field] = data[field].strip() or None
        return data


class InvoiceSerializer(serializers.ModelSerializer):
    class Meta:
        model = Invoice
        fields = ['id', 'invoice_number', 'product', 'quantity', 'request_id', 'issued_at', 'notes', 'created_at']
        read_only_fields = fields


class MovementSerializer(serializers.ModelSerializer):
    """Serializer for ledger rows (read-only)."""
    movement_type_display = serializers.CharField(source='get_movement_type_display', read_only=True)
    product_sku = serializers.CharField(source='product.sku', read_only=True)
    unit_code = serializers.UUIDField(source='unit.code', read_only=True, allow_null=True)
    invoice_number = serializers.CharField(source='invoice.invoice_number', read_only=True, allow_null=True)

    class Meta:
        model = Movement
        fields = [
            'id', 'movement_type', 'movement_type_display', 'quantity',
            'product', 'product_sku', 'unit', 'unit_code', 'invoice', 'invoice_number',
            'request_id', 'quantity_before', 'quantity_after', 'quantity_change',
            'reason', 'cost_center', 'notes', 'performed_by', 'assigned_to', 'created_at'
        ]
        read_only_fields = fields


# ============================================================================
# Coordinator Input Serializers
# ============================================================================

class AllocationSerializer(serializers.Serializer):
    """Input for a single consumption."""
    product_id = serializers.IntegerField()
    quantity = serializers.IntegerField(default=1, min_value=1)
    consumer_id = serializers.IntegerField()
    reason = serializers.CharField(max_length=200, required=False, allow_blank=True, default='')
    request_id = serializers.CharField(max_length=64, required=False, allow_blank=True, default='')
    cost_center = serializers.CharField(max_length=200, required=False, allow_blank=True, default='')
    notes = serializers.CharField(required=False, allow_blank=True, default='')


class UnitActionSerializer(serializers.Serializer):
    """Metadata recorded with a unit lifecycle action."""
    reason = serializers.CharField(max_length=200, required=False, allow_blank=True, default='')
    notes = serializers.CharField(required=False, allow_blank=True, default='')
    cost_center = serializers.CharField(max_length=200, required=False, allow_blank=True, default='')
    request_id = serializers.CharField(max_length=64, required=False, allow_blank=True, default='')


class UnitAcquireSerializer(serializers.Serializer):
    """Input for acquiring a scanned unit."""
    consumer_id = serializers.IntegerField()
    reason = serializers.CharField(max_length=200, required=False, allow_blank=True, default='')
    request_id = serializers.CharField(max_length=64, required=False, allow_blank=True, default='')
    cost_center = serializers.CharField(max_length=200, required=False, allow_blank=True, default='')
    notes = serializers.CharField(required=False, allow_blank=True, default='')


class SubstitutionSerializer(UnitActionSerializer):
    """Input for swapping a held unit for a specific replacement."""
    old_code = serializers.UUIDField()
    new_code = serializers.UUIDField()
    disposition = serializers.ChoiceField(
        choices=['RETURN', 'REPAIR_OUT', 'SCRAP', 'LOST'],
        default='RETURN'
    )
    consumer_id = serializers.IntegerField(required=False, allow_null=True, default=None)
    compatibility_reason = serializers.CharField(
        max_length=300, required=False, allow_blank=True, default=''
    )

    def validate(self, attrs):
        if attrs['old_code'] == attrs['new_code']:
            raise serializers.ValidationError({'new_code': 'Old and new units must be different'})
        return attrs


class IntakeSerializer(serializers.Serializer):
    """Input for receiving stock against an invoice."""
    product_id = serializers.IntegerField()
    quantity = serializers.IntegerField(min_value=1)
    track_units = serializers.BooleanField(default=False)
    invoice_number = serializers.CharField(max_length=64)
    request_id = serializers.CharField(max_length=64, required=False, allow_blank=True, default='')
    issued_at = serializers.DateTimeField(required=False, allow_null=True, default=None)
    notes = serializers.CharField(required=False, allow_blank=True, default='')


class FulfillmentLineSerializer(serializers.Serializer):
    product_id = serializers.IntegerField()
    quantity = serializers.IntegerField(default=1, min_value=1)
    cost_center = serializers.CharField(max_length=200, required=False, allow_blank=True, default='')
    notes = serializers.CharField(required=False, allow_blank=True, default='')


class FulfillmentSerializer(serializers.Serializer):
    """Input for fulfilling a whole request."""
    request_ref = serializers.CharField(max_length=64)
    consumer_id = serializers.IntegerField()
    lines = FulfillmentLineSerializer(many=True, allow_empty=False)
