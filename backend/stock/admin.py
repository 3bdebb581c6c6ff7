from django.contrib import admin
from django.utils.html import format_html
from utils.constants import PRODUCT_STATUS_COLORS, UNIT_STATUS_COLORS
from .models import Invoice, Movement, Product, Unit


def status_badge(color, label):
    return format_html(
        '<span style="background-color: {}; color: white; padding: 3px 10px; border-radius: 3px;">{}</span>',
        color,
        label
    )


@admin.register(Product)
class ProductAdmin(admin.ModelAdmin):
    """Catalog fields are editable; the counter only through intake and allocation"""
    list_display = ['sku', 'name', 'quantity', 'status_display', 'updated_at']
    list_filter = ['status']
    search_fields = ['sku', 'name']

    def get_readonly_fields(self, request, obj=None):
        if obj is None:
            return ['status', 'created_at', 'updated_at']
        return ['quantity', 'opening_quantity', 'status', 'created_at', 'updated_at']

    def has_delete_permission(self, request, obj=None):
        return False

    def status_display(self, obj):
        return status_badge(PRODUCT_STATUS_COLORS.get(obj.status, '#6B7280'), obj.get_status_display())
    status_display.short_description = 'Status'
    status_display.admin_order_field = 'status'


@admin.register(Unit)
class UnitAdmin(admin.ModelAdmin):
    """Units are created by intake and move only through lifecycle actions"""
    list_display = ['code', 'product', 'status_display', 'serial_number', 'asset_tag', 'assigned_to', 'created_at']
    list_filter = ['status', 'product']
    search_fields = ['code', 'serial_number', 'part_number', 'asset_tag', 'product__sku']
    readonly_fields = [
        'code', 'product', 'invoice', 'status',
        'acquired_at', 'acquired_by', 'assigned_to',
        'acquired_reason', 'cost_center', 'acquired_notes',
        'created_at', 'updated_at'
    ]

    fieldsets = (
        ('Unit', {
            'fields': ('code', 'product', 'invoice', 'status')
        }),
        ('Identifiers', {
            'fields': ('serial_number', 'part_number', 'asset_tag', 'notes')
        }),
        ('Acquisition', {
            'fields': (
                'acquired_at', 'acquired_by', 'assigned_to',
                'acquired_reason', 'cost_center', 'acquired_notes'
            ),
            'classes': ('collapse',)
        }),
        ('Timestamps', {
            'fields': ('created_at', 'updated_at'),
            'classes': ('collapse',)
        }),
    )

    def has_add_permission(self, request):
        return False

    def has_delete_permission(self, request, obj=None):
        return False

    def status_display(self, obj):
        return status_badge(UNIT_STATUS_COLORS.get(obj.status, '#6B7280'), obj.get_status_display())
    status_display.short_description = 'Status'
    status_display.admin_order_field = 'status'


@admin.register(Invoice)
class InvoiceAdmin(admin.ModelAdmin):
    list_display = ['invoice_number', 'product', 'quantity', 'issued_at']
    search_fields = ['invoice_number', 'product__sku', 'request_id']
    readonly_fields = ['invoice_number', 'product', 'quantity', 'request_id', 'issued_at', 'created_at']

    def has_add_permission(self, request):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(Movement)
class MovementAdmin(admin.ModelAdmin):
    """The ledger is append-only: view only"""
    list_display = [
        'created_at', 'movement_type', 'product', 'unit', 'quantity',
        'quantity_before', 'quantity_after', 'performed_by', 'assigned_to'
    ]
    list_filter = ['movement_type', 'created_at']
    search_fields = ['product__sku', 'unit__code', 'request_id', 'reason']
    date_hierarchy = 'created_at'

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
