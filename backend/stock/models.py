import uuid
from django.conf import settings
from django.db import models
from django.db.models import Case, Value, When
from django.core.exceptions import ValidationError
from django.utils import timezone
from utils.constants import (
    LOW_STOCK_THRESHOLD, PRODUCT_STATUS_COLORS, UNIT_STATUS_COLORS, UNIT_STATUS_ICONS
)
from .guards import StockWriteViolation, in_write_scope, require_write_scope


def low_stock_threshold():
    return getattr(settings, 'STOCK_ENGINE', {}).get('LOW_STOCK_THRESHOLD', LOW_STOCK_THRESHOLD)


class ProductStatus(models.TextChoices):
    AVAILABLE = 'Available', 'Available'
    STOCK_LOW = 'Stock Low', 'Stock Low'
    STOCK_OUT = 'Stock Out', 'Stock Out'


def compute_product_status(quantity: int) -> str:
    """Derive the product status from its aggregate quantity."""
    if quantity > low_stock_threshold():
        return ProductStatus.AVAILABLE.value
    if quantity > 0:
        return ProductStatus.STOCK_LOW.value
    return ProductStatus.STOCK_OUT.value


def product_status_expression():
    """
    SQL equivalent of compute_product_status, evaluated against the row's
    current quantity so the status is never read-modify-written.
    """
    return Case(
        When(quantity__gt=low_stock_threshold(), then=Value(ProductStatus.AVAILABLE.value)),
        When(quantity__gt=0, then=Value(ProductStatus.STOCK_LOW.value)),
        default=Value(ProductStatus.STOCK_OUT.value),
        output_field=models.CharField(),
    )


class GuardedQuerySet(models.QuerySet):
    """QuerySet whose update() refuses guarded fields outside a write scope."""
    guarded_fields = ()

    def update(self, **kwargs):
        touched = sorted(set(kwargs) & set(self.guarded_fields))
        if touched:
            require_write_scope(f"{self.model.__name__}.{'/'.join(touched)}")
        return super().update(**kwargs)


class ProductQuerySet(GuardedQuerySet):
    guarded_fields = ('quantity', 'status')


class UnitQuerySet(GuardedQuerySet):
    guarded_fields = ('status',)

    def bulk_create(self, objs, *args, **kwargs):
        require_write_scope('Unit rows')
        return super().bulk_create(objs, *args, **kwargs)

    def delete(self):
        raise StockWriteViolation('Units are never deleted; scrap them or mark them lost')

    def in_stock(self):
        return self.filter(status=Unit.Status.IN_STOCK)

    def fifo(self):
        return self.order_by('created_at', 'id')


class MovementQuerySet(models.QuerySet):
    """The movement ledger is append-only."""

    def update(self, **kwargs):
        raise StockWriteViolation('Movements are immutable')

    def delete(self):
        raise StockWriteViolation('Movements are immutable')

    def bulk_create(self, objs, *args, **kwargs):
        require_write_scope('Movement rows')
        return super().bulk_create(objs, *args, **kwargs)


class GuardedFieldsMixin:
    """
    Model rows with columns only the allocation coordinator may write.

    The guarded values are remembered whenever the row is loaded or saved.
    Outside a write scope, save() refuses in-memory changes to them and
    leaves them out of the UPDATE, so a stale copy never overwrites a
    coordinator commit that landed after it was loaded.
    """
    guarded_fields = ()

    @classmethod
    def from_db(cls, db, field_names, values):
        instance = super().from_db(db, field_names, values)
        instance._remember_guarded()
        return instance

    def refresh_from_db(self, *args, **kwargs):
        super().refresh_from_db(*args, **kwargs)
        self._remember_guarded()

    def _remember_guarded(self):
        deferred = self.get_deferred_fields()
        self._loaded_guarded = {
            name: getattr(self, name) for name in self.guarded_fields if name not in deferred
        }

    def changed_guarded_fields(self):
        loaded = getattr(self, '_loaded_guarded', {})
        return sorted(name for name, value in loaded.items() if getattr(self, name) != value)

    def save_outside_write_scope(self, *args, **kwargs):
        changed = self.changed_guarded_fields()
        if changed:
            require_write_scope(f"{type(self).__name__}.{'/'.join(changed)}")

        update_fields = kwargs.get('update_fields')
        if update_fields is None:
            update_fields = [f.attname for f in self._meta.concrete_fields if not f.primary_key]
        kwargs['update_fields'] = [
            name for name in update_fields
            if self._meta.get_field(name).attname not in self.guarded_fields
        ]
        super().save(*args, **kwargs)


class Product(GuardedFieldsMixin, models.Model):
    """
    Product catalog entry and aggregate stock counter.

    For bulk products ``quantity`` is the count of non-consumed stock.
    For unit-tracked products it mirrors the number of units IN_STOCK.
    After creation ``quantity`` and ``status`` are only written by the
    allocation coordinator.
    """
    name = models.CharField(max_length=200, help_text="Product name")
    sku = models.CharField(
        max_length=64,
        unique=True,
        db_index=True,
        help_text="SKU identifier"
    )
    description = models.TextField(blank=True)

    # Aggregate counter
    quantity = models.IntegerField(
        default=0,
        help_text="Current stock level"
    )
    opening_quantity = models.IntegerField(
        default=0,
        editable=False,
        help_text="Stock level when the product was created"
    )
    status = models.CharField(
        max_length=20,
        choices=ProductStatus.choices,
        default=ProductStatus.STOCK_OUT,
        db_index=True,
        help_text="Derived from quantity"
    )

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = ProductQuerySet.as_manager()

    guarded_fields = ('quantity', 'opening_quantity', 'status')

    class Meta:
        ordering = ['name']
        verbose_name = 'Product'
        verbose_name_plural = 'Products'
        constraints = [
            models.CheckConstraint(
                condition=models.Q(quantity__gte=0),
                name='product_quantity_non_negative',
                violation_error_message='Quantity cannot be negative'
            ),
        ]

    def __str__(self):
        return f"{self.sku} - {self.name}"

    @property
    def is_unit_tracked(self):
        """A product is unit-tracked once any unit has ever been created for it."""
        return self.units.exists()

    @property
    def status_color(self):
        return PRODUCT_STATUS_COLORS.get(self.status, '#6B7280')

    def clean(self):
        """Validate product data"""
        super().clean()

        if self.quantity is not None and self.quantity < 0:
            raise ValidationError({
                'quantity': 'Quantity cannot be negative'
            })

    def save(self, *args, **kwargs):
        """
        New products take their opening quantity and derived status here.
        Existing products may not change their counter outside the coordinator,
        and catalog edits never write it back.
        """
        if self._state.adding:
            self.opening_quantity = self.quantity
            self.status = compute_product_status(self.quantity)
            super().save(*args, **kwargs)
        elif in_write_scope():
            super().save(*args, **kwargs)
        else:
            self.save_outside_write_scope(*args, **kwargs)
        self._remember_guarded()


class Invoice(models.Model):
    """
    Intake grouping row. Every unit and IN movement points back at the
    intake that created it.
    """
    invoice_number = models.CharField(max_length=64, db_index=True)
    product = models.ForeignKey(
        Product,
        on_delete=models.PROTECT,
        related_name='invoices'
    )
    quantity = models.PositiveIntegerField(help_text="Quantity received")
    request_id = models.CharField(max_length=64, blank=True, db_index=True)
    issued_at = models.DateTimeField(default=timezone.now)
    notes = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-issued_at']

    def __str__(self):
        return f"Invoice {self.invoice_number} ({self.quantity}x {self.product.sku})"


class Unit(GuardedFieldsMixin, models.Model):
    """
    One serialized physical item of a unit-tracked product.

    Status moves only along the transition table in stock.transitions and
    only through the allocation coordinator. Units are never deleted.
    """

    class Status(models.TextChoices):
        IN_STOCK = 'IN_STOCK', 'In Stock'
        ACQUIRED = 'ACQUIRED', 'Acquired'
        IN_REPAIR = 'IN_REPAIR', 'In Repair'
        SCRAPPED = 'SCRAPPED', 'Scrapped'
        LOST = 'LOST', 'Lost'

    code = models.UUIDField(
        unique=True,
        default=uuid.uuid4,
        editable=False,
        help_text="Code printed on the unit's QR label"
    )
    product = models.ForeignKey(
        Product,
        on_delete=models.PROTECT,
        related_name='units'
    )
    invoice = models.ForeignKey(
        Invoice,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='units',
        help_text="Intake that created this unit"
    )
    status = models.CharField(
        max_length=20,
        choices=Status.choices,
        default=Status.IN_STOCK,
        db_index=True
    )

    # Identifiers
    serial_number = models.CharField(max_length=120, null=True, blank=True, unique=True)
    part_number = models.CharField(max_length=120, null=True, blank=True, unique=True)
    asset_tag = models.CharField(max_length=120, null=True, blank=True, unique=True)
    notes = models.TextField(blank=True)

    # Acquisition stamps
    acquired_at = models.DateTimeField(null=True, blank=True)
    acquired_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='acquired_units',
        help_text="User who performed the allocation"
    )
    assigned_to = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='assigned_units',
        help_text="Consumer currently holding the unit"
    )
    acquired_reason = models.CharField(max_length=200, blank=True)
    cost_center = models.CharField(max_length=200, blank=True)
    acquired_notes = models.TextField(blank=True)

    created_at = models.DateTimeField(default=timezone.now, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = UnitQuerySet.as_manager()

    # Identifiers and notes stay editable; state and stamps belong to the coordinator
    guarded_fields = (
        'code', 'product_id', 'invoice_id', 'status',
        'acquired_at', 'acquired_by_id', 'assigned_to_id',
        'acquired_reason', 'cost_center', 'acquired_notes',
    )

    class Meta:
        ordering = ['created_at', 'id']
        verbose_name = 'Unit'
        verbose_name_plural = 'Units'
        indexes = [
            models.Index(fields=['product', 'status', 'created_at'], name='unit_product_status_fifo_idx'),
        ]
        permissions = [
            ('write_off_unit', 'Can scrap units or mark them lost'),
        ]

    def __str__(self):
        return f"{self.product.sku} / {self.code} ({self.status})"

    @property
    def is_terminal(self):
        return self.status in (self.Status.SCRAPPED, self.Status.LOST)

    @property
    def status_display(self):
        """
        Return status information for frontend display.

        Returns:
            dict: {'status': 'IN_STOCK', 'label': 'In Stock', 'color': '#10B981', 'icon': '📦'}
        """
        return {
            'status': self.status,
            'label': self.get_status_display(),
            'color': UNIT_STATUS_COLORS.get(self.status, '#6B7280'),
            'icon': UNIT_STATUS_ICONS.get(self.status, '❓'),
            'is_terminal': self.is_terminal,
        }

    def save(self, *args, **kwargs):
        if self._state.adding:
            require_write_scope('Unit rows')
            super().save(*args, **kwargs)
        elif in_write_scope():
            super().save(*args, **kwargs)
        else:
            self.save_outside_write_scope(*args, **kwargs)
        self._remember_guarded()

    def delete(self, *args, **kwargs):
        raise StockWriteViolation('Units are never deleted; scrap them or mark them lost')


class Movement(models.Model):
    """
    Append-only ledger of stock-affecting events.

    ``quantity`` is the number of items moved (1 per unit movement).
    ``quantity_change`` is the signed effect on Product.quantity, with
    ``quantity_before`` / ``quantity_after`` snapshotting the counter.
    """
    class MovementType(models.TextChoices):
        IN = 'IN', 'Stock In'
        OUT = 'OUT', 'Stock Out'
        RETURN = 'RETURN', 'Return'
        REPAIR_OUT = 'REPAIR_OUT', 'Sent to Repair'
        REPAIR_IN = 'REPAIR_IN', 'Back from Repair'
        SCRAP = 'SCRAP', 'Scrapped'
        LOST = 'LOST', 'Lost'

    movement_type = models.CharField(
        max_length=20,
        choices=MovementType.choices,
        db_index=True,
        help_text="Type of stock movement"
    )
    quantity = models.PositiveIntegerField(help_text="Items moved")
    product = models.ForeignKey(
        Product,
        on_delete=models.PROTECT,
        related_name='movements'
    )
    unit = models.ForeignKey(
        Unit,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='movements'
    )
    invoice = models.ForeignKey(
        Invoice,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='movements'
    )
    request_id = models.CharField(max_length=64, blank=True, db_index=True)

    # Counter snapshot
    quantity_before = models.IntegerField(help_text="Product quantity before movement")
    quantity_after = models.IntegerField(help_text="Product quantity after movement")
    quantity_change = models.IntegerField(help_text="Change in product quantity (can be negative or zero)")

    reason = models.CharField(max_length=200, blank=True)
    cost_center = models.CharField(max_length=200, blank=True)
    notes = models.TextField(blank=True)

    performed_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='performed_movements'
    )
    assigned_to = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='assigned_movements'
    )
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)

    objects = MovementQuerySet.as_manager()

    class Meta:
        ordering = ['-created_at', '-id']
        verbose_name = 'Movement'
        verbose_name_plural = 'Movements'
        indexes = [
            models.Index(fields=['product', '-created_at'], name='movement_product_recent_idx'),
            models.Index(fields=['unit', 'created_at'], name='movement_unit_history_idx'),
        ]

    def __str__(self):
        sign = '+' if self.quantity_change > 0 else ''
        return f"{self.get_movement_type_display()}: {sign}{self.quantity_change} {self.product.sku}"

    def clean(self):
        """Validate movement data"""
        super().clean()

        expected_after = self.quantity_before + self.quantity_change
        if self.quantity_after != expected_after:
            raise ValidationError({
                'quantity_after': f'Calculation error: {self.quantity_before} + {self.quantity_change} should equal {expected_after}, not {self.quantity_after}'
            })

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise StockWriteViolation('Movements are immutable')
        require_write_scope('Movement rows')
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise StockWriteViolation('Movements are immutable')
