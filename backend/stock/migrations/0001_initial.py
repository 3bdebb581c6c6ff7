import django.db.models.deletion
import django.utils.timezone
import uuid
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='Product',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(help_text='Product name', max_length=200)),
                ('sku', models.CharField(db_index=True, help_text='SKU identifier', max_length=64, unique=True)),
                ('description', models.TextField(blank=True)),
                ('quantity', models.IntegerField(default=0, help_text='Current stock level')),
                ('opening_quantity', models.IntegerField(default=0, editable=False, help_text='Stock level when the product was created')),
                ('status', models.CharField(choices=[('Available', 'Available'), ('Stock Low', 'Stock Low'), ('Stock Out', 'Stock Out')], db_index=True, default='Stock Out', help_text='Derived from quantity', max_length=20)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'verbose_name': 'Product',
                'verbose_name_plural': 'Products',
                'ordering': ['name'],
                'constraints': [models.CheckConstraint(condition=models.Q(('quantity__gte', 0)), name='product_quantity_non_negative', violation_error_message='Quantity cannot be negative')],
            },
        ),
        migrations.CreateModel(
            name='Invoice',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('invoice_number', models.CharField(db_index=True, max_length=64)),
                ('quantity', models.PositiveIntegerField(help_text='Quantity received')),
                ('request_id', models.CharField(blank=True, db_index=True, max_length=64)),
                ('issued_at', models.DateTimeField(default=django.utils.timezone.now)),
                ('notes', models.TextField(blank=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('product', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='invoices', to='stock.product')),
            ],
            options={
                'ordering': ['-issued_at'],
            },
        ),
        migrations.CreateModel(
            name='Unit',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('code', models.UUIDField(default=uuid.uuid4, editable=False, help_text="Code printed on the unit's QR label", unique=True)),
                ('status', models.CharField(choices=[('IN_STOCK', 'In Stock'), ('ACQUIRED', 'Acquired'), ('IN_REPAIR', 'In Repair'), ('SCRAPPED', 'Scrapped'), ('LOST', 'Lost')], db_index=True, default='IN_STOCK', max_length=20)),
                ('serial_number', models.CharField(blank=True, max_length=120, null=True, unique=True)),
                ('part_number', models.CharField(blank=True, max_length=120, null=True, unique=True)),
                ('asset_tag', models.CharField(blank=True, max_length=120, null=True, unique=True)),
                ('notes', models.TextField(blank=True)),
                ('acquired_at', models.DateTimeField(blank=True, null=True)),
                ('acquired_reason', models.CharField(blank=True, max_length=200)),
                ('cost_center', models.CharField(blank=True, max_length=200)),
                ('acquired_notes', models.TextField(blank=True)),
                ('created_at', models.DateTimeField(db_index=True, default=django.utils.timezone.now)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('acquired_by', models.ForeignKey(blank=True, help_text='User who performed the allocation', null=True, on_delete=django.db.models.deletion.PROTECT, related_name='acquired_units', to=settings.AUTH_USER_MODEL)),
                ('assigned_to', models.ForeignKey(blank=True, help_text='Consumer currently holding the unit', null=True, on_delete=django.db.models.deletion.PROTECT, related_name='assigned_units', to=settings.AUTH_USER_MODEL)),
                ('invoice', models.ForeignKey(blank=True, help_text='Intake that created this unit', null=True, on_delete=django.db.models.deletion.PROTECT, related_name='units', to='stock.invoice')),
                ('product', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='units', to='stock.product')),
            ],
            options={
                'verbose_name': 'Unit',
                'verbose_name_plural': 'Units',
                'ordering': ['created_at', 'id'],
                'permissions': [('write_off_unit', 'Can scrap units or mark them lost')],
                'indexes': [models.Index(fields=['product', 'status', 'created_at'], name='unit_product_status_fifo_idx')],
            },
        ),
        migrations.CreateModel(
            name='Movement',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('movement_type', models.CharField(choices=[('IN', 'Stock In'), ('OUT', 'Stock Out'), ('RETURN', 'Return'), ('REPAIR_OUT', 'Sent to Repair'), ('REPAIR_IN', 'Back from Repair'), ('SCRAP', 'Scrapped'), ('LOST', 'Lost')], db_index=True, help_text='Type of stock movement', max_length=20)),
                ('quantity', models.PositiveIntegerField(help_text='Items moved')),
                ('request_id', models.CharField(blank=True, db_index=True, max_length=64)),
                ('quantity_before', models.IntegerField(help_text='Product quantity before movement')),
                ('quantity_after', models.IntegerField(help_text='Product quantity after movement')),
                ('quantity_change', models.IntegerField(help_text='Change in product quantity (can be negative or zero)')),
                ('reason', models.CharField(blank=True, max_length=200)),
                ('cost_center', models.CharField(blank=True, max_length=200)),
                ('notes', models.TextField(blank=True)),
                ('created_at', models.DateTimeField(auto_now_add=True, db_index=True)),
                ('assigned_to', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name='assigned_movements', to=settings.AUTH_USER_MODEL)),
                ('invoice', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name='movements', to='stock.invoice')),
                ('performed_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name='performed_movements', to=settings.AUTH_USER_MODEL)),
                ('product', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='movements', to='stock.product')),
                ('unit', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name='movements', to='stock.unit')),
            ],
            options={
                'verbose_name': 'Movement',
                'verbose_name_plural': 'Movements',
                'ordering': ['-created_at', '-id'],
                'indexes': [
                    models.Index(fields=['product', '-created_at'], name='movement_product_recent_idx'),
                    models.Index(fields=['unit', 'created_at'], name='movement_unit_history_idx'),
                ],
            },
        ),
    ]
