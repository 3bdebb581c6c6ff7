"""
Shared test data builders for the stock app.
"""

from django.contrib.auth import get_user_model
from django.contrib.auth.models import Permission

from stock.models import Product
from stock.services import AllocationService


def make_user(username, **kwargs):
    return get_user_model().objects.create_user(username=username, password='pass1234', **kwargs)


def grant_write_off(user):
    user.user_permissions.add(Permission.objects.get(codename='write_off_unit'))
    # Drop the cached permissions so has_perm sees the new grant
    return get_user_model().objects.get(pk=user.pk)


def make_product(sku, quantity=0, name=None):
    return Product.objects.create(name=name or f'Product {sku}', sku=sku, quantity=quantity)


def make_tracked_product(sku, units=1, invoice_number='NF-0001'):
    """Create a unit-tracked product and receive ``units`` units for it."""
    product = make_product(sku)
    result = AllocationService.receive_stock(
        product.id, units, track_units=True, invoice_number=invoice_number
    )
    product.refresh_from_db()
    return product, result.units


def make_superuser(username):
    return get_user_model().objects.create_superuser(username=username, password='pass1234')
