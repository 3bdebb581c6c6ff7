from django.urls import path
from .views import (
    ProductListView, ProductDetailView, product_ledger_check,
    UnitListView, UnitDetailView, available_units, unit_history,
    MovementListView, MovementDetailView,
    # Coordinator views
    allocate, acquire_unit, substitute_unit, unit_action, intake, fulfill_request
)

urlpatterns = [
    path('products/', ProductListView.as_view(), name='product-list'),
    path('products/<int:pk>/', ProductDetailView.as_view(), name='product-detail'),
    path('products/<int:pk>/ledger-check/', product_ledger_check, name='product-ledger-check'),
    path('products/<int:product_id>/units/available/', available_units, name='product-available-units'),
    path('units/', UnitListView.as_view(), name='unit-list'),
    path('units/substitute/', substitute_unit, name='unit-substitute'),
    path('units/<uuid:code>/', UnitDetailView.as_view(), name='unit-detail'),
    path('units/<uuid:code>/history/', unit_history, name='unit-history'),
    path('units/<uuid:code>/acquire/', acquire_unit, name='unit-acquire'),
    path('units/<uuid:code>/actions/<slug:action>/', unit_action, name='unit-action'),
    path('movements/', MovementListView.as_view(), name='movement-list'),
    path('movements/<int:pk>/', MovementDetailView.as_view(), name='movement-detail'),
    # Coordinator
    path('allocations/', allocate, name='allocate'),
    path('intake/', intake, name='intake'),
    path('requests/fulfill/', fulfill_request, name='fulfill-request'),
]
