import django_filters

from .models import InventoryTransaction, StockReservation


class InventoryTransactionFilter(django_filters.FilterSet):
    created_after = django_filters.IsoDateTimeFilter(field_name="created_at", lookup_expr="gte")
    created_before = django_filters.IsoDateTimeFilter(field_name="created_at", lookup_expr="lte")

    class Meta:
        model = InventoryTransaction
        fields = ["transaction_type", "reference_type", "reference_id", "product", "master_product"]


class StockReservationFilter(django_filters.FilterSet):
    order = django_filters.NumberFilter(field_name="order_detail__order")

    class Meta:
        model = StockReservation
        fields = ["order_detail", "product", "action", "oversold"]
