# apps/orders/serializers.py
from rest_framework import serializers
from .models import Order, OrderDetail


class OrderDetailSerializer(serializers.ModelSerializer):
    sku_code = serializers.CharField(source='product.sku_code', read_only=True)
    product_name = serializers.CharField(source='product.product_name', read_only=True)
    line_total = serializers.DecimalField(max_digits=18, decimal_places=2, read_only=True)

    class Meta:
        model = OrderDetail
        fields = (
            "id", "product", "sku_code", "product_name", "quantity", "unit_price",
            "discount", "required_weight_kg", "reserved_fg", "reservation_state", "line_total",
        )
        read_only_fields = fields


class OrderSerializer(serializers.ModelSerializer):
    details = OrderDetailSerializer(many=True, read_only=True)
    total_amount = serializers.DecimalField(max_digits=18, decimal_places=2, read_only=True)
    parent_order_number = serializers.CharField(source='parent_order.order_number', read_only=True, default=None)

    class Meta:
        model = Order
        fields = (
            "id", "order_number", "customer_name", "status", "remarks", "admin_remarks",
            "dispatch", "parent_order", "parent_order_number", "total_amount",
            "details", "created_at", "updated_at",
        )
        read_only_fields = fields


class OrderListSerializer(serializers.ModelSerializer):
    line_count = serializers.IntegerField(source='details.count', read_only=True)

    class Meta:
        model = Order
        fields = ("id", "order_number", "customer_name", "status", "line_count", "created_at")


class OrderLineInputSerializer(serializers.Serializer):
    product = serializers.IntegerField()
    quantity = serializers.DecimalField(max_digits=18, decimal_places=4, min_value=0)
    unit_price = serializers.DecimalField(max_digits=14, decimal_places=2, required=False, min_value=0)
    discount = serializers.DecimalField(max_digits=5, decimal_places=2, required=False, min_value=0, max_value=100)
    required_weight_kg = serializers.DecimalField(max_digits=18, decimal_places=4, required=False, min_value=0)


class CreateOrderSerializer(serializers.Serializer):
    customer_name = serializers.CharField(max_length=255)
    remarks = serializers.CharField(required=False, allow_blank=True)
    lines = OrderLineInputSerializer(many=True, allow_empty=False)


class SplitLineSerializer(serializers.Serializer):
    product = serializers.IntegerField()
    quantity = serializers.DecimalField(max_digits=18, decimal_places=4)


class SplitOrderSerializer(serializers.Serializer):
    first_lines = SplitLineSerializer(many=True, allow_empty=False)
    second_lines = SplitLineSerializer(many=True, required=False, default=list)


class RemarksSerializer(serializers.Serializer):
    remarks = serializers.CharField(required=False, allow_blank=True, default="")
