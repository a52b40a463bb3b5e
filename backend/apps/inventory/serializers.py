# apps/inventory/serializers.py
from decimal import Decimal

from rest_framework import serializers

from .models import InventoryTransaction, MaterialInward, MaterialDiscard, StockReservation


class InventoryTransactionSerializer(serializers.ModelSerializer):
    product_label = serializers.CharField(read_only=True)
    created_by = serializers.CharField(source='created_by.username', read_only=True)

    class Meta:
        model = InventoryTransaction
        fields = (
            "id",
            "product",
            "master_product",
            "product_label",
            "transaction_type",
            "quantity",
            "weight_kg",
            "balance_before",
            "balance_after",
            "reference_type",
            "reference_id",
            "unit_price",
            "total_value",
            "notes",
            "created_by",
            "created_at",
        )
        read_only_fields = fields


class StockReservationSerializer(serializers.ModelSerializer):
    class Meta:
        model = StockReservation
        fields = (
            "id", "order_detail", "product", "action", "quantity",
            "reserved_before", "reserved_after", "oversold", "notes", "created_at",
        )
        read_only_fields = fields


class StockLevelSerializer(serializers.Serializer):
    kind = serializers.CharField()
    id = serializers.IntegerField()
    label = serializers.CharField()
    available = serializers.DecimalField(max_digits=18, decimal_places=4)
    reserved = serializers.DecimalField(max_digits=18, decimal_places=4)
    free = serializers.DecimalField(max_digits=18, decimal_places=4)
    available_weight = serializers.DecimalField(max_digits=18, decimal_places=4)
    reserved_weight = serializers.DecimalField(max_digits=18, decimal_places=4)


class MaterialInwardSerializer(serializers.ModelSerializer):
    master_product_name = serializers.CharField(source='master_product.name', read_only=True)

    class Meta:
        model = MaterialInward
        fields = (
            "id", "master_product", "master_product_name", "product", "supplier_name", "bill_no",
            "quantity", "weight_kg", "unit_price", "total_cost", "inward_date", "notes",
            "is_reversed", "reversed_at", "created_at",
        )
        read_only_fields = ("id", "total_cost", "is_reversed", "reversed_at", "created_at")


class CreateInwardSerializer(serializers.Serializer):
    master_product = serializers.IntegerField()
    product = serializers.IntegerField(required=False, allow_null=True)
    quantity = serializers.DecimalField(max_digits=18, decimal_places=4)
    unit_price = serializers.DecimalField(max_digits=14, decimal_places=2, required=False, default=0)
    weight_kg = serializers.DecimalField(max_digits=18, decimal_places=4, required=False, allow_null=True)
    supplier_name = serializers.CharField(max_length=255, required=False, allow_blank=True, default="")
    bill_no = serializers.CharField(max_length=100, required=False, allow_blank=True, default="")
    inward_date = serializers.DateField(required=False)
    notes = serializers.CharField(required=False, allow_blank=True, default="")


class MaterialDiscardSerializer(serializers.ModelSerializer):
    class Meta:
        model = MaterialDiscard
        fields = (
            "id", "product_kind", "master_product", "product", "quantity",
            "reason", "notes", "discard_date", "created_at",
        )
        read_only_fields = fields


class CreateDiscardSerializer(serializers.Serializer):
    product_id = serializers.IntegerField()
    quantity = serializers.DecimalField(max_digits=18, decimal_places=4)
    reason = serializers.CharField(max_length=255)
    notes = serializers.CharField(required=False, allow_blank=True, default="")


class AdjustmentSerializer(serializers.Serializer):
    product_id = serializers.IntegerField()
    quantity = serializers.DecimalField(max_digits=18, decimal_places=4)
    weight_kg = serializers.DecimalField(max_digits=18, decimal_places=4, required=False, allow_null=True)
    notes = serializers.CharField()


class AvailabilityQuerySerializer(serializers.Serializer):
    required_weight_kg = serializers.DecimalField(
        max_digits=18, decimal_places=4, required=False, min_value=Decimal("0.0001")
    )
