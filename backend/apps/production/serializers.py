from rest_framework import serializers

from .models import ProductionBatch, BatchMaterial, BatchProduct


class BatchMaterialSerializer(serializers.ModelSerializer):
    material_name = serializers.CharField(source='material.name', read_only=True)

    class Meta:
        model = BatchMaterial
        fields = ("id", "material", "material_name", "required_quantity", "consumed_quantity", "sequence")


class BatchProductSerializer(serializers.ModelSerializer):
    sku_code = serializers.CharField(source='product.sku_code', read_only=True)

    class Meta:
        model = BatchProduct
        fields = (
            "id", "product", "sku_code", "order_detail", "planned_units", "produced_units",
            "package_capacity_kg", "produced_weight_kg", "inventory_updated",
        )


class ProductionBatchSerializer(serializers.ModelSerializer):
    master_product_name = serializers.CharField(source='master_product.name', read_only=True)
    materials = BatchMaterialSerializer(many=True, read_only=True)
    products = BatchProductSerializer(many=True, read_only=True)

    class Meta:
        model = ProductionBatch
        fields = (
            "id", "batch_no", "master_product", "master_product_name", "batch_type", "status",
            "planned_quantity", "density_kg_per_l", "actual_quantity", "actual_density_kg_per_l",
            "actual_weight_kg", "scheduled_date", "started_at", "completed_at", "cancellation_reason",
            "materials", "products",
        )
        read_only_fields = fields


class MaterialInputSerializer(serializers.Serializer):
    material = serializers.IntegerField()
    required_quantity = serializers.DecimalField(max_digits=18, decimal_places=4)
    sequence = serializers.IntegerField(required=False, min_value=0)


class ProductInputSerializer(serializers.Serializer):
    product = serializers.IntegerField()
    planned_units = serializers.DecimalField(max_digits=18, decimal_places=4, required=False, default=0)
    order_detail = serializers.IntegerField(required=False, allow_null=True)


class ScheduleBatchSerializer(serializers.Serializer):
    master_product = serializers.IntegerField()
    batch_type = serializers.ChoiceField(
        choices=ProductionBatch.BATCH_TYPE_CHOICES, default=ProductionBatch.MAKE_TO_ORDER
    )
    planned_quantity = serializers.DecimalField(max_digits=18, decimal_places=4)
    density_kg_per_l = serializers.DecimalField(max_digits=18, decimal_places=4, required=False)
    scheduled_date = serializers.DateField(required=False)
    materials = MaterialInputSerializer(many=True, required=False, default=list)
    products = ProductInputSerializer(many=True, allow_empty=False)


class ConsumedInputSerializer(serializers.Serializer):
    material = serializers.IntegerField()
    quantity = serializers.DecimalField(max_digits=18, decimal_places=4, min_value=0)


class ProducedInputSerializer(serializers.Serializer):
    product = serializers.IntegerField()
    units = serializers.DecimalField(max_digits=18, decimal_places=4, min_value=0)


class CompleteBatchSerializer(serializers.Serializer):
    actual_quantity = serializers.DecimalField(max_digits=18, decimal_places=4)
    actual_density_kg_per_l = serializers.DecimalField(max_digits=18, decimal_places=4)
    consumed = ConsumedInputSerializer(many=True, required=False, default=list)
    produced = ProducedInputSerializer(many=True, required=False, default=list)


class CancelBatchSerializer(serializers.Serializer):
    reason = serializers.CharField()
