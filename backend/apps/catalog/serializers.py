from rest_framework import serializers
from .models import MasterProduct, Product


class MasterProductSerializer(serializers.ModelSerializer):
    available_qty = serializers.SerializerMethodField()

    class Meta:
        model = MasterProduct
        fields = (
            "id",
            "name",
            "product_type",
            "description",
            "min_stock_level",
            "is_active",
            "available_qty",
            "created_at",
        )
        read_only_fields = ("id", "available_qty", "created_at")

    def get_available_qty(self, obj):
        # FG stock is per SKU, so only materials report it here
        if not obj.is_material or obj.detail is None:
            return None
        return str(obj.detail.available_qty)


class MasterProductCreateSerializer(serializers.Serializer):
    name = serializers.CharField(max_length=255)
    product_type = serializers.ChoiceField(choices=MasterProduct.PRODUCT_TYPE_CHOICES)
    description = serializers.CharField(required=False, allow_blank=True, default="")
    min_stock_level = serializers.DecimalField(max_digits=18, decimal_places=4, required=False, default=0)
    density_kg_per_l = serializers.DecimalField(max_digits=18, decimal_places=4, required=False)
    purchase_cost = serializers.DecimalField(max_digits=14, decimal_places=2, required=False)
    capacity_litres = serializers.DecimalField(max_digits=18, decimal_places=4, required=False)

    def validate_name(self, value):
        if MasterProduct.objects.filter(name__iexact=value).exists():
            raise serializers.ValidationError("A master product with this name already exists.")
        return value


class ProductSerializer(serializers.ModelSerializer):
    free_quantity = serializers.DecimalField(max_digits=18, decimal_places=4, read_only=True)

    class Meta:
        model = Product
        fields = (
            "id",
            "master_product",
            "packaging",
            "product_name",
            "sku_code",
            "selling_price",
            "available_quantity",
            "reserved_quantity",
            "free_quantity",
            "available_weight_kg",
            "reserved_weight_kg",
            "package_capacity_kg",
            "min_stock_level",
            "is_active",
        )
        # Stock moves only through inventory movements
        read_only_fields = (
            "id",
            "available_quantity",
            "reserved_quantity",
            "free_quantity",
            "available_weight_kg",
            "reserved_weight_kg",
            "package_capacity_kg",
        )
