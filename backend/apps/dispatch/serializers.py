from rest_framework import serializers

from .models import Dispatch


class DispatchSerializer(serializers.ModelSerializer):
    orders = serializers.SlugRelatedField(many=True, read_only=True, slug_field="order_number")

    class Meta:
        model = Dispatch
        fields = (
            "id", "dispatch_no", "vehicle_no", "driver_name", "remarks", "status",
            "dispatch_date", "delivered_at", "orders",
        )
        read_only_fields = fields


class CreateDispatchSerializer(serializers.Serializer):
    order_ids = serializers.ListField(child=serializers.IntegerField(min_value=1), allow_empty=False)
    vehicle_no = serializers.CharField(max_length=32)
    driver_name = serializers.CharField(max_length=255)
    remarks = serializers.CharField(required=False, allow_blank=True)
