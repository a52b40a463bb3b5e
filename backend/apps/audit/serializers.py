from rest_framework import serializers
from .models import AuditLog


class AuditLogSerializer(serializers.ModelSerializer):
    performed_by = serializers.SlugRelatedField(source="user", slug_field="username", read_only=True)
    action_label = serializers.CharField(source="get_action_display", read_only=True)

    class Meta:
        model = AuditLog
        fields = ("id", "action", "action_label", "reference_id", "performed_by", "metadata", "created_at")
        read_only_fields = fields
