import django_filters
from django_filters.rest_framework import DjangoFilterBackend
from rest_framework import generics
from rest_framework.permissions import IsAdminUser
from rest_framework.pagination import PageNumberPagination

from .models import AuditLog
from .serializers import AuditLogSerializer


class AuditPagination(PageNumberPagination):
    page_size = 50
    max_page_size = 100


class AuditLogFilter(django_filters.FilterSet):
    reference_id = django_filters.CharFilter()
    action = django_filters.ChoiceFilter(choices=AuditLog.ACTION_CHOICES)
    performed_by = django_filters.CharFilter(field_name="user__username")
    created_after = django_filters.IsoDateTimeFilter(field_name="created_at", lookup_expr="gte")
    created_before = django_filters.IsoDateTimeFilter(field_name="created_at", lookup_expr="lte")

    class Meta:
        model = AuditLog
        fields = ["reference_id", "action"]


class AuditLogListAPIView(generics.ListAPIView):
    """
    Staff view of the workflow activity log: order transitions, batch
    lifecycle, dispatches, inward reversals and discards.
    """
    permission_classes = [IsAdminUser]
    pagination_class = AuditPagination
    serializer_class = AuditLogSerializer
    filter_backends = [DjangoFilterBackend]
    filterset_class = AuditLogFilter
    queryset = AuditLog.objects.select_related("user").order_by("-created_at", "-id")
