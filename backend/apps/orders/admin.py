from django.contrib import admin
from django.contrib.auth import get_user_model
from import_export import resources, fields
from import_export.widgets import ForeignKeyWidget
from import_export.admin import ExportMixin

from .models import Order, OrderDetail

User = get_user_model()


class OrderResource(resources.ModelResource):
    created_by = fields.Field(
        column_name='created_by',
        attribute='created_by',
        widget=ForeignKeyWidget(User, 'username')
    )

    class Meta:
        model = Order
        fields = (
            'id',
            'order_number',
            'customer_name',
            'status',
            'remarks',
            'admin_remarks',
            'created_by',
            'created_at',
            'updated_at'
        )
        export_order = fields


class OrderDetailInline(admin.TabularInline):
    model = OrderDetail
    extra = 0
    can_delete = False
    fields = ('product', 'quantity', 'unit_price', 'discount', 'required_weight_kg', 'reservation_state')
    readonly_fields = fields

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(Order)
class OrderAdmin(ExportMixin, admin.ModelAdmin):
    """
    Orders are read-only here; status changes go through the API so that
    reservations move with them.
    """
    resource_classes = [OrderResource]
    list_display = ('order_number', 'customer_name', 'status', 'dispatch', 'created_at')
    list_filter = ('status', 'created_at')
    search_fields = ('order_number', 'customer_name')
    list_select_related = ('dispatch',)
    inlines = [OrderDetailInline]
    readonly_fields = (
        'order_number', 'customer_name', 'status', 'remarks', 'dispatch',
        'parent_order', 'created_by', 'created_at', 'updated_at',
    )
    fields = readonly_fields + ('admin_remarks',)

    def has_add_permission(self, request):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
