from django.contrib import admin

from apps.orders.models import Order
from .models import Dispatch


class DispatchedOrderInline(admin.TabularInline):
    model = Order
    fk_name = 'dispatch'
    extra = 0
    can_delete = False
    fields = ('order_number', 'customer_name', 'status')
    readonly_fields = fields

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(Dispatch)
class DispatchAdmin(admin.ModelAdmin):
    list_display = ('dispatch_no', 'vehicle_no', 'driver_name', 'status', 'dispatch_date', 'delivered_at')
    list_filter = ('status', 'dispatch_date')
    search_fields = ('dispatch_no', 'vehicle_no', 'driver_name')
    readonly_fields = ('dispatch_no', 'status', 'dispatch_date', 'delivered_at', 'created_by')
    inlines = [DispatchedOrderInline]

    def has_delete_permission(self, request, obj=None):
        return False
