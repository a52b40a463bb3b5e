from django.contrib import admin
from django.contrib.auth import get_user_model
from django.utils.html import format_html
from django.utils.timezone import localtime
from import_export import resources, fields
from import_export.widgets import ForeignKeyWidget
from import_export.admin import ExportMixin

from apps.catalog.models import MasterProduct, Product
from .models import InventoryTransaction, StockReservation, MaterialInward, MaterialDiscard

User = get_user_model()


class InventoryTransactionResource(resources.ModelResource):
    product = fields.Field(
        column_name='sku_code',
        attribute='product',
        widget=ForeignKeyWidget(Product, 'sku_code')
    )
    master_product = fields.Field(
        column_name='master_product',
        attribute='master_product',
        widget=ForeignKeyWidget(MasterProduct, 'name')
    )
    created_by = fields.Field(
        column_name='created_by',
        attribute='created_by',
        widget=ForeignKeyWidget(User, 'username')
    )

    class Meta:
        model = InventoryTransaction
        fields = (
            'id',
            'product',
            'master_product',
            'transaction_type',
            'quantity',
            'weight_kg',
            'balance_before',
            'balance_after',
            'reference_type',
            'reference_id',
            'unit_price',
            'total_value',
            'notes',
            'created_by',
            'created_at',
        )
        export_order = fields


class ReadOnlyAdminMixin:
    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(InventoryTransaction)
class InventoryTransactionAdmin(ReadOnlyAdminMixin, ExportMixin, admin.ModelAdmin):
    """
    Ledger view. Export only: rows are never edited or imported.
    """
    resource_classes = [InventoryTransactionResource]
    list_display = (
        'id',
        'product_info',
        'type_badge',
        'quantity',
        'balance_before',
        'balance_after',
        'reference_info',
        'created_by',
        'created_at_date',
    )
    list_filter = ('transaction_type', 'reference_type', 'created_at')
    search_fields = ('product__sku_code', 'product__product_name', 'master_product__name', 'notes')
    list_select_related = ('product', 'master_product', 'created_by')
    list_per_page = 50

    TYPE_COLORS = {
        'Inward': '#28a745',
        'Production Output': '#20c997',
        'Return': '#17a2b8',
        'Production Consumption': '#fd7e14',
        'Dispatch': '#007bff',
        'Discard': '#dc3545',
        'Adjustment': '#6f42c1',
        'Initial Stock': '#6c757d',
    }

    def product_info(self, obj):
        if obj.product_id:
            return f"{obj.product.product_name} ({obj.product.sku_code})"
        return obj.master_product.name
    product_info.short_description = "Product"

    def type_badge(self, obj):
        color = self.TYPE_COLORS.get(obj.transaction_type, '#6c757d')
        return format_html(
            '<span style="background-color: {}; color: white; padding: 2px 6px; border-radius: 3px; font-size: 0.8em;">{}</span>',
            color,
            obj.transaction_type
        )
    type_badge.short_description = "Type"

    def reference_info(self, obj):
        if obj.reference_type:
            return f"{obj.reference_type} #{obj.reference_id}"
        return "-"
    reference_info.short_description = "Reference"

    def created_at_date(self, obj):
        return localtime(obj.created_at).strftime('%d/%m/%Y %H:%M:%S')
    created_at_date.short_description = "Timestamp"
    created_at_date.admin_order_field = 'created_at'


@admin.register(StockReservation)
class StockReservationAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    list_display = ('id', 'order_detail', 'product', 'action', 'quantity', 'reserved_before', 'reserved_after', 'oversold', 'created_at')
    list_filter = ('action', 'oversold')
    search_fields = ('product__sku_code', 'order_detail__order__order_number')
    list_select_related = ('product', 'order_detail')


@admin.register(MaterialInward)
class MaterialInwardAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    list_display = ('id', 'master_product', 'product', 'supplier_name', 'bill_no', 'quantity', 'unit_price', 'total_cost', 'inward_date', 'is_reversed')
    list_filter = ('is_reversed', 'inward_date')
    search_fields = ('master_product__name', 'supplier_name', 'bill_no')
    list_select_related = ('master_product', 'product')


@admin.register(MaterialDiscard)
class MaterialDiscardAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    list_display = ('id', 'product_kind', 'master_product', 'product', 'quantity', 'reason', 'discard_date')
    list_filter = ('product_kind', 'discard_date')
    search_fields = ('master_product__name', 'product__sku_code', 'reason')
    list_select_related = ('master_product', 'product')
