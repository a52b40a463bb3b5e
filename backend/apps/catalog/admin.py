from django.contrib import admin
from import_export import resources
from import_export.admin import ImportExportModelAdmin

from .models import (
    MasterProduct,
    FinishedGoodDetail,
    RawMaterialDetail,
    PackagingMaterialDetail,
    Product,
)


class MasterProductResource(resources.ModelResource):
    class Meta:
        model = MasterProduct
        import_id_fields = ('name',)
        fields = ('id', 'name', 'product_type', 'description', 'min_stock_level', 'is_active')


class FinishedGoodDetailInline(admin.StackedInline):
    model = FinishedGoodDetail
    can_delete = False


class RawMaterialDetailInline(admin.StackedInline):
    model = RawMaterialDetail
    can_delete = False
    readonly_fields = ('available_qty',)


class PackagingMaterialDetailInline(admin.StackedInline):
    model = PackagingMaterialDetail
    can_delete = False
    readonly_fields = ('available_qty',)


@admin.register(MasterProduct)
class MasterProductAdmin(ImportExportModelAdmin):
    resource_class = MasterProductResource
    list_display = ('name', 'product_type', 'min_stock_level', 'is_active')
    list_filter = ('product_type', 'is_active')
    search_fields = ('name',)

    def get_inline_instances(self, request, obj=None):
        # Only the subtype matching the product type is editable
        inline_for_type = {
            MasterProduct.FINISHED_GOOD: FinishedGoodDetailInline,
            MasterProduct.RAW_MATERIAL: RawMaterialDetailInline,
            MasterProduct.PACKAGING_MATERIAL: PackagingMaterialDetailInline,
        }
        if obj is None:
            return []
        return [inline_for_type[obj.product_type](self.model, self.admin_site)]

    def get_readonly_fields(self, request, obj=None):
        if obj is not None:
            return ('product_type',)
        return ()


@admin.register(Product)
class ProductAdmin(admin.ModelAdmin):
    list_display = (
        'sku_code', 'product_name', 'master_product',
        'available_quantity', 'reserved_quantity', 'package_capacity_kg', 'is_active',
    )
    list_filter = ('is_active', 'is_placeholder')
    search_fields = ('sku_code', 'product_name')
    list_select_related = ('master_product',)
    readonly_fields = (
        'available_quantity', 'reserved_quantity',
        'available_weight_kg', 'reserved_weight_kg', 'package_capacity_kg',
    )
