from django.contrib import admin

from .models import ProductionBatch, BatchMaterial, BatchProduct


class BatchMaterialInline(admin.TabularInline):
    model = BatchMaterial
    extra = 0
    readonly_fields = ('consumed_quantity',)


class BatchProductInline(admin.TabularInline):
    model = BatchProduct
    extra = 0
    readonly_fields = ('produced_units', 'produced_weight_kg', 'inventory_updated')


@admin.register(ProductionBatch)
class ProductionBatchAdmin(admin.ModelAdmin):
    list_display = ('batch_no', 'master_product', 'batch_type', 'status', 'planned_quantity', 'actual_weight_kg', 'scheduled_date')
    list_filter = ('status', 'batch_type', 'scheduled_date')
    search_fields = ('batch_no', 'master_product__name')
    list_select_related = ('master_product',)
    readonly_fields = (
        'batch_no', 'status', 'actual_quantity', 'actual_density_kg_per_l', 'actual_weight_kg',
        'started_at', 'completed_at', 'completed_by', 'created_by', 'cancellation_reason',
    )
    inlines = [BatchMaterialInline, BatchProductInline]

    def has_delete_permission(self, request, obj=None):
        return False
