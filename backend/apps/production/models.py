import secrets

from django.conf import settings
from django.db import models
from django.utils import timezone

from apps.catalog.models import MasterProduct, Product, qty_field
from apps.orders.models import OrderDetail

User = settings.AUTH_USER_MODEL


def generate_batch_no():
    return f"BATCH-{timezone.localdate():%Y%m%d}-{secrets.token_hex(2).upper()}"


class ProductionBatch(models.Model):
    """
    One mixing run of a finished good. Completion consumes the batch's
    materials and puts the packed SKUs into stock.
    """
    MAKE_TO_ORDER = "make_to_order"
    MAKE_TO_STOCK = "make_to_stock"

    BATCH_TYPE_CHOICES = (
        (MAKE_TO_ORDER, "Make to Order"),
        (MAKE_TO_STOCK, "Make to Stock"),
    )

    SCHEDULED = "Scheduled"
    IN_PROGRESS = "In Progress"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"

    STATUS_CHOICES = (
        (SCHEDULED, "Scheduled"),
        (IN_PROGRESS, "In Progress"),
        (COMPLETED, "Completed"),
        (CANCELLED, "Cancelled"),
    )

    batch_no = models.CharField(max_length=32, unique=True, default=generate_batch_no)
    master_product = models.ForeignKey(
        MasterProduct,
        on_delete=models.PROTECT,
        related_name="batches",
        limit_choices_to={"product_type": MasterProduct.FINISHED_GOOD},
    )
    batch_type = models.CharField(max_length=20, choices=BATCH_TYPE_CHOICES, default=MAKE_TO_ORDER)

    planned_quantity = qty_field()
    density_kg_per_l = qty_field()
    actual_quantity = models.DecimalField(max_digits=18, decimal_places=4, null=True, blank=True)
    actual_density_kg_per_l = models.DecimalField(max_digits=18, decimal_places=4, null=True, blank=True)
    actual_weight_kg = models.DecimalField(max_digits=18, decimal_places=4, null=True, blank=True)

    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=SCHEDULED)
    scheduled_date = models.DateField(default=timezone.localdate)
    started_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    completed_by = models.ForeignKey(User, on_delete=models.PROTECT, null=True, blank=True, related_name="+")
    cancellation_reason = models.TextField(blank=True, default="")

    created_by = models.ForeignKey(User, on_delete=models.PROTECT, related_name="+")
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ["-scheduled_date", "-id"]
        indexes = [
            models.Index(fields=["status", "scheduled_date"]),
        ]

    def __str__(self):
        return f"{self.batch_no} ({self.status})"


class BatchMaterial(models.Model):
    batch = models.ForeignKey(ProductionBatch, on_delete=models.CASCADE, related_name="materials")
    material = models.ForeignKey(MasterProduct, on_delete=models.PROTECT, related_name="batch_usages")
    required_quantity = qty_field()
    consumed_quantity = models.DecimalField(max_digits=18, decimal_places=4, null=True, blank=True)
    sequence = models.PositiveIntegerField(default=0)

    class Meta:
        ordering = ["sequence", "id"]

    def __str__(self):
        return f"{self.material.name} x {self.required_quantity}"


class BatchProduct(models.Model):
    batch = models.ForeignKey(ProductionBatch, on_delete=models.CASCADE, related_name="products")
    product = models.ForeignKey(Product, on_delete=models.PROTECT, related_name="batch_outputs")
    order_detail = models.ForeignKey(
        OrderDetail, on_delete=models.SET_NULL, null=True, blank=True, related_name="batch_outputs"
    )
    planned_units = qty_field()
    produced_units = models.DecimalField(max_digits=18, decimal_places=4, null=True, blank=True)
    package_capacity_kg = qty_field()
    produced_weight_kg = models.DecimalField(max_digits=18, decimal_places=4, null=True, blank=True)
    inventory_updated = models.BooleanField(default=False)

    class Meta:
        ordering = ["id"]

    def __str__(self):
        return f"{self.product.sku_code} x {self.planned_units}"
