from django.conf import settings
from django.db import models
from django.db.models import Q
from django.utils import timezone

from apps.catalog.models import MasterProduct, Product
from apps.utils.exceptions import InvalidMovementError
from apps.utils.immutable import AppendOnlyModel

User = settings.AUTH_USER_MODEL


def amount_field(**kwargs):
    return models.DecimalField(max_digits=18, decimal_places=4, **kwargs)


class TransactionType:
    """
    Open set of movement types. Stored as plain strings (no DB enum) so new
    movement types need no migration; validated against KNOWN at write time.
    """
    INWARD = "Inward"
    PRODUCTION_CONSUMPTION = "Production Consumption"
    PRODUCTION_OUTPUT = "Production Output"
    DISPATCH = "Dispatch"
    ADJUSTMENT = "Adjustment"
    RETURN = "Return"
    DISCARD = "Discard"
    INITIAL_STOCK = "Initial Stock"

    KNOWN = frozenset({
        INWARD, PRODUCTION_CONSUMPTION, PRODUCTION_OUTPUT, DISPATCH,
        ADJUSTMENT, RETURN, DISCARD, INITIAL_STOCK,
    })


class ReferenceType:
    BATCH = "Batch"
    ORDER = "Order"
    INWARD = "Inward"
    DISPATCH = "Dispatch"
    MANUAL_ADJUSTMENT = "Manual Adjustment"
    DISCARD = "Discard"

    KNOWN = frozenset({BATCH, ORDER, INWARD, DISPATCH, MANUAL_ADJUSTMENT, DISCARD})


class InventoryTransaction(AppendOnlyModel):
    """
    The stock ledger. One row per stock mutation; the source of truth for
    why a balance changed. Balances refer to the available column.
    """
    product = models.ForeignKey(
        Product, on_delete=models.PROTECT, null=True, blank=True, related_name="ledger_entries"
    )
    master_product = models.ForeignKey(
        MasterProduct, on_delete=models.PROTECT, null=True, blank=True, related_name="ledger_entries"
    )

    transaction_type = models.CharField(max_length=50, db_index=True)
    quantity = amount_field()
    weight_kg = amount_field(null=True, blank=True)
    density_kg_per_l = amount_field(null=True, blank=True)

    balance_before = amount_field()
    balance_after = amount_field()

    reference_type = models.CharField(max_length=50, null=True, blank=True)
    reference_id = models.BigIntegerField(null=True, blank=True)

    unit_price = models.DecimalField(max_digits=14, decimal_places=2, null=True, blank=True)
    total_value = models.DecimalField(max_digits=18, decimal_places=2, null=True, blank=True)
    notes = models.TextField(blank=True, default="")

    created_by = models.ForeignKey(User, on_delete=models.PROTECT, related_name="+")
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ["-id"]
        indexes = [
            models.Index(fields=["product", "-id"]),
            models.Index(fields=["master_product", "-id"]),
            models.Index(fields=["reference_type", "reference_id"]),
        ]
        constraints = [
            models.CheckConstraint(
                condition=(
                    Q(product__isnull=False, master_product__isnull=True)
                    | Q(product__isnull=True, master_product__isnull=False)
                ),
                name="ledger_exactly_one_product_ref",
            ),
        ]

    def save(self, *args, **kwargs):
        if not self.pk and self.balance_after != self.balance_before + self.quantity:
            raise InvalidMovementError(
                f"Ledger row out of balance: {self.balance_before} + {self.quantity} != {self.balance_after}"
            )
        super().save(*args, **kwargs)

    @property
    def product_label(self):
        if self.product_id:
            return f"SKU#{self.product_id}"
        return f"Master#{self.master_product_id}"

    def __str__(self):
        return f"{self.transaction_type} {self.quantity:+} on {self.product_label}"


class StockReservation(AppendOnlyModel):
    """
    Reservation journal per order line. Sum of quantities for a line equals
    what that line currently holds in the SKU's reserved column.
    """
    ACTION_RESERVE = "reserve"
    ACTION_RELEASE = "release"
    ACTION_CONSUME = "consume"

    ACTION_CHOICES = (
        (ACTION_RESERVE, "Reserve"),
        (ACTION_RELEASE, "Release"),
        (ACTION_CONSUME, "Consume"),
    )

    order_detail = models.ForeignKey(
        "orders.OrderDetail", on_delete=models.PROTECT, related_name="reservation_entries"
    )
    product = models.ForeignKey(Product, on_delete=models.PROTECT, related_name="reservation_entries")
    action = models.CharField(max_length=10, choices=ACTION_CHOICES)
    quantity = amount_field()
    reserved_before = amount_field()
    reserved_after = amount_field()
    oversold = models.BooleanField(default=False)
    notes = models.CharField(max_length=255, blank=True, default="")

    created_by = models.ForeignKey(User, on_delete=models.PROTECT, related_name="+")
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ["id"]
        indexes = [
            models.Index(fields=["order_detail", "id"]),
        ]

    def __str__(self):
        return f"{self.action} {self.quantity} for line {self.order_detail_id}"


class MaterialInward(models.Model):
    """Goods receipt: supplier bill for an RM/PM material or an FG SKU."""
    master_product = models.ForeignKey(MasterProduct, on_delete=models.PROTECT, related_name="inwards")
    product = models.ForeignKey(
        Product, on_delete=models.PROTECT, null=True, blank=True, related_name="inwards"
    )
    supplier_name = models.CharField(max_length=255, blank=True)
    bill_no = models.CharField(max_length=100, blank=True)

    quantity = amount_field()
    weight_kg = amount_field(null=True, blank=True)
    unit_price = models.DecimalField(max_digits=14, decimal_places=2, default=0)
    total_cost = models.DecimalField(max_digits=18, decimal_places=2, default=0)

    inward_date = models.DateField(default=timezone.localdate)
    notes = models.TextField(blank=True, default="")

    is_reversed = models.BooleanField(default=False)
    reversed_at = models.DateTimeField(null=True, blank=True)
    reversed_by = models.ForeignKey(User, on_delete=models.PROTECT, null=True, blank=True, related_name="+")

    created_by = models.ForeignKey(User, on_delete=models.PROTECT, related_name="+")
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ["-inward_date", "-id"]

    def __str__(self):
        return f"Inward #{self.id} {self.master_product.name} x {self.quantity}"


class MaterialDiscard(models.Model):
    """
    Write-off of damaged / expired stock. For RM/PM the row also links a
    placeholder SKU when one could be found or created.
    """
    product_kind = models.CharField(max_length=2, choices=MasterProduct.PRODUCT_TYPE_CHOICES)
    master_product = models.ForeignKey(
        MasterProduct, on_delete=models.PROTECT, null=True, blank=True, related_name="discards"
    )
    product = models.ForeignKey(
        Product, on_delete=models.PROTECT, null=True, blank=True, related_name="discards"
    )

    quantity = amount_field()
    reason = models.CharField(max_length=255)
    notes = models.TextField(blank=True, default="")
    discard_date = models.DateField(default=timezone.localdate)

    created_by = models.ForeignKey(User, on_delete=models.PROTECT, related_name="+")
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ["-discard_date", "-id"]

    def __str__(self):
        return f"Discard #{self.id} ({self.product_kind}) x {self.quantity}"
