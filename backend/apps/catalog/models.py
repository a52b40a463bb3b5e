from decimal import Decimal

from django.db import models
from django.db.models import Q
from django.utils import timezone

from apps.utils.exceptions import InvalidMovementError

ZERO = Decimal("0")


def qty_field(**kwargs):
    kwargs.setdefault("default", ZERO)
    return models.DecimalField(max_digits=18, decimal_places=4, **kwargs)


class StockColumnsModel(models.Model):
    """
    Saving an existing row leaves STOCK_FIELDS untouched: only
    apps.inventory movements write them, with a ledger row each.
    """
    STOCK_FIELDS = ()

    class Meta:
        abstract = True

    def save(self, *args, **kwargs):
        if not self._state.adding and not kwargs.get("force_insert"):
            update_fields = kwargs.get("update_fields")
            if update_fields is None:
                update_fields = [f.name for f in self._meta.concrete_fields if not f.primary_key]
            kwargs["update_fields"] = [name for name in update_fields if name not in self.STOCK_FIELDS]
        super().save(*args, **kwargs)


class MasterProduct(models.Model):
    """
    A product family. The type decides where stock lives:
    RM/PM keep it on their detail row, FG keeps it on each SKU.
    """
    FINISHED_GOOD = "FG"
    RAW_MATERIAL = "RM"
    PACKAGING_MATERIAL = "PM"

    PRODUCT_TYPE_CHOICES = (
        (FINISHED_GOOD, "Finished Good"),
        (RAW_MATERIAL, "Raw Material"),
        (PACKAGING_MATERIAL, "Packaging Material"),
    )

    name = models.CharField(max_length=255, unique=True)
    product_type = models.CharField(max_length=2, choices=PRODUCT_TYPE_CHOICES)
    description = models.TextField(blank=True)
    min_stock_level = qty_field()
    is_active = models.BooleanField(default=True)

    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["name"]
        indexes = [
            models.Index(fields=["product_type", "is_active"]),
        ]

    def save(self, *args, **kwargs):
        if self.pk:
            stored_type = (
                MasterProduct.objects.filter(pk=self.pk)
                .values_list("product_type", flat=True)
                .first()
            )
            if stored_type and stored_type != self.product_type:
                raise InvalidMovementError(
                    f"Product type of '{self.name}' cannot change from {stored_type} to {self.product_type}"
                )
        super().save(*args, **kwargs)

    @property
    def is_material(self):
        return self.product_type in (self.RAW_MATERIAL, self.PACKAGING_MATERIAL)

    @property
    def detail(self):
        """The single subtype row for this master (or None if not created yet)."""
        accessor = {
            self.FINISHED_GOOD: "fg_detail",
            self.RAW_MATERIAL: "rm_detail",
            self.PACKAGING_MATERIAL: "pm_detail",
        }[self.product_type]
        return getattr(self, accessor, None)

    def __str__(self):
        return f"{self.name} [{self.product_type}]"


class FinishedGoodDetail(models.Model):
    master_product = models.OneToOneField(
        MasterProduct, on_delete=models.CASCADE, primary_key=True, related_name="fg_detail"
    )
    density_kg_per_l = qty_field()
    viscosity = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True)
    water_percentage = models.DecimalField(max_digits=6, decimal_places=2, null=True, blank=True)

    def __str__(self):
        return f"FG detail: {self.master_product.name}"


class RawMaterialDetail(StockColumnsModel):
    STOCK_FIELDS = ("available_qty",)

    master_product = models.OneToOneField(
        MasterProduct, on_delete=models.CASCADE, primary_key=True, related_name="rm_detail"
    )
    available_qty = qty_field()
    purchase_cost = models.DecimalField(max_digits=14, decimal_places=2, default=ZERO)
    density_kg_per_l = qty_field()
    solid_percentage = models.DecimalField(max_digits=6, decimal_places=2, null=True, blank=True)

    def __str__(self):
        return f"RM stock: {self.master_product.name} = {self.available_qty}"


class PackagingMaterialDetail(StockColumnsModel):
    STOCK_FIELDS = ("available_qty",)

    master_product = models.OneToOneField(
        MasterProduct, on_delete=models.CASCADE, primary_key=True, related_name="pm_detail"
    )
    available_qty = qty_field()
    purchase_cost = models.DecimalField(max_digits=14, decimal_places=2, default=ZERO)
    capacity_litres = qty_field(help_text="Fill volume of one package")

    def __str__(self):
        return f"PM stock: {self.master_product.name} = {self.available_qty}"


class Product(StockColumnsModel):
    """
    Sellable SKU (one package size) under an FG master product.
    Stock columns are written only through apps.inventory movements.
    """
    STOCK_FIELDS = (
        "available_quantity",
        "reserved_quantity",
        "available_weight_kg",
        "reserved_weight_kg",
    )

    master_product = models.ForeignKey(
        MasterProduct, on_delete=models.PROTECT, related_name="skus"
    )
    packaging = models.ForeignKey(
        MasterProduct,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="packaged_skus",
        limit_choices_to={"product_type": MasterProduct.PACKAGING_MATERIAL},
    )

    product_name = models.CharField(max_length=255)
    sku_code = models.CharField(max_length=100, unique=True, db_index=True)
    selling_price = models.DecimalField(max_digits=14, decimal_places=2, default=ZERO)

    available_quantity = qty_field()
    reserved_quantity = qty_field()
    available_weight_kg = qty_field()
    reserved_weight_kg = qty_field()
    package_capacity_kg = qty_field()

    min_stock_level = qty_field()
    is_active = models.BooleanField(default=True)
    # Synthesized for RM/PM discards, never holds stock
    is_placeholder = models.BooleanField(default=False)

    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["product_name"]
        indexes = [
            models.Index(fields=["master_product", "is_active"]),
        ]
        constraints = [
            models.CheckConstraint(
                condition=Q(available_quantity__gte=0) & Q(reserved_quantity__gte=0),
                name="sku_stock_non_negative",
            ),
        ]

    def save(self, *args, **kwargs):
        self.package_capacity_kg = self.derive_package_capacity()
        super().save(*args, **kwargs)

    def derive_package_capacity(self):
        """packaging capacity (L) x FG density (kg/L); keeps the stored value if either is unknown."""
        if not self.packaging_id:
            return self.package_capacity_kg
        pm_detail = getattr(self.packaging, "pm_detail", None)
        fg_detail = getattr(self.master_product, "fg_detail", None)
        if not pm_detail or not fg_detail:
            return self.package_capacity_kg
        if not pm_detail.capacity_litres or not fg_detail.density_kg_per_l:
            return self.package_capacity_kg
        return (pm_detail.capacity_litres * fg_detail.density_kg_per_l).quantize(Decimal("0.0001"))

    @property
    def free_quantity(self):
        return max(ZERO, self.available_quantity - self.reserved_quantity)

    def __str__(self):
        return f"{self.product_name} ({self.sku_code})"
