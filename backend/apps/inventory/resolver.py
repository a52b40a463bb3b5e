"""
Product Type Resolver.

FG stock lives on SKU rows (catalog.Product) while RM/PM stock lives on the
master product's detail row. The two id spaces are separate tables, so a
ProductRef always carries which table its id belongs to.
"""
import enum
from dataclasses import dataclass

from apps.catalog.models import MasterProduct, Product
from apps.utils.exceptions import InvalidMovementError, NotFoundError


class ProductKind(str, enum.Enum):
    FG = "FG"
    RM = "RM"
    PM = "PM"
    NOT_FOUND = "NotFound"


@dataclass(frozen=True)
class ProductRef:
    kind: ProductKind
    id: int

    @classmethod
    def sku(cls, product_id):
        return cls(ProductKind.FG, int(product_id))

    @classmethod
    def material(cls, master):
        """Ref for an RM/PM master product (instance or id)."""
        if not isinstance(master, MasterProduct):
            master = MasterProduct.objects.filter(pk=master).first()
            if master is None:
                raise NotFoundError("Material not found")
        if not master.is_material:
            raise InvalidMovementError(f"'{master.name}' is not a raw or packaging material")
        return cls(ProductKind(master.product_type), master.pk)

    @property
    def is_sku(self):
        return self.kind == ProductKind.FG

    @property
    def found(self):
        return self.kind != ProductKind.NOT_FOUND

    def ledger_fields(self):
        """FK kwargs for an InventoryTransaction row: exactly one side is set."""
        if self.is_sku:
            return {"product_id": self.id, "master_product_id": None}
        return {"product_id": None, "master_product_id": self.id}

    def __str__(self):
        return f"{self.kind.value}#{self.id}"


def resolve(product_id):
    """
    Master products are checked first: an RM/PM hit means the id is a master id.
    Otherwise the id is looked up as a SKU. Placeholder SKUs never resolve.
    """
    try:
        product_id = int(product_id)
    except (TypeError, ValueError):
        return ProductRef(ProductKind.NOT_FOUND, 0)

    master_type = (
        MasterProduct.objects.filter(pk=product_id)
        .values_list("product_type", flat=True)
        .first()
    )
    if master_type in (MasterProduct.RAW_MATERIAL, MasterProduct.PACKAGING_MATERIAL):
        return ProductRef(ProductKind(master_type), product_id)

    if Product.objects.filter(pk=product_id, is_placeholder=False).exists():
        return ProductRef(ProductKind.FG, product_id)

    return ProductRef(ProductKind.NOT_FOUND, product_id)


def resolve_or_raise(product_id):
    ref = resolve(product_id)
    if not ref.found:
        raise NotFoundError(f"Product {product_id} not found")
    return ref


def coerce_ref(product):
    """Accepts a ProductRef, a SKU instance, a master instance or a raw id."""
    if isinstance(product, ProductRef):
        if not product.found:
            raise NotFoundError(f"Product {product.id} not found")
        return product
    if isinstance(product, Product):
        return ProductRef.sku(product.pk)
    if isinstance(product, MasterProduct):
        return ProductRef.material(product)
    return resolve_or_raise(product)
