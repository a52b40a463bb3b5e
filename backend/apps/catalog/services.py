import logging
from django.db import transaction

from apps.utils.exceptions import InvalidMovementError
from .models import (
    MasterProduct,
    FinishedGoodDetail,
    RawMaterialDetail,
    PackagingMaterialDetail,
    Product,
)

logger = logging.getLogger(__name__)

DETAIL_MODELS = {
    MasterProduct.FINISHED_GOOD: FinishedGoodDetail,
    MasterProduct.RAW_MATERIAL: RawMaterialDetail,
    MasterProduct.PACKAGING_MATERIAL: PackagingMaterialDetail,
}

# Detail fields callers may set at creation. Stock columns are not in here.
DETAIL_FIELDS = {
    MasterProduct.FINISHED_GOOD: {"density_kg_per_l", "viscosity", "water_percentage"},
    MasterProduct.RAW_MATERIAL: {"purchase_cost", "density_kg_per_l", "solid_percentage"},
    MasterProduct.PACKAGING_MATERIAL: {"purchase_cost", "capacity_litres"},
}


class CatalogService:

    @staticmethod
    @transaction.atomic
    def create_master_product(name, product_type, description="", min_stock_level=0, **details):
        """
        Creates the master row and its single subtype row together.
        """
        if product_type not in DETAIL_MODELS:
            raise InvalidMovementError(f"Unknown product type '{product_type}'")

        unknown = set(details) - DETAIL_FIELDS[product_type]
        if unknown:
            raise InvalidMovementError(
                f"Fields {sorted(unknown)} are not valid for {product_type} products"
            )

        master = MasterProduct.objects.create(
            name=name,
            product_type=product_type,
            description=description,
            min_stock_level=min_stock_level,
        )
        DETAIL_MODELS[product_type].objects.create(master_product=master, **details)

        logger.info(f"Master product created: {master.name} ({product_type}) id={master.id}")
        return master

    @staticmethod
    def create_sku(master_product, product_name, sku_code, packaging=None, selling_price=0, min_stock_level=0):
        if master_product.product_type != MasterProduct.FINISHED_GOOD:
            raise InvalidMovementError(
                f"SKUs can only be created under finished goods, '{master_product.name}' is {master_product.product_type}"
            )
        if packaging is not None and packaging.product_type != MasterProduct.PACKAGING_MATERIAL:
            raise InvalidMovementError(f"'{packaging.name}' is not a packaging material")

        sku = Product.objects.create(
            master_product=master_product,
            packaging=packaging,
            product_name=product_name,
            sku_code=sku_code,
            selling_price=selling_price,
            min_stock_level=min_stock_level,
        )
        logger.info(f"SKU created: {sku.sku_code} under {master_product.name}")
        return sku
