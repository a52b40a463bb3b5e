"""
Small builders for test data. Stock is always put on the shelf through
real movements so every test starts from a balanced ledger.
"""
from decimal import Decimal

from django.contrib.auth import get_user_model

from apps.catalog.models import MasterProduct
from apps.catalog.services import CatalogService


def make_user(username="storekeeper", **extra):
    return get_user_model().objects.create_user(username=username, password="pass", **extra)


def make_paint(name="Enamel White", density="1.2000"):
    return CatalogService.create_master_product(
        name=name,
        product_type=MasterProduct.FINISHED_GOOD,
        density_kg_per_l=Decimal(density),
    )


def make_material(name, product_type=MasterProduct.RAW_MATERIAL, **details):
    return CatalogService.create_master_product(name=name, product_type=product_type, **details)


def make_bucket(name="Bucket 20L", litres="20"):
    return make_material(name, MasterProduct.PACKAGING_MATERIAL, capacity_litres=Decimal(litres))


def make_sku(master, sku_code="EW-20", packaging=None, price="1500.00", **extra):
    return CatalogService.create_sku(
        master_product=master,
        product_name=f"{master.name} {sku_code}",
        sku_code=sku_code,
        packaging=packaging,
        selling_price=Decimal(price),
        **extra,
    )


def stock_up(product, quantity, user, **kwargs):
    """Inward movement for a SKU instance, a material master or a ProductRef."""
    from apps.inventory.services import StockMovementService
    return StockMovementService.record_inward(product, Decimal(str(quantity)), user, **kwargs)
