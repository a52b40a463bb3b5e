# apps/catalog/tests.py
from decimal import Decimal

from django.contrib.admin.sites import AdminSite
from django.test import RequestFactory, TestCase
from rest_framework.test import APIClient

from apps.catalog.admin import ProductAdmin
from apps.catalog.models import MasterProduct, PackagingMaterialDetail, Product, RawMaterialDetail
from apps.catalog.services import CatalogService
from apps.inventory.tasks import reconcile_stock_ledger
from apps.utils.exceptions import InvalidMovementError
from tests.factories import make_bucket, make_material, make_paint, make_sku, make_user, stock_up


class MasterProductTestCase(TestCase):
    def test_create_material_creates_detail_row(self):
        resin = make_material("Alkyd Resin", purchase_cost=Decimal("210.00"))
        self.assertTrue(resin.is_material)
        self.assertEqual(resin.rm_detail.available_qty, Decimal("0"))
        self.assertEqual(resin.detail.purchase_cost, Decimal("210.00"))

    def test_fields_of_other_type_rejected(self):
        with self.assertRaises(InvalidMovementError):
            CatalogService.create_master_product(
                name="Tin 1L", product_type=MasterProduct.PACKAGING_MATERIAL, solid_percentage=40
            )
        self.assertFalse(MasterProduct.objects.filter(name="Tin 1L").exists())

    def test_product_type_is_fixed(self):
        resin = make_material("Alkyd Resin")
        resin.product_type = MasterProduct.PACKAGING_MATERIAL
        with self.assertRaises(InvalidMovementError):
            resin.save()


class SkuTestCase(TestCase):
    def setUp(self):
        self.paint = make_paint(density="1.2500")
        self.bucket = make_bucket(litres="20")

    def test_package_capacity_from_packaging_and_density(self):
        sku = make_sku(self.paint, packaging=self.bucket)
        self.assertEqual(sku.package_capacity_kg, Decimal("25.0000"))

    def test_sku_only_under_finished_good(self):
        with self.assertRaises(InvalidMovementError):
            make_sku(make_material("Titanium Dioxide"), sku_code="TIO2")

    def test_packaging_must_be_packaging_material(self):
        with self.assertRaises(InvalidMovementError):
            make_sku(self.paint, packaging=make_material("Titanium Dioxide"))


class StaleSaveTestCase(TestCase):
    """Edits made on an instance loaded before a movement must not roll the movement back."""

    def setUp(self):
        self.user = make_user(is_staff=True, is_superuser=True)
        self.paint = make_paint()
        self.bucket = make_bucket()
        self.sku = make_sku(self.paint, packaging=self.bucket)
        self.resin = make_material("Alkyd Resin")

    def test_admin_save_of_stale_sku_keeps_stock(self):
        stale = Product.objects.get(pk=self.sku.pk)
        stock_up(self.sku, 10, self.user)

        request = RequestFactory().post("/admin/catalog/product/")
        request.user = self.user
        stale.product_name = "Enamel White Bucket"
        ProductAdmin(Product, AdminSite()).save_model(request, stale, form=None, change=True)

        sku = Product.objects.get(pk=self.sku.pk)
        self.assertEqual(sku.product_name, "Enamel White Bucket")
        self.assertEqual(sku.available_quantity, Decimal("10"))
        self.assertEqual(sku.available_weight_kg, Decimal("240"))

        self.assertEqual(reconcile_stock_ledger()["mismatched"], [])

    def test_stale_material_detail_save_keeps_stock(self):
        stale_rm = RawMaterialDetail.objects.get(pk=self.resin.pk)
        stale_pm = PackagingMaterialDetail.objects.get(pk=self.bucket.pk)
        stock_up(self.resin, 50, self.user)
        stock_up(self.bucket, 30, self.user)

        stale_rm.purchase_cost = Decimal("215.00")
        stale_rm.save()
        stale_pm.capacity_litres = Decimal("20.5")
        stale_pm.save()

        rm = RawMaterialDetail.objects.get(pk=self.resin.pk)
        self.assertEqual(rm.purchase_cost, Decimal("215.00"))
        self.assertEqual(rm.available_qty, Decimal("50"))
        pm = PackagingMaterialDetail.objects.get(pk=self.bucket.pk)
        self.assertEqual(pm.capacity_litres, Decimal("20.5"))
        self.assertEqual(pm.available_qty, Decimal("30"))

    def test_stock_column_in_update_fields_is_ignored(self):
        stale = Product.objects.get(pk=self.sku.pk)
        stock_up(self.sku, 4, self.user)

        stale.available_quantity = Decimal("0")
        stale.selling_price = Decimal("1600.00")
        stale.save(update_fields=["available_quantity", "selling_price"])

        sku = Product.objects.get(pk=self.sku.pk)
        self.assertEqual(sku.selling_price, Decimal("1600.00"))
        self.assertEqual(sku.available_quantity, Decimal("4"))


class CatalogAPITestCase(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.client.force_authenticate(make_user())
        self.paint = make_paint()

    def test_create_and_filter_master_products(self):
        response = self.client.post("/api/v1/catalog/master-products/", {
            "name": "Thinner",
            "product_type": "RM",
            "purchase_cost": "80.00",
            "capacity_litres": "5",
        }, format="json")
        self.assertEqual(response.status_code, 201)
        self.assertEqual(Decimal(response.data["available_qty"]), 0)

        response = self.client.get("/api/v1/catalog/master-products/", {"product_type": "RM"})
        self.assertEqual([row["name"] for row in response.data], ["Thinner"])

    def test_duplicate_name_is_validation_error(self):
        response = self.client.post("/api/v1/catalog/master-products/", {
            "name": "enamel white",
            "product_type": "FG",
        }, format="json")
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.data["error"]["code"], "validation_error")

    def test_sku_list_hides_placeholders_and_stock_is_read_only(self):
        make_sku(self.paint, sku_code="EW-4")
        Product.objects.create(
            master_product=self.paint, product_name="ghost", sku_code="MAT-X", is_placeholder=True
        )

        response = self.client.post("/api/v1/catalog/skus/", {
            "master_product": self.paint.id,
            "product_name": "Enamel White 10L",
            "sku_code": "EW-10",
            "available_quantity": "999",
        }, format="json")
        self.assertEqual(response.status_code, 201)
        self.assertEqual(Product.objects.get(sku_code="EW-10").available_quantity, Decimal("0"))

        response = self.client.get("/api/v1/catalog/skus/")
        codes = [row["sku_code"] for row in response.data["results"]]
        self.assertEqual(sorted(codes), ["EW-10", "EW-4"])

    def test_unauthenticated_rejected(self):
        response = APIClient().get("/api/v1/catalog/skus/")
        self.assertEqual(response.status_code, 403)
