from decimal import Decimal

from django.core.cache import cache
from django.test import TestCase
from rest_framework.test import APIClient

from apps.audit.models import AuditLog
from apps.catalog.models import RawMaterialDetail
from apps.inventory.models import InventoryTransaction, ReferenceType, TransactionType
from apps.inventory.services import InventorySelector
from apps.orders.models import Order, OrderDetail
from apps.orders.services import OrderService
from apps.production.models import ProductionBatch
from apps.production.services import ProductionService
from apps.utils.exceptions import InsufficientStockError, InvalidMovementError, NotFoundError
from tests.factories import make_bucket, make_material, make_paint, make_sku, make_user, stock_up


class ProductionFixtureMixin:
    def setUp(self):
        cache.clear()
        self.user = make_user()
        self.paint = make_paint(density="1.2000")
        self.sku = make_sku(self.paint, packaging=make_bucket())
        self.resin = make_material("Alkyd Resin")
        self.solvent = make_material("Mineral Turpentine")
        stock_up(self.resin, 100, self.user)
        stock_up(self.solvent, 50, self.user)

    def available(self, material):
        return RawMaterialDetail.objects.get(pk=material.pk).available_qty

    def accepted_order(self, quantity):
        order = OrderService.create_order("Acme Builders", [{"product": self.sku.id, "quantity": quantity}], self.user)
        return OrderService.accept_order(order, self.user)

    def schedule(self, units=5, order=None, batch_type=ProductionBatch.MAKE_TO_ORDER, resin=80, solvent=30):
        product = {"product": self.sku.id, "planned_units": units}
        if order is not None:
            product["order_detail"] = order.details.get().id
        return ProductionService.schedule_batch(
            self.paint,
            planned_quantity=120,
            materials=[
                {"material": self.resin, "required_quantity": resin},
                {"material": self.solvent.id, "required_quantity": solvent},
            ],
            products=[product],
            created_by=self.user,
            batch_type=batch_type,
        )


class ScheduleBatchTestCase(ProductionFixtureMixin, TestCase):

    def test_schedule_moves_linked_order(self):
        order = self.accepted_order(5)
        self.assertEqual(order.details.get().reservation_state, OrderDetail.UNRESERVED)

        batch = self.schedule(order=order)

        order.refresh_from_db()
        self.assertEqual(order.status, Order.SCHEDULED)
        self.assertIn(f"Scheduled in batch {batch.batch_no}", order.admin_remarks)
        self.assertEqual(batch.status, ProductionBatch.SCHEDULED)
        self.assertEqual(batch.density_kg_per_l, Decimal("1.2000"))
        self.assertEqual(
            list(batch.materials.order_by("sequence").values_list("material_id", flat=True)),
            [self.resin.id, self.solvent.id],
        )
        self.assertEqual(batch.products.get().package_capacity_kg, Decimal("24.0000"))
        self.assertTrue(AuditLog.objects.filter(action="batch_scheduled", reference_id=batch.batch_no).exists())

    def test_schedule_refuses_pending_order(self):
        order = OrderService.create_order("Acme Builders", [{"product": self.sku.id, "quantity": 5}], self.user)
        with self.assertRaises(InvalidMovementError) as ctx:
            self.schedule(order=order)
        self.assertEqual(ctx.exception.code, "invalid_transition")
        self.assertFalse(ProductionBatch.objects.exists())

    def test_schedule_validates_inputs(self):
        with self.assertRaises(InvalidMovementError):
            ProductionService.schedule_batch(self.resin, 10, [], [{"product": self.sku.id}], self.user)
        with self.assertRaises(InvalidMovementError):
            ProductionService.schedule_batch(self.paint, 10, [], [], self.user)
        with self.assertRaises(InvalidMovementError):
            ProductionService.schedule_batch(self.paint, 0, [], [{"product": self.sku.id}], self.user)

    def test_finished_good_is_not_a_batch_material(self):
        with self.assertRaises(InvalidMovementError):
            ProductionService.schedule_batch(
                self.paint, 10,
                [{"material": self.paint, "required_quantity": 5}],
                [{"product": self.sku.id}],
                self.user,
            )
        with self.assertRaises(NotFoundError):
            ProductionService.schedule_batch(
                self.paint, 10,
                [{"material": 987654, "required_quantity": 5}],
                [{"product": self.sku.id}],
                self.user,
            )
        self.assertFalse(ProductionBatch.objects.exists())

    def test_start_only_from_scheduled(self):
        batch = self.schedule()
        batch = ProductionService.start_batch(batch, self.user)
        self.assertEqual(batch.status, ProductionBatch.IN_PROGRESS)
        self.assertIsNotNone(batch.started_at)
        with self.assertRaises(InvalidMovementError):
            ProductionService.start_batch(batch, self.user)


class CompleteBatchTestCase(ProductionFixtureMixin, TestCase):

    def test_complete_consumes_produces_and_readies_orders(self):
        order = self.accepted_order(5)
        batch = ProductionService.start_batch(self.schedule(order=order), self.user)

        batch = ProductionService.complete_batch(batch, 120, "1.0000", self.user)

        self.assertEqual(batch.status, ProductionBatch.COMPLETED)
        self.assertEqual(batch.actual_weight_kg, Decimal("120"))
        self.assertEqual(self.available(self.resin), Decimal("20"))
        self.assertEqual(self.available(self.solvent), Decimal("20"))
        self.assertEqual(
            list(batch.materials.order_by("sequence").values_list("consumed_quantity", flat=True)),
            [Decimal("80"), Decimal("30")],
        )

        self.sku.refresh_from_db()
        self.assertEqual(self.sku.available_quantity, Decimal("5"))
        self.assertEqual(self.sku.available_weight_kg, Decimal("120"))
        self.assertEqual(self.sku.reserved_quantity, Decimal("5"))

        output = batch.products.get()
        self.assertEqual(output.produced_units, Decimal("5"))
        self.assertTrue(output.inventory_updated)

        rows = InventoryTransaction.objects.filter(reference_type=ReferenceType.BATCH, reference_id=batch.id)
        self.assertEqual(rows.filter(transaction_type=TransactionType.PRODUCTION_CONSUMPTION).count(), 2)
        self.assertEqual(rows.filter(transaction_type=TransactionType.PRODUCTION_OUTPUT).count(), 1)

        order.refresh_from_db()
        self.assertEqual(order.status, Order.READY_FOR_DISPATCH)
        self.assertEqual(order.details.get().reservation_state, OrderDetail.RESERVED)

    def test_material_shortage_names_every_material_and_writes_nothing(self):
        batch = ProductionService.start_batch(self.schedule(resin=150, solvent=60), self.user)

        with self.assertRaises(InsufficientStockError) as ctx:
            ProductionService.complete_batch(batch, 120, "1.2", self.user)

        message = ctx.exception.message
        self.assertIn(batch.batch_no, message)
        self.assertIn("Alkyd Resin (requested 150", message)
        self.assertIn("Mineral Turpentine (requested 60", message)
        self.assertIn("short by 10", message)
        self.assertEqual(self.available(self.resin), Decimal("100"))
        self.assertEqual(self.available(self.solvent), Decimal("50"))
        self.assertFalse(
            InventoryTransaction.objects.filter(transaction_type=TransactionType.PRODUCTION_CONSUMPTION).exists()
        )
        batch.refresh_from_db()
        self.assertEqual(batch.status, ProductionBatch.IN_PROGRESS)

    def test_actual_consumption_overrides_plan(self):
        batch = ProductionService.start_batch(self.schedule(), self.user)
        ProductionService.complete_batch(
            batch, 120, "1.2", self.user,
            consumed={str(self.resin.id): "85", self.solvent.id: 0},
        )
        self.assertEqual(self.available(self.resin), Decimal("15"))
        self.assertEqual(self.available(self.solvent), Decimal("50"))

    def test_make_to_stock_units_follow_actual_weight(self):
        batch = ProductionService.start_batch(
            self.schedule(units=0, batch_type=ProductionBatch.MAKE_TO_STOCK), self.user
        )

        # 110 L at 1.2 kg/L = 132 kg = 5.5 buckets of 24 kg, rounded half up
        ProductionService.complete_batch(batch, 110, "1.2", self.user)

        self.assertEqual(batch.products.get().produced_units, Decimal("6"))
        self.sku.refresh_from_db()
        self.assertEqual(self.sku.available_quantity, Decimal("6"))

    def test_order_still_short_stays_scheduled(self):
        order = self.accepted_order(8)
        batch = ProductionService.start_batch(self.schedule(units=8, order=order), self.user)

        with self.assertLogs("apps.production.services", level="WARNING"):
            ProductionService.complete_batch(batch, 100, "1.2", self.user, produced={self.sku.id: 5})

        order.refresh_from_db()
        self.assertEqual(order.status, Order.SCHEDULED)
        self.assertEqual(order.details.get().reservation_state, OrderDetail.UNRESERVED)
        self.sku.refresh_from_db()
        self.assertEqual(self.sku.available_quantity, Decimal("5"))

    def test_only_in_progress_batches_complete(self):
        batch = self.schedule()
        with self.assertRaises(InvalidMovementError):
            ProductionService.complete_batch(batch, 120, "1.2", self.user)


class CancelBatchTestCase(ProductionFixtureMixin, TestCase):

    def test_cancel_reverts_scheduled_orders(self):
        order = self.accepted_order(5)
        batch = self.schedule(order=order)

        batch = ProductionService.cancel_batch(batch, "Mixer down", self.user)

        self.assertEqual(batch.status, ProductionBatch.CANCELLED)
        self.assertEqual(batch.cancellation_reason, "Mixer down")
        order.refresh_from_db()
        self.assertEqual(order.status, Order.ACCEPTED)
        self.assertIn(f"Batch {batch.batch_no} cancelled", order.admin_remarks)
        self.assertEqual(self.available(self.resin), Decimal("100"))

    def test_order_with_another_active_batch_stays_scheduled(self):
        order = self.accepted_order(5)
        first = self.schedule(order=order)
        self.schedule(order=order)

        ProductionService.cancel_batch(first, "Duplicate", self.user)

        order.refresh_from_db()
        self.assertEqual(order.status, Order.SCHEDULED)

    def test_cancel_rules(self):
        batch = self.schedule()
        with self.assertRaises(InvalidMovementError):
            ProductionService.cancel_batch(batch, "", self.user)

        batch = ProductionService.start_batch(batch, self.user)
        ProductionService.complete_batch(batch, 120, "1.2", self.user)
        with self.assertRaises(InvalidMovementError):
            ProductionService.cancel_batch(batch, "Too late", self.user)


class BatchDistributionTestCase(ProductionFixtureMixin, TestCase):

    def test_planned_output_is_short_until_produced(self):
        batch = self.schedule()

        result = InventorySelector.batch_distribution(batch)
        self.assertFalse(result["valid"])
        line = result["lines"][0]
        self.assertEqual(line["required_weight_kg"], Decimal("120"))
        self.assertEqual(line["available_weight_kg"], Decimal("0"))
        self.assertEqual(line["status"], "INSUFFICIENT")
        self.assertIsNone(line["order_id"])

        batch = ProductionService.start_batch(batch, self.user)
        batch = ProductionService.complete_batch(batch, 120, "1.0000", self.user)

        result = InventorySelector.batch_distribution(batch)
        self.assertTrue(result["valid"])
        self.assertEqual(result["total_valid"], 1)
        self.assertEqual(result["lines"][0]["status"], "FULFILLED")

    def test_output_reserved_by_its_order_leaves_no_free_weight(self):
        order = self.accepted_order(5)
        batch = ProductionService.start_batch(self.schedule(order=order), self.user)
        batch = ProductionService.complete_batch(batch, 120, "1.0000", self.user)

        result = InventorySelector.batch_distribution(batch)
        line = result["lines"][0]
        self.assertEqual(line["order_id"], order.id)
        self.assertEqual(line["available_weight_kg"], Decimal("0"))
        self.assertEqual(line["status"], "INSUFFICIENT")
        self.assertEqual(result["total_invalid"], 1)


class ProductionAPITestCase(ProductionFixtureMixin, TestCase):

    def setUp(self):
        super().setUp()
        self.client = APIClient()
        self.client.force_authenticate(self.user)

    def test_batch_flow(self):
        response = self.client.post("/api/v1/production/batches/", {
            "master_product": self.paint.id,
            "planned_quantity": "120",
            "materials": [{"material": self.resin.id, "required_quantity": "80"}],
            "products": [{"product": self.sku.id, "planned_units": "5"}],
        }, format="json")
        self.assertEqual(response.status_code, 201)
        batch_id = response.data["id"]

        response = self.client.post(f"/api/v1/production/batches/{batch_id}/start/", {}, format="json")
        self.assertEqual(response.data["status"], ProductionBatch.IN_PROGRESS)

        response = self.client.post(f"/api/v1/production/batches/{batch_id}/complete/", {
            "actual_quantity": "120",
            "actual_density_kg_per_l": "1.2",
            "consumed": [{"material": self.resin.id, "quantity": "78"}],
        }, format="json")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["status"], ProductionBatch.COMPLETED)
        self.assertEqual(self.available(self.resin), Decimal("22"))

    def test_shortage_is_409(self):
        batch = ProductionService.start_batch(self.schedule(resin=500), self.user)
        response = self.client.post(f"/api/v1/production/batches/{batch.id}/complete/", {
            "actual_quantity": "120",
            "actual_density_kg_per_l": "1.2",
        }, format="json")
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.data["error"]["code"], "insufficient_stock")

    def test_distribution_endpoint(self):
        batch = self.schedule()
        response = self.client.get(f"/api/v1/production/batches/{batch.id}/distribution/")
        self.assertEqual(response.status_code, 200)
        self.assertFalse(response.data["valid"])
        self.assertEqual(response.data["lines"][0]["sku_code"], self.sku.sku_code)

        response = self.client.get("/api/v1/production/batches/987654/distribution/")
        self.assertEqual(response.status_code, 404)
