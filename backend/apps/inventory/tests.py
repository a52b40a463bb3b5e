from decimal import Decimal
from io import StringIO
from unittest.mock import patch

from django.core.cache import cache
from django.core.exceptions import ImproperlyConfigured
from django.core.management import call_command
from django.db import DatabaseError
from django.db.models import F
from django.test import TestCase, override_settings
from rest_framework.test import APIClient

from apps.audit.models import AuditLog
from apps.catalog.models import MasterProduct, Product, RawMaterialDetail
from apps.core.views import RECONCILE_STATUS_KEY
from apps.inventory.ledger import TransactionRecorder
from apps.inventory.models import (
    InventoryTransaction,
    MaterialDiscard,
    ReferenceType,
    StockReservation,
    TransactionType,
)
from apps.inventory.reservations import ReservationService
from apps.inventory.resolver import ProductKind, ProductRef, resolve
from apps.inventory.services import (
    DiscardService,
    InventorySelector,
    InwardService,
    StockMovementService,
)
from apps.inventory.stock import (
    AVAILABLE,
    OptimisticStockStore,
    RowLockStockStore,
    StockContentionError,
    get_stock_store,
)
from apps.inventory.tasks import reconcile_stock_ledger, report_low_stock
from apps.orders.models import OrderDetail
from apps.orders.services import OrderService
from apps.utils.exceptions import (
    InsufficientStockError,
    InvalidMovementError,
    LedgerWriteError,
    NotFoundError,
)
from tests.factories import (
    make_bucket,
    make_material,
    make_paint,
    make_sku,
    make_user,
    stock_up,
)


class InventoryFixtureMixin:
    def setUp(self):
        cache.clear()
        self.user = make_user()
        self.paint = make_paint(density="1.2000")
        self.bucket = make_bucket(litres="20")
        self.sku = make_sku(self.paint, packaging=self.bucket)
        self.resin = make_material("Alkyd Resin")

    def sku_level(self):
        self.sku.refresh_from_db()
        return self.sku

    def resin_available(self):
        return RawMaterialDetail.objects.get(pk=self.resin.pk).available_qty


class MovementTestCase(InventoryFixtureMixin, TestCase):

    def test_inward_then_dispatch_keeps_balance_chain(self):
        stock_up(self.sku, 10, self.user)
        StockMovementService.record_dispatch(self.sku, 4, 77, self.user)

        sku = self.sku_level()
        self.assertEqual(sku.available_quantity, Decimal("6"))
        # 24 kg per bucket
        self.assertEqual(sku.available_weight_kg, Decimal("144"))

        rows = list(TransactionRecorder.history(ProductRef.sku(sku.id)).order_by("id"))
        self.assertEqual(
            [(r.transaction_type, r.balance_before, r.balance_after) for r in rows],
            [(TransactionType.INWARD, 0, 10), (TransactionType.DISPATCH, 10, 6)],
        )
        self.assertEqual(rows[1].quantity, Decimal("-4"))
        self.assertEqual(rows[1].reference_type, ReferenceType.ORDER)
        self.assertEqual(rows[1].reference_id, 77)

    def test_dispatch_beyond_available_writes_nothing(self):
        stock_up(self.sku, 6, self.user)

        with self.assertRaises(InsufficientStockError) as ctx:
            StockMovementService.record_dispatch(self.sku, 7, 77, self.user)

        self.assertEqual(ctx.exception.shortfall, Decimal("1"))
        self.assertIn("short by 1", ctx.exception.message)
        self.assertEqual(self.sku_level().available_quantity, Decimal("6"))
        self.assertEqual(InventoryTransaction.objects.count(), 1)

    def test_material_consumption_is_strict(self):
        stock_up(self.resin, 5, self.user)
        with self.assertRaises(InsufficientStockError):
            StockMovementService.record_production_consumption(self.resin, 6, batch_id=1, created_by=self.user)
        self.assertEqual(self.resin_available(), Decimal("5"))

    def test_material_ledger_row_keyed_by_master(self):
        row = stock_up(self.resin, 5, self.user, unit_price=Decimal("12.50"))
        self.assertIsNone(row.product_id)
        self.assertEqual(row.master_product_id, self.resin.id)
        self.assertEqual(row.total_value, Decimal("62.50"))

    def test_adjustment_rules(self):
        with self.assertRaises(InvalidMovementError):
            StockMovementService.record_adjustment(self.sku, 0, self.user)
        with self.assertRaises(InsufficientStockError):
            StockMovementService.record_adjustment(self.sku, -1, self.user)

        row = StockMovementService.record_adjustment(self.sku, "2.5", self.user, notes="cycle count")
        self.assertEqual(row.transaction_type, TransactionType.ADJUSTMENT)
        self.assertEqual(row.reference_type, ReferenceType.MANUAL_ADJUSTMENT)
        self.assertEqual(self.sku_level().available_quantity, Decimal("2.5"))

    def test_movement_needs_actor_and_positive_quantity(self):
        with self.assertRaises(InvalidMovementError):
            stock_up(self.sku, 5, None)
        with self.assertRaises(InvalidMovementError):
            StockMovementService.record_inward(self.sku, -5, self.user)

    def test_unknown_types_rejected(self):
        with self.assertRaises(InvalidMovementError):
            TransactionRecorder.validate("Teleport")
        with self.assertRaises(InvalidMovementError):
            TransactionRecorder.validate(TransactionType.INWARD, "Invoice")

    def test_reserved_column_does_not_exist_for_materials(self):
        with self.assertRaises(InvalidMovementError):
            get_stock_store().adjust(ProductRef.material(self.resin), "reserved", 1)


class ResolverTestCase(InventoryFixtureMixin, TestCase):

    def test_material_id_wins_over_colliding_sku_id(self):
        glue = MasterProduct.objects.create(id=500, name="Glue", product_type=MasterProduct.RAW_MATERIAL)
        RawMaterialDetail.objects.create(master_product=glue)
        Product.objects.create(id=500, master_product=self.paint, product_name="Glue Tint", sku_code="GT-1")

        self.assertEqual(resolve(500), ProductRef(ProductKind.RM, 500))

        stock_up(500, 3, self.user)
        stock_up(ProductRef.sku(500), 4, self.user)

        self.assertEqual(RawMaterialDetail.objects.get(pk=500).available_qty, Decimal("3"))
        self.assertEqual(Product.objects.get(pk=500).available_quantity, Decimal("4"))
        self.assertEqual(InventoryTransaction.objects.filter(master_product_id=500).count(), 1)
        self.assertEqual(InventoryTransaction.objects.filter(product_id=500).count(), 1)

    def test_unknown_and_placeholder_ids_do_not_resolve(self):
        placeholder = Product.objects.create(
            id=900, master_product=self.paint, product_name="ghost", sku_code="MAT-900", is_placeholder=True
        )
        self.assertEqual(resolve(placeholder.id).kind, ProductKind.NOT_FOUND)
        self.assertEqual(resolve("abc").kind, ProductKind.NOT_FOUND)
        with self.assertRaises(NotFoundError):
            stock_up(999999, 1, self.user)

    def test_finished_good_master_is_not_a_material(self):
        with self.assertRaises(InvalidMovementError) as ctx:
            ProductRef.material(self.paint)
        self.assertEqual(ctx.exception.status_code, 400)
        with self.assertRaises(InvalidMovementError):
            ProductRef.material(self.paint.id)
        with self.assertRaises(NotFoundError):
            ProductRef.material(987654)


class LedgerTestCase(InventoryFixtureMixin, TestCase):

    def test_failed_insert_is_retried_with_same_values(self):
        real_insert = TransactionRecorder._insert
        calls = []

        def flaky_insert(values):
            calls.append(dict(values))
            if len(calls) == 1:
                raise DatabaseError("deadlock detected")
            return real_insert(values)

        with patch.object(TransactionRecorder, "_insert", side_effect=flaky_insert):
            with self.assertLogs("apps.inventory.ledger", level="ERROR") as cm:
                row = stock_up(self.sku, 5, self.user)

        self.assertEqual(len(calls), 2)
        self.assertEqual(calls[0], calls[1])
        self.assertEqual(len(cm.records), 2)
        self.assertEqual((row.balance_before, row.balance_after), (0, 5))
        self.assertEqual(self.sku_level().available_quantity, Decimal("5"))

    def test_exhausted_retries_roll_back_stock(self):
        with patch.object(TransactionRecorder, "_insert", side_effect=DatabaseError("disk full")):
            with self.assertLogs("apps.inventory.ledger", level="ERROR") as cm:
                with self.assertRaises(LedgerWriteError):
                    stock_up(self.sku, 5, self.user)

        self.assertEqual(len(cm.records), 3)
        self.assertEqual(self.sku_level().available_quantity, Decimal("0"))
        self.assertFalse(InventoryTransaction.objects.exists())

    def test_rows_are_immutable(self):
        row = stock_up(self.sku, 5, self.user)

        row.notes = "edited"
        with self.assertRaises(RuntimeError):
            row.save()
        with self.assertRaises(RuntimeError):
            row.delete()
        with self.assertRaises(RuntimeError):
            InventoryTransaction.objects.filter(pk=row.pk).update(notes="edited")
        with self.assertRaises(RuntimeError):
            InventoryTransaction.objects.all().delete()

    def test_out_of_balance_row_rejected(self):
        row = InventoryTransaction(
            product=self.sku,
            transaction_type=TransactionType.INWARD,
            quantity=Decimal("5"),
            balance_before=Decimal("0"),
            balance_after=Decimal("4"),
            created_by=self.user,
        )
        with self.assertRaises(InvalidMovementError):
            row.save()


class StockStoreTestCase(InventoryFixtureMixin, TestCase):

    def test_default_and_configured_store(self):
        self.assertIsInstance(get_stock_store(), RowLockStockStore)
        with override_settings(INVENTORY_STOCK_STORE="optimistic"):
            self.assertIsInstance(get_stock_store(), OptimisticStockStore)
            stock_up(self.sku, 3, self.user)
        with override_settings(INVENTORY_STOCK_STORE="redis"):
            with self.assertRaises(ImproperlyConfigured):
                get_stock_store()
        self.assertEqual(self.sku_level().available_quantity, Decimal("3"))

    def test_optimistic_store_retries_after_concurrent_write(self):
        store = OptimisticStockStore(retries=3)
        bumped = []

        def racing_writer(level, changes):
            if not bumped:
                bumped.append(level.available)
                Product.objects.filter(pk=self.sku.pk).update(available_quantity=F("available_quantity") + 1)

        changes = store.apply(ProductRef.sku(self.sku.pk), {AVAILABLE: Decimal("5")}, guard=racing_writer)

        self.assertEqual((changes[AVAILABLE].before, changes[AVAILABLE].after), (Decimal("1"), Decimal("6")))
        self.assertEqual(self.sku_level().available_quantity, Decimal("6"))

    def test_optimistic_store_gives_up(self):
        store = OptimisticStockStore(retries=2)

        def always_racing(level, changes):
            Product.objects.filter(pk=self.sku.pk).update(available_quantity=F("available_quantity") + 1)

        with self.assertLogs("apps.inventory.stock", level="ERROR"):
            with self.assertRaises(StockContentionError):
                store.apply(ProductRef.sku(self.sku.pk), {AVAILABLE: Decimal("5")}, guard=always_racing)

    def test_non_strict_decrement_clamps_at_zero(self):
        stock_up(self.sku, 2, self.user)
        with self.assertLogs("apps.inventory.stock", level="WARNING"):
            change = get_stock_store().adjust(ProductRef.sku(self.sku.pk), "reserved", Decimal("-3"))
        self.assertEqual((change.before, change.after), (0, 0))


class DocumentTestCase(InventoryFixtureMixin, TestCase):

    def test_inward_updates_purchase_cost_and_reversal(self):
        inward = InwardService.create_inward(
            self.resin, 50, self.user, supplier_name="Asian Chem", bill_no="B-19", unit_price="95.50"
        )
        self.assertEqual(inward.total_cost, Decimal("4775.00"))
        self.assertEqual(RawMaterialDetail.objects.get(pk=self.resin.pk).purchase_cost, Decimal("95.50"))
        self.assertEqual(self.resin_available(), Decimal("50"))

        InwardService.reverse_inward(inward, self.user)
        inward.refresh_from_db()
        self.assertTrue(inward.is_reversed)
        self.assertEqual(self.resin_available(), Decimal("0"))

        reversal = InventoryTransaction.objects.filter(master_product=self.resin).order_by("-id").first()
        self.assertEqual(reversal.transaction_type, TransactionType.ADJUSTMENT)
        self.assertEqual((reversal.reference_type, reversal.reference_id), (ReferenceType.INWARD, inward.id))
        self.assertTrue(AuditLog.objects.filter(action="inward_reversed").exists())

        with self.assertRaises(InvalidMovementError):
            InwardService.reverse_inward(inward, self.user)

    def test_reversal_refused_once_stock_is_used(self):
        inward = InwardService.create_inward(self.resin, 10, self.user)
        StockMovementService.record_production_consumption(self.resin, 4, batch_id=3, created_by=self.user)

        with self.assertRaises(InsufficientStockError):
            InwardService.reverse_inward(inward, self.user)
        inward.refresh_from_db()
        self.assertFalse(inward.is_reversed)

    def test_finished_good_inward_needs_its_sku(self):
        with self.assertRaises(InvalidMovementError):
            InwardService.create_inward(self.paint, 5, self.user)
        inward = InwardService.create_inward(self.paint, 5, self.user, product=self.sku)
        self.assertEqual(inward.product, self.sku)
        self.assertEqual(self.sku_level().available_quantity, Decimal("5"))

    def test_discard_over_available_is_refused_before_any_write(self):
        stock_up(self.resin, 5, self.user)

        with self.assertRaises(InsufficientStockError) as ctx:
            DiscardService.create_discard(self.resin.id, 8, "Expired", self.user)

        self.assertIn("requested to discard: 8", ctx.exception.message)
        self.assertIn("Alkyd Resin", ctx.exception.message)
        self.assertFalse(MaterialDiscard.objects.exists())
        self.assertEqual(self.resin_available(), Decimal("5"))

    def test_material_discard_links_placeholder_sku(self):
        stock_up(self.resin, 5, self.user)

        discard = DiscardService.create_discard(self.resin.id, 2, "Spilled", self.user, notes="drum leak")

        self.assertEqual(self.resin_available(), Decimal("3"))
        self.assertTrue(discard.product.is_placeholder)
        self.assertEqual(discard.product.sku_code, f"MAT-{self.resin.id}")
        row = InventoryTransaction.objects.filter(transaction_type=TransactionType.DISCARD).get()
        self.assertEqual(row.master_product_id, self.resin.id)
        self.assertEqual((row.reference_type, row.reference_id), (ReferenceType.DISCARD, discard.id))
        self.assertEqual(row.notes, "Spilled: drum leak")
        self.assertTrue(AuditLog.objects.filter(action="discard_recorded").exists())

    def test_placeholder_failure_does_not_block_discard(self):
        stock_up(self.resin, 5, self.user)

        with patch.object(DiscardService, "_placeholder_sku", side_effect=DatabaseError("locked")):
            with self.assertLogs("apps.inventory.services", level="ERROR"):
                discard = DiscardService.create_discard(self.resin.id, 1, "Damaged", self.user)

        self.assertIsNone(MaterialDiscard.objects.get(pk=discard.pk).product_id)
        self.assertEqual(self.resin_available(), Decimal("4"))

    def test_sku_discard(self):
        stock_up(self.sku, 3, self.user)
        discard = DiscardService.create_discard(ProductRef.sku(self.sku.id), 1, "Dented", self.user)
        self.assertEqual(discard.product_kind, "FG")
        self.assertEqual(self.sku_level().available_quantity, Decimal("2"))


class ReservationTestCase(InventoryFixtureMixin, TestCase):

    def setUp(self):
        super().setUp()
        stock_up(self.sku, 10, self.user)

    def order_line(self, quantity):
        order = OrderService.create_order("Acme Builders", [{"product": self.sku.id, "quantity": quantity}], self.user)
        return order.details.get()

    def test_reserve_holds_without_touching_available(self):
        detail = self.order_line(6)
        result = ReservationService.reserve(detail, self.user)

        sku = self.sku_level()
        self.assertEqual((sku.available_quantity, sku.reserved_quantity), (Decimal("10"), Decimal("6")))
        self.assertEqual(sku.reserved_weight_kg, Decimal("144"))
        self.assertFalse(result.oversold)
        detail.refresh_from_db()
        self.assertEqual(detail.reservation_state, OrderDetail.RESERVED)
        self.assertTrue(detail.reserved_fg)
        self.assertEqual(ReservationService.line_balance(detail), Decimal("6"))

        with self.assertRaises(InvalidMovementError):
            ReservationService.reserve(detail, self.user)

    def test_strict_policy_refuses_over_reservation(self):
        ReservationService.reserve(self.order_line(6), self.user)
        second = self.order_line(5)

        with self.assertRaises(InsufficientStockError):
            ReservationService.reserve(second, self.user)

        second.refresh_from_db()
        self.assertEqual(second.reservation_state, OrderDetail.UNRESERVED)
        self.assertEqual(self.sku_level().reserved_quantity, Decimal("6"))
        self.assertFalse(StockReservation.objects.filter(order_detail=second).exists())

    @override_settings(INVENTORY_RESERVATION_POLICY="oversell")
    def test_oversell_policy_allows_and_flags(self):
        ReservationService.reserve(self.order_line(6), self.user)

        with self.assertLogs("apps.inventory.reservations", level="WARNING"):
            result = ReservationService.reserve(self.order_line(5), self.user)

        self.assertTrue(result.oversold)
        self.assertTrue(result.entry.oversold)
        self.assertEqual(self.sku_level().reserved_quantity, Decimal("11"))
        self.assertEqual(list(InventorySelector.oversold_skus()), [self.sku])

    @override_settings(INVENTORY_OVERSELL_TOLERANCE=Decimal("1"))
    def test_tolerance_extends_strict_ceiling(self):
        ReservationService.reserve(self.order_line(6), self.user)
        result = ReservationService.reserve(self.order_line(5), self.user)
        self.assertTrue(result.oversold)

    def test_release_is_symmetric_and_clamped(self):
        detail = self.order_line(6)
        ReservationService.reserve(detail, self.user)
        ReservationService.release(detail, self.user, reason="customer changed mind")

        self.assertEqual(self.sku_level().reserved_quantity, Decimal("0"))
        self.assertEqual(ReservationService.line_balance(detail), Decimal("0"))
        detail.refresh_from_db()
        self.assertEqual(detail.reservation_state, OrderDetail.RELEASED)
        self.assertFalse(detail.reserved_fg)

        other = self.order_line(4)
        ReservationService.reserve(other, self.user)
        Product.objects.filter(pk=self.sku.pk).update(reserved_quantity=Decimal("1"))
        with self.assertLogs("apps.inventory.reservations", level="WARNING"):
            ReservationService.release(other, self.user)
        self.assertEqual(self.sku_level().reserved_quantity, Decimal("0"))

    def test_consume_then_restock(self):
        detail = self.order_line(6)
        ReservationService.reserve(detail, self.user)
        ReservationService.consume(detail, self.user)

        sku = self.sku_level()
        self.assertEqual((sku.available_quantity, sku.reserved_quantity), (Decimal("4"), Decimal("0")))
        self.assertEqual((sku.available_weight_kg, sku.reserved_weight_kg), (Decimal("96"), Decimal("0")))
        row = InventoryTransaction.objects.filter(product=self.sku).order_by("-id").first()
        self.assertEqual(row.transaction_type, TransactionType.DISPATCH)
        self.assertEqual(row.quantity, Decimal("-6"))
        self.assertEqual(row.reference_id, detail.order_id)

        ReservationService.restock_returned_line(detail, self.user)
        detail.refresh_from_db()
        self.assertEqual(detail.reservation_state, OrderDetail.UNRESERVED)
        self.assertEqual(self.sku_level().available_quantity, Decimal("10"))

    def test_consume_requires_reservation(self):
        with self.assertRaises(InvalidMovementError):
            ReservationService.consume(self.order_line(2), self.user)


class BackfillAndReconcileTestCase(InventoryFixtureMixin, TestCase):

    def test_backfill_opens_balance_once(self):
        Product.objects.filter(pk=self.sku.pk).update(available_quantity=Decimal("7"))

        out = StringIO()
        call_command("backfill_initial_stock", user=self.user.username, stdout=out)
        self.assertIn("Opened 1", out.getvalue())

        row = InventoryTransaction.objects.get(product=self.sku)
        self.assertEqual(row.transaction_type, TransactionType.INITIAL_STOCK)
        self.assertEqual((row.balance_before, row.balance_after), (0, 7))
        self.assertEqual(self.sku_level().available_quantity, Decimal("7"))

        self.assertEqual(StockMovementService.backfill_initial_stock(self.user), 0)
        with self.assertRaises(InvalidMovementError):
            StockMovementService.record_initial_stock(self.sku, self.user)

    def test_reconcile_reports_drift_and_broken_chain(self):
        stock_up(self.sku, 10, self.user)
        stock_up(self.resin, 4, self.user)
        InventoryTransaction.objects.create(
            master_product=self.resin,
            transaction_type=TransactionType.ADJUSTMENT,
            quantity=Decimal("1"),
            balance_before=Decimal("2"),
            balance_after=Decimal("3"),
            created_by=self.user,
        )
        Product.objects.filter(pk=self.sku.pk).update(available_quantity=Decimal("12"))

        with self.assertLogs("apps.inventory.tasks", level="WARNING"):
            summary = reconcile_stock_ledger()

        self.assertEqual(summary["mismatched"], [f"FG#{self.sku.id}", f"RM#{self.resin.id}"])
        self.assertEqual(summary["broken_chains"], [f"RM#{self.resin.id}"])
        self.assertEqual(summary["oversold"], [])
        self.assertEqual(cache.get(RECONCILE_STATUS_KEY)["mismatched"], 2)

    def test_low_stock_report(self):
        make_material("Cobalt Drier", min_stock_level=Decimal("5"))
        rows = InventorySelector.low_stock()
        self.assertEqual([r["name"] for r in rows], ["Cobalt Drier"])
        with self.assertLogs("apps.inventory.tasks", level="WARNING"):
            self.assertEqual(report_low_stock(), 1)


class AvailabilityTestCase(InventoryFixtureMixin, TestCase):

    def setUp(self):
        super().setUp()
        # 24 kg bucket and 4.8 kg tin of the same paint
        self.small = make_sku(self.paint, sku_code="EW-4", packaging=make_bucket(name="Tin 4L", litres="4"))

    def test_availability_nets_out_reserved_weight(self):
        stock_up(self.sku, 10, self.user)
        order = OrderService.create_order("Acme Builders", [{"product": self.sku.id, "quantity": 3}], self.user)
        OrderService.accept_order(order, self.user)

        data = InventorySelector.product_availability(self.sku.id)

        self.assertEqual(data["package_capacity_kg"], Decimal("24"))
        self.assertEqual(data["direct"]["available_weight_kg"], Decimal("240"))
        self.assertEqual(data["direct"]["available_packages"], 10)
        self.assertEqual(data["direct"]["percentage_filled"], Decimal("0"))
        self.assertEqual(data["reserved"]["reserved_weight_kg"], Decimal("72"))
        self.assertEqual(data["net"]["net_quantity"], Decimal("7"))
        self.assertEqual(data["net"]["net_weight_kg"], Decimal("168"))

    def test_direct_when_sku_covers_the_weight(self):
        stock_up(self.sku, 10, self.user)

        result = InventorySelector.fulfillment_capability(self.sku.id, "100")

        self.assertTrue(result["can_fulfill"])
        self.assertEqual(result["availability_type"], "DIRECT")
        self.assertEqual(result["surplus_kg"], Decimal("140"))
        self.assertEqual(
            [(p["type"], p["package_count"], p["total_weight_kg"]) for p in result["package_split"]],
            [("FULL", 4, Decimal("96")), ("PARTIAL", 1, Decimal("4"))],
        )

    def test_indirect_suggests_siblings_that_cover_the_shortfall(self):
        stock_up(self.sku, 2, self.user)
        stock_up(self.small, 20, self.user)

        result = InventorySelector.fulfillment_capability(self.sku.id, "100")

        self.assertFalse(result["can_fulfill"])
        self.assertEqual(result["availability_type"], "INDIRECT")
        self.assertEqual(result["shortfall_kg"], Decimal("52"))
        self.assertEqual(
            [(p["type"], p["package_count"]) for p in result["package_split"]],
            [("FULL", 2)],
        )
        self.assertEqual([s["sku_code"] for s in result["suggestions"]], ["EW-4"])

        too_much = InventorySelector.fulfillment_capability(self.sku.id, "200")
        self.assertEqual(too_much["suggestions"], [])

    def test_not_available_and_bad_input(self):
        result = InventorySelector.fulfillment_capability(self.sku.id, "50")
        self.assertEqual(result["availability_type"], "NOT_AVAILABLE")
        self.assertEqual(result["shortfall_kg"], Decimal("50"))
        self.assertEqual(result["package_split"], [])

        with self.assertRaises(InvalidMovementError):
            InventorySelector.fulfillment_capability(self.sku.id, 0)
        with self.assertRaises(NotFoundError):
            InventorySelector.fulfillment_capability(987654, 10)

    def test_alternative_capacities_lists_stocked_packs_smallest_first(self):
        stock_up(self.small, 20, self.user)
        rows = InventorySelector.alternative_capacities(self.paint.id)
        self.assertEqual([(r["sku_code"], r["available_packages"]) for r in rows], [("EW-4", 20)])

        stock_up(self.sku, 1, self.user)
        rows = InventorySelector.alternative_capacities(self.paint.id)
        self.assertEqual([r["sku_code"] for r in rows], ["EW-4", "EW-20"])


class InventoryAPITestCase(InventoryFixtureMixin, TestCase):

    def setUp(self):
        super().setUp()
        self.client = APIClient()
        self.client.force_authenticate(self.user)

    def test_stock_level_for_material(self):
        stock_up(self.resin, 9, self.user)
        response = self.client.get(f"/api/v1/inventory/stock/{self.resin.id}/")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["kind"], "RM")
        self.assertEqual(Decimal(response.data["available"]), Decimal("9"))

        response = self.client.get("/api/v1/inventory/stock/987654/")
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.data["error"]["code"], "not_found")

    def test_ledger_filters(self):
        stock_up(self.resin, 9, self.user)
        stock_up(self.sku, 2, self.user)
        response = self.client.get("/api/v1/inventory/ledger/", {"master_product": self.resin.id})
        self.assertEqual(response.data["count"], 1)
        self.assertEqual(response.data["results"][0]["transaction_type"], "Inward")

    def test_discard_shortage_is_409_with_details(self):
        stock_up(self.resin, 2, self.user)
        response = self.client.post("/api/v1/inventory/discards/", {
            "product_id": self.resin.id,
            "quantity": "3",
            "reason": "Expired",
        }, format="json")
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.data["error"]["code"], "insufficient_stock")
        self.assertEqual(response.data["error"]["details"]["shortfall"], Decimal("1"))

    def test_adjustment_replay_writes_one_ledger_row(self):
        payload = {"product_id": self.resin.id, "quantity": "4", "notes": "found a drum"}

        first = self.client.post("/api/v1/inventory/adjustments/", payload, format="json", HTTP_IDEMPOTENCY_KEY="adj-1")
        second = self.client.post("/api/v1/inventory/adjustments/", payload, format="json", HTTP_IDEMPOTENCY_KEY="adj-1")

        self.assertEqual(first.status_code, 201)
        self.assertEqual(second.status_code, 201)
        self.assertEqual(second["X-Idempotent-Replayed"], "true")
        self.assertEqual(second.data["id"], first.data["id"])
        self.assertEqual(InventoryTransaction.objects.filter(master_product=self.resin).count(), 1)
        self.assertEqual(self.resin_available(), Decimal("4"))

    def test_inward_and_reverse_endpoints(self):
        response = self.client.post("/api/v1/inventory/inward/", {
            "master_product": self.resin.id,
            "quantity": "20",
            "unit_price": "90.00",
            "supplier_name": "Asian Chem",
            "bill_no": "B-20",
        }, format="json")
        self.assertEqual(response.status_code, 201)
        inward_id = response.data["id"]

        response = self.client.post(f"/api/v1/inventory/inward/{inward_id}/reverse/", {}, format="json")
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.data["is_reversed"])

        response = self.client.post(f"/api/v1/inventory/inward/{inward_id}/reverse/", {}, format="json")
        self.assertEqual(response.status_code, 400)

    def test_finished_good_inward_without_sku_is_400(self):
        response = self.client.post("/api/v1/inventory/inward/", {
            "master_product": self.paint.id,
            "quantity": "5",
        }, format="json")
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.data["error"]["type"], "InvalidMovementError")

    def test_availability_endpoint(self):
        stock_up(self.sku, 10, self.user)

        response = self.client.get(f"/api/v1/inventory/availability/{self.sku.id}/")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["direct"]["available_packages"], 10)
        self.assertNotIn("fulfillment", response.data)

        response = self.client.get(f"/api/v1/inventory/availability/{self.sku.id}/", {"required_weight_kg": "300"})
        self.assertEqual(response.data["fulfillment"]["availability_type"], "INDIRECT")

        response = self.client.get(f"/api/v1/inventory/availability/{self.sku.id}/", {"required_weight_kg": "-1"})
        self.assertEqual(response.status_code, 400)
        response = self.client.get(f"/api/v1/inventory/availability/{self.resin.id}/")
        self.assertEqual(response.status_code, 404)

    def test_alternatives_endpoint_only_for_finished_goods(self):
        stock_up(self.sku, 1, self.user)
        response = self.client.get(f"/api/v1/inventory/alternatives/{self.paint.id}/")
        self.assertEqual(response.status_code, 200)
        self.assertEqual([r["sku_code"] for r in response.data["results"]], ["EW-20"])

        response = self.client.get(f"/api/v1/inventory/alternatives/{self.resin.id}/")
        self.assertEqual(response.status_code, 400)

    def test_reservation_journal_by_order(self):
        stock_up(self.sku, 10, self.user)
        order = OrderService.create_order("Acme Builders", [{"product": self.sku.id, "quantity": 4}], self.user)
        OrderService.accept_order(order, self.user)
        OrderService.cancel_order(order, self.user)

        response = self.client.get("/api/v1/inventory/reservations/", {"order": order.id})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(
            [(row["action"], Decimal(row["quantity"])) for row in response.data["results"]],
            [("reserve", Decimal("4")), ("release", Decimal("-4"))],
        )
        self.assertEqual(response.data["results"][1]["reserved_after"], "0.0000")
