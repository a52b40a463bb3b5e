from decimal import Decimal
from unittest.mock import patch

from django.core.cache import cache
from django.test import TestCase
from rest_framework.test import APIClient

from apps.audit.models import AuditLog
from apps.dispatch.models import Dispatch
from apps.dispatch.services import DispatchService
from apps.inventory.models import InventoryTransaction, ReferenceType, TransactionType
from apps.inventory.reservations import ReservationService
from apps.orders.models import Order, OrderDetail
from apps.orders.services import OrderService
from apps.utils.exceptions import InvalidMovementError, LedgerWriteError, NotFoundError
from tests.factories import make_bucket, make_paint, make_sku, make_user, stock_up


class DispatchFixtureMixin:
    def setUp(self):
        cache.clear()
        self.user = make_user()
        paint = make_paint()
        self.sku = make_sku(paint, packaging=make_bucket())
        self.small = make_sku(paint, sku_code="EW-4")
        stock_up(self.sku, 10, self.user)
        stock_up(self.small, 10, self.user)

    def ready_order(self, *lines):
        order = OrderService.create_order(
            "Acme Builders",
            [{"product": sku.id, "quantity": qty} for sku, qty in lines],
            self.user,
        )
        OrderService.accept_order(order, self.user)
        return OrderService.mark_ready_for_dispatch(order, self.user)


class CreateDispatchTestCase(DispatchFixtureMixin, TestCase):

    def test_dispatch_consumes_every_line(self):
        first = self.ready_order((self.sku, 4), (self.small, 2))
        second = self.ready_order((self.sku, 3))

        dispatch = DispatchService.create_dispatch([second.id, first.id], "MH12 AB 1234", "Ravi", self.user)

        self.assertEqual(dispatch.status, Dispatch.IN_TRANSIT)
        self.assertTrue(dispatch.dispatch_no.startswith("DSP-"))
        for order in (first, second):
            order.refresh_from_db()
            self.assertEqual(order.status, Order.DISPATCHED)
            self.assertEqual(order.dispatch, dispatch)
            self.assertEqual(
                set(order.details.values_list("reservation_state", flat=True)), {OrderDetail.CONSUMED}
            )

        self.sku.refresh_from_db()
        self.assertEqual((self.sku.available_quantity, self.sku.reserved_quantity), (Decimal("3"), Decimal("0")))
        self.small.refresh_from_db()
        self.assertEqual(self.small.available_quantity, Decimal("8"))

        rows = InventoryTransaction.objects.filter(transaction_type=TransactionType.DISPATCH)
        self.assertEqual(rows.count(), 3)
        self.assertEqual(
            set(rows.values_list("reference_type", "reference_id")), {(ReferenceType.DISPATCH, dispatch.id)}
        )
        self.assertTrue(
            AuditLog.objects.filter(action="dispatch_created", reference_id=dispatch.dispatch_no).exists()
        )

    def test_released_lines_are_skipped(self):
        order = self.ready_order((self.sku, 4), (self.small, 2))
        small_line = order.details.get(product=self.small)
        ReservationService.release(small_line, self.user, reason="dropped from order")

        DispatchService.create_dispatch([order.id], "MH12 AB 1234", "Ravi", self.user)

        small_line.refresh_from_db()
        self.assertEqual(small_line.reservation_state, OrderDetail.RELEASED)
        self.small.refresh_from_db()
        self.assertEqual(self.small.available_quantity, Decimal("10"))

    def test_orders_must_be_ready(self):
        ready = self.ready_order((self.sku, 4))
        pending = OrderService.create_order("Acme Builders", [{"product": self.sku.id, "quantity": 1}], self.user)

        with self.assertRaises(InvalidMovementError) as ctx:
            DispatchService.create_dispatch([ready.id, pending.id], "MH12 AB 1234", "Ravi", self.user)

        self.assertIn(pending.order_number, ctx.exception.message)
        self.assertFalse(Dispatch.objects.exists())
        ready.refresh_from_db()
        self.assertEqual(ready.status, Order.READY_FOR_DISPATCH)

    def test_unknown_order_and_missing_driver(self):
        with self.assertRaises(NotFoundError):
            DispatchService.create_dispatch([424242], "MH12 AB 1234", "Ravi", self.user)
        order = self.ready_order((self.sku, 1))
        with self.assertRaises(InvalidMovementError):
            DispatchService.create_dispatch([order.id], "MH12 AB 1234", "", self.user)

    def test_failure_rolls_back_whole_trip(self):
        first = self.ready_order((self.sku, 4))
        second = self.ready_order((self.small, 2))
        real_consume = ReservationService.consume

        def consume_then_fail(detail, performed_by, dispatch=None):
            if detail.product_id == self.small.id:
                raise LedgerWriteError("ledger unavailable")
            return real_consume(detail, performed_by, dispatch=dispatch)

        with patch.object(ReservationService, "consume", side_effect=consume_then_fail):
            with self.assertRaises(LedgerWriteError):
                DispatchService.create_dispatch([first.id, second.id], "MH12 AB 1234", "Ravi", self.user)

        self.assertFalse(Dispatch.objects.exists())
        self.assertFalse(InventoryTransaction.objects.filter(transaction_type=TransactionType.DISPATCH).exists())
        self.sku.refresh_from_db()
        self.assertEqual((self.sku.available_quantity, self.sku.reserved_quantity), (Decimal("10"), Decimal("4")))
        first.refresh_from_db()
        self.assertEqual(first.status, Order.READY_FOR_DISPATCH)
        self.assertEqual(first.details.get().reservation_state, OrderDetail.RESERVED)


class DeliverDispatchTestCase(DispatchFixtureMixin, TestCase):

    def test_mark_delivered(self):
        order = self.ready_order((self.sku, 2))
        dispatch = DispatchService.create_dispatch([order.id], "MH12 AB 1234", "Ravi", self.user)

        dispatch = DispatchService.mark_delivered(dispatch, self.user)

        self.assertEqual(dispatch.status, Dispatch.DELIVERED)
        self.assertIsNotNone(dispatch.delivered_at)
        order.refresh_from_db()
        self.assertEqual(order.status, Order.DELIVERED)

        with self.assertRaises(InvalidMovementError):
            DispatchService.mark_delivered(dispatch, self.user)

    def test_returned_order_is_not_delivered(self):
        kept = self.ready_order((self.sku, 2))
        returned = self.ready_order((self.small, 1))
        dispatch = DispatchService.create_dispatch([kept.id, returned.id], "MH12 AB 1234", "Ravi", self.user)
        OrderService.return_order(returned, self.user)

        DispatchService.mark_delivered(dispatch, self.user)

        kept.refresh_from_db()
        returned.refresh_from_db()
        self.assertEqual(kept.status, Order.DELIVERED)
        self.assertEqual(returned.status, Order.RETURNED)


class DispatchAPITestCase(DispatchFixtureMixin, TestCase):

    def setUp(self):
        super().setUp()
        self.client = APIClient()
        self.client.force_authenticate(self.user)

    def test_create_and_deliver(self):
        order = self.ready_order((self.sku, 2))

        response = self.client.post("/api/v1/dispatch/", {
            "order_ids": [order.id],
            "vehicle_no": "MH12 AB 1234",
            "driver_name": "Ravi",
        }, format="json", HTTP_IDEMPOTENCY_KEY="trip-1")
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.data["orders"], [order.order_number])

        replay = self.client.post("/api/v1/dispatch/", {
            "order_ids": [order.id],
            "vehicle_no": "MH12 AB 1234",
            "driver_name": "Ravi",
        }, format="json", HTTP_IDEMPOTENCY_KEY="trip-1")
        self.assertEqual(replay["X-Idempotent-Replayed"], "true")
        self.assertEqual(Dispatch.objects.count(), 1)

        response = self.client.post(f"/api/v1/dispatch/{response.data['id']}/deliver/", {}, format="json")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["status"], Dispatch.DELIVERED)

    def test_not_ready_is_400(self):
        order = OrderService.create_order("Acme Builders", [{"product": self.sku.id, "quantity": 1}], self.user)
        response = self.client.post("/api/v1/dispatch/", {
            "order_ids": [order.id],
            "vehicle_no": "MH12 AB 1234",
            "driver_name": "Ravi",
        }, format="json")
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.data["error"]["code"], "invalid_transition")
