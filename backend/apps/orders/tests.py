from decimal import Decimal

from django.core.cache import cache
from django.test import TestCase
from rest_framework.test import APIClient

from apps.audit.models import AuditLog
from apps.dispatch.services import DispatchService
from apps.inventory.models import InventoryTransaction, StockReservation, TransactionType
from apps.orders.models import Order, OrderDetail
from apps.orders.services import OrderService
from apps.utils.exceptions import InsufficientStockError, InvalidMovementError
from tests.factories import make_bucket, make_paint, make_sku, make_user, stock_up


class OrderFixtureMixin:
    def setUp(self):
        cache.clear()
        self.user = make_user()
        self.paint = make_paint()
        self.sku = make_sku(self.paint, packaging=make_bucket())
        self.small = make_sku(self.paint, sku_code="EW-4", price="320.00")
        stock_up(self.sku, 10, self.user)

    def reload(self, obj):
        obj.refresh_from_db()
        return obj

    def order_for(self, quantity=6, extra_lines=()):
        lines = [{"product": self.sku.id, "quantity": quantity}, *extra_lines]
        return OrderService.create_order("Acme Builders", lines, self.user)

    def ready_order(self, quantity=6):
        order = self.order_for(quantity)
        OrderService.accept_order(order, self.user)
        return OrderService.mark_ready_for_dispatch(order, self.user)

    def ship(self, *orders):
        return DispatchService.create_dispatch([o.id for o in orders], "MH12 AB 1234", "Ravi", self.user)


class OrderLifecycleTestCase(OrderFixtureMixin, TestCase):

    def test_create_order_prices_and_weights_lines(self):
        order = self.order_for(6)
        line = order.details.get()
        self.assertEqual(order.status, Order.PENDING)
        self.assertEqual(line.unit_price, Decimal("1500.00"))
        self.assertEqual(line.required_weight_kg, Decimal("144"))
        self.assertEqual(order.total_amount, Decimal("9000.00"))
        self.assertTrue(AuditLog.objects.filter(action="order_created", reference_id=order.order_number).exists())

    def test_order_needs_lines_and_real_skus(self):
        with self.assertRaises(InvalidMovementError):
            OrderService.create_order("Acme Builders", [], self.user)
        with self.assertRaises(InvalidMovementError):
            OrderService.create_order("Acme Builders", [{"product": self.sku.id, "quantity": 0}], self.user)
        self.assertFalse(Order.objects.exists())

    def test_accept_reserves_covered_lines_only(self):
        order = self.order_for(6, extra_lines=[{"product": self.small.id, "quantity": 3}])

        OrderService.accept_order(order, self.user)

        order = self.reload(order)
        self.assertEqual(order.status, Order.ACCEPTED)
        states = dict(order.details.values_list("product_id", "reservation_state"))
        self.assertEqual(states, {self.sku.id: OrderDetail.RESERVED, self.small.id: OrderDetail.UNRESERVED})
        self.assertEqual(self.reload(self.sku).reserved_quantity, Decimal("6"))
        self.assertEqual(self.reload(self.sku).available_quantity, Decimal("10"))
        self.assertFalse(OrderService.can_be_ready(order))

        with self.assertRaises(InsufficientStockError):
            OrderService.mark_ready_for_dispatch(order, self.user)
        self.assertEqual(self.reload(order).status, Order.ACCEPTED)

        stock_up(self.small, 3, self.user)
        OrderService.mark_ready_for_dispatch(order, self.user)
        self.assertEqual(self.reload(order).status, Order.READY_FOR_DISPATCH)
        self.assertEqual(self.reload(self.small).reserved_quantity, Decimal("3"))

    def test_illegal_transitions_rejected(self):
        order = self.order_for(2)

        with self.assertRaises(InvalidMovementError) as ctx:
            OrderService.return_order(order, self.user)
        self.assertEqual(ctx.exception.code, "invalid_transition")

        with self.assertRaises(InvalidMovementError):
            OrderService.mark_ready_for_dispatch(order, self.user)
        with self.assertRaises(InvalidMovementError):
            OrderService.requeue_order(order, self.user)
        self.assertEqual(self.reload(order).status, Order.PENDING)

    def test_cancel_releases_every_reservation(self):
        order = self.order_for(6)
        OrderService.accept_order(order, self.user)

        OrderService.cancel_order(order, self.user, remarks="Customer withdrew")

        order = self.reload(order)
        self.assertEqual(order.status, Order.CANCELLED)
        self.assertIn("Customer withdrew", order.admin_remarks)
        self.assertEqual(self.reload(self.sku).reserved_quantity, Decimal("0"))
        self.assertEqual(self.reload(self.sku).reserved_weight_kg, Decimal("0"))
        self.assertEqual(order.details.get().reservation_state, OrderDetail.RELEASED)
        self.assertEqual(
            list(StockReservation.objects.order_by("id").values_list("action", flat=True)),
            [StockReservation.ACTION_RESERVE, StockReservation.ACTION_RELEASE],
        )

        with self.assertRaises(InvalidMovementError):
            OrderService.cancel_order(order, self.user)

    def test_cancel_after_dispatch_restocks(self):
        order = self.ready_order(6)
        self.ship(order)
        self.assertEqual(self.reload(self.sku).available_quantity, Decimal("4"))

        OrderService.cancel_order(order, self.user)

        sku = self.reload(self.sku)
        self.assertEqual(sku.available_quantity, Decimal("10"))
        self.assertEqual(sku.reserved_quantity, Decimal("0"))
        last = InventoryTransaction.objects.filter(product=self.sku).order_by("-id").first()
        self.assertEqual(last.transaction_type, TransactionType.RETURN)
        self.assertEqual((last.balance_before, last.balance_after), (4, 10))
        self.assertEqual(self.reload(order).details.get().reservation_state, OrderDetail.RELEASED)

    def test_return_then_requeue(self):
        order = self.ready_order(6)
        dispatch = self.ship(order)

        OrderService.return_order(order, self.user, remarks="Site closed")
        order = self.reload(order)
        self.assertEqual(order.status, Order.RETURNED)
        self.assertEqual(order.dispatch, dispatch)
        self.assertEqual(order.details.get().reservation_state, OrderDetail.UNRESERVED)
        self.assertEqual(self.reload(self.sku).available_quantity, Decimal("10"))

        OrderService.requeue_order(order, self.user)
        order = self.reload(order)
        self.assertEqual(order.status, Order.READY_FOR_DISPATCH)
        self.assertIsNone(order.dispatch)
        self.assertEqual(order.details.get().reservation_state, OrderDetail.RESERVED)
        self.assertEqual(self.reload(self.sku).reserved_quantity, Decimal("6"))

    def test_delivered_is_final(self):
        order = self.ready_order(2)
        DispatchService.mark_delivered(self.ship(order), self.user)

        self.assertEqual(self.reload(order).status, Order.DELIVERED)
        with self.assertRaises(InvalidMovementError):
            OrderService.cancel_order(order, self.user)
        with self.assertRaises(InvalidMovementError):
            OrderService.return_order(order, self.user)


class SplitOrderTestCase(OrderFixtureMixin, TestCase):

    def test_split_cancels_original_and_creates_pending_children(self):
        order = self.order_for(6)
        OrderService.accept_order(order, self.user)

        children = OrderService.split_order(
            order,
            [{"product": self.sku.id, "quantity": 4}],
            [{"product": self.sku.id, "quantity": 2}],
            self.user,
        )

        order = self.reload(order)
        self.assertEqual(order.status, Order.CANCELLED)
        self.assertIn("Cancelled by split order.", order.admin_remarks)
        self.assertEqual(self.reload(self.sku).reserved_quantity, Decimal("0"))

        self.assertEqual(len(children), 2)
        for child, qty in zip(children, (Decimal("4"), Decimal("2"))):
            self.assertEqual(child.status, Order.PENDING)
            self.assertEqual(child.parent_order, order)
            self.assertEqual(child.remarks, f"Split from order {order.order_number}")
            line = child.details.get()
            self.assertEqual(line.quantity, qty)
            self.assertEqual(line.unit_price, Decimal("1500.00"))
        self.assertTrue(AuditLog.objects.filter(action="order_split", reference_id=order.order_number).exists())

    def test_split_cannot_exceed_original_quantity(self):
        order = self.order_for(6)

        with self.assertRaises(InvalidMovementError):
            OrderService.split_order(
                order,
                [{"product": self.sku.id, "quantity": 5}],
                [{"product": self.sku.id, "quantity": 2}],
                self.user,
            )

        self.assertEqual(self.reload(order).status, Order.PENDING)
        self.assertEqual(Order.objects.count(), 1)

    def test_split_rejects_foreign_sku(self):
        order = self.order_for(6)
        with self.assertRaises(InvalidMovementError):
            OrderService.split_order(order, [{"product": self.small.id, "quantity": 1}], [], self.user)

    def test_dispatched_order_cannot_be_split(self):
        order = self.ready_order(6)
        self.ship(order)
        with self.assertRaises(InvalidMovementError) as ctx:
            OrderService.split_order(order, [{"product": self.sku.id, "quantity": 1}], [], self.user)
        self.assertEqual(ctx.exception.code, "invalid_transition")


class OrderAPITestCase(OrderFixtureMixin, TestCase):

    def setUp(self):
        super().setUp()
        self.client = APIClient()
        self.client.force_authenticate(self.user)

    def test_create_and_list(self):
        response = self.client.post("/api/v1/orders/", {
            "customer_name": "Acme Builders",
            "lines": [{"product": self.sku.id, "quantity": "2"}],
        }, format="json")
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.data["status"], Order.PENDING)
        self.assertEqual(len(response.data["details"]), 1)

        response = self.client.get("/api/v1/orders/", {"status": Order.PENDING})
        self.assertEqual(response.data["count"], 1)

    def test_accept_replay_reserves_once(self):
        order = self.order_for(6)
        url = f"/api/v1/orders/{order.id}/accept/"

        first = self.client.post(url, {}, format="json", HTTP_IDEMPOTENCY_KEY="accept-1")
        second = self.client.post(url, {}, format="json", HTTP_IDEMPOTENCY_KEY="accept-1")

        self.assertEqual(first.status_code, 200)
        self.assertEqual(second.status_code, 200)
        self.assertEqual(second["X-Idempotent-Replayed"], "true")
        self.assertEqual(StockReservation.objects.count(), 1)
        self.assertEqual(self.reload(self.sku).reserved_quantity, Decimal("6"))

    def test_illegal_action_is_400(self):
        order = self.order_for(2)
        response = self.client.post(f"/api/v1/orders/{order.id}/requeue/", {}, format="json")
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.data["error"]["code"], "invalid_transition")

    def test_ready_without_stock_is_409(self):
        order = OrderService.create_order("Acme Builders", [{"product": self.small.id, "quantity": 3}], self.user)
        OrderService.accept_order(order, self.user)
        response = self.client.post(f"/api/v1/orders/{order.id}/ready/", {}, format="json")
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.data["error"]["details"]["shortfall"], Decimal("3"))

    def test_split_endpoint(self):
        order = self.order_for(6)
        response = self.client.post(f"/api/v1/orders/{order.id}/split/", {
            "first_lines": [{"product": self.sku.id, "quantity": "3"}],
            "second_lines": [{"product": self.sku.id, "quantity": "3"}],
        }, format="json")
        self.assertEqual(response.status_code, 201)
        self.assertEqual(len(response.data["orders"]), 2)
        self.assertEqual(response.data["orders"][0]["parent_order_number"], order.order_number)
