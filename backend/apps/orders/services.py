import logging
from collections import defaultdict
from decimal import Decimal

from django.db import transaction

from apps.audit.services import AuditService
from apps.catalog.models import Product
from apps.inventory.reservations import ReservationService
from apps.inventory.services import positive_quantity
from apps.utils.exceptions import InvalidMovementError, NotFoundError

from .models import Order, OrderDetail

logger = logging.getLogger(__name__)


ALLOWED_TRANSITIONS = {
    Order.PENDING: {Order.ACCEPTED, Order.CANCELLED},
    Order.ACCEPTED: {Order.SCHEDULED, Order.READY_FOR_DISPATCH, Order.CANCELLED},
    Order.SCHEDULED: {Order.READY_FOR_DISPATCH, Order.ACCEPTED, Order.CANCELLED},
    Order.READY_FOR_DISPATCH: {Order.DISPATCHED, Order.CANCELLED},
    Order.DISPATCHED: {Order.DELIVERED, Order.RETURNED, Order.CANCELLED},
    Order.RETURNED: {Order.READY_FOR_DISPATCH, Order.CANCELLED},
    Order.DELIVERED: set(),
    Order.CANCELLED: set(),
}

SPLIT_BLOCKED = {Order.CANCELLED, Order.DISPATCHED, Order.DELIVERED}


class OrderService:
    """
    Order lifecycle. Every state change locks the order row first, then
    its lines in product order, and drives stock only through
    ReservationService.
    """

    @staticmethod
    def _lock(order):
        return Order.objects.select_for_update().get(pk=order.pk)

    @staticmethod
    def _lines(order):
        # Product order keeps concurrent orders from locking SKUs in opposite order
        return list(order.details.select_related("product").order_by("product_id", "id"))

    @staticmethod
    def _transition(order, new_status):
        allowed = ALLOWED_TRANSITIONS.get(order.status, set())
        if new_status not in allowed:
            raise InvalidMovementError(
                f"Order {order.order_number} cannot move from '{order.status}' to '{new_status}'",
                code="invalid_transition",
            )
        logger.info(f"Order {order.order_number}: {order.status} -> {new_status}")
        order.status = new_status
        order.save(update_fields=["status", "updated_at"])

    @staticmethod
    def _add_remark(order, remark):
        if not remark:
            return
        order.admin_remarks = f"{order.admin_remarks}\n{remark}".strip()
        order.save(update_fields=["admin_remarks", "updated_at"])

    @staticmethod
    def _get_sku(product):
        if isinstance(product, Product):
            product_id = product.pk
        else:
            product_id = product
        try:
            return Product.objects.get(pk=product_id, is_placeholder=False)
        except (Product.DoesNotExist, ValueError, TypeError):
            raise NotFoundError(f"SKU {product_id} not found")

    @staticmethod
    def _create_lines(order, lines):
        if not lines:
            raise InvalidMovementError("An order needs at least one line")
        for line in lines:
            sku = OrderService._get_sku(line.get("product"))
            if not sku.is_active:
                raise InvalidMovementError(f"SKU {sku.sku_code} is inactive")
            qty = positive_quantity(line.get("quantity"))
            weight = line.get("required_weight_kg")
            if weight is None:
                weight = (qty * sku.package_capacity_kg).quantize(Decimal("0.0001"))
            unit_price = line.get("unit_price")
            OrderDetail.objects.create(
                order=order,
                product=sku,
                quantity=qty,
                unit_price=sku.selling_price if unit_price is None else unit_price,
                discount=line.get("discount") or 0,
                required_weight_kg=weight,
            )

    @staticmethod
    @transaction.atomic
    def create_order(customer_name, lines, created_by, remarks=None):
        if not customer_name:
            raise InvalidMovementError("Customer name is required")
        order = Order.objects.create(
            customer_name=customer_name,
            remarks=remarks or "",
            created_by=created_by,
        )
        OrderService._create_lines(order, lines)
        AuditService.order_event("order_created", order, created_by, lines=len(lines))
        return order

    @staticmethod
    @transaction.atomic
    def accept_order(order, performed_by):
        """
        Pending -> Accepted. Lines whose free stock covers them are reserved
        now; the rest wait for production.
        """
        order = OrderService._lock(order)
        OrderService._transition(order, Order.ACCEPTED)

        reserved, waiting = [], []
        for detail in OrderService._lines(order):
            if ReservationService.can_reserve(detail):
                ReservationService.reserve(detail, performed_by, notes=f"Accepted {order.order_number}")
                reserved.append(detail.id)
            else:
                waiting.append(detail.id)

        if waiting:
            logger.info(f"Order {order.order_number}: {len(waiting)} line(s) await production")
        AuditService.order_event(
            "order_accepted", order, performed_by, reserved_lines=reserved, waiting_lines=waiting
        )
        return order

    @staticmethod
    @transaction.atomic
    def mark_scheduled(order, performed_by, batch_no=None):
        order = OrderService._lock(order)
        OrderService._transition(order, Order.SCHEDULED)
        if batch_no:
            OrderService._add_remark(order, f"Scheduled in batch {batch_no}")
        return order

    @staticmethod
    @transaction.atomic
    def unschedule(order, performed_by, batch_no=None):
        """Scheduled for Production -> Accepted when its batch is cancelled."""
        order = OrderService._lock(order)
        OrderService._transition(order, Order.ACCEPTED)
        if batch_no:
            OrderService._add_remark(order, f"Batch {batch_no} cancelled")
        return order

    @staticmethod
    def can_be_ready(order):
        """True when every still-unreserved line could be reserved right now."""
        return all(
            ReservationService.can_reserve(detail)
            for detail in order.details.filter(reservation_state=OrderDetail.UNRESERVED)
        )

    @staticmethod
    @transaction.atomic
    def mark_ready_for_dispatch(order, performed_by):
        order = OrderService._lock(order)
        if order.status not in (Order.ACCEPTED, Order.SCHEDULED):
            raise InvalidMovementError(
                f"Order {order.order_number} is '{order.status}', only accepted or scheduled orders can be readied",
                code="invalid_transition",
            )
        for detail in OrderService._lines(order):
            if detail.reservation_state == OrderDetail.UNRESERVED:
                ReservationService.reserve(detail, performed_by, notes=f"Ready {order.order_number}")
        OrderService._transition(order, Order.READY_FOR_DISPATCH)
        AuditService.order_event("order_ready", order, performed_by)
        return order

    @staticmethod
    def _close_lines(order, performed_by, reason):
        for detail in OrderService._lines(order):
            state = detail.reservation_state
            if state in (OrderDetail.RESERVED, OrderDetail.UNRESERVED):
                ReservationService.release(detail, performed_by, reason=reason)
            elif state == OrderDetail.CONSUMED:
                ReservationService.restock_returned_line(
                    detail, performed_by,
                    dispatch=order.dispatch,
                    close_line=True,
                    notes=f"{reason} after dispatch",
                )

    @staticmethod
    @transaction.atomic
    def cancel_order(order, performed_by, remarks=None):
        """
        Releases every reservation the order holds. A dispatched order's
        goods come back with a Return movement first.
        """
        order = OrderService._lock(order)
        previous = order.status
        OrderService._transition(order, Order.CANCELLED)
        OrderService._close_lines(order, performed_by, reason=f"Cancelled {order.order_number}")
        OrderService._add_remark(order, remarks)
        AuditService.order_event("order_cancelled", order, performed_by, previous_status=previous)
        return order

    @staticmethod
    def _split_groups(order, groups):
        """Validates split groups against the original's quantities per product."""
        original = defaultdict(Decimal)
        prices = {}
        for detail in order.details.all():
            original[detail.product_id] += detail.quantity
            prices.setdefault(detail.product_id, (detail.unit_price, detail.discount))

        requested = defaultdict(Decimal)
        parsed = []
        for lines in groups:
            group = []
            for line in lines:
                sku = OrderService._get_sku(line.get("product"))
                if sku.id not in original:
                    raise InvalidMovementError(
                        f"SKU {sku.sku_code} is not on order {order.order_number}"
                    )
                qty = positive_quantity(line.get("quantity"))
                requested[sku.id] += qty
                unit_price, discount = prices[sku.id]
                group.append({
                    "product": sku,
                    "quantity": qty,
                    "unit_price": unit_price,
                    "discount": discount,
                })
            parsed.append(group)

        for product_id, qty in requested.items():
            if qty > original[product_id]:
                raise InvalidMovementError(
                    f"Split quantity {qty} for product {product_id} exceeds the original {original[product_id]}"
                )
        return parsed

    @staticmethod
    @transaction.atomic
    def split_order(order, first_lines, second_lines, performed_by):
        order = OrderService._lock(order)
        if order.status in SPLIT_BLOCKED:
            raise InvalidMovementError(
                f"Order {order.order_number} is '{order.status}' and cannot be split",
                code="invalid_transition",
            )
        if not first_lines:
            raise InvalidMovementError("The first split order needs at least one line")

        groups = OrderService._split_groups(order, [first_lines, second_lines or []])

        OrderService._transition(order, Order.CANCELLED)
        OrderService._close_lines(order, performed_by, reason=f"Split {order.order_number}")
        OrderService._add_remark(order, "Cancelled by split order.")

        new_orders = []
        for lines in groups:
            if not lines:
                continue
            child = Order.objects.create(
                customer_name=order.customer_name,
                remarks=f"Split from order {order.order_number}",
                parent_order=order,
                created_by=performed_by,
            )
            OrderService._create_lines(child, lines)
            new_orders.append(child)

        AuditService.order_split(order, new_orders, performed_by)
        logger.info(
            f"Order {order.order_number} split into {', '.join(o.order_number for o in new_orders)}"
        )
        return new_orders

    @staticmethod
    @transaction.atomic
    def return_order(order, performed_by, remarks=None):
        """Dispatched -> Returned. Consumed lines are restocked and become unreserved."""
        order = OrderService._lock(order)
        OrderService._transition(order, Order.RETURNED)
        for detail in OrderService._lines(order):
            if detail.reservation_state == OrderDetail.CONSUMED:
                ReservationService.restock_returned_line(
                    detail, performed_by, dispatch=order.dispatch,
                    notes=f"Returned {order.order_number}",
                )
        OrderService._add_remark(order, remarks)
        AuditService.order_event("order_returned", order, performed_by)
        return order

    @staticmethod
    @transaction.atomic
    def requeue_order(order, performed_by):
        """Returned -> Ready for Dispatch, reserving each line again."""
        order = OrderService._lock(order)
        OrderService._transition(order, Order.READY_FOR_DISPATCH)
        for detail in OrderService._lines(order):
            if detail.reservation_state == OrderDetail.UNRESERVED:
                ReservationService.reserve(detail, performed_by, notes=f"Re-queued {order.order_number}")
        order.dispatch = None
        order.save(update_fields=["dispatch", "updated_at"])
        AuditService.order_event("order_requeued", order, performed_by)
        return order

    @staticmethod
    @transaction.atomic
    def mark_dispatched(order, dispatch):
        order = OrderService._lock(order)
        OrderService._transition(order, Order.DISPATCHED)
        order.dispatch = dispatch
        order.save(update_fields=["dispatch", "updated_at"])
        return order

    @staticmethod
    @transaction.atomic
    def mark_delivered(order):
        order = OrderService._lock(order)
        OrderService._transition(order, Order.DELIVERED)
        return order
