"""
Reservation Coordinator.

Holds order-line stock in the SKU's reserved column without touching
available, and turns a hold into a real deduction at dispatch.
"""
import logging
from dataclasses import dataclass

from django.conf import settings
from django.db import transaction
from django.db.models import Sum

from apps.orders.models import OrderDetail
from apps.utils.exceptions import InsufficientStockError, InvalidMovementError
from .models import StockReservation
from .resolver import ProductRef
from .services import StockMovementService
from .stock import RESERVED, RESERVED_WEIGHT, ZERO, get_stock_store, to_decimal

logger = logging.getLogger(__name__)

STRICT = "strict"
OVERSELL = "oversell"


@dataclass(frozen=True)
class ReservationResult:
    detail: OrderDetail
    entry: StockReservation
    oversold: bool = False


class ReservationService:

    @staticmethod
    def policy():
        return getattr(settings, "INVENTORY_RESERVATION_POLICY", STRICT)

    @staticmethod
    def tolerance():
        return to_decimal(getattr(settings, "INVENTORY_OVERSELL_TOLERANCE", 0))

    @staticmethod
    def _lock_line(detail):
        return (
            OrderDetail.objects.select_for_update(of=("self",))
            .select_related("order", "product")
            .get(pk=detail.pk)
        )

    @staticmethod
    def _journal(detail, action, quantity, change, performed_by, oversold=False, notes=""):
        return StockReservation.objects.create(
            order_detail=detail,
            product_id=detail.product_id,
            action=action,
            quantity=quantity,
            reserved_before=change.before,
            reserved_after=change.after,
            oversold=oversold,
            notes=notes[:255],
            created_by=performed_by,
        )

    @staticmethod
    def _set_state(detail, state):
        detail.reservation_state = state
        detail.reserved_fg = state == OrderDetail.RESERVED
        detail.save(update_fields=["reservation_state", "reserved_fg"])

    @staticmethod
    @transaction.atomic
    def reserve(detail, performed_by, notes=""):
        """
        Unreserved -> Reserved. Under the strict policy the hold may not push
        reserved past available + INVENTORY_OVERSELL_TOLERANCE.
        """
        detail = ReservationService._lock_line(detail)
        if detail.reservation_state != OrderDetail.UNRESERVED:
            raise InvalidMovementError(
                f"Line {detail.id} of {detail.order.order_number} is {detail.reservation_state}, cannot reserve"
            )

        qty = detail.quantity
        policy = ReservationService.policy()
        tolerance = ReservationService.tolerance()

        def ceiling_guard(level, changes):
            if changes[RESERVED].after > level.available + tolerance:
                raise InsufficientStockError.for_product(
                    level.label, requested=qty, available=max(ZERO, level.available - level.reserved)
                )

        deltas = {RESERVED: qty}
        if detail.required_weight_kg:
            deltas[RESERVED_WEIGHT] = detail.required_weight_kg

        store = get_stock_store()
        ref = ProductRef.sku(detail.product_id)
        changes = store.apply(ref, deltas, guard=ceiling_guard if policy == STRICT else None)
        change = changes[RESERVED]

        available = store.read(ref).available
        oversold = change.after > available
        if oversold:
            logger.warning(
                f"Oversold: {detail.product.sku_code} reserved {change.after} > available {available} "
                f"after reserving line {detail.id} ({detail.order.order_number})",
                extra={"metadata": {"order_detail": detail.id, "reserved": change.after, "available": available}},
            )

        entry = ReservationService._journal(
            detail, StockReservation.ACTION_RESERVE, qty, change, performed_by, oversold=oversold, notes=notes
        )
        ReservationService._set_state(detail, OrderDetail.RESERVED)
        logger.info(f"Reserved {qty} of {detail.product.sku_code} for line {detail.id}")
        return ReservationResult(detail, entry, oversold)

    @staticmethod
    @transaction.atomic
    def release(detail, performed_by, reason=""):
        """
        Reserved -> Released, dropping reserved by the line quantity (clamped
        at zero). An unreserved line is simply closed as released.
        """
        detail = ReservationService._lock_line(detail)
        if detail.reservation_state == OrderDetail.UNRESERVED:
            ReservationService._set_state(detail, OrderDetail.RELEASED)
            return None
        if detail.reservation_state != OrderDetail.RESERVED:
            raise InvalidMovementError(
                f"Line {detail.id} is {detail.reservation_state}, nothing to release"
            )

        qty = detail.quantity
        deltas = {RESERVED: -qty}
        if detail.required_weight_kg:
            deltas[RESERVED_WEIGHT] = -detail.required_weight_kg

        changes = get_stock_store().apply(ProductRef.sku(detail.product_id), deltas)
        change = changes[RESERVED]
        if -change.applied < qty:
            logger.warning(
                f"Release of line {detail.id} found only {change.before} reserved for "
                f"{detail.product.sku_code} (wanted {qty}); clamped at zero"
            )

        entry = ReservationService._journal(
            detail, StockReservation.ACTION_RELEASE, -qty, change, performed_by, notes=reason
        )
        ReservationService._set_state(detail, OrderDetail.RELEASED)
        logger.info(f"Released {qty} of {detail.product.sku_code} for line {detail.id} ({reason or 'no reason'})")
        return ReservationResult(detail, entry)

    @staticmethod
    @transaction.atomic
    def consume(detail, performed_by, dispatch=None):
        """
        Reserved -> Consumed. Available and reserved drop together and a
        Dispatch row lands in the ledger.
        """
        detail = ReservationService._lock_line(detail)
        if detail.reservation_state != OrderDetail.RESERVED:
            raise InvalidMovementError(
                f"Line {detail.id} of {detail.order.order_number} is {detail.reservation_state}, only reserved lines can be dispatched"
            )

        qty = detail.quantity
        movement = StockMovementService.dispatch_movement(
            ProductRef.sku(detail.product_id),
            qty,
            detail.order_id,
            performed_by,
            weight_kg=detail.required_weight_kg or None,
            dispatch_id=dispatch.id if dispatch else None,
            release_reserved=True,
        )

        entry = ReservationService._journal(
            detail, StockReservation.ACTION_CONSUME, -qty, movement.changes[RESERVED], performed_by,
            notes=f"Ledger #{movement.transaction.id}",
        )
        ReservationService._set_state(detail, OrderDetail.CONSUMED)
        return ReservationResult(detail, entry)

    @staticmethod
    @transaction.atomic
    def restock_returned_line(detail, performed_by, dispatch=None, close_line=False, notes=None):
        """
        Puts a consumed line's goods back on the shelf with a Return row.
        The line goes back to unreserved so a re-queue can Reserve again,
        or to released when the order is being closed.
        """
        detail = ReservationService._lock_line(detail)
        if detail.reservation_state != OrderDetail.CONSUMED:
            raise InvalidMovementError(f"Line {detail.id} was never dispatched, nothing to restock")

        row = StockMovementService.record_return(
            ProductRef.sku(detail.product_id),
            detail.quantity,
            performed_by,
            order_id=detail.order_id,
            dispatch_id=dispatch.id if dispatch else None,
            weight_kg=detail.required_weight_kg or None,
            notes=notes or f"Returned from {detail.order.order_number}",
        )
        ReservationService._set_state(
            detail, OrderDetail.RELEASED if close_line else OrderDetail.UNRESERVED
        )
        return row

    @staticmethod
    def can_reserve(detail):
        """Unlocked pre-check used to decide which lines to hold at acceptance."""
        level = get_stock_store().read(ProductRef.sku(detail.product_id))
        if ReservationService.policy() == OVERSELL:
            return True
        return level.reserved + detail.quantity <= level.available + ReservationService.tolerance()

    @staticmethod
    def line_balance(detail):
        """Net reserved quantity this line still holds according to its journal."""
        total = StockReservation.objects.filter(order_detail=detail).aggregate(
            total=Sum("quantity")
        )["total"]
        return total or ZERO
