import logging

from django.db import transaction
from django.utils import timezone

from apps.audit.services import AuditService
from apps.inventory.reservations import ReservationService
from apps.orders.models import Order, OrderDetail
from apps.orders.services import OrderService
from apps.utils.exceptions import InvalidMovementError, NotFoundError

from .models import Dispatch

logger = logging.getLogger(__name__)


class DispatchService:

    @staticmethod
    @transaction.atomic
    def create_dispatch(order_ids, vehicle_no, driver_name, created_by, remarks=None):
        """
        Ships ready orders. Every reserved line is consumed (available and
        reserved both drop, one Dispatch ledger row per line). Any failure
        rolls back the whole trip.
        """
        ids = sorted({int(pk) for pk in order_ids})
        if not ids:
            raise InvalidMovementError("A dispatch needs at least one order")
        if not vehicle_no or not driver_name:
            raise InvalidMovementError("Vehicle number and driver name are required")

        # Locked in id order so overlapping dispatches queue instead of deadlocking
        orders = list(Order.objects.select_for_update().filter(pk__in=ids).order_by("id"))
        missing = set(ids) - {o.id for o in orders}
        if missing:
            raise NotFoundError(f"Orders not found: {', '.join(str(pk) for pk in sorted(missing))}")

        not_ready = [o.order_number for o in orders if o.status != Order.READY_FOR_DISPATCH]
        if not_ready:
            raise InvalidMovementError(
                f"Orders not ready for dispatch: {', '.join(not_ready)}",
                code="invalid_transition",
            )

        dispatch = Dispatch.objects.create(
            vehicle_no=vehicle_no,
            driver_name=driver_name,
            remarks=remarks or "",
            created_by=created_by,
        )

        lines = 0
        for order in orders:
            for detail in order.details.order_by("product_id", "id"):
                if detail.reservation_state == OrderDetail.RELEASED:
                    continue
                ReservationService.consume(detail, created_by, dispatch=dispatch)
                lines += 1
            OrderService.mark_dispatched(order, dispatch)

        AuditService.dispatch_event(
            "dispatch_created", dispatch, created_by,
            orders=[o.order_number for o in orders], lines=lines,
        )
        logger.info(f"Dispatch {dispatch.dispatch_no}: {len(orders)} order(s), {lines} line(s) on {vehicle_no}")
        return dispatch

    @staticmethod
    @transaction.atomic
    def mark_delivered(dispatch, performed_by):
        dispatch = Dispatch.objects.select_for_update().get(pk=dispatch.pk)
        if dispatch.status != Dispatch.IN_TRANSIT:
            raise InvalidMovementError(
                f"Dispatch {dispatch.dispatch_no} is already {dispatch.status}",
                code="invalid_transition",
            )

        dispatch.status = Dispatch.DELIVERED
        dispatch.delivered_at = timezone.now()
        dispatch.save(update_fields=["status", "delivered_at"])

        delivered = []
        for order in dispatch.orders.filter(status=Order.DISPATCHED).order_by("id"):
            OrderService.mark_delivered(order)
            delivered.append(order.order_number)

        AuditService.dispatch_event("dispatch_delivered", dispatch, performed_by, orders=delivered)
        return dispatch
