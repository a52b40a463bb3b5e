import logging
from decimal import Decimal, ROUND_HALF_UP

from django.db import transaction
from django.utils import timezone

from apps.audit.services import AuditService
from apps.catalog.models import MasterProduct, Product
from apps.inventory.resolver import ProductRef
from apps.inventory.services import StockMovementService, positive_quantity
from apps.inventory.stock import ZERO, get_stock_store, to_decimal
from apps.orders.models import Order, OrderDetail
from apps.orders.services import OrderService
from apps.utils.exceptions import InsufficientStockError, InvalidMovementError, NotFoundError

from .models import ProductionBatch, BatchMaterial, BatchProduct

logger = logging.getLogger(__name__)

FOUR_PLACES = Decimal("0.0001")


class ProductionService:

    @staticmethod
    def _lock(batch):
        return ProductionBatch.objects.select_for_update().select_related("master_product").get(pk=batch.pk)

    @staticmethod
    def _linked_orders(batch):
        return list(
            Order.objects.filter(details__batch_outputs__batch=batch).distinct().order_by("id")
        )

    @staticmethod
    @transaction.atomic
    def schedule_batch(master_product, planned_quantity, materials, products, created_by,
                       batch_type=ProductionBatch.MAKE_TO_ORDER, density_kg_per_l=None, scheduled_date=None):
        """
        materials: [{"material": <RM/PM master or id>, "required_quantity": n}]
        products:  [{"product": <SKU or id>, "planned_units": n, "order_detail": <line id or None>}]

        Accepted orders linked through order_detail move to Scheduled for Production.
        """
        if not isinstance(master_product, MasterProduct):
            try:
                master_product = MasterProduct.objects.get(pk=master_product)
            except MasterProduct.DoesNotExist:
                raise NotFoundError(f"Master product {master_product} not found")
        if master_product.product_type != MasterProduct.FINISHED_GOOD:
            raise InvalidMovementError(f"'{master_product.name}' is not a finished good")
        if batch_type not in dict(ProductionBatch.BATCH_TYPE_CHOICES):
            raise InvalidMovementError(f"Unknown batch type '{batch_type}'")
        if not products:
            raise InvalidMovementError("A batch needs at least one output SKU")

        planned = positive_quantity(planned_quantity, "Planned quantity")
        if density_kg_per_l is None:
            fg_detail = getattr(master_product, "fg_detail", None)
            density_kg_per_l = fg_detail.density_kg_per_l if fg_detail else ZERO

        batch = ProductionBatch.objects.create(
            master_product=master_product,
            batch_type=batch_type,
            planned_quantity=planned,
            density_kg_per_l=to_decimal(density_kg_per_l),
            scheduled_date=scheduled_date or timezone.localdate(),
            created_by=created_by,
        )

        for sequence, item in enumerate(materials or [], start=1):
            ref = ProductRef.material(item.get("material"))
            BatchMaterial.objects.create(
                batch=batch,
                material_id=ref.id,
                required_quantity=positive_quantity(item.get("required_quantity"), "Required quantity"),
                sequence=item.get("sequence") or sequence,
            )

        for item in products:
            product = item.get("product")
            product_id = product.pk if isinstance(product, Product) else product
            try:
                sku = Product.objects.get(pk=product_id, is_placeholder=False)
            except (Product.DoesNotExist, ValueError, TypeError):
                raise NotFoundError(f"SKU {product_id} not found")
            if sku.master_product_id != master_product.id:
                raise InvalidMovementError(f"SKU {sku.sku_code} is not a pack of '{master_product.name}'")

            detail = None
            if item.get("order_detail"):
                try:
                    detail = OrderDetail.objects.get(pk=item["order_detail"])
                except OrderDetail.DoesNotExist:
                    raise NotFoundError(f"Order line {item['order_detail']} not found")
                if detail.product_id != sku.id:
                    raise InvalidMovementError(f"Order line {detail.id} is not for SKU {sku.sku_code}")

            units = to_decimal(item.get("planned_units") or 0)
            if units < 0:
                raise InvalidMovementError("Planned units cannot be negative")
            BatchProduct.objects.create(
                batch=batch,
                product=sku,
                order_detail=detail,
                planned_units=units,
                package_capacity_kg=sku.package_capacity_kg,
            )

        for order in ProductionService._linked_orders(batch):
            if order.status == Order.ACCEPTED:
                OrderService.mark_scheduled(order, created_by, batch_no=batch.batch_no)
            elif order.status != Order.SCHEDULED:
                raise InvalidMovementError(
                    f"Order {order.order_number} is '{order.status}' and cannot be scheduled",
                    code="invalid_transition",
                )

        AuditService.batch_event("batch_scheduled", batch, created_by, planned_quantity=planned)
        logger.info(f"Scheduled batch {batch.batch_no} of {master_product.name} ({planned})")
        return batch

    @staticmethod
    @transaction.atomic
    def start_batch(batch, performed_by):
        batch = ProductionService._lock(batch)
        if batch.status != ProductionBatch.SCHEDULED:
            raise InvalidMovementError(
                f"Batch {batch.batch_no} is {batch.status}, only scheduled batches can start",
                code="invalid_transition",
            )
        batch.status = ProductionBatch.IN_PROGRESS
        batch.started_at = timezone.now()
        batch.save(update_fields=["status", "started_at"])
        logger.info(f"Batch {batch.batch_no} started by {performed_by}")
        return batch

    @staticmethod
    def _material_plan(batch, consumed):
        """[(BatchMaterial, ref, qty)] sorted by material id, using actuals where given."""
        consumed = {int(k): v for k, v in (consumed or {}).items()}
        plan = []
        for item in batch.materials.select_related("material").order_by("material_id", "id"):
            qty = consumed.get(item.material_id, item.required_quantity)
            qty = to_decimal(qty)
            if qty < 0:
                raise InvalidMovementError(f"Consumed quantity for {item.material.name} cannot be negative")
            plan.append((item, ProductRef.material(item.material), qty))
        return plan

    @staticmethod
    def _check_materials(batch, plan):
        """All-or-nothing availability check; reports every short material at once."""
        needed = {}
        for item, ref, qty in plan:
            label, total = needed.get(ref, (item.material.name, ZERO))
            needed[ref] = (label, total + qty)

        store = get_stock_store()
        shortages = []
        for ref, (label, qty) in needed.items():
            available = store.read(ref).available
            if available < qty:
                shortages.append((label, qty, available))

        if shortages:
            summary = "; ".join(
                f"{label} (requested {qty}, available {available}, short by {qty - available})"
                for label, qty, available in shortages
            )
            logger.warning(f"Batch {batch.batch_no} blocked by material shortage: {summary}")
            raise InsufficientStockError(
                f"Insufficient raw material for batch {batch.batch_no}: {summary}",
                product=", ".join(label for label, _, _ in shortages),
                requested=shortages[0][1],
                available=shortages[0][2],
            )

    @staticmethod
    def _output_units(batch, item, produced, actual_weight, single_output):
        if item.product_id in produced:
            return to_decimal(produced[item.product_id])
        if (
            batch.batch_type == ProductionBatch.MAKE_TO_STOCK
            and single_output
            and item.planned_units == 0
        ):
            if not item.package_capacity_kg:
                raise InvalidMovementError(
                    f"SKU {item.product.sku_code} has no package capacity to derive units from"
                )
            return (actual_weight / item.package_capacity_kg).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
        return item.planned_units

    @staticmethod
    @transaction.atomic
    def complete_batch(batch, actual_quantity, actual_density_kg_per_l, completed_by, consumed=None, produced=None):
        """
        consumed: {material_id: qty} overrides required quantities.
        produced: {sku_id: units} overrides planned units.
        """
        batch = ProductionService._lock(batch)
        if batch.status != ProductionBatch.IN_PROGRESS:
            raise InvalidMovementError(
                f"Batch {batch.batch_no} is {batch.status}, only in-progress batches can be completed",
                code="invalid_transition",
            )

        actual_qty = positive_quantity(actual_quantity, "Actual quantity")
        actual_density = positive_quantity(actual_density_kg_per_l, "Actual density")
        actual_weight = (actual_qty * actual_density).quantize(FOUR_PLACES)

        plan = ProductionService._material_plan(batch, consumed)
        ProductionService._check_materials(batch, plan)

        notes = f"Batch {batch.batch_no}"
        for item, ref, qty in plan:
            if qty > 0:
                StockMovementService.record_production_consumption(
                    ref, qty, batch.id, completed_by, notes=notes
                )
            item.consumed_quantity = qty
            item.save(update_fields=["consumed_quantity"])

        produced = {int(k): v for k, v in (produced or {}).items()}
        outputs = list(batch.products.select_related("product").order_by("product_id", "id"))
        for item in outputs:
            units = ProductionService._output_units(batch, item, produced, actual_weight, len(outputs) == 1)
            item.produced_units = units
            if units > 0:
                weight = (units * item.package_capacity_kg).quantize(FOUR_PLACES) if item.package_capacity_kg else None
                StockMovementService.record_production_output(
                    ProductRef.sku(item.product_id), units, batch.id, completed_by,
                    weight_kg=weight, notes=notes,
                )
                item.produced_weight_kg = weight
                item.inventory_updated = True
            else:
                logger.warning(f"Batch {batch.batch_no}: no units produced for {item.product.sku_code}")
            item.save(update_fields=["produced_units", "produced_weight_kg", "inventory_updated"])

        batch.actual_quantity = actual_qty
        batch.actual_density_kg_per_l = actual_density
        batch.actual_weight_kg = actual_weight
        batch.status = ProductionBatch.COMPLETED
        batch.completed_at = timezone.now()
        batch.completed_by = completed_by
        batch.save(update_fields=[
            "actual_quantity", "actual_density_kg_per_l", "actual_weight_kg",
            "status", "completed_at", "completed_by",
        ])

        ready, waiting = [], []
        for order in ProductionService._linked_orders(batch):
            if order.status not in (Order.ACCEPTED, Order.SCHEDULED):
                continue
            if not OrderService.can_be_ready(order):
                logger.warning(f"Order {order.order_number} still short after batch {batch.batch_no}, left scheduled")
                waiting.append(order.order_number)
                continue
            try:
                with transaction.atomic():
                    OrderService.mark_ready_for_dispatch(order, completed_by)
                ready.append(order.order_number)
            except InsufficientStockError as e:
                logger.warning(f"Order {order.order_number} could not be readied after batch {batch.batch_no}: {e}")
                waiting.append(order.order_number)

        AuditService.batch_event(
            "batch_completed", batch, completed_by,
            actual_weight_kg=actual_weight, ready_orders=ready, waiting_orders=waiting,
        )
        logger.info(f"Completed batch {batch.batch_no}: {actual_weight} kg, {len(ready)} order(s) ready")
        return batch

    @staticmethod
    @transaction.atomic
    def cancel_batch(batch, reason, performed_by):
        batch = ProductionService._lock(batch)
        if batch.status not in (ProductionBatch.SCHEDULED, ProductionBatch.IN_PROGRESS):
            raise InvalidMovementError(
                f"Batch {batch.batch_no} is {batch.status} and cannot be cancelled",
                code="invalid_transition",
            )
        if not reason:
            raise InvalidMovementError("A cancellation reason is required")

        batch.status = ProductionBatch.CANCELLED
        batch.cancellation_reason = reason
        batch.save(update_fields=["status", "cancellation_reason"])

        active = (ProductionBatch.SCHEDULED, ProductionBatch.IN_PROGRESS)
        reverted = []
        for order in ProductionService._linked_orders(batch):
            if order.status != Order.SCHEDULED:
                continue
            still_planned = BatchProduct.objects.filter(
                order_detail__order=order, batch__status__in=active
            ).exists()
            if still_planned:
                continue
            OrderService.unschedule(order, performed_by, batch_no=batch.batch_no)
            reverted.append(order.order_number)

        AuditService.batch_event("batch_cancelled", batch, performed_by, reason=reason, reverted_orders=reverted)
        return batch
