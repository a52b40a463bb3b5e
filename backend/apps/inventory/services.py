import logging
from dataclasses import dataclass
from decimal import Decimal

from django.db import transaction, DatabaseError
from django.db.models import F
from django.utils import timezone

from apps.audit.services import AuditService
from apps.catalog.models import (
    MasterProduct,
    Product,
    RawMaterialDetail,
    PackagingMaterialDetail,
)
from apps.utils.exceptions import InsufficientStockError, InvalidMovementError, NotFoundError
from .ledger import TransactionRecorder
from .models import (
    InventoryTransaction,
    MaterialDiscard,
    MaterialInward,
    ReferenceType,
    TransactionType,
)
from .resolver import ProductKind, ProductRef, coerce_ref
from .stock import (
    AVAILABLE,
    AVAILABLE_WEIGHT,
    RESERVED,
    RESERVED_WEIGHT,
    ZERO,
    StockChange,
    get_stock_store,
    to_decimal,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Movement:
    transaction: InventoryTransaction
    changes: dict

    @property
    def balance_after(self):
        return self.transaction.balance_after


def positive_quantity(quantity, what="Quantity"):
    try:
        value = to_decimal(quantity)
    except (ArithmeticError, ValueError, TypeError):
        raise InvalidMovementError(f"{what} must be a number, got {quantity!r}")
    if not value.is_finite() or value <= 0:
        raise InvalidMovementError(f"{what} must be positive, got {quantity}")
    return value


class StockMovementService:
    """
    Named stock movements. Each one fixes the transaction type, the sign and
    the floor rule, then writes the stock row and its ledger row in a single
    database transaction.
    """

    @staticmethod
    def _weight_for(ref, quantity, weight_kg):
        if weight_kg is not None:
            return to_decimal(weight_kg)
        if not ref.is_sku:
            return None
        capacity = (
            Product.objects.filter(pk=ref.id)
            .values_list("package_capacity_kg", flat=True)
            .first()
        )
        if capacity:
            return (quantity * capacity).quantize(Decimal("0.0001"))
        return None

    @staticmethod
    @transaction.atomic
    def _move(
        product,
        transaction_type,
        signed_quantity,
        created_by,
        strict=False,
        reference_type=None,
        reference_id=None,
        weight_kg=None,
        unit_price=None,
        notes=None,
        release_reserved=False,
    ):
        TransactionRecorder.validate(transaction_type, reference_type)
        if created_by is None:
            raise InvalidMovementError("Stock movements must record who performed them")

        ref = coerce_ref(product)
        weight = StockMovementService._weight_for(ref, abs(signed_quantity), weight_kg)

        deltas = {AVAILABLE: signed_quantity}
        if ref.is_sku and weight:
            deltas[AVAILABLE_WEIGHT] = weight if signed_quantity > 0 else -weight
        if release_reserved:
            if not ref.is_sku:
                raise InvalidMovementError(f"{ref} has no reservations to release")
            deltas[RESERVED] = -abs(signed_quantity)
            if weight:
                deltas[RESERVED_WEIGHT] = -weight

        changes = get_stock_store().apply(ref, deltas, strict=(AVAILABLE,) if strict else ())

        row = TransactionRecorder.record(
            ref,
            transaction_type,
            signed_quantity,
            changes[AVAILABLE],
            created_by,
            reference_type=reference_type,
            reference_id=reference_id,
            weight_kg=weight,
            unit_price=unit_price,
            notes=notes,
        )
        logger.info(
            f"{transaction_type} {signed_quantity:+} on {ref}: "
            f"{changes[AVAILABLE].before} -> {changes[AVAILABLE].after} (ledger #{row.id})"
        )
        return Movement(row, changes)

    @staticmethod
    def record_inward(product, quantity, created_by, inward_id=None, weight_kg=None, unit_price=None, notes=None):
        qty = positive_quantity(quantity)
        return StockMovementService._move(
            product, TransactionType.INWARD, qty, created_by,
            reference_type=ReferenceType.INWARD if inward_id else None,
            reference_id=inward_id,
            weight_kg=weight_kg,
            unit_price=unit_price,
            notes=notes,
        ).transaction

    @staticmethod
    def record_production_consumption(product, quantity, batch_id, created_by, weight_kg=None, notes=None):
        qty = positive_quantity(quantity)
        return StockMovementService._move(
            product, TransactionType.PRODUCTION_CONSUMPTION, -qty, created_by,
            strict=True,
            reference_type=ReferenceType.BATCH,
            reference_id=batch_id,
            weight_kg=weight_kg,
            notes=notes,
        ).transaction

    @staticmethod
    def record_production_output(product, quantity, batch_id, created_by, weight_kg=None, notes=None):
        qty = positive_quantity(quantity)
        return StockMovementService._move(
            product, TransactionType.PRODUCTION_OUTPUT, qty, created_by,
            reference_type=ReferenceType.BATCH,
            reference_id=batch_id,
            weight_kg=weight_kg,
            notes=notes,
        ).transaction

    @staticmethod
    def record_dispatch(product, quantity, order_id, created_by, weight_kg=None, notes=None, dispatch_id=None):
        return StockMovementService.dispatch_movement(
            product, quantity, order_id, created_by,
            weight_kg=weight_kg, notes=notes, dispatch_id=dispatch_id,
        ).transaction

    @staticmethod
    def dispatch_movement(product, quantity, order_id, created_by, weight_kg=None, notes=None,
                          dispatch_id=None, release_reserved=False):
        """
        Dispatch refuses outright when available is short. With
        release_reserved the reserved column drops by the same quantity
        (clamped) in the same statement.
        """
        qty = positive_quantity(quantity)
        if dispatch_id:
            reference_type, reference_id = ReferenceType.DISPATCH, dispatch_id
        else:
            reference_type, reference_id = ReferenceType.ORDER, order_id
        if dispatch_id and order_id:
            notes = f"Order #{order_id}" + (f" - {notes}" if notes else "")
        return StockMovementService._move(
            product, TransactionType.DISPATCH, -qty, created_by,
            strict=True,
            reference_type=reference_type,
            reference_id=reference_id,
            weight_kg=weight_kg,
            notes=notes,
            release_reserved=release_reserved,
        )

    @staticmethod
    def record_discard(product, quantity, discard_id, created_by, notes=None):
        qty = positive_quantity(quantity)
        return StockMovementService._move(
            product, TransactionType.DISCARD, -qty, created_by,
            strict=True,
            reference_type=ReferenceType.DISCARD,
            reference_id=discard_id,
            notes=notes,
        ).transaction

    @staticmethod
    def record_adjustment(product, quantity, created_by, weight_kg=None, notes=None,
                          reference_type=ReferenceType.MANUAL_ADJUSTMENT, reference_id=None):
        try:
            qty = to_decimal(quantity)
        except (ArithmeticError, ValueError, TypeError):
            raise InvalidMovementError(f"Adjustment quantity must be a number, got {quantity!r}")
        if not qty.is_finite() or qty == 0:
            raise InvalidMovementError("Adjustment quantity must be non-zero")
        return StockMovementService._move(
            product, TransactionType.ADJUSTMENT, qty, created_by,
            strict=qty < 0,
            reference_type=reference_type,
            reference_id=reference_id,
            weight_kg=weight_kg,
            notes=notes,
        ).transaction

    @staticmethod
    def record_return(product, quantity, created_by, order_id=None, dispatch_id=None, weight_kg=None, notes=None):
        qty = positive_quantity(quantity)
        if dispatch_id:
            reference_type, reference_id = ReferenceType.DISPATCH, dispatch_id
        else:
            reference_type, reference_id = ReferenceType.ORDER, order_id
        return StockMovementService._move(
            product, TransactionType.RETURN, qty, created_by,
            reference_type=reference_type if reference_id else None,
            reference_id=reference_id,
            weight_kg=weight_kg,
            notes=notes,
        ).transaction

    @staticmethod
    @transaction.atomic
    def record_initial_stock(product, created_by, notes=None):
        """
        Opening balance for stock that predates the ledger. Stock is not
        changed: the row goes from 0 to the current available quantity.
        """
        ref = coerce_ref(product)
        if TransactionRecorder.history(ref).exists():
            raise InvalidMovementError(f"{ref} already has ledger history")

        # Zero delta takes the row lock and reports the current balance
        current = get_stock_store().apply(ref, {AVAILABLE: ZERO})[AVAILABLE].after
        if current <= 0:
            raise InvalidMovementError(f"{ref} has no stock to open a balance for")

        return TransactionRecorder.record(
            ref,
            TransactionType.INITIAL_STOCK,
            current,
            StockChange(before=ZERO, after=current),
            created_by,
            notes=notes or "Opening balance",
        )

    @staticmethod
    def backfill_initial_stock(created_by):
        """Writes an Initial Stock row for every stocked product with no ledger history."""
        refs = []
        skus = Product.objects.filter(
            is_placeholder=False, available_quantity__gt=0, ledger_entries__isnull=True
        ).values_list("id", flat=True)
        refs.extend(ProductRef.sku(pk) for pk in skus)

        for detail_model, kind in ((RawMaterialDetail, ProductKind.RM), (PackagingMaterialDetail, ProductKind.PM)):
            masters = detail_model.objects.filter(
                available_qty__gt=0, master_product__ledger_entries__isnull=True
            ).values_list("master_product_id", flat=True)
            refs.extend(ProductRef(kind, pk) for pk in masters)

        created = 0
        for ref in refs:
            StockMovementService.record_initial_stock(ref, created_by)
            created += 1
        logger.info(f"Initial stock backfill wrote {created} ledger rows")
        return created


class InwardService:

    @staticmethod
    def _ref_for(master, product):
        if master.product_type == MasterProduct.FINISHED_GOOD:
            if product is None:
                raise InvalidMovementError(f"Inward of finished good '{master.name}' needs a SKU")
            if product.master_product_id != master.id:
                raise InvalidMovementError(f"SKU {product.sku_code} does not belong to '{master.name}'")
            return ProductRef.sku(product.id)
        if product is not None:
            raise InvalidMovementError(f"'{master.name}' is a material, inward it without a SKU")
        return ProductRef.material(master)

    @staticmethod
    @transaction.atomic
    def create_inward(master_product, quantity, created_by, product=None, supplier_name="",
                      bill_no="", unit_price=0, weight_kg=None, notes="", inward_date=None):
        qty = positive_quantity(quantity)
        unit_price = to_decimal(unit_price or 0)
        if unit_price < 0:
            raise InvalidMovementError("Unit price cannot be negative")

        ref = InwardService._ref_for(master_product, product)

        inward = MaterialInward.objects.create(
            master_product=master_product,
            product=product,
            supplier_name=supplier_name,
            bill_no=bill_no,
            quantity=qty,
            weight_kg=weight_kg,
            unit_price=unit_price,
            total_cost=(qty * unit_price).quantize(Decimal("0.01")),
            inward_date=inward_date or timezone.localdate(),
            notes=notes,
            created_by=created_by,
        )
        StockMovementService.record_inward(
            ref, qty, created_by,
            inward_id=inward.id,
            weight_kg=weight_kg,
            unit_price=unit_price,
            notes=notes or (f"Bill {bill_no}" if bill_no else None),
        )

        # Latest purchase price becomes the material cost
        if unit_price > 0 and ref.kind == ProductKind.RM:
            RawMaterialDetail.objects.filter(pk=ref.id).update(purchase_cost=unit_price)
        elif unit_price > 0 and ref.kind == ProductKind.PM:
            PackagingMaterialDetail.objects.filter(pk=ref.id).update(purchase_cost=unit_price)

        return inward

    @staticmethod
    @transaction.atomic
    def reverse_inward(inward, performed_by, notes=None):
        inward = MaterialInward.objects.select_for_update().select_related(
            "master_product", "product"
        ).get(pk=inward.pk)
        if inward.is_reversed:
            raise InvalidMovementError(f"Inward #{inward.id} is already reversed")

        ref = InwardService._ref_for(inward.master_product, inward.product)
        entry = StockMovementService.record_adjustment(
            ref, -inward.quantity, performed_by,
            weight_kg=inward.weight_kg,
            reference_type=ReferenceType.INWARD,
            reference_id=inward.id,
            notes=notes or f"Reversal of inward #{inward.id}",
        )

        inward.is_reversed = True
        inward.reversed_at = timezone.now()
        inward.reversed_by = performed_by
        inward.save(update_fields=["is_reversed", "reversed_at", "reversed_by"])

        AuditService.inward_reversed(inward, performed_by, entry)
        return inward


class DiscardService:

    @staticmethod
    def _placeholder_sku(master):
        """SKU row standing in for an RM/PM master in SKU-keyed discard records."""
        sku = Product.objects.filter(master_product=master, is_placeholder=True).first()
        if sku:
            return sku
        logger.info(f"Creating placeholder SKU for material '{master.name}'")
        return Product.objects.create(
            master_product=master,
            product_name=f"{master.name} (material)",
            sku_code=f"MAT-{master.id}",
            is_placeholder=True,
            is_active=False,
        )

    @staticmethod
    @transaction.atomic
    def create_discard(product_id, quantity, reason, created_by, notes=""):
        qty = positive_quantity(quantity, "Discard quantity")
        if not reason:
            raise InvalidMovementError("A discard reason is required")

        ref = coerce_ref(product_id)
        level = get_stock_store().read(ref)
        if level.available < qty:
            raise InsufficientStockError(
                f"Insufficient stock. Available: {level.available}, requested to discard: {qty} "
                f"for {level.label}",
                product=level.label,
                requested=qty,
                available=level.available,
            )

        discard = MaterialDiscard.objects.create(
            product_kind=ref.kind.value,
            master_product_id=None if ref.is_sku else ref.id,
            product_id=ref.id if ref.is_sku else None,
            quantity=qty,
            reason=reason,
            notes=notes,
            created_by=created_by,
        )
        StockMovementService.record_discard(
            ref, qty, discard.id, created_by, notes=f"{reason}: {notes}" if notes else reason
        )

        if not ref.is_sku:
            try:
                with transaction.atomic():
                    sku = DiscardService._placeholder_sku(discard.master_product)
                    discard.product = sku
                    discard.save(update_fields=["product"])
            except DatabaseError as e:
                logger.error(
                    f"Discard #{discard.id}: could not link a placeholder SKU for {ref}: {e}. "
                    f"Discard kept without SKU link.",
                    extra={"metadata": {"discard_id": discard.id, "ref": str(ref)}},
                )

        AuditService.discard_recorded(discard, created_by)
        return discard


class InventorySelector:
    """Read side. Not part of any invariant-preserving transaction."""

    @staticmethod
    def stock_level(product_id):
        ref = coerce_ref(product_id)
        return ref, get_stock_store().read(ref)

    @staticmethod
    def low_stock():
        rows = []
        skus = Product.objects.filter(
            is_active=True,
            is_placeholder=False,
            min_stock_level__gt=0,
            available_quantity__lt=F("min_stock_level"),
        ).order_by("product_name")
        for sku in skus:
            rows.append({
                "kind": ProductKind.FG.value,
                "id": sku.id,
                "name": sku.product_name,
                "available": sku.available_quantity,
                "min_stock_level": sku.min_stock_level,
            })

        for detail_model in (RawMaterialDetail, PackagingMaterialDetail):
            details = detail_model.objects.select_related("master_product").filter(
                master_product__is_active=True,
                master_product__min_stock_level__gt=0,
                available_qty__lt=F("master_product__min_stock_level"),
            ).order_by("master_product__name")
            for detail in details:
                master = detail.master_product
                rows.append({
                    "kind": master.product_type,
                    "id": master.id,
                    "name": master.name,
                    "available": detail.available_qty,
                    "min_stock_level": master.min_stock_level,
                })
        return rows

    @staticmethod
    def oversold_skus():
        return Product.objects.filter(
            reserved_quantity__gt=F("available_quantity")
        ).order_by("product_name")

    # -- weight-based availability --
    # Reservations never lower available_weight_kg, so the weight a new
    # order can draw on is available minus reserved ("free").

    @staticmethod
    def _get_sku(product_id):
        try:
            return Product.objects.get(pk=product_id, is_placeholder=False)
        except (Product.DoesNotExist, ValueError, TypeError):
            raise NotFoundError(f"SKU {product_id} not found")

    @staticmethod
    def _free_weight(sku):
        return max(ZERO, sku.available_weight_kg - sku.reserved_weight_kg)

    @staticmethod
    def _full_packages(weight_kg, capacity_kg):
        if capacity_kg <= 0:
            return 0
        return int(weight_kg // capacity_kg)

    @staticmethod
    def package_split(weight_kg, capacity_kg):
        """Full packages of capacity_kg plus one partial package for the remainder."""
        if capacity_kg <= 0:
            return []
        full = InventorySelector._full_packages(weight_kg, capacity_kg)
        partial = weight_kg - full * capacity_kg
        split = []
        if full:
            split.append({
                "type": "FULL",
                "package_count": full,
                "capacity_kg": capacity_kg,
                "total_weight_kg": full * capacity_kg,
            })
        if partial > 0:
            split.append({
                "type": "PARTIAL",
                "package_count": 1,
                "capacity_kg": partial,
                "total_weight_kg": partial,
            })
        return split

    @staticmethod
    def product_availability(product_id):
        sku = InventorySelector._get_sku(product_id)
        capacity = sku.package_capacity_kg
        free_weight = InventorySelector._free_weight(sku)

        filled = ZERO
        if capacity > 0:
            filled = ((sku.available_weight_kg % capacity) / capacity * 100).quantize(Decimal("0.01"))

        return {
            "product_id": sku.id,
            "product_name": sku.product_name,
            "package_capacity_kg": capacity,
            "direct": {
                "available_quantity": sku.available_quantity,
                "available_weight_kg": sku.available_weight_kg,
                "available_packages": InventorySelector._full_packages(sku.available_weight_kg, capacity),
                "percentage_filled": filled,
            },
            "reserved": {
                "reserved_quantity": sku.reserved_quantity,
                "reserved_weight_kg": sku.reserved_weight_kg,
            },
            "net": {
                "net_quantity": sku.free_quantity,
                "net_weight_kg": free_weight,
            },
        }

    @staticmethod
    def alternative_capacities(master_product_id, exclude=None):
        """Sibling SKUs of an FG master that still have free weight, smallest pack first."""
        skus = Product.objects.filter(
            master_product_id=master_product_id,
            is_placeholder=False,
            is_active=True,
        ).order_by("package_capacity_kg", "id")
        if exclude is not None:
            skus = skus.exclude(pk=exclude)

        rows = []
        for sku in skus:
            free_weight = InventorySelector._free_weight(sku)
            if free_weight <= 0:
                continue
            rows.append({
                "product_id": sku.id,
                "product_name": sku.product_name,
                "sku_code": sku.sku_code,
                "package_capacity_kg": sku.package_capacity_kg,
                "available_quantity": sku.available_quantity,
                "free_weight_kg": free_weight,
                "available_packages": InventorySelector._full_packages(free_weight, sku.package_capacity_kg),
            })
        return rows

    @staticmethod
    def fulfillment_capability(product_id, required_weight_kg):
        """
        DIRECT: the SKU alone covers the weight.
        INDIRECT: some stock, not enough; siblings that could cover the
        shortfall are listed as suggestions.
        NOT_AVAILABLE: no free weight at all.
        """
        required = positive_quantity(required_weight_kg, "Required weight")
        sku = InventorySelector._get_sku(product_id)
        free_weight = InventorySelector._free_weight(sku)
        capacity = sku.package_capacity_kg

        if free_weight >= required:
            return {
                "can_fulfill": True,
                "availability_type": "DIRECT",
                "available_weight_kg": free_weight,
                "surplus_kg": free_weight - required,
                "package_split": InventorySelector.package_split(required, capacity),
            }

        if free_weight > 0:
            shortfall = required - free_weight
            suggestions = [
                row for row in InventorySelector.alternative_capacities(sku.master_product_id, exclude=sku.id)
                if row["free_weight_kg"] >= shortfall
            ]
            return {
                "can_fulfill": False,
                "availability_type": "INDIRECT",
                "available_weight_kg": free_weight,
                "shortfall_kg": shortfall,
                "package_split": InventorySelector.package_split(free_weight, capacity),
                "suggestions": suggestions,
            }

        return {
            "can_fulfill": False,
            "availability_type": "NOT_AVAILABLE",
            "available_weight_kg": ZERO,
            "shortfall_kg": required,
            "package_split": [],
        }

    @staticmethod
    def batch_distribution(batch):
        """
        Checks each output line of a production batch against the free weight
        of its SKU: produced weight once the batch is done, planned weight
        (units x pack capacity) before that.
        """
        lines = list(batch.products.select_related("product", "order_detail").order_by("id"))
        if not lines:
            return {"valid": False, "message": f"Batch {batch.batch_no} has no output products", "lines": []}

        results = []
        for line in lines:
            required = line.produced_weight_kg
            if required is None:
                required = line.planned_units * line.package_capacity_kg
            free_weight = InventorySelector._free_weight(line.product)
            fulfilled = free_weight >= required
            results.append({
                "batch_product_id": line.id,
                "product_id": line.product_id,
                "sku_code": line.product.sku_code,
                "order_id": line.order_detail.order_id if line.order_detail else None,
                "required_weight_kg": required,
                "available_weight_kg": free_weight,
                "valid": fulfilled,
                "status": "FULFILLED" if fulfilled else "INSUFFICIENT",
            })

        invalid = sum(1 for row in results if not row["valid"])
        if invalid:
            logger.info(f"Batch {batch.batch_no}: {invalid} of {len(results)} output line(s) short on weight")
        return {
            "valid": invalid == 0,
            "lines": results,
            "total_valid": len(results) - invalid,
            "total_invalid": invalid,
        }

    @staticmethod
    def get_master(master_id):
        try:
            return MasterProduct.objects.get(pk=master_id)
        except MasterProduct.DoesNotExist:
            raise NotFoundError(f"Master product {master_id} not found")
