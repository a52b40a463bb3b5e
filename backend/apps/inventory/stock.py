"""
Stock Accessor.

The only code allowed to write the stock columns. Business logic talks to
the StockStore interface; the locking strategy behind it is chosen by the
INVENTORY_STOCK_STORE setting.
"""
import logging
from dataclasses import dataclass
from decimal import Decimal

from django.conf import settings
from django.core.exceptions import ImproperlyConfigured
from django.db import transaction

from apps.catalog.models import Product, RawMaterialDetail, PackagingMaterialDetail
from apps.utils.exceptions import (
    BusinessLogicException,
    InsufficientStockError,
    InvalidMovementError,
    NotFoundError,
)
from .resolver import ProductKind

logger = logging.getLogger(__name__)

ZERO = Decimal("0")

AVAILABLE = "available"
RESERVED = "reserved"
AVAILABLE_WEIGHT = "available_weight"
RESERVED_WEIGHT = "reserved_weight"

# field -> column, per kind. Materials carry no reservation or weight columns.
COLUMNS = {
    ProductKind.FG: {
        AVAILABLE: "available_quantity",
        RESERVED: "reserved_quantity",
        AVAILABLE_WEIGHT: "available_weight_kg",
        RESERVED_WEIGHT: "reserved_weight_kg",
    },
    ProductKind.RM: {AVAILABLE: "available_qty"},
    ProductKind.PM: {AVAILABLE: "available_qty"},
}

MODELS = {
    ProductKind.FG: Product,
    ProductKind.RM: RawMaterialDetail,
    ProductKind.PM: PackagingMaterialDetail,
}


def to_decimal(value):
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


@dataclass(frozen=True)
class StockChange:
    before: Decimal
    after: Decimal

    @property
    def applied(self):
        return self.after - self.before


@dataclass(frozen=True)
class StockLevel:
    label: str
    available: Decimal
    reserved: Decimal = ZERO
    available_weight: Decimal = ZERO
    reserved_weight: Decimal = ZERO

    @property
    def free(self):
        return max(ZERO, self.available - self.reserved)


class StockContentionError(BusinessLogicException):
    status_code = 409
    default_code = "stock_contention"


class StockStore:
    """
    Atomic read-modify-write on one product's stock row.

    apply() takes signed deltas per field. Fields listed in `strict` raise
    InsufficientStockError if they would go below zero; the others are
    clamped at zero. Increments are never clamped. Nothing is written when
    any strict field fails.

    guard, when given, is called as guard(level_before, changes) with the
    row still locked and may raise to veto the write.
    """

    def read(self, ref):
        row = self._get_row(ref, lock=False)
        return self._level(ref, row)

    def adjust(self, ref, field, delta, strict=False):
        changes = self.apply(ref, {field: delta}, strict=(field,) if strict else ())
        return changes[field]

    def apply(self, ref, deltas, strict=(), guard=None):
        raise NotImplementedError

    # -- helpers shared by implementations --

    def _columns(self, ref, fields):
        columns = COLUMNS.get(ref.kind)
        if columns is None:
            raise NotFoundError(f"Product {ref.id} not found")
        missing = [f for f in fields if f not in columns]
        if missing:
            raise InvalidMovementError(f"{ref.kind.value} stock has no {', '.join(missing)} column")
        return {f: columns[f] for f in fields}

    def _queryset(self, ref):
        qs = MODELS[ref.kind].objects.all()
        if ref.kind != ProductKind.FG:
            qs = qs.select_related("master_product")
        return qs

    def _get_row(self, ref, lock):
        qs = self._queryset(ref)
        if lock:
            qs = qs.select_for_update(of=("self",))
        try:
            return qs.get(pk=ref.id)
        except MODELS[ref.kind].DoesNotExist:
            raise NotFoundError(f"No stock record for {ref}")

    @staticmethod
    def _label(ref, row):
        if ref.kind == ProductKind.FG:
            return f"{row.product_name} ({row.sku_code})"
        return row.master_product.name

    def _level(self, ref, row):
        if ref.kind == ProductKind.FG:
            return StockLevel(
                label=self._label(ref, row),
                available=row.available_quantity,
                reserved=row.reserved_quantity,
                available_weight=row.available_weight_kg,
                reserved_weight=row.reserved_weight_kg,
            )
        return StockLevel(label=self._label(ref, row), available=row.available_qty)

    def _plan(self, ref, row, columns, deltas, strict):
        """Computes every before/after first so a failed floor check writes nothing."""
        changes = {}
        for field, delta in deltas.items():
            before = getattr(row, columns[field])
            raw_after = before + delta
            if raw_after < 0:
                if field in strict:
                    logger.warning(
                        f"Stock floor hit for {ref} {field}: before={before} delta={delta}"
                    )
                    raise InsufficientStockError.for_product(
                        self._label(ref, row), requested=-delta, available=before
                    )
                logger.warning(f"Clamping {field} of {ref} at zero (before={before}, delta={delta})")
                raw_after = ZERO
            changes[field] = StockChange(before=before, after=raw_after)
        return changes


class RowLockStockStore(StockStore):
    """SELECT ... FOR UPDATE on the stock row, then a single UPDATE."""

    def apply(self, ref, deltas, strict=(), guard=None):
        deltas = {field: to_decimal(delta) for field, delta in deltas.items()}
        columns = self._columns(ref, deltas)

        with transaction.atomic():
            row = self._get_row(ref, lock=True)
            changes = self._plan(ref, row, columns, deltas, strict)
            if guard is not None:
                guard(self._level(ref, row), changes)
            MODELS[ref.kind].objects.filter(pk=ref.id).update(
                **{columns[f]: change.after for f, change in changes.items()}
            )
        return changes


class OptimisticStockStore(StockStore):
    """
    Compare-and-swap: UPDATE ... WHERE column = <value read>. A concurrent
    writer makes the update match zero rows and the read is retried.
    """

    def __init__(self, retries=None):
        self.retries = retries or getattr(settings, "INVENTORY_CAS_RETRIES", 5)

    def apply(self, ref, deltas, strict=(), guard=None):
        deltas = {field: to_decimal(delta) for field, delta in deltas.items()}
        columns = self._columns(ref, deltas)

        for attempt in range(1, self.retries + 1):
            with transaction.atomic():
                row = self._get_row(ref, lock=False)
                changes = self._plan(ref, row, columns, deltas, strict)
                if guard is not None:
                    guard(self._level(ref, row), changes)
                expected = {columns[f]: change.before for f, change in changes.items()}
                updated = MODELS[ref.kind].objects.filter(pk=ref.id, **expected).update(
                    **{columns[f]: change.after for f, change in changes.items()}
                )
            if updated:
                return changes
            logger.info(f"CAS conflict on {ref} (attempt {attempt}/{self.retries}), retrying")

        logger.error(f"Gave up updating stock for {ref} after {self.retries} CAS attempts")
        raise StockContentionError(
            "Stock is being updated by another request. Please retry."
        )


STORES = {
    "row_lock": RowLockStockStore,
    "optimistic": OptimisticStockStore,
}


def get_stock_store():
    name = getattr(settings, "INVENTORY_STOCK_STORE", "row_lock")
    if name not in STORES:
        raise ImproperlyConfigured(
            f"Unknown INVENTORY_STOCK_STORE '{name}' (expected one of {sorted(STORES)})"
        )
    return STORES[name]()
