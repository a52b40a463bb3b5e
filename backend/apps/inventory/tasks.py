# apps/inventory/tasks.py
import logging
import time

from celery import shared_task
from django.core.cache import cache

from apps.catalog.models import Product, RawMaterialDetail, PackagingMaterialDetail
from apps.core.views import RECONCILE_STATUS_KEY
from .ledger import TransactionRecorder
from .resolver import ProductKind, ProductRef
from .services import InventorySelector

logger = logging.getLogger(__name__)


def _stock_rows():
    for sku in Product.objects.filter(is_placeholder=False).values_list("id", "available_quantity"):
        yield ProductRef.sku(sku[0]), sku[1]
    for detail_model, kind in ((RawMaterialDetail, ProductKind.RM), (PackagingMaterialDetail, ProductKind.PM)):
        for master_id, available in detail_model.objects.values_list("master_product_id", "available_qty"):
            yield ProductRef(kind, master_id), available


def broken_links(ref):
    """Ledger rows whose balance_before does not continue the previous row's balance_after."""
    broken = []
    previous = None
    rows = TransactionRecorder.history(ref).order_by("id").values_list("id", "balance_before", "balance_after")
    for row_id, before, after in rows.iterator():
        if previous is not None and before != previous:
            broken.append(row_id)
        previous = after
    return broken


@shared_task
def reconcile_stock_ledger():
    """
    Compares each product's stock column with the last balance the ledger
    recorded for it, and walks the balance chain. Read-only: mismatches
    are reported, never corrected.
    """
    checked = 0
    mismatched = []
    untracked = []
    chains = []

    for ref, available in _stock_rows():
        checked += 1
        latest = TransactionRecorder.latest_balance(ref)
        if latest is None:
            if available:
                untracked.append(str(ref))
            continue

        if latest != available:
            mismatched.append(str(ref))
            logger.warning(
                f"Ledger drift on {ref}: stock says {available}, ledger ends at {latest}",
                extra={"metadata": {"ref": str(ref), "available": available, "ledger_balance": latest}},
            )

        broken = broken_links(ref)
        if broken:
            chains.append(str(ref))
            logger.warning(
                f"Broken ledger chain on {ref} at rows {broken[:10]}",
                extra={"metadata": {"ref": str(ref), "rows": broken[:50]}},
            )

    oversold = list(InventorySelector.oversold_skus().values_list("sku_code", flat=True))
    if oversold:
        logger.warning(f"Oversold SKUs (reserved > available): {', '.join(oversold)}")
    if untracked:
        logger.info(f"{len(untracked)} stocked product(s) have no ledger history; run backfill_initial_stock")

    summary = {
        "checked": checked,
        "mismatched": mismatched,
        "broken_chains": chains,
        "untracked": untracked,
        "oversold": oversold,
    }
    cache.set(RECONCILE_STATUS_KEY, {
        "at": time.time(),
        "mismatched": len(mismatched),
        "broken_chains": len(chains),
    }, timeout=None)
    logger.info(
        f"Ledger reconciliation: {checked} checked, {len(mismatched)} drifted, "
        f"{len(chains)} broken chains, {len(oversold)} oversold"
    )
    return summary


@shared_task
def report_low_stock():
    rows = InventorySelector.low_stock()
    for row in rows:
        logger.warning(
            f"Low stock: {row['name']} ({row['kind']}) at {row['available']}, minimum {row['min_stock_level']}"
        )
    return len(rows)
