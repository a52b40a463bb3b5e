"""
Transaction Recorder: append-only writes to the stock ledger.
"""
import logging
from decimal import Decimal

from django.conf import settings
from django.db import DatabaseError, transaction

from apps.utils.exceptions import InvalidMovementError, LedgerWriteError
from .models import InventoryTransaction, TransactionType, ReferenceType

logger = logging.getLogger(__name__)

TWO_PLACES = Decimal("0.01")


class TransactionRecorder:

    @staticmethod
    def validate(transaction_type, reference_type=None):
        if transaction_type not in TransactionType.KNOWN:
            raise InvalidMovementError(f"Unknown transaction type '{transaction_type}'")
        if reference_type is not None and reference_type not in ReferenceType.KNOWN:
            raise InvalidMovementError(f"Unknown reference type '{reference_type}'")

    @staticmethod
    def record(
        ref,
        transaction_type,
        quantity,
        change,
        created_by,
        reference_type=None,
        reference_id=None,
        weight_kg=None,
        density_kg_per_l=None,
        unit_price=None,
        notes=None,
    ):
        """
        Appends one ledger row with the before/after already applied to stock.

        Must run inside the same atomic block as the stock update. A failed
        insert is retried in a fresh savepoint with the same values; if every
        attempt fails LedgerWriteError propagates and the caller's block
        rolls the stock change back with it.
        """
        TransactionRecorder.validate(transaction_type, reference_type)

        if change.after != change.before + quantity:
            raise InvalidMovementError(
                f"Ledger row for {ref} out of balance: {change.before} + {quantity} != {change.after}"
            )

        total_value = None
        if unit_price is not None:
            total_value = (abs(quantity) * Decimal(str(unit_price))).quantize(TWO_PLACES)

        values = dict(
            transaction_type=transaction_type,
            quantity=quantity,
            weight_kg=weight_kg,
            density_kg_per_l=density_kg_per_l,
            balance_before=change.before,
            balance_after=change.after,
            reference_type=reference_type,
            reference_id=reference_id,
            unit_price=unit_price,
            total_value=total_value,
            notes=notes or "",
            created_by=created_by,
            **ref.ledger_fields(),
        )

        attempts = max(1, getattr(settings, "INVENTORY_LEDGER_WRITE_ATTEMPTS", 3))
        last_error = None
        for attempt in range(1, attempts + 1):
            try:
                with transaction.atomic():
                    row = TransactionRecorder._insert(values)
                if attempt > 1:
                    logger.error(
                        f"Ledger row for {ref} written on attempt {attempt} after earlier failures",
                        extra={"metadata": {"ref": str(ref), "transaction_type": transaction_type}},
                    )
                return row
            except DatabaseError as e:
                last_error = e
                logger.error(
                    f"Ledger insert failed for {ref} ({transaction_type}, {quantity}) "
                    f"attempt {attempt}/{attempts}: {e}",
                    extra={"metadata": {
                        "ref": str(ref),
                        "balance_before": change.before,
                        "balance_after": change.after,
                    }},
                )

        raise LedgerWriteError(
            f"Could not record {transaction_type} for {ref} after {attempts} attempts: {last_error}"
        )

    @staticmethod
    def _insert(values):
        return InventoryTransaction.objects.create(**values)

    @staticmethod
    def history(ref):
        return InventoryTransaction.objects.filter(**{
            k: v for k, v in ref.ledger_fields().items() if v is not None
        })

    @staticmethod
    def latest_balance(ref):
        row = TransactionRecorder.history(ref).order_by("-id").only("balance_after").first()
        return row.balance_after if row else None
