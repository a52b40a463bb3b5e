from django.core.serializers.json import DjangoJSONEncoder
import json

from .models import AuditLog


def _jsonable(metadata):
    # Decimals and dates become strings so the JSONField accepts them
    return json.loads(json.dumps(metadata, cls=DjangoJSONEncoder))


class AuditService:
    """
    Centralized activity logging.
    Writes immutable logs for traceability of workflow decisions.
    """

    @staticmethod
    def log(action, reference_id, user, metadata):
        return AuditLog.objects.create(
            user=user,
            action=action,
            reference_id=str(reference_id),
            metadata=_jsonable(metadata or {}),
        )

    @staticmethod
    def order_event(action, order, user, **metadata):
        metadata.setdefault("status", order.status)
        return AuditService.log(action, order.order_number, user, metadata)

    @staticmethod
    def order_split(original, new_orders, user):
        return AuditService.log(
            action="order_split",
            reference_id=original.order_number,
            user=user,
            metadata={"new_orders": [o.order_number for o in new_orders]},
        )

    @staticmethod
    def batch_event(action, batch, user, **metadata):
        metadata.setdefault("status", batch.status)
        return AuditService.log(action, batch.batch_no, user, metadata)

    @staticmethod
    def dispatch_event(action, dispatch, user, **metadata):
        return AuditService.log(action, dispatch.dispatch_no, user, metadata)

    @staticmethod
    def inward_reversed(inward, user, ledger_entry):
        return AuditService.log(
            action="inward_reversed",
            reference_id=f"inward:{inward.id}",
            user=user,
            metadata={
                "quantity": inward.quantity,
                "ledger_entry": ledger_entry.id,
            },
        )

    @staticmethod
    def discard_recorded(discard, user):
        return AuditService.log(
            action="discard_recorded",
            reference_id=f"discard:{discard.id}",
            user=user,
            metadata={
                "kind": discard.product_kind,
                "quantity": discard.quantity,
                "reason": discard.reason,
                "placeholder_sku": discard.product_id if discard.master_product_id else None,
            },
        )
