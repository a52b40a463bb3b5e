from django.db import models
from django.conf import settings
from django.utils import timezone

from apps.utils.immutable import AppendOnlyModel


class AuditLog(AppendOnlyModel):
    """
    Immutable activity log for workflow transitions (orders, batches, dispatches).
    Stock changes themselves are audited by the inventory ledger.
    """
    ACTION_CHOICES = (
        ("order_created", "Order Created"),
        ("order_accepted", "Order Accepted"),
        ("order_ready", "Order Ready for Dispatch"),
        ("order_cancelled", "Order Cancelled"),
        ("order_split", "Order Split"),
        ("order_returned", "Order Returned"),
        ("order_requeued", "Order Re-queued"),
        ("batch_scheduled", "Batch Scheduled"),
        ("batch_completed", "Batch Completed"),
        ("batch_cancelled", "Batch Cancelled"),
        ("dispatch_created", "Dispatch Created"),
        ("dispatch_delivered", "Dispatch Delivered"),
        ("inward_reversed", "Inward Reversed"),
        ("discard_recorded", "Discard Recorded"),
    )

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
    )

    action = models.CharField(max_length=50, choices=ACTION_CHOICES)

    reference_id = models.CharField(
        max_length=100,
        help_text="Order number / Batch no / Dispatch no / document id",
    )

    metadata = models.JSONField(default=dict)

    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["action"]),
            models.Index(fields=["reference_id"]),
        ]

    def __str__(self):
        return f"{self.action} | {self.reference_id}"
