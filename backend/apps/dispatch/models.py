import secrets

from django.conf import settings
from django.db import models
from django.utils import timezone


def generate_dispatch_no():
    return f"DSP-{timezone.localdate():%Y%m%d}-{secrets.token_hex(2).upper()}"


class Dispatch(models.Model):
    """One vehicle trip carrying one or more ready orders."""
    IN_TRANSIT = "In Transit"
    DELIVERED = "Delivered"

    STATUS_CHOICES = (
        (IN_TRANSIT, "In Transit"),
        (DELIVERED, "Delivered"),
    )

    dispatch_no = models.CharField(max_length=32, unique=True, default=generate_dispatch_no)
    vehicle_no = models.CharField(max_length=32)
    driver_name = models.CharField(max_length=255)
    remarks = models.TextField(blank=True, default="")
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=IN_TRANSIT)

    dispatch_date = models.DateTimeField(default=timezone.now)
    delivered_at = models.DateTimeField(null=True, blank=True)
    created_by = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name="+")

    class Meta:
        ordering = ["-dispatch_date", "-id"]
        verbose_name_plural = "dispatches"

    def __str__(self):
        return f"{self.dispatch_no} ({self.vehicle_no})"
