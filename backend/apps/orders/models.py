import secrets
from decimal import Decimal

from django.conf import settings
from django.db import models
from django.utils import timezone

from apps.catalog.models import Product

User = settings.AUTH_USER_MODEL


def generate_order_number():
    return f"ORD-{timezone.localdate():%Y%m%d}-{secrets.token_hex(3).upper()}"


class Order(models.Model):
    PENDING = "Pending"
    ACCEPTED = "Accepted"
    SCHEDULED = "Scheduled for Production"
    READY_FOR_DISPATCH = "Ready for Dispatch"
    DISPATCHED = "Dispatched"
    DELIVERED = "Delivered"
    CANCELLED = "Cancelled"
    RETURNED = "Returned"

    STATUS_CHOICES = (
        (PENDING, "Pending"),
        (ACCEPTED, "Accepted"),
        (SCHEDULED, "Scheduled for Production"),
        (READY_FOR_DISPATCH, "Ready for Dispatch"),
        (DISPATCHED, "Dispatched"),
        (DELIVERED, "Delivered"),
        (CANCELLED, "Cancelled"),
        (RETURNED, "Returned"),
    )

    order_number = models.CharField(max_length=32, unique=True, default=generate_order_number)
    customer_name = models.CharField(max_length=255)
    status = models.CharField(max_length=30, choices=STATUS_CHOICES, default=PENDING)

    remarks = models.TextField(blank=True, default="")
    admin_remarks = models.TextField(blank=True, default="")

    dispatch = models.ForeignKey(
        "dispatch.Dispatch", on_delete=models.SET_NULL, null=True, blank=True, related_name="orders"
    )
    parent_order = models.ForeignKey(
        "self", on_delete=models.PROTECT, null=True, blank=True, related_name="split_orders"
    )

    created_by = models.ForeignKey(User, on_delete=models.PROTECT, related_name="+")
    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at", "-id"]
        indexes = [
            models.Index(fields=["status", "created_at"]),
        ]

    @property
    def total_amount(self):
        return sum((line.line_total for line in self.details.all()), Decimal("0"))

    def __str__(self):
        return f"Order {self.order_number} ({self.status})"


class OrderDetail(models.Model):
    """
    One order line. reservation_state tracks the line's hold on SKU stock:
    unreserved -> reserved -> consumed | released.
    """
    UNRESERVED = "unreserved"
    RESERVED = "reserved"
    CONSUMED = "consumed"
    RELEASED = "released"

    RESERVATION_STATE_CHOICES = (
        (UNRESERVED, "Unreserved"),
        (RESERVED, "Reserved"),
        (CONSUMED, "Consumed"),
        (RELEASED, "Released"),
    )

    order = models.ForeignKey(Order, on_delete=models.CASCADE, related_name="details")
    product = models.ForeignKey(Product, on_delete=models.PROTECT, related_name="order_lines")

    quantity = models.DecimalField(max_digits=18, decimal_places=4)
    unit_price = models.DecimalField(max_digits=14, decimal_places=2, default=0)
    discount = models.DecimalField(max_digits=5, decimal_places=2, default=0, help_text="Percent")
    required_weight_kg = models.DecimalField(max_digits=18, decimal_places=4, default=0)

    reserved_fg = models.BooleanField(default=False)
    reservation_state = models.CharField(
        max_length=12, choices=RESERVATION_STATE_CHOICES, default=UNRESERVED
    )

    class Meta:
        ordering = ["id"]

    @property
    def line_total(self):
        gross = self.quantity * self.unit_price
        return (gross * (Decimal("100") - self.discount) / Decimal("100")).quantize(Decimal("0.01"))

    def __str__(self):
        return f"{self.product.sku_code} x {self.quantity} [{self.reservation_state}]"
