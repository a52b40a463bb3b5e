from decimal import Decimal

from django.contrib.auth import get_user_model
from django.test import TestCase
from rest_framework.test import APIClient

from apps.audit.models import AuditLog
from apps.audit.services import AuditService

User = get_user_model()


class AuditLogTestCase(TestCase):
    def setUp(self):
        self.user = User.objects.create_user(username="auditor", password="pw")

    def test_immutability(self):
        log = AuditLog.objects.create(
            user=self.user, action="order_created", reference_id="REF123"
        )

        log.action = "order_cancelled"
        with self.assertRaises(RuntimeError):
            log.save()
        with self.assertRaises(RuntimeError):
            log.delete()
        with self.assertRaises(RuntimeError):
            AuditLog.objects.filter(pk=log.pk).update(action="order_cancelled")
        with self.assertRaises(RuntimeError):
            AuditLog.objects.all().delete()

    def test_log_serializes_decimals(self):
        log = AuditService.log("discard_recorded", 7, self.user, {"quantity": Decimal("2.5000")})
        log.refresh_from_db()
        self.assertEqual(log.reference_id, "7")
        self.assertEqual(log.metadata["quantity"], "2.5000")


class AuditLogAPITestCase(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.staff = User.objects.create_user(username="boss", password="pw", is_staff=True)
        self.clerk = User.objects.create_user(username="clerk", password="pw")
        AuditService.log("order_created", "ORD-1", self.staff, {})
        AuditService.log("order_cancelled", "ORD-2", self.staff, {})

    def test_staff_can_filter_by_reference(self):
        self.client.force_authenticate(self.staff)
        response = self.client.get("/api/v1/audit/", {"reference_id": "ORD-2"})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["count"], 1)
        self.assertEqual(response.data["results"][0]["action"], "order_cancelled")

    def test_non_staff_forbidden(self):
        self.client.force_authenticate(self.clerk)
        response = self.client.get("/api/v1/audit/")
        self.assertEqual(response.status_code, 403)

    def test_filter_by_action_and_actor(self):
        AuditService.log("order_cancelled", "ORD-3", self.clerk, {})
        self.client.force_authenticate(self.staff)
        response = self.client.get("/api/v1/audit/", {"action": "order_cancelled", "performed_by": "clerk"})
        self.assertEqual(response.data["count"], 1)
        self.assertEqual(response.data["results"][0]["reference_id"], "ORD-3")
        self.assertEqual(response.data["results"][0]["performed_by"], "clerk")
