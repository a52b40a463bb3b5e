# apps/core/tests.py
import json
import logging
import time
from decimal import Decimal
from unittest.mock import patch

from django.db import DatabaseError
from django.test import TestCase, RequestFactory
from django.core.cache import cache
from django.http import JsonResponse

from apps.core.views import RECONCILE_STATUS_KEY, health_check
from apps.core.middleware import CorrelationIDMiddleware, CorrelationIdFilter, get_correlation_id
from apps.utils.logging import StructuredJsonFormatter


class MiddlewareTestCase(TestCase):
    def setUp(self):
        self.factory = RequestFactory()
        self.get_response = lambda req: JsonResponse({"status": "ok", "seen": get_correlation_id()})
        cache.clear()

    def test_correlation_id_generation(self):
        middleware = CorrelationIDMiddleware(self.get_response)
        request = self.factory.get("/")
        response = middleware(request)

        self.assertTrue(response.has_header("X-Request-ID"))
        self.assertIsNotNone(request.correlation_id)
        self.assertEqual(json.loads(response.content)["seen"], response["X-Request-ID"])
        self.assertIsNone(get_correlation_id())

    def test_incoming_request_id_is_kept(self):
        middleware = CorrelationIDMiddleware(self.get_response)
        request = self.factory.get("/", HTTP_X_REQUEST_ID="trace-42")
        response = middleware(request)
        self.assertEqual(response["X-Request-ID"], "trace-42")

    def test_unsafe_request_id_is_replaced(self):
        middleware = CorrelationIDMiddleware(self.get_response)
        request = self.factory.get("/", HTTP_X_REQUEST_ID="bad id\nINFO forged line")
        response = middleware(request)
        self.assertNotIn("forged", response["X-Request-ID"])
        self.assertEqual(len(response["X-Request-ID"]), 36)

    def test_filter_stamps_records(self):
        record = logging.LogRecord("apps.inventory", logging.INFO, __file__, 1, "moved", None, None)
        CorrelationIdFilter().filter(record)
        self.assertEqual(record.correlation_id, "-")


class StructuredJsonFormatterTestCase(TestCase):
    def test_decimal_metadata_and_masking(self):
        record = logging.LogRecord("apps.inventory", logging.WARNING, __file__, 1, "drift", None, None)
        record.metadata = {"available": Decimal("4.5000"), "token": "abc"}
        payload = json.loads(StructuredJsonFormatter().format(record))

        self.assertEqual(payload["metadata"]["available"], "4.5000")
        self.assertEqual(payload["metadata"]["token"], "***MASKED***")


class HealthCheckTestCase(TestCase):
    def setUp(self):
        cache.clear()

    def test_healthy(self):
        response = self.client.get("/health/")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["services"], {"db": "ok", "cache": "ok", "ledger": "unknown"})

    def test_ledger_drift_degrades_but_stays_up(self):
        cache.set(RECONCILE_STATUS_KEY, {"at": time.time(), "mismatched": 2, "broken_chains": 0})
        response = self.client.get("/health/")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "degraded")
        self.assertEqual(response.json()["services"]["ledger"], "drift")

    def test_stale_reconciliation(self):
        cache.set(RECONCILE_STATUS_KEY, {"at": time.time() - 3 * 60 * 60, "mismatched": 0, "broken_chains": 0})
        self.assertEqual(self.client.get("/health/").json()["services"]["ledger"], "stale")

    def test_database_down(self):
        request = RequestFactory().get("/health/")
        with patch("apps.core.views.connection") as connection:
            connection.cursor.side_effect = DatabaseError("gone")
            with self.assertLogs("apps.core.views", level="CRITICAL"):
                response = health_check(request)
        self.assertEqual(response.status_code, 503)
        self.assertEqual(json.loads(response.content)["services"]["db"], "unreachable")
