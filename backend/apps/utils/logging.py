import logging
import json
import re
from decimal import Decimal


class StructuredJsonFormatter(logging.Formatter):
    """
    Structured JSON logging with secret masking.
    Safe for production log aggregation systems.
    """

    SENSITIVE_PATTERNS = {
        r'"password":\s*".*?"': '"password": "***MASKED***"',
        r'"token":\s*".*?"': '"token": "***MASKED***"',
        r'"secret":\s*".*?"': '"secret": "***MASKED***"',
        r'"authorization":\s*".*?"': '"authorization": "***MASKED***"',
    }

    SENSITIVE_KEYS = {'password', 'token', 'secret', 'authorization', 'api_key', 'idempotency_key'}

    def format(self, record):
        log_record = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "path": record.pathname,
            "line_no": record.lineno,
            "correlation_id": getattr(record, "correlation_id", "N/A"),
        }

        if hasattr(record, "metadata") and isinstance(record.metadata, dict):
            log_record["metadata"] = self._recursive_scrub(record.metadata)

        if record.exc_info:
            log_record["exception"] = self.formatException(record.exc_info)

        try:
            json_output = json.dumps(log_record, default=self._default)
        except (TypeError, ValueError):
            log_record["metadata"] = str(getattr(record, "metadata", ""))
            json_output = json.dumps(log_record)

        for pattern, replacement in self.SENSITIVE_PATTERNS.items():
            json_output = re.sub(pattern, replacement, json_output)

        return json_output

    @staticmethod
    def _default(value):
        # Stock quantities are Decimals
        if isinstance(value, Decimal):
            return str(value)
        raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")

    def _recursive_scrub(self, data, depth=0):
        """
        Recursively traverse dicts/lists to mask sensitive keys.
        Depth limited so hostile payloads can't blow the stack.
        """
        if depth > 10:
            return "[MAX_DEPTH_EXCEEDED]"

        if isinstance(data, dict):
            return {
                k: ("***MASKED***" if str(k).lower() in self.SENSITIVE_KEYS and isinstance(v, (str, int))
                    else self._recursive_scrub(v, depth + 1))
                for k, v in data.items()
            }
        elif isinstance(data, list):
            return [self._recursive_scrub(i, depth + 1) for i in data]

        return data
