import logging

from rest_framework.views import exception_handler
from rest_framework.response import Response
from rest_framework import status

logger = logging.getLogger(__name__)


class BusinessLogicException(Exception):
    """
    Base class for domain-specific errors (e.g., StockOut, bad transition).
    These are expected operational errors, not 500s.
    """
    status_code = status.HTTP_400_BAD_REQUEST
    default_code = "invalid_request"

    def __init__(self, message, code=None, status_code=None):
        self.message = message
        self.code = code or self.default_code
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)


class NotFoundError(BusinessLogicException):
    """Product / master product / document id resolves to nothing. Never retried."""
    status_code = status.HTTP_404_NOT_FOUND
    default_code = "not_found"


class InsufficientStockError(BusinessLogicException):
    """
    A destructive movement would take stock below its floor.
    Raised before any write so the caller never sees a partial mutation.
    """
    status_code = status.HTTP_409_CONFLICT
    default_code = "insufficient_stock"

    def __init__(self, message, product=None, requested=None, available=None, code=None):
        self.product = product
        self.requested = requested
        self.available = available
        if requested is not None and available is not None:
            self.shortfall = requested - available
        else:
            self.shortfall = None
        super().__init__(message, code=code)

    @classmethod
    def for_product(cls, product_label, requested, available):
        shortfall = requested - available
        return cls(
            f"Insufficient stock for {product_label}: requested {requested}, "
            f"available {available} (short by {shortfall})",
            product=product_label,
            requested=requested,
            available=available,
        )


class LedgerWriteError(BusinessLogicException):
    """The audit row could not be written; the enclosing movement is rolled back."""
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_code = "ledger_write_failed"


class InvalidMovementError(BusinessLogicException):
    """Malformed input: wrong sign, unknown movement type, illegal state transition."""
    default_code = "validation_error"


def custom_exception_handler(exc, context):
    """
    Custom DRF Exception Handler.
    Maps BusinessLogicException subclasses to their HTTP status with a standard error structure.
    """
    response = exception_handler(exc, context)

    if isinstance(exc, BusinessLogicException):
        message = exc.message
        if exc.status_code >= 500:
            # Internal detail stays in the logs
            logger.error(f"{exc.__class__.__name__}: {exc.message}")
            message = "The operation could not be completed. Please retry."

        payload = {
            "code": exc.code,
            "message": message,
            "type": exc.__class__.__name__,
        }
        if isinstance(exc, InsufficientStockError) and exc.requested is not None:
            payload["details"] = {
                "product": exc.product,
                "requested": exc.requested,
                "available": exc.available,
                "shortfall": exc.shortfall,
            }
        return Response({"error": payload}, status=exc.status_code)

    if response is not None and response.status_code == 400:
        if "error" not in response.data:
            response.data = {
                "error": {
                    "code": "validation_error",
                    "details": response.data
                }
            }

    return response
