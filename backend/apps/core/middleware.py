import re
import uuid
import logging
from contextvars import ContextVar

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"
_VALID_REQUEST_ID = re.compile(r"^[A-Za-z0-9._:-]{1,64}$")

# Request id of the HTTP call or Celery task currently running
_correlation_id = ContextVar("correlation_id", default=None)


def get_correlation_id():
    return _correlation_id.get()


def bind_correlation_id(value):
    """Sets the active id and returns the token needed to restore the previous one."""
    return _correlation_id.set(value)


def unbind_correlation_id(token):
    _correlation_id.reset(token)


def clean_request_id(value):
    """Client-supplied ids end up in every log line, so only short opaque tokens are kept."""
    if value and _VALID_REQUEST_ID.match(value):
        return value
    return str(uuid.uuid4())


class CorrelationIDMiddleware:
    """
    Tags each request with an id that follows its stock movements through
    the logs and into any Celery task it enqueues.
    """
    def __init__(self, get_response):
        self.get_response = get_response

    def __call__(self, request):
        request_id = clean_request_id(request.headers.get(REQUEST_ID_HEADER))
        token = bind_correlation_id(request_id)
        request.correlation_id = request_id

        try:
            response = self.get_response(request)
            response[REQUEST_ID_HEADER] = request_id
            return response
        finally:
            unbind_correlation_id(token)


class CorrelationIdFilter(logging.Filter):
    def filter(self, record):
        record.correlation_id = get_correlation_id() or "-"
        return True
