# apps/utils/idempotency.py
import functools
import hashlib
import json
import logging
import zlib
from django.conf import settings
from django.core.cache import cache
from django.core.serializers.json import DjangoJSONEncoder
from rest_framework.response import Response
from rest_framework import status

logger = logging.getLogger(__name__)

IDEMPOTENCY_HEADERS = ("Idempotency-Key", "X-Idempotency-Key")
REPLAY_HEADER = "X-Idempotent-Replayed"
MAX_KEY_LENGTH = 128


def _read_key(request):
    for header in IDEMPOTENCY_HEADERS:
        value = request.headers.get(header)
        if value:
            return value.strip()
    return None


def build_cache_key(user_id, path, key):
    # Path is hashed so long URLs don't blow the cache key length
    path_digest = hashlib.sha1(path.encode("utf-8")).hexdigest()[:16]
    return f"idempotency:{user_id}:{path_digest}:{key}"


def idempotent(timeout=None, required=False):
    """
    Decorator to ensure safe retry of non-safe HTTP methods (POST, PATCH).
    The first 2xx response for (user, endpoint, key) is stored compressed and
    replayed verbatim on retry, so the wrapped view runs at most once.
    """
    def decorator(func):
        @functools.wraps(func)
        def wrapper(view_instance, request, *args, **kwargs):
            key = _read_key(request)

            if not key:
                if required:
                    return Response(
                        {"error": "Idempotency-Key header is required."},
                        status=status.HTTP_400_BAD_REQUEST
                    )
                return func(view_instance, request, *args, **kwargs)

            # 1. Security: Prevent DoS via massive keys
            if len(key) > MAX_KEY_LENGTH:
                return Response(
                    {"error": f"Idempotency-Key too long (max {MAX_KEY_LENGTH} chars)."},
                    status=status.HTTP_400_BAD_REQUEST
                )

            # 2. Scope key by user + endpoint to prevent collisions/spoofing
            user_id = request.user.id if request.user.is_authenticated else "anon"
            cache_key = build_cache_key(user_id, request.path, key)
            lock_key = f"lock:{cache_key}"

            # 3. Replay
            cached_response = cache.get(cache_key)
            if cached_response:
                try:
                    data_json = zlib.decompress(cached_response["data_compressed"]).decode("utf-8")
                    data = json.loads(data_json)
                    logger.info(f"Idempotent replay for key {key} on {request.path}")
                    response = Response(data, status=cached_response["status"])
                    response[REPLAY_HEADER] = "true"
                    return response
                except (ValueError, zlib.error):
                    logger.warning(f"Corrupt idempotency entry for {cache_key}, re-executing")

            # 4. Acquire Lock (Prevent concurrent execution of same key)
            if not cache.add(lock_key, "processing", timeout=30):
                return Response(
                    {"error": "Duplicate request in progress."},
                    status=status.HTTP_409_CONFLICT
                )

            try:
                response = func(view_instance, request, *args, **kwargs)

                # 5. Cache Success Responses Only (2xx)
                if 200 <= response.status_code < 300:
                    response_json = json.dumps(response.data, cls=DjangoJSONEncoder)
                    compressed_data = zlib.compress(response_json.encode("utf-8"))

                    ttl = timeout or getattr(settings, "IDEMPOTENCY_KEY_TTL", 86400)
                    cache.set(cache_key, {
                        "status": response.status_code,
                        "data_compressed": compressed_data
                    }, timeout=ttl)

                return response
            finally:
                cache.delete(lock_key)
        return wrapper
    return decorator
