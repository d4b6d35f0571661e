from __future__ import annotations

import json
import logging
import re
import time
import uuid
from datetime import datetime, timezone

# Keys services pass through `extra=` that end up as top-level JSON fields.
STRUCTURED_FIELDS = (
    "request_id",
    "method",
    "path",
    "view",
    "status_code",
    "duration_ms",
    "remote_addr",
    "user_id",
    "error_code",
    "code_format",
    "code",
    "attempt",
    "existing_count",
    "product_id",
    "movement_id",
    "barcode_count",
    "template_id",
    "customer_id",
)

_REQUEST_ID = re.compile(r"^[A-Za-z0-9._:-]{1,128}$")


class JsonFormatter(logging.Formatter):
    """One JSON object per line; UUIDs and Decimals are written as strings."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in STRUCTURED_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                payload[key] = value
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def _incoming_request_id(request) -> str:
    candidate = (request.headers.get("X-Request-ID") or "").strip()
    if candidate and _REQUEST_ID.match(candidate):
        return candidate
    return str(uuid.uuid4())


class RequestLogMiddleware:
    """Tag each request with an X-Request-ID and write one access line when it finishes.

    Client errors are logged at WARNING and server errors at ERROR so failed
    stock entries and label prints stand out from routine traffic.
    """

    def __init__(self, get_response):
        self.get_response = get_response
        self.logger = logging.getLogger("api.request")

    def __call__(self, request):
        started_at = time.perf_counter()
        request.request_id = _incoming_request_id(request)

        response = self.get_response(request)

        user = getattr(request, "user", None)
        match = getattr(request, "resolver_match", None)
        status_code = response.status_code
        if status_code >= 500:
            level = logging.ERROR
        elif status_code >= 400:
            level = logging.WARNING
        else:
            level = logging.INFO

        self.logger.log(
            level,
            "request_completed",
            extra={
                "request_id": request.request_id,
                "method": request.method,
                "path": request.path,
                "view": match.view_name if match else None,
                "status_code": status_code,
                "duration_ms": round((time.perf_counter() - started_at) * 1000, 2),
                "remote_addr": request.META.get("REMOTE_ADDR"),
                "user_id": str(user.id) if getattr(user, "is_authenticated", False) else None,
            },
        )
        response["X-Request-ID"] = request.request_id
        return response
