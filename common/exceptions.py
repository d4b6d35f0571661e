from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any

from django.http import Http404
from rest_framework import status
from rest_framework.exceptions import (
    APIException,
    AuthenticationFailed,
    MethodNotAllowed,
    NotAuthenticated,
    NotFound,
    ParseError,
    PermissionDenied,
    Throttled,
    UnsupportedMediaType,
    ValidationError,
)
from rest_framework.response import Response
from rest_framework.views import exception_handler as drf_exception_handler

from common.errors import DomainError

logger = logging.getLogger(__name__)

GENERIC_SERVER_ERROR_MESSAGE = "An unexpected error occurred."

EXCEPTION_CODE_MAP: dict[type[Exception], str] = {
    ValidationError: "validation_error",
    NotAuthenticated: "not_authenticated",
    AuthenticationFailed: "authentication_failed",
    PermissionDenied: "permission_denied",
    NotFound: "not_found",
    MethodNotAllowed: "method_not_allowed",
    UnsupportedMediaType: "unsupported_media_type",
    ParseError: "parse_error",
    Throttled: "throttled",
}


def build_error_envelope(*, code: str, message: str, errors: Any, status_code: int) -> dict[str, Any]:
    return {
        "code": code,
        "message": message,
        "errors": errors,
        "status": status_code,
    }


def error_response(
    *,
    code: str,
    message: str,
    errors: Any = None,
    status_code: int = status.HTTP_400_BAD_REQUEST,
) -> Response:
    return Response(
        build_error_envelope(code=code, message=message, errors=errors, status_code=status_code),
        status=status_code,
    )


def domain_error_response(exc: DomainError) -> Response:
    return error_response(
        code=exc.code,
        message=exc.message,
        errors=exc.errors,
        status_code=exc.status_code,
    )


def custom_exception_handler(exc: Exception, context: dict[str, Any]) -> Response:
    view_name = context.get("view").__class__.__name__ if context.get("view") else "unknown"

    if isinstance(exc, DomainError):
        log = logger.warning if exc.status_code >= 500 else logger.info
        log("domain_error", extra={"error_code": exc.code, "status_code": exc.status_code, "view": view_name})
        return domain_error_response(exc)

    response = drf_exception_handler(exc, context)

    if response is None:
        logger.exception("Unhandled API exception in %s", view_name)
        return error_response(
            code="internal_server_error",
            message=GENERIC_SERVER_ERROR_MESSAGE,
            errors=None,
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    response.data = build_error_envelope(
        code=_build_code(exc),
        message=_build_message(exc, response.data),
        errors=_normalize_errors(response.data),
        status_code=response.status_code,
    )
    return response


def _build_code(exc: Exception) -> str:
    if isinstance(exc, Http404):
        return "not_found"

    for exception_type, stable_code in EXCEPTION_CODE_MAP.items():
        if isinstance(exc, exception_type):
            return stable_code

    if isinstance(exc, APIException):
        return str(getattr(exc, "default_code", "api_error"))

    return "internal_server_error"


def _build_message(exc: Exception, data: Any) -> str:
    if isinstance(exc, ValidationError):
        return "Validation failed."

    detail = None
    if isinstance(data, Mapping):
        detail = data.get("detail")
    elif isinstance(data, str):
        detail = data

    if detail:
        return str(detail)

    if isinstance(exc, APIException):
        return str(getattr(exc, "detail", "Request failed."))

    return GENERIC_SERVER_ERROR_MESSAGE


def _normalize_errors(data: Any) -> Any:
    if isinstance(data, Mapping):
        if set(data.keys()) == {"detail"}:
            return None
        return data

    if isinstance(data, Sequence) and not isinstance(data, str):
        return data

    return None
