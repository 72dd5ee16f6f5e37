"""Domain errors and their RFC 7807 (application/problem+json) rendering.

Every error the leave engine raises derives from ``AppException``. A
subclass fixes its HTTP status, problem ``type`` slug and default title as
class attributes. Handlers registered in main.py turn them, request
validation failures and plain ``HTTPException`` into problem documents.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

BASE_ERROR_URI = "https://clinic.local/errors"
PROBLEM_MEDIA_TYPE = "application/problem+json"

_HTTP_ERROR_SLUGS = {
    400: "bad-request",
    401: "unauthorized",
    403: "forbidden",
    404: "not-found",
    405: "method-not-allowed",
    429: "rate-limited",
}


def format_days(value: Decimal | int | float) -> str:
    """Render a day count without trailing zeros: ``Decimal("2.0")`` gives ``"2"``."""
    number = Decimal(str(value))
    if number == number.to_integral_value():
        return str(number.to_integral_value())
    return str(number.normalize())


# ═════════════════════════════════════════════════════════════════════
# Error types
# ═════════════════════════════════════════════════════════════════════


class AppException(Exception):
    """Base error carrying everything needed for a problem document."""

    status_code: int = 500
    error_type: str = "internal-error"
    title: str = "Internal Server Error"

    def __init__(
        self,
        detail: str,
        *,
        title: Optional[str] = None,
        errors: Optional[dict[str, list[str]]] = None,
        extensions: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(detail)
        self.detail = detail
        if title is not None:
            self.title = title
        self.errors = errors
        self.extensions = extensions or {}


class NotFoundException(AppException):
    status_code = 404
    error_type = "not-found"

    def __init__(self, entity_type: str, entity_id: Any) -> None:
        super().__init__(
            f"{entity_type} with id '{entity_id}' does not exist.",
            title=f"{entity_type} Not Found",
        )


class ConflictException(AppException):
    """The request clashes with current state (overlap, stale status, references)."""

    status_code = 409
    error_type = "conflict"
    title = "Conflict"

    def __init__(self, detail: str, errors: Optional[dict[str, list[str]]] = None) -> None:
        super().__init__(detail, errors=errors)


class ConflictError(ConflictException):
    """A unique value such as a leave type name is already taken."""

    def __init__(self, field: str, value: Any) -> None:
        super().__init__(
            f"An entry with {field}='{value}' already exists.",
            errors={field: [f"'{value}' is already in use."]},
        )


class ForbiddenException(AppException):
    status_code = 403
    error_type = "forbidden"
    title = "Forbidden"

    def __init__(self, detail: str = "You do not have permission to perform this action.") -> None:
        super().__init__(detail)


class ValidationException(AppException):
    """Business-rule failures reported per field, like request validation."""

    status_code = 422
    error_type = "validation-error"
    title = "Validation Error"

    def __init__(self, errors: dict[str, list[str]]) -> None:
        super().__init__("One or more fields failed validation.", errors=errors)


class InsufficientBalanceException(AppException):
    """A reservation asks for more days than the balance entry has left."""

    status_code = 422
    error_type = "insufficient-balance"
    title = "Insufficient Leave Balance"

    def __init__(self, available: Decimal, requested: Decimal) -> None:
        self.available = available
        self.requested = requested
        super().__init__(
            f"Insufficient leave balance. Available: {format_days(available)}, "
            f"Requested: {format_days(requested)}.",
            extensions={"available": float(available), "requested": float(requested)},
        )


# ═════════════════════════════════════════════════════════════════════
# Rendering
# ═════════════════════════════════════════════════════════════════════


def _problem(
    request: Request,
    *,
    status: int,
    slug: str,
    title: str,
    detail: str,
    errors: Optional[dict[str, list[str]]] = None,
    extensions: Optional[dict[str, Any]] = None,
    headers: Optional[dict[str, str]] = None,
) -> JSONResponse:
    body: dict[str, Any] = {
        "type": f"{BASE_ERROR_URI}/{slug}",
        "title": title,
        "status": status,
        "detail": detail,
        "instance": request.url.path,
    }
    if errors:
        body["errors"] = errors
    if extensions:
        body.update(extensions)
    return JSONResponse(
        status_code=status, content=body, media_type=PROBLEM_MEDIA_TYPE, headers=headers,
    )


async def _on_app_exception(request: Request, exc: AppException) -> JSONResponse:
    return _problem(
        request,
        status=exc.status_code,
        slug=exc.error_type,
        title=exc.title,
        detail=exc.detail,
        errors=exc.errors,
        extensions=exc.extensions,
    )


def _field_name(loc: tuple) -> str:
    # Drop the leading "body" / "query" / "path" segment
    parts = loc[1:] if len(loc) > 1 else loc
    return ".".join(str(p) for p in parts) or "unknown"


async def _on_request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors: dict[str, list[str]] = {}
    for err in exc.errors():
        errors.setdefault(_field_name(tuple(err.get("loc", ()))), []).append(
            err.get("msg", "Invalid value")
        )
    return _problem(
        request,
        status=422,
        slug="validation-error",
        title="Validation Error",
        detail="Request validation failed.",
        errors=errors,
    )


async def _on_http_exception(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    slug = _HTTP_ERROR_SLUGS.get(exc.status_code, "http-error")
    return _problem(
        request,
        status=exc.status_code,
        slug=slug,
        title=slug.replace("-", " ").title(),
        detail=str(exc.detail),
        headers=getattr(exc, "headers", None),
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Install the problem-document handlers on ``app``."""
    app.add_exception_handler(AppException, _on_app_exception)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _on_request_validation)  # type: ignore[arg-type]
    app.add_exception_handler(StarletteHTTPException, _on_http_exception)  # type: ignore[arg-type]
