"""Cross-cutting pieces of the leave service: errors, audit log, paging, rate limits."""

from clinic.common.audit import AuditTrail, create_audit_entry
from clinic.common.exceptions import (
    AppException,
    ConflictError,
    ConflictException,
    ForbiddenException,
    InsufficientBalanceException,
    NotFoundException,
    ValidationException,
    register_exception_handlers,
)
from clinic.common.pagination import PageRequest, PaginatedResponse, paginate, page_request

__all__ = [
    "AppException",
    "AuditTrail",
    "ConflictError",
    "ConflictException",
    "ForbiddenException",
    "InsufficientBalanceException",
    "NotFoundException",
    "PageRequest",
    "PaginatedResponse",
    "ValidationException",
    "create_audit_entry",
    "page_request",
    "paginate",
    "register_exception_handlers",
]
