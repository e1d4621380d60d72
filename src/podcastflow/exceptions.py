"""
Domain exceptions and FastAPI exception handlers with request ID support
Error response format: { error, code, status_code, request_id, details? }
"""
from fastapi import Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
import logging
from typing import Optional, Dict, Any

from .logging_config import get_request_id

logger = logging.getLogger(__name__)


class TenantError(Exception):
    """Base class for tenant resolution and schema errors"""


class InvalidTenantError(TenantError):
    """Organization slug cannot be mapped to a schema name"""


class TenantAccessDenied(TenantError):
    """Caller attempted to reach another organization's data"""

    def __init__(self, user_id: int, target_organization_id: int):
        self.user_id = user_id
        self.target_organization_id = target_organization_id
        super().__init__(
            f"User {user_id} may not access organization {target_organization_id}"
        )


class ShowHasOrdersError(Exception):
    """Show cannot be deleted while orders reference it"""

    def __init__(self, show_id: str, order_count: int):
        self.show_id = show_id
        self.order_count = order_count
        super().__init__(f"Cannot delete show with {order_count} existing orders")


class EmailProviderError(Exception):
    """Raised when an email transport fails or refuses a message"""


class TemplateNotFoundError(Exception):
    """No org, system or built-in template exists for a key"""

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"Email template not found: {key}")


class ErrorResponse:
    """
    Standard error response format

    Schema: { error, code, status_code, request_id, details? }
    """

    @staticmethod
    def create(
        message: str,
        code: str,
        status_code: int,
        request_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> dict:
        """
        Create standardized error response

        Args:
            message: Human-readable error message
            code: Error code (e.g., "VALIDATION_ERROR", "AUTH_ERROR", "TENANT_ACCESS_DENIED")
            status_code: HTTP status code
            request_id: Request ID from context (auto-fetched if None)
            details: Optional additional error details

        Returns:
            Dictionary with error details
        """
        if request_id is None:
            request_id = get_request_id()

        response = {
            "error": message,
            "code": code,
            "status_code": status_code,
        }

        if request_id:
            response["request_id"] = request_id

        if details:
            response["details"] = details

        return response


ERROR_CODE_MAP = {
    400: "BAD_REQUEST",
    401: "AUTH_ERROR",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    409: "CONFLICT",
    422: "VALIDATION_ERROR",
    429: "RATE_LIMITED",
    500: "INTERNAL_ERROR",
    503: "SERVICE_UNAVAILABLE",
}


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Handle HTTP exceptions with request ID"""
    request_id = get_request_id()

    error_code = ERROR_CODE_MAP.get(exc.status_code, "HTTP_ERROR")

    detail = exc.detail
    error_message = str(detail) if detail else f"HTTP {exc.status_code} error"
    error_details = None

    # Routes may raise with a dict detail: {"code": ..., "message": ..., **details}
    if isinstance(detail, dict):
        error_message = detail.get("message", str(detail))
        error_code = detail.get("code", error_code)
        error_details = {k: v for k, v in detail.items() if k not in ["message", "code"]} or None

    error_response = ErrorResponse.create(
        message=error_message,
        code=error_code,
        status_code=exc.status_code,
        request_id=request_id,
        details=error_details,
    )

    logger.warning(
        f"HTTP {exc.status_code}: {error_message}",
        extra={"path": request.url.path}
    )

    return JSONResponse(
        status_code=exc.status_code,
        content=error_response,
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handle validation exceptions with request ID"""
    request_id = get_request_id()

    errors = exc.errors()
    error_messages = [f"{err['loc']}: {err['msg']}" for err in errors]
    detail = "; ".join(error_messages)

    error_response = ErrorResponse.create(
        message=f"Validation error: {detail}",
        code="VALIDATION_ERROR",
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        request_id=request_id,
        details={"errors": [{"loc": list(err["loc"]), "msg": err["msg"]} for err in errors]},
    )

    logger.warning(f"Validation error: {detail}", extra={"path": request.url.path})

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=error_response
    )


async def tenant_access_denied_handler(request: Request, exc: TenantAccessDenied) -> JSONResponse:
    """Cross-tenant access attempts surface as 403"""
    error_response = ErrorResponse.create(
        message="Access denied",
        code="TENANT_ACCESS_DENIED",
        status_code=status.HTTP_403_FORBIDDEN,
    )
    return JSONResponse(status_code=status.HTTP_403_FORBIDDEN, content=error_response)


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle general exceptions with request ID"""
    request_id = get_request_id()

    # Don't expose internal error details outside dev
    from .config import config
    error_message = "Internal server error"
    error_details = None

    if config.ENV == "dev":
        error_message = f"Internal server error: {str(exc)}"
        error_details = {"exception_type": type(exc).__name__}

    error_response = ErrorResponse.create(
        message=error_message,
        code="INTERNAL_ERROR",
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        request_id=request_id,
        details=error_details,
    )

    logger.error(
        f"Unhandled exception: {str(exc)}",
        exc_info=True,
        extra={"path": request.url.path}
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_response
    )
