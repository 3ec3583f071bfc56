"""
Standardized error responses for the loyalty API
"""
from typing import Optional, Dict, Any
from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from pydantic import BaseModel
import logging
import time

logger = logging.getLogger(__name__)

class ErrorDetail(BaseModel):
    """Detailed error information"""
    code: str
    message: str
    field: Optional[str] = None
    context: Optional[Dict[str, Any]] = None

class StandardErrorResponse(BaseModel):
    """Standard error response format"""
    success: bool = False
    error: ErrorDetail
    timestamp: float

class ErrorCodes:
    """Standard error codes"""
    # Authentication
    UNAUTHORIZED = "UNAUTHORIZED"
    LOGIN_TAKEN = "LOGIN_TAKEN"

    # Validation
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_ORDER_NUMBER = "INVALID_ORDER_NUMBER"

    # Business Logic
    ORDER_CONFLICT = "ORDER_CONFLICT"
    INSUFFICIENT_FUNDS = "INSUFFICIENT_FUNDS"

    # System Errors
    INTERNAL_SERVER_ERROR = "INTERNAL_SERVER_ERROR"
    DATABASE_ERROR = "DATABASE_ERROR"

STATUS_CODES = {
    ErrorCodes.UNAUTHORIZED: 401,
    ErrorCodes.LOGIN_TAKEN: 409,
    ErrorCodes.VALIDATION_ERROR: 400,
    ErrorCodes.INVALID_ORDER_NUMBER: 422,
    ErrorCodes.ORDER_CONFLICT: 409,
    ErrorCodes.INSUFFICIENT_FUNDS: 402,
    ErrorCodes.DATABASE_ERROR: 503,
}

class BusinessLogicError(Exception):
    """Outcome the caller can act on; never retried"""
    code = ErrorCodes.VALIDATION_ERROR

    def __init__(self, message: str = "", field: str = None, context: Dict[str, Any] = None, code: str = None):
        self.code = code or self.code
        self.message = message or self.code
        self.field = field
        self.context = context or {}
        super().__init__(self.message)

class ServiceError(Exception):
    """Infrastructure failure (store, oracle)"""
    def __init__(self, code: str, message: str, original_error: Exception = None):
        self.code = code
        self.message = message
        self.original_error = original_error
        super().__init__(message)

def create_error_response(
    error_code: str,
    message: str,
    status_code: int = 500,
    field: str = None,
    context: Dict[str, Any] = None,
) -> JSONResponse:
    """Create standardized error response"""
    error_response = StandardErrorResponse(
        error=ErrorDetail(code=error_code, message=message, field=field, context=context),
        timestamp=time.time(),
    )
    return JSONResponse(status_code=status_code, content=error_response.model_dump())

async def business_logic_exception_handler(request: Request, exc: BusinessLogicError):
    status_code = STATUS_CODES.get(exc.code, 400)
    logger.info(f"{request.method} {request.url.path} -> {status_code} {exc.code}: {exc.message}")
    return create_error_response(
        error_code=exc.code,
        message=exc.message,
        status_code=status_code,
        field=exc.field,
        context=exc.context or None,
    )

async def service_exception_handler(request: Request, exc: ServiceError):
    status_code = STATUS_CODES.get(exc.code, 500)
    logger.error(f"Service error: {exc.code} - {exc.message}", extra={
        "original_error": str(exc.original_error) if exc.original_error else None
    })
    return create_error_response(error_code=exc.code, message=exc.message, status_code=status_code)

async def validation_exception_handler(request: Request, exc: RequestValidationError):
    first_error = exc.errors()[0]
    field = ".".join(str(loc) for loc in first_error.get("loc", []))
    message = first_error.get("msg", "Validation error")
    return create_error_response(
        error_code=ErrorCodes.VALIDATION_ERROR,
        message=f"Validation error on field '{field}': {message}",
        status_code=400,
        field=field,
    )

async def http_exception_handler(request: Request, exc: HTTPException):
    status_to_code = {
        400: ErrorCodes.VALIDATION_ERROR,
        401: ErrorCodes.UNAUTHORIZED,
    }
    return create_error_response(
        error_code=status_to_code.get(exc.status_code, ErrorCodes.INTERNAL_SERVER_ERROR),
        message=str(exc.detail),
        status_code=exc.status_code,
    )

async def general_exception_handler(request: Request, exc: Exception):
    logger.exception(f"Unexpected error on {request.method} {request.url.path}: {exc}")
    # Don't expose internal error details
    return create_error_response(
        error_code=ErrorCodes.INTERNAL_SERVER_ERROR,
        message="An unexpected error occurred. Please try again later.",
        status_code=500,
    )

def add_error_handlers(app):
    """Add all error handlers to FastAPI app"""
    app.add_exception_handler(BusinessLogicError, business_logic_exception_handler)
    app.add_exception_handler(ServiceError, service_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)
