"""
Error Handling Module for HRIS Core

This module provides centralized error handling with:
- A custom exception hierarchy for access and routing failures
- Standardized error responses
- Error logging and tracking

Routing and access errors fall in four caller-recoverable classes:
validation (422), not authorized (403), not found (404) and conflict (409).
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union
from uuid import UUID
import logging

from fastapi import FastAPI, Request, HTTPException, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from sqlalchemy.exc import (
    SQLAlchemyError,
    IntegrityError,
    OperationalError,
    DataError,
)
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger("hris_core.errors")


class ErrorCode(str, Enum):
    """Standardized error codes for the application"""
    
    # Validation Errors (422)
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_INPUT = "INVALID_INPUT"
    APPROVER_COMPOSITION_INVALID = "APPROVER_COMPOSITION_INVALID"
    REJECTION_REASON_REQUIRED = "REJECTION_REASON_REQUIRED"
    INVALID_STATUS_TRANSITION = "INVALID_STATUS_TRANSITION"
    
    # Authentication/Authorization Errors (401/403)
    UNAUTHORIZED = "UNAUTHORIZED"
    TOKEN_INVALID = "TOKEN_INVALID"
    ACCOUNT_DISABLED = "ACCOUNT_DISABLED"
    FORBIDDEN = "FORBIDDEN"
    INSUFFICIENT_PERMISSIONS = "INSUFFICIENT_PERMISSIONS"
    NO_PENDING_STEP = "NO_PENDING_STEP"
    OUT_OF_SCOPE = "OUT_OF_SCOPE"
    SELF_APPROVAL_FORBIDDEN = "SELF_APPROVAL_FORBIDDEN"
    
    # Resource Errors (404/409)
    NOT_FOUND = "NOT_FOUND"
    CASE_NOT_FOUND = "CASE_NOT_FOUND"
    ACTOR_NOT_FOUND = "ACTOR_NOT_FOUND"
    ORG_UNIT_NOT_FOUND = "ORG_UNIT_NOT_FOUND"
    RESOURCE_CONFLICT = "RESOURCE_CONFLICT"
    DUPLICATE_ENTRY = "DUPLICATE_ENTRY"
    VERSION_CONFLICT = "VERSION_CONFLICT"
    
    # Database Errors (500)
    DATABASE_ERROR = "DATABASE_ERROR"
    CONNECTION_ERROR = "CONNECTION_ERROR"
    DATA_INTEGRITY_ERROR = "DATA_INTEGRITY_ERROR"
    
    # Internal Errors (500)
    INTERNAL_ERROR = "INTERNAL_ERROR"
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"


class AppException(Exception):
    """Base exception for all application exceptions"""
    
    def __init__(
        self,
        code: ErrorCode,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: Optional[Dict[str, Any]] = None,
        field: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ):
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        self.field = field
        self.original_error = original_error
        self.timestamp = datetime.now(timezone.utc)
        super().__init__(self.message)
    
    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for JSON response"""
        result = {
            "code": self.code.value,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.field:
            result["field"] = self.field
        if self.details:
            result["details"] = self.details
        return result


# ============================================================================
# Validation Exceptions
# ============================================================================

class ValidationException(AppException):
    """Base validation exception. Raised before any state is mutated."""
    
    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        code: ErrorCode = ErrorCode.VALIDATION_ERROR,
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details=details,
            field=field,
        )


class CompositionConstraintException(ValidationException):
    """Selected approvers do not satisfy the case type's constraints"""
    
    def __init__(self, violations: List[str]):
        super().__init__(
            message=violations[0],
            field="approvers",
            code=ErrorCode.APPROVER_COMPOSITION_INVALID,
            details={"violations": violations},
        )
        self.violations = violations


class RejectionReasonRequiredException(ValidationException):
    """Declining a step requires a non-blank reason"""
    
    def __init__(self):
        super().__init__(
            message="A reason is required when declining.",
            field="reason",
            code=ErrorCode.REJECTION_REASON_REQUIRED,
        )


class InvalidTransitionException(ValidationException):
    """Requested transition is not legal from the case's current status"""
    
    def __init__(self, operation: str, current_status: str, allowed: List[str]):
        super().__init__(
            message=f"Cannot {operation} a case in status '{current_status}'",
            code=ErrorCode.INVALID_STATUS_TRANSITION,
            details={
                "operation": operation,
                "current_status": current_status,
                "allowed_statuses": allowed,
            },
        )


# ============================================================================
# Authentication/Authorization Exceptions
# ============================================================================

class AuthenticationException(AppException):
    """Base authentication exception"""
    
    def __init__(
        self,
        message: str = "Authentication required",
        code: ErrorCode = ErrorCode.UNAUTHORIZED,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=status.HTTP_401_UNAUTHORIZED,
            details=details,
        )


class TokenInvalidException(AuthenticationException):
    """Token is invalid or expired"""
    
    def __init__(self, message: str = "Invalid access token"):
        super().__init__(
            message=message,
            code=ErrorCode.TOKEN_INVALID,
        )


class NotAuthorizedException(AppException):
    """Actor lacks the permission, the scope, or the pending step"""
    
    def __init__(
        self,
        message: str = "Permission denied",
        required_permission: Optional[str] = None,
        code: ErrorCode = ErrorCode.FORBIDDEN,
        details: Optional[Dict[str, Any]] = None,
    ):
        _details = details or {}
        if required_permission:
            _details["required_permission"] = required_permission
        super().__init__(
            code=code,
            message=message,
            status_code=status.HTTP_403_FORBIDDEN,
            details=_details,
        )


class InsufficientPermissionsException(NotAuthorizedException):
    """Role does not grant the requested permission on a resource"""
    
    def __init__(self, required_permission: str, user_role: Optional[str] = None):
        details = {}
        if user_role:
            details["current_role"] = user_role
        super().__init__(
            message=f"Insufficient permissions. Required: {required_permission}",
            required_permission=required_permission,
            code=ErrorCode.INSUFFICIENT_PERMISSIONS,
            details=details,
        )


class NoPendingStepException(NotAuthorizedException):
    """Acting user has no actionable pending step on the case"""
    
    def __init__(self, case_id: Union[str, UUID], user_id: str, message: Optional[str] = None):
        super().__init__(
            message=message or "You have no pending approval step on this case",
            code=ErrorCode.NO_PENDING_STEP,
            details={"case_id": str(case_id), "user_id": user_id},
        )


class AccountDisabledException(NotAuthorizedException):
    """Actor is inactive in the directory"""

    def __init__(self, user_id: str):
        super().__init__(
            message="Your account is not active",
            code=ErrorCode.ACCOUNT_DISABLED,
            details={"user_id": user_id},
        )


# ============================================================================
# Resource Exceptions
# ============================================================================

class NotFoundException(AppException):
    """Resource not found exception"""
    
    def __init__(
        self,
        resource_type: str,
        resource_id: Optional[Union[str, UUID]] = None,
        message: Optional[str] = None,
        code: ErrorCode = ErrorCode.NOT_FOUND,
    ):
        if message is None:
            if resource_id:
                message = f"{resource_type} with ID '{resource_id}' not found"
            else:
                message = f"{resource_type} not found"
        super().__init__(
            code=code,
            message=message,
            status_code=status.HTTP_404_NOT_FOUND,
            details={"resource_type": resource_type, "resource_id": str(resource_id) if resource_id else None},
        )


class CaseNotFoundException(NotFoundException):
    """Case not found"""
    
    def __init__(self, case_id: Union[str, UUID]):
        super().__init__(
            resource_type="Case",
            resource_id=case_id,
            code=ErrorCode.CASE_NOT_FOUND,
        )


class ActorNotFoundException(NotFoundException):
    """Directory user not found"""
    
    def __init__(self, user_id: str):
        super().__init__(
            resource_type="User",
            resource_id=user_id,
            code=ErrorCode.ACTOR_NOT_FOUND,
        )


class OrgUnitNotFoundException(NotFoundException):
    """Business unit or department not found"""
    
    def __init__(self, unit_id: str):
        super().__init__(
            resource_type="OrgUnit",
            resource_id=unit_id,
            code=ErrorCode.ORG_UNIT_NOT_FOUND,
        )


class ConflictException(AppException):
    """Resource conflict exception"""
    
    def __init__(
        self,
        message: str,
        resource_type: Optional[str] = None,
        code: ErrorCode = ErrorCode.RESOURCE_CONFLICT,
        details: Optional[Dict[str, Any]] = None,
    ):
        _details = details or {}
        if resource_type:
            _details["resource_type"] = resource_type
        super().__init__(
            code=code,
            message=message,
            status_code=status.HTTP_409_CONFLICT,
            details=_details,
        )


class VersionConflictException(ConflictException):
    """Optimistic-concurrency loss: the record changed since it was read"""
    
    def __init__(self, case_id: Union[str, UUID], expected_version: int):
        super().__init__(
            message="This case was just updated by someone else. Please refresh and try again.",
            resource_type="Case",
            code=ErrorCode.VERSION_CONFLICT,
            details={"case_id": str(case_id), "expected_version": expected_version},
        )


# ============================================================================
# Configuration Exceptions
# ============================================================================

class ConfigurationException(AppException):
    """Invalid static configuration detected at startup"""
    
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            code=ErrorCode.CONFIGURATION_ERROR,
            message=message,
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            details=details,
        )


# ============================================================================
# Exception Handlers
# ============================================================================

def create_error_response(
    code: ErrorCode,
    message: str,
    status_code: int,
    details: Optional[Dict[str, Any]] = None,
    field: Optional[str] = None,
) -> JSONResponse:
    """Create a standardized error response"""
    content = {
        "detail": {
            "code": code.value,
            "message": message,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
    }
    if field:
        content["detail"]["field"] = field
    if details:
        content["detail"]["details"] = details
    
    return JSONResponse(status_code=status_code, content=content)


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handle AppException"""
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        f"AppException: {exc.code.value} - {exc.message}",
        extra={
            "code": exc.code.value,
            "path": request.url.path,
            "method": request.method,
            "details": exc.details,
        },
        exc_info=exc.original_error,
    )
    
    return create_error_response(
        code=exc.code,
        message=exc.message,
        status_code=exc.status_code,
        details=exc.details,
        field=exc.field,
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handle HTTPException"""
    code_map = {
        400: ErrorCode.INVALID_INPUT,
        401: ErrorCode.UNAUTHORIZED,
        403: ErrorCode.FORBIDDEN,
        404: ErrorCode.NOT_FOUND,
        409: ErrorCode.RESOURCE_CONFLICT,
        422: ErrorCode.VALIDATION_ERROR,
        500: ErrorCode.INTERNAL_ERROR,
    }
    
    error_code = code_map.get(exc.status_code, ErrorCode.INTERNAL_ERROR)
    message = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
    
    logger.warning(
        f"HTTPException: {exc.status_code} - {message}",
        extra={"path": request.url.path, "method": request.method},
    )
    
    return create_error_response(
        code=error_code,
        message=message,
        status_code=exc.status_code,
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handle Pydantic validation errors"""
    errors = []
    for error in exc.errors():
        field = ".".join(str(loc) for loc in error["loc"])
        errors.append({
            "field": field,
            "message": error["msg"],
            "type": error["type"],
        })
    
    logger.warning(
        f"ValidationError: {len(errors)} validation errors",
        extra={"path": request.url.path, "method": request.method, "errors": errors},
    )
    
    return create_error_response(
        code=ErrorCode.VALIDATION_ERROR,
        message="Request validation failed",
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        details={"errors": errors},
    )


async def sqlalchemy_exception_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    """Handle SQLAlchemy errors"""
    error_message = "A database error occurred"
    error_code = ErrorCode.DATABASE_ERROR
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    
    if isinstance(exc, IntegrityError):
        error_message = "Data integrity constraint violated"
        error_code = ErrorCode.DATA_INTEGRITY_ERROR
        error_str = str(exc.orig).lower() if exc.orig else ""
        if "unique" in error_str or "duplicate" in error_str:
            error_message = "A record with this value already exists"
            error_code = ErrorCode.DUPLICATE_ENTRY
            status_code = status.HTTP_409_CONFLICT
    elif isinstance(exc, OperationalError):
        error_message = "Database operation failed"
        error_code = ErrorCode.CONNECTION_ERROR
    elif isinstance(exc, DataError):
        error_message = "Invalid data format for database"
        status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    
    logger.error(
        f"SQLAlchemyError: {type(exc).__name__} - {str(exc)}",
        extra={"path": request.url.path, "method": request.method},
        exc_info=True,
    )
    
    return create_error_response(
        code=error_code,
        message=error_message,
        status_code=status_code,
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unhandled exceptions"""
    logger.critical(
        f"UnhandledException: {type(exc).__name__} - {str(exc)}",
        extra={"path": request.url.path, "method": request.method},
        exc_info=True,
    )
    
    return create_error_response(
        code=ErrorCode.INTERNAL_ERROR,
        message="An unexpected error occurred. Please try again later.",
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
    )


def setup_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers with the FastAPI application"""
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(SQLAlchemyError, sqlalchemy_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)


# ============================================================================
# Error Tracking Middleware
# ============================================================================

class ErrorTrackingMiddleware:
    """ASGI middleware that logs every request failing with an exception"""
    
    def __init__(self, app):
        self.app = app
    
    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return
        
        try:
            await self.app(scope, receive, send)
        except Exception as exc:
            logger.error(
                f"Request failed: {scope.get('method', '?')} {scope.get('path', 'unknown')}",
                extra={
                    "path": scope.get("path"),
                    "method": scope.get("method"),
                    "exception_type": type(exc).__name__,
                },
                exc_info=True,
            )
            raise


__all__ = [
    # Base
    "AppException",
    "ErrorCode",
    
    # Validation
    "ValidationException",
    "CompositionConstraintException",
    "RejectionReasonRequiredException",
    "InvalidTransitionException",
    
    # Auth
    "AuthenticationException",
    "TokenInvalidException",
    "NotAuthorizedException",
    "InsufficientPermissionsException",
    "NoPendingStepException",
    "AccountDisabledException",
    
    # Resource
    "NotFoundException",
    "CaseNotFoundException",
    "ActorNotFoundException",
    "OrgUnitNotFoundException",
    "ConflictException",
    "VersionConflictException",
    
    # Configuration
    "ConfigurationException",
    
    # Handlers
    "setup_exception_handlers",
    "create_error_response",
    "ErrorTrackingMiddleware",
]
