"""
Typed application errors and the JSON error handlers registered on the app.

Every failure leaves the API as
``{"status": "error", "error": {"code": ..., "message": ..., "fields"?: ...}}``.
"""

from typing import Any, Dict, Optional

from flask import current_app, jsonify
from werkzeug.exceptions import HTTPException


class ErrorCode:
    VALIDATION_ERROR = "VALIDATION_ERROR"
    UNAUTHORIZED = "UNAUTHORIZED"
    TOKEN_EXPIRED = "TOKEN_EXPIRED"
    TOKEN_INVALID = "TOKEN_INVALID"
    FORBIDDEN = "FORBIDDEN"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    INTERNAL_ERROR = "INTERNAL_ERROR"

    INVALID_QR = "INVALID_QR"
    INVALID_OR_EXPIRED_QR = "INVALID_OR_EXPIRED_QR"
    INSUFFICIENT_POINTS = "INSUFFICIENT_POINTS"
    LOYALTY_NOT_READY = "LOYALTY_NOT_READY"
    OFFER_NOT_FOUND = "OFFER_NOT_FOUND"

    BOOKING_VALIDATION_ERROR = "BOOKING_VALIDATION_ERROR"
    BOOKING_SLOT_UNAVAILABLE = "BOOKING_SLOT_UNAVAILABLE"
    BOOKING_PROVIDER_ERROR = "BOOKING_PROVIDER_ERROR"
    BOOKING_NOT_FOUND = "BOOKING_NOT_FOUND"
    BOOKING_NOT_CANCELABLE = "BOOKING_NOT_CANCELABLE"
    CANCEL_NOT_AVAILABLE = "CANCEL_NOT_AVAILABLE"


class AppError(Exception):
    """Base error carrying a stable code and its HTTP status."""

    status_code = 400
    code = ErrorCode.VALIDATION_ERROR

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
        fields: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code
        self.fields = fields

    def to_dict(self) -> Dict[str, Any]:
        error = {"code": self.code, "message": self.message}
        if self.fields:
            error["fields"] = self.fields
        return error


class ValidationError(AppError):
    status_code = 400
    code = ErrorCode.VALIDATION_ERROR


class UnauthorizedError(AppError):
    status_code = 401
    code = ErrorCode.UNAUTHORIZED


class ForbiddenError(AppError):
    status_code = 403
    code = ErrorCode.FORBIDDEN

    def __init__(self, message: str = "Forbidden", **kwargs):
        super().__init__(message, **kwargs)


class NotFoundError(AppError):
    status_code = 404
    code = ErrorCode.NOT_FOUND

    def __init__(self, message: str = "Not found", **kwargs):
        super().__init__(message, **kwargs)


class ConflictError(AppError):
    status_code = 409
    code = ErrorCode.CONFLICT


class InvalidQRError(AppError):
    """Unknown, used, expired or malformed QR. The cause is never exposed."""

    status_code = 400
    code = ErrorCode.INVALID_QR

    def __init__(self, message: str = "QR code is invalid or expired", **kwargs):
        super().__init__(message, **kwargs)


class ProviderError(AppError):
    status_code = 502
    code = ErrorCode.BOOKING_PROVIDER_ERROR

    def __init__(self, message: str = "Booking service temporarily unavailable", **kwargs):
        super().__init__(message, **kwargs)


def error_response(error: AppError):
    return jsonify({"status": "error", "error": error.to_dict()}), error.status_code


def register_error_handlers(app):
    @app.errorhandler(AppError)
    def handle_app_error(e: AppError):
        if e.status_code >= 500:
            current_app.logger.error(f"{e.code}: {e.message}")
        else:
            current_app.logger.info(f"{e.code}: {e.message}")
        return error_response(e)

    @app.errorhandler(HTTPException)
    def handle_http_exception(e: HTTPException):
        codes = {
            400: ErrorCode.VALIDATION_ERROR,
            401: ErrorCode.UNAUTHORIZED,
            403: ErrorCode.FORBIDDEN,
            404: ErrorCode.NOT_FOUND,
            405: ErrorCode.VALIDATION_ERROR,
            409: ErrorCode.CONFLICT,
        }
        code = codes.get(e.code, ErrorCode.INTERNAL_ERROR)
        return error_response(AppError(e.description or e.name, code=code, status_code=e.code))

    @app.errorhandler(Exception)
    def handle_unexpected(e: Exception):
        current_app.logger.exception(f"Unhandled error: {e}")
        message = "Internal server error"
        if app.debug or app.testing:
            message = f"Internal server error: {e}"
        return error_response(
            AppError(message, code=ErrorCode.INTERNAL_ERROR, status_code=500)
        )
