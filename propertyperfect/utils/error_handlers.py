"""
HTTP Error Handlers
-------------------
API error taxonomy plus the Flask handlers that render it.

Every error leaves the API in the same shape:
    {"error": {"code": "<CODE>", "message": "<text>"}}

Usage:
    from propertyperfect.utils.error_handlers import register_error_handlers, InvalidInput

    register_error_handlers(app)

    raise InvalidInput("imageUrl is required")
"""

import traceback
from typing import Optional

from flask import jsonify
from werkzeug.exceptions import HTTPException


class ApiError(Exception):
    """Base class for errors that map onto an HTTP response."""

    status_code = 500
    code = "INTERNAL_ERROR"
    default_message = "Internal server error"

    def __init__(self, message: Optional[str] = None, details: Optional[dict] = None):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    def to_dict(self) -> dict:
        body = {"code": self.code, "message": self.message}
        if self.details:
            body["details"] = self.details
        return {"error": body}


class Unauthenticated(ApiError):
    status_code = 401
    code = "UNAUTHENTICATED"
    default_message = "Authentication required"


class InvalidInput(ApiError):
    status_code = 400
    code = "INVALID_INPUT"
    default_message = "Invalid request"


class InsufficientCredit(ApiError):
    status_code = 402
    code = "INSUFFICIENT_CREDITS"
    default_message = "No credits remaining. Please purchase more credits."

    def __init__(self, message: Optional[str] = None, balance: int = 0, required: int = 1):
        super().__init__(message, details={"balance": balance, "required": required})
        self.balance = balance
        self.required = required


class QuotaExceeded(ApiError):
    status_code = 429
    code = "QUOTA_EXCEEDED"
    default_message = "Daily enhancement limit reached. Try again tomorrow."


class ServiceDisabled(ApiError):
    status_code = 503
    code = "SERVICE_DISABLED"
    default_message = "Image enhancements are temporarily disabled."


class ServiceUnavailable(ApiError):
    status_code = 503
    code = "SERVICE_UNAVAILABLE"
    default_message = "The image service is temporarily unavailable."


class PersistenceError(ApiError):
    status_code = 500
    code = "PERSISTENCE_ERROR"
    default_message = "Database error occurred"


class SignatureInvalid(ApiError):
    status_code = 400
    code = "SIGNATURE_INVALID"
    default_message = "Invalid webhook signature"


class NotFound(ApiError):
    status_code = 404
    code = "NOT_FOUND"
    default_message = "Not found"


class PaymentProviderError(ApiError):
    status_code = 400
    code = "PAYMENT_SERVICE_ERROR"
    default_message = "Payment service error"


class WebhookNotConfigured(ApiError):
    status_code = 500
    code = "WEBHOOK_NOT_CONFIGURED"
    default_message = "Webhook secret not configured"


def make_error_response(code: str, message: str, status: int, details: Optional[dict] = None):
    """Build the standard JSON error response."""
    body = {"code": code, "message": message}
    if details:
        body["details"] = details
    return jsonify({"error": body}), status


def handle_api_error(e: ApiError):
    if e.status_code >= 500:
        print(f"[ERROR] {e.code}: {e.message}")
    return jsonify(e.to_dict()), e.status_code


def handle_http_exception(e: HTTPException):
    code = (e.name or "HTTP_ERROR").upper().replace(" ", "_")
    return make_error_response(code, e.description or e.name, e.code or 500)


def handle_internal_error(e: Exception):
    print(f"[ERROR] Unhandled {type(e).__name__}: {e}")
    traceback.print_exc()
    return make_error_response("INTERNAL_ERROR", "Internal server error", 500)


def register_error_handlers(app) -> None:
    """Attach the JSON error handlers to a Flask app."""
    app.register_error_handler(ApiError, handle_api_error)
    app.register_error_handler(HTTPException, handle_http_exception)
    app.register_error_handler(Exception, handle_internal_error)


__all__ = [
    "ApiError",
    "Unauthenticated",
    "InvalidInput",
    "InsufficientCredit",
    "QuotaExceeded",
    "ServiceDisabled",
    "ServiceUnavailable",
    "PersistenceError",
    "SignatureInvalid",
    "NotFound",
    "PaymentProviderError",
    "WebhookNotConfigured",
    "make_error_response",
    "register_error_handlers",
]
