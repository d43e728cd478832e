"""
Custom exceptions and error handlers for consistent error responses.

Every error leaves the API as {"error_code", "message", "details"}.
Ledger refusals the user can act on (not enough credits, bonus already
claimed, unknown referral code) are 4xx AppException subclasses; each one
declares its code and HTTP status once, at class level.
LedgerIntegrityError marks a broken invariant and is logged at CRITICAL.
"""

import logging

from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from typing import Any, Dict, Optional

logger = logging.getLogger("arcana")


class AppException(Exception):
    """Base application exception."""

    error_code = "ERR_INTERNAL_SERVER"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "An internal server error occurred"

    def __init__(
        self,
        message: Optional[str] = None,
        error_code: Optional[str] = None,
        status_code: Optional[int] = None,
        details: Dict[str, Any] = None,
    ):
        self.message = message or self.default_message
        self.error_code = error_code or self.error_code
        self.status_code = status_code or self.status_code
        self.details = details or {}
        super().__init__(self.message)

    def to_response(self) -> JSONResponse:
        return _error_response(self.status_code, self.error_code, self.message, self.details)


# Access

class AuthenticationError(AppException):
    error_code = "ERR_AUTH_001"
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Authentication failed"


class InsufficientPermissionsError(AppException):
    error_code = "ERR_PERM_001"
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Insufficient permissions"

    def __init__(self, message: str = None, details: Dict[str, Any] = None):
        super().__init__(message, details=details)


class InvalidSignatureError(AppException):
    """Webhook body does not match its X-Webhook-Signature."""

    error_code = "ERR_AUTH_003"
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid webhook signature"


# Generic request problems

class ResourceNotFoundError(AppException):
    error_code = "ERR_NOT_FOUND_001"
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, resource: str, resource_id: Any = None):
        label = f"{resource} with ID {resource_id}" if resource_id else resource
        super().__init__(f"{label} not found", details={"resource": resource, "id": resource_id})


class BadRequestError(AppException):
    error_code = "ERR_BAD_REQUEST_001"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, details: Dict[str, Any] = None):
        super().__init__(message, details=details)


# Credit ledger refusals (nothing was written)

class InsufficientCreditsError(AppException):
    error_code = "ERR_CREDITS_001"
    status_code = status.HTTP_402_PAYMENT_REQUIRED

    def __init__(self, balance: int, required: int):
        self.balance = balance
        self.required = required
        super().__init__(
            f"Insufficient credits: have {balance}, need {required}",
            details={"balance": balance, "required": required},
        )


class DailyBonusAlreadyClaimedError(AppException):
    error_code = "ERR_BONUS_001"
    status_code = status.HTTP_409_CONFLICT
    default_message = "Daily bonus already claimed today"

    def __init__(self, claimed_on: Any = None):
        super().__init__(details={"claimed_on": str(claimed_on) if claimed_on else None})


class InvalidReferralCodeError(AppException):
    error_code = "ERR_REFERRAL_001"
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Invalid referral code"

    def __init__(self, code: str):
        super().__init__(details={"code": code})


class SelfReferralError(AppException):
    error_code = "ERR_REFERRAL_002"
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Cannot use your own referral code"


class ReferralAlreadyRedeemedError(AppException):
    error_code = "ERR_REFERRAL_003"
    status_code = status.HTTP_409_CONFLICT
    default_message = "You have already redeemed a referral code"


class EmailUnverifiedError(AppException):
    error_code = "ERR_REFERRAL_004"
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Email address must be verified to redeem a referral code"


# Invoices

class TransactionNotFoundError(AppException):
    """Missing, or owned by someone else (the two are indistinguishable)."""

    error_code = "ERR_NOT_FOUND_002"
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Transaction not found"

    def __init__(self, transaction_id: Any = None):
        super().__init__(details={"id": transaction_id})


class TransactionNotCompletedError(AppException):
    error_code = "ERR_INVOICE_001"
    status_code = status.HTTP_409_CONFLICT
    default_message = "Transaction is not a completed purchase"

    def __init__(self, transaction_id: Any = None):
        super().__init__(details={"id": transaction_id})


class LedgerIntegrityError(AppException):
    """
    A ledger invariant was found broken.

    Examples: balance differs from the transaction sum, an invoice
    sequence disagrees with the purchase count. Never corrected silently.
    """

    error_code = "ERR_INTEGRITY_001"

    def __init__(self, message: str, details: Dict[str, Any] = None):
        super().__init__(message, details=details)
        logger.critical("Ledger integrity violation: %s", message, extra={"details": self.details})


# Global Exception Handlers

HTTP_ERROR_CODES = {
    400: "ERR_BAD_REQUEST",
    401: "ERR_UNAUTHORIZED",
    402: "ERR_PAYMENT_REQUIRED",
    403: "ERR_FORBIDDEN",
    404: "ERR_NOT_FOUND",
    409: "ERR_CONFLICT",
    500: "ERR_INTERNAL_SERVER",
}


def _error_response(status_code: int, error_code: str, message: Any, details: Dict[str, Any], headers=None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error_code": error_code, "message": message, "details": details},
        headers=headers,
    )


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    return exc.to_response()


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Framework errors (e.g. missing bearer header) in the same envelope."""
    return _error_response(
        exc.status_code,
        HTTP_ERROR_CODES.get(exc.status_code, "ERR_UNKNOWN"),
        exc.detail,
        {},
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return _error_response(
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        "ERR_VALIDATION",
        "Validation error",
        {"errors": exc.errors()},
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handler for unhandled exceptions."""
    logger.exception(
        "Unhandled exception: %s", type(exc).__name__,
        extra={"path": request.url.path, "method": request.method}
    )
    return _error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        AppException.error_code,
        AppException.default_message,
        {},
    )
