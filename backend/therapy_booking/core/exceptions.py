# backend/therapy_booking/core/exceptions.py
"""
Domain-specific exceptions for the booking engine.

These exceptions provide clear, business-focused error messages
that can be caught and handled appropriately at the API layer.
Every exception carries a stable ``code`` so clients can branch on
the kind of failure without parsing messages.
"""

from typing import Any, Dict, Optional

from fastapi import HTTPException, status


class DomainException(Exception):
    """Base exception for all domain-specific errors."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=self.status_code,
            detail={
                "message": self.message,
                "code": self.code,
                "details": self.details,
            },
        )


class ValidationException(DomainException):
    """Raised when input or business validation fails."""

    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, code=code or "VALIDATION_ERROR", details=details)


class NotFoundException(DomainException):
    """Raised when a requested resource is not found."""

    status_code = status.HTTP_404_NOT_FOUND

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, code=code or "NOT_FOUND", details=details)


class ConflictException(DomainException):
    """Raised when there's a conflict with existing data."""

    status_code = status.HTTP_409_CONFLICT


class UnauthorizedException(DomainException):
    """Raised when user is not authenticated."""

    status_code = status.HTTP_401_UNAUTHORIZED

    def __init__(self, message: str = "Unauthorized", **kwargs: Any) -> None:
        super().__init__(message, code=kwargs.get("code") or "UNAUTHORIZED", details=kwargs.get("details"))


class ForbiddenException(DomainException):
    """Raised when user lacks permission for an action."""

    status_code = status.HTTP_403_FORBIDDEN

    def __init__(self, message: str = "Forbidden", **kwargs: Any) -> None:
        super().__init__(message, code=kwargs.get("code") or "FORBIDDEN", details=kwargs.get("details"))


class ServiceException(DomainException):
    """Raised when a service operation fails for internal reasons."""

    def to_http_exception(self) -> HTTPException:
        # Internal failures never expose their cause to callers.
        return HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={
                "message": "An error occurred processing your request",
                "code": self.code,
                "details": {},
            },
        )


# Specific business exceptions


class SlotUnavailableException(ConflictException):
    """Raised when the requested slot is booked, blocked or not offered."""

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message or "This time slot is not available or has already been booked",
            code="SLOT_UNAVAILABLE",
            details=details or {},
        )


class SlotAlreadyBookedException(ConflictException):
    """Raised when a conditional slot claim affected zero rows."""

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message or "This time slot was just taken, please pick another",
            code="SLOT_ALREADY_BOOKED",
            details=details or {},
        )


class InvalidSignatureException(DomainException):
    """Raised for forged or corrupted gateway callbacks. Always fails closed."""

    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str = "Invalid signature"):
        super().__init__(message=message, code="INVALID_SIGNATURE")


class PaymentNotCompletedException(DomainException):
    """Raised when materialization is attempted on a non-completed payment."""

    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, current_status: str):
        super().__init__(
            message=f"Payment is not completed. Current status: {current_status}",
            code="PAYMENT_NOT_COMPLETED",
            details={"status": current_status},
        )


class InvalidStateException(ConflictException):
    """Raised when a session state-machine guard is violated."""

    def __init__(self, message: str, *, current_status: Optional[str] = None):
        super().__init__(
            message=message,
            code="INVALID_STATE",
            details={"status": current_status} if current_status else {},
        )


class PaymentRequiredException(DomainException):
    """Raised when a reschedule fee must be paid before the change is committed."""

    status_code = status.HTTP_402_PAYMENT_REQUIRED

    def __init__(self, fee: str, days_until_session: int, currency_label: str = "Rs."):
        super().__init__(
            message=(
                f"Rescheduling within {days_until_session} day(s) requires a "
                f"{currency_label} {fee} fee. Please complete payment first."
            ),
            code="PAYMENT_REQUIRED",
            details={
                "fee": fee,
                "requires_payment": True,
                "days_until_session": days_until_session,
            },
        )


class RepositoryException(Exception):
    """
    Exception raised for repository layer errors.

    This exception is used when data access operations fail,
    such as database connection issues, query failures, or
    constraint violations.
    """
