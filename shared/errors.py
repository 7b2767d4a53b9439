"""
Shared error handling for the Benefits Access Layer.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """Standard error response format."""

    request_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)


class AccessLayerException(Exception):
    """Base exception for Access Layer services."""

    status_code = 400

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self, request_id: Optional[str] = None) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            request_id=request_id,
            code=self.code,
            message=self.message,
            details=self.details
        )


class ValidationError(AccessLayerException):
    """Validation-related errors."""

    status_code = 422

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class StorageError(AccessLayerException):
    """Underlying persistence failure. Never retried inside the core."""

    status_code = 503

    def __init__(self, message: str = "Storage failure", details: Optional[Dict[str, Any]] = None):
        super().__init__("STORAGE_FAILURE", message, details)


class WalletNotFoundError(AccessLayerException):
    """Wallet is absent or belongs to another tenant."""

    status_code = 404

    def __init__(self, message: str = "Wallet not found", details: Optional[Dict[str, Any]] = None):
        super().__init__("WALLET_NOT_FOUND", message, details)


class InsufficientBalanceError(AccessLayerException):
    """Requested points exceed what the wallet can cover."""

    status_code = 409

    def __init__(
        self,
        message: str = "Insufficient balance",
        details: Optional[Dict[str, Any]] = None,
        code: str = "INSUFFICIENT_BALANCE"
    ):
        super().__init__(code, message, details)


class InsufficientReservedError(InsufficientBalanceError):
    """Spend exceeds the outstanding reserved amount."""

    def __init__(self, message: str = "Insufficient reserved points", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details, code="INSUFFICIENT_RESERVED")


class DuplicateAccrualError(AccessLayerException):
    """Accrual already recorded for this wallet period."""

    status_code = 409

    def __init__(self, message: str = "Accrual already recorded", details: Optional[Dict[str, Any]] = None):
        super().__init__("DUPLICATE_ACCRUAL", message, details)
