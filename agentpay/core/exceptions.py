"""
Custom exception classes for the application.
Provides structured error handling with HTTP status code mapping.
"""

from typing import Any


__all__ = [
    "AppException",
    "ValidationError",
    "UnsupportedSymbolError",
    "NotFoundError",
    "PaymentRequiredError",
    "InvalidTransitionError",
    "RateLimitError",
    "ConfigurationError",
    "SwapExecutionError",
    "InsufficientBalanceError",
    "InsufficientAllowanceError",
    "QuoteUnavailableError",
    "SwapRevertedError",
    "SwapConfirmationError",
    "TransactionBroadcastError",
    "RpcExhaustedError",
]


class AppException(Exception):
    """
    Base exception class for all application-specific errors.
    Includes status code and optional detail dictionary.
    """

    status_code: int = 500
    default_message: str = "An unexpected error occurred"
    # Whether the message is safe to show to API clients in production
    expose_message: bool = True
    # None lets the retry layer classify by message
    retryable: bool | None = None

    def __init__(self, message: str | None = None, details: dict[str, Any] | None = None):
        self.message = message or self.default_message
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(AppException):
    """
    Raised when input validation fails.
    Missing fields, malformed addresses, non-positive sizes.
    """
    status_code = 400
    default_message = "Validation failed"


class UnsupportedSymbolError(AppException):
    """
    Raised when a symbol has no tradeable pool behind it.
    """
    status_code = 400
    default_message = "Symbol is not supported"


class NotFoundError(AppException):
    """
    Raised when a requested resource is not found.
    """
    status_code = 404
    default_message = "Resource not found"


class PaymentRequiredError(AppException):
    """
    Raised when an operation is attempted without proof of payment.
    `details["accepts"]` carries the machine-readable payment requirements.
    """
    status_code = 402
    default_message = "Payment required"


class InvalidTransitionError(AppException):
    """
    Raised when a trade intent cannot move to the requested status,
    either because it already moved past it or a concurrent request won.
    """
    status_code = 409
    default_message = "Trade intent is not in a valid state for this operation"


class RateLimitError(AppException):
    """
    Raised when API rate limits are exceeded.
    """
    status_code = 429
    default_message = "Rate limit exceeded"


class ConfigurationError(AppException):
    """
    Raised when required server configuration is missing.
    """
    status_code = 500
    default_message = "Server is not configured for this operation"
    expose_message = False


class SwapExecutionError(AppException):
    """
    Raised when an on-chain swap cannot be completed.
    Base class for every swap-layer failure.
    """
    status_code = 500
    default_message = "Failed to execute swap"
    expose_message = False
    retryable = False


class InsufficientBalanceError(SwapExecutionError):
    """
    Raised when the execution wallet holds less of tokenIn than the swap needs.
    """
    default_message = "Insufficient balance for swap"


class InsufficientAllowanceError(SwapExecutionError):
    """
    Raised when the router allowance is still too low after approval.
    """
    default_message = "Insufficient token allowance for swap router"


class QuoteUnavailableError(SwapExecutionError):
    """
    Raised when no quote could be obtained. The swap is aborted before
    any transaction is submitted.
    """
    default_message = (
        "Failed to get swap quote. Cannot execute swap without a minimum "
        "output amount."
    )


class SwapRevertedError(SwapExecutionError):
    """
    Raised when the swap transaction was mined but reverted.
    """
    default_message = "Swap transaction reverted"

    def __init__(self, tx_hash: str, message: str | None = None):
        self.tx_hash = tx_hash
        super().__init__(
            message or f"Swap transaction reverted. Hash: {tx_hash}",
            {"tx_hash": tx_hash},
        )


class RpcExhaustedError(AppException):
    """
    Raised when every configured RPC endpoint failed for an operation.
    """
    status_code = 503
    default_message = "All RPC endpoints failed"
    expose_message = False

    def __init__(self, operation: str, endpoints: list[str], last_error: Exception | None = None):
        self.operation = operation
        self.endpoints = list(endpoints)
        self.last_error = last_error
        reason = str(last_error) if last_error else "Unknown error"
        super().__init__(
            f"{operation} failed after trying {len(self.endpoints)} RPCs "
            f"({', '.join(self.endpoints)}): {reason}",
            {"operation": operation, "endpoints": self.endpoints},
        )


class SwapConfirmationError(SwapExecutionError):
    """
    Raised when the swap was broadcast but its receipt could not be read.
    The transaction may still land, so the swap must not be resubmitted.
    """
    default_message = "Swap submitted but confirmation failed"

    def __init__(self, tx_hash: str, reason: str | None = None):
        self.tx_hash = tx_hash
        super().__init__(
            f"Swap submitted but confirmation failed. Hash: {tx_hash}"
            + (f" ({reason})" if reason else ""),
            {"tx_hash": tx_hash},
        )


class TransactionBroadcastError(SwapExecutionError):
    """
    Raised when sending a transaction failed in a way that leaves its
    broadcast state unknown. The node may already hold it, so it must not
    be resent automatically.
    """
    default_message = "Transaction broadcast state unknown"

    def __init__(self, stage: str, tx_hash: str | None = None, reason: str | None = None):
        self.stage = stage
        self.tx_hash = tx_hash
        details: dict[str, Any] = {
            "stage": stage,
            "remediation": "Check the execution wallet's recent transactions before retrying",
        }
        if tx_hash:
            details["tx_hash"] = tx_hash
        message = f"{stage.capitalize()} broadcast state unknown"
        if tx_hash:
            message += f". Hash: {tx_hash}"
        if reason:
            message += f" ({reason})"
        super().__init__(message, details)
