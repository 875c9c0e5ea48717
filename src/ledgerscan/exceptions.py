"""Closed exception hierarchy for ledgerscan.

Every ledgerscan-specific error inherits from LedgerscanError. Each component
boundary owns one branch of the tree, so callers match on the branch they
talk to:

- LedgerSourceError: raised by the provider client
    - TransportError: the provider could not be reached
    - UnauthorizedError: the provider rejected the access credential
    - ProviderError: any other non-success response
- StorageError: raised by the payment and wallet stores
    - NoPaymentsError: no cached row of the queried status (expected condition)
    - WalletNotFoundError: no deposit wallet associated with a user
- IncompatibleUnitError / PrecisionLossError: monetary contract violations,
  defects to fix rather than runtime conditions to recover from.
- ConfigurationError: settings failed validation
- InternalError: wraps an unexpected exception absorbed by the chore

All exceptions have:
- error_code: machine-readable code (e.g., "PROVIDER_UNAUTHORIZED")
- message: human-readable message
- details: additional context dictionary
- to_dict(): structured form used for log records and CLI output
"""
from __future__ import annotations

from typing import Any, Optional


class LedgerscanError(Exception):
    """Base exception for all ledgerscan errors.

    Attributes:
        message: Human-readable error message
        error_code: Machine-readable error code
        details: Optional additional context
    """

    error_code: str = "LEDGERSCAN_ERROR"

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if error_code:
            self.error_code = error_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to a structured dictionary."""
        result: dict[str, Any] = {
            "error": self.error_code,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result


# =============================================================================
# Ledger source (provider client) errors
# =============================================================================

class LedgerSourceError(LedgerscanError):
    """Base class for errors reported by the ledger source client."""

    error_code = "LEDGER_SOURCE_ERROR"

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if operation:
            details["operation"] = operation
        super().__init__(message, details=details)


class TransportError(LedgerSourceError):
    """Network-level failure reaching the provider."""

    error_code = "PROVIDER_TRANSPORT_ERROR"


class UnauthorizedError(LedgerSourceError):
    """The provider rejected the access credential (HTTP 401)."""

    error_code = "PROVIDER_UNAUTHORIZED"


class ProviderError(LedgerSourceError):
    """The provider answered with a non-success response."""

    error_code = "PROVIDER_ERROR"

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        operation: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if status_code is not None:
            details["status_code"] = status_code
        super().__init__(message, operation=operation, details=details)
        self.status_code = status_code


# =============================================================================
# Storage errors
# =============================================================================

class StorageError(LedgerscanError):
    """Payment or wallet store operation failed."""

    error_code = "STORAGE_ERROR"

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if operation:
            details["operation"] = operation
        super().__init__(message, details=details)


class NoPaymentsError(StorageError):
    """No cached payment of the requested status exists."""

    error_code = "NO_PAYMENTS"

    def __init__(self, status: Optional[str] = None) -> None:
        details = {"status": status} if status else None
        super().__init__(
            "no payments in the database",
            operation="last_block",
            details=details,
        )


class WalletNotFoundError(StorageError):
    """No deposit wallet is associated with the user."""

    error_code = "WALLET_NOT_FOUND"

    def __init__(self, user_id: str) -> None:
        super().__init__(
            f"no wallet associated with user '{user_id}'",
            operation="get_wallet",
            details={"user_id": user_id},
        )


# =============================================================================
# Monetary contract violations
# =============================================================================

class IncompatibleUnitError(LedgerscanError):
    """Two amounts of different currencies were compared or combined."""

    error_code = "INCOMPATIBLE_UNIT"

    def __init__(self, left: str, right: str) -> None:
        super().__init__(
            f"incompatible currencies: {left} and {right}",
            details={"left": left, "right": right},
        )


class PrecisionLossError(LedgerscanError):
    """A decimal value does not fit the currency's unit without rounding."""

    error_code = "PRECISION_LOSS"

    def __init__(self, value: str, currency: str, decimal_places: int) -> None:
        super().__init__(
            f"{value} has more than {decimal_places} decimal places for {currency}",
            details={"value": value, "currency": currency, "decimal_places": decimal_places},
        )


# =============================================================================
# Configuration
# =============================================================================

class ConfigurationError(LedgerscanError):
    """Service configuration error."""

    error_code = "CONFIGURATION_ERROR"


# =============================================================================
# Unclassified failures
# =============================================================================

class InternalError(LedgerscanError):
    """An exception outside the ledgerscan hierarchy, absorbed at a tick boundary."""

    error_code = "INTERNAL_ERROR"

    def __init__(self, exc: BaseException) -> None:
        super().__init__(
            f"{type(exc).__name__}: {exc}",
            details={"exception": type(exc).__name__},
        )
