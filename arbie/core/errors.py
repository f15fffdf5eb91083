"""
Unified exception definitions for Arbie.

All custom exceptions inherit from ArbieError for easy catching.

Failure taxonomy:
- ConnectionFailure: venue/RPC unreachable, retried on the next cycle
- QuoteUnavailable: venue returned no usable price, excluded from snapshot
- ExecutionRejected: execution sink refused an attempt synchronously
- ExecutionTimeout: confirmation not observed in time, needs reconciliation
- ConfigurationError: invalid or missing settings, fatal at startup only
"""

from typing import Any, Optional


class ArbieError(Exception):
    """Base exception for all Arbie errors."""

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or "ARBIE_ERROR"
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert to dict for logging/serialization."""
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


class ConfigurationError(ArbieError):
    """Configuration-related errors."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, code="CONFIG_ERROR", **kwargs)


class PriceSourceError(ArbieError):
    """Base for failures while quoting a (token, venue) pair."""

    def __init__(
        self,
        message: str,
        *,
        venue: str,
        token: Optional[str] = None,
        code: str = "PRICE_SOURCE_ERROR",
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        details["venue"] = venue
        if token:
            details["token"] = token
        super().__init__(message, code=code, details=details, **kwargs)
        self.venue = venue
        self.token = token


class ConnectionFailure(PriceSourceError):
    """Venue or RPC endpoint unreachable (includes call timeouts)."""

    def __init__(self, message: str, *, venue: str, **kwargs):
        super().__init__(message, venue=venue, code="CONNECTION_FAILURE", **kwargs)


class QuoteUnavailable(PriceSourceError):
    """Venue answered but produced no usable price (no pool, empty reserves, bad payload)."""

    def __init__(self, message: str, *, venue: str, **kwargs):
        super().__init__(message, venue=venue, code="QUOTE_UNAVAILABLE", **kwargs)


class ExecutionError(ArbieError):
    """Base for execution sink failures."""


class ExecutionRejected(ExecutionError):
    """Execution sink refused the attempt (insufficient balance, simulation revert, ...)."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, code="EXECUTION_REJECTED", **kwargs)


class ExecutionTimeout(ExecutionError):
    """
    Confirmation was not observed within the bounded wait.

    The transaction's true on-chain outcome is unknown and must be
    reconciled manually.
    """

    def __init__(self, message: str, *, tx_hash: Optional[str] = None, **kwargs):
        details = kwargs.pop("details", {})
        details["tx_hash"] = tx_hash
        details["needs_reconciliation"] = True
        super().__init__(message, code="EXECUTION_TIMEOUT", details=details, **kwargs)
        self.tx_hash = tx_hash
        self.needs_reconciliation = True


class InvalidTransitionError(ArbieError):
    """Illegal execution attempt state change."""

    def __init__(self, current: str, target: str):
        super().__init__(
            f"Invalid attempt transition: {current} -> {target}",
            code="INVALID_TRANSITION",
            details={"from": current, "to": target},
        )
