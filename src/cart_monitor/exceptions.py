"""Custom exceptions for the cart monitor."""

from __future__ import annotations

from cart_monitor.models.results import FailureKind


class CartMonitorError(Exception):
    """Base exception for all cart monitor errors."""

    pass


# =============================================================================
# Browser Errors
# =============================================================================


class BrowserError(CartMonitorError):
    """Base exception for browser-related errors."""

    pass


class BrowserConnectionError(BrowserError, ConnectionError):
    """Raised when the remote debugging endpoint is unreachable."""

    pass


class BrowserNotConnectedError(BrowserError):
    """Raised when the browser is used before attaching to it."""

    pass


class NavigationTimeoutError(BrowserError):
    """Raised when a navigation does not settle within its deadline."""

    pass


# =============================================================================
# Auth Errors
# =============================================================================


class AuthExpiredError(CartMonitorError):
    """Raised when the site shows a login or verification page."""

    pass


class InvalidCookiesError(AuthExpiredError):
    """Raised when the supplied cookie jar cannot be parsed or is empty."""

    pass


# =============================================================================
# Page Structure Errors
# =============================================================================


class ExtractionError(CartMonitorError):
    """Base exception for data extraction errors."""

    pass


class CartStructureError(ExtractionError):
    """Raised when the cart page cannot be read into line items."""

    def __init__(self, message: str, artifacts: list[str] | None = None) -> None:
        super().__init__(message)
        self.artifacts = artifacts or []


# =============================================================================
# Add-to-cart Errors
# =============================================================================


class SkuAddError(CartMonitorError):
    """Base exception for a single variant add that did not go through."""

    kind: FailureKind = FailureKind.UNKNOWN
    retryable: bool = False


class OutOfStockError(SkuAddError):
    """Raised when the variant is disabled or reported as sold out."""

    kind = FailureKind.OUT_OF_STOCK
    retryable = False


class SelectorNotFoundError(SkuAddError):
    """Raised when an option or the add-to-cart control cannot be located."""

    kind = FailureKind.SELECTOR_NOT_FOUND
    retryable = True


class ConfirmationTimeoutError(SkuAddError):
    """Raised when the click produced no confirmation in time."""

    kind = FailureKind.CONFIRMATION_TIMEOUT
    retryable = False


class StaleControlError(SkuAddError):
    """Raised when the add-to-cart control is disabled or detached."""

    kind = FailureKind.SELECTOR_NOT_FOUND
    retryable = True


# =============================================================================
# Session Errors
# =============================================================================


class SessionError(CartMonitorError):
    """Base exception for account session errors."""

    pass


class AccountBusyError(SessionError):
    """Raised when another operation already holds the account."""

    pass


# =============================================================================
# Configuration Errors
# =============================================================================


class ConfigurationError(CartMonitorError):
    """Raised when configuration is invalid."""

    pass
