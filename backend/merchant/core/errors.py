"""Error Hierarchy — typed, categorized exceptions for every merchant failure mode.

Invariants:
    - Every error has a code (str), category (ErrorCategory), severity (ErrorSeverity)
    - failure_details is the user-facing text persisted on a failed trade row
    - Business-rule errors are permanent; session errors are retried once by the caller
    - No internal details leaked in user-facing messages unless the message embeds them

Design Decisions:
    - Single hierarchy with MerchantError base: workflows catch one type and record one failure
    - ErrorContext as dataclass: rich observability without coupling to logging framework
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class ErrorSeverity(str, Enum):
    """Error severity for observability and client handling."""
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class ErrorCategory(str, Enum):
    """High-level error categories for routing and handling."""
    CONFIGURATION = "configuration"
    VALIDATION = "validation"
    BUSINESS_RULE = "business_rule"
    SESSION = "session"
    RESOURCE_NOT_FOUND = "resource_not_found"
    DATABASE = "database"
    EXTERNAL_API = "external_api"
    INTERNAL = "internal"


@dataclass
class ErrorContext:
    """Rich context for error observability and debugging."""
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    trade_id: int | None = None
    offer_id: str | None = None
    user_message: str | None = None
    debug_info: dict[str, Any] | None = None
    retry_after_ms: int | None = None


class MerchantError(Exception):
    """Base exception for all merchant errors."""

    def __init__(
        self,
        message: str,
        code: str,
        category: ErrorCategory,
        severity: ErrorSeverity = ErrorSeverity.ERROR,
        context: ErrorContext | None = None,
        http_status: int = 500,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.category = category
        self.severity = severity
        self.context = context or ErrorContext()
        self.http_status = http_status

    @property
    def failure_details(self) -> str:
        """Text stored in failure_details when this error fails a trade."""
        return self.context.user_message or self.message

    def to_response(self) -> dict:
        """Convert to standardized REST error response."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "category": self.category.value,
                "severity": self.severity.value,
                "timestamp": self.context.timestamp.isoformat(),
                "context": {
                    "trade_id": self.context.trade_id,
                    "offer_id": self.context.offer_id,
                    "retry_after_ms": self.context.retry_after_ms,
                },
            }
        }


# ─── Trade Errors (permanent failures) ──────────────────────────

class TradeLinkMissingError(MerchantError):
    """User has not configured a trade URL."""
    def __init__(self, context: ErrorContext | None = None):
        super().__init__(
            "Please set your Trade URL to proceed",
            "TRADE_LINK_MISSING", ErrorCategory.CONFIGURATION,
            ErrorSeverity.WARNING, context, 400,
        )


class AccountRestrictedError(MerchantError):
    """Counterparty is under trade probation or an escrow hold."""
    def __init__(
        self, message: str, escrow_days: int = 0, context: ErrorContext | None = None,
    ):
        super().__init__(
            message, "ACCOUNT_RESTRICTED", ErrorCategory.BUSINESS_RULE,
            ErrorSeverity.WARNING, context, 400,
        )
        self.escrow_days = escrow_days


class InventoryMismatchError(MerchantError):
    """One or more requested items are absent from the source inventory."""
    def __init__(self, missing: list[str], context: ErrorContext | None = None):
        super().__init__(
            "One or more requested items do not exist in inventory",
            "INVENTORY_MISMATCH", ErrorCategory.BUSINESS_RULE,
            ErrorSeverity.ERROR, context, 409,
        )
        self.missing = missing


class WithdrawalLimitError(MerchantError):
    """Withdrawal item list is empty or larger than allowed."""
    def __init__(self, message: str, count: int, context: ErrorContext | None = None):
        super().__init__(
            message, "WITHDRAWAL_LIMIT", ErrorCategory.VALIDATION,
            ErrorSeverity.WARNING, context, 400,
        )
        self.count = count


class SourcingShortfallError(MerchantError):
    """Fewer items could be sourced than the withdrawal requested."""
    def __init__(self, requested: int, sourced: int, context: ErrorContext | None = None):
        ctx = context or ErrorContext()
        ctx.user_message = ctx.user_message or (
            "Failed to complete withdrawal, please try again later."
        )
        super().__init__(
            f"Sourced {sourced} of {requested} withdrawal item(s)",
            "SOURCING_SHORTFALL", ErrorCategory.BUSINESS_RULE,
            ErrorSeverity.ERROR, ctx, 409,
        )
        self.requested = requested
        self.sourced = sourced


class ResourceNotFoundError(MerchantError):
    """Requested row does not exist."""
    def __init__(
        self, resource_type: str, resource_id: str, context: ErrorContext | None = None,
    ):
        super().__init__(
            f"{resource_type} '{resource_id}' not found",
            "RESOURCE_NOT_FOUND", ErrorCategory.RESOURCE_NOT_FOUND,
            ErrorSeverity.ERROR, context, 404,
        )


# ─── Infrastructure Errors ──────────────────────────────────────

class TradingSessionError(MerchantError):
    """Trading-platform call failed (stale session, timeout, transport)."""
    def __init__(self, message: str, operation: str, context: ErrorContext | None = None):
        super().__init__(
            f"Trading platform {operation} failed: {message}",
            "TRADING_SESSION_ERROR", ErrorCategory.SESSION,
            ErrorSeverity.ERROR, context, 503,
        )
        self.operation = operation
        self.reason = message


class MarketplaceAPIError(MerchantError):
    """Marketplace API call failed."""
    def __init__(
        self,
        message: str,
        operation: str,
        payload: dict | None = None,
        context: ErrorContext | None = None,
    ):
        super().__init__(
            f"Marketplace {operation} failed: {message}",
            "MARKETPLACE_API_ERROR", ErrorCategory.EXTERNAL_API,
            ErrorSeverity.ERROR, context, 502,
        )
        self.operation = operation
        self.reason = message
        self.payload = payload or {}


class DatabaseError(MerchantError):
    """Database operation failed."""
    def __init__(self, message: str, operation: str, context: ErrorContext | None = None):
        super().__init__(
            f"Database {operation} failed: {message}",
            "DATABASE_ERROR", ErrorCategory.DATABASE,
            ErrorSeverity.CRITICAL, context, 503,
        )
        self.operation = operation


def format_failure_details(err: object) -> str:
    """Render anything a workflow failed with as failure_details text."""
    if isinstance(err, MerchantError):
        return err.failure_details
    if isinstance(err, BaseException):
        return str(err)
    if isinstance(err, str):
        return err
    return json.dumps(err, separators=(",", ":"), default=str)
