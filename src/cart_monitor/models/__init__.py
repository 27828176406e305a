"""Data models for cart automation results."""

from cart_monitor.models.results import (
    Account,
    CartAddAllResult,
    CartLineItem,
    FailureKind,
    ProductKey,
    ProductRow,
    ProductSummary,
    ProgressEvent,
    SkuAddResult,
    SkuOption,
    SkuSelection,
    SnapshotReport,
)


__all__ = [
    "Account",
    "CartAddAllResult",
    "CartLineItem",
    "FailureKind",
    "ProductKey",
    "ProductRow",
    "ProductSummary",
    "ProgressEvent",
    "SkuAddResult",
    "SkuOption",
    "SkuSelection",
    "SnapshotReport",
]
